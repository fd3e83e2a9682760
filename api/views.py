# api/views.py
"""
REST endpoints. Views parse input, build the acting user and hand over to
the services; errors propagate to ``redblood.exceptions.exception_handler``.
"""
from django.conf import settings
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts import services as accounts
from accounts.permissions import ADMIN, IsAdminRole, acting_user_from, role_required
from algorithms.eligibility import eligibility_criteria as published_criteria
from api import serializers
from bloodrequests import services as requests
from donations import services as donations


def success(data=None, message=None, status_code=status.HTTP_200_OK):
    body = {'status': 'success'}
    if message:
        body['message'] = message
    if data is not None:
        body['data'] = data
    return Response(body, status=status_code)


def validated(serializer_class, data, partial=False):
    serializer = serializer_class(data=data, partial=partial)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data


def list_limit(query):
    limit = query.get('limit', settings.REDBLOOD_DEFAULT_LIST_LIMIT)
    return min(limit, settings.REDBLOOD_MAX_LIST_LIMIT)


def query_location(query):
    if 'latitude' in query and 'longitude' in query:
        return {'latitude': query['latitude'], 'longitude': query['longitude']}
    return None


class PublicReadMixin:
    """GET is open to everyone; every other method needs a signed-in user."""

    def get_permissions(self):
        if self.request.method == 'GET':
            return [AllowAny()]
        return [IsAuthenticated()]


# Blood requests

class RequestListView(PublicReadMixin, APIView):

    def get(self, request):
        query = validated(serializers.RequestQuerySerializer, request.query_params)
        location = query_location(query)

        status_filter = query.get('status', 'active')
        results = requests.list_requests(
            blood_type=query.get('blood_type'),
            status=None if status_filter == 'all' else status_filter,
            urgency=query.get('urgency'),
            donor_blood_type=query.get('donor_blood_type'),
            location=location,
            radius_km=query.get('radius', requests.default_radius()) if location else None,
            sort_by=query.get('sort_by'),
            order=query.get('order', 'desc'),
            limit=list_limit(query),
        )
        return success({'requests': results})

    def post(self, request):
        data = validated(serializers.BloodRequestCreateSerializer, request.data)
        blood_request = requests.create_request(data, acting_user_from(request))
        return success({'request': blood_request}, 'Blood request created successfully', status.HTTP_201_CREATED)


class NearbyRequestsView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        query = validated(serializers.NearbyQuerySerializer, request.query_params)
        results = requests.nearby_requests(
            query['latitude'],
            query['longitude'],
            radius_km=query.get('radius'),
            blood_type=query.get('blood_type'),
            donor_blood_type=query.get('donor_blood_type'),
            limit=list_limit(query),
        )
        return success({'requests': results})


class RequestDetailView(PublicReadMixin, APIView):

    def get(self, request, request_id):
        blood_request, responses = requests.get_request_details(request_id)
        return success({'request': blood_request, 'responses': responses})

    def put(self, request, request_id):
        changes = validated(serializers.BloodRequestUpdateSerializer, request.data, partial=True)
        blood_request = requests.update_request(request_id, dict(changes), acting_user_from(request))
        return success({'request': blood_request}, 'Blood request updated successfully')

    def patch(self, request, request_id):
        return self.put(request, request_id)

    def delete(self, request, request_id):
        requests.delete_request(request_id, acting_user_from(request))
        return success(message='Blood request deleted successfully')


@api_view(['POST'])
def cancel_request(request, request_id):
    blood_request = requests.cancel_request(request_id, acting_user_from(request))
    return success({'request': blood_request}, 'Blood request cancelled')


@api_view(['POST', 'PUT'])
def fulfill_request(request, request_id):
    data = validated(serializers.FulfillSerializer, request.data)
    blood_request = requests.fulfill_request(request_id, acting_user_from(request), data.get('fulfilled_by'))
    return success({'request': blood_request}, 'Blood request marked as fulfilled')


@api_view(['POST'])
def respond_to_request(request, request_id):
    data = validated(serializers.RespondSerializer, request.data)
    response = requests.respond_to_request(
        request_id,
        acting_user_from(request),
        message=data.get('message'),
        scheduled_date=data.get('scheduled_date'),
        contact_info=dict(data['contact_info']) if data.get('contact_info') else None,
    )
    return success({'response': response}, 'Response submitted successfully', status.HTTP_201_CREATED)


@api_view(['PUT', 'PATCH'])
def update_response(request, request_id, response_id):
    data = validated(serializers.ResponseUpdateSerializer, request.data, partial=True)
    response = requests.update_request_response(
        request_id,
        response_id,
        acting_user_from(request),
        status=data.get('status'),
        message=data.get('message'),
        scheduled_date=data.get('scheduled_date'),
    )
    return success({'response': response}, 'Response updated successfully')


# Donation centers and appointments

class AdminWriteMixin:
    """GET is open to everyone; writes are for admins."""

    def get_permissions(self):
        if self.request.method == 'GET':
            return [AllowAny()]
        return [IsAuthenticated(), IsAdminRole()]


class CenterListView(AdminWriteMixin, APIView):

    def get(self, request):
        query = validated(serializers.CenterQuerySerializer, request.query_params)
        centers = donations.list_centers(
            latitude=query.get('latitude'),
            longitude=query.get('longitude'),
            radius_km=query.get('radius'),
            services=query.get('services'),
        )
        return success({'centers': centers})

    def post(self, request):
        data = validated(serializers.DonationCenterSerializer, request.data)
        center = donations.create_center(data, acting_user_from(request))
        return success({'center': center}, 'Donation center created successfully', status.HTTP_201_CREATED)


class CenterDetailView(AdminWriteMixin, APIView):

    def get(self, request, center_id):
        return success({'center': donations.get_center(center_id)})

    def put(self, request, center_id):
        changes = validated(serializers.DonationCenterSerializer, request.data, partial=True)
        center = donations.update_center(center_id, changes, acting_user_from(request))
        return success({'center': center}, 'Donation center updated successfully')


@api_view(['POST'])
def schedule_appointment(request):
    data = validated(serializers.AppointmentSerializer, request.data)
    donation = donations.schedule_appointment(acting_user_from(request), data)
    return success({'donation': donation}, 'Appointment scheduled successfully', status.HTTP_201_CREATED)


@api_view(['GET'])
def upcoming_appointments(request):
    appointments = donations.upcoming_appointments(acting_user_from(request).id)
    return success({'appointments': appointments})


class AppointmentDetailView(APIView):

    def put(self, request, donation_id):
        data = validated(serializers.RescheduleSerializer, request.data)
        donation = donations.reschedule_appointment(donation_id, acting_user_from(request), data['appointment_date'])
        return success({'donation': donation}, 'Appointment rescheduled successfully')

    def delete(self, request, donation_id):
        donation = donations.cancel_appointment(donation_id, acting_user_from(request))
        return success({'donation': donation}, 'Appointment cancelled successfully')


@api_view(['POST'])
@role_required(ADMIN)
def appointment_status(request, donation_id):
    data = validated(serializers.DonationStatusSerializer, request.data)
    donation = donations.update_donation_status(
        donation_id,
        acting_user_from(request),
        data['status'],
        hemoglobin_level=data.get('hemoglobin_level'),
        units=data.get('units'),
        notes=data.get('notes'),
    )
    return success({'donation': donation}, f"Donation marked {donation['status']}")


@api_view(['GET'])
@permission_classes([AllowAny])
def eligibility_criteria(request):
    return success({'eligibility': published_criteria()})


@api_view(['POST'])
def check_eligibility(request):
    answers = validated(serializers.EligibilityCheckSerializer, request.data)
    result = donations.check_user_eligibility(acting_user_from(request).id, dict(answers))
    return success(result)


# Users

@api_view(['POST'])
def register_profile(request):
    data = validated(serializers.ProfileSerializer, request.data)
    profile = accounts.register_profile(acting_user_from(request), dict(data))
    return success({'user': profile}, 'User created successfully', status.HTTP_201_CREATED)


class MeView(APIView):

    def get(self, request):
        acting_user = acting_user_from(request)
        return success({'user': accounts.get_profile(acting_user.id, acting_user)})

    def delete(self, request):
        accounts.delete_account(acting_user_from(request))
        return success(message='User deleted successfully')


class UserDetailView(APIView):

    def get(self, request, user_id):
        return success({'user': accounts.get_profile(user_id, acting_user_from(request))})

    def put(self, request, user_id):
        changes = validated(serializers.ProfileSerializer, request.data, partial=True)
        profile = accounts.update_profile(user_id, dict(changes), acting_user_from(request))
        return success({'user': profile}, 'User updated successfully')


@api_view(['PUT'])
def notification_settings(request):
    preferences = validated(serializers.NotificationPreferencesSerializer, request.data)
    merged = accounts.update_notification_preferences(acting_user_from(request).id, dict(preferences))
    return success({'notification_preferences': merged}, 'Notification settings updated successfully')


@api_view(['POST'])
def register_device(request):
    data = validated(serializers.DeviceSerializer, request.data)
    accounts.register_device(acting_user_from(request).id, data['token'])
    return success(message='Device registered')


@api_view(['GET'])
def my_donations(request):
    history = donations.donation_history(
        acting_user_from(request).id,
        status=request.query_params.get('status'),
        donation_type=request.query_params.get('donation_type'),
    )
    return success({'donations': history})


@api_view(['GET'])
def my_requests(request):
    history = requests.list_user_requests(
        acting_user_from(request).id,
        status=request.query_params.get('status'),
        blood_type=request.query_params.get('blood_type'),
    )
    return success({'requests': history})


@api_view(['GET'])
def my_responses(request):
    return success({'responses': requests.list_user_responses(acting_user_from(request).id)})


@api_view(['GET'])
def eligible_donors(request, blood_type):
    query = validated(serializers.EligibleDonorQuerySerializer, request.query_params)
    donors = accounts.eligible_donors(
        blood_type,
        latitude=query.get('latitude'),
        longitude=query.get('longitude'),
        radius_km=query.get('radius'),
        limit=list_limit(query),
    )
    return success({'donors': donors})
