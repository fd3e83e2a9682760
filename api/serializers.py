# api/serializers.py
"""
Input serializers for the REST API.

They only check shape and types. Domain rules (blood types, coordinates,
urgency levels, transitions) are enforced by the services so the error
``kind`` is the same whether a rule is hit over HTTP or in code.
"""
from rest_framework import serializers


class LocationSerializer(serializers.Serializer):
    latitude = serializers.FloatField()
    longitude = serializers.FloatField()


class ContactInfoSerializer(serializers.Serializer):
    name = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    phone = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    email = serializers.EmailField(required=False, allow_blank=True, allow_null=True)


# Blood requests

class BloodRequestCreateSerializer(serializers.Serializer):
    patient_name = serializers.CharField(max_length=200)
    blood_type = serializers.CharField(max_length=3)
    units = serializers.IntegerField()
    hospital = serializers.CharField(max_length=200)
    urgency = serializers.CharField(max_length=10)
    required_by = serializers.DateTimeField(required=False, allow_null=True)
    contact_name = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    contact_phone = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    contact_email = serializers.EmailField(required=False, allow_blank=True, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    location = LocationSerializer(required=False, allow_null=True)
    address = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class BloodRequestUpdateSerializer(serializers.Serializer):
    units = serializers.IntegerField(required=False)
    urgency = serializers.CharField(required=False)
    required_by = serializers.DateTimeField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    # Accepted so the service can reject it with a useful message
    status = serializers.CharField(required=False)


class RequestQuerySerializer(serializers.Serializer):
    blood_type = serializers.CharField(required=False)
    donor_blood_type = serializers.CharField(required=False)
    status = serializers.CharField(required=False)
    urgency = serializers.CharField(required=False)
    latitude = serializers.FloatField(required=False)
    longitude = serializers.FloatField(required=False)
    radius = serializers.FloatField(required=False)
    sort_by = serializers.CharField(required=False)
    order = serializers.CharField(required=False)
    limit = serializers.IntegerField(required=False, min_value=1)

    def validate(self, attrs):
        if ('latitude' in attrs) != ('longitude' in attrs):
            raise serializers.ValidationError('latitude and longitude must be given together')
        return attrs


class NearbyQuerySerializer(serializers.Serializer):
    latitude = serializers.FloatField()
    longitude = serializers.FloatField()
    radius = serializers.FloatField(required=False)
    blood_type = serializers.CharField(required=False)
    donor_blood_type = serializers.CharField(required=False)
    limit = serializers.IntegerField(required=False, min_value=1)


class FulfillSerializer(serializers.Serializer):
    fulfilled_by = serializers.CharField(required=False, allow_null=True)


class RespondSerializer(serializers.Serializer):
    message = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    scheduled_date = serializers.DateTimeField(required=False, allow_null=True)
    contact_info = ContactInfoSerializer(required=False, allow_null=True)


class ResponseUpdateSerializer(serializers.Serializer):
    status = serializers.CharField(required=False)
    message = serializers.CharField(required=False, allow_blank=True)
    scheduled_date = serializers.DateTimeField(required=False)


# Donations

class OperatingHoursSerializer(serializers.Serializer):
    day = serializers.CharField()
    open = serializers.CharField(required=False, allow_blank=True)
    close = serializers.CharField(required=False, allow_blank=True)
    is_closed = serializers.BooleanField(required=False, default=False)


class DonationCenterSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=200)
    address = serializers.JSONField(required=False)
    location = LocationSerializer(required=False, allow_null=True)
    contact_info = serializers.DictField(child=serializers.CharField(allow_blank=True), required=False)
    operating_hours = OperatingHoursSerializer(many=True, required=False)
    services = serializers.ListField(child=serializers.CharField(), required=False)
    walk_in_allowed = serializers.BooleanField(required=False)
    appointment_required = serializers.BooleanField(required=False)
    active = serializers.BooleanField(required=False)


class CenterQuerySerializer(serializers.Serializer):
    latitude = serializers.FloatField(required=False)
    longitude = serializers.FloatField(required=False)
    radius = serializers.FloatField(required=False)
    services = serializers.CharField(required=False)

    def validate_services(self, value):
        return [service.strip() for service in value.split(',') if service.strip()]


class AppointmentSerializer(serializers.Serializer):
    donation_center_id = serializers.CharField()
    appointment_date = serializers.DateTimeField()
    donation_type = serializers.CharField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class RescheduleSerializer(serializers.Serializer):
    appointment_date = serializers.DateTimeField()


class DonationStatusSerializer(serializers.Serializer):
    status = serializers.CharField()
    hemoglobin_level = serializers.FloatField(required=False, min_value=0)
    units = serializers.IntegerField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)


class EligibilityCheckSerializer(serializers.Serializer):
    weight_kg = serializers.FloatField(required=False, min_value=0)
    hemoglobin = serializers.FloatField(required=False, min_value=0)
    gender = serializers.CharField(required=False)
    recent_illness = serializers.BooleanField(required=False)
    medications = serializers.ListField(child=serializers.CharField(), required=False)
    recent_travel = serializers.BooleanField(required=False)
    pregnant = serializers.BooleanField(required=False)


# Users

class MedicalInfoSerializer(serializers.Serializer):
    weight_kg = serializers.FloatField(required=False, allow_null=True)
    medications = serializers.ListField(child=serializers.CharField(), required=False)
    conditions = serializers.ListField(child=serializers.CharField(), required=False)


class NotificationPreferencesSerializer(serializers.Serializer):
    email = serializers.BooleanField(required=False)
    push = serializers.BooleanField(required=False)
    sms = serializers.BooleanField(required=False)


class ProfileSerializer(serializers.Serializer):
    email = serializers.EmailField(required=False)
    full_name = serializers.CharField(required=False, max_length=200)
    phone_number = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    blood_type = serializers.CharField(required=False, allow_null=True)
    date_of_birth = serializers.DateField(required=False, allow_null=True)
    gender = serializers.CharField(required=False, allow_null=True)
    address = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    location = LocationSerializer(required=False, allow_null=True)
    notification_preferences = NotificationPreferencesSerializer(required=False)
    medical_info = MedicalInfoSerializer(required=False)
    role = serializers.CharField(required=False)


class DeviceSerializer(serializers.Serializer):
    token = serializers.CharField(max_length=4096)


class EligibleDonorQuerySerializer(serializers.Serializer):
    latitude = serializers.FloatField(required=False)
    longitude = serializers.FloatField(required=False)
    radius = serializers.FloatField(required=False)
    limit = serializers.IntegerField(required=False, min_value=1)
