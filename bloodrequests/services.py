# bloodrequests/services.py
"""
Blood request operations on top of the document store.

Every read goes through ``refresh`` so a request past its expiry time is
persisted as expired before anyone sees it.
"""
import logging

from django.conf import settings
from django.utils import timezone

from accounts.permissions import ensure_owner_or_admin
from algorithms.blood_compatibility import compatible_recipients_for, validate_blood_type
from algorithms.matching import SORT_DISTANCE, match_requests
from bloodrequests import lifecycle, responses
from bloodrequests.signals import REQUEST_CREATED, REQUEST_STATUS_CHANGED, emit
from redblood.exceptions import InvalidState, NotFound, ValidationError
from store.base import PreconditionFailed, delete_op, get_store, update_op

logger = logging.getLogger(__name__)

REQUESTS = responses.REQUESTS
RESPONSES = responses.RESPONSES
USERS = 'users'


def default_radius():
    return getattr(settings, 'REDBLOOD_DEFAULT_SEARCH_RADIUS_KM', 50)


def _write_transition(store, request, changes, event_sender):
    """Persist a status change guarded by the status it was computed from."""
    try:
        store.atomic_batch([
            update_op(REQUESTS, request['id'], fields=changes, expect={'status': request['status']}),
        ])
    except PreconditionFailed:
        raise InvalidState('Blood request was modified concurrently, please retry')

    updated = {**request, **changes}
    logger.info(f"Request {request['id']}: {request['status']} -> {updated['status']}")
    emit(REQUEST_STATUS_CHANGED, sender=event_sender, request=updated,
         previous_status=request['status'], status=updated['status'])
    return updated


def refresh(request, store=None, now=None):
    """Expire ``request`` when it is due and return its current state."""
    store = store or get_store()
    changes = lifecycle.expire_if_due(request, now)
    if not changes:
        return request
    try:
        return _write_transition(store, request, changes, refresh)
    except InvalidState:
        # Another writer got there first; its state wins
        current = store.get(REQUESTS, request['id'])
        if current is None:
            raise NotFound('Blood request not found')
        return current


def create_request(data, acting_user, store=None, now=None):
    store = store or get_store()
    document = lifecycle.new_request(data, acting_user.id, now=now)
    request = store.add(REQUESTS, document)
    logger.info(f"Request {request['id']} created by {acting_user.id} ({request['blood_type']}, {request['urgency']})")
    emit(REQUEST_CREATED, sender=create_request, request=request)
    return request


def get_request(request_id, store=None, now=None):
    store = store or get_store()
    request = store.get_or_404(REQUESTS, request_id, 'Blood request')
    return refresh(request, store, now)


def get_request_responses(request_id, store=None):
    store = store or get_store()
    found = store.query(RESPONSES, [('request_id', '==', request_id)])
    return sorted(found, key=lambda r: r['created_at'])


def get_request_details(request_id, store=None, now=None):
    """The request together with every response to it."""
    request = get_request(request_id, store, now)
    return request, get_request_responses(request_id, store)


def _candidate_filters(blood_type, status, urgency, donor_blood_type):
    filters = []
    if blood_type is not None:
        filters.append(('blood_type', '==', validate_blood_type(blood_type)))
    elif donor_blood_type is not None:
        filters.append(('blood_type', 'in', sorted(compatible_recipients_for(donor_blood_type))))

    if status == lifecycle.EXPIRED:
        # Overdue requests may still be stored as active
        filters.append(('status', 'in', [lifecycle.ACTIVE, lifecycle.EXPIRED]))
    elif status is not None:
        filters.append(('status', '==', status))

    if urgency is not None:
        filters.append(('urgency', '==', urgency))
    return filters


def list_requests(blood_type=None, status=lifecycle.ACTIVE, urgency=None, donor_blood_type=None,
                  location=None, radius_km=None, sort_by=None, order='desc', limit=None,
                  store=None, now=None):
    """
    Requests matching the given filters, sorted and limited.

    Equality filters are pushed down to the store; compatibility, radius,
    sorting and the limit are applied over the refreshed candidates.
    """
    store = store or get_store()
    if status is not None and status not in lifecycle.REQUEST_STATUSES:
        raise ValidationError(f"Invalid status: {status!r}")

    candidates = store.query(REQUESTS, _candidate_filters(blood_type, status, urgency, donor_blood_type))
    candidates = [refresh(request, store, now) for request in candidates]

    return match_requests(
        candidates,
        blood_type=blood_type,
        status=status,
        urgency=urgency,
        donor_blood_type=donor_blood_type,
        location=location,
        radius_km=radius_km,
        sort_by=sort_by,
        order=order,
        limit=limit,
    )


def nearby_requests(latitude, longitude, radius_km=None, blood_type=None, donor_blood_type=None,
                    limit=None, store=None, now=None):
    """Active requests around a point, nearest first."""
    if latitude is None or longitude is None:
        raise ValidationError('Latitude and longitude are required')
    return list_requests(
        blood_type=blood_type,
        donor_blood_type=donor_blood_type,
        location={'latitude': latitude, 'longitude': longitude},
        radius_km=radius_km if radius_km is not None else default_radius(),
        sort_by=SORT_DISTANCE,
        limit=limit,
        store=store,
        now=now,
    )


def list_user_requests(user_id, status=None, blood_type=None, store=None, now=None):
    store = store or get_store()
    filters = [('user_id', '==', user_id)]
    if blood_type is not None:
        filters.append(('blood_type', '==', validate_blood_type(blood_type)))

    found = [refresh(request, store, now) for request in store.query(REQUESTS, filters)]
    if status is not None:
        found = [request for request in found if request['status'] == status]
    return sorted(found, key=lambda r: r['created_at'], reverse=True)


def update_request(request_id, changes, acting_user, store=None, now=None):
    store = store or get_store()
    request = get_request(request_id, store, now)
    ensure_owner_or_admin(acting_user, request['user_id'])

    if 'status' in changes:
        raise ValidationError('Use the cancel or fulfill actions to change request status')

    updated_fields = lifecycle.update(request, changes, now)
    try:
        store.atomic_batch([
            update_op(REQUESTS, request_id, fields=updated_fields, expect={'status': lifecycle.ACTIVE}),
        ])
    except PreconditionFailed:
        raise InvalidState('Only active requests can be updated')

    logger.info(f"Request {request_id} updated by {acting_user.id}: {', '.join(sorted(changes))}")
    return {**request, **updated_fields}


def cancel_request(request_id, acting_user, store=None, now=None):
    store = store or get_store()
    request = get_request(request_id, store, now)
    ensure_owner_or_admin(acting_user, request['user_id'])
    return _write_transition(store, request, lifecycle.cancel(request, now), cancel_request)


def fulfill_request(request_id, acting_user, fulfilled_by=None, store=None, now=None):
    store = store or get_store()
    request = get_request(request_id, store, now)
    ensure_owner_or_admin(acting_user, request['user_id'])
    return _write_transition(store, request, lifecycle.fulfill(request, fulfilled_by, now), fulfill_request)


def delete_request(request_id, acting_user, store=None):
    """Delete a request and all of its responses, the request itself last."""
    store = store or get_store()
    request = store.get_or_404(REQUESTS, request_id, 'Blood request')
    ensure_owner_or_admin(acting_user, request['user_id'])

    ops = [delete_op(RESPONSES, response['id']) for response in get_request_responses(request_id, store)]
    ops.append(delete_op(REQUESTS, request_id))
    store.chunked_batch(ops)
    logger.info(f"Request {request_id} deleted by {acting_user.id} with {len(ops) - 1} responses")


def get_response(request_id, response_id, store=None):
    store = store or get_store()
    response = store.get(RESPONSES, response_id)
    if response is None or response.get('request_id') != request_id:
        raise NotFound('Response not found')
    return response


def respond_to_request(request_id, acting_user, message=None, scheduled_date=None,
                       contact_info=None, store=None, now=None):
    store = store or get_store()
    request = get_request(request_id, store, now)
    donor = store.get_or_404(USERS, acting_user.id, 'User')
    return responses.respond(
        request, donor,
        message=message,
        scheduled_date=scheduled_date,
        contact_info=contact_info,
        store=store,
        now=now,
    )


def update_request_response(request_id, response_id, acting_user, status=None, message=None,
                            scheduled_date=None, store=None, now=None):
    store = store or get_store()
    request = get_request(request_id, store, now)
    response = get_response(request_id, response_id, store)
    updated, _ = responses.update_response(
        response, request, acting_user,
        new_status=status,
        message=message,
        scheduled_date=scheduled_date,
        store=store,
        now=now,
    )
    return updated


def list_user_responses(user_id, store=None):
    store = store or get_store()
    found = store.query(RESPONSES, [('user_id', '==', user_id)])
    return sorted(found, key=lambda r: r['created_at'], reverse=True)
