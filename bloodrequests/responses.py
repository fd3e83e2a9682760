# bloodrequests/responses.py
"""
Donor responses to blood requests.

A response and the request it belongs to are always written together in
one atomic batch. The batch re-checks the request (and response) status at
write time, so two concurrent writers cannot both succeed against a
request that only one of them should see as active.
"""
import logging

from django.utils import timezone

from accounts.permissions import ActingUser
from algorithms.blood_compatibility import is_compatible
from bloodrequests import lifecycle
from bloodrequests.signals import RESPONSE_CREATED, RESPONSE_STATUS_CHANGED, REQUEST_STATUS_CHANGED, emit
from redblood.exceptions import (
    IncompatibleBloodType,
    InvalidState,
    RequestNotActive,
    Unauthorized,
    ValidationError,
)
from store.base import PreconditionFailed, get_store, set_op, update_op

logger = logging.getLogger(__name__)

REQUESTS = 'blood_requests'
RESPONSES = 'request_responses'

PENDING = 'pending'
ACCEPTED = 'accepted'
REJECTED = 'rejected'
CANCELLED = 'cancelled'
RESPONSE_STATUSES = (PENDING, ACCEPTED, REJECTED, CANCELLED)


def contact_snapshot(donor):
    return {
        'name': donor.get('full_name'),
        'phone': donor.get('phone_number'),
        'email': donor.get('email'),
    }


def respond(request, donor, message=None, scheduled_date=None, contact_info=None, store=None, now=None):
    """
    Record a donor's offer to give blood for ``request``.

    The donor's blood type must be able to give to the requested type. A
    donor without a blood type on file is not checked. Returns the new
    response document.
    """
    store = store or get_store()
    now = now or timezone.now()

    if request.get('status') != lifecycle.ACTIVE or lifecycle.is_due(request, now):
        raise RequestNotActive('Cannot respond to a request that is not active')

    donor_type = donor.get('blood_type')
    if donor_type and not is_compatible(donor_type, request['blood_type']):
        raise IncompatibleBloodType(
            f"Your blood type ({donor_type}) is not compatible with the "
            f"requested blood type ({request['blood_type']})"
        )

    response = {
        'request_id': request['id'],
        'user_id': donor['id'],
        'status': PENDING,
        'message': message,
        'contact_info': contact_info or contact_snapshot(donor),
        'scheduled_date': lifecycle.as_datetime(scheduled_date),
        'created_at': now,
        'updated_at': now,
    }
    response_id = store.new_id(RESPONSES)

    try:
        store.atomic_batch([
            set_op(RESPONSES, response_id, response),
            update_op(
                REQUESTS, request['id'],
                fields={'updated_at': now},
                append={'responses': [response_id]},
                expect={'status': lifecycle.ACTIVE},
            ),
        ])
    except PreconditionFailed:
        raise RequestNotActive('Cannot respond to a request that is not active')

    response['id'] = response_id
    logger.info(f"Donor {donor['id']} responded to request {request['id']} (response {response_id})")
    emit(RESPONSE_CREATED, sender=respond, response=response, request=request)
    return response


def _check_status_permission(response, request, new_status, acting_user):
    is_responder = acting_user.id == response['user_id']
    is_request_owner = acting_user.id == request.get('user_id')

    if not (acting_user.is_admin or is_responder or is_request_owner):
        raise Unauthorized('You are not authorized to update this response')

    if new_status in (ACCEPTED, REJECTED) and not (acting_user.is_admin or is_request_owner):
        raise Unauthorized('Only the request owner can accept or reject a response')
    if new_status == CANCELLED and not (acting_user.is_admin or is_responder):
        raise Unauthorized('Only the responder can cancel a response')


def update_response(response, request, acting_user, new_status=None, message=None,
                    scheduled_date=None, store=None, now=None):
    """
    Move a pending response to accepted, rejected or cancelled, or edit its
    message and scheduled date.

    Accepting fulfills the parent request with ``fulfilled_by`` set to the
    responder, in the same batch as the response write.

    Returns ``(response, request)`` with the changes applied.
    """
    store = store or get_store()
    now = now or timezone.now()
    if not isinstance(acting_user, ActingUser):
        raise TypeError('acting_user must be an ActingUser')

    if new_status is not None and new_status not in RESPONSE_STATUSES:
        raise ValidationError(f"Invalid response status: {new_status!r}")
    if new_status == PENDING:
        raise ValidationError('A response cannot be moved back to pending')

    if new_status is None:
        if not (acting_user.is_admin or acting_user.id == response['user_id']):
            raise Unauthorized('You are not authorized to update this response')
    else:
        _check_status_permission(response, request, new_status, acting_user)

    if response.get('status') != PENDING:
        raise InvalidState(f"Response is already {response.get('status')}")

    changes = {'updated_at': now}
    if new_status is not None:
        changes['status'] = new_status
    if message is not None:
        changes['message'] = message
    if scheduled_date is not None:
        changes['scheduled_date'] = lifecycle.as_datetime(scheduled_date)

    ops = [update_op(RESPONSES, response['id'], fields=changes, expect={'status': PENDING})]
    request_changes = {}

    if new_status == ACCEPTED:
        if request.get('status') != lifecycle.ACTIVE or lifecycle.is_due(request, now):
            raise RequestNotActive('Blood request is no longer active')
        request_changes = lifecycle.fulfill(request, response['user_id'], now)
        ops.append(update_op(
            REQUESTS, request['id'],
            fields=request_changes,
            expect={'status': lifecycle.ACTIVE},
        ))

    try:
        store.atomic_batch(ops)
    except PreconditionFailed as e:
        if e.op.collection == REQUESTS:
            raise RequestNotActive('Blood request is no longer active')
        raise InvalidState('Response is no longer pending')

    response = {**response, **changes}
    if request_changes:
        request = {**request, **request_changes}

    if new_status is not None:
        logger.info(f"Response {response['id']} {new_status} by {acting_user.id}")
        emit(RESPONSE_STATUS_CHANGED, sender=update_response, response=response,
             request=request, status=new_status, changed_by=acting_user.id)
    if request_changes:
        logger.info(f"Request {request['id']} fulfilled by {response['user_id']}")
        emit(REQUEST_STATUS_CHANGED, sender=update_response, request=request,
             previous_status=lifecycle.ACTIVE, status=lifecycle.FULFILLED)
    return response, request


def accept_response(response, request, acting_user, store=None, now=None):
    return update_response(response, request, acting_user, new_status=ACCEPTED, store=store, now=now)
