# notifications/tasks.py
"""
Celery tasks that fan request and response events out to users.

Tasks take document ids rather than documents and re-read the store, so a
task that runs late sees the current state.
"""
import logging
import smtplib

from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail
from django.utils import timezone

from accounts.permissions import DONOR
from algorithms.blood_compatibility import compatible_donors_for
from algorithms.matching import match_donors
from bloodrequests import lifecycle
from bloodrequests.responses import ACCEPTED, REJECTED, CANCELLED as RESPONSE_CANCELLED
from bloodrequests.services import REQUESTS, RESPONSES, USERS, default_radius
from notifications.push import send_push
from store.base import get_store

logger = logging.getLogger(__name__)

DEFAULT_PREFERENCES = {'email': True, 'push': True, 'sms': False}

REQUEST_STATUS_MESSAGES = {
    lifecycle.FULFILLED: ('Blood Request Fulfilled', 'Your blood request has been fulfilled. Thank you!'),
    lifecycle.CANCELLED: ('Blood Request Cancelled', 'Your blood request has been cancelled.'),
    lifecycle.EXPIRED: (
        'Blood Request Expired',
        'Your blood request has expired. You can create a new request if needed.',
    ),
}

RESPONSE_STATUS_MESSAGES = {
    ACCEPTED: ('Response Accepted', 'Your offer to donate has been accepted. Thank you for saving a life!'),
    REJECTED: ('Response Declined', 'The requester has chosen another donor. Thank you for offering.'),
    RESPONSE_CANCELLED: ('Response Cancelled', 'A response to your blood request was withdrawn.'),
}


def deliver(users, title, body, data=None):
    """
    Push and email ``users`` according to each user's preferences.

    Returns a summary dict with push and email counts.
    """
    tokens = []
    emails = []
    for user in users:
        preferences = {**DEFAULT_PREFERENCES, **(user.get('notification_preferences') or {})}
        if preferences['push']:
            if user.get('fcm_tokens'):
                tokens.extend(user['fcm_tokens'])
            else:
                logger.debug(f"User {user.get('id')} has no device tokens")
        if preferences['email'] and user.get('email'):
            emails.append((user.get('full_name') or 'there', user['email']))

    pushed, push_failed = send_push(tokens, title, body, data) if tokens else (0, 0)

    emailed = 0
    for name, email in emails:
        try:
            send_mail(
                f"{title} - RedBlood",
                f"Dear {name},\n\n{body}\n\nBest regards,\nRedBlood Team",
                settings.DEFAULT_FROM_EMAIL,
                [email],
                fail_silently=False,
            )
            emailed += 1
        except (smtplib.SMTPException, OSError) as e:
            logger.warning(f"Email to {email} failed: {e}")

    return {'pushed': pushed, 'push_failed': push_failed, 'emailed': emailed}


def donors_for_request(request, store=None):
    """Active donors who can give to the request, near it when it has a location."""
    store = store or get_store()
    candidates = store.query(USERS, [
        ('blood_type', 'in', sorted(compatible_donors_for(request['blood_type']))),
        ('role', '==', DONOR),
        ('active', '==', True),
    ])
    candidates = [user for user in candidates if user['id'] != request.get('user_id')]

    location = request.get('location')
    return match_donors(
        candidates,
        recipient_blood_type=request['blood_type'],
        available_on=timezone.localdate(),
        location=location,
        radius_km=default_radius() if location else None,
    )


@shared_task
def notify_new_request(request_id):
    """
    Tell compatible nearby donors about a new request
    Called right after the request is created
    """
    store = get_store()
    request = store.get(REQUESTS, request_id)
    if request is None:
        return f"Blood request {request_id} not found"
    if request['status'] != lifecycle.ACTIVE:
        return f"Blood request {request_id} is {request['status']}, nobody notified"

    donors = donors_for_request(request, store)
    if not donors:
        logger.info(f"No matching donors for request {request_id}")
        return f"No donors available for request {request_id}"

    summary = deliver(
        donors,
        f"Urgent Blood Request: {request['blood_type']}",
        f"A {request['urgency']} request for {request['blood_type']} blood has been made at {request['hospital']}",
        data={
            'request_id': request_id,
            'blood_type': request['blood_type'],
            'urgency': request['urgency'],
            'screen': 'request_details',
        },
    )
    logger.info(f"Request {request_id}: notified {len(donors)} donors {summary}")
    return f"Notified {len(donors)} donors for request {request_id}"


@shared_task
def notify_request_status(request_id, status):
    """Tell the request owner that their request changed status."""
    store = get_store()
    request = store.get(REQUESTS, request_id)
    if request is None:
        return f"Blood request {request_id} not found"
    owner = store.get(USERS, request['user_id'])
    if owner is None:
        return f"Owner of request {request_id} not found"

    title, body = REQUEST_STATUS_MESSAGES.get(
        status, ('Blood Request Updated', f"Your blood request status is now: {status}"))
    deliver([owner], title, body, data={'request_id': request_id, 'status': status, 'screen': 'request_details'})
    return f"Owner of request {request_id} notified ({status})"


@shared_task
def notify_new_response(response_id):
    """Tell the request owner that a donor responded."""
    store = get_store()
    response = store.get(RESPONSES, response_id)
    if response is None:
        return f"Response {response_id} not found"
    request = store.get(REQUESTS, response['request_id'])
    if request is None:
        return f"Blood request {response['request_id']} not found"
    owner = store.get(USERS, request['user_id'])
    if owner is None:
        return f"Owner of request {request['id']} not found"

    donor_name = (response.get('contact_info') or {}).get('name') or 'A donor'
    deliver(
        [owner],
        'New Response to Your Blood Request',
        f"{donor_name} has offered to donate {request['blood_type']} blood for {request['patient_name']}.",
        data={'request_id': request['id'], 'response_id': response_id, 'screen': 'request_details'},
    )
    return f"Owner of request {request['id']} notified of response {response_id}"


@shared_task
def notify_response_status(response_id, status):
    """
    Tell the other side about a response status change: the responder when
    it was accepted or rejected, the request owner when it was cancelled.
    """
    store = get_store()
    response = store.get(RESPONSES, response_id)
    if response is None:
        return f"Response {response_id} not found"

    if status == RESPONSE_CANCELLED:
        request = store.get(REQUESTS, response['request_id'])
        recipient_id = request['user_id'] if request else None
    else:
        recipient_id = response['user_id']

    recipient = store.get(USERS, recipient_id) if recipient_id else None
    if recipient is None:
        return f"Nobody to notify for response {response_id}"

    title, body = RESPONSE_STATUS_MESSAGES.get(
        status, ('Response Updated', f"Your response status is now: {status}"))
    deliver([recipient], title, body, data={
        'request_id': response['request_id'],
        'response_id': response_id,
        'status': status,
        'screen': 'request_details',
    })
    return f"User {recipient_id} notified of response {response_id} ({status})"
