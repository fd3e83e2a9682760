"""
Blood request lifecycle.

    pending -> active -> fulfilled | cancelled | expired
    pending -> cancelled

Requests are created ``active`` unless activation is deferred. Terminal
states accept no further transitions. Expiry is lazy: ``expire_if_due`` is
applied whenever a request is read, there is no background timer.

Every function here is pure. It validates the move and returns the fields
that change; persisting them is the caller's job.
"""
from datetime import date, datetime, time, timedelta, timezone as dt_timezone

from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from algorithms.blood_compatibility import validate_blood_type
from algorithms.haversine import location_coords
from algorithms.priority import validate_urgency
from redblood.exceptions import InvalidState, InvalidTransition, ValidationError

PENDING = 'pending'
ACTIVE = 'active'
FULFILLED = 'fulfilled'
CANCELLED = 'cancelled'
EXPIRED = 'expired'

REQUEST_STATUSES = (PENDING, ACTIVE, FULFILLED, CANCELLED, EXPIRED)
TERMINAL_STATUSES = frozenset([FULFILLED, CANCELLED, EXPIRED])

TRANSITIONS = {
    PENDING: frozenset([ACTIVE, CANCELLED]),
    ACTIVE: frozenset([FULFILLED, CANCELLED, EXPIRED]),
    FULFILLED: frozenset(),
    CANCELLED: frozenset(),
    EXPIRED: frozenset(),
}

REQUIRED_FIELDS = ('patient_name', 'blood_type', 'units', 'hospital', 'urgency')
OPTIONAL_FIELDS = (
    'required_by', 'contact_name', 'contact_phone', 'contact_email',
    'notes', 'location', 'address',
)
UPDATABLE_FIELDS = ('units', 'urgency', 'required_by', 'notes')


def request_ttl():
    return timedelta(days=getattr(settings, 'REDBLOOD_REQUEST_TTL_DAYS', 7))


def as_datetime(value):
    """Coerce dates, naive datetimes and ISO strings to aware datetimes."""
    if value is None:
        return None
    if isinstance(value, str):
        parsed = parse_datetime(value)
        if parsed is None:
            raise ValidationError(f"Invalid datetime: {value!r}")
        value = parsed
    if isinstance(value, datetime):
        if timezone.is_naive(value):
            value = timezone.make_aware(value, dt_timezone.utc)
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=dt_timezone.utc)
    raise ValidationError(f"Invalid datetime: {value!r}")


def compute_expires_at(created_at, required_by=None):
    """
    A request expires 7 days after creation, or at ``required_by`` when
    that comes first.
    """
    default_expiry = created_at + request_ttl()
    required_by = as_datetime(required_by)
    if required_by is not None and required_by < default_expiry:
        return required_by
    return default_expiry


def validate_units(units):
    if isinstance(units, bool) or not isinstance(units, int) or units < 1:
        raise ValidationError('Units must be a positive integer')
    return units


def new_request(data, user_id, now=None, activate=True):
    """
    Build a new blood request document from submitted data.

    Raises ValidationError / InvalidBloodType / InvalidCoordinate for
    malformed input. The returned document has no ``id`` yet.
    """
    now = now or timezone.now()

    missing = [field for field in REQUIRED_FIELDS if data.get(field) in (None, '')]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    validate_blood_type(data['blood_type'])
    validate_units(data['units'])
    validate_urgency(data['urgency'])

    request = {field: data[field] for field in REQUIRED_FIELDS}
    for field in OPTIONAL_FIELDS:
        request[field] = data.get(field)

    if request['location'] is not None:
        if not isinstance(request['location'], dict):
            raise ValidationError('Location must have latitude and longitude')
        latitude, longitude = location_coords(request['location']) or (None, None)
        if latitude is None:
            raise ValidationError('Location needs both latitude and longitude')
        request['location'] = {'latitude': latitude, 'longitude': longitude}

    request['required_by'] = as_datetime(request['required_by'])
    if request['required_by'] is not None and request['required_by'] <= now:
        raise ValidationError('required_by must be in the future')

    request.update({
        'user_id': user_id,
        'status': ACTIVE if activate else PENDING,
        'responses': [],
        'fulfilled_by': None,
        'fulfilled_at': None,
        'created_at': now,
        'updated_at': now,
        'expires_at': compute_expires_at(now, request['required_by']),
    })
    return request


def check_transition(request, target):
    current = request.get('status')
    if current in TERMINAL_STATUSES:
        raise InvalidTransition(f"Blood request is already {current}")
    if target not in TRANSITIONS.get(current, ()):
        raise InvalidTransition(f"Cannot move blood request from {current} to {target}")


def activate(request, now=None):
    check_transition(request, ACTIVE)
    return {'status': ACTIVE, 'updated_at': now or timezone.now()}


def fulfill(request, fulfilled_by, now=None):
    check_transition(request, FULFILLED)
    now = now or timezone.now()
    return {
        'status': FULFILLED,
        'fulfilled_by': fulfilled_by,
        'fulfilled_at': now,
        'updated_at': now,
    }


def cancel(request, now=None):
    if request.get('status') in TERMINAL_STATUSES:
        raise InvalidState(f"Blood request is already {request.get('status')}")
    check_transition(request, CANCELLED)
    return {'status': CANCELLED, 'updated_at': now or timezone.now()}


def expire(request, now=None):
    check_transition(request, EXPIRED)
    return {'status': EXPIRED, 'updated_at': now or timezone.now()}


def is_due(request, now=None):
    """True when an active request has passed its expiry time."""
    expires_at = request.get('expires_at')
    if request.get('status') != ACTIVE or expires_at is None:
        return False
    return (now or timezone.now()) > as_datetime(expires_at)


def expire_if_due(request, now=None):
    """Changes that expire the request when it is due, else an empty dict."""
    if is_due(request, now):
        return expire(request, now)
    return {}


def update(request, changes, now=None):
    """
    Edit units, urgency, required_by or notes of an active request.
    Recomputes ``expires_at`` when ``required_by`` changes.
    """
    if request.get('status') != ACTIVE:
        raise InvalidState(f"Only active requests can be updated (request is {request.get('status')})")

    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

    now = now or timezone.now()
    updated = {}

    if 'units' in changes:
        updated['units'] = validate_units(changes['units'])
    if 'urgency' in changes:
        updated['urgency'] = validate_urgency(changes['urgency'])
    if 'notes' in changes:
        updated['notes'] = changes['notes']
    if 'required_by' in changes:
        required_by = as_datetime(changes['required_by'])
        if required_by is not None and required_by <= now:
            raise ValidationError('required_by must be in the future')
        updated['required_by'] = required_by
        updated['expires_at'] = compute_expires_at(as_datetime(request['created_at']), required_by)

    updated['updated_at'] = now
    return updated
