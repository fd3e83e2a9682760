# donations/services.py
"""
Donation centers, donation appointments and the eligibility check.

A donor's ``last_donation_date`` is only ever written when an appointment
is marked completed, in the same batch as the donation itself.
"""
import logging

from django.conf import settings
from django.utils import timezone

from accounts.permissions import ensure_admin, ensure_owner_or_admin
from algorithms.eligibility import as_date, check_eligibility, next_eligible_date
from algorithms.haversine import location_coords
from algorithms.matching import SORT_DISTANCE, rank
from bloodrequests.lifecycle import as_datetime
from redblood.exceptions import InvalidState, ValidationError
from store.base import PreconditionFailed, get_store, update_op

logger = logging.getLogger(__name__)

DONATIONS = 'donations'
CENTERS = 'donation_centers'
USERS = 'users'

WHOLE_BLOOD = 'whole_blood'
DONATION_TYPES = (WHOLE_BLOOD, 'plasma', 'platelets', 'double_red_cells')

SCHEDULED = 'scheduled'
COMPLETED = 'completed'
CANCELLED = 'cancelled'
NO_SHOW = 'no_show'
DEFERRED = 'deferred'
DONATION_STATUSES = (SCHEDULED, COMPLETED, CANCELLED, NO_SHOW, DEFERRED)

# Only scheduled donations move; every other status is final
DONATION_TRANSITIONS = {
    SCHEDULED: frozenset([COMPLETED, CANCELLED, NO_SHOW, DEFERRED]),
}

CENTER_FIELDS = (
    'name', 'address', 'location', 'contact_info', 'operating_hours',
    'services', 'walk_in_allowed', 'appointment_required', 'active',
)


def _validate_donation_type(donation_type):
    if donation_type not in DONATION_TYPES:
        raise ValidationError(f"Invalid donation type: {donation_type!r}")
    return donation_type


def _validate_services(services):
    if not isinstance(services, (list, tuple)):
        raise ValidationError('Services must be a list of donation types')
    return [_validate_donation_type(service) for service in services]


def _normalise_location(location):
    if location is None:
        return None
    coords = location_coords(location) if isinstance(location, dict) else None
    if coords is None:
        raise ValidationError('Location needs both latitude and longitude')
    return {'latitude': coords[0], 'longitude': coords[1]}


def validate_center_fields(data):
    """Keep the known center fields of ``data``, normalised; ValidationError on bad values."""
    fields = {key: data[key] for key in CENTER_FIELDS if key in data}
    if 'location' in fields:
        fields['location'] = _normalise_location(fields['location'])
    if 'services' in fields:
        fields['services'] = _validate_services(fields['services'])
    if 'operating_hours' in fields and not isinstance(fields['operating_hours'], list):
        raise ValidationError('Operating hours must be a list')
    return fields


# Centers

def list_centers(latitude=None, longitude=None, radius_km=None, services=None, active=True, store=None):
    """
    Donation centers offering any of ``services``. With a location the
    result is narrowed to ``radius_km`` and sorted nearest first.
    """
    store = store or get_store()
    filters = []
    if services:
        filters.append(('services', 'array_contains_any', _validate_services(services)))
    if active is not None:
        filters.append(('active', '==', active))
    centers = store.query(CENTERS, filters)

    if latitude is None or longitude is None:
        return sorted(centers, key=lambda c: c.get('name') or '')

    if radius_km is None:
        radius_km = getattr(settings, 'REDBLOOD_DEFAULT_SEARCH_RADIUS_KM', 50)
    return rank(
        centers,
        location={'latitude': latitude, 'longitude': longitude},
        radius_km=radius_km,
        sort_by=SORT_DISTANCE,
    )


def get_center(center_id, store=None):
    store = store or get_store()
    return store.get_or_404(CENTERS, center_id, 'Donation center')


def create_center(data, acting_user, store=None, now=None):
    store = store or get_store()
    ensure_admin(acting_user)
    if not data.get('name'):
        raise ValidationError('Donation center name is required')

    now = now or timezone.now()
    center = {
        'address': None,
        'location': None,
        'contact_info': {},
        'operating_hours': [],
        'services': [WHOLE_BLOOD],
        'walk_in_allowed': False,
        'appointment_required': True,
        'active': True,
    }
    center.update(validate_center_fields(data))
    center['created_at'] = now
    center['updated_at'] = now

    center = store.add(CENTERS, center)
    logger.info(f"Donation center {center['id']} ({center['name']}) created by {acting_user.id}")
    return center


def update_center(center_id, changes, acting_user, store=None, now=None):
    store = store or get_store()
    ensure_admin(acting_user)
    center = get_center(center_id, store)

    fields = validate_center_fields(changes)
    if 'name' in fields and not fields['name']:
        raise ValidationError('Donation center name is required')
    fields['updated_at'] = now or timezone.now()

    store.update(CENTERS, center_id, fields)
    logger.info(f"Donation center {center_id} updated by {acting_user.id}")
    return {**center, **fields}


# Appointments

def get_donation(donation_id, store=None):
    store = store or get_store()
    return store.get_or_404(DONATIONS, donation_id, 'Donation')


def last_donation_date(user_id, store=None):
    """Date of the donor's most recent completed donation, or None."""
    store = store or get_store()
    completed = store.query(DONATIONS, [('user_id', '==', user_id), ('status', '==', COMPLETED)])
    dates = [as_date(d.get('completed_at') or d.get('appointment_date')) for d in completed]
    dates = [d for d in dates if d is not None]
    return max(dates) if dates else None


def _check_interval(user_id, appointment_date, store):
    next_date = next_eligible_date(last_donation_date(user_id, store))
    if next_date is not None and as_date(appointment_date) < next_date:
        raise ValidationError(f"You can donate again from {next_date.isoformat()}")


def schedule_appointment(acting_user, data, store=None, now=None):
    store = store or get_store()
    now = now or timezone.now()

    center = get_center(data.get('donation_center_id'), store)
    if not center.get('active', True):
        raise InvalidState('Donation center is not accepting appointments')

    donation_type = _validate_donation_type(data.get('donation_type') or WHOLE_BLOOD)
    if center.get('services') and donation_type not in center['services']:
        raise ValidationError(f"{center['name']} does not offer {donation_type} donations")

    appointment_date = as_datetime(data.get('appointment_date'))
    if appointment_date is None:
        raise ValidationError('Appointment date is required')
    if appointment_date <= now:
        raise ValidationError('Appointment date must be in the future')
    _check_interval(acting_user.id, appointment_date, store)

    donation = store.add(DONATIONS, {
        'user_id': acting_user.id,
        'donation_center_id': center['id'],
        'appointment_date': appointment_date,
        'donation_type': donation_type,
        'status': SCHEDULED,
        'units': 1,
        'hemoglobin_level': None,
        'notes': data.get('notes'),
        'completed_at': None,
        'created_at': now,
        'updated_at': now,
    })
    logger.info(f"Appointment {donation['id']} scheduled for {acting_user.id} at {center['id']}")
    return donation


def upcoming_appointments(user_id, store=None):
    store = store or get_store()
    scheduled = store.query(DONATIONS, [('user_id', '==', user_id), ('status', '==', SCHEDULED)])
    return sorted(scheduled, key=lambda d: d['appointment_date'])


def donation_history(user_id, status=None, donation_type=None, store=None):
    store = store or get_store()
    filters = [('user_id', '==', user_id)]
    if status is not None:
        if status not in DONATION_STATUSES:
            raise ValidationError(f"Invalid donation status: {status!r}")
        filters.append(('status', '==', status))
    if donation_type is not None:
        filters.append(('donation_type', '==', _validate_donation_type(donation_type)))
    donations = store.query(DONATIONS, filters)
    return sorted(donations, key=lambda d: d['appointment_date'], reverse=True)


def _write_scheduled(store, donation, fields, extra_ops=()):
    try:
        store.atomic_batch([
            update_op(DONATIONS, donation['id'], fields=fields, expect={'status': SCHEDULED}),
            *extra_ops,
        ])
    except PreconditionFailed:
        raise InvalidState('Donation is no longer scheduled')
    return {**donation, **fields}


def reschedule_appointment(donation_id, acting_user, appointment_date, store=None, now=None):
    store = store or get_store()
    now = now or timezone.now()
    donation = get_donation(donation_id, store)
    ensure_owner_or_admin(acting_user, donation['user_id'])

    if donation['status'] != SCHEDULED:
        raise InvalidState('Cannot reschedule a donation that is not scheduled')

    appointment_date = as_datetime(appointment_date)
    if appointment_date is None or appointment_date <= now:
        raise ValidationError('Appointment date must be in the future')
    _check_interval(donation['user_id'], appointment_date, store)

    donation = _write_scheduled(store, donation, {'appointment_date': appointment_date, 'updated_at': now})
    logger.info(f"Appointment {donation_id} rescheduled to {appointment_date.isoformat()}")
    return donation


def cancel_appointment(donation_id, acting_user, store=None, now=None):
    store = store or get_store()
    donation = get_donation(donation_id, store)
    ensure_owner_or_admin(acting_user, donation['user_id'])

    if donation['status'] != SCHEDULED:
        raise InvalidState('Cannot cancel a donation that is not scheduled')

    donation = _write_scheduled(store, donation, {'status': CANCELLED, 'updated_at': now or timezone.now()})
    logger.info(f"Appointment {donation_id} cancelled by {acting_user.id}")
    return donation


def update_donation_status(donation_id, acting_user, status, hemoglobin_level=None, units=None,
                           notes=None, store=None, now=None):
    """
    Record the outcome of an appointment (staff only).

    Completing a donation also moves the donor's ``last_donation_date``
    forward, atomically with the donation update.
    """
    store = store or get_store()
    now = now or timezone.now()
    ensure_admin(acting_user)
    donation = get_donation(donation_id, store)

    if status not in DONATION_STATUSES:
        raise ValidationError(f"Invalid donation status: {status!r}")
    if status not in DONATION_TRANSITIONS.get(donation['status'], ()):
        raise InvalidState(f"Cannot move donation from {donation['status']} to {status}")

    fields = {'status': status, 'updated_at': now}
    if hemoglobin_level is not None:
        fields['hemoglobin_level'] = hemoglobin_level
    if units is not None:
        if isinstance(units, bool) or not isinstance(units, int) or units < 1:
            raise ValidationError('Units must be a positive integer')
        fields['units'] = units
    if notes is not None:
        fields['notes'] = notes

    extra_ops = []
    if status == COMPLETED:
        fields['completed_at'] = now
        donated_on = min(as_datetime(donation['appointment_date']), now)
        donor = store.get(USERS, donation['user_id'])
        previous = as_datetime(donor.get('last_donation_date')) if donor else None
        if donor is not None and (previous is None or donated_on > previous):
            extra_ops.append(update_op(USERS, donation['user_id'], fields={
                'last_donation_date': donated_on,
                'updated_at': now,
            }))

    donation = _write_scheduled(store, donation, fields, extra_ops)
    logger.info(f"Donation {donation_id} marked {status} by {acting_user.id}")
    return donation


# Eligibility

def check_user_eligibility(user_id, answers=None, store=None, today=None):
    """
    Run the eligibility rules for a registered donor.

    Questionnaire ``answers`` take precedence over what the profile holds.
    The last donation date comes from the profile, falling back to the
    donor's completed donations.
    """
    store = store or get_store()
    answers = answers or {}
    profile = store.get_or_404(USERS, user_id, 'User')
    medical_info = profile.get('medical_info') or {}

    snapshot = {
        'date_of_birth': profile.get('date_of_birth'),
        'weight_kg': answers.get('weight_kg', medical_info.get('weight_kg')),
        'hemoglobin': answers.get('hemoglobin'),
        'gender': answers.get('gender') or profile.get('gender'),
        'last_donation_date': profile.get('last_donation_date') or last_donation_date(user_id, store),
        'recent_illness': answers.get('recent_illness', False),
        'medications': answers.get('medications', medical_info.get('medications')),
        'recent_travel': answers.get('recent_travel', False),
        'pregnant': answers.get('pregnant', False),
    }
    return check_eligibility(snapshot, today=today)
