# accounts/services.py
"""
User profiles stored in the ``users`` collection, keyed by the identity
provider's uid.
"""
import logging

from django.utils import timezone

from accounts.permissions import ADMIN, DONOR, RECIPIENT, ROLES, ensure_owner_or_admin
from algorithms.blood_compatibility import compatible_donors_for, validate_blood_type
from algorithms.eligibility import as_date
from algorithms.haversine import location_coords
from algorithms.matching import SORT_DISTANCE, match_donors
from bloodrequests.services import REQUESTS, RESPONSES, default_radius, get_request_responses
from donations.services import DONATIONS
from redblood.exceptions import InvalidState, ValidationError
from store.base import delete_op, get_store, update_op

logger = logging.getLogger(__name__)

USERS = 'users'

GENDERS = ('male', 'female', 'other')
NOTIFICATION_CHANNELS = ('email', 'push', 'sms')
DEFAULT_NOTIFICATION_PREFERENCES = {'email': True, 'push': True, 'sms': False}

PROFILE_FIELDS = (
    'full_name', 'phone_number', 'blood_type', 'date_of_birth', 'gender',
    'address', 'location', 'notification_preferences', 'medical_info',
)
MEDICAL_FIELDS = ('weight_kg', 'medications', 'conditions')


def _validate_notification_preferences(preferences, current=None):
    if not isinstance(preferences, dict):
        raise ValidationError('Notification preferences must be an object')
    unknown = set(preferences) - set(NOTIFICATION_CHANNELS)
    if unknown:
        raise ValidationError(f"Unknown notification channels: {', '.join(sorted(unknown))}")
    merged = dict(current or DEFAULT_NOTIFICATION_PREFERENCES)
    for channel, enabled in preferences.items():
        if not isinstance(enabled, bool):
            raise ValidationError(f"Notification preference '{channel}' must be true or false")
        merged[channel] = enabled
    return merged


def _validate_medical_info(medical_info, current=None):
    if not isinstance(medical_info, dict):
        raise ValidationError('Medical info must be an object')
    unknown = set(medical_info) - set(MEDICAL_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown medical info fields: {', '.join(sorted(unknown))}")
    merged = dict(current or {})
    merged.update(medical_info)
    weight = merged.get('weight_kg')
    if weight is not None and (isinstance(weight, bool) or not isinstance(weight, (int, float)) or weight <= 0):
        raise ValidationError('Weight must be a positive number')
    return merged


def _clean_profile_fields(data, current=None):
    current = current or {}
    fields = {key: data[key] for key in PROFILE_FIELDS if key in data}

    if fields.get('blood_type') is not None:
        validate_blood_type(fields['blood_type'])

    if fields.get('date_of_birth') is not None:
        date_of_birth = as_date(fields['date_of_birth'])
        if date_of_birth >= timezone.localdate():
            raise ValidationError('Date of birth must be in the past')
        # Stored as ISO text; the document store has no plain date type
        fields['date_of_birth'] = date_of_birth.isoformat()

    if fields.get('gender') is not None and fields['gender'] not in GENDERS:
        raise ValidationError(f"Gender must be one of {', '.join(GENDERS)}")

    if fields.get('location') is not None:
        coords = location_coords(fields['location']) if isinstance(fields['location'], dict) else None
        if coords is None:
            raise ValidationError('Location needs both latitude and longitude')
        fields['location'] = {'latitude': coords[0], 'longitude': coords[1]}

    if 'notification_preferences' in fields:
        fields['notification_preferences'] = _validate_notification_preferences(
            fields['notification_preferences'], current.get('notification_preferences'))

    if 'medical_info' in fields:
        fields['medical_info'] = _validate_medical_info(fields['medical_info'], current.get('medical_info'))

    return fields


def register_profile(acting_user, data, store=None, now=None):
    """
    Create the profile for an identity-provider account. Self-registration
    can only pick the donor or recipient role.
    """
    store = store or get_store()
    now = now or timezone.now()

    if store.get(USERS, acting_user.id) is not None:
        raise InvalidState('Profile already exists')

    for field in ('email', 'full_name'):
        if not data.get(field):
            raise ValidationError(f"{field} is required")

    role = data.get('role') or DONOR
    if role not in (DONOR, RECIPIENT):
        raise ValidationError('Role must be donor or recipient')

    profile = {
        'email': data['email'],
        'phone_number': None,
        'blood_type': None,
        'date_of_birth': None,
        'gender': None,
        'address': None,
        'location': None,
        'role': role,
        'notification_preferences': dict(DEFAULT_NOTIFICATION_PREFERENCES),
        'fcm_tokens': [],
        'medical_info': {},
        'last_donation_date': None,
        'active': True,
    }
    profile.update(_clean_profile_fields(data))
    profile['created_at'] = now
    profile['updated_at'] = now

    store.set(USERS, acting_user.id, profile)
    logger.info(f"Profile registered for {acting_user.id} as {role}")
    return {'id': acting_user.id, **profile}


def get_profile(user_id, acting_user, store=None):
    store = store or get_store()
    ensure_owner_or_admin(acting_user, user_id)
    return store.get_or_404(USERS, user_id, 'User')


def update_profile(user_id, changes, acting_user, store=None, now=None):
    store = store or get_store()
    ensure_owner_or_admin(acting_user, user_id)
    profile = store.get_or_404(USERS, user_id, 'User')

    fields = _clean_profile_fields(changes, profile)
    if 'role' in changes:
        if not acting_user.is_admin:
            raise ValidationError('Role can only be changed by an admin')
        if changes['role'] not in ROLES:
            raise ValidationError(f"Role must be one of {', '.join(ROLES)}")
        fields['role'] = changes['role']
    fields['updated_at'] = now or timezone.now()

    store.update(USERS, user_id, fields)
    logger.info(f"Profile {user_id} updated by {acting_user.id}: {', '.join(sorted(set(fields) - {'updated_at'}))}")
    return {**profile, **fields}


def update_notification_preferences(user_id, preferences, store=None, now=None):
    store = store or get_store()
    profile = store.get_or_404(USERS, user_id, 'User')
    merged = _validate_notification_preferences(preferences, profile.get('notification_preferences'))
    store.update(USERS, user_id, {
        'notification_preferences': merged,
        'updated_at': now or timezone.now(),
    })
    return merged


def register_device(user_id, token, store=None, now=None):
    """Remember an FCM device token for push notifications."""
    store = store or get_store()
    if not token or not isinstance(token, str):
        raise ValidationError('Device token is required')
    store.get_or_404(USERS, user_id, 'User')
    store.atomic_batch([
        update_op(USERS, user_id, fields={'updated_at': now or timezone.now()}, append={'fcm_tokens': [token]}),
    ])
    logger.debug(f"Device token registered for {user_id}")


def delete_account(acting_user, store=None):
    """
    Delete the caller's profile together with their requests (and every
    response to them), their own responses and their donations.
    The profile is deleted last.
    """
    store = store or get_store()
    user_id = acting_user.id
    store.get_or_404(USERS, user_id, 'User')

    ops = []
    owned_requests = store.query(REQUESTS, [('user_id', '==', user_id)])
    owned_ids = {request['id'] for request in owned_requests}
    for request in owned_requests:
        ops.extend(delete_op(RESPONSES, response['id']) for response in get_request_responses(request['id'], store))
        ops.append(delete_op(REQUESTS, request['id']))

    own_responses = [
        response for response in store.query(RESPONSES, [('user_id', '==', user_id)])
        if response['request_id'] not in owned_ids
    ]
    removed_by_request = {}
    for response in own_responses:
        ops.append(delete_op(RESPONSES, response['id']))
        removed_by_request.setdefault(response['request_id'], set()).add(response['id'])

    for request_id, removed in removed_by_request.items():
        request = store.get(REQUESTS, request_id)
        if request is not None:
            remaining = [rid for rid in request.get('responses', []) if rid not in removed]
            ops.append(update_op(REQUESTS, request_id, fields={'responses': remaining}))

    ops.extend(delete_op(DONATIONS, donation['id'])
               for donation in store.query(DONATIONS, [('user_id', '==', user_id)]))
    ops.append(delete_op(USERS, user_id))

    store.chunked_batch(ops)
    logger.info(f"Account {user_id} deleted ({len(owned_requests)} requests, {len(own_responses)} responses)")


def eligible_donors(recipient_blood_type, latitude=None, longitude=None, radius_km=None,
                    limit=None, store=None, today=None):
    """
    Active donors who can give to ``recipient_blood_type`` and are outside
    the donation interval today. With a location, nearest first.
    """
    store = store or get_store()
    donor_types = compatible_donors_for(recipient_blood_type)
    candidates = store.query(USERS, [
        ('blood_type', 'in', sorted(donor_types)),
        ('active', '==', True),
    ])
    candidates = [user for user in candidates if user.get('role') != ADMIN]

    location = None
    sort_by = None
    if latitude is not None and longitude is not None:
        location = {'latitude': latitude, 'longitude': longitude}
        radius_km = radius_km if radius_km is not None else default_radius()
        sort_by = SORT_DISTANCE
    else:
        radius_km = None

    donors = match_donors(
        candidates,
        recipient_blood_type=recipient_blood_type,
        available_on=today or timezone.localdate(),
        location=location,
        radius_km=radius_km,
        sort_by=sort_by,
        limit=limit,
    )
    return [
        {
            'id': donor['id'],
            'full_name': donor.get('full_name'),
            'blood_type': donor.get('blood_type'),
            'distance': donor.get('distance'),
        }
        for donor in donors
    ]
