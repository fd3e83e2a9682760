import math
from datetime import date, timedelta
from unittest import mock

import pytest

from accounts import services
from accounts.permissions import ADMIN, DONOR, RECIPIENT, ActingUser, acting_user_from
from bloodrequests import services as request_services
from donations import services as donation_services
from redblood.exceptions import InvalidState, NotFound, Unauthorized, ValidationError
from tests.conftest import NOW

KM_PER_DEGREE = 6371 * math.pi / 180


def at_km(km):
    return {'latitude': km / KM_PER_DEGREE, 'longitude': 0.0}


def test_register_profile(store):
    profile = services.register_profile(ActingUser('new-user'), {
        'email': 'hari@example.com',
        'full_name': 'Hari Prasad',
        'blood_type': 'AB-',
        'date_of_birth': date(1995, 4, 12),
        'role': RECIPIENT,
    }, now=NOW)

    assert profile['id'] == 'new-user'
    assert profile['role'] == RECIPIENT
    assert profile['date_of_birth'] == '1995-04-12'
    assert profile['notification_preferences'] == {'email': True, 'push': True, 'sms': False}
    assert store.get('users', 'new-user')['blood_type'] == 'AB-'


def test_register_twice(make_user):
    make_user('donor')
    with pytest.raises(InvalidState):
        services.register_profile(ActingUser('donor'), {'email': 'a@b.c', 'full_name': 'A'})


@pytest.mark.parametrize('data', [
    {'full_name': 'No Email'},
    {'email': 'x@example.com', 'full_name': 'Boss', 'role': ADMIN},
    {'email': 'x@example.com', 'full_name': 'Typo', 'blood_type': 'AB'},
    {'email': 'x@example.com', 'full_name': 'Future', 'date_of_birth': '2999-01-01'},
    {'email': 'x@example.com', 'full_name': 'Half', 'location': {'latitude': 1}},
])
def test_register_rejects_bad_data(data):
    with pytest.raises(ValidationError):
        services.register_profile(ActingUser('someone'), data)


def test_profile_is_private(make_user, donor, admin):
    make_user('recipient', role=RECIPIENT)
    with pytest.raises(Unauthorized):
        services.get_profile('recipient', donor)
    assert services.get_profile('recipient', admin)['role'] == RECIPIENT


def test_only_admin_changes_roles(make_user, donor, admin):
    make_user('donor')
    with pytest.raises(ValidationError):
        services.update_profile('donor', {'role': ADMIN}, donor)
    assert services.update_profile('donor', {'role': RECIPIENT}, admin)['role'] == RECIPIENT


def test_update_merges_medical_info(store, make_user, donor):
    make_user('donor', medical_info={'weight_kg': 70})
    services.update_profile('donor', {'medical_info': {'medications': ['iron']}}, donor)
    assert store.get('users', 'donor')['medical_info'] == {'weight_kg': 70, 'medications': ['iron']}


def test_notification_preferences_merge(make_user):
    make_user('donor')
    merged = services.update_notification_preferences('donor', {'push': False})
    assert merged == {'email': True, 'push': False, 'sms': False}
    with pytest.raises(ValidationError):
        services.update_notification_preferences('donor', {'pigeon': True})
    with pytest.raises(ValidationError):
        services.update_notification_preferences('donor', {'email': 'yes'})


def test_register_device_is_idempotent(store, make_user):
    make_user('donor')
    services.register_device('donor', 'token-1')
    services.register_device('donor', 'token-1')
    services.register_device('donor', 'token-2')
    assert store.get('users', 'donor')['fcm_tokens'] == ['token-1', 'token-2']


def test_register_device_for_missing_user():
    with pytest.raises(NotFound):
        services.register_device('ghost', 'token')


def test_delete_account_cascades(store, make_user, make_request, admin):
    make_user('recipient', blood_type='A+', role=RECIPIENT)
    make_user('donor', blood_type='O-')
    make_user('helper', blood_type='O+')

    own = make_request(user_id='donor')
    helper_response = request_services.respond_to_request(own['id'], ActingUser('helper'), now=NOW)

    theirs = make_request(user_id='recipient')
    my_response = request_services.respond_to_request(theirs['id'], ActingUser('donor'), now=NOW)
    kept_response = request_services.respond_to_request(theirs['id'], ActingUser('helper'), now=NOW)

    center = donation_services.create_center({'name': 'Bank'}, admin, now=NOW)
    donation = donation_services.schedule_appointment(
        ActingUser('donor'), {'donation_center_id': center['id'], 'appointment_date': NOW + timedelta(days=1)},
        now=NOW)

    services.delete_account(ActingUser('donor', DONOR))

    assert store.get('users', 'donor') is None
    assert store.get('blood_requests', own['id']) is None
    assert store.get('request_responses', helper_response['id']) is None
    assert store.get('request_responses', my_response['id']) is None
    assert store.get('donations', donation['id']) is None
    assert store.get('request_responses', kept_response['id']) is not None
    assert store.get('blood_requests', theirs['id'])['responses'] == [kept_response['id']]


def test_delete_missing_account():
    with pytest.raises(NotFound):
        services.delete_account(ActingUser('ghost'))


def test_eligible_donors(make_user):
    today = date(2024, 6, 1)
    make_user('near-o-neg', blood_type='O-', location=at_km(2))
    make_user('far-a-neg', blood_type='A-', location=at_km(30))
    make_user('too-far', blood_type='O-', location=at_km(200))
    make_user('wrong-type', blood_type='B+', location=at_km(1))
    make_user('recent', blood_type='O-', location=at_km(1), last_donation_date='2024-05-25')
    make_user('inactive', blood_type='O-', location=at_km(1), active=False)
    make_user('staff', blood_type='O-', location=at_km(1), role=ADMIN)

    found = services.eligible_donors('A-', latitude=0.0, longitude=0.0, radius_km=50, today=today)
    assert [donor['id'] for donor in found] == ['near-o-neg', 'far-a-neg']
    assert found[0]['distance'] == pytest.approx(2)
    assert set(found[0]) == {'id', 'full_name', 'blood_type', 'distance'}


def test_eligible_donors_without_location(make_user):
    make_user('anywhere', blood_type='O-')
    found = services.eligible_donors('AB+', today=date(2024, 6, 1))
    assert found == [{'id': 'anywhere', 'full_name': 'Anywhere', 'blood_type': 'O-', 'distance': None}]


def test_role_comes_from_claim_then_profile(make_user):
    make_user('7', role=ADMIN)
    with_claim = mock.Mock(spec=['id', 'is_authenticated', 'role'], id=7, is_authenticated=True, role=RECIPIENT)
    without_claim = mock.Mock(spec=['id', 'is_authenticated'], id=7, is_authenticated=True)
    unknown = mock.Mock(spec=['id', 'is_authenticated'], id=8, is_authenticated=True)

    assert acting_user_from(mock.Mock(user=with_claim)) == ActingUser('7', RECIPIENT)
    assert acting_user_from(mock.Mock(user=without_claim)) == ActingUser('7', ADMIN)
    assert acting_user_from(mock.Mock(user=unknown)) == ActingUser('8', DONOR)
