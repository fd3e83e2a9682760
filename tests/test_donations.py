from datetime import date, timedelta

import pytest

from donations import services
from redblood.exceptions import InvalidState, NotFound, Unauthorized, ValidationError
from tests.conftest import NOW

KATHMANDU = {'latitude': 27.7172, 'longitude': 85.3240}
POKHARA = {'latitude': 28.2096, 'longitude': 83.9856}


@pytest.fixture
def center(admin):
    return services.create_center({
        'name': 'Central Blood Bank',
        'address': 'Exhibition Road',
        'location': KATHMANDU,
        'services': ['whole_blood', 'platelets'],
        'operating_hours': [{'day': 'sunday', 'open': '08:00', 'close': '17:00'}],
    }, admin, now=NOW)


def schedule(acting_user, center, days=3, **data):
    return services.schedule_appointment(acting_user, {
        'donation_center_id': center['id'],
        'appointment_date': NOW + timedelta(days=days),
        **data,
    }, now=NOW)


def test_only_admins_manage_centers(donor):
    with pytest.raises(Unauthorized):
        services.create_center({'name': 'Pop-up'}, donor, now=NOW)


def test_center_defaults(center):
    assert center['active'] is True
    assert center['appointment_required'] is True
    assert services.get_center(center['id'])['services'] == ['whole_blood', 'platelets']


def test_center_rejects_unknown_service(admin):
    with pytest.raises(ValidationError):
        services.create_center({'name': 'Odd', 'services': ['bone_marrow']}, admin, now=NOW)


def test_list_centers_by_service_and_distance(admin, center):
    services.create_center({'name': 'Pokhara Center', 'location': POKHARA, 'services': ['plasma']}, admin, now=NOW)
    services.create_center({'name': 'Closed', 'location': KATHMANDU, 'active': False}, admin, now=NOW)

    assert [c['name'] for c in services.list_centers()] == ['Central Blood Bank', 'Pokhara Center']
    assert [c['name'] for c in services.list_centers(services=['plasma'])] == ['Pokhara Center']

    nearby = services.list_centers(latitude=27.70, longitude=85.32, radius_km=20)
    assert [c['name'] for c in nearby] == ['Central Blood Bank']
    assert nearby[0]['distance'] < 5

    everything = services.list_centers(latitude=27.70, longitude=85.32, radius_km=500)
    assert [c['name'] for c in everything] == ['Central Blood Bank', 'Pokhara Center']


def test_update_center(admin, center):
    updated = services.update_center(center['id'], {'walk_in_allowed': True}, admin, now=NOW)
    assert updated['walk_in_allowed'] is True
    with pytest.raises(NotFound):
        services.update_center('missing', {'active': False}, admin)


def test_schedule_appointment(donor, center):
    donation = schedule(donor, center, notes='First time')
    assert donation['status'] == services.SCHEDULED
    assert donation['donation_type'] == services.WHOLE_BLOOD
    assert services.upcoming_appointments('donor') == [donation]


def test_schedule_requires_future_date(donor, center):
    with pytest.raises(ValidationError):
        schedule(donor, center, days=-1)


def test_schedule_requires_offered_service(donor, center):
    with pytest.raises(ValidationError):
        schedule(donor, center, donation_type='plasma')


def test_schedule_at_inactive_center(admin, donor, center):
    services.update_center(center['id'], {'active': False}, admin, now=NOW)
    with pytest.raises(InvalidState):
        schedule(donor, center)


def test_schedule_at_missing_center(donor):
    with pytest.raises(NotFound):
        services.schedule_appointment(donor, {'donation_center_id': 'nowhere'}, now=NOW)


def test_scheduling_does_not_touch_last_donation_date(store, make_user, donor, center):
    make_user('donor')
    schedule(donor, center)
    assert store.get('users', 'donor')['last_donation_date'] is None
    assert services.last_donation_date('donor') is None


def test_completion_records_last_donation(store, make_user, admin, donor, center):
    make_user('donor')
    donation = schedule(donor, center, days=1)
    later = NOW + timedelta(days=2)

    completed = services.update_donation_status(donation['id'], admin, services.COMPLETED,
                                                hemoglobin_level=14.1, now=later)
    assert completed['status'] == services.COMPLETED
    assert completed['completed_at'] == later
    assert store.get('users', 'donor')['last_donation_date'] == NOW + timedelta(days=1)
    assert services.last_donation_date('donor') == date(2024, 6, 3)


def test_interval_blocks_early_rebooking(make_user, admin, donor, center):
    make_user('donor')
    donation = schedule(donor, center, days=1)
    services.update_donation_status(donation['id'], admin, services.COMPLETED, now=NOW + timedelta(days=1, hours=2))

    with pytest.raises(ValidationError):
        schedule(donor, center, days=30)
    assert schedule(donor, center, days=60)['status'] == services.SCHEDULED


def test_status_update_is_admin_only(donor, center):
    donation = schedule(donor, center)
    with pytest.raises(Unauthorized):
        services.update_donation_status(donation['id'], donor, services.COMPLETED, now=NOW)


def test_finished_donations_are_final(admin, donor, center):
    donation = schedule(donor, center)
    services.update_donation_status(donation['id'], admin, services.NO_SHOW, now=NOW)
    with pytest.raises(InvalidState):
        services.update_donation_status(donation['id'], admin, services.COMPLETED, now=NOW)


def test_reschedule_and_cancel(donor, center):
    donation = schedule(donor, center)
    moved = services.reschedule_appointment(donation['id'], donor, NOW + timedelta(days=10), now=NOW)
    assert moved['appointment_date'] == NOW + timedelta(days=10)

    cancelled = services.cancel_appointment(donation['id'], donor, now=NOW)
    assert cancelled['status'] == services.CANCELLED
    assert services.upcoming_appointments('donor') == []

    with pytest.raises(InvalidState):
        services.cancel_appointment(donation['id'], donor, now=NOW)


def test_strangers_cannot_cancel(recipient, donor, center):
    donation = schedule(donor, center)
    with pytest.raises(Unauthorized):
        services.cancel_appointment(donation['id'], recipient, now=NOW)


def test_history_filters(admin, donor, center):
    first = schedule(donor, center, days=2)
    second = schedule(donor, center, days=5, donation_type='platelets')
    services.cancel_appointment(first['id'], donor, now=NOW)

    assert [d['id'] for d in services.donation_history('donor')] == [second['id'], first['id']]
    assert [d['id'] for d in services.donation_history('donor', status='cancelled')] == [first['id']]
    assert [d['id'] for d in services.donation_history('donor', donation_type='platelets')] == [second['id']]
    with pytest.raises(ValidationError):
        services.donation_history('donor', status='lost')


def test_user_eligibility_uses_profile_and_answers(make_user):
    make_user('donor', date_of_birth='1990-01-01', medical_info={'weight_kg': 45},
              last_donation_date='2024-05-20')
    result = services.check_user_eligibility('donor', {'hemoglobin': 14}, today=date(2024, 6, 1))
    assert not result['eligible']
    assert len(result['reasons']) == 2
    assert result['next_eligible_date'] == date(2024, 7, 15)

    result = services.check_user_eligibility('donor', {'weight_kg': 60}, today=date(2024, 8, 1))
    assert result['eligible']


def test_user_eligibility_for_missing_user():
    with pytest.raises(NotFound):
        services.check_user_eligibility('ghost')


def test_validate_center_fields():
    fields = services.validate_center_fields({
        'name': 'Bank',
        'location': {'latitude': 27.7, 'longitude': 85.3},
        'unknown': 'dropped',
    })
    assert 'unknown' not in fields
    assert fields['location'] == {'latitude': 27.7, 'longitude': 85.3}
    with pytest.raises(ValidationError):
        services.validate_center_fields({'services': ['bone_marrow']})
    with pytest.raises(ValidationError):
        services.validate_center_fields({'operating_hours': 'always'})
