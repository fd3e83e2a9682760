from datetime import timedelta

import pytest

from bloodrequests import lifecycle
from redblood.exceptions import (
    InvalidBloodType,
    InvalidState,
    InvalidTransition,
    ValidationError,
)
from tests.conftest import NOW

VALID = {
    'patient_name': 'Sita Sharma',
    'blood_type': 'O-',
    'units': 1,
    'hospital': 'Patan Hospital',
    'urgency': 'critical',
}


def build(**overrides):
    request = lifecycle.new_request({**VALID, **overrides}, 'owner', now=NOW)
    request['id'] = 'req-1'
    return request


def test_new_request_is_active_and_expires_in_seven_days():
    request = build()
    assert request['status'] == lifecycle.ACTIVE
    assert request['responses'] == []
    assert request['expires_at'] == NOW + timedelta(days=7)
    assert request['created_at'] == request['updated_at'] == NOW


def test_required_by_earlier_than_default_wins():
    request = build(required_by=NOW + timedelta(days=2))
    assert request['expires_at'] == NOW + timedelta(days=2)


def test_required_by_later_than_default_is_capped():
    request = build(required_by=NOW + timedelta(days=30))
    assert request['expires_at'] == NOW + timedelta(days=7)


def test_deferred_activation_starts_pending():
    request = lifecycle.new_request(VALID, 'owner', now=NOW, activate=False)
    assert request['status'] == lifecycle.PENDING
    assert lifecycle.activate(request, NOW)['status'] == lifecycle.ACTIVE


@pytest.mark.parametrize('field', ['patient_name', 'blood_type', 'units', 'hospital', 'urgency'])
def test_missing_required_field(field):
    data = {key: value for key, value in VALID.items() if key != field}
    with pytest.raises(ValidationError):
        lifecycle.new_request(data, 'owner', now=NOW)


@pytest.mark.parametrize('units', [0, -1, 1.5, True, '2'])
def test_units_must_be_positive_integer(units):
    with pytest.raises(ValidationError):
        build(units=units)


def test_unknown_blood_type():
    with pytest.raises(InvalidBloodType):
        build(blood_type='Z+')


def test_unknown_urgency():
    with pytest.raises(ValidationError):
        build(urgency='whenever')


def test_required_by_in_the_past():
    with pytest.raises(ValidationError):
        build(required_by=NOW - timedelta(hours=1))


def test_fulfill_sets_who_and_when():
    changes = lifecycle.fulfill(build(), 'donor-7', NOW)
    assert changes['status'] == lifecycle.FULFILLED
    assert changes['fulfilled_by'] == 'donor-7'
    assert changes['fulfilled_at'] == NOW


def test_fulfill_cancelled_request_is_invalid_transition():
    request = {**build(), 'status': lifecycle.CANCELLED}
    with pytest.raises(InvalidTransition):
        lifecycle.fulfill(request, 'donor-7', NOW)


def test_cancel_fulfilled_request_fails():
    request = {**build(), 'status': lifecycle.FULFILLED}
    with pytest.raises(InvalidState):
        lifecycle.cancel(request, NOW)


def test_pending_request_can_be_cancelled_but_not_fulfilled():
    request = {**build(), 'status': lifecycle.PENDING}
    assert lifecycle.cancel(request, NOW)['status'] == lifecycle.CANCELLED
    with pytest.raises(InvalidTransition):
        lifecycle.fulfill(request, 'donor', NOW)


@pytest.mark.parametrize('status', sorted(lifecycle.TERMINAL_STATUSES))
def test_terminal_states_accept_nothing(status):
    request = {**build(), 'status': status}
    for target in lifecycle.REQUEST_STATUSES:
        with pytest.raises(InvalidTransition):
            lifecycle.check_transition(request, target)


def test_expiry_is_lazy():
    request = build()
    assert lifecycle.expire_if_due(request, NOW + timedelta(days=7)) == {}
    changes = lifecycle.expire_if_due(request, NOW + timedelta(days=7, seconds=1))
    assert changes['status'] == lifecycle.EXPIRED


def test_only_active_requests_expire():
    request = {**build(), 'status': lifecycle.FULFILLED}
    assert lifecycle.expire_if_due(request, NOW + timedelta(days=30)) == {}


def test_update_recomputes_expiry():
    request = build()
    changes = lifecycle.update(request, {'required_by': NOW + timedelta(days=3), 'units': 4}, NOW)
    assert changes['units'] == 4
    assert changes['expires_at'] == NOW + timedelta(days=3)


def test_update_requires_active():
    request = {**build(), 'status': lifecycle.EXPIRED}
    with pytest.raises(InvalidState):
        lifecycle.update(request, {'units': 3}, NOW)


def test_update_rejects_other_fields():
    with pytest.raises(ValidationError):
        lifecycle.update(build(), {'blood_type': 'A+'}, NOW)


def test_ttl_comes_from_settings(settings):
    settings.REDBLOOD_REQUEST_TTL_DAYS = 3
    assert build()['expires_at'] == NOW + timedelta(days=3)
