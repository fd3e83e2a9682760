import math
from datetime import date, datetime, timedelta, timezone as dt_timezone

import pytest

from algorithms.matching import match_donors, match_requests
from redblood.exceptions import InvalidBloodType, InvalidCoordinate, ValidationError

KM_PER_DEGREE = 6371 * math.pi / 180
ORIGIN = {'latitude': 0.0, 'longitude': 0.0}
BASE = datetime(2024, 6, 1, tzinfo=dt_timezone.utc)


def at_km(km):
    return {'latitude': km / KM_PER_DEGREE, 'longitude': 0.0}


def request(request_id, km=None, blood_type='A+', urgency='medium', status='active', minutes=0):
    return {
        'id': request_id,
        'blood_type': blood_type,
        'urgency': urgency,
        'status': status,
        'location': at_km(km) if km is not None else None,
        'created_at': BASE + timedelta(minutes=minutes),
    }


def ids(records):
    return [record['id'] for record in records]


def test_radius_and_distance_sort():
    candidates = [request('15km', 15), request('2km', 2), request('8km', 8)]
    found = match_requests(candidates, location=ORIGIN, radius_km=10, sort_by='distance')
    assert ids(found) == ['2km', '8km']
    assert found[0]['distance'] == pytest.approx(2)
    assert found[1]['distance'] == pytest.approx(8)


def test_candidates_without_location_are_dropped_by_geo_filter():
    found = match_requests([request('nowhere'), request('near', 1)], location=ORIGIN, radius_km=5)
    assert ids(found) == ['near']


def test_inputs_are_not_mutated():
    candidates = [request('a', 1)]
    match_requests(candidates, location=ORIGIN, radius_km=5)
    assert 'distance' not in candidates[0]


def test_default_status_is_active():
    candidates = [request('open'), request('done', status='fulfilled')]
    assert ids(match_requests(candidates)) == ['open']
    assert set(ids(match_requests(candidates, status=None))) == {'open', 'done'}


def test_default_sort_is_newest_first():
    candidates = [request('old', minutes=0), request('new', minutes=10), request('mid', minutes=5)]
    assert ids(match_requests(candidates)) == ['new', 'mid', 'old']
    assert ids(match_requests(candidates, order='asc')) == ['old', 'mid', 'new']


def test_urgency_sort_is_global_before_limit():
    candidates = [
        request('low', urgency='low', minutes=3),
        request('high', urgency='high', minutes=2),
        request('medium', urgency='medium', minutes=1),
        request('critical', urgency='critical', minutes=0),
    ]
    found = match_requests(candidates, sort_by='urgency', limit=2)
    assert ids(found) == ['critical', 'high']


def test_urgency_ties_follow_creation_order():
    candidates = [
        request('newer', urgency='high', minutes=5),
        request('older', urgency='high', minutes=1),
        request('critical', urgency='critical', minutes=9),
    ]
    assert ids(match_requests(candidates, sort_by='urgency')) == ['critical', 'older', 'newer']


def test_distance_ties_follow_creation_order():
    candidates = [request('newer', 3, minutes=5), request('older', 3, minutes=1)]
    found = match_requests(candidates, location=ORIGIN, radius_km=10, sort_by='distance')
    assert ids(found) == ['older', 'newer']


def test_donor_blood_type_uses_compatibility():
    candidates = [
        request('a-neg', blood_type='A-'),
        request('ab-pos', blood_type='AB+'),
        request('o-neg', blood_type='O-'),
    ]
    found = match_requests(candidates, donor_blood_type='A-')
    assert set(ids(found)) == {'a-neg', 'ab-pos'}


def test_distance_sort_needs_location():
    with pytest.raises(ValidationError):
        match_requests([request('a', 1)], sort_by='distance')


@pytest.mark.parametrize('kwargs', [
    {'sort_by': 'name'},
    {'order': 'sideways'},
    {'limit': 0},
    {'urgency': 'meh'},
    {'status': 'lost'},
    {'location': ORIGIN, 'radius_km': -1},
])
def test_bad_query_values(kwargs):
    with pytest.raises(ValidationError):
        match_requests([request('a', 1)], **kwargs)


def test_bad_query_location():
    with pytest.raises(InvalidCoordinate):
        match_requests([request('a', 1)], location={'latitude': 95, 'longitude': 0}, radius_km=5)


def test_bad_blood_type_filter():
    with pytest.raises(InvalidBloodType):
        match_requests([request('a')], blood_type='X')


def donor(donor_id, blood_type, km=None, last_donation=None):
    return {
        'id': donor_id,
        'blood_type': blood_type,
        'location': at_km(km) if km is not None else None,
        'last_donation_date': last_donation,
        'created_at': BASE,
    }


def test_match_donors_by_recipient_type():
    candidates = [donor('o-neg', 'O-'), donor('b-pos', 'B+'), donor('a-neg', 'A-')]
    found = match_donors(candidates, recipient_blood_type='A-')
    assert set(ids(found)) == {'o-neg', 'a-neg'}


def test_match_donors_skips_recent_donors():
    today = date(2024, 6, 1)
    candidates = [
        donor('rested', 'O+', last_donation=today - timedelta(days=60)),
        donor('recent', 'O+', last_donation=today - timedelta(days=10)),
        donor('never', 'O+'),
    ]
    found = match_donors(candidates, available_on=today)
    assert set(ids(found)) == {'rested', 'never'}


def test_match_donors_nearest_first():
    candidates = [donor('far', 'O+', 20), donor('near', 'O+', 3)]
    found = match_donors(candidates, location=ORIGIN, radius_km=50, sort_by='distance')
    assert ids(found) == ['near', 'far']


def test_donors_cannot_be_sorted_by_urgency():
    with pytest.raises(ValidationError):
        match_donors([donor('a', 'O+')], sort_by='urgency')
