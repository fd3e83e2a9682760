"""
Matching queries over blood requests and donor profiles.

Candidates come from the document store already narrowed by cheap equality
filters; everything here runs in memory over that candidate list:

1. equality filters (blood type, status, urgency)
2. compatibility filters (set membership through the compatibility tables)
3. geo radius filter, attaching ``distance`` to each surviving record
4. sort by distance, urgency or creation time
5. limit

Sorting always happens over the full candidate list before the limit is
applied, so urgency ranking is global rather than per page.
"""
from datetime import datetime, timezone as dt_timezone

from algorithms.blood_compatibility import (
    compatible_donors_for,
    compatible_recipients_for,
    validate_blood_type,
)
from algorithms.eligibility import as_date, next_eligible_date
from algorithms.haversine import validate_coordinate, within_radius
from algorithms.priority import urgency_rank, validate_urgency
from bloodrequests.lifecycle import ACTIVE, REQUEST_STATUSES
from redblood.exceptions import ValidationError

SORT_DISTANCE = 'distance'
SORT_URGENCY = 'urgency'
SORT_CREATED_AT = 'created_at'
SORT_FIELDS = (SORT_DISTANCE, SORT_URGENCY, SORT_CREATED_AT)
ORDERS = ('asc', 'desc')

# Sort key for records missing a creation time
EPOCH = datetime(1970, 1, 1, tzinfo=dt_timezone.utc)


def _validate_sort(sort_by, order, location, radius_km):
    if sort_by is not None and sort_by not in SORT_FIELDS:
        raise ValidationError(f"Cannot sort by {sort_by!r}")
    if order not in ORDERS:
        raise ValidationError(f"Order must be one of {', '.join(ORDERS)}")
    if sort_by == SORT_DISTANCE and (location is None or radius_km is None):
        raise ValidationError('Sorting by distance requires a location and radius')


def _validate_limit(limit):
    if limit is None:
        return None
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValidationError('Limit must be a positive integer')
    return limit


def _apply_geo(records, location, radius_km):
    """Drop records outside the radius and attach the computed distance."""
    if location is None or radius_km is None:
        return records

    if isinstance(location, dict):
        lat, lon = location.get('latitude'), location.get('longitude')
    else:
        lat, lon = location
    lat, lon = validate_coordinate(lat, lon)

    try:
        radius_km = float(radius_km)
    except (TypeError, ValueError):
        raise ValidationError('Radius must be a number')
    if radius_km <= 0:
        raise ValidationError('Radius must be positive')

    located = []
    for record, distance in within_radius(lat, lon, records, radius_km):
        record = dict(record)
        record['distance'] = distance
        located.append(record)
    return located


def _created(record):
    return record.get('created_at') or EPOCH


def _sort(records, sort_by, order):
    # Ties on distance or urgency fall back to creation order
    if sort_by == SORT_DISTANCE:
        return sorted(records, key=lambda r: (r['distance'], _created(r)))
    if sort_by == SORT_URGENCY:
        return sorted(records, key=lambda r: (urgency_rank(r.get('urgency')), _created(r)))
    # sorted() is stable with reverse=True too, so ties keep insertion order
    return sorted(records, key=_created, reverse=(order == 'desc'))


def rank(records, location=None, radius_km=None, sort_by=None, order='desc', limit=None):
    """
    Apply the geo filter, sort and limit shared by every matching query.
    Input records are never mutated; surviving records are copies.
    """
    _validate_sort(sort_by, order, location, radius_km)
    limit = _validate_limit(limit)

    records = [dict(record) for record in records]
    records = _apply_geo(records, location, radius_km)
    records = _sort(records, sort_by, order)

    if limit is not None:
        records = records[:limit]
    return records


def match_requests(candidates, blood_type=None, status=ACTIVE, urgency=None,
                   donor_blood_type=None, location=None, radius_km=None,
                   sort_by=None, order='desc', limit=None):
    """
    Filter and rank blood requests.

    Args:
        candidates: iterable of request documents
        blood_type: exact blood type requested
        status: request status, ``active`` unless overridden (None disables)
        urgency: exact urgency level
        donor_blood_type: keep only requests this donor can give to
        location: query point, ``{'latitude', 'longitude'}`` or a (lat, lon) pair
        radius_km: search radius, used together with location
        sort_by: 'distance', 'urgency' or 'created_at' (default)
        order: 'asc' or 'desc' for created_at ordering
        limit: maximum number of results

    Returns:
        list of request documents, with ``distance`` when a location was given
    """
    if blood_type is not None:
        validate_blood_type(blood_type)
    if status is not None and status not in REQUEST_STATUSES:
        raise ValidationError(f"Invalid status: {status!r}")
    if urgency is not None:
        validate_urgency(urgency)

    recipients = compatible_recipients_for(donor_blood_type) if donor_blood_type else None

    filtered = [
        request for request in candidates
        if (blood_type is None or request.get('blood_type') == blood_type)
        and (status is None or request.get('status') == status)
        and (urgency is None or request.get('urgency') == urgency)
        and (recipients is None or request.get('blood_type') in recipients)
    ]

    return rank(filtered, location, radius_km, sort_by, order, limit)


def match_donors(candidates, blood_type=None, recipient_blood_type=None,
                 available_on=None, location=None, radius_km=None,
                 sort_by=None, order='desc', limit=None):
    """
    Filter and rank donor profiles.

    ``recipient_blood_type`` narrows to donors who can give to that
    recipient (set membership rather than equality). ``available_on`` drops
    donors still inside the donation interval on that date.
    """
    if sort_by == SORT_URGENCY:
        raise ValidationError('Donors cannot be sorted by urgency')
    if blood_type is not None:
        validate_blood_type(blood_type)

    donors_for = compatible_donors_for(recipient_blood_type) if recipient_blood_type else None
    available_on = as_date(available_on)

    filtered = []
    for donor in candidates:
        donor_type = donor.get('blood_type')
        if blood_type is not None and donor_type != blood_type:
            continue
        if donors_for is not None and donor_type not in donors_for:
            continue
        if available_on is not None:
            next_date = next_eligible_date(donor.get('last_donation_date'))
            if next_date is not None and next_date > available_on:
                continue
        filtered.append(donor)

    return rank(filtered, location, radius_km, sort_by, order, limit)
