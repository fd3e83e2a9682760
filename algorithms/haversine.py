"""
Haversine Algorithm - Calculate distance between two geographical points
Used to find blood requests, donors and donation centers near a location
"""

import logging
import math

import numpy as np

from redblood.exceptions import InvalidCoordinate

# Radius of earth in kilometers
EARTH_RADIUS_KM = 6371

logger = logging.getLogger(__name__)


def validate_coordinate(lat, lon):
    """
    Return (lat, lon) as floats, raising InvalidCoordinate when either value
    is not a number or falls outside [-90, 90] / [-180, 180].
    """
    try:
        lat, lon = float(lat), float(lon)
    except (TypeError, ValueError):
        raise InvalidCoordinate(f"Invalid coordinate: ({lat!r}, {lon!r})")

    # NaN fails both comparisons
    if not (-90 <= lat <= 90) or not (-180 <= lon <= 180):
        raise InvalidCoordinate(f"Coordinate out of range: ({lat}, {lon})")

    return lat, lon


def distance_km(lat1, lon1, lat2, lon2):
    """
    Calculate straight-line distance between two points.
    Note: This is "as the crow flies" distance, not road distance.

    Args:
        lat1, lon1: Latitude and longitude of point 1 (query location)
        lat2, lon2: Latitude and longitude of point 2 (candidate)

    Returns:
        Distance in kilometers
    """
    lat1, lon1 = validate_coordinate(lat1, lon1)
    lat2, lon2 = validate_coordinate(lat2, lon2)

    # Convert decimal degrees to radians
    lat1, lon1, lat2, lon2 = map(math.radians, [lat1, lon1, lat2, lon2])

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    c = 2 * math.asin(math.sqrt(a))

    return c * EARTH_RADIUS_KM


def location_coords(location):
    """
    Extract (latitude, longitude) from a ``{'latitude': .., 'longitude': ..}``
    mapping. Returns None when the location is missing or incomplete.
    """
    if not location:
        return None

    lat = location.get('latitude')
    lon = location.get('longitude')
    if lat is None or lon is None:
        return None

    return validate_coordinate(lat, lon)


def distances_km(lat, lon, lats, lons):
    """
    Distances from one point to many, vectorised with numpy.

    Args:
        lat, lon: Query point
        lats, lons: Sequences of candidate coordinates (already validated)

    Returns:
        numpy array of distances in kilometers, same order as the input
    """
    lat, lon = validate_coordinate(lat, lon)

    lat1 = np.radians(lat)
    lon1 = np.radians(lon)
    lat2 = np.radians(np.asarray(lats, dtype=float))
    lon2 = np.radians(np.asarray(lons, dtype=float))

    a = np.sin((lat2 - lat1) / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin((lon2 - lon1) / 2) ** 2
    # Rounding can push a fraction above 1 for antipodal points
    c = 2 * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))

    return c * EARTH_RADIUS_KM


def within_radius(lat, lon, records, max_distance):
    """
    Keep the records within ``max_distance`` km of a point, in input order.

    Records without a usable ``location`` are skipped.

    Returns:
        List of tuples: (record, distance)
    """
    located = []
    for record in records:
        try:
            coords = location_coords(record.get('location'))
        except InvalidCoordinate:
            logger.warning(f"Skipping record {record.get('id')} with invalid stored location")
            continue
        if coords is not None:
            located.append((record, coords))

    if not located:
        return []

    distances = distances_km(
        lat, lon,
        [coords[0] for _, coords in located],
        [coords[1] for _, coords in located],
    )

    return [
        (record, float(distance))
        for (record, _), distance in zip(located, distances)
        if distance <= max_distance
    ]


def find_nearby(lat, lon, records, max_distance):
    """
    Find all records within a specified distance from a point

    Returns:
        List of tuples: (record, distance) sorted by distance
    """
    nearby = within_radius(lat, lon, records, max_distance)

    # Sort by distance (closest first)
    nearby.sort(key=lambda x: x[1])

    return nearby
