"""Centralized geographic distance calculations.

Haversine distance between consecutive GPS fixes is what the meter charges
as travelled distance.
"""

from math import atan2, cos, isfinite, radians, sin, sqrt

EARTH_RADIUS_M = 6_371_000  # Earth radius in meters

MPS_TO_KMH = 3.6


def haversine_distance_m(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
) -> float:
    """Calculate the great-circle distance between two points in meters.

    Uses the Haversine formula to calculate the shortest distance over
    the Earth's surface between two points specified by latitude/longitude.

    Args:
        lat1: Latitude of first point in degrees
        lon1: Longitude of first point in degrees
        lat2: Latitude of second point in degrees
        lon2: Longitude of second point in degrees

    Returns:
        Distance between the two points in meters (never negative)
    """
    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    # Rounding can push `a` a hair past 1.0 for antipodal points.
    a = min(1.0, max(0.0, a))
    c = 2 * atan2(sqrt(a), sqrt(1 - a))

    return EARTH_RADIUS_M * c


def mps_to_kmh(speed_mps: float) -> float:
    """Convert a GPS-reported speed in m/s to km/h."""
    return speed_mps * MPS_TO_KMH


def is_valid_coordinate(lat: float, lon: float) -> bool:
    """Check that a fix is finite and inside the WGS84 lat/lon ranges."""
    if not (isfinite(lat) and isfinite(lon)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0
