"""Geo math: great-circle distance and local metre/degree conversions."""

import math

EARTH_RADIUS_M = 6_371_000  # mean Earth radius in metres


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance in metres between two WGS-84 points."""
    rlat1, rlat2 = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = math.sin(dlat / 2) ** 2 + math.cos(rlat1) * math.cos(rlat2) * math.sin(dlon / 2) ** 2
    # Rounding can push a a hair past 1 for antipodal points
    a = min(1.0, a)
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def metres_to_lat_degrees(metres: float) -> float:
    """Northward displacement in metres as degrees of latitude."""
    return math.degrees(metres / EARTH_RADIUS_M)


def metres_to_lon_degrees(metres: float, latitude: float) -> float:
    """Eastward displacement in metres as degrees of longitude at ``latitude``.

    The local circle of latitude shrinks with cos(latitude); at the poles the
    conversion is undefined and no longitude change is reported.
    """
    scale = math.cos(math.radians(latitude))
    if abs(scale) < 1e-12:
        return 0.0
    return math.degrees(metres / (EARTH_RADIUS_M * scale))
