"""
Straight-line geodesy helpers.

Assumption
----------
Distances are great-circle (Haversine) on a mean Earth radius.  No road
network is consulted, so every ETA built on top of these figures is a
straight-line estimate.

Complexity: O(1) per call.
"""

import math

EARTH_RADIUS_KM = 6_371.0


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def bearing_deg(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Initial forward azimuth from point 1 to point 2, in degrees [0, 360)."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlng = math.radians(lng2 - lng1)

    y = math.sin(dlng) * math.cos(lat2_r)
    x = math.cos(lat1_r) * math.sin(lat2_r) - math.sin(lat1_r) * math.cos(
        lat2_r
    ) * math.cos(dlng)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def format_distance(km: float) -> str:
    """``0.85`` -> ``"850m"``, ``12.34`` -> ``"12.3km"``."""
    if km < 1:
        return f"{round(km * 1000)}m"
    return f"{km:.1f}km"


def format_eta(minutes: float) -> str:
    if minutes < 1:
        return "< 1 min"
    total = round(minutes)
    if total < 60:
        return f"{total} min"
    hours, rest = divmod(total, 60)
    return f"{hours}h {rest}min"
