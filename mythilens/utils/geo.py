from math import radians, sin, cos, sqrt, asin, isfinite
from typing import Any

# Earth's mean radius in kilometers
R = 6371.0

def is_valid_coordinate(lat: Any, lng: Any) -> bool:
    """True when both values are finite numbers inside the WGS84 ranges."""
    if lat is None or lng is None:
        return False
    if isinstance(lat, bool) or isinstance(lng, bool):
        return False
    try:
        lat = float(lat)
        lng = float(lng)
    except (TypeError, ValueError):
        return False
    if not (isfinite(lat) and isfinite(lng)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0

def haversine(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance in kilometers between two points given in
    decimal degrees.
    """
    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])

    dlon = lon2 - lon1
    dlat = lat2 - lat1

    a = sin(dlat / 2)**2 + cos(lat1) * cos(lat2) * sin(dlon / 2)**2
    # rounding can push a a hair past 1.0 for antipodal points
    c = 2 * asin(sqrt(min(1.0, a)))

    return R * c
