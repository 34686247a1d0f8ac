import math
from typing import Tuple

from .rng import DRNG

Position = Tuple[float, float]  # (lat, lng) in degrees

EARTH_RADIUS_KM = 6371.0
KM_PER_DEG = 111.32  # equirectangular scale used for short hops
POLE_EPSILON = 1e-9


def wrap_lng(lng: float) -> float:
    """Wrap a longitude into [-180, 180)."""
    return ((lng + 180.0) % 360.0) - 180.0


def clamp_lat(lat: float) -> float:
    return max(-90.0, min(90.0, lat))


def distance_km(a: Position, b: Position) -> float:
    """Great-circle (haversine) distance between two points in km."""
    if a[0] == b[0] and a[1] == b[1]:
        return 0.0
    lat1, lat2 = math.radians(a[0]), math.radians(b[0])
    dlat = lat2 - lat1
    dlng = math.radians(b[1] - a[1])
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def bearing_deg(a: Position, b: Position) -> float:
    """Initial great-circle bearing from a to b, normalised to [0, 360)."""
    if a[0] == b[0] and a[1] == b[1]:
        return 0.0
    lat1, lat2 = math.radians(a[0]), math.radians(b[0])
    dlng = math.radians(b[1] - a[1])
    y = math.sin(dlng) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlng)
    return math.degrees(math.atan2(y, x)) % 360.0


def destination_point(origin: Position, bearing: float, dist_km: float) -> Position:
    """Spherical forward projection of origin along bearing by dist_km."""
    lat1 = math.radians(origin[0])
    lng1 = math.radians(origin[1])
    brg = math.radians(bearing)
    ang = dist_km / EARTH_RADIUS_KM

    lat2 = math.asin(math.sin(lat1) * math.cos(ang) +
                     math.cos(lat1) * math.sin(ang) * math.cos(brg))
    if abs(math.cos(lat1)) < POLE_EPSILON:
        lng2 = lng1
    else:
        lng2 = lng1 + math.atan2(math.sin(brg) * math.sin(ang) * math.cos(lat1),
                                 math.cos(ang) - math.sin(lat1) * math.sin(lat2))
    return (clamp_lat(math.degrees(lat2)), wrap_lng(math.degrees(lng2)))


def equirectangular_step(origin: Position, heading: float, dist_km: float) -> Position:
    """Move a short distance along heading using the flat-earth approximation.

    Near the poles the longitude term would blow up, so only latitude moves.
    """
    lat, lng = origin
    rad = math.radians(heading)
    new_lat = lat + dist_km * math.cos(rad) / KM_PER_DEG
    cos_lat = math.cos(math.radians(lat))
    if abs(cos_lat) >= POLE_EPSILON:
        lng = lng + dist_km * math.sin(rad) / (KM_PER_DEG * cos_lat)
    return (clamp_lat(new_lat), wrap_lng(lng))


def random_point_in_disc(center: Position, radius_km: float, rng: DRNG) -> Position:
    """Uniformly sample a point within radius_km of center."""
    angle = rng.uniform(0.0, 2 * math.pi)
    r = radius_km * math.sqrt(rng.random())
    d_lat = r * math.cos(angle) / KM_PER_DEG
    cos_lat = math.cos(math.radians(center[0]))
    d_lng = 0.0
    if abs(cos_lat) >= POLE_EPSILON:
        d_lng = r * math.sin(angle) / (KM_PER_DEG * cos_lat)
    return (clamp_lat(center[0] + d_lat), wrap_lng(center[1] + d_lng))


def normalize_heading(heading: float) -> float:
    return heading % 360.0
