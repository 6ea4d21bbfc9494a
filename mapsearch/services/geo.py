from __future__ import annotations

import math

from mapsearch.models import BoundingBox, Coordinates

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE = 111.0


def haversine_km(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance in kilometers between two WGS84 coords."""
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    dphi = math.radians(b.latitude - a.latitude)
    dlambda = math.radians(b.longitude - a.longitude)

    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_KM * c


def bounding_box(origin: Coordinates, half_extent_km: float) -> BoundingBox:
    """Approximate square box reaching `half_extent_km` from origin on each side."""
    lat_delta = half_extent_km / KM_PER_DEGREE
    # cos() shrinks towards the poles; clamp so the box stays finite there
    cos_lat = max(math.cos(math.radians(origin.latitude)), 1e-6)
    lon_delta = half_extent_km / (KM_PER_DEGREE * cos_lat)
    return BoundingBox(
        left=origin.longitude - lon_delta,
        top=origin.latitude + lat_delta,
        right=origin.longitude + lon_delta,
        bottom=origin.latitude - lat_delta,
    )
