"""
Straight-line distance between ``(lat, lng)`` points.

The routing collaborator is the preferred source of road distances; this
module is what callers fall back to when it is unconfigured or down, and
what the proximity filter uses to order nearby rides.
"""

import math

EARTH_RADIUS_KM = 6_371.0

LatLng = tuple[float, float]


def haversine_km(a: LatLng, b: LatLng) -> float:
    """Great-circle distance in **km**.  O(1)."""
    phi_a, phi_b = math.radians(a[0]), math.radians(b[0])
    half_dphi = (phi_b - phi_a) / 2
    half_dlambda = math.radians(b[1] - a[1]) / 2

    h = math.sin(half_dphi) ** 2 + math.cos(phi_a) * math.cos(phi_b) * math.sin(
        half_dlambda
    ) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))
