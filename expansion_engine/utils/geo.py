"""
Spherical geometry helpers.

All distances use the haversine formula on a sphere of radius
``EARTH_RADIUS_M``. Bounding-box areas and metre ↔ degree conversions use the
equirectangular approximation, which is adequate at tile scale (≤ 10 km).
"""

from __future__ import annotations

import math

EARTH_RADIUS_M = 6_371_000.0
METRES_PER_DEGREE_LAT = 111_320.0


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in metres between two (lat, lng) points."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def metres_to_lat_degrees(metres: float) -> float:
    return metres / METRES_PER_DEGREE_LAT


def metres_to_lng_degrees(metres: float, at_lat: float) -> float:
    """Longitude span of ``metres`` at latitude ``at_lat``.

    Near the poles the cosine is clamped so the span stays finite.
    """
    cos_lat = max(math.cos(math.radians(at_lat)), 1e-6)
    return metres / (METRES_PER_DEGREE_LAT * cos_lat)


def lng_span(west: float, east: float) -> float:
    """Eastward span in degrees from ``west`` to ``east`` (handles the antimeridian).

    ``west=-180, east=180`` is the full 360° circle, not an empty span.
    """
    if east - west >= 360.0:
        return 360.0
    return (east - west) % 360.0


def normalize_lng(lng: float) -> float:
    """Wrap a longitude into [-180, 180)."""
    return ((lng + 180.0) % 360.0) - 180.0


def bbox_area_km2(north: float, south: float, east: float, west: float) -> float:
    """Approximate area of a lat/lng bounding box in km²."""
    if north <= south:
        return 0.0
    mid_lat = (north + south) / 2.0
    height_km = (north - south) * METRES_PER_DEGREE_LAT / 1000.0
    width_km = (
        lng_span(west, east)
        * METRES_PER_DEGREE_LAT
        * max(math.cos(math.radians(mid_lat)), 0.0)
        / 1000.0
    )
    return height_km * width_km


def lng_in_span(lng: float, west: float, east: float) -> bool:
    """True if ``lng`` lies within the eastward span ``west → east``."""
    return lng_span(west, lng) <= lng_span(west, east)
