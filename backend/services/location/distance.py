"""
Distance Calculations for Location Services

Haversine formula for great-circle distance between two lat/lon points.
Used by ranger dispatch and community broadcast selection.
"""

import math
from typing import NamedTuple

from services.errors import InvalidCoordinates

EARTH_RADIUS_KM = 6371.0

# 1 degree of latitude in km (bounding-box pre-filters only)
KM_PER_DEGREE = 111.0


class GeoPoint(NamedTuple):
    lat: float
    lon: float


def validate_point(lat: float, lon: float) -> GeoPoint:
    """Reject out-of-range decimal degrees instead of clamping them."""
    if lat is None or lon is None:
        raise InvalidCoordinates(lat, lon)
    lat = float(lat)
    lon = float(lon)
    if math.isnan(lat) or math.isnan(lon) or not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
        raise InvalidCoordinates(lat, lon)
    return GeoPoint(lat, lon)


def point_of(obj) -> GeoPoint:
    """GeoPoint from a GeoPoint/tuple or anything with lat/lon attributes."""
    if isinstance(obj, tuple):
        return validate_point(obj[0], obj[1])
    return validate_point(obj.lat, obj.lon)


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate great-circle distance between two points in kilometers.
    Uses the Haversine formula.
    """
    lat1_r = math.radians(lat1)
    lat2_r = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    
    a = (math.sin(dlat / 2) ** 2 +
         math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    
    return EARTH_RADIUS_KM * c


def distance_km(a, b) -> float:
    """
    Distance in km between two points (GeoPoint, (lat, lon) tuple, or any
    object with lat/lon). Raises InvalidCoordinates for out-of-range input.
    """
    pa = point_of(a)
    pb = point_of(b)
    return haversine_km(pa.lat, pa.lon, pb.lat, pb.lon)


def bounding_box(center, radius_km: float) -> tuple:
    """
    Approximate (min_lat, max_lat, min_lon, max_lon) box around a point.
    Only a coarse pre-filter for database queries; callers still apply
    distance_km for the exact test.
    """
    c = point_of(center)
    lat_range = radius_km / KM_PER_DEGREE
    cos_lat = math.cos(math.radians(c.lat))
    # Near the poles the longitude span covers everything
    lon_range = 180.0 if cos_lat < 1e-6 else radius_km / (KM_PER_DEGREE * cos_lat)
    return (
        max(-90.0, c.lat - lat_range),
        min(90.0, c.lat + lat_range),
        max(-180.0, c.lon - lon_range),
        min(180.0, c.lon + lon_range),
    )
