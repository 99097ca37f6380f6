"""
Geocoding Service for Location Services

SMS and USSD reporters type a place name ("Kinale", "Mt Kenya"), not
coordinates. Resolution order:

    1. Built-in gazetteer (substring match, first hit wins)
    2. Google Geocoding API, region-biased to Kenya, if a key is configured;
       the match closest to the region centre is kept
    3. Default point (flagged needs_review)

All results are normalized to a common dict:
    latitude, longitude, matched_name, provider ('gazetteer', 'google',
    'default'), needs_review, distance_km (from region centre; google only)
"""

import logging
import os
from typing import Optional

import httpx

from .distance import haversine_km

logger = logging.getLogger(__name__)

GOOGLE_BASE = "https://maps.googleapis.com/maps/api/geocode/json"
GOOGLE_TIMEOUT = 10
GOOGLE_API_KEY = os.getenv("GOOGLE_GEOCODING_API_KEY", "")

REGION_CODE = "ke"
REGION_CENTER = (-0.0236, 37.9062)

# Where reports land when nothing matches
DEFAULT_POINT = (-0.0236, 37.9062)

# Ordered: more specific names before the towns they sit near
KNOWN_PLACES = [
    ("mt kenya", (-0.1521, 37.3084)),
    ("mount kenya", (-0.1521, 37.3084)),
    ("kinale", (-1.0667, 36.6333)),
    ("karura", (-1.2500, 36.8667)),
    ("aberdare", (-0.3667, 36.7167)),
    ("mau", (-0.4500, 35.5000)),
    ("kakamega", (0.2827, 34.7519)),
    ("tsavo", (-2.3825, 38.4531)),
    ("nairobi", (-1.2921, 36.8219)),
    ("mombasa", (-4.0435, 39.6682)),
    ("kisumu", (-0.0917, 34.7680)),
    ("nakuru", (-0.3031, 36.0800)),
    ("eldoret", (0.5143, 35.2698)),
]


def lookup_known_place(place: str) -> Optional[dict]:
    """Match a free-text place name against the gazetteer."""
    if not place:
        return None
    needle = place.strip().lower()
    for name, (lat, lon) in KNOWN_PLACES:
        if name in needle:
            return {
                "latitude": lat,
                "longitude": lon,
                "matched_name": name,
                "provider": "gazetteer",
                "needs_review": False,
            }
    return None


def geocode_place(place: str, google_api_key: Optional[str] = None) -> dict:
    """
    Resolve a reporter-supplied place name to coordinates.
    Never fails: falls back to DEFAULT_POINT with needs_review=True.
    """
    result = lookup_known_place(place)
    if result:
        return result
    
    api_key = google_api_key if google_api_key is not None else GOOGLE_API_KEY
    if api_key and place and place.strip():
        result = _geocode_google(place, api_key)
        if result:
            return result
    
    logger.info(f"No geocode match for '{place}', using default point")
    return {
        "latitude": DEFAULT_POINT[0],
        "longitude": DEFAULT_POINT[1],
        "matched_name": None,
        "provider": "default",
        "needs_review": True,
    }


def _geocode_google(place: str, api_key: str) -> Optional[dict]:
    """
    Query Google Geocoding API and return the match closest to the region centre.
    """
    params = {
        "address": place.strip(),
        "region": REGION_CODE,
        "components": f"country:{REGION_CODE.upper()}",
        "key": api_key,
    }
    
    try:
        with httpx.Client(timeout=GOOGLE_TIMEOUT) as client:
            response = client.get(GOOGLE_BASE, params=params)
            response.raise_for_status()
            data = response.json()
    except httpx.TimeoutException:
        logger.warning(f"Google geocoder timeout for: {place}")
        return None
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Google geocoder error for '{place}': {e}")
        return None
    
    status = data.get("status", "")
    if status != "OK":
        logger.info(f"Google: status '{status}' for '{place}'")
        return None
    
    best = None
    best_dist = float('inf')
    for item in data.get("results", []):
        loc = item.get("geometry", {}).get("location", {})
        lat = loc.get("lat")
        lng = loc.get("lng")
        if lat is None or lng is None:
            continue
        dist = haversine_km(REGION_CENTER[0], REGION_CENTER[1], lat, lng)
        if dist < best_dist:
            best_dist = dist
            best = {
                "latitude": lat,
                "longitude": lng,
                "matched_name": item.get("formatted_address"),
                "provider": "google",
                "needs_review": item.get("geometry", {}).get("location_type") == "APPROXIMATE",
                "distance_km": round(dist, 2),
            }
    
    return best
