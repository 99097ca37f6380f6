"""
Location Services Module

Great-circle distance and place-name geocoding for incidents.
Primary lookup: built-in gazetteer of forest areas and towns
Fallback provider: Google Geocoding API (when a key is configured)

Usage:
    from services.location.distance import distance_km, GeoPoint
    from services.location.geocoding import geocode_place
"""
