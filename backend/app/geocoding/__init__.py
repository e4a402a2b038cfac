"""
geocoding — Coordinate → human-readable address.

Sub-modules:
    reverse_geocoder — local zone → Nominatim → raw coordinates fallback chain
"""
