"""Geographic utility functions."""

import math

from .models import Location

EARTH_RADIUS_KM = 6371


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two points in kilometers using Haversine formula"""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (math.sin(delta_phi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def distance_km(a: Location, b: Location) -> float:
    """Great-circle distance between two positions in kilometers"""
    return haversine_distance(a.lat, a.lon, b.lat, b.lon)


def poi_distance_km(position: Location, poi) -> float:
    """Distance from a position to a POI in kilometers"""
    return haversine_distance(position.lat, position.lon, poi.lat, poi.lon)
