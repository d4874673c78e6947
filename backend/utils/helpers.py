"""
Small shared helpers: great-circle distance, travel time estimates and
human readable ride status text.
"""

import math

EARTH_RADIUS_KM = 6371.0
CITY_SPEED_KMH = 30.0

STATUS_MESSAGES = {
    "pending": "Looking for a driver...",
    "accepted": "Driver is on the way to pick you up",
    "arrived": "Your driver has arrived at the pickup point",
    "in_progress": "Ride in progress",
    "completed": "Ride completed successfully",
    "cancelled": "Ride was cancelled",
}


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Haversine distance in kilometers between two (latitude, longitude)
    points, rounded to two decimals.
    """
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    half_dphi = math.radians(lat2 - lat1) / 2
    half_dlambda = math.radians(lon2 - lon1) / 2

    h = math.sin(half_dphi) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(half_dlambda) ** 2
    return round(2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h)), 2)


def calculate_eta(distance_km: float, avg_speed_kmh: float = CITY_SPEED_KMH) -> int:
    """Minutes needed to cover `distance_km` at `avg_speed_kmh`."""
    if distance_km <= 0:
        return 0
    return round(distance_km / avg_speed_kmh * 60)


def get_ride_status_message(status: str) -> str:
    return STATUS_MESSAGES.get(status, "Unknown status")


def minutes_between(start, end) -> int:
    """Whole minutes elapsed between two datetimes, never negative"""
    if not start or not end:
        return 0
    return max(round((end - start).total_seconds() / 60), 0)
