"""
Nearby driver lookup.

Candidates come from MongoDB (online, active drivers with a reported
position); the radius filter and ordering use the haversine distance.
"""

from typing import List, Tuple

from models.user_model import User
from utils.helpers import calculate_distance
import logging

logger = logging.getLogger(__name__)

DEFAULT_RADIUS_KM = 5.0
MAX_RESULTS = 10


def find_nearby_drivers(
    latitude: float,
    longitude: float,
    radius_km: float = DEFAULT_RADIUS_KM,
    limit: int = MAX_RESULTS,
) -> List[Tuple[User, float]]:
    """
    Online drivers within `radius_km` of the point, closest first

    Returns:
        (driver, distance_km) pairs, at most `limit` of them
    """
    candidates = User.objects(
        role="driver",
        driver_status="online",
        is_active=True,
        location__exists=True,
    )

    nearby = []
    for driver in candidates:
        position = driver.coordinates
        if position is None:
            continue
        distance = calculate_distance(latitude, longitude, *position)
        if distance <= radius_km:
            nearby.append((driver, distance))

    nearby.sort(key=lambda pair: pair[1])
    logger.debug(
        f"{len(nearby)} drivers within {radius_km}km of ({latitude}, {longitude})"
    )
    return nearby[:limit]


def nearby_driver_dicts(
    latitude: float, longitude: float, radius_km: float = DEFAULT_RADIUS_KM
) -> List[dict]:
    """Public driver cards with their distance, as returned by the API"""
    drivers = []
    for driver, distance in find_nearby_drivers(latitude, longitude, radius_km):
        card = driver.to_summary()
        card.pop("phone", None)
        card["currentLocation"] = driver.location_dict()
        card["distanceKm"] = distance
        drivers.append(card)
    return drivers
