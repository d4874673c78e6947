"""
Road distance and travel time lookups.

Uses the Google Routes API (computeRouteMatrix) when a key is configured and
falls back to a straight-line estimate otherwise, or when Google fails.
"""

import os
import httpx
from typing import Dict, Tuple, Optional
import logging

from utils.helpers import calculate_distance, calculate_eta

logger = logging.getLogger(__name__)

GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY")
ROUTE_MATRIX_URL = "https://routes.googleapis.com/distanceMatrix/v2:computeRouteMatrix"
ROUTE_FIELD_MASK = "originIndex,destinationIndex,duration,distanceMeters,status,condition"
REQUEST_TIMEOUT_SECONDS = 10.0
MIN_DURATION_MINUTES = 1

LatLng = Tuple[float, float]


async def get_distance_and_eta(
    origin: LatLng, destination: LatLng, api_key: Optional[str] = None
) -> Dict:
    """
    Driving distance (km) and duration (minutes) between two (lat, lng) points.

    The result carries `source`, either "google" or "haversine", so callers can
    tell an estimate from a routed answer. `api_key` overrides the
    GOOGLE_MAPS_API_KEY environment variable.
    """
    api_key = api_key or GOOGLE_MAPS_API_KEY
    element = await _route_matrix_element(origin, destination, api_key) if api_key else None
    if element is None:
        return _straight_line_estimate(origin, destination)

    duration = element.get("duration", "0s")
    seconds = float(duration.rstrip("s") or 0) if isinstance(duration, str) else 0
    return {
        "distance_km": round(element.get("distanceMeters", 0) / 1000, 2),
        "duration_minutes": max(round(seconds / 60), MIN_DURATION_MINUTES),
        "source": "google",
    }


async def _route_matrix_element(
    origin: LatLng, destination: LatLng, api_key: str
) -> Optional[dict]:
    """The single origin/destination element, or None if no usable route came back."""
    body = {
        "origins": [_waypoint(origin)],
        "destinations": [_waypoint(destination)],
        "travelMode": "DRIVE",
    }
    headers = {"X-Goog-Api-Key": api_key, "X-Goog-FieldMask": ROUTE_FIELD_MASK}

    try:
        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS) as client:
            response = await client.post(ROUTE_MATRIX_URL, json=body, headers=headers)
        response.raise_for_status()
        elements = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Routes API unavailable, estimating instead: {e}")
        return None

    if isinstance(elements, dict):
        elements = [elements]
    if not elements:
        logger.warning("Routes API returned no elements, estimating instead")
        return None

    element = elements[0]
    condition = element.get("condition", "ROUTE_EXISTS")
    if condition != "ROUTE_EXISTS":
        logger.warning(f"Routes API condition {condition}, estimating instead")
        return None
    return element


def _waypoint(point: LatLng) -> dict:
    latitude, longitude = point
    return {"waypoint": {"location": {"latLng": {"latitude": latitude, "longitude": longitude}}}}


def _straight_line_estimate(origin: LatLng, destination: LatLng) -> Dict:
    distance_km = calculate_distance(*origin, *destination)
    return {
        "distance_km": distance_km,
        "duration_minutes": max(calculate_eta(distance_km), MIN_DURATION_MINUTES),
        "source": "haversine",
    }
