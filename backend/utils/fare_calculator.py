"""
Fare Calculation Utilities
Fare breakdown from distance, duration and surge pricing
"""

from typing import Dict

BASE_FARE = 2.0
PRICE_PER_KM = 1.5
PRICE_PER_MINUTE = 0.3
MINIMUM_FARE = 5.0
MAX_SURGE_MULTIPLIER = 5.0

TIME_OF_DAY_MULTIPLIERS = {
    "rush-hour": 1.3,
    "evening": 1.2,
    "night": 1.1,
    "normal": 1.0,
    "afternoon": 1.0,
}


def calculate_fare(
    distance_km: float, duration_minutes: float = 0, surge_multiplier: float = 1.0
) -> Dict[str, float]:
    """
    Calculate ride fare based on distance and duration

    Args:
        distance_km: Distance in kilometers
        duration_minutes: Duration in minutes
        surge_multiplier: Demand multiplier, clamped to [1.0, MAX_SURGE_MULTIPLIER]

    Returns:
        Fare breakdown with baseFare, distanceFare, timeFare,
        surgeMultiplier and totalFare
    """
    distance_km = max(distance_km or 0, 0)
    duration_minutes = max(duration_minutes or 0, 0)
    surge_multiplier = min(max(surge_multiplier, 1.0), MAX_SURGE_MULTIPLIER)

    distance_cost = distance_km * PRICE_PER_KM
    time_cost = duration_minutes * PRICE_PER_MINUTE
    total_fare = (BASE_FARE + distance_cost + time_cost) * surge_multiplier
    total_fare = max(total_fare, MINIMUM_FARE)

    return {
        "baseFare": BASE_FARE,
        "distanceFare": round(distance_cost, 2),
        "timeFare": round(time_cost, 2),
        "surgeMultiplier": surge_multiplier,
        "totalFare": round(total_fare, 2),
    }


def calculate_surge_multiplier(
    demand: int = 0, supply: int = 1, time_of_day: str = "normal"
) -> float:
    """
    Surge multiplier from the pending-rides / online-drivers ratio

    Args:
        demand: Number of open ride requests
        supply: Number of drivers currently online
        time_of_day: One of TIME_OF_DAY_MULTIPLIERS keys

    Returns:
        Multiplier rounded to one decimal place
    """
    if supply <= 0:
        supply = 1

    ratio = demand / supply
    multiplier = 1.0
    if ratio > 3:
        multiplier = 2.0
    elif ratio > 2:
        multiplier = 1.5
    elif ratio > 1.5:
        multiplier = 1.2

    multiplier *= TIME_OF_DAY_MULTIPLIERS.get(time_of_day, 1.0)
    multiplier = min(multiplier, MAX_SURGE_MULTIPLIER)

    return round(multiplier, 1)


def time_of_day_bucket(hour: int) -> str:
    """Map an hour (0-23) onto a TIME_OF_DAY_MULTIPLIERS key"""
    if hour in (7, 8, 9, 17, 18, 19):
        return "rush-hour"
    if 20 <= hour <= 22:
        return "evening"
    if hour >= 23 or hour < 5:
        return "night"
    if 12 <= hour < 17:
        return "afternoon"
    return "normal"
