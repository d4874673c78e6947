"""
Ride Management Routes
Handles ride requests, lifecycle transitions, ratings and history
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field

from models.location_model import LocationInput
from models.ride_model import Ride, RideStatus
from models.user_model import User
from services.driver_search import nearby_driver_dicts
from services.ride_lifecycle import RideLifecycleController
from utils.fare_calculator import calculate_surge_multiplier, time_of_day_bucket
from utils.helpers import get_ride_status_message
from utils.jwt_utils import get_current_user, require_driver, require_passenger
from utils.maps_utils import get_distance_and_eta

import logging

router = APIRouter()
logger = logging.getLogger(__name__)


# Pydantic models for request validation
class RideRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pickup_location: LocationInput = Field(..., alias="pickupLocation")
    dropoff_location: LocationInput = Field(..., alias="dropoffLocation")
    distance: Optional[float] = Field(None, ge=0)
    estimated_duration: Optional[float] = Field(None, alias="estimatedDuration", ge=0)
    payment_method: Optional[str] = Field(
        None, alias="paymentMethod", pattern="^(cash|card|wallet)$"
    )


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class RatingRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = Field(None, max_length=500)


def get_lifecycle(request: Request) -> RideLifecycleController:
    return request.app.state.rides


def _ride_response(ride: Ride, message: str) -> dict:
    return {"success": True, "message": message, "ride": ride.to_dict()}


async def _current_surge(request: Request) -> float:
    settings = request.app.state.settings
    if not settings.surge_pricing_enabled:
        return 1.0

    demand = Ride.objects(status=RideStatus.PENDING.value).count()
    supply = User.objects(role="driver", driver_status="online", is_active=True).count()
    surge = calculate_surge_multiplier(
        demand, supply, time_of_day_bucket(datetime.now().hour)
    )
    logger.debug(f"Surge multiplier {surge} (demand={demand}, supply={supply})")
    return surge


@router.post("/request", status_code=status.HTTP_201_CREATED)
async def request_ride(
    request: Request,
    data: RideRequest,
    current_user: User = Depends(require_passenger),
    rides: RideLifecycleController = Depends(get_lifecycle),
):
    """
    Create a new ride request
    Distance and duration are looked up when the client does not send them
    """
    distance = data.distance
    estimated_duration = data.estimated_duration

    if distance is None or estimated_duration is None:
        pickup, dropoff = data.pickup_location, data.dropoff_location
        route_info = await get_distance_and_eta(
            (pickup.latitude, pickup.longitude),
            (dropoff.latitude, dropoff.longitude),
            api_key=request.app.state.settings.google_maps_api_key,
        )
        if distance is None:
            distance = route_info["distance_km"]
        if estimated_duration is None:
            estimated_duration = route_info["duration_minutes"]

    ride = rides.request(
        current_user,
        data.pickup_location,
        data.dropoff_location,
        distance=distance,
        estimated_duration=estimated_duration,
        payment_method=data.payment_method,
        surge_multiplier=await _current_surge(request),
    )
    response = _ride_response(ride, "Ride requested successfully")
    # Online drivers near the pickup point, closest first
    response["availableDrivers"] = nearby_driver_dicts(
        data.pickup_location.latitude, data.pickup_location.longitude
    )
    return response


@router.get("/history")
async def get_ride_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    rides: RideLifecycleController = Depends(get_lifecycle),
):
    """
    Get the current user's rides, newest first
    Drivers see rides they drove, passengers rides they requested
    """
    items, total = rides.history(current_user, page, limit, status_filter)
    return {
        "success": True,
        "rides": [ride.to_dict() for ride in items],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }


@router.get("/active")
async def get_active_rides(
    current_user: User = Depends(get_current_user),
    rides: RideLifecycleController = Depends(get_lifecycle),
):
    active = rides.active(current_user)
    return {"success": True, "rides": [ride.to_dict() for ride in active]}


@router.get("/available")
async def get_available_rides(
    current_user: User = Depends(require_driver),
    rides: RideLifecycleController = Depends(get_lifecycle),
):
    """Pending ride requests any driver may accept"""
    available = rides.available(current_user)
    return {
        "success": True,
        "count": len(available),
        "rides": [ride.to_dict() for ride in available],
    }


@router.get("/{ride_id}")
async def get_ride_details(
    ride_id: str,
    current_user: User = Depends(get_current_user),
    rides: RideLifecycleController = Depends(get_lifecycle),
):
    ride = rides.get(current_user, ride_id)
    return {
        "success": True,
        "ride": ride.to_dict(),
        "statusMessage": get_ride_status_message(ride.status),
    }


@router.post("/{ride_id}/accept")
async def accept_ride(
    ride_id: str,
    current_user: User = Depends(get_current_user),
    rides: RideLifecycleController = Depends(get_lifecycle),
):
    ride = rides.accept(current_user, ride_id)
    return _ride_response(ride, "Ride accepted successfully")


@router.post("/{ride_id}/arrive")
async def arrive_at_pickup(
    ride_id: str,
    current_user: User = Depends(get_current_user),
    rides: RideLifecycleController = Depends(get_lifecycle),
):
    ride = rides.arrive(current_user, ride_id)
    return _ride_response(ride, "Driver arrived at pickup location")


@router.post("/{ride_id}/start")
async def start_ride(
    ride_id: str,
    current_user: User = Depends(get_current_user),
    rides: RideLifecycleController = Depends(get_lifecycle),
):
    ride = rides.start(current_user, ride_id)
    return _ride_response(ride, "Ride started successfully")


@router.post("/{ride_id}/complete")
async def complete_ride(
    ride_id: str,
    current_user: User = Depends(get_current_user),
    rides: RideLifecycleController = Depends(get_lifecycle),
):
    ride = rides.complete(current_user, ride_id)
    return _ride_response(ride, "Ride completed successfully")


@router.post("/{ride_id}/cancel")
async def cancel_ride(
    ride_id: str,
    data: Optional[CancelRequest] = Body(None),
    current_user: User = Depends(get_current_user),
    rides: RideLifecycleController = Depends(get_lifecycle),
):
    """
    Cancel a ride that has not started yet
    Either the passenger or the assigned driver may cancel
    """
    reason = data.reason if data else None
    ride = rides.cancel(current_user, ride_id, reason)
    return _ride_response(ride, "Ride cancelled successfully")


@router.post("/{ride_id}/rate")
async def rate_ride(
    ride_id: str,
    data: RatingRequest,
    current_user: User = Depends(get_current_user),
    rides: RideLifecycleController = Depends(get_lifecycle),
):
    ride = rides.rate(current_user, ride_id, data.rating, data.review)
    return _ride_response(ride, "Ride rated successfully")
