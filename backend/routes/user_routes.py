"""
User Routes
Profile and password changes, reported positions, nearby drivers and
account deactivation
"""

from datetime import datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request
from mongoengine import NotUniqueError
from pydantic import BaseModel, ConfigDict, Field

from models.events import DriverLocationEvent
from models.location_model import LocationUpdate, NearbyDriversRequest
from models.ride_model import Ride, RideStatus
from models.user_model import User
from routes.auth_routes import reject_taken
from services.driver_search import nearby_driver_dicts
from services.exceptions import ValidationError
from utils.jwt_utils import get_current_user, require_driver
import logging

router = APIRouter()
logger = logging.getLogger(__name__)

# A driver's position is streamed to rides they are currently driving
DRIVING_STATUSES = (
    RideStatus.ACCEPTED.value,
    RideStatus.ARRIVED.value,
    RideStatus.IN_PROGRESS.value,
)


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: Optional[str] = Field(None, alias="firstName", min_length=2, max_length=50)
    last_name: Optional[str] = Field(None, alias="lastName", min_length=2, max_length=50)
    phone: Optional[str] = Field(None, pattern=r"^\+?\d{1,15}$")
    vehicle_model: Optional[str] = Field(None, alias="vehicleModel", max_length=50)
    vehicle_plate: Optional[str] = Field(None, alias="vehiclePlate", max_length=20)


class PasswordChange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(..., alias="currentPassword", min_length=1)
    new_password: str = Field(..., alias="newPassword", min_length=6)


@router.put("/profile")
async def update_profile(data: ProfileUpdate, current_user: User = Depends(get_current_user)):
    """
    Update name, phone and, for drivers, vehicle details
    Fields left out of the body are not touched
    """
    changes = data.model_dump(exclude_none=True)
    if not current_user.is_driver:
        changes.pop("vehicle_model", None)
        changes.pop("vehicle_plate", None)

    if "phone" in changes and changes["phone"] != current_user.phone:
        reject_taken(
            "phone",
            "Phone number already registered",
            phone=changes["phone"],
            id__ne=current_user.id,
        )

    for field_name, value in changes.items():
        setattr(current_user, field_name, value)
    current_user.updated_at = datetime.utcnow()

    try:
        current_user.save()
    except NotUniqueError as e:
        # Only phone is unique among the editable fields
        logger.warning(f"Profile update for {current_user.email} lost the unique index: {e}")
        message = "Phone number already registered"
        raise ValidationError(message, errors=[{"field": "phone", "message": message}])

    logger.info(f"{current_user.email} updated {', '.join(sorted(changes)) or 'nothing'}")
    return {
        "success": True,
        "message": "Profile updated successfully",
        "user": current_user.to_dict(),
    }


@router.put("/password")
async def change_password(data: PasswordChange, current_user: User = Depends(get_current_user)):
    if not current_user.verify_password(data.current_password):
        message = "Current password is incorrect"
        raise ValidationError(
            message, errors=[{"field": "currentPassword", "message": message}]
        )

    current_user.set_password(data.new_password)
    current_user.updated_at = datetime.utcnow()
    current_user.save()

    logger.info(f"{current_user.email} changed their password")
    return {"success": True, "message": "Password updated successfully"}


@router.put("/location")
async def update_location(
    request: Request,
    location: LocationUpdate,
    current_user: User = Depends(require_driver),
):
    """
    Record the driver's current position
    Broadcast to the room of every ride the driver is currently driving
    """
    current_user.set_location(location.latitude, location.longitude, location.address)
    current_user.save()

    channel = request.app.state.channel
    driver_id = str(current_user.id)
    for ride in Ride.objects(driver=current_user.id, status__in=DRIVING_STATUSES):
        event = DriverLocationEvent(
            ride_id=str(ride.id),
            driver_id=driver_id,
            latitude=location.latitude,
            longitude=location.longitude,
        )
        channel.emit_to_room_nowait(str(ride.id), event.to_message(), exclude_user=driver_id)

    return {
        "success": True,
        "message": "Location updated successfully",
        "location": current_user.location_dict(),
    }


@router.get("/nearby-drivers")
async def get_nearby_drivers(
    query: Annotated[NearbyDriversRequest, Query()],
    current_user: User = Depends(get_current_user),
):
    """Online drivers around a point, closest first"""
    drivers = nearby_driver_dicts(query.latitude, query.longitude, query.radius_km)
    return {
        "success": True,
        "count": len(drivers),
        "drivers": drivers,
        "searchRadiusKm": query.radius_km,
    }


@router.delete("/account")
async def deactivate_account(current_user: User = Depends(get_current_user)):
    """
    Deactivate the caller's account
    Existing tokens stop working and sign-in is refused afterwards
    """
    current_user.update(
        set__is_active=False,
        set__driver_status="offline",
        set__updated_at=datetime.utcnow(),
    )
    logger.info(f"{current_user.email} deactivated their account")
    return {"success": True, "message": "Account deactivated successfully"}
