"""
Driver Routes
Online/offline status for drivers
"""

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from models.user_model import User
from utils.jwt_utils import require_driver
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


class DriverStatusUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_online: bool = Field(..., alias="isOnline")


def _status_payload(driver: User) -> dict:
    return {
        "status": driver.driver_status or "offline",
        "isOnline": driver.driver_status == "online",
    }


@router.get("/status")
async def get_driver_status(current_user: User = Depends(require_driver)):
    return {"success": True, **_status_payload(current_user)}


@router.put("/status")
async def update_driver_status(
    data: DriverStatusUpdate, current_user: User = Depends(require_driver)
):
    """
    Set the driver online or offline
    Online drivers count towards supply for surge pricing
    """
    new_status = "online" if data.is_online else "offline"
    current_user.update(set__driver_status=new_status, set__updated_at=datetime.utcnow())
    current_user.reload()

    logger.info(f"Driver {current_user.email} is now {new_status}")

    return {
        "success": True,
        "message": f"Driver status set to {new_status}",
        **_status_payload(current_user),
    }
