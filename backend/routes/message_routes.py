"""
Chat Message Routes
Persisted ride chat between a passenger and their driver
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, ConfigDict, Field

from models.events import ReadReceiptEvent
from models.message_model import MAX_MESSAGE_LENGTH
from models.user_model import User
from services import chat_service
from utils.jwt_utils import get_current_user
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


class MessageMetadataInput(BaseModel):
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    address: Optional[str] = Field(None, max_length=200)


class SendMessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ride_id: str = Field(..., alias="rideId")
    message: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    message_type: str = Field(
        "text", alias="messageType", pattern="^(text|location|system)$"
    )
    metadata: Optional[MessageMetadataInput] = None


@router.get("/ride/{ride_id}")
async def get_ride_messages(ride_id: str, current_user: User = Depends(get_current_user)):
    """
    Full conversation for a ride, oldest first
    Messages from the other participant are marked read on fetch
    """
    chat_service.mark_ride_read(ride_id, current_user)
    messages = chat_service.list_by_ride(ride_id, reader=current_user)
    return {
        "success": True,
        "count": len(messages),
        "messages": [message.to_dict() for message in messages],
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def send_message(
    data: SendMessageRequest, current_user: User = Depends(get_current_user)
):
    chat_message = chat_service.append(
        data.ride_id,
        current_user,
        data.message,
        message_type=data.message_type,
        metadata=data.metadata.model_dump() if data.metadata else None,
    )
    return {
        "success": True,
        "message": "Message sent successfully",
        "data": chat_message.to_dict(),
    }


@router.put("/{message_id}/read")
async def mark_message_read(
    request: Request, message_id: str, current_user: User = Depends(get_current_user)
):
    chat_message = chat_service.mark_read(message_id, current_user)

    ride_id = str(chat_message.ride.id)
    receipt = ReadReceiptEvent(rideId=ride_id, messageId=str(chat_message.id))
    request.app.state.channel.emit_to_room_nowait(ride_id, receipt.to_message())

    return {
        "success": True,
        "message": "Message marked as read",
        "data": chat_message.to_dict(),
    }


@router.get("/unread/count")
async def get_unread_count(current_user: User = Depends(get_current_user)):
    return {"success": True, "count": chat_service.unread_count(current_user)}
