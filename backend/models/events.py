"""
WebSocket Event Models
Defines structured event types pushed over a ride room
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime


class ChannelEvent(BaseModel):
    """Base for server → client events; serialized with camelCase keys"""

    model_config = ConfigDict(populate_by_name=True)

    event_type: str
    ride_id: str = Field(..., alias="rideId")

    def to_message(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class RideStatusEvent(ChannelEvent):
    """Event emitted after every successful ride transition"""

    event_type: str = "ride-status-update"
    new_status: str = Field(..., alias="newStatus")
    actor_id: str = Field(..., alias="actorId")
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class NewMessageEvent(ChannelEvent):
    """Chat message fanned out to everyone in the room"""

    event_type: str = "new-message"
    message_id: Optional[str] = Field(None, alias="messageId")
    sender: str
    sender_role: str = Field(..., alias="senderRole")
    message: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class UserTypingEvent(ChannelEvent):
    """Ephemeral typing indicator, never persisted"""

    event_type: str = "user-typing"
    user_id: str = Field(..., alias="userId")
    is_typing: bool = Field(..., alias="isTyping")


class ReadReceiptEvent(ChannelEvent):
    """Broadcast when a recipient marks a message read"""

    event_type: str = "message-read-receipt"
    message_id: str = Field(..., alias="messageId")


class DriverLocationEvent(ChannelEvent):
    """Driver position pushed to the room of the ride they are driving"""

    event_type: str = "driver-location-update"
    driver_id: str = Field(..., alias="driverId")
    latitude: float
    longitude: float
    timestamp: datetime = Field(default_factory=datetime.utcnow)
