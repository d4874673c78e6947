"""
Chat persistence for ride conversations
Messages are appended by ride participants and only ever flip their read flag
"""

import logging
from datetime import datetime
from typing import List, Optional

from bson import ObjectId

from models.message_model import (
    MAX_MESSAGE_LENGTH,
    MESSAGE_TYPES,
    ChatMessage,
    MessageMetadata,
)
from models.ride_model import Ride, RideStatus
from models.user_model import User
from .exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Rides whose participants can still have an open conversation
CHAT_STATUSES = (
    RideStatus.ACCEPTED.value,
    RideStatus.ARRIVED.value,
    RideStatus.IN_PROGRESS.value,
)


def _load_ride(ride_id: str) -> Ride:
    if not ride_id or not ObjectId.is_valid(str(ride_id)):
        raise NotFoundError("Ride not found")
    ride = Ride.objects(id=ride_id).first()
    if ride is None:
        raise NotFoundError("Ride not found")
    return ride


def _participant_role(ride: Ride, user_id: str) -> str:
    if ride.is_passenger(user_id):
        return "passenger"
    if ride.is_driver(user_id):
        return "driver"
    raise AuthorizationError("You are not a participant in this ride")


def _clean_text(message: Optional[str]) -> str:
    text = (message or "").strip()
    if not text:
        raise ValidationError(
            "Message cannot be empty",
            errors=[{"field": "message", "message": "Message cannot be empty"}],
        )
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ValidationError(
            f"Message cannot exceed {MAX_MESSAGE_LENGTH} characters",
            errors=[{"field": "message", "message": "Message is too long"}],
        )
    return text


def append(
    ride_id: str,
    sender: User,
    message: str,
    message_type: str = "text",
    metadata: Optional[dict] = None,
) -> ChatMessage:
    """
    Persist a chat message sent by one of the ride's participants

    Raises:
        NotFoundError: Unknown ride
        AuthorizationError: Sender is not the passenger or assigned driver
        ConflictError: Ride already completed or cancelled
        ValidationError: Empty/oversized text or unknown message type
    """
    text = _clean_text(message)
    message_type = message_type or "text"
    if message_type not in MESSAGE_TYPES:
        raise ValidationError(
            f"Invalid message type: {message_type}",
            errors=[{"field": "messageType", "message": "Must be text, location or system"}],
        )

    ride = _load_ride(ride_id)
    sender_role = _participant_role(ride, sender.id)
    if ride.is_terminal:
        raise ConflictError(f"Cannot send messages on a {ride.status} ride")

    chat_message = ChatMessage(
        ride=ride,
        sender=sender,
        sender_role=sender_role,
        message=text,
        message_type=message_type,
        created_at=datetime.utcnow(),
    )
    if metadata:
        chat_message.metadata = MessageMetadata(
            latitude=metadata.get("latitude"),
            longitude=metadata.get("longitude"),
            address=metadata.get("address"),
        )
    chat_message.save()

    logger.info(f"Message {chat_message.id} stored for ride {ride.id} from {sender_role}")
    return chat_message


def list_by_ride(ride_id: str, reader: Optional[User] = None) -> List[ChatMessage]:
    """
    Messages of a ride, oldest first

    When `reader` is given it must be a participant of the ride.
    """
    ride = _load_ride(ride_id)
    if reader is not None:
        _participant_role(ride, reader.id)
    return list(ChatMessage.objects(ride=ride).order_by("created_at", "id"))


def mark_read(message_id: str, reader: User) -> ChatMessage:
    """
    Mark a single message read by its recipient

    Raises:
        NotFoundError: Unknown message
        AuthorizationError: Reader is not in the message's ride
        ValidationError: Reader is the sender
    """
    if not message_id or not ObjectId.is_valid(str(message_id)):
        raise NotFoundError("Message not found")
    chat_message = ChatMessage.objects(id=message_id).first()
    if chat_message is None:
        raise NotFoundError("Message not found")

    _participant_role(chat_message.ride, reader.id)
    if str(chat_message.sender.id) == str(reader.id):
        raise ValidationError("Cannot mark your own message as read")

    if not chat_message.is_read:
        chat_message.update(set__is_read=True, set__read_at=datetime.utcnow())
        chat_message.reload()
    return chat_message


def mark_ride_read(ride_id: str, reader: User) -> int:
    """Mark every unread message from the other participant as read"""
    ride = _load_ride(ride_id)
    _participant_role(ride, reader.id)
    updated = ChatMessage.objects(
        ride=ride, sender__ne=reader, is_read=False
    ).update(set__is_read=True, set__read_at=datetime.utcnow())
    if updated:
        logger.debug(f"Marked {updated} messages read on ride {ride.id}")
    return updated


def unread_count(user: User) -> int:
    """Unread messages addressed to `user` across their ongoing rides"""
    role_filter = {"driver": user} if user.role == "driver" else {"passenger": user}
    rides = Ride.objects(status__in=list(CHAT_STATUSES), **role_filter).only("id")
    return ChatMessage.objects(
        ride__in=list(rides), sender__ne=user, is_read=False
    ).count()
