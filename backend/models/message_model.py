"""
Chat Message Model - Messages exchanged between passenger and driver
Belongs to exactly one ride; only the read flag ever changes
"""

from mongoengine import (
    Document,
    EmbeddedDocument,
    EmbeddedDocumentField,
    StringField,
    ReferenceField,
    DateTimeField,
    BooleanField,
    FloatField,
    CASCADE,
)
from datetime import datetime
from models.user_model import User
from models.ride_model import Ride

MAX_MESSAGE_LENGTH = 1000
MESSAGE_TYPES = ("text", "location", "system")


class MessageMetadata(EmbeddedDocument):
    """Optional payload for location messages"""

    latitude = FloatField(min_value=-90, max_value=90)
    longitude = FloatField(min_value=-180, max_value=180)
    address = StringField(max_length=200)

    def to_dict(self):
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "address": self.address,
        }


class ChatMessage(Document):
    meta = {
        "collection": "messages",
        "indexes": [("ride", "created_at"), ("sender", "-created_at")],
    }

    ride = ReferenceField(Ride, required=True, reverse_delete_rule=CASCADE)
    sender = ReferenceField(User, required=True)
    sender_role = StringField(required=True, choices=["passenger", "driver"])
    message = StringField(required=True, min_length=1, max_length=MAX_MESSAGE_LENGTH)
    message_type = StringField(choices=MESSAGE_TYPES, default="text")
    metadata = EmbeddedDocumentField(MessageMetadata)

    is_read = BooleanField(default=False)
    read_at = DateTimeField()
    created_at = DateTimeField(default=datetime.utcnow)

    def to_dict(self):
        """Convert message to dictionary"""
        sender = self.sender
        return {
            "id": str(self.id),
            "rideId": str(self.ride.id),
            "sender": {
                "id": str(sender.id),
                "firstName": sender.first_name,
                "lastName": sender.last_name,
            },
            "senderRole": self.sender_role,
            "message": self.message,
            "messageType": self.message_type,
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "isRead": self.is_read,
            "readAt": self.read_at.isoformat() if self.read_at else None,
            "timestamp": self.created_at.isoformat() if self.created_at else None,
        }

    def __str__(self):
        return f"ChatMessage({self.id}, ride={self.ride.id})"
