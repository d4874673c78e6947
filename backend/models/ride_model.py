"""
Ride Model - Represents ride requests and their lifecycle
Tracks status from pending to completed/cancelled
"""

from enum import Enum

from mongoengine import (
    Document,
    EmbeddedDocument,
    EmbeddedDocumentField,
    StringField,
    ReferenceField,
    DateTimeField,
    FloatField,
    IntField,
    ListField,
    CASCADE,
)
from datetime import datetime
from models.user_model import User


class RideStatus(str, Enum):
    """Every status a ride can be recorded in."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    ARRIVED = "arrived"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = (RideStatus.COMPLETED.value, RideStatus.CANCELLED.value)
ACTIVE_STATUSES = (
    RideStatus.PENDING.value,
    RideStatus.ACCEPTED.value,
    RideStatus.ARRIVED.value,
    RideStatus.IN_PROGRESS.value,
)
PAYMENT_METHODS = ("cash", "card", "wallet")


class RideLocation(EmbeddedDocument):
    """GeoJSON point plus the human readable address"""

    type = StringField(default="Point", choices=["Point"])
    coordinates = ListField(FloatField(), required=True)  # [longitude, latitude]
    address = StringField(required=True, max_length=200)

    def to_dict(self):
        return {
            "type": self.type,
            "coordinates": list(self.coordinates),
            "address": self.address,
        }


class FareBreakdown(EmbeddedDocument):
    base_fare = FloatField(required=True)
    distance_fare = FloatField(required=True)
    time_fare = FloatField(required=True)
    surge_multiplier = FloatField(default=1.0)
    total_fare = FloatField(required=True)

    @classmethod
    def from_dict(cls, data: dict) -> "FareBreakdown":
        return cls(
            base_fare=data["baseFare"],
            distance_fare=data["distanceFare"],
            time_fare=data["timeFare"],
            surge_multiplier=data["surgeMultiplier"],
            total_fare=data["totalFare"],
        )

    def to_dict(self):
        return {
            "baseFare": self.base_fare,
            "distanceFare": self.distance_fare,
            "timeFare": self.time_fare,
            "surgeMultiplier": self.surge_multiplier,
            "totalFare": self.total_fare,
        }


def _iso(value):
    return value.isoformat() if value else None


class Ride(Document):
    """
    Ride model tracking the complete lifecycle of a ride request
    Status flow: pending → accepted → arrived → in_progress → completed,
    with cancellation allowed from pending/accepted/arrived
    """

    meta = {
        "collection": "rides",
        "indexes": [
            "status",
            ("passenger", "status"),
            ("driver", "status"),
            "created_at",
        ],
    }

    # Participants
    passenger = ReferenceField(User, required=True, reverse_delete_rule=CASCADE)
    driver = ReferenceField(User)  # Set once, when accepted

    status = StringField(
        required=True,
        choices=[s.value for s in RideStatus],
        default=RideStatus.PENDING.value,
    )

    # Location Details
    pickup_location = EmbeddedDocumentField(RideLocation, required=True)
    dropoff_location = EmbeddedDocumentField(RideLocation, required=True)

    # Distance, duration and pricing
    distance = FloatField(required=True, min_value=0)  # km
    estimated_duration = IntField(required=True, min_value=0)  # minutes
    actual_duration = IntField(min_value=0)  # minutes, set on completion
    fare = FloatField(required=True)
    fare_breakdown = EmbeddedDocumentField(FareBreakdown)
    payment_method = StringField(choices=PAYMENT_METHODS, default="cash")

    # Cancellation
    cancelled_by = StringField(choices=["passenger", "driver"])
    cancellation_reason = StringField(max_length=500)

    # Rating left by the passenger
    passenger_rating = IntField(min_value=1, max_value=5)
    passenger_review = StringField(max_length=500)
    rated_at = DateTimeField()

    # Timestamps for lifecycle tracking
    created_at = DateTimeField(default=datetime.utcnow)
    accepted_at = DateTimeField()
    arrived_at = DateTimeField()
    started_at = DateTimeField()
    completed_at = DateTimeField()
    cancelled_at = DateTimeField()
    updated_at = DateTimeField(default=datetime.utcnow)

    @property
    def ride_status(self) -> RideStatus:
        return RideStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_passenger(self, user_id: str) -> bool:
        return self.passenger is not None and str(self.passenger.id) == str(user_id)

    def is_driver(self, user_id: str) -> bool:
        return self.driver is not None and str(self.driver.id) == str(user_id)

    def is_participant(self, user_id: str) -> bool:
        return self.is_passenger(user_id) or self.is_driver(user_id)

    def to_dict(self):
        """Convert ride to dictionary"""
        return {
            "id": str(self.id),
            "passenger": self.passenger.to_summary() if self.passenger else None,
            "driver": self.driver.to_summary() if self.driver else None,
            "status": self.status,
            "pickupLocation": (
                self.pickup_location.to_dict() if self.pickup_location else None
            ),
            "dropoffLocation": (
                self.dropoff_location.to_dict() if self.dropoff_location else None
            ),
            "distance": self.distance,
            "estimatedDuration": self.estimated_duration,
            "actualDuration": self.actual_duration,
            "fare": self.fare,
            "fareBreakdown": (
                self.fare_breakdown.to_dict() if self.fare_breakdown else None
            ),
            "paymentMethod": self.payment_method,
            "cancelledBy": self.cancelled_by,
            "cancellationReason": self.cancellation_reason,
            "passengerRating": self.passenger_rating,
            "passengerReview": self.passenger_review,
            "ratedAt": _iso(self.rated_at),
            "createdAt": _iso(self.created_at),
            "acceptedAt": _iso(self.accepted_at),
            "arrivedAt": _iso(self.arrived_at),
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
            "cancelledAt": _iso(self.cancelled_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __str__(self):
        return f"Ride({self.id}, {self.status})"
