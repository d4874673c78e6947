"""
Passengers and drivers share one account document; `role` decides which
ride actions a user may take.
"""

from mongoengine import (
    Document,
    StringField,
    EmailField,
    BooleanField,
    DateTimeField,
    PointField,
)
from datetime import datetime
from passlib.context import CryptContext

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ROLES = ("passenger", "driver")
DRIVER_STATUSES = ("online", "offline")


class User(Document):
    """
    User model for both passengers and drivers
    Role determines which ride actions are allowed
    """

    meta = {
        "collection": "users",
        "indexes": ["email", "phone", "role", "(location"],
    }

    # Basic Information
    first_name = StringField(required=True, max_length=50)
    last_name = StringField(required=True, max_length=50)
    email = EmailField(required=True, unique=True)
    phone = StringField(required=True, unique=True, max_length=16)
    password_hash = StringField(required=True)

    # Role and Status
    role = StringField(required=True, choices=ROLES, default="passenger")
    is_active = BooleanField(default=True)
    is_verified = BooleanField(default=False)

    # Driver-specific fields
    driver_status = StringField(choices=DRIVER_STATUSES, default="offline")
    vehicle_plate = StringField(max_length=20)
    vehicle_model = StringField(max_length=50)

    # Last reported position, GeoJSON Point: {"type": "Point", "coordinates": [lng, lat]}
    location = PointField(auto_index=False)
    location_address = StringField(max_length=200)
    location_updated_at = DateTimeField()

    # Timestamps
    created_at = DateTimeField(default=datetime.utcnow)
    updated_at = DateTimeField(default=datetime.utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_driver(self) -> bool:
        return self.role == "driver"

    def set_location(self, latitude: float, longitude: float, address=None):
        self.location = {"type": "Point", "coordinates": [longitude, latitude]}
        self.location_address = address
        self.location_updated_at = datetime.utcnow()

    @property
    def coordinates(self):
        """(latitude, longitude) of the last reported position, or None"""
        if not self.location:
            return None
        points = self.location["coordinates"] if isinstance(self.location, dict) else self.location
        return points[1], points[0]

    def location_dict(self):
        if self.coordinates is None:
            return None
        latitude, longitude = self.coordinates
        return {
            "type": "Point",
            "coordinates": [longitude, latitude],
            "address": self.location_address,
            "lastUpdated": self.location_updated_at.isoformat()
            if self.location_updated_at
            else None,
        }

    def set_password(self, password: str):
        self.password_hash = pwd_context.hash(password)

    def verify_password(self, password: str) -> bool:
        return pwd_context.verify(password, self.password_hash)

    def to_summary(self) -> dict:
        """Public fields shown to the other ride participant"""
        summary = {
            "id": str(self.id),
            "firstName": self.first_name,
            "lastName": self.last_name,
            "phone": self.phone,
        }
        if self.is_driver:
            summary["vehiclePlate"] = self.vehicle_plate
            summary["vehicleModel"] = self.vehicle_model
        return summary

    def to_dict(self):
        """Profile as returned to the account owner; never includes the hash."""
        profile = self.to_summary()
        profile.update(
            email=self.email,
            role=self.role,
            isDriver=self.is_driver,
            isActive=self.is_active,
            isVerified=self.is_verified,
            createdAt=self.created_at.isoformat() if self.created_at else None,
            currentLocation=self.location_dict(),
        )
        if self.is_driver:
            profile["driverStatus"] = self.driver_status or "offline"
        return profile

    def __str__(self):
        return f"User({self.full_name}, {self.role})"
