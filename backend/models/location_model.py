from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class LocationInput(BaseModel):
    """Pickup/dropoff location as sent by clients: [longitude, latitude] + address"""

    coordinates: List[float] = Field(
        ..., min_length=2, max_length=2, description="[longitude, latitude]"
    )
    address: str = Field(..., min_length=1, max_length=200)

    @field_validator("coordinates")
    @classmethod
    def validate_coordinates(cls, v):
        longitude, latitude = v
        if not -180 <= longitude <= 180:
            raise ValueError("Longitude must be between -180 and 180")
        if not -90 <= latitude <= 90:
            raise ValueError("Latitude must be between -90 and 90")
        return v

    @field_validator("address")
    @classmethod
    def validate_address(cls, v):
        if not v.strip():
            raise ValueError("Address is required")
        return v.strip()

    @property
    def longitude(self) -> float:
        return self.coordinates[0]

    @property
    def latitude(self) -> float:
        return self.coordinates[1]


class LocationUpdate(BaseModel):
    """Current position reported by a user's device"""

    latitude: float = Field(..., ge=-90, le=90, description="Latitude coordinate")
    longitude: float = Field(..., ge=-180, le=180, description="Longitude coordinate")
    address: Optional[str] = Field(None, max_length=200)

    @field_validator("address")
    @classmethod
    def strip_address(cls, v):
        if v is None:
            return v
        return v.strip() or None


class NearbyDriversRequest(BaseModel):
    """Query for online drivers around a point"""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    radius_km: float = Field(
        default=5.0, ge=0.1, le=50, description="Search radius in kilometers"
    )
