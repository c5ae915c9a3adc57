from enum import Enum
from pydantic import BaseModel, Field, model_validator
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime


class RideStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Location(BaseModel):
    address: str
    lat: float = 0.0
    lng: float = 0.0


class LocationInput(BaseModel):
    """Address as typed in the request form.

    ``lat``/``lng`` are only sent when the passenger picked a geocoder
    suggestion; a free-text address leaves them empty.
    """

    address: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None

    @property
    def resolved(self) -> bool:
        return self.lat is not None and self.lng is not None


class Counterparty(BaseModel):
    name: str
    phone: str
    vehicle_info: Optional[str] = None


class RideBase(BaseModel):
    passenger_id: str
    pickup_location: Location
    dropoff_location: Location


class RideCreate(BaseModel):
    pickup: LocationInput
    dropoff: LocationInput


class Ride(RideBase):
    id: str
    driver_id: Optional[str] = None
    status: RideStatus = RideStatus.PENDING
    created_at: datetime
    passenger: Optional[Counterparty] = None
    driver: Optional[Counterparty] = None

    @model_validator(mode="after")
    def check_driver_matches_status(self):
        if (self.driver_id is None) != (self.status == RideStatus.PENDING):
            raise ValueError(
                f"ride {self.id}: driver_id must be empty exactly while the ride is pending"
            )
        return self

    class Config:
        use_enum_values = True
        json_schema_extra = {
            "example": {
                "id": "5b0f4a0e-3c1d-4c1b-9d55-1f3c7f0a9e21",
                "passenger_id": "a1f0c2d4",
                "driver_id": None,
                "pickup_location": {
                    "address": "Bayero University, Kano",
                    "lat": 11.9764,
                    "lng": 8.4733
                },
                "dropoff_location": {
                    "address": "Kano State Secretariat, Audu Bako Way",
                    "lat": 11.9876,
                    "lng": 8.5204
                },
                "status": "pending",
                "created_at": "2025-11-16T10:30:00"
            }
        }


class RideCreated(BaseModel):
    ride_id: str
    ride: Ride


class DriverRides(BaseModel):
    pending: List[Ride]
    accepted: List[Ride]


class TransitionOutcome(BaseModel):
    ok: bool
    ride: Optional[Ride] = None
    message: Optional[str] = None


class ChangeEvent(BaseModel):
    table: str = "rides"
    event_type: Literal["insert", "update"]
    new_record: Dict[str, Any] = Field(default_factory=dict)


class GeocodeSuggestion(BaseModel):
    label: str
    lat: float
    lng: float


class GeocodeResponse(BaseModel):
    enabled: bool
    suggestions: List[GeocodeSuggestion] = Field(default_factory=list)
