"""
Pydantic schemas for routes, buses and live bus locations.
"""

from decimal import Decimal
from typing import Optional

from pydantic import Field, field_validator

from busline.schemas.base import CamelModel, UTCDateTime


def _dedupe(values: list[str]) -> list[str]:
    seen = []
    for value in values:
        value = value.strip()
        if value and value not in seen:
            seen.append(value)
    return seen


class RouteCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    from_location: str = Field(..., min_length=1, max_length=255)
    to_location: str = Field(..., min_length=1, max_length=255)
    distance: Decimal = Field(..., ge=0, max_digits=8, decimal_places=2)
    estimated_duration: int = Field(..., gt=0)  # minutes
    stops: list[str] = Field(default_factory=list)
    is_active: bool = True


class Route(RouteCreate):
    id: str


class BusCreate(CamelModel):
    number: str = Field(..., min_length=1, max_length=32)
    operator: str = Field(..., min_length=1, max_length=255)
    capacity: int = Field(..., gt=0, le=500)
    amenities: list[str] = Field(default_factory=list)
    is_active: bool = True

    @field_validator("amenities")
    @classmethod
    def unique_amenities(cls, value: list[str]) -> list[str]:
        return _dedupe(value)


class Bus(BusCreate):
    id: str


class BusLocationUpdate(CamelModel):
    """A position report for one bus. Creates the row on first report."""
    bus_id: str
    schedule_id: Optional[str] = None
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    current_stop: Optional[str] = None
    occupancy: int = Field(0, ge=0)
    delay: int = Field(0, ge=0)  # minutes


class BusLocationReport(CamelModel):
    """Body of the location report endpoint; bus id comes from the path."""
    schedule_id: Optional[str] = None
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    current_stop: Optional[str] = None
    occupancy: int = Field(0, ge=0)
    delay: int = Field(0, ge=0)


class BusLocation(BusLocationUpdate):
    id: str
    updated_at: UTCDateTime


class BusWithLocation(Bus):
    location: Optional[BusLocation] = None
