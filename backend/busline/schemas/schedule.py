"""
Pydantic schemas for schedules (one timetabled trip of a bus on a route).

Inventory (`available_seats`) is not writable through these schemas: it is
initialised to the bus capacity and only moves through bookings.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import Field, field_validator, model_validator

from busline.schemas.base import CamelModel, UTCDateTime, ensure_utc
from busline.schemas.fleet import Bus, Route


class ScheduleStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


BOOKABLE_STATUSES = frozenset({ScheduleStatus.SCHEDULED, ScheduleStatus.IN_PROGRESS})


class ScheduleCreate(CamelModel):
    bus_id: str
    route_id: str
    departure_time: datetime
    arrival_time: datetime
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    status: ScheduleStatus = ScheduleStatus.SCHEDULED
    is_optimized: bool = False

    @field_validator("departure_time", "arrival_time")
    @classmethod
    def normalise_time(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def arrival_after_departure(self):
        if self.arrival_time <= self.departure_time:
            raise ValueError("arrival_time must be after departure_time")
        return self


class ScheduleUpdate(CamelModel):
    departure_time: Optional[datetime] = None
    arrival_time: Optional[datetime] = None
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    status: Optional[ScheduleStatus] = None
    is_optimized: Optional[bool] = None

    @field_validator("departure_time", "arrival_time")
    @classmethod
    def normalise_time(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None


class Schedule(CamelModel):
    id: str
    bus_id: str
    route_id: str
    departure_time: UTCDateTime
    arrival_time: UTCDateTime
    price: Decimal
    available_seats: int
    status: ScheduleStatus = ScheduleStatus.SCHEDULED
    is_optimized: bool = False

    @property
    def is_bookable(self) -> bool:
        return self.status in BOOKABLE_STATUSES


class ScheduleWithDetails(Schedule):
    bus: Bus
    route: Route
