"""
Real-time event envelope and payloads.

Every server→client message is `{"type": ..., "data": ...}` with camelCase
payload keys.
"""

from typing import Any, Optional

from pydantic import BaseModel

from busline.schemas.base import CamelModel

BUS_LOCATIONS_UPDATE = "bus_locations_update"
BOOKING_CREATED = "booking_created"
BOOKING_CANCELLED = "booking_cancelled"
SCHEDULE_UPDATED = "schedule_updated"
PONG = "pong"


class RealtimeEvent(BaseModel):
    type: str
    data: Any = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class BusLocationPayload(CamelModel):
    bus_id: str
    latitude: float
    longitude: float
    occupancy: int
    current_stop: Optional[str] = None
    delay: int = 0


class BookingEventPayload(CamelModel):
    booking_id: str
    schedule_id: str


class ScheduleEventPayload(CamelModel):
    schedule_id: str
    status: str
    available_seats: int


def bus_locations_update(updates: list[BusLocationPayload]) -> RealtimeEvent:
    return RealtimeEvent(type=BUS_LOCATIONS_UPDATE, data=updates)


def booking_created(booking_id: str, schedule_id: str) -> RealtimeEvent:
    return RealtimeEvent(
        type=BOOKING_CREATED,
        data=BookingEventPayload(booking_id=booking_id, schedule_id=schedule_id),
    )


def booking_cancelled(booking_id: str, schedule_id: str) -> RealtimeEvent:
    return RealtimeEvent(
        type=BOOKING_CANCELLED,
        data=BookingEventPayload(booking_id=booking_id, schedule_id=schedule_id),
    )


def schedule_updated(schedule_id: str, status: str, available_seats: int) -> RealtimeEvent:
    return RealtimeEvent(
        type=SCHEDULE_UPDATED,
        data=ScheduleEventPayload(
            schedule_id=schedule_id, status=status, available_seats=available_seats
        ),
    )


def pong() -> RealtimeEvent:
    return RealtimeEvent(type=PONG)
