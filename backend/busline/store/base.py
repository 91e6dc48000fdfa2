"""
Entity store interface.

The store exclusively owns users, routes, buses, schedules, bookings, bus
locations and demand predictions. Callers only ever receive copies, so the
store is the single place where mutation happens and can be serialized.

Implementations:
- MemoryStore: transient dicts guarded by per-schedule / per-bus asyncio locks
- SqlStore: SQLAlchemy (async) with optimistic conditional updates

Both raise the same domain errors for the same inputs.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from busline.core.errors import (
    CapacityExceededError,
    IntegrityError,
    ScheduleNotBookableError,
    SeatConflictError,
    ValidationError,
)
from busline.core.logging import get_logger
from busline.schemas.booking import Booking, BookingStatus, BookingWithDetails, NewBooking
from busline.schemas.fleet import (
    Bus, BusCreate, BusLocation, BusLocationUpdate, BusWithLocation, Route, RouteCreate,
)
from busline.schemas.prediction import DemandPrediction, DemandPredictionCreate
from busline.schemas.schedule import Schedule, ScheduleCreate, ScheduleUpdate, ScheduleWithDetails
from busline.schemas.user import User, UserCreate

logger = get_logger(__name__)


def new_id() -> str:
    return str(uuid.uuid4())


def coerce(model: type[BaseModel], data: Union[BaseModel, dict]) -> BaseModel:
    """Validate input into `model`, raising the domain ValidationError."""
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump()
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or model.__name__
        raise ValidationError(f"Invalid {field}: {first['msg']}", errors=exc.errors())


def as_date(value: Union[date, datetime]) -> date:
    return value.date() if isinstance(value, datetime) else value


def check_commit(schedule: Schedule, requested: int, quoted_price: Optional[Decimal] = None) -> None:
    """Inventory rules evaluated under the schedule's mutation lock."""
    if not schedule.is_bookable:
        raise ScheduleNotBookableError(
            f"Schedule {schedule.id} is {schedule.status.value} and cannot be booked",
            schedule_id=schedule.id,
        )
    if quoted_price is not None and quoted_price != schedule.price:
        raise ValidationError("Schedule price changed since it was quoted", schedule_id=schedule.id)
    if requested > schedule.available_seats:
        raise CapacityExceededError(
            f"Not enough seats. Requested: {requested}, Available: {schedule.available_seats}",
            requested=requested,
            available=schedule.available_seats,
        )


def check_seat_clash(requested: list[str], held: set[str]) -> None:
    clash = sorted(set(requested) & held)
    if clash:
        raise SeatConflictError(
            f"Seats already taken: {', '.join(clash)}",
            seats=clash,
        )


def check_status_change(booking: Booking, status: BookingStatus) -> None:
    """Allowed manual transitions; cancellation has its own path."""
    if booking.status == status:
        return
    if booking.status == BookingStatus.CANCELLED:
        raise ValidationError("Cancelled bookings cannot be reopened", booking_id=booking.id)
    if status == BookingStatus.CONFIRMED:
        raise ValidationError("Completed bookings cannot be reconfirmed", booking_id=booking.id)


def join_schedule(schedule: Schedule, bus: Optional[Bus], route: Optional[Route]) -> ScheduleWithDetails:
    if bus is None or route is None:
        missing = "bus" if bus is None else "route"
        logger.error(
            "integrity_violation",
            entity="schedule",
            schedule_id=schedule.id,
            missing=missing,
            bus_id=schedule.bus_id,
            route_id=schedule.route_id,
        )
        raise IntegrityError(
            f"Schedule {schedule.id} references a missing {missing}",
            schedule_id=schedule.id,
        )
    return ScheduleWithDetails(**schedule.model_dump(), bus=bus, route=route)


def join_booking(booking: Booking, schedule: Optional[ScheduleWithDetails]) -> BookingWithDetails:
    if schedule is None:
        logger.error(
            "integrity_violation",
            entity="booking",
            booking_id=booking.id,
            missing="schedule",
            schedule_id=booking.schedule_id,
        )
        raise IntegrityError(
            f"Booking {booking.id} references a missing schedule",
            booking_id=booking.id,
        )
    return BookingWithDetails(**booking.model_dump(), schedule=schedule)


class EntityStore(ABC):
    """
    Store contract shared by every backing.

    `get_*` return None for a missing id. Mutations on a missing id raise
    NotFoundError. Writes are visible to every later read.
    """

    # Users

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[User]:
        pass

    @abstractmethod
    async def create_user(
        self, data: Union[UserCreate, dict], hashed_password: str, is_admin: bool = False
    ) -> User:
        """Raises ConflictError when the email or username is taken."""
        pass

    @abstractmethod
    async def update_user(
        self,
        user_id: str,
        *,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
        hashed_password: Optional[str] = None,
    ) -> User:
        pass

    # Routes

    @abstractmethod
    async def list_routes(self, active_only: bool = False) -> list[Route]:
        pass

    @abstractmethod
    async def get_route(self, route_id: str) -> Optional[Route]:
        pass

    @abstractmethod
    async def create_route(self, data: Union[RouteCreate, dict]) -> Route:
        pass

    @abstractmethod
    async def search_routes(self, from_location: str, to_location: str) -> list[Route]:
        """Exact endpoint match, active routes only."""
        pass

    @abstractmethod
    async def set_route_active(self, route_id: str, active: bool) -> Route:
        pass

    # Buses

    @abstractmethod
    async def list_buses(self) -> list[Bus]:
        pass

    @abstractmethod
    async def get_bus(self, bus_id: str) -> Optional[Bus]:
        pass

    @abstractmethod
    async def create_bus(self, data: Union[BusCreate, dict]) -> Bus:
        """Raises ConflictError when the bus number is taken."""
        pass

    @abstractmethod
    async def set_bus_active(self, bus_id: str, active: bool) -> Bus:
        pass

    @abstractmethod
    async def list_buses_with_locations(self) -> list[BusWithLocation]:
        pass

    # Schedules

    @abstractmethod
    async def list_schedules(self) -> list[ScheduleWithDetails]:
        pass

    @abstractmethod
    async def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        pass

    @abstractmethod
    async def get_schedule_with_details(self, schedule_id: str) -> Optional[ScheduleWithDetails]:
        """Raises IntegrityError if the bus or route is missing."""
        pass

    @abstractmethod
    async def create_schedule(self, data: Union[ScheduleCreate, dict]) -> Schedule:
        """Inventory starts at the bus capacity."""
        pass

    @abstractmethod
    async def update_schedule(self, schedule_id: str, updates: Union[ScheduleUpdate, dict]) -> Schedule:
        pass

    @abstractmethod
    async def search_schedules(
        self, route_id: str, on_date: Union[date, datetime]
    ) -> list[ScheduleWithDetails]:
        """Schedules of an active route and bus departing on the same calendar
        date (UTC), excluding cancelled ones."""
        pass

    # Bookings

    @abstractmethod
    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        pass

    @abstractmethod
    async def get_booking_with_details(self, booking_id: str) -> Optional[BookingWithDetails]:
        """Raises IntegrityError if the schedule chain is broken."""
        pass

    @abstractmethod
    async def list_user_bookings(self, user_id: str) -> list[BookingWithDetails]:
        pass

    @abstractmethod
    async def list_schedule_bookings(self, schedule_id: str) -> list[Booking]:
        pass

    @abstractmethod
    async def commit_booking(self, data: Union[NewBooking, dict]) -> Booking:
        """
        Atomically reserve seats and persist a confirmed booking.

        Raises NotFoundError, ScheduleNotBookableError, CapacityExceededError,
        SeatConflictError or ValidationError, leaving state unchanged.
        """
        pass

    @abstractmethod
    async def cancel_booking(self, booking_id: str) -> tuple[Booking, bool]:
        """
        Release a booking's seats. Returns (booking, changed); cancelling an
        already cancelled booking returns changed=False.
        """
        pass

    @abstractmethod
    async def update_booking_status(self, booking_id: str, status: BookingStatus) -> Booking:
        pass

    # Bus locations

    @abstractmethod
    async def get_bus_location(self, bus_id: str) -> Optional[BusLocation]:
        pass

    @abstractmethod
    async def list_bus_locations(self) -> list[BusLocation]:
        pass

    @abstractmethod
    async def upsert_bus_location(self, data: Union[BusLocationUpdate, dict]) -> BusLocation:
        """Create the bus's location row on first report, update it after."""
        pass

    # Demand predictions

    @abstractmethod
    async def list_demand_predictions(
        self, route_id: Optional[str], on_date: Union[date, datetime]
    ) -> list[DemandPrediction]:
        pass

    @abstractmethod
    async def create_demand_prediction(self, data: Union[DemandPredictionCreate, dict]) -> DemandPrediction:
        pass

    @abstractmethod
    async def record_actual_demand(self, prediction_id: str, actual_demand: int) -> DemandPrediction:
        pass

    async def close(self) -> None:
        """Release backing resources."""
        pass
