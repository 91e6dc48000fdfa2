"""
Transient in-process entity store.

CONCURRENCY STRATEGY: per-entity asyncio locks
==============================================

Every mutation of a schedule (booking commit, cancellation, partial update)
runs under that schedule's lock; every location write runs under its bus's
lock. Creations that must check a unique field run under a registry lock.
Reads take no lock and return deep copies, so callers never hold a live
reference into the store between operations.

Seat labels held by active bookings are indexed per schedule
(schedule_id -> {seat_label: booking_id}) so a commit can reject a clash in
O(seats) and a cancellation releases exactly what the booking held.
"""

import asyncio
from collections import defaultdict
from datetime import date, datetime
from typing import Optional, Union

from busline.core.errors import ConflictError, IntegrityError, NotFoundError, ValidationError
from busline.core.logging import get_logger
from busline.schemas.base import to_money, utcnow
from busline.schemas.booking import Booking, BookingStatus, BookingWithDetails, NewBooking
from busline.schemas.fleet import (
    Bus, BusCreate, BusLocation, BusLocationUpdate, BusWithLocation, Route, RouteCreate,
)
from busline.schemas.prediction import DemandPrediction, DemandPredictionCreate, compute_accuracy
from busline.schemas.schedule import (
    Schedule, ScheduleCreate, ScheduleStatus, ScheduleUpdate, ScheduleWithDetails,
)
from busline.schemas.user import User, UserCreate
from busline.store.base import (
    EntityStore,
    as_date,
    check_commit,
    check_seat_clash,
    check_status_change,
    coerce,
    join_booking,
    join_schedule,
    new_id,
)

logger = get_logger(__name__)


def _copy(record):
    return record.model_copy(deep=True) if record is not None else None


class MemoryStore(EntityStore):

    def __init__(self):
        self._users: dict[str, User] = {}
        self._routes: dict[str, Route] = {}
        self._buses: dict[str, Bus] = {}
        self._schedules: dict[str, Schedule] = {}
        self._bookings: dict[str, Booking] = {}
        self._locations: dict[str, BusLocation] = {}  # keyed by bus id
        self._predictions: dict[str, DemandPrediction] = {}

        self._seat_holds: dict[str, dict[str, str]] = defaultdict(dict)

        self._registry_lock = asyncio.Lock()
        self._schedule_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._bus_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._prediction_lock = asyncio.Lock()

    # Users

    async def get_user(self, user_id: str) -> Optional[User]:
        return _copy(self._users.get(user_id))

    async def get_user_by_email(self, email: str) -> Optional[User]:
        email = email.lower()
        for user in self._users.values():
            if user.email == email:
                return _copy(user)
        return None

    async def create_user(
        self, data: Union[UserCreate, dict], hashed_password: str, is_admin: bool = False
    ) -> User:
        data = coerce(UserCreate, data)
        async with self._registry_lock:
            email = data.email.lower()
            for existing in self._users.values():
                if existing.email == email:
                    raise ConflictError("Email already registered", email=email)
                if existing.username == data.username:
                    raise ConflictError("Username already taken", username=data.username)

            user = User(
                id=new_id(),
                email=email,
                username=data.username,
                hashed_password=hashed_password,
                first_name=data.first_name,
                last_name=data.last_name,
                phone=data.phone,
                is_admin=is_admin,
                created_at=utcnow(),
            )
            self._users[user.id] = user
        return _copy(user)

    async def update_user(
        self,
        user_id: str,
        *,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
        hashed_password: Optional[str] = None,
    ) -> User:
        async with self._registry_lock:
            user = self._users.get(user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found")
            changes = {
                key: value
                for key, value in {
                    "first_name": first_name,
                    "last_name": last_name,
                    "phone": phone,
                    "hashed_password": hashed_password,
                }.items()
                if value is not None
            }
            user = user.model_copy(update=changes)
            self._users[user_id] = user
        return _copy(user)

    # Routes

    async def list_routes(self, active_only: bool = False) -> list[Route]:
        return [_copy(r) for r in self._routes.values() if r.is_active or not active_only]

    async def get_route(self, route_id: str) -> Optional[Route]:
        return _copy(self._routes.get(route_id))

    async def create_route(self, data: Union[RouteCreate, dict]) -> Route:
        data = coerce(RouteCreate, data)
        route = Route(id=new_id(), **data.model_dump())
        self._routes[route.id] = route
        return _copy(route)

    async def search_routes(self, from_location: str, to_location: str) -> list[Route]:
        return [
            _copy(route)
            for route in self._routes.values()
            if route.from_location == from_location
            and route.to_location == to_location
            and route.is_active
        ]

    async def set_route_active(self, route_id: str, active: bool) -> Route:
        async with self._registry_lock:
            route = self._routes.get(route_id)
            if route is None:
                raise NotFoundError(f"Route {route_id} not found")
            route = route.model_copy(update={"is_active": active})
            self._routes[route_id] = route
        return _copy(route)

    # Buses

    async def list_buses(self) -> list[Bus]:
        return [_copy(bus) for bus in self._buses.values()]

    async def get_bus(self, bus_id: str) -> Optional[Bus]:
        return _copy(self._buses.get(bus_id))

    async def create_bus(self, data: Union[BusCreate, dict]) -> Bus:
        data = coerce(BusCreate, data)
        async with self._registry_lock:
            if any(bus.number == data.number for bus in self._buses.values()):
                raise ConflictError(f"Bus number {data.number} already exists", number=data.number)
            bus = Bus(id=new_id(), **data.model_dump())
            self._buses[bus.id] = bus
        return _copy(bus)

    async def set_bus_active(self, bus_id: str, active: bool) -> Bus:
        async with self._bus_locks[bus_id]:
            bus = self._buses.get(bus_id)
            if bus is None:
                raise NotFoundError(f"Bus {bus_id} not found")
            bus = bus.model_copy(update={"is_active": active})
            self._buses[bus_id] = bus
        return _copy(bus)

    async def list_buses_with_locations(self) -> list[BusWithLocation]:
        return [
            BusWithLocation(**bus.model_dump(), location=_copy(self._locations.get(bus.id)))
            for bus in self._buses.values()
        ]

    # Schedules

    def _details(self, schedule: Schedule) -> ScheduleWithDetails:
        return join_schedule(
            _copy(schedule),
            _copy(self._buses.get(schedule.bus_id)),
            _copy(self._routes.get(schedule.route_id)),
        )

    async def list_schedules(self) -> list[ScheduleWithDetails]:
        return [self._details(s) for s in self._schedules.values()]

    async def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        return _copy(self._schedules.get(schedule_id))

    async def get_schedule_with_details(self, schedule_id: str) -> Optional[ScheduleWithDetails]:
        schedule = self._schedules.get(schedule_id)
        if schedule is None:
            return None
        return self._details(schedule)

    async def create_schedule(self, data: Union[ScheduleCreate, dict]) -> Schedule:
        data = coerce(ScheduleCreate, data)
        bus = self._buses.get(data.bus_id)
        if bus is None:
            raise NotFoundError(f"Bus {data.bus_id} not found")
        if data.route_id not in self._routes:
            raise NotFoundError(f"Route {data.route_id} not found")
        if not bus.is_active:
            raise ValidationError(f"Bus {bus.number} is not active", bus_id=bus.id)

        schedule = Schedule(id=new_id(), available_seats=bus.capacity, **data.model_dump())
        self._schedules[schedule.id] = schedule
        return _copy(schedule)

    async def update_schedule(self, schedule_id: str, updates: Union[ScheduleUpdate, dict]) -> Schedule:
        updates = coerce(ScheduleUpdate, updates)
        async with self._schedule_locks[schedule_id]:
            schedule = self._schedules.get(schedule_id)
            if schedule is None:
                raise NotFoundError(f"Schedule {schedule_id} not found")
            merged = schedule.model_copy(update=updates.model_dump(exclude_unset=True, exclude_none=True))
            if merged.arrival_time <= merged.departure_time:
                raise ValidationError("arrival_time must be after departure_time", schedule_id=schedule_id)
            self._schedules[schedule_id] = merged
        return _copy(merged)

    async def search_schedules(
        self, route_id: str, on_date: Union[date, datetime]
    ) -> list[ScheduleWithDetails]:
        day = as_date(on_date)
        route = self._routes.get(route_id)
        if route is None or not route.is_active:
            return []
        results = []
        for schedule in self._schedules.values():
            if schedule.route_id != route_id or schedule.status == ScheduleStatus.CANCELLED:
                continue
            if schedule.departure_time.date() != day:
                continue
            details = self._details(schedule)
            if details.bus.is_active:
                results.append(details)
        return sorted(results, key=lambda s: s.departure_time)

    # Bookings

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        return _copy(self._bookings.get(booking_id))

    async def get_booking_with_details(self, booking_id: str) -> Optional[BookingWithDetails]:
        booking = self._bookings.get(booking_id)
        if booking is None:
            return None
        return self._booking_details(booking)

    def _booking_details(self, booking: Booking) -> BookingWithDetails:
        schedule = self._schedules.get(booking.schedule_id)
        return join_booking(_copy(booking), self._details(schedule) if schedule else None)

    async def list_user_bookings(self, user_id: str) -> list[BookingWithDetails]:
        bookings = [b for b in self._bookings.values() if b.user_id == user_id]
        bookings.sort(key=lambda b: b.booked_at, reverse=True)
        return [self._booking_details(b) for b in bookings]

    async def list_schedule_bookings(self, schedule_id: str) -> list[Booking]:
        return [_copy(b) for b in self._bookings.values() if b.schedule_id == schedule_id]

    async def commit_booking(self, data: Union[NewBooking, dict]) -> Booking:
        data = coerce(NewBooking, data)
        if data.user_id not in self._users:
            raise NotFoundError(f"User {data.user_id} not found")

        async with self._schedule_locks[data.schedule_id]:
            schedule = self._schedules.get(data.schedule_id)
            if schedule is None:
                raise NotFoundError(f"Schedule {data.schedule_id} not found")
            check_commit(schedule, len(data.seat_numbers), data.quoted_price)
            held = self._seat_holds[schedule.id]
            check_seat_clash(data.seat_numbers, set(held))

            seats = len(data.seat_numbers)
            booking = Booking(
                id=new_id(),
                user_id=data.user_id,
                schedule_id=schedule.id,
                seat_numbers=list(data.seat_numbers),
                total_amount=to_money(schedule.price * seats),
                status=BookingStatus.CONFIRMED,
                passenger_details=data.passenger_details,
                payment_status=data.payment_status,
                transaction_id=data.transaction_id,
                booked_at=utcnow(),
            )
            self._schedules[schedule.id] = schedule.model_copy(
                update={"available_seats": schedule.available_seats - seats}
            )
            for label in booking.seat_numbers:
                held[label] = booking.id
            self._bookings[booking.id] = booking
        return _copy(booking)

    async def cancel_booking(self, booking_id: str) -> tuple[Booking, bool]:
        booking = self._bookings.get(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")

        async with self._schedule_locks[booking.schedule_id]:
            booking = self._bookings[booking_id]
            if booking.status == BookingStatus.CANCELLED:
                return _copy(booking), False
            if booking.status == BookingStatus.COMPLETED:
                raise ValidationError("Completed bookings cannot be cancelled", booking_id=booking_id)

            schedule = self._schedules.get(booking.schedule_id)
            if schedule is None:
                logger.error("integrity_violation", entity="booking", booking_id=booking_id, missing="schedule")
                raise IntegrityError(f"Booking {booking_id} references a missing schedule")

            self._schedules[schedule.id] = schedule.model_copy(
                update={"available_seats": schedule.available_seats + len(booking.seat_numbers)}
            )
            held = self._seat_holds[schedule.id]
            for label in booking.seat_numbers:
                if held.get(label) == booking_id:
                    del held[label]
            booking = booking.model_copy(update={"status": BookingStatus.CANCELLED})
            self._bookings[booking_id] = booking
        return _copy(booking), True

    async def update_booking_status(self, booking_id: str, status: BookingStatus) -> Booking:
        status = BookingStatus(status)
        if status == BookingStatus.CANCELLED:
            booking, _ = await self.cancel_booking(booking_id)
            return booking

        booking = self._bookings.get(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        async with self._schedule_locks[booking.schedule_id]:
            booking = self._bookings[booking_id]
            check_status_change(booking, status)
            booking = booking.model_copy(update={"status": status})
            self._bookings[booking_id] = booking
        return _copy(booking)

    # Bus locations

    async def get_bus_location(self, bus_id: str) -> Optional[BusLocation]:
        return _copy(self._locations.get(bus_id))

    async def list_bus_locations(self) -> list[BusLocation]:
        return [_copy(loc) for loc in self._locations.values()]

    async def upsert_bus_location(self, data: Union[BusLocationUpdate, dict]) -> BusLocation:
        data = coerce(BusLocationUpdate, data)
        async with self._bus_locks[data.bus_id]:
            bus = self._buses.get(data.bus_id)
            if bus is None:
                raise NotFoundError(f"Bus {data.bus_id} not found")
            if data.occupancy > bus.capacity:
                raise ValidationError(
                    f"Occupancy {data.occupancy} exceeds capacity {bus.capacity}",
                    bus_id=bus.id,
                )
            if data.schedule_id is not None and data.schedule_id not in self._schedules:
                raise NotFoundError(f"Schedule {data.schedule_id} not found")

            existing = self._locations.get(data.bus_id)
            location = BusLocation(
                id=existing.id if existing else new_id(),
                updated_at=utcnow(),
                **data.model_dump(),
            )
            self._locations[data.bus_id] = location
        return _copy(location)

    # Demand predictions

    async def list_demand_predictions(
        self, route_id: Optional[str], on_date: Union[date, datetime]
    ) -> list[DemandPrediction]:
        day = as_date(on_date)
        results = [
            _copy(p)
            for p in self._predictions.values()
            if p.date == day and (route_id is None or p.route_id == route_id)
        ]
        return sorted(results, key=lambda p: p.hour)

    async def create_demand_prediction(self, data: Union[DemandPredictionCreate, dict]) -> DemandPrediction:
        data = coerce(DemandPredictionCreate, data)
        if data.route_id not in self._routes:
            raise NotFoundError(f"Route {data.route_id} not found")
        accuracy = None
        if data.actual_demand is not None:
            accuracy = compute_accuracy(data.predicted_demand, data.actual_demand)
        prediction = DemandPrediction(
            id=new_id(), accuracy=accuracy, created_at=utcnow(), **data.model_dump()
        )
        self._predictions[prediction.id] = prediction
        return _copy(prediction)

    async def record_actual_demand(self, prediction_id: str, actual_demand: int) -> DemandPrediction:
        if actual_demand < 0:
            raise ValidationError("actual_demand must be non-negative")
        async with self._prediction_lock:
            prediction = self._predictions.get(prediction_id)
            if prediction is None:
                raise NotFoundError(f"Prediction {prediction_id} not found")
            prediction = prediction.model_copy(
                update={
                    "actual_demand": actual_demand,
                    "accuracy": compute_accuracy(prediction.predicted_demand, actual_demand),
                }
            )
            self._predictions[prediction_id] = prediction
        return _copy(prediction)
