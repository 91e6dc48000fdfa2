"""
Durable entity store on SQLAlchemy (async).

CONCURRENCY STRATEGY: Conditional Decrement
===========================================

Problem:
  Two passengers try to book the last seat of a schedule simultaneously.
  Both read available_seats=1, both decrement to 0, both succeed.
  Result: Overbooking.

Solution:
  1. Check the request against the schedule as read
  2. UPDATE schedules SET available_seats = available_seats - N, version = version + 1
     WHERE id = :schedule_id AND available_seats >= N AND status IN (bookable)
  3. If rows_affected == 0, the schedule no longer qualifies -> re-read and
     report the precise reason (capacity, status, price)

  The database serializes concurrent UPDATEs on the row, so commits that
  still fit all succeed; only requests that really ran out of seats fail.

  Seat labels are claimed by inserting one `seat_assignments` row per label
  in the same transaction. Its primary key (schedule_id, seat_label) makes a
  concurrent double-sell fail at flush time, which rolls the whole booking
  back, inventory decrement included.

  Cancellation flips the booking status with a conditional UPDATE
  (status != 'cancelled') first, so two concurrent cancellations restore the
  seats exactly once.
"""

from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Optional, Union

from sqlalchemy import delete, select, update
from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import AsyncEngine

from busline import models
from busline.core.errors import (
    CapacityExceededError, ConflictError, IntegrityError, NotFoundError, SeatConflictError,
    ValidationError,
)
from busline.core.logging import get_logger
from busline.core.metrics import store_retries
from busline.db.base import Base
from busline.db.session import create_sessionmaker
from busline.schemas.base import to_money, utcnow
from busline.schemas.booking import Booking, BookingStatus, BookingWithDetails, NewBooking
from busline.schemas.fleet import (
    Bus, BusCreate, BusLocation, BusLocationUpdate, BusWithLocation, Route, RouteCreate,
)
from busline.schemas.prediction import DemandPrediction, DemandPredictionCreate, compute_accuracy
from busline.schemas.schedule import (
    BOOKABLE_STATUSES, Schedule, ScheduleCreate, ScheduleStatus, ScheduleUpdate, ScheduleWithDetails,
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

MAX_RETRY_ATTEMPTS = 3


class _InventoryMoved(Exception):
    pass


def _plain(value):
    return value.value if isinstance(value, Enum) else value


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def _schedule_details(row: models.Schedule) -> ScheduleWithDetails:
    return join_schedule(
        Schedule.model_validate(row),
        Bus.model_validate(row.bus) if row.bus is not None else None,
        Route.model_validate(row.route) if row.route is not None else None,
    )


def _booking_details(row: models.Booking) -> BookingWithDetails:
    schedule = _schedule_details(row.schedule) if row.schedule is not None else None
    return join_booking(Booking.model_validate(row), schedule)


class SqlStore(EntityStore):

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._sessions = create_sessionmaker(engine)

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def close(self) -> None:
        await self.engine.dispose()

    # Users

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self._sessions() as db:
            row = await db.get(models.User, user_id)
            return User.model_validate(row) if row else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        async with self._sessions() as db:
            result = await db.execute(select(models.User).where(models.User.email == email.lower()))
            row = result.scalar_one_or_none()
            return User.model_validate(row) if row else None

    async def create_user(
        self, data: Union[UserCreate, dict], hashed_password: str, is_admin: bool = False
    ) -> User:
        data = coerce(UserCreate, data)
        email = data.email.lower()
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
        try:
            async with self._sessions.begin() as db:
                taken = await db.execute(
                    select(models.User.email, models.User.username).where(
                        (models.User.email == email) | (models.User.username == data.username)
                    )
                )
                for existing_email, _ in taken.all():
                    if existing_email == email:
                        raise ConflictError("Email already registered", email=email)
                    raise ConflictError("Username already taken", username=data.username)
                db.add(models.User(**user.model_dump()))
        except sa_exc.IntegrityError as exc:
            raise ConflictError("Email or username already registered") from exc
        return user

    async def update_user(
        self,
        user_id: str,
        *,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
        hashed_password: Optional[str] = None,
    ) -> User:
        async with self._sessions.begin() as db:
            row = await db.get(models.User, user_id, with_for_update=True)
            if row is None:
                raise NotFoundError(f"User {user_id} not found")
            for key, value in {
                "first_name": first_name,
                "last_name": last_name,
                "phone": phone,
                "hashed_password": hashed_password,
            }.items():
                if value is not None:
                    setattr(row, key, value)
            await db.flush()
            return User.model_validate(row)

    # Routes

    async def list_routes(self, active_only: bool = False) -> list[Route]:
        query = select(models.Route).order_by(models.Route.name)
        if active_only:
            query = query.where(models.Route.is_active.is_(True))
        async with self._sessions() as db:
            result = await db.execute(query)
            return [Route.model_validate(row) for row in result.scalars().all()]

    async def get_route(self, route_id: str) -> Optional[Route]:
        async with self._sessions() as db:
            row = await db.get(models.Route, route_id)
            return Route.model_validate(row) if row else None

    async def create_route(self, data: Union[RouteCreate, dict]) -> Route:
        data = coerce(RouteCreate, data)
        route = Route(id=new_id(), **data.model_dump())
        async with self._sessions.begin() as db:
            db.add(models.Route(**route.model_dump()))
        return route

    async def search_routes(self, from_location: str, to_location: str) -> list[Route]:
        async with self._sessions() as db:
            result = await db.execute(
                select(models.Route).where(
                    models.Route.from_location == from_location,
                    models.Route.to_location == to_location,
                    models.Route.is_active.is_(True),
                )
            )
            return [Route.model_validate(row) for row in result.scalars().all()]

    async def set_route_active(self, route_id: str, active: bool) -> Route:
        async with self._sessions.begin() as db:
            row = await db.get(models.Route, route_id, with_for_update=True)
            if row is None:
                raise NotFoundError(f"Route {route_id} not found")
            row.is_active = active
            await db.flush()
            return Route.model_validate(row)

    # Buses

    async def list_buses(self) -> list[Bus]:
        async with self._sessions() as db:
            result = await db.execute(select(models.Bus).order_by(models.Bus.number))
            return [Bus.model_validate(row) for row in result.scalars().all()]

    async def get_bus(self, bus_id: str) -> Optional[Bus]:
        async with self._sessions() as db:
            row = await db.get(models.Bus, bus_id)
            return Bus.model_validate(row) if row else None

    async def create_bus(self, data: Union[BusCreate, dict]) -> Bus:
        data = coerce(BusCreate, data)
        bus = Bus(id=new_id(), **data.model_dump())
        try:
            async with self._sessions.begin() as db:
                taken = await db.execute(select(models.Bus.id).where(models.Bus.number == data.number))
                if taken.first() is not None:
                    raise ConflictError(f"Bus number {data.number} already exists", number=data.number)
                db.add(models.Bus(**bus.model_dump()))
        except sa_exc.IntegrityError as exc:
            raise ConflictError(f"Bus number {data.number} already exists") from exc
        return bus

    async def set_bus_active(self, bus_id: str, active: bool) -> Bus:
        async with self._sessions.begin() as db:
            row = await db.get(models.Bus, bus_id, with_for_update=True)
            if row is None:
                raise NotFoundError(f"Bus {bus_id} not found")
            row.is_active = active
            await db.flush()
            return Bus.model_validate(row)

    async def list_buses_with_locations(self) -> list[BusWithLocation]:
        async with self._sessions() as db:
            buses = (await db.execute(select(models.Bus).order_by(models.Bus.number))).scalars().all()
            locations = (await db.execute(select(models.BusLocation))).scalars().all()
            by_bus = {loc.bus_id: BusLocation.model_validate(loc) for loc in locations}
            return [
                BusWithLocation(**Bus.model_validate(bus).model_dump(), location=by_bus.get(bus.id))
                for bus in buses
            ]

    # Schedules

    async def list_schedules(self) -> list[ScheduleWithDetails]:
        async with self._sessions() as db:
            result = await db.execute(select(models.Schedule).order_by(models.Schedule.departure_time))
            return [_schedule_details(row) for row in result.scalars().all()]

    async def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        async with self._sessions() as db:
            row = await db.get(models.Schedule, schedule_id)
            return Schedule.model_validate(row) if row else None

    async def get_schedule_with_details(self, schedule_id: str) -> Optional[ScheduleWithDetails]:
        async with self._sessions() as db:
            row = await db.get(models.Schedule, schedule_id)
            return _schedule_details(row) if row else None

    async def create_schedule(self, data: Union[ScheduleCreate, dict]) -> Schedule:
        data = coerce(ScheduleCreate, data)
        async with self._sessions.begin() as db:
            bus = await db.get(models.Bus, data.bus_id)
            if bus is None:
                raise NotFoundError(f"Bus {data.bus_id} not found")
            if await db.get(models.Route, data.route_id) is None:
                raise NotFoundError(f"Route {data.route_id} not found")
            if not bus.is_active:
                raise ValidationError(f"Bus {bus.number} is not active", bus_id=bus.id)

            schedule = Schedule(id=new_id(), available_seats=bus.capacity, **data.model_dump())
            db.add(models.Schedule(
                **{key: _plain(value) for key, value in schedule.model_dump().items()},
                version=1,
            ))
        return schedule

    async def update_schedule(self, schedule_id: str, updates: Union[ScheduleUpdate, dict]) -> Schedule:
        updates = coerce(ScheduleUpdate, updates)
        changes = updates.model_dump(exclude_unset=True, exclude_none=True)
        async with self._sessions.begin() as db:
            row = await db.get(models.Schedule, schedule_id, with_for_update=True)
            if row is None:
                raise NotFoundError(f"Schedule {schedule_id} not found")
            merged = Schedule.model_validate(row).model_copy(update=changes)
            if merged.arrival_time <= merged.departure_time:
                raise ValidationError("arrival_time must be after departure_time", schedule_id=schedule_id)
            for key, value in changes.items():
                setattr(row, key, _plain(value))
            row.version = row.version + 1
        return merged

    async def search_schedules(
        self, route_id: str, on_date: Union[date, datetime]
    ) -> list[ScheduleWithDetails]:
        start, end = _day_bounds(as_date(on_date))
        async with self._sessions() as db:
            result = await db.execute(
                select(models.Schedule)
                .join(models.Route, models.Route.id == models.Schedule.route_id)
                .join(models.Bus, models.Bus.id == models.Schedule.bus_id)
                .where(
                    models.Schedule.route_id == route_id,
                    models.Schedule.departure_time >= start,
                    models.Schedule.departure_time < end,
                    models.Schedule.status != ScheduleStatus.CANCELLED.value,
                    models.Route.is_active.is_(True),
                    models.Bus.is_active.is_(True),
                )
                .order_by(models.Schedule.departure_time)
            )
            return [_schedule_details(row) for row in result.scalars().all()]

    # Bookings

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        async with self._sessions() as db:
            row = await db.get(models.Booking, booking_id)
            return Booking.model_validate(row) if row else None

    async def get_booking_with_details(self, booking_id: str) -> Optional[BookingWithDetails]:
        async with self._sessions() as db:
            row = await db.get(models.Booking, booking_id)
            return _booking_details(row) if row else None

    async def list_user_bookings(self, user_id: str) -> list[BookingWithDetails]:
        async with self._sessions() as db:
            result = await db.execute(
                select(models.Booking)
                .where(models.Booking.user_id == user_id)
                .order_by(models.Booking.booked_at.desc())
            )
            return [_booking_details(row) for row in result.scalars().all()]

    async def list_schedule_bookings(self, schedule_id: str) -> list[Booking]:
        async with self._sessions() as db:
            result = await db.execute(
                select(models.Booking).where(models.Booking.schedule_id == schedule_id)
            )
            return [Booking.model_validate(row) for row in result.scalars().all()]

    async def commit_booking(self, data: Union[NewBooking, dict]) -> Booking:
        data = coerce(NewBooking, data)
        seats = len(data.seat_numbers)

        for attempt in range(1, MAX_RETRY_ATTEMPTS + 1):
            try:
                return await self._try_commit(data, seats)
            except _InventoryMoved:
                store_retries.inc()
                logger.info(
                    "booking_retry",
                    schedule_id=data.schedule_id,
                    attempt=attempt,
                    reason="inventory_moved",
                )

        # The schedule kept moving under us; report against the latest inventory
        schedule = await self.get_schedule(data.schedule_id)
        if schedule is None:
            raise NotFoundError(f"Schedule {data.schedule_id} not found")
        check_commit(schedule, len(data.seat_numbers), data.quoted_price)
        raise CapacityExceededError(
            f"Not enough seats. Requested: {seats}, Available: {schedule.available_seats}",
            requested=seats,
            available=schedule.available_seats,
        )

    async def _try_commit(self, data: NewBooking, seats: int) -> Booking:
        try:
            async with self._sessions.begin() as db:
                if await db.get(models.User, data.user_id) is None:
                    raise NotFoundError(f"User {data.user_id} not found")
                row = await db.get(models.Schedule, data.schedule_id)
                if row is None:
                    raise NotFoundError(f"Schedule {data.schedule_id} not found")
                schedule = Schedule.model_validate(row)
                check_commit(schedule, len(data.seat_numbers), data.quoted_price)

                held = await db.execute(
                    select(models.SeatAssignment.seat_label).where(
                        models.SeatAssignment.schedule_id == schedule.id,
                        models.SeatAssignment.seat_label.in_(data.seat_numbers),
                    )
                )
                check_seat_clash(data.seat_numbers, set(held.scalars().all()))

                # Conditional decrement - applies only while the schedule still qualifies
                conditions = [
                    models.Schedule.id == schedule.id,
                    models.Schedule.available_seats >= seats,
                    models.Schedule.status.in_([status.value for status in BOOKABLE_STATUSES]),
                ]
                if data.quoted_price is not None:
                    conditions.append(models.Schedule.price == data.quoted_price)
                result = await db.execute(
                    update(models.Schedule)
                    .where(*conditions)
                    .values(
                        available_seats=models.Schedule.available_seats - seats,
                        version=models.Schedule.version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise _InventoryMoved()

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
                db.add(models.Booking(
                    **{
                        key: _plain(value)
                        for key, value in booking.model_dump(exclude={"passenger_details"}).items()
                    },
                    passenger_details=booking.passenger_details.model_dump(mode="json"),
                ))
                # Booking row must exist before its seat rows reference it
                await db.flush()
                db.add_all(
                    models.SeatAssignment(schedule_id=schedule.id, seat_label=label, booking_id=booking.id)
                    for label in booking.seat_numbers
                )
                await db.flush()
        except sa_exc.IntegrityError as exc:
            raise SeatConflictError(
                "One or more seats were just taken by another booking",
                seats=data.seat_numbers,
            ) from exc
        return booking

    async def cancel_booking(self, booking_id: str) -> tuple[Booking, bool]:
        async with self._sessions.begin() as db:
            row = await db.get(models.Booking, booking_id, with_for_update=True)
            if row is None:
                raise NotFoundError(f"Booking {booking_id} not found")
            if row.status == BookingStatus.COMPLETED.value:
                raise ValidationError("Completed bookings cannot be cancelled", booking_id=booking_id)

            flipped = await db.execute(
                update(models.Booking)
                .where(
                    models.Booking.id == booking_id,
                    models.Booking.status == BookingStatus.CONFIRMED.value,
                )
                .values(status=BookingStatus.CANCELLED.value)
                .execution_options(synchronize_session=False)
            )
            if flipped.rowcount == 0:
                await db.refresh(row)
                return Booking.model_validate(row), False

            restored = await db.execute(
                update(models.Schedule)
                .where(models.Schedule.id == row.schedule_id)
                .values(
                    available_seats=models.Schedule.available_seats + len(row.seat_numbers),
                    version=models.Schedule.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if restored.rowcount == 0:
                logger.error("integrity_violation", entity="booking", booking_id=booking_id, missing="schedule")
                raise IntegrityError(f"Booking {booking_id} references a missing schedule")

            await db.execute(
                delete(models.SeatAssignment).where(models.SeatAssignment.booking_id == booking_id)
            )
            await db.refresh(row)
            return Booking.model_validate(row), True

    async def update_booking_status(self, booking_id: str, status: BookingStatus) -> Booking:
        status = BookingStatus(status)
        if status == BookingStatus.CANCELLED:
            booking, _ = await self.cancel_booking(booking_id)
            return booking

        async with self._sessions.begin() as db:
            row = await db.get(models.Booking, booking_id, with_for_update=True)
            if row is None:
                raise NotFoundError(f"Booking {booking_id} not found")
            check_status_change(Booking.model_validate(row), status)
            row.status = status.value
            await db.flush()
            return Booking.model_validate(row)

    # Bus locations

    async def get_bus_location(self, bus_id: str) -> Optional[BusLocation]:
        async with self._sessions() as db:
            result = await db.execute(select(models.BusLocation).where(models.BusLocation.bus_id == bus_id))
            row = result.scalar_one_or_none()
            return BusLocation.model_validate(row) if row else None

    async def list_bus_locations(self) -> list[BusLocation]:
        async with self._sessions() as db:
            result = await db.execute(select(models.BusLocation))
            return [BusLocation.model_validate(row) for row in result.scalars().all()]

    async def upsert_bus_location(self, data: Union[BusLocationUpdate, dict]) -> BusLocation:
        data = coerce(BusLocationUpdate, data)
        try:
            return await self._write_location(data)
        except sa_exc.IntegrityError:
            # Lost a race creating the first row; it exists now, so update it
            return await self._write_location(data)

    async def _write_location(self, data: BusLocationUpdate) -> BusLocation:
        async with self._sessions.begin() as db:
            bus = await db.get(models.Bus, data.bus_id)
            if bus is None:
                raise NotFoundError(f"Bus {data.bus_id} not found")
            if data.occupancy > bus.capacity:
                raise ValidationError(
                    f"Occupancy {data.occupancy} exceeds capacity {bus.capacity}",
                    bus_id=bus.id,
                )
            if data.schedule_id is not None and await db.get(models.Schedule, data.schedule_id) is None:
                raise NotFoundError(f"Schedule {data.schedule_id} not found")

            result = await db.execute(
                select(models.BusLocation)
                .where(models.BusLocation.bus_id == data.bus_id)
                .with_for_update()
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = models.BusLocation(id=new_id(), bus_id=data.bus_id)
                db.add(row)
            for key, value in data.model_dump(exclude={"bus_id"}).items():
                setattr(row, key, value)
            row.updated_at = utcnow()
            await db.flush()
            return BusLocation.model_validate(row)

    # Demand predictions

    async def list_demand_predictions(
        self, route_id: Optional[str], on_date: Union[date, datetime]
    ) -> list[DemandPrediction]:
        query = (
            select(models.DemandPrediction)
            .where(models.DemandPrediction.date == as_date(on_date))
            .order_by(models.DemandPrediction.hour)
        )
        if route_id is not None:
            query = query.where(models.DemandPrediction.route_id == route_id)
        async with self._sessions() as db:
            result = await db.execute(query)
            return [DemandPrediction.model_validate(row) for row in result.scalars().all()]

    async def create_demand_prediction(self, data: Union[DemandPredictionCreate, dict]) -> DemandPrediction:
        data = coerce(DemandPredictionCreate, data)
        accuracy = None
        if data.actual_demand is not None:
            accuracy = compute_accuracy(data.predicted_demand, data.actual_demand)
        prediction = DemandPrediction(
            id=new_id(), accuracy=accuracy, created_at=utcnow(), **data.model_dump()
        )
        async with self._sessions.begin() as db:
            if await db.get(models.Route, data.route_id) is None:
                raise NotFoundError(f"Route {data.route_id} not found")
            db.add(models.DemandPrediction(**prediction.model_dump()))
        return prediction

    async def record_actual_demand(self, prediction_id: str, actual_demand: int) -> DemandPrediction:
        if actual_demand < 0:
            raise ValidationError("actual_demand must be non-negative")
        async with self._sessions.begin() as db:
            row = await db.get(models.DemandPrediction, prediction_id, with_for_update=True)
            if row is None:
                raise NotFoundError(f"Prediction {prediction_id} not found")
            row.actual_demand = actual_demand
            row.accuracy = compute_accuracy(row.predicted_demand, actual_demand)
            await db.flush()
            return DemandPrediction.model_validate(row)
