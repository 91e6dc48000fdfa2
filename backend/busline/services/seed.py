"""
Demo data loaded at startup when SEED_DEMO_DATA is on.

Idempotent: the admin account is created only if its e-mail is free, and the
fleet only if the store has no routes yet (a durable store keeps its data
across restarts).
"""

from datetime import datetime, time, timedelta
from decimal import Decimal

from busline.core.config import Settings
from busline.core.logging import get_logger
from busline.schemas.base import utcnow
from busline.schemas.fleet import BusCreate, BusLocationUpdate, RouteCreate
from busline.schemas.schedule import ScheduleCreate
from busline.schemas.user import UserCreate
from busline.services.auth_service import register_user
from busline.store.base import EntityStore

logger = get_logger(__name__)


def _today_at(hour: int, minute: int) -> datetime:
    today = utcnow()
    return datetime.combine(today.date(), time(hour, minute), tzinfo=today.tzinfo)


async def seed_admin(store: EntityStore, settings: Settings) -> None:
    if await store.get_user_by_email(settings.SEED_ADMIN_EMAIL):
        return
    await register_user(
        store,
        UserCreate(
            email=settings.SEED_ADMIN_EMAIL,
            username="admin",
            password=settings.SEED_ADMIN_PASSWORD,
            first_name="Fleet",
            last_name="Admin",
        ),
        is_admin=True,
    )


async def seed_fleet(store: EntityStore) -> None:
    if await store.list_routes():
        return

    downtown = await store.create_route(RouteCreate(
        name="Downtown Express",
        from_location="Downtown Terminal",
        to_location="Airport Terminal",
        distance=Decimal("25.5"),
        estimated_duration=105,
        stops=["Central Plaza", "Business District", "University Campus"],
    ))
    await store.create_route(RouteCreate(
        name="University Loop",
        from_location="University Campus",
        to_location="Shopping Mall",
        distance=Decimal("12.3"),
        estimated_duration=45,
        stops=["Library", "Student Center", "Medical Center"],
    ))

    bus_101 = await store.create_bus(BusCreate(
        number="101",
        operator="Metro Transit Authority",
        capacity=45,
        amenities=["WiFi", "AC", "Charging Ports"],
    ))
    bus_205 = await store.create_bus(BusCreate(
        number="205",
        operator="City Bus Lines",
        capacity=38,
        amenities=["WiFi", "AC", "Reclining Seats"],
    ))

    morning = await store.create_schedule(ScheduleCreate(
        bus_id=bus_101.id,
        route_id=downtown.id,
        departure_time=_today_at(9, 30),
        arrival_time=_today_at(11, 15),
        price=Decimal("24.99"),
    ))
    noon = await store.create_schedule(ScheduleCreate(
        bus_id=bus_205.id,
        route_id=downtown.id,
        departure_time=_today_at(12, 0),
        arrival_time=_today_at(12, 0) + timedelta(minutes=150),
        price=Decimal("18.99"),
    ))

    await store.upsert_bus_location(BusLocationUpdate(
        bus_id=bus_101.id,
        schedule_id=morning.id,
        latitude=40.7589,
        longitude=-73.9851,
        current_stop="Central Plaza",
        occupancy=31,
        delay=0,
    ))
    await store.upsert_bus_location(BusLocationUpdate(
        bus_id=bus_205.id,
        schedule_id=noon.id,
        latitude=40.7282,
        longitude=-74.0776,
        current_stop="Business District",
        occupancy=25,
        delay=5,
    ))
    logger.info("demo_fleet_seeded", routes=2, buses=2, schedules=2)


async def seed_demo_data(store: EntityStore, settings: Settings) -> None:
    await seed_admin(store, settings)
    await seed_fleet(store)
