"""
Route catalog, fleet and timetable operations.

Reads are open to everyone. Writes (create, deactivate, reschedule, manual
location reports) are admin-only and check the caller's identity here, not
in the HTTP layer.
"""

from datetime import date

from busline.core.errors import NotFoundError
from busline.core.logging import get_logger
from busline.core.security import require_admin
from busline.schemas.fleet import (
    Bus, BusCreate, BusLocation, BusLocationReport, BusLocationUpdate, BusWithLocation, Route, RouteCreate,
)
from busline.schemas.realtime import schedule_updated
from busline.schemas.schedule import Schedule, ScheduleCreate, ScheduleUpdate, ScheduleWithDetails
from busline.schemas.user import Identity
from busline.services.cache_service import CacheService, route_list_key, route_search_key
from busline.services.hub import SubscriptionHub
from busline.store.base import EntityStore

logger = get_logger(__name__)


class CatalogService:

    def __init__(self, store: EntityStore, cache: CacheService, hub: SubscriptionHub):
        self.store = store
        self.cache = cache
        self.hub = hub

    # Routes

    async def list_routes(self, active_only: bool = False) -> list[Route]:
        key = route_list_key(active_only)
        cached = await self.cache.get_json(key)
        if cached is not None:
            return [Route.model_validate(item) for item in cached]
        routes = await self.store.list_routes(active_only=active_only)
        await self.cache.set_json(key, [r.model_dump(mode="json") for r in routes])
        return routes

    async def search_routes(self, from_location: str, to_location: str) -> list[Route]:
        key = route_search_key(from_location, to_location)
        cached = await self.cache.get_json(key)
        if cached is not None:
            return [Route.model_validate(item) for item in cached]
        routes = await self.store.search_routes(from_location, to_location)
        await self.cache.set_json(key, [r.model_dump(mode="json") for r in routes])
        return routes

    async def create_route(self, identity: Identity, data: RouteCreate) -> Route:
        require_admin(identity, "create_route")
        route = await self.store.create_route(data)
        await self.cache.invalidate_routes()
        logger.info("route_created", route_id=route.id, name=route.name)
        return route

    async def deactivate_route(self, identity: Identity, route_id: str) -> Route:
        require_admin(identity, "deactivate_route")
        route = await self.store.set_route_active(route_id, False)
        await self.cache.invalidate_routes()
        logger.info("route_deactivated", route_id=route_id)
        return route

    # Buses

    async def list_buses(self) -> list[Bus]:
        return await self.store.list_buses()

    async def list_buses_with_locations(self) -> list[BusWithLocation]:
        return await self.store.list_buses_with_locations()

    async def get_bus_location(self, bus_id: str) -> BusLocation:
        location = await self.store.get_bus_location(bus_id)
        if location is None:
            raise NotFoundError(f"No location for bus {bus_id}")
        return location

    async def create_bus(self, identity: Identity, data: BusCreate) -> Bus:
        require_admin(identity, "create_bus")
        bus = await self.store.create_bus(data)
        logger.info("bus_created", bus_id=bus.id, number=bus.number, capacity=bus.capacity)
        return bus

    async def deactivate_bus(self, identity: Identity, bus_id: str) -> Bus:
        require_admin(identity, "deactivate_bus")
        bus = await self.store.set_bus_active(bus_id, False)
        logger.info("bus_deactivated", bus_id=bus_id)
        return bus

    async def report_location(self, identity: Identity, bus_id: str, report: BusLocationReport) -> BusLocation:
        """Manual or telemetry position report; creates the row on first report."""
        require_admin(identity, "report_location")
        location = await self.store.upsert_bus_location(
            BusLocationUpdate(bus_id=bus_id, **report.model_dump())
        )
        logger.info("bus_location_reported", bus_id=bus_id, occupancy=location.occupancy)
        return location

    # Schedules

    async def list_schedules(self) -> list[ScheduleWithDetails]:
        return await self.store.list_schedules()

    async def get_schedule(self, schedule_id: str) -> ScheduleWithDetails:
        schedule = await self.store.get_schedule_with_details(schedule_id)
        if schedule is None:
            raise NotFoundError(f"Schedule {schedule_id} not found")
        return schedule

    async def search_schedules(self, route_id: str, on_date: date) -> list[ScheduleWithDetails]:
        return await self.store.search_schedules(route_id, on_date)

    async def create_schedule(self, identity: Identity, data: ScheduleCreate) -> Schedule:
        require_admin(identity, "create_schedule")
        schedule = await self.store.create_schedule(data)
        logger.info(
            "schedule_created",
            schedule_id=schedule.id,
            bus_id=schedule.bus_id,
            route_id=schedule.route_id,
            seats=schedule.available_seats,
        )
        return schedule

    async def update_schedule(
        self, identity: Identity, schedule_id: str, updates: ScheduleUpdate
    ) -> Schedule:
        require_admin(identity, "update_schedule")
        schedule = await self.store.update_schedule(schedule_id, updates)
        logger.info(
            "schedule_updated",
            schedule_id=schedule_id,
            fields=sorted(updates.model_dump(exclude_unset=True, exclude_none=True)),
        )
        await self.hub.broadcast(
            schedule_updated(schedule.id, schedule.status.value, schedule.available_seats)
        )
        return schedule
