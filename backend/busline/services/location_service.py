"""
Location ingest and broadcast loop.

Once per tick:
  1. Read every bus that has a location row
  2. Ask the position source for its next position and occupancy
  3. Write each update through the store (one write per bus, independent)
  4. Broadcast exactly one `bus_locations_update` with every update applied

A failing bus is logged and skipped; it never aborts the rest of the tick.
The broadcast happens only after every write of the tick has returned, so
subscribers never see a position the store does not hold yet.
"""

import asyncio
import random
import time
from abc import ABC, abstractmethod
from typing import Optional

from busline.core.logging import get_logger
from busline.core.metrics import location_tick_latency, location_ticks, location_update_failures
from busline.schemas.fleet import Bus, BusLocation, BusLocationUpdate
from busline.schemas.realtime import BusLocationPayload, RealtimeEvent, bus_locations_update
from busline.services.hub import SubscriptionHub
from busline.store.base import EntityStore

logger = get_logger(__name__)


def clamp(value, low, high):
    return max(low, min(high, value))


def clamp_occupancy(occupancy: int, capacity: int) -> int:
    return clamp(occupancy, 0, capacity)


class PositionSource(ABC):
    """Where the next position of a bus comes from (simulation or telemetry feed)."""

    @abstractmethod
    async def next_position(self, bus: Bus, current: BusLocation) -> BusLocationUpdate:
        pass


class RandomWalkSource(PositionSource):
    """
    Simulated telemetry: bounded random walk around the current position.

    Latitude/longitude move by at most `jitter_degrees`; occupancy moves by at
    most `occupancy_jitter` passengers and is clamped to [0, capacity].
    """

    def __init__(
        self,
        jitter_degrees: float = 0.0005,
        occupancy_jitter: int = 5,
        rng: Optional[random.Random] = None,
    ):
        self.jitter_degrees = jitter_degrees
        self.occupancy_jitter = occupancy_jitter
        self.rng = rng or random.Random()

    def step(self, bus: Bus, current: BusLocation) -> BusLocationUpdate:
        jitter = self.jitter_degrees
        return BusLocationUpdate(
            bus_id=bus.id,
            schedule_id=current.schedule_id,
            latitude=clamp(current.latitude + self.rng.uniform(-jitter, jitter), -90.0, 90.0),
            longitude=clamp(current.longitude + self.rng.uniform(-jitter, jitter), -180.0, 180.0),
            current_stop=current.current_stop,
            occupancy=clamp_occupancy(
                current.occupancy + self.rng.randint(-self.occupancy_jitter, self.occupancy_jitter),
                bus.capacity,
            ),
            delay=current.delay,
        )

    async def next_position(self, bus: Bus, current: BusLocation) -> BusLocationUpdate:
        return self.step(bus, current)


class LocationIngestLoop:

    def __init__(
        self,
        store: EntityStore,
        hub: SubscriptionHub,
        source: Optional[PositionSource] = None,
        interval: float = 30.0,
    ):
        self.store = store
        self.hub = hub
        self.source = source or RandomWalkSource()
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> RealtimeEvent:
        """Run one ingest cycle and return the event that was broadcast."""
        start = time.perf_counter()
        updates: list[BusLocationPayload] = []
        failed = 0

        for bus in await self.store.list_buses_with_locations():
            if bus.location is None or not bus.is_active:
                continue
            try:
                update = await self.source.next_position(bus, bus.location)
                saved = await self.store.upsert_bus_location(update)
            except Exception as e:
                failed += 1
                location_update_failures.inc()
                logger.warning("location_update_failed", bus_id=bus.id, error=str(e))
                continue
            updates.append(BusLocationPayload.model_validate(saved))

        event = bus_locations_update(updates)
        delivered = await self.hub.broadcast(event)

        duration = time.perf_counter() - start
        location_ticks.inc()
        location_tick_latency.observe(duration)
        logger.info(
            "location_tick_completed",
            updated=len(updates),
            failed=failed,
            delivered=delivered,
            duration_ms=round(duration * 1000, 2),
        )
        return event

    async def run(self) -> None:
        logger.info("location_ingest_started", interval=self.interval)
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception as e:
                # Store unreachable for the whole tick; try again next period
                logger.error("location_tick_failed", error=str(e))

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("location_ingest_stopped")
