"""
Location ingest tests: bounded random walk, per-bus failure isolation and
one broadcast per tick.
"""

import asyncio
import random

import pytest
import pytest_asyncio

from busline.schemas.fleet import Bus, BusCreate, BusLocation, BusLocationUpdate
from busline.services.hub import SubscriptionHub
from busline.services.location_service import (
    LocationIngestLoop,
    PositionSource,
    RandomWalkSource,
    clamp_occupancy,
)
from busline.store.memory import MemoryStore

from conftest import FakeTransport


class FlakySource(PositionSource):
    """Fails for one bus, walks the others with the real source."""

    def __init__(self, failing_bus_id: str):
        self.failing_bus_id = failing_bus_id
        self.walk = RandomWalkSource(rng=random.Random(7))

    async def next_position(self, bus: Bus, current: BusLocation) -> BusLocationUpdate:
        if bus.id == self.failing_bus_id:
            raise ConnectionError("telemetry feed unavailable")
        return self.walk.step(bus, current)


@pytest_asyncio.fixture
async def located_fleet(store: MemoryStore):
    """Two located buses and one bus that has never reported."""
    buses = []
    for number, capacity in (("101", 45), ("205", 38), ("310", 50)):
        buses.append(await store.create_bus(BusCreate(number=number, operator="Metro", capacity=capacity)))
    for bus, lat in zip(buses[:2], (40.7128, 40.7589)):
        await store.upsert_bus_location({
            "bus_id": bus.id, "latitude": lat, "longitude": -74.0060, "occupancy": 20,
            "current_stop": "Central Plaza", "delay": 3,
        })
    return buses


def test_clamp_occupancy_bounds():
    assert clamp_occupancy(-5, 10) == 0
    assert clamp_occupancy(15, 10) == 10
    assert clamp_occupancy(7, 10) == 7


def test_random_walk_keeps_stop_and_delay():
    bus = Bus(id="b", number="1", operator="M", capacity=10)
    current = BusLocation(
        id="l", bus_id="b", latitude=10.0, longitude=20.0, occupancy=5,
        current_stop="Library", delay=12, updated_at="2026-01-01T00:00:00Z",
    )
    update = RandomWalkSource(jitter_degrees=0.001, rng=random.Random(1)).step(bus, current)

    assert update.current_stop == "Library"
    assert update.delay == 12
    assert abs(update.latitude - 10.0) <= 0.001
    assert abs(update.longitude - 20.0) <= 0.001


@pytest.mark.asyncio
async def test_tick_broadcasts_one_event_with_every_update(store, located_fleet):
    hub = SubscriptionHub(send_timeout=0.5)
    transport = FakeTransport()
    await hub.subscribe(transport)
    loop = LocationIngestLoop(store, hub, RandomWalkSource(rng=random.Random(3)))

    event = await loop.tick()

    assert len(transport.events) == 1
    message = transport.events[0]
    assert message["type"] == "bus_locations_update"
    assert {u["busId"] for u in message["data"]} == {located_fleet[0].id, located_fleet[1].id}
    assert set(message["data"][0]) == {"busId", "latitude", "longitude", "occupancy", "currentStop", "delay"}
    assert len(event.data) == 2


@pytest.mark.asyncio
async def test_broadcast_matches_stored_positions(store, located_fleet):
    hub = SubscriptionHub()
    transport = FakeTransport()
    await hub.subscribe(transport)

    await LocationIngestLoop(store, hub).tick()

    for update in transport.events[0]["data"]:
        stored = await store.get_bus_location(update["busId"])
        assert stored.latitude == update["latitude"]
        assert stored.occupancy == update["occupancy"]


@pytest.mark.asyncio
async def test_empty_fleet_still_emits_one_event(store):
    hub = SubscriptionHub()
    transport = FakeTransport()
    await hub.subscribe(transport)

    await LocationIngestLoop(store, hub).tick()

    assert transport.events == [{"type": "bus_locations_update", "data": []}]


@pytest.mark.asyncio
async def test_inactive_bus_is_not_moved(store, located_fleet):
    await store.set_bus_active(located_fleet[0].id, False)
    before = await store.get_bus_location(located_fleet[0].id)

    event = await LocationIngestLoop(store, SubscriptionHub()).tick()

    assert [u.bus_id for u in event.data] == [located_fleet[1].id]
    assert await store.get_bus_location(located_fleet[0].id) == before


@pytest.mark.asyncio
async def test_one_failing_bus_does_not_abort_the_tick(store, located_fleet):
    failing, healthy = located_fleet[0], located_fleet[1]
    hub = SubscriptionHub()
    transport = FakeTransport()
    await hub.subscribe(transport)
    before = await store.get_bus_location(failing.id)

    await LocationIngestLoop(store, hub, FlakySource(failing.id)).tick()

    assert [u["busId"] for u in transport.events[0]["data"]] == [healthy.id]
    assert await store.get_bus_location(failing.id) == before


@pytest.mark.asyncio
async def test_subscriber_joining_after_tick_gets_nothing(store, located_fleet):
    hub = SubscriptionHub()
    loop = LocationIngestLoop(store, hub)
    await loop.tick()

    late = FakeTransport()
    await hub.subscribe(late)
    assert late.sent == []


@pytest.mark.asyncio
async def test_occupancy_stays_within_capacity_over_many_ticks():
    """Even with jitter far larger than capacity, occupancy never leaves [0, capacity]."""
    store = MemoryStore()
    bus = await store.create_bus(BusCreate(number="9", operator="Metro", capacity=4))
    await store.upsert_bus_location({"bus_id": bus.id, "latitude": 89.9999, "longitude": 179.9999})
    loop = LocationIngestLoop(
        store,
        SubscriptionHub(),
        RandomWalkSource(jitter_degrees=0.5, occupancy_jitter=50, rng=random.Random(42)),
    )

    for _ in range(10_000):
        event = await loop.tick()
        update = event.data[0]
        assert 0 <= update.occupancy <= bus.capacity
        assert -90 <= update.latitude <= 90
        assert -180 <= update.longitude <= 180


@pytest.mark.asyncio
async def test_start_and_stop(store, located_fleet):
    hub = SubscriptionHub()
    transport = FakeTransport()
    await hub.subscribe(transport)
    loop = LocationIngestLoop(store, hub, interval=0.01)

    loop.start()
    assert loop.running
    await asyncio.sleep(0.1)
    await loop.stop()

    assert not loop.running
    assert len(transport.events) >= 1
    assert all(e["type"] == "bus_locations_update" for e in transport.events)
