"""
Property-based tests for inventory and telemetry bounds.
"""

import asyncio
import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from hypothesis import given, settings, strategies as st

from busline.core.errors import DomainError
from busline.schemas.fleet import Bus, BusLocation
from busline.schemas.prediction import compute_accuracy
from busline.services.location_service import RandomWalkSource, clamp_occupancy
from busline.store.memory import MemoryStore

from conftest import PASSENGER

SEATS = [f"{row}{col}" for row in range(1, 4) for col in "AB"]

operations = st.lists(
    st.one_of(
        st.tuples(st.just("book"), st.lists(st.sampled_from(SEATS), min_size=1, max_size=3, unique=True)),
        st.tuples(st.just("cancel"), st.integers(min_value=0, max_value=20)),
    ),
    max_size=25,
)


async def run_operations(capacity: int, ops) -> None:
    store = MemoryStore()
    user = await store.create_user(
        {"email": "p@example.com", "username": "prop", "password": "x" * 8, "first_name": "P", "last_name": "Q"},
        "hash",
    )
    route = await store.create_route({
        "name": "R", "from_location": "A", "to_location": "B", "distance": 1, "estimated_duration": 10,
    })
    bus = await store.create_bus({"number": "1", "operator": "M", "capacity": capacity})
    start = datetime(2026, 1, 1, 8, tzinfo=timezone.utc)
    schedule = await store.create_schedule({
        "bus_id": bus.id, "route_id": route.id,
        "departure_time": start, "arrival_time": start + timedelta(hours=1), "price": "2.00",
    })

    booking_ids = []
    for op, arg in ops:
        try:
            if op == "book":
                booking = await store.commit_booking({
                    "user_id": user.id,
                    "schedule_id": schedule.id,
                    "seat_numbers": arg,
                    "passenger_details": PASSENGER,
                })
                booking_ids.append(booking.id)
            elif booking_ids:
                await store.cancel_booking(booking_ids[arg % len(booking_ids)])
        except DomainError:
            pass

        current = await store.get_schedule(schedule.id)
        held = [
            label
            for b in await store.list_schedule_bookings(schedule.id) if b.holds_seats
            for label in b.seat_numbers
        ]
        assert 0 <= current.available_seats <= capacity
        assert len(held) == len(set(held))
        assert current.available_seats + len(held) == capacity


@settings(max_examples=60, deadline=None)
@given(capacity=st.integers(min_value=1, max_value=6), ops=operations)
def test_any_book_cancel_sequence_keeps_inventory_consistent(capacity, ops):
    asyncio.run(run_operations(capacity, ops))


@given(occupancy=st.integers(min_value=-10_000, max_value=10_000), capacity=st.integers(min_value=1, max_value=500))
def test_clamp_occupancy_in_range(occupancy, capacity):
    assert 0 <= clamp_occupancy(occupancy, capacity) <= capacity


@given(
    capacity=st.integers(min_value=1, max_value=500),
    occupancy=st.integers(min_value=0, max_value=500),
    jitter=st.integers(min_value=0, max_value=1000),
    latitude=st.floats(min_value=-90, max_value=90),
    longitude=st.floats(min_value=-180, max_value=180),
    seed=st.integers(),
)
def test_random_walk_step_stays_in_bounds(capacity, occupancy, jitter, latitude, longitude, seed):
    bus = Bus(id="b", number="1", operator="M", capacity=capacity)
    current = BusLocation(
        id="l", bus_id="b", latitude=latitude, longitude=longitude,
        occupancy=min(occupancy, capacity), updated_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )
    source = RandomWalkSource(jitter_degrees=1.0, occupancy_jitter=jitter, rng=random.Random(seed))

    update = source.step(bus, current)

    assert 0 <= update.occupancy <= capacity
    assert -90 <= update.latitude <= 90
    assert -180 <= update.longitude <= 180


@given(predicted=st.integers(min_value=0, max_value=10_000), actual=st.integers(min_value=0, max_value=10_000))
def test_accuracy_is_a_percentage(predicted, actual):
    accuracy = compute_accuracy(predicted, actual)
    assert Decimal(0) <= accuracy <= Decimal(100)
    if predicted == actual:
        assert accuracy == Decimal("100.00")
