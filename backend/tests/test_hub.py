"""
Subscription hub tests: fan-out, liveness pruning and subscriber lifecycle.
"""

import json

import pytest

from busline.schemas.realtime import booking_created, pong
from busline.services.hub import SubscriberState, SubscriptionHub

from conftest import FakeTransport


@pytest.fixture
def hub():
    return SubscriptionHub(send_timeout=0.1)


@pytest.mark.asyncio
async def test_subscribe_accepts_and_connects(hub):
    transport = FakeTransport()
    subscriber = await hub.subscribe(transport)

    assert transport.accepted
    assert subscriber.state == SubscriberState.CONNECTED
    assert subscriber.connected_at is not None
    assert hub.subscriber_count == 1
    assert hub.stats() == {"subscribers": 1}


@pytest.mark.asyncio
async def test_accept_failure_marks_errored(hub):
    class RefusingTransport(FakeTransport):
        async def accept(self):
            raise RuntimeError("handshake failed")

    with pytest.raises(RuntimeError):
        await hub.subscribe(RefusingTransport())
    assert hub.subscriber_count == 0


@pytest.mark.asyncio
async def test_broadcast_reaches_every_live_subscriber(hub):
    transports = [FakeTransport() for _ in range(3)]
    for transport in transports:
        await hub.subscribe(transport)

    delivered = await hub.broadcast(booking_created("b-1", "s-1"))

    assert delivered == 3
    for transport in transports:
        assert json.loads(transport.sent[0]) == {
            "type": "booking_created",
            "data": {"bookingId": "b-1", "scheduleId": "s-1"},
        }


@pytest.mark.asyncio
async def test_broadcast_with_no_subscribers(hub):
    assert await hub.broadcast(booking_created("b-1", "s-1")) == 0


@pytest.mark.asyncio
async def test_closed_subscriber_is_pruned(hub):
    healthy, closed = FakeTransport(), FakeTransport()
    await hub.subscribe(healthy)
    gone = await hub.subscribe(closed)
    closed.open = False

    delivered = await hub.broadcast(booking_created("b-1", "s-1"))

    assert delivered == 1
    assert closed.sent == []
    assert gone.state == SubscriberState.DISCONNECTED
    assert hub.subscriber_count == 1


@pytest.mark.asyncio
async def test_failing_subscriber_is_dropped_without_affecting_others(hub):
    healthy, broken = FakeTransport(), FakeTransport(fail=True)
    await hub.subscribe(healthy)
    dropped = await hub.subscribe(broken)

    delivered = await hub.broadcast(booking_created("b-1", "s-1"))

    assert delivered == 1
    assert len(healthy.sent) == 1
    assert dropped.state == SubscriberState.ERRORED
    assert hub.subscriber_count == 1


@pytest.mark.asyncio
async def test_stalled_subscriber_times_out(hub):
    """A subscriber that never finishes a write is dropped after send_timeout."""
    healthy, stalled = FakeTransport(), FakeTransport(hang=True)
    await hub.subscribe(healthy)
    dropped = await hub.subscribe(stalled)

    delivered = await hub.broadcast(booking_created("b-1", "s-1"))

    assert delivered == 1
    assert dropped.state == SubscriberState.ERRORED
    assert hub.subscriber_count == 1


@pytest.mark.asyncio
async def test_late_subscriber_gets_no_replay(hub):
    early = FakeTransport()
    await hub.subscribe(early)
    await hub.broadcast(booking_created("b-1", "s-1"))

    late = FakeTransport()
    await hub.subscribe(late)
    await hub.broadcast(booking_created("b-2", "s-1"))

    assert [e["data"]["bookingId"] for e in early.events] == ["b-1", "b-2"]
    assert [e["data"]["bookingId"] for e in late.events] == ["b-2"]


@pytest.mark.asyncio
async def test_send_is_point_to_point(hub):
    target, bystander = FakeTransport(), FakeTransport()
    subscriber = await hub.subscribe(target)
    await hub.subscribe(bystander)

    assert await hub.send(subscriber, pong()) is True
    assert target.events == [{"type": "pong", "data": None}]
    assert bystander.sent == []


@pytest.mark.asyncio
async def test_unsubscribe_is_idempotent(hub):
    subscriber = await hub.subscribe(FakeTransport())

    hub.unsubscribe(subscriber)
    hub.unsubscribe(subscriber, SubscriberState.ERRORED)

    assert subscriber.state == SubscriberState.DISCONNECTED
    assert hub.subscriber_count == 0
    assert await hub.send(subscriber, pong()) is False


@pytest.mark.asyncio
async def test_close_closes_every_transport(hub):
    transports = [FakeTransport() for _ in range(2)]
    for transport in transports:
        await hub.subscribe(transport)

    await hub.close()

    assert hub.subscriber_count == 0
    assert all(not t.open for t in transports)
