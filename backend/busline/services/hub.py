"""
Real-time subscription hub.

FAN-OUT STRATEGY
================

One hub instance is owned by the application and injected into every
component that publishes (booking service, location ingest loop, schedule
admin). Nothing reaches for a module-level connection set.

Delivery is best-effort and at-most-once:
  - An event is serialized once per broadcast, then written to a snapshot of
    the subscriber set taken when the broadcast starts. A subscriber that
    joins afterwards never sees it; there is no replay.
  - Each write is bounded by `send_timeout`. A subscriber whose transport has
    closed is dropped as disconnected; one whose write raises or times out is
    dropped as errored. The broadcast itself never fails because of one
    subscriber.

Per-subscriber state: connecting -> connected -> (disconnected | errored).
Both end states are terminal and remove the subscriber from the set.
"""

import asyncio
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, Protocol

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from busline.core.logging import get_logger
from busline.core.metrics import realtime_subscribers, record_delivery
from busline.schemas.base import utcnow
from busline.schemas.realtime import RealtimeEvent

logger = get_logger(__name__)


class SubscriberState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERRORED = "errored"


TERMINAL_STATES = frozenset({SubscriberState.DISCONNECTED, SubscriberState.ERRORED})


class Transport(Protocol):
    """What the hub needs from a connection."""

    async def accept(self) -> None: ...

    async def send_text(self, text: str) -> None: ...

    def is_open(self) -> bool: ...

    async def close(self) -> None: ...


class WebSocketTransport:
    """Adapts a Starlette/FastAPI WebSocket to the hub's Transport."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def accept(self) -> None:
        await self.websocket.accept()

    async def send_text(self, text: str) -> None:
        await self.websocket.send_text(text)

    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def close(self) -> None:
        if self.websocket.application_state != WebSocketState.DISCONNECTED:
            await self.websocket.close()


class Subscriber:
    """Handle returned by `subscribe`; used for `send` and `unsubscribe`."""

    def __init__(self, transport: Transport):
        self.id = uuid.uuid4().hex[:12]
        self.transport = transport
        self.state = SubscriberState.CONNECTING
        self.connected_at: Optional[datetime] = None

    @property
    def is_live(self) -> bool:
        return self.state == SubscriberState.CONNECTED and self.transport.is_open()

    def __repr__(self) -> str:
        return f"<Subscriber(id={self.id}, state={self.state.value})>"


class SubscriptionHub:

    def __init__(self, send_timeout: float = 5.0):
        self.send_timeout = send_timeout
        self._subscribers: dict[str, Subscriber] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def stats(self) -> dict:
        return {"subscribers": self.subscriber_count}

    async def subscribe(self, transport: Transport) -> Subscriber:
        """Accept the transport and register it for broadcasts."""
        subscriber = Subscriber(transport)
        try:
            await transport.accept()
        except Exception as e:
            subscriber.state = SubscriberState.ERRORED
            logger.warning("subscriber_accept_failed", subscriber_id=subscriber.id, error=str(e))
            raise

        subscriber.state = SubscriberState.CONNECTED
        subscriber.connected_at = utcnow()
        self._subscribers[subscriber.id] = subscriber
        realtime_subscribers.set(self.subscriber_count)
        logger.info("subscriber_connected", subscriber_id=subscriber.id, total=self.subscriber_count)
        return subscriber

    def unsubscribe(
        self, subscriber: Subscriber, state: SubscriberState = SubscriberState.DISCONNECTED
    ) -> None:
        """Remove a subscriber. Safe to call repeatedly and from error paths."""
        if subscriber.state not in TERMINAL_STATES:
            subscriber.state = state
        if self._subscribers.pop(subscriber.id, None) is None:
            return
        realtime_subscribers.set(self.subscriber_count)
        logger.info(
            "subscriber_dropped",
            subscriber_id=subscriber.id,
            state=subscriber.state.value,
            total=self.subscriber_count,
        )

    async def send(self, subscriber: Subscriber, event: RealtimeEvent) -> bool:
        """Point-to-point delivery. Returns False if the subscriber was dropped."""
        return await self._deliver(subscriber, event.to_json())

    async def broadcast(self, event: RealtimeEvent) -> int:
        """
        Deliver `event` to every live subscriber.

        Returns the number of successful deliveries.
        """
        if not self._subscribers:
            return 0

        message = event.to_json()
        targets = list(self._subscribers.values())
        results = await asyncio.gather(*(self._deliver(sub, message) for sub in targets))
        delivered = sum(results)
        logger.debug(
            "event_broadcast",
            event_type=event.type,
            delivered=delivered,
            dropped=len(targets) - delivered,
        )
        return delivered

    async def _deliver(self, subscriber: Subscriber, message: str) -> bool:
        if not subscriber.is_live:
            self.unsubscribe(subscriber, SubscriberState.DISCONNECTED)
            record_delivery(False)
            return False
        try:
            await asyncio.wait_for(subscriber.transport.send_text(message), timeout=self.send_timeout)
        except Exception as e:
            logger.warning(
                "subscriber_send_failed",
                subscriber_id=subscriber.id,
                error=str(e) or e.__class__.__name__,
            )
            self.unsubscribe(subscriber, SubscriberState.ERRORED)
            record_delivery(False)
            return False
        record_delivery(True)
        return True

    async def close(self) -> None:
        """Close every transport on shutdown."""
        for subscriber in list(self._subscribers.values()):
            self.unsubscribe(subscriber)
            try:
                await subscriber.transport.close()
            except Exception as e:
                logger.debug("subscriber_close_failed", subscriber_id=subscriber.id, error=str(e))
