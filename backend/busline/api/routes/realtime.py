"""
Real-time channel. One WebSocket endpoint; the server pushes
`{"type", "data"}` events. The only client message understood is a ping.
"""

import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from busline.core.logging import get_logger
from busline.schemas.realtime import pong
from busline.services.hub import SubscriberState, WebSocketTransport

logger = get_logger(__name__)
router = APIRouter(tags=["Realtime"])


@router.websocket("/ws")
async def realtime_channel(websocket: WebSocket):
    hub = websocket.app.state.services.hub
    subscriber = await hub.subscribe(WebSocketTransport(websocket))
    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                logger.debug("realtime_message_ignored", subscriber_id=subscriber.id)
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                if not await hub.send(subscriber, pong()):
                    break
    except WebSocketDisconnect:
        hub.unsubscribe(subscriber, SubscriberState.DISCONNECTED)
    except Exception as e:
        logger.warning("realtime_channel_error", subscriber_id=subscriber.id, error=str(e))
        hub.unsubscribe(subscriber, SubscriberState.ERRORED)
    finally:
        hub.unsubscribe(subscriber)
