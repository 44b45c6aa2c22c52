"""
Real-time notifications to users.

Services receive a ``Notifier`` when they are built and never reach for a
global socket handle. ``SocketIONotifier`` delivers through a python-socketio
``AsyncServer``; ``RecordingNotifier`` keeps events in memory and backs the
tests; ``NullNotifier`` drops everything and is used by scripts.
"""

import logging
from typing import Any, List, Optional, Protocol, Tuple

import anyio
import socketio
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)

LISTING_APPROVED = "listing_approved"
LISTING_REJECTED = "listing_rejected"
NEW_PHONE_LISTING = "new_phone_listing"
CART_UPDATED = "cart_updated"
NEW_ORDER = "new_order"
ORDER_CREATED = "order_created"
ORDER_STATUS_UPDATED = "order_status_updated"


def user_room(user_id: str) -> str:
    return f"user_{user_id}"


class Notifier(Protocol):
    def to_user(self, user_id: str, event: str, payload: Any) -> None: ...

    def broadcast(self, event: str, payload: Any) -> None: ...


class NullNotifier:
    def to_user(self, user_id: str, event: str, payload: Any) -> None:
        logger.debug("dropping %s for %s", event, user_room(user_id))

    def broadcast(self, event: str, payload: Any) -> None:
        logger.debug("dropping broadcast %s", event)


class RecordingNotifier:
    """Keeps ``(room, event, payload)`` triples; ``room`` is None for broadcasts."""

    def __init__(self):
        self.sent: List[Tuple[Optional[str], str, Any]] = []

    def to_user(self, user_id: str, event: str, payload: Any) -> None:
        self.sent.append((user_room(user_id), event, payload))

    def broadcast(self, event: str, payload: Any) -> None:
        self.sent.append((None, event, payload))

    def events(self, name: str) -> List[Tuple[Optional[str], Any]]:
        return [(room, payload) for room, event, payload in self.sent if event == name]

    def clear(self) -> None:
        self.sent.clear()


def create_socket_server(cors_origins) -> socketio.AsyncServer:
    sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=cors_origins)

    @sio.event
    async def connect(sid, environ):
        logger.info("socket connected: %s", sid)

    @sio.event
    async def join_room(sid, user_id):
        await sio.enter_room(sid, user_room(user_id))

    @sio.event
    async def leave_room(sid, user_id):
        await sio.leave_room(sid, user_room(user_id))

    @sio.event
    async def disconnect(sid):
        logger.info("socket disconnected: %s", sid)

    return sio


class SocketIONotifier:
    """Emits through an ``AsyncServer`` from the sync request handlers.

    FastAPI runs sync endpoints in anyio worker threads, so emits are handed
    back to the event loop with ``anyio.from_thread.run``. Calling from any
    other thread raises, which the post-commit runner logs.
    """

    def __init__(self, sio: socketio.AsyncServer):
        self.sio = sio

    def _emit(self, event: str, payload: Any, room: Optional[str] = None) -> None:
        data = jsonable_encoder(payload)
        anyio.from_thread.run(lambda: self.sio.emit(event, data, room=room))

    def to_user(self, user_id: str, event: str, payload: Any) -> None:
        self._emit(event, payload, room=user_room(user_id))

    def broadcast(self, event: str, payload: Any) -> None:
        self._emit(event, payload)
