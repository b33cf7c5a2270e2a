"""Broadcast collaborator — fire-and-forget fan-out of form events to Socket.IO rooms."""

import logging
from typing import Any, Dict, List, Protocol, Sequence

import socketio

logger = logging.getLogger(__name__)

GLOBAL_ROOM = "global"


def rooms_for(session_id: str) -> List[str]:
    """Every event goes to the global room and to the session's own room."""
    return [GLOBAL_ROOM, session_id]


class Broadcaster(Protocol):
    async def publish(self, event: str, payload: Dict[str, Any], rooms: Sequence[str]) -> None: ...


class SocketIOBroadcaster:
    """Emits over a `socketio.AsyncServer`; clients subscribe with `join-room` / `leave-room`.

    Delivery is at-most-once: emit failures are logged and dropped.
    """

    def __init__(self, allowed_origins=None):
        self.sio = socketio.AsyncServer(
            cors_allowed_origins=allowed_origins or [],
            async_mode="asgi",
            logger=False,
            engineio_logger=False,
        )
        self._setup_event_handlers()

    def _setup_event_handlers(self):
        @self.sio.on("connect")
        async def handle_connect(sid, environ, auth=None):
            logger.info("Socket connected: %s", sid)
            await self.sio.enter_room(sid, GLOBAL_ROOM)

        @self.sio.on("disconnect")
        async def handle_disconnect(sid, *args):
            logger.info("Socket disconnected: %s", sid)

        @self.sio.on("join-room")
        async def join_room(sid, room):
            if isinstance(room, str) and room:
                await self.sio.enter_room(sid, room)
                logger.info("Socket %s joined room %s", sid, room)
                await self.sio.emit("room-joined", {"room": room}, to=sid)

        @self.sio.on("leave-room")
        async def leave_room(sid, room):
            if isinstance(room, str) and room:
                await self.sio.leave_room(sid, room)
                logger.info("Socket %s left room %s", sid, room)

    def asgi_app(self, other_asgi_app=None) -> socketio.ASGIApp:
        return socketio.ASGIApp(self.sio, other_asgi_app=other_asgi_app)

    async def publish(self, event: str, payload: Dict[str, Any], rooms: Sequence[str]) -> None:
        targets = list(dict.fromkeys(rooms))
        try:
            await self.sio.emit(event, payload, to=targets)
        except Exception:
            logger.warning("Broadcast of %s to %s failed", event, targets, exc_info=True)
            return
        logger.debug("Broadcast %s → %s", event, targets)


class LogBroadcaster:
    """Writes events to the log only; used by the Streamlit console."""

    async def publish(self, event: str, payload: Dict[str, Any], rooms: Sequence[str]) -> None:
        logger.info("[%s] → %s: %s", event, ",".join(rooms), sorted(payload))
