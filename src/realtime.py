"""
In-process realtime fan-out for connected dashboards.

Frames are JSON objects ``{"event": <name>, "data": <payload>}`` in both
directions. Delivery is best effort: only sockets connected at publish time
receive an event, nothing is queued or replayed, and a socket whose send fails
is dropped.

Rooms:
  agent-{agent_id}   joined with the client event ``agent-join``
  chat-{session_id}  joined with the client event ``join-chat``
"""
import asyncio
import itertools
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)


def chat_room(session_id: str) -> str:
    return f"chat-{session_id}"


def agent_room(agent_id) -> str:
    return f"agent-{agent_id}"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class Publisher:
    """Interface the lifecycle and message services publish through."""

    async def publish(self, event: str, data: dict) -> None:
        raise NotImplementedError

    async def publish_to_room(
        self,
        room: str,
        event: str,
        data: dict,
        exclude: Optional["Connection"] = None,
    ) -> None:
        raise NotImplementedError


class Connection:
    """One connected dashboard socket and the rooms it has joined."""

    _ids = itertools.count(1)

    def __init__(self, websocket: WebSocket):
        self.id = next(self._ids)
        self.websocket = websocket
        self.rooms: set[str] = set()

    async def send(self, event: str, data: Any) -> None:
        await self.websocket.send_json({"event": event, "data": data})


class ConnectionHub(Publisher):
    """Tracks live sockets and fans events out to all of them or to a room."""

    def __init__(self):
        self._connections: dict[int, Connection] = {}
        self._lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def room_members(self, room: str) -> list[Connection]:
        return [c for c in self._connections.values() if room in c.rooms]

    async def connect(self, websocket: WebSocket) -> Connection:
        await websocket.accept()
        conn = Connection(websocket)
        async with self._lock:
            self._connections[conn.id] = conn
        logger.info(f"Dashboard connected: #{conn.id} ({self.connection_count} open)")
        return conn

    async def disconnect(self, conn: Connection) -> None:
        async with self._lock:
            self._connections.pop(conn.id, None)
        logger.info(f"Dashboard disconnected: #{conn.id} ({self.connection_count} open)")

    def join(self, conn: Connection, room: str) -> None:
        conn.rooms.add(room)
        logger.debug(f"#{conn.id} joined {room}")

    def leave(self, conn: Connection, room: str) -> None:
        conn.rooms.discard(room)

    # ── Publisher ────────────────────────────────────────────────────────────

    async def publish(self, event: str, data: dict) -> None:
        await self._deliver(list(self._connections.values()), event, data)

    async def publish_to_room(
        self,
        room: str,
        event: str,
        data: dict,
        exclude: Optional[Connection] = None,
    ) -> None:
        targets = [c for c in self.room_members(room) if c is not exclude]
        await self._deliver(targets, event, data)

    async def _deliver(self, targets: list[Connection], event: str, data: dict) -> None:
        if not targets:
            return
        results = await asyncio.gather(
            *(c.send(event, data) for c in targets), return_exceptions=True
        )
        for conn, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning(f"Dropping #{conn.id}: send of '{event}' failed: {result}")
                await self.disconnect(conn)

    # ── Client-emitted events ────────────────────────────────────────────────

    async def handle_frame(self, conn: Connection, frame: dict) -> None:
        """Apply one frame received from a dashboard socket."""
        event = frame.get("event")
        data = frame.get("data")

        if event == "ping":
            await conn.send("pong", {"timestamp": _timestamp()})

        elif event == "agent-join":
            if data is None:
                return
            self.join(conn, agent_room(data))

        elif event == "join-chat":
            if not data:
                return
            self.join(conn, chat_room(data))

        elif event == "leave-chat":
            if data:
                self.leave(conn, chat_room(data))

        elif event in ("typing-start", "typing-stop"):
            if not isinstance(data, dict) or not data.get("session_id"):
                return
            session_id = data["session_id"]
            # Typing indicators are ephemeral and never reach the sender
            await self.publish_to_room(
                chat_room(session_id),
                "user-typing",
                {
                    "session_id": session_id,
                    "user_id": data.get("user_id"),
                    "is_typing": event == "typing-start",
                },
                exclude=conn,
            )

        else:
            await conn.send("error", {"message": f"Unknown event: {event}"})
