"""
Realtime client for the dashboard event stream at /ws.

Keeps one WebSocket open in a background task, reconnecting with backoff,
and dispatches server events to registered async handlers. Rooms joined
through ``agent_join`` / ``join_chat`` are re-joined after every reconnect.
"""
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

import websockets

from src.config import WS_CONNECT_TIMEOUT

logger = logging.getLogger(__name__)

RECONNECT_DELAY = 1  # seconds before the first reconnect attempt
MAX_RECONNECT_DELAY = 30

Handler = Callable[[Any], Awaitable[None]]


def ws_url_for(base_url: str) -> str:
    url = base_url.rstrip("/").replace("https://", "wss://").replace("http://", "ws://")
    return f"{url}/ws"


class RealtimeClient:
    def __init__(self, base_url: str, connect_timeout: float = WS_CONNECT_TIMEOUT):
        self.url = ws_url_for(base_url)
        self.connect_timeout = connect_timeout
        self._handlers: dict[str, list[Handler]] = {}
        self._ws = None
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._connected = asyncio.Event()
        self._agent_id = None
        self._chats: set[str] = set()

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    def on(self, event: str, handler: Handler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    async def start(self) -> None:
        """Start the connection loop in the background. No-op while it is already running."""
        if self._task is not None and not self._task.done():
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())

    async def wait_connected(self, timeout: Optional[float] = None) -> bool:
        try:
            await asyncio.wait_for(self._connected.wait(), timeout or self.connect_timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def stop(self) -> None:
        self._running = False
        if self._ws is not None:
            await self._ws.close()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._connected.clear()
        self._agent_id = None
        self._chats.clear()

    # ── client-emitted events ────────────────────────────────────────────────

    async def emit(self, event: str, data: Any = None) -> bool:
        """Send a frame if connected. Returns False when the frame was dropped."""
        if self._ws is None or not self.connected:
            return False
        try:
            await self._ws.send(json.dumps({"event": event, "data": data}))
            return True
        except websockets.ConnectionClosed:
            return False

    async def agent_join(self, agent_id) -> None:
        self._agent_id = agent_id
        await self.emit("agent-join", agent_id)

    async def join_chat(self, session_id: str) -> None:
        self._chats.add(session_id)
        await self.emit("join-chat", session_id)

    async def leave_chat(self, session_id: str) -> None:
        self._chats.discard(session_id)
        await self.emit("leave-chat", session_id)

    async def typing(self, session_id: str, user_id, is_typing: bool) -> None:
        await self.emit("typing-start" if is_typing else "typing-stop",
                        {"session_id": session_id, "user_id": user_id})

    # ── connection loop ──────────────────────────────────────────────────────

    async def _run_loop(self) -> None:
        delay = RECONNECT_DELAY
        while self._running:
            try:
                await self._connect_and_listen()
                delay = RECONNECT_DELAY
            except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
                if not self._running:
                    break
                logger.warning(f"Realtime connection lost: {e}. Reconnecting in {delay}s...")
                await asyncio.sleep(delay)
                delay = min(delay * 2, MAX_RECONNECT_DELAY)
            finally:
                self._connected.clear()
                self._ws = None

    async def _connect_and_listen(self) -> None:
        async with websockets.connect(self.url, open_timeout=self.connect_timeout) as ws:
            self._ws = ws
            self._connected.set()
            logger.info(f"Realtime connected to {self.url}")
            await self._rejoin()

            async for raw in ws:
                try:
                    frame = json.loads(raw)
                except json.JSONDecodeError:
                    continue
                if isinstance(frame, dict) and frame.get("event"):
                    await self._dispatch(frame["event"], frame.get("data"))

    async def _rejoin(self) -> None:
        if self._agent_id is not None:
            await self.emit("agent-join", self._agent_id)
        for session_id in self._chats:
            await self.emit("join-chat", session_id)

    async def _dispatch(self, event: str, data: Any) -> None:
        for handler in self._handlers.get(event, []):
            try:
                await handler(data)
            except Exception:
                logger.exception(f"Handler for '{event}' failed")
