"""
Dashboard session controller: the agent-side mirror of sessions and messages.

Realtime events are treated as cache invalidation: the session list is
re-fetched rather than patched. Messages for the open session arrive from
pushes, from a periodic poll and from the agent's own sends, and all of them
go through MessageStore so nothing is shown twice.

Failed API calls never escape the controller; their message is handed to
``on_error`` and state simply does not advance.
"""
import asyncio
import logging
from collections import deque
from typing import Any, Callable, Optional

from src.client.api import DashboardAPI, DashboardAPIError
from src.client.bus import RealtimeClient
from src.client.store import MessageStore
from src.config import POLL_INTERVAL

logger = logging.getLogger(__name__)

WELCOME_TEXT = "You are now connected with {name}! How can I help you?"

REFRESH_EVENTS = ("new-chat-available", "chat-status-changed", "chat-status-updated", "agent-assigned")

# Unread customer-message alerts kept for the UI
MAX_ALERTS = 50


class DashboardController:
    def __init__(
        self,
        api: DashboardAPI,
        bus: Optional[RealtimeClient] = None,
        poll_interval: float = POLL_INTERVAL,
        on_error: Optional[Callable[[str], None]] = None,
        on_change: Optional[Callable[[str], None]] = None,
    ):
        self.api = api
        self.bus = bus
        self.poll_interval = poll_interval
        self.on_error = on_error or (lambda msg: logger.warning(f"Dashboard error: {msg}"))
        self.on_change = on_change or (lambda what: None)

        self.agent: Optional[dict] = None
        self.sessions: list[dict] = []
        self.websites: list[dict] = []
        self.agents: list[dict] = []
        self.current_session_id: Optional[str] = None
        self.store = MessageStore()
        self.alerts: deque = deque(maxlen=MAX_ALERTS)
        self._poll_task: Optional[asyncio.Task] = None
        self._bus_wired = False

    # ─────────────────────────────────────────
    # helpers
    # ─────────────────────────────────────────

    async def _safe(self, coro) -> Any:
        try:
            return await coro
        except DashboardAPIError as e:
            self.on_error(e.message)
            return None

    @property
    def needs_login(self) -> bool:
        return not self.api.token

    @property
    def current_session(self) -> Optional[dict]:
        return self._find(self.current_session_id)

    def _find(self, session_id: Optional[str]) -> Optional[dict]:
        for s in self.sessions:
            if s["session_id"] == session_id:
                return s
        return None

    # ─────────────────────────────────────────
    # load / login
    # ─────────────────────────────────────────

    async def load(self) -> bool:
        """
        Startup sequence. Without a stored token the caller should show a
        login prompt (returns False). Otherwise resolve the agent, fetch
        sessions, websites and agents concurrently, then open the bus.
        """
        if self.needs_login:
            return False
        self.agent = await self._safe(self.api.me())
        if self.agent is None:
            self.api.token = None
            return False

        sessions, websites, agents = await asyncio.gather(
            self._safe(self.api.list_sessions()),
            self._safe(self.api.list_websites()),
            self._safe(self.api.list_agents()),
        )
        self.sessions = sessions or []
        self.websites = websites or []
        self.agents = agents or []
        self.on_change("sessions")

        if self.bus is not None:
            if not self._bus_wired:
                self._wire_bus()
                self._bus_wired = True
            await self.bus.start()
            await self.bus.agent_join(self.agent["id"])
        return True

    async def login(self, email: str, password: str) -> bool:
        agent = await self._safe(self.api.login(email, password))
        if agent is None:
            return False
        return await self.load()

    async def logout(self) -> None:
        await self.shutdown()
        await self._safe(self.api.logout())
        self.agent = None

    async def shutdown(self) -> None:
        await self._stop_polling()
        if self.bus is not None:
            await self.bus.stop()

    # ─────────────────────────────────────────
    # sessions
    # ─────────────────────────────────────────

    async def refresh_sessions(self) -> None:
        sessions = await self._safe(self.api.list_sessions())
        if sessions is not None:
            self.sessions = sessions
            self.on_change("sessions")

    async def select_session(self, session_id: str) -> None:
        """
        Open a session. A waiting session is assigned to the current agent
        and greeted with a welcome message first.
        """
        session = self._find(session_id)
        if session is None:
            self.on_error("Session not found")
            return

        if session_id != self.current_session_id:
            previous = self.current_session_id
            self.current_session_id = session_id
            self.store.reset(session_id)
            if self.bus is not None:
                if previous is not None:
                    await self.bus.leave_chat(previous)
                await self.bus.join_chat(session_id)

        # Opening the session acknowledges its alerts
        remaining = [a for a in self.alerts if a.get("session_id") != session_id]
        if len(remaining) != len(self.alerts):
            self.alerts = deque(remaining, maxlen=MAX_ALERTS)
            self.on_change("alerts-read")

        if session["status"] == "waiting" and self.agent is not None:
            assigned = await self._safe(self.api.assign(session_id, self.agent["id"]))
            if assigned is not None:
                await self.send(WELCOME_TEXT.format(name=self.agent["name"]))
                await self.refresh_sessions()

        await self.refresh_messages()
        self._start_polling()

    async def close_current(self) -> None:
        if self.current_session_id is None:
            return
        if await self._safe(self.api.close(self.current_session_id)) is not None:
            await self.refresh_sessions()

    async def delete_session(self, session_id: str) -> bool:
        try:
            await self.api.delete(session_id)
        except DashboardAPIError as e:
            self.on_error(e.message)
            return False
        if session_id == self.current_session_id:
            await self._stop_polling()
            if self.bus is not None:
                await self.bus.leave_chat(session_id)
            self.current_session_id = None
            self.store.reset(None)
        await self.refresh_sessions()
        return True

    async def set_status(self, status: str) -> None:
        if self.agent is None:
            return
        updated = await self._safe(self.api.set_status(self.agent["id"], status))
        if updated is not None:
            self.agent = updated
            self.on_change("agent")

    # ─────────────────────────────────────────
    # messages
    # ─────────────────────────────────────────

    async def refresh_messages(self) -> None:
        session_id = self.current_session_id
        if session_id is None:
            return
        messages = await self._safe(self.api.get_messages(session_id))
        # The open session may have changed while the request was in flight
        if messages is not None and session_id == self.current_session_id:
            if self.store.merge(messages):
                self.on_change("messages")

    async def send(self, content: str) -> Optional[dict]:
        if self.current_session_id is None or not content.strip():
            return None
        self.store.add_local(content)
        self.on_change("messages")
        msg = await self._safe(self.api.send_message(self.current_session_id, content))
        await self.typing(False)
        if msg is not None:
            self.store.merge([msg])
            self.on_change("messages")
        return msg

    async def typing(self, is_typing: bool) -> None:
        """Show or clear the agent's typing indicator in the open session."""
        if self.bus is None or self.current_session_id is None or self.agent is None:
            return
        await self.bus.typing(self.current_session_id, self.agent["id"], is_typing)

    def _start_polling(self) -> None:
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll_loop())

    async def _stop_polling(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

    async def _poll_loop(self) -> None:
        while self.current_session_id is not None:
            await asyncio.sleep(self.poll_interval)
            await self.refresh_messages()

    # ─────────────────────────────────────────
    # realtime events
    # ─────────────────────────────────────────

    def _wire_bus(self) -> None:
        self.bus.on("new-message", self._on_new_message)
        self.bus.on("new-customer-message", self._on_customer_message)
        for event in REFRESH_EVENTS:
            self.bus.on(event, self._on_refresh)

    async def _on_new_message(self, data: dict) -> None:
        if data and data.get("session_id") == self.current_session_id and data.get("message"):
            if self.store.merge([data["message"]]):
                self.on_change("messages")
        await self.refresh_sessions()

    async def _on_customer_message(self, data: dict) -> None:
        if data:
            self.alerts.append(data)
            self.on_change("alerts")

    async def _on_refresh(self, data: Any) -> None:
        await self.refresh_sessions()
