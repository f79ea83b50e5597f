"""
Chat session lifecycle: start, assign, close and delete.

State machine::

    waiting --assign--> active --close--> closed
    (any) --delete--> removed

Each transition runs as one transaction (status change, audit row and system
message together). Realtime events are published only after the commit, and
the originating website is notified best-effort outside the transaction.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

import aiosqlite

from src.db import crud
from src.db.database import transaction
from src.db.models import ChatSession
from src.errors import (
    CapacityExceededError, ConflictError, InvalidTransitionError, NotFoundError, ValidationError,
)
from src.notify import OriginNotifier
from src.realtime import Publisher, agent_room, chat_room

logger = logging.getLogger(__name__)

CLOSED_TEXT = "Chat session closed by agent"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class SessionLifecycle:
    def __init__(
        self,
        db: aiosqlite.Connection,
        publisher: Publisher,
        notifier: Optional[OriginNotifier] = None,
    ):
        self.db = db
        self.publisher = publisher
        self.notifier = notifier

    async def _notify_origin(self, session_id: str, text: str, domain: Optional[str] = None) -> None:
        if self.notifier is None:
            return
        if domain is None:
            domain = await crud.session_origin_domain(self.db, session_id)
        if domain is None:
            logger.debug(f"No origin website for session {session_id}; skipping notify")
            return
        await self.notifier.notify(domain, session_id, text)

    # ─────────────────────────────────────────
    # start
    # ─────────────────────────────────────────

    async def start(
        self,
        website_id: Optional[int],
        session_id: Optional[str],
        customer_name: Optional[str] = None,
        customer_email: Optional[str] = None,
        customer_phone: Optional[str] = None,
        topic: Optional[str] = None,
        customer_ip: Optional[str] = None,
    ) -> ChatSession:
        if not website_id or not session_id:
            raise ValidationError("Website ID and session ID are required")

        async with transaction(self.db):
            website = await crud.website_get(self.db, website_id)
            if website is None or website.status != "active":
                raise NotFoundError("Website not found or inactive")
            if await crud.session_exists(self.db, session_id):
                raise ConflictError("Session already exists")
            session = await crud.session_create(
                self.db, website_id, session_id,
                customer_name=customer_name,
                customer_email=customer_email,
                customer_phone=customer_phone,
                topic=topic,
                customer_ip=customer_ip,
            )
            await crud.message_create(
                self.db, session_id, "system",
                f"New chat session started. Topic: {topic or 'General inquiry'}",
            )

        logger.info(f"Session started: {session_id} on website {website.domain}")
        await self.publisher.publish("new-chat-available", {
            "session_id": session_id,
            "customer_name": customer_name or "Unknown Customer",
            "customer_email": customer_email or "No email",
            "topic": topic or "General inquiry",
            "website_id": website.id,
            "website_name": website.name,
            "website_domain": website.domain,
            "timestamp": _timestamp(),
        })
        return session

    # ─────────────────────────────────────────
    # assign
    # ─────────────────────────────────────────

    async def assign(self, session_id: str, agent_id: Optional[int], strict: bool = True) -> ChatSession:
        """
        Give `session_id` to `agent_id` and mark it active.

        strict=True checks the agent's capacity and writes a ChatAssignment
        audit row. strict=False skips both. Either way the agent must exist and
        be online, the session must exist and must not be closed.
        """
        if not session_id or not agent_id:
            raise ValidationError("Session ID and agent ID are required")

        async with transaction(self.db):
            agent = await crud.agent_get(self.db, agent_id)
            if agent is None or not agent.is_online:
                raise NotFoundError("Agent not found or offline")

            session = await crud.session_get(self.db, session_id)
            if session is None:
                raise NotFoundError("Session not found")
            if session.status == "closed":
                raise InvalidTransitionError(session_id, session.status, "active")

            if strict:
                current = agent.current_chats
                # Re-assigning a chat the agent already holds does not take a new slot
                if session.status == "active" and session.agent_id == agent.id:
                    current -= 1
                if current >= agent.max_concurrent_chats:
                    raise CapacityExceededError(agent.id, current, agent.max_concurrent_chats)

            await crud.session_assign(self.db, session_id, agent.id)
            if strict:
                await crud.assignment_create(self.db, session_id, agent.id, "manual")
            await crud.message_create(
                self.db, session_id, "system", f"Chat assigned to agent: {agent.name}",
            )

        logger.info(f"Session {session_id} assigned to agent {agent.id} '{agent.name}' (strict={strict})")

        ts = _timestamp()
        payload = {"session_id": session_id, "agent_id": agent.id, "agent_name": agent.name, "timestamp": ts}
        status = {"session_id": session_id, "status": "active", "agent_id": agent.id, "timestamp": ts}
        await self.publisher.publish_to_room(chat_room(session_id), "agent-assigned", payload)
        await self.publisher.publish_to_room(agent_room(agent.id), "agent-assigned", payload)
        await self.publisher.publish_to_room(chat_room(session_id), "chat-status-changed", status)
        await self.publisher.publish("chat-status-updated", status)

        await self._notify_origin(session_id, f"Connected with agent: {agent.name}")
        return await crud.session_get(self.db, session_id)

    # ─────────────────────────────────────────
    # close
    # ─────────────────────────────────────────

    async def close(self, session_id: str) -> ChatSession:
        """Close a session. Closing an already closed session succeeds without side effects."""
        if not session_id:
            raise ValidationError("Session ID is required")

        async with transaction(self.db):
            session = await crud.session_get(self.db, session_id)
            if session is None:
                raise NotFoundError("Session not found")
            if session.status == "closed":
                return session
            await crud.session_close(self.db, session_id)
            await crud.message_create(self.db, session_id, "system", CLOSED_TEXT)

        logger.info(f"Session closed: {session_id}")
        status = {
            "session_id": session_id,
            "status": "closed",
            "agent_id": session.agent_id,
            "timestamp": _timestamp(),
        }
        await self.publisher.publish_to_room(chat_room(session_id), "chat-status-changed", status)
        await self.publisher.publish("chat-status-updated", status)

        await self._notify_origin(session_id, CLOSED_TEXT)
        return await crud.session_get(self.db, session_id)

    # ─────────────────────────────────────────
    # delete
    # ─────────────────────────────────────────

    async def delete(self, session_id: str) -> int:
        """
        Hard-delete a session with its messages and assignment log.

        The origin is told the chat closed before the delete runs, so the
        widget hears about it even if the delete itself then fails.
        Returns the number of messages removed.
        """
        if not session_id:
            raise ValidationError("Session ID is required")

        domain = await crud.session_origin_domain(self.db, session_id)
        if domain is not None:
            await self._notify_origin(session_id, CLOSED_TEXT, domain=domain)

        deleted = await crud.session_delete(self.db, session_id)

        await self.publisher.publish("chat-status-updated", {
            "session_id": session_id,
            "status": "deleted",
            "agent_id": None,
            "timestamp": _timestamp(),
        })
        return deleted
