"""
Inbound message routing: persist a chat turn and fan it out to dashboards.
"""
import logging
from typing import Optional

import aiosqlite

from src.db import crud
from src.db.crud import SENDER_TYPES
from src.db.database import transaction
from src.db.models import Message
from src.errors import NotFoundError, ValidationError
from src.realtime import Publisher, chat_room
from src.serializers import message_to_dict

logger = logging.getLogger(__name__)

CUSTOMER_SENDERS = {"customer", "user"}


class MessageRouter:
    def __init__(self, db: aiosqlite.Connection, publisher: Publisher):
        self.db = db
        self.publisher = publisher

    async def post_message(
        self,
        session_id: Optional[str],
        content: Optional[str],
        sender_type: str = "agent",
        sender_id: Optional[int] = None,
        message_type: str = "text",
        metadata: Optional[dict] = None,
    ) -> Message:
        if not session_id or not content:
            raise ValidationError("Session ID and message are required")
        if sender_type not in SENDER_TYPES:
            raise ValidationError(f"Invalid sender_type '{sender_type}'")

        async with transaction(self.db):
            if not await crud.session_exists(self.db, session_id):
                raise NotFoundError("Session not found")
            msg = await crud.message_create(
                self.db, session_id, sender_type, content,
                sender_id=sender_id, message_type=message_type, metadata=metadata,
            )
            await crud.session_touch(self.db, session_id)

        data = message_to_dict(msg)
        await self.publisher.publish("new-message", {"session_id": session_id, "message": data})
        await self.publisher.publish_to_room(chat_room(session_id), "message-received", {
            "session_id": session_id,
            "message": data,
            "sender_type": sender_type,
            "sender_id": sender_id,
            "timestamp": data["created_at"],
        })
        if sender_type in CUSTOMER_SENDERS:
            await self.publisher.publish("new-customer-message", {
                "session_id": session_id,
                "message": content,
                "timestamp": data["created_at"],
            })
        return msg

    async def list_messages(self, session_id: Optional[str]) -> list[Message]:
        """Full history oldest first."""
        if not session_id:
            raise ValidationError("Session ID is required")
        if not await crud.session_exists(self.db, session_id):
            raise NotFoundError("Session not found")
        return await crud.message_list(self.db, session_id)
