"""
Offline messages: left through the widget while no agent is available,
answered later from the dashboard.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.auth import current_agent
from src.api.deps import get_publisher
from src.db import crud
from src.db.database import get_db
from src.db.models import Agent
from src.errors import NotFoundError, ValidationError
from src.realtime import Publisher
from src.serializers import offline_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chats/offline-messages", tags=["offline-messages"])


class OfflineCreate(BaseModel):
    website_id: Optional[int] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    subject: Optional[str] = None
    message: Optional[str] = None
    priority: str = "normal"


class OfflineReplyBody(BaseModel):
    reply_message: Optional[str] = None
    reply_type: str = "text"
    is_internal: bool = False


class OfflineStatusBody(BaseModel):
    status: Optional[str] = None
    assigned_agent_id: Optional[int] = None


@router.post("", status_code=201)
async def create_offline_message(body: OfflineCreate, publisher: Publisher = Depends(get_publisher)):
    if not body.website_id or not body.message:
        raise ValidationError("Website ID and message are required")
    db = await get_db()
    website = await crud.website_get(db, body.website_id)
    if website is None or website.status != "active":
        raise NotFoundError("Website not found or inactive")
    m = await crud.offline_create(
        db, body.website_id, body.message,
        customer_name=body.customer_name,
        customer_email=body.customer_email,
        customer_phone=body.customer_phone,
        subject=body.subject,
        priority=body.priority,
    )
    data = offline_to_dict(m)
    await publisher.publish("new-offline-message", data)
    return {"success": True, "offline_message": data}


@router.get("")
async def list_offline_messages(
    status: Optional[str] = None,
    priority: Optional[str] = None,
    agent: Agent = Depends(current_agent),
):
    db = await get_db()
    msgs = await crud.offline_list(db, status=status, priority=priority)
    return {"success": True, "offline_messages": [offline_to_dict(m) for m in msgs]}


@router.get("/unread/count")
async def unread_count(agent: Agent = Depends(current_agent)):
    db = await get_db()
    return {"success": True, "count": await crud.offline_unread_count(db)}


@router.get("/{message_id}")
async def get_offline_message(message_id: int, agent: Agent = Depends(current_agent)):
    db = await get_db()
    m = await crud.offline_get(db, message_id)
    if m is None:
        raise NotFoundError("Offline message not found")
    return {"success": True, "offline_message": offline_to_dict(m, with_replies=True)}


@router.post("/{message_id}/reply", status_code=201)
async def reply_offline_message(
    message_id: int,
    body: OfflineReplyBody,
    agent: Agent = Depends(current_agent),
):
    if not body.reply_message:
        raise ValidationError("Reply message is required")
    db = await get_db()
    m = await crud.offline_reply(
        db, message_id, agent.id, body.reply_message,
        reply_type=body.reply_type, is_internal=body.is_internal,
    )
    logger.info(f"Agent {agent.id} replied to offline message {message_id}")
    return {"success": True, "offline_message": offline_to_dict(m, with_replies=True)}


@router.put("/{message_id}/status")
async def set_offline_status(
    message_id: int,
    body: OfflineStatusBody,
    agent: Agent = Depends(current_agent),
):
    if not body.status:
        raise ValidationError("Status is required")
    db = await get_db()
    m = await crud.offline_set_status(db, message_id, body.status, body.assigned_agent_id)
    return {"success": True, "offline_message": offline_to_dict(m)}
