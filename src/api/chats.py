"""
Chat session endpoints under /api/chats.

Widget-facing routes (start, message, messages, assignment) take no token;
everything an agent does from the dashboard requires a bearer token.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from src.auth import current_agent, optional_agent
from src.api.deps import get_lifecycle, get_router
from src.config import SESSION_PAGE_LIMIT
from src.db import crud
from src.db.database import get_db
from src.db.models import Agent
from src.errors import NotFoundError, ValidationError
from src.serializers import message_to_dict, session_to_dict
from src.services.lifecycle import SessionLifecycle
from src.services.messaging import MessageRouter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chats", tags=["chats"])


class SessionStart(BaseModel):
    website_id: Optional[int] = None
    session_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    topic: Optional[str] = None
    customer_ip: Optional[str] = None


class AssignBody(BaseModel):
    agent_id: Optional[int] = None


class AssignBySessionBody(BaseModel):
    session_id: Optional[str] = None
    agent_id: Optional[int] = None


class SessionRef(BaseModel):
    session_id: Optional[str] = None


class WidgetMessage(BaseModel):
    session_id: Optional[str] = None
    message: Optional[str] = None
    sender_type: str = "agent"


class AgentMessage(BaseModel):
    content: Optional[str] = None
    message_type: str = "text"
    metadata: Optional[dict] = None


# ─────────────────────────────────────────────
# Widget-facing (no auth)
# ─────────────────────────────────────────────

@router.post("/start", status_code=201)
@router.post("/sessions", status_code=201)
async def start_session(
    body: SessionStart,
    request: Request,
    lifecycle: SessionLifecycle = Depends(get_lifecycle),
):
    customer_ip = body.customer_ip or (request.client.host if request.client else None)
    s = await lifecycle.start(
        body.website_id, body.session_id,
        customer_name=body.customer_name,
        customer_email=body.customer_email,
        customer_phone=body.customer_phone,
        topic=body.topic,
        customer_ip=customer_ip,
    )
    return {"success": True, "session": session_to_dict(s)}


@router.get("/assignment/{session_id}")
async def check_assignment(session_id: str):
    db = await get_db()
    s = await crud.session_get(db, session_id)
    if s is None:
        raise NotFoundError("Session not found")
    return {
        "success": True,
        "data": {
            "assigned": s.status == "active" and s.agent_id is not None,
            "agent_name": s.agent_name,
            "status": s.status,
            "agent_id": s.agent_id,
        },
    }


@router.get("/messages")
async def widget_messages(session_id: Optional[str] = None, messages: MessageRouter = Depends(get_router)):
    msgs = await messages.list_messages(session_id)
    return {"success": True, "messages": [message_to_dict(m) for m in msgs]}


@router.post("/message")
async def widget_post_message(
    body: WidgetMessage,
    messages: MessageRouter = Depends(get_router),
    agent: Optional[Agent] = Depends(optional_agent),
):
    m = await messages.post_message(
        body.session_id, body.message, sender_type=body.sender_type,
        sender_id=agent.id if agent else None,
    )
    return {"success": True, "message": message_to_dict(m)}


# ─────────────────────────────────────────────
# Dashboard (bearer token)
# ─────────────────────────────────────────────

@router.get("/sessions")
async def list_sessions(
    status: Optional[str] = None,
    website_id: Optional[int] = None,
    limit: int = SESSION_PAGE_LIMIT,
    offset: int = 0,
    agent: Agent = Depends(current_agent),
):
    if limit < 1 or offset < 0:
        raise ValidationError("limit must be positive and offset non-negative")
    db = await get_db()
    sessions, total = await crud.session_list(db, status=status, website_id=website_id,
                                              limit=limit, offset=offset)
    return {
        "success": True,
        "sessions": [session_to_dict(s) for s in sessions],
        "pagination": {"limit": limit, "offset": offset, "total": total},
    }


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, agent: Agent = Depends(current_agent)):
    db = await get_db()
    s = await crud.session_get(db, session_id)
    if s is None:
        raise NotFoundError("Session not found")
    msgs = await crud.message_list(db, session_id)
    return {
        "success": True,
        "session": session_to_dict(s),
        "messages": [message_to_dict(m) for m in msgs],
    }


@router.post("/sessions/{session_id}/assign")
async def assign_strict(
    session_id: str,
    body: AssignBody,
    lifecycle: SessionLifecycle = Depends(get_lifecycle),
    agent: Agent = Depends(current_agent),
):
    if not body.agent_id:
        raise ValidationError("Agent ID is required")
    s = await lifecycle.assign(session_id, body.agent_id, strict=True)
    return {"success": True, "message": "Agent assigned successfully", "session": session_to_dict(s)}


@router.post("/assign")
async def assign_lenient(
    body: AssignBySessionBody,
    lifecycle: SessionLifecycle = Depends(get_lifecycle),
    agent: Agent = Depends(current_agent),
):
    s = await lifecycle.assign(body.session_id, body.agent_id, strict=False)
    return {"success": True, "message": "Agent assigned successfully", "session": session_to_dict(s)}


@router.post("/sessions/{session_id}/messages")
async def agent_post_message(
    session_id: str,
    body: AgentMessage,
    messages: MessageRouter = Depends(get_router),
    agent: Agent = Depends(current_agent),
):
    if not body.content:
        raise ValidationError("Message content is required")
    m = await messages.post_message(
        session_id, body.content, sender_type="agent", sender_id=agent.id,
        message_type=body.message_type, metadata=body.metadata,
    )
    return {"success": True, "message": message_to_dict(m)}


@router.post("/sessions/{session_id}/close")
async def close_session(
    session_id: str,
    lifecycle: SessionLifecycle = Depends(get_lifecycle),
    agent: Agent = Depends(current_agent),
):
    s = await lifecycle.close(session_id)
    return {"success": True, "message": "Session closed successfully", "session": session_to_dict(s)}


@router.post("/close")
async def close_by_body(
    body: SessionRef,
    lifecycle: SessionLifecycle = Depends(get_lifecycle),
    agent: Agent = Depends(current_agent),
):
    s = await lifecycle.close(body.session_id)
    return {"success": True, "message": "Session closed successfully", "session": session_to_dict(s)}


@router.delete("/delete")
async def delete_session(
    body: SessionRef,
    lifecycle: SessionLifecycle = Depends(get_lifecycle),
    agent: Agent = Depends(current_agent),
):
    deleted = await lifecycle.delete(body.session_id)
    logger.info(f"Agent {agent.id} deleted session {body.session_id}")
    return {"success": True, "message": "Chat session deleted successfully", "deleted_messages": deleted}


@router.get("/{session_id}/messages")
async def agent_messages(
    session_id: str,
    messages: MessageRouter = Depends(get_router),
    agent: Agent = Depends(current_agent),
):
    msgs = await messages.list_messages(session_id)
    return {"success": True, "messages": [message_to_dict(m) for m in msgs]}
