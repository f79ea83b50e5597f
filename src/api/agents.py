"""Agent administration."""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.auth import current_agent, hash_password
from src.api.deps import get_publisher
from src.config import DEFAULT_MAX_CONCURRENT_CHATS
from src.db import crud
from src.db.database import get_db
from src.db.models import Agent
from src.errors import NotFoundError, ValidationError
from src.realtime import Publisher
from src.serializers import agent_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/agents", tags=["agents"])


class AgentCreate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    max_concurrent_chats: Optional[int] = None


class AgentUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    max_concurrent_chats: Optional[int] = None
    status: Optional[str] = None


class PasswordChange(BaseModel):
    new_password: Optional[str] = None


class StatusChange(BaseModel):
    status: Optional[str] = None


@router.get("")
@router.get("/list")
async def list_agents(agent: Agent = Depends(current_agent)):
    db = await get_db()
    return {"success": True, "agents": [agent_to_dict(a) for a in await crud.agent_list(db)]}


@router.post("", status_code=201)
async def create_agent(body: AgentCreate, agent: Agent = Depends(current_agent)):
    if not body.name or not body.email or not body.password:
        raise ValidationError("Name, email, and password are required")
    if body.max_concurrent_chats is not None and body.max_concurrent_chats < 1:
        raise ValidationError("max_concurrent_chats must be at least 1")
    db = await get_db()
    created = await crud.agent_create(
        db, body.name, body.email, hash_password(body.password),
        body.max_concurrent_chats or DEFAULT_MAX_CONCURRENT_CHATS,
    )
    return {"success": True, "message": "Agent created successfully", "agent": agent_to_dict(created)}


@router.get("/{agent_id}")
async def get_agent(agent_id: int, agent: Agent = Depends(current_agent)):
    db = await get_db()
    found = await crud.agent_get(db, agent_id)
    if found is None:
        raise NotFoundError("Agent not found")
    return {"success": True, "agent": agent_to_dict(found)}


@router.put("/{agent_id}")
async def update_agent(agent_id: int, body: AgentUpdate, agent: Agent = Depends(current_agent)):
    if body.max_concurrent_chats is not None and body.max_concurrent_chats < 1:
        raise ValidationError("max_concurrent_chats must be at least 1")
    db = await get_db()
    updated = await crud.agent_update(
        db, agent_id,
        name=body.name, email=body.email,
        max_concurrent_chats=body.max_concurrent_chats, status=body.status,
    )
    return {"success": True, "message": "Agent updated successfully", "agent": agent_to_dict(updated)}


@router.post("/{agent_id}/change-password")
async def change_password(agent_id: int, body: PasswordChange, agent: Agent = Depends(current_agent)):
    if not body.new_password:
        raise ValidationError("New password is required")
    db = await get_db()
    if not await crud.agent_set_password(db, agent_id, hash_password(body.new_password)):
        raise NotFoundError("Agent not found")
    return {"success": True, "message": "Password changed successfully"}


@router.put("/{agent_id}/status")
async def set_status(
    agent_id: int,
    body: StatusChange,
    agent: Agent = Depends(current_agent),
    publisher: Publisher = Depends(get_publisher),
):
    if not body.status:
        raise ValidationError("Status is required")
    db = await get_db()
    updated = await crud.agent_set_status(db, agent_id, body.status)
    if updated is None:
        raise NotFoundError("Agent not found")
    logger.info(f"Agent {agent_id} status -> {updated.status}")
    await publisher.publish("agent-status-changed", {
        "agent_id": agent_id,
        "status": updated.status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })
    return {"success": True, "agent": agent_to_dict(updated)}


@router.get("/{agent_id}/stats")
async def agent_stats(agent_id: int, days: int = 30, agent: Agent = Depends(current_agent)):
    if days < 1:
        raise ValidationError("days must be at least 1")
    db = await get_db()
    if await crud.agent_get(db, agent_id) is None:
        raise NotFoundError("Agent not found")
    return {"success": True, "stats": await crud.agent_stats(db, agent_id, days)}


@router.delete("/{agent_id}")
async def delete_agent(agent_id: int, agent: Agent = Depends(current_agent)):
    db = await get_db()
    await crud.agent_delete(db, agent_id)
    return {"success": True, "message": "Agent deleted successfully"}
