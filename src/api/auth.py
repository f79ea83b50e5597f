"""Agent login, logout, token verification and self-registration."""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel

from src.auth import current_agent, hash_password, new_token, security, verify_password
from src.api.deps import get_publisher
from src.config import DEFAULT_MAX_CONCURRENT_CHATS
from src.db import crud
from src.db.database import get_db
from src.db.models import Agent
from src.errors import AuthenticationError, ValidationError
from src.realtime import Publisher
from src.serializers import agent_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginBody(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class RegisterBody(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    max_concurrent_chats: Optional[int] = None


async def _status_changed(publisher: Publisher, agent_id: int, status: str) -> None:
    await publisher.publish("agent-status-changed", {
        "agent_id": agent_id,
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })


@router.post("/login")
async def login(body: LoginBody, publisher: Publisher = Depends(get_publisher)):
    if not body.email or not body.password:
        raise ValidationError("Email and password are required")
    db = await get_db()
    agent = await crud.agent_get_by_email(db, body.email)
    if agent is None or not verify_password(body.password, agent.password_hash):
        logger.info(f"Failed login for {body.email}")
        raise AuthenticationError("Invalid credentials")

    token = new_token()
    agent = await crud.agent_login(db, agent.id, token)
    logger.info(f"Agent {agent.id} logged in")
    await _status_changed(publisher, agent.id, "online")
    return {"success": True, "token": token, "agent": agent_to_dict(agent)}


@router.post("/logout")
async def logout(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    publisher: Publisher = Depends(get_publisher),
):
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Access token required")
    db = await get_db()
    agent_id = await crud.agent_logout(db, credentials.credentials)
    if agent_id is not None:
        logger.info(f"Agent {agent_id} logged out")
        await _status_changed(publisher, agent_id, "offline")
    # An unknown token is still a successful logout from the caller's view
    return {"success": True, "message": "Logged out successfully"}


@router.get("/verify")
async def verify(agent: Agent = Depends(current_agent)):
    return {"success": True, "valid": True, "agent": agent_to_dict(agent)}


@router.get("/me")
async def me(agent: Agent = Depends(current_agent)):
    return {"success": True, "agent": agent_to_dict(agent)}


@router.post("/register", status_code=201)
async def register(body: RegisterBody):
    if not body.name or not body.email or not body.password:
        raise ValidationError("Name, email, and password are required")
    db = await get_db()
    agent = await crud.agent_create(
        db, body.name, body.email, hash_password(body.password),
        body.max_concurrent_chats or DEFAULT_MAX_CONCURRENT_CHATS,
    )
    return {"success": True, "message": "Agent registered successfully", "agent": agent_to_dict(agent)}
