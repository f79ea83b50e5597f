"""
Agent authentication: bcrypt password hashing, opaque bearer tokens and the
FastAPI dependencies that resolve the calling agent.
"""
import secrets
import logging
from typing import Optional

import bcrypt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from src.db.database import get_db
from src.db import crud
from src.db.models import Agent
from src.errors import AuthenticationError, ForbiddenError

logger = logging.getLogger(__name__)

# auto_error=False: missing credentials are reported through our own error shape
security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


def new_token() -> str:
    return secrets.token_hex(32)


async def current_agent(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Agent:
    """Resolve the bearer token to an agent. 401 when absent, 403 when unknown."""
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Access token required")
    db = await get_db()
    agent = await crud.agent_get_by_token(db, credentials.credentials)
    if agent is None:
        raise ForbiddenError("Invalid token")
    return agent


async def optional_agent(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[Agent]:
    """Like current_agent, but anonymous (widget) callers resolve to None."""
    if credentials is None or not credentials.credentials:
        return None
    db = await get_db()
    return await crud.agent_get_by_token(db, credentials.credentials)
