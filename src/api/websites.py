"""Registered websites that host the chat widget."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.auth import current_agent
from src.db import crud
from src.db.database import get_db
from src.db.models import Agent
from src.errors import NotFoundError, ValidationError
from src.notify import clean_domain
from src.serializers import website_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/websites", tags=["websites"])


class WebsiteRegister(BaseModel):
    name: Optional[str] = None
    domain: Optional[str] = None
    contact_email: Optional[str] = None


class WebsiteUpdate(BaseModel):
    name: Optional[str] = None
    status: Optional[str] = None


@router.post("/register", status_code=201)
async def register_website(body: WebsiteRegister, agent: Agent = Depends(current_agent)):
    if not body.name or not body.domain:
        raise ValidationError("Name and domain are required")
    db = await get_db()
    w = await crud.website_create(db, body.name, clean_domain(body.domain), body.contact_email)
    return {"success": True, "message": "Website registered successfully", "website": website_to_dict(w)}


@router.get("")
async def list_websites(agent: Agent = Depends(current_agent)):
    db = await get_db()
    return {"success": True, "websites": [website_to_dict(w) for w in await crud.website_list(db)]}


@router.get("/{website_id}")
async def get_website(website_id: int, agent: Agent = Depends(current_agent)):
    db = await get_db()
    w = await crud.website_get(db, website_id)
    if w is None:
        raise NotFoundError("Website not found")
    return {"success": True, "website": website_to_dict(w)}


@router.put("/{website_id}")
async def update_website(website_id: int, body: WebsiteUpdate, agent: Agent = Depends(current_agent)):
    db = await get_db()
    w = await crud.website_update(db, website_id, name=body.name, status=body.status)
    return {"success": True, "message": "Website updated successfully", "website": website_to_dict(w)}


@router.post("/{website_id}/regenerate-key")
async def regenerate_key(website_id: int, agent: Agent = Depends(current_agent)):
    db = await get_db()
    w = await crud.website_regenerate_key(db, website_id)
    logger.info(f"API key regenerated for website {website_id} by agent {agent.id}")
    return {"success": True, "api_key": w.api_key, "website": website_to_dict(w)}


@router.get("/{website_id}/stats")
async def website_stats(website_id: int, days: int = 30, agent: Agent = Depends(current_agent)):
    if days < 1:
        raise ValidationError("days must be at least 1")
    db = await get_db()
    if await crud.website_get(db, website_id) is None:
        raise NotFoundError("Website not found")
    return {"success": True, "stats": await crud.website_stats(db, website_id, days)}


@router.delete("/{website_id}")
async def delete_website(website_id: int, agent: Agent = Depends(current_agent)):
    db = await get_db()
    await crud.website_delete(db, website_id)
    return {"success": True, "message": "Website deleted successfully"}
