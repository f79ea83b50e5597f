"""
JSON shapes returned by the HTTP API and carried in realtime events.
"""
import json
from datetime import datetime
from typing import Optional

from src.db.models import (
    Agent, Website, ChatSession, Message, Survey, OfflineMessage, OfflineReply,
)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def agent_to_dict(a: Agent) -> dict:
    # password_hash and token never leave the server
    return {
        "id": a.id,
        "name": a.name,
        "email": a.email,
        "status": a.status,
        "max_concurrent_chats": a.max_concurrent_chats,
        "current_chats": a.current_chats,
        "active_sessions": a.current_chats,
        "total_sessions": a.total_sessions,
        "last_active": _iso(a.last_active),
        "created_at": _iso(a.created_at),
    }


def website_to_dict(w: Website) -> dict:
    return {
        "id": w.id,
        "name": w.name,
        "domain": w.domain,
        "api_key": w.api_key,
        "status": w.status,
        "contact_email": w.contact_email,
        "created_at": _iso(w.created_at),
        "total_sessions": w.total_sessions,
        "active_sessions": w.active_sessions,
        "waiting_sessions": w.waiting_sessions,
    }


def session_to_dict(s: ChatSession) -> dict:
    return {
        "session_id": s.session_id,
        "website_id": s.website_id,
        "website_name": s.website_name,
        "website_domain": s.website_domain,
        "agent_id": s.agent_id,
        "agent_name": s.agent_name,
        "customer_name": s.customer_name,
        "customer_email": s.customer_email,
        "customer_phone": s.customer_phone,
        "topic": s.topic,
        "status": s.status,
        "priority": s.priority,
        "started_at": _iso(s.started_at),
        "last_activity": _iso(s.last_activity),
        "ended_at": _iso(s.ended_at),
    }


def message_to_dict(m: Message) -> dict:
    metadata = None
    if m.metadata:
        try:
            metadata = json.loads(m.metadata)
        except ValueError:
            metadata = m.metadata
    return {
        "id": m.id,
        "session_id": m.session_id,
        "sender_type": m.sender_type,
        "sender_id": m.sender_id,
        "content": m.content,
        "message_type": m.message_type,
        "metadata": metadata,
        "created_at": _iso(m.created_at),
    }


def survey_to_dict(s: Survey) -> dict:
    return {
        "id": s.id,
        "session_id": s.session_id,
        "customer_name": s.customer_name,
        "customer_email": s.customer_email,
        "agent_id": s.agent_id,
        "agent_name": s.agent_name,
        "website_id": s.website_id,
        "website_name": s.website_name,
        "problem_solved": s.problem_solved,
        "feedback": s.feedback,
        "rating": s.rating,
        "created_at": _iso(s.created_at),
    }


def offline_reply_to_dict(r: OfflineReply) -> dict:
    return {
        "id": r.id,
        "agent_id": r.agent_id,
        "agent_name": r.agent_name,
        "reply_message": r.reply_message,
        "reply_type": r.reply_type,
        "is_internal": r.is_internal,
        "created_at": _iso(r.created_at),
    }


def offline_to_dict(m: OfflineMessage, with_replies: bool = False) -> dict:
    d = {
        "id": m.id,
        "website_id": m.website_id,
        "website_name": m.website_name,
        "customer_name": m.customer_name,
        "customer_email": m.customer_email,
        "customer_phone": m.customer_phone,
        "subject": m.subject,
        "message": m.message,
        "priority": m.priority,
        "status": m.status,
        "assigned_agent_id": m.assigned_agent_id,
        "created_at": _iso(m.created_at),
        "updated_at": _iso(m.updated_at),
    }
    if with_replies:
        d["replies"] = [offline_reply_to_dict(r) for r in m.replies]
    return d
