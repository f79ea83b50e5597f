"""
CRUD operations for the chat dashboard.
All functions are async and receive the aiosqlite connection from the caller.
Every mutation runs inside ``transaction(db)`` so it joins an enclosing unit
of work when the caller opened one.
"""
import json
import uuid
import logging
import sqlite3
from datetime import datetime, timezone, timedelta
from typing import Optional

import aiosqlite

from src.db.database import transaction
from src.db.models import (
    Agent, Website, ChatSession, Message, ChatAssignment, Survey,
    OfflineMessage, OfflineReply,
)
from src.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

SESSION_STATUSES = {"waiting", "active", "closed"}
SENDER_TYPES = {"agent", "customer", "system", "user"}
OFFLINE_STATUSES = {"unread", "read", "replied", "closed"}
OFFLINE_PRIORITIES = {"low", "normal", "high", "urgent"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_dt(s: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(s) if s else None


def _cutoff(days: int) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()


# ─────────────────────────────────────────────
# Agents
# ─────────────────────────────────────────────

# current_chats is derived from the sessions table; there is no stored counter.
_AGENT_SELECT = """
    SELECT a.*,
        (SELECT COUNT(*) FROM chat_sessions cs
          WHERE cs.agent_id = a.id AND cs.status = 'active') AS current_chats,
        (SELECT COUNT(*) FROM chat_sessions cs
          WHERE cs.agent_id = a.id) AS total_sessions
    FROM agents a
"""


async def agent_create(
    db: aiosqlite.Connection,
    name: str,
    email: str,
    password_hash: str,
    max_concurrent_chats: int,
) -> Agent:
    try:
        async with transaction(db):
            async with db.execute("SELECT id FROM agents WHERE email = ?", (email,)) as cur:
                if await cur.fetchone():
                    raise ConflictError("Agent with this email already exists")
            async with db.execute(
                "INSERT INTO agents (name, email, password_hash, status, max_concurrent_chats, created_at) "
                "VALUES (?, ?, ?, 'offline', ?, ?) RETURNING id",
                (name, email, password_hash, max_concurrent_chats, _now()),
            ) as cur:
                row = await cur.fetchone()
    except sqlite3.IntegrityError as e:
        logger.info(f"Agent '{email}' creation raced (UNIQUE constraint): {e}")
        raise ConflictError("Agent with this email already exists") from e
    logger.info(f"Agent created: {row['id']} '{name}' <{email}>")
    return await agent_get(db, row["id"])


async def agent_get(db: aiosqlite.Connection, agent_id: int) -> Optional[Agent]:
    async with db.execute(_AGENT_SELECT + " WHERE a.id = ?", (agent_id,)) as cur:
        row = await cur.fetchone()
    return _row_to_agent(row) if row else None


async def agent_get_by_email(db: aiosqlite.Connection, email: str) -> Optional[Agent]:
    async with db.execute(_AGENT_SELECT + " WHERE a.email = ?", (email,)) as cur:
        row = await cur.fetchone()
    return _row_to_agent(row) if row else None


async def agent_get_by_token(db: aiosqlite.Connection, token: str) -> Optional[Agent]:
    if not token:
        return None
    async with db.execute(_AGENT_SELECT + " WHERE a.token = ?", (token,)) as cur:
        row = await cur.fetchone()
    return _row_to_agent(row) if row else None


async def agent_list(db: aiosqlite.Connection) -> list[Agent]:
    async with db.execute(_AGENT_SELECT + " ORDER BY a.created_at DESC, a.id DESC") as cur:
        rows = await cur.fetchall()
    return [_row_to_agent(r) for r in rows]


async def agent_update(
    db: aiosqlite.Connection,
    agent_id: int,
    name: Optional[str] = None,
    email: Optional[str] = None,
    max_concurrent_chats: Optional[int] = None,
    status: Optional[str] = None,
) -> Agent:
    if status is not None and status not in {"online", "offline"}:
        raise ValidationError("Status must be 'online' or 'offline'")
    async with transaction(db):
        current = await agent_get(db, agent_id)
        if current is None:
            raise NotFoundError("Agent not found")
        if email and email != current.email:
            async with db.execute(
                "SELECT id FROM agents WHERE email = ? AND id != ?", (email, agent_id)
            ) as cur:
                if await cur.fetchone():
                    raise ConflictError("Email already taken by another agent")
        await db.execute(
            "UPDATE agents SET name = ?, email = ?, max_concurrent_chats = ?, status = ?, updated_at = ? "
            "WHERE id = ?",
            (
                name or current.name,
                email or current.email,
                max_concurrent_chats if max_concurrent_chats is not None else current.max_concurrent_chats,
                status or current.status,
                _now(),
                agent_id,
            ),
        )
    return await agent_get(db, agent_id)


async def agent_set_password(db: aiosqlite.Connection, agent_id: int, password_hash: str) -> bool:
    async with transaction(db):
        async with db.execute(
            "UPDATE agents SET password_hash = ?, updated_at = ? WHERE id = ?",
            (password_hash, _now(), agent_id),
        ) as cur:
            updated = cur.rowcount
    return updated > 0


async def agent_set_status(db: aiosqlite.Connection, agent_id: int, status: str) -> Optional[Agent]:
    if status not in {"online", "offline"}:
        raise ValidationError("Status must be 'online' or 'offline'")
    now = _now()
    async with transaction(db):
        async with db.execute(
            "UPDATE agents SET status = ?, last_active = ?, updated_at = ? WHERE id = ?",
            (status, now, now, agent_id),
        ) as cur:
            updated = cur.rowcount
    if updated == 0:
        return None
    return await agent_get(db, agent_id)


async def agent_login(db: aiosqlite.Connection, agent_id: int, token: str) -> Agent:
    """Mark the agent online and store its freshly issued bearer token."""
    async with transaction(db):
        await db.execute(
            "UPDATE agents SET status = 'online', last_active = ?, token = ? WHERE id = ?",
            (_now(), token, agent_id),
        )
    return await agent_get(db, agent_id)


async def agent_logout(db: aiosqlite.Connection, token: str) -> Optional[int]:
    """Mark the token's agent offline and revoke the token. Returns the agent id."""
    async with transaction(db):
        async with db.execute(
            "UPDATE agents SET status = 'offline', token = NULL WHERE token = ? RETURNING id",
            (token,),
        ) as cur:
            row = await cur.fetchone()
    return row["id"] if row else None


async def agent_delete(db: aiosqlite.Connection, agent_id: int) -> Agent:
    async with transaction(db):
        agent = await agent_get(db, agent_id)
        if agent is None:
            raise NotFoundError("Agent not found")
        if agent.current_chats > 0:
            raise ConflictError("Cannot delete agent with active chat sessions")
        await db.execute("DELETE FROM agents WHERE id = ?", (agent_id,))
    logger.info(f"Agent deleted: {agent_id} '{agent.name}'")
    return agent


async def agent_stats(db: aiosqlite.Connection, agent_id: int, days: int = 30) -> dict:
    return await _session_stats(db, "agent_id", agent_id, days)


def _row_to_agent(row: aiosqlite.Row) -> Agent:
    keys = row.keys()
    return Agent(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        password_hash=row["password_hash"],
        status=row["status"],
        max_concurrent_chats=row["max_concurrent_chats"],
        current_chats=row["current_chats"] if "current_chats" in keys else 0,
        last_active=_parse_dt(row["last_active"]),
        created_at=_parse_dt(row["created_at"]),
        token=row["token"],
        total_sessions=row["total_sessions"] if "total_sessions" in keys else 0,
    )


# ─────────────────────────────────────────────
# Websites
# ─────────────────────────────────────────────

_WEBSITE_SELECT = """
    SELECT w.*,
        (SELECT COUNT(*) FROM chat_sessions cs WHERE cs.website_id = w.id) AS total_sessions,
        (SELECT COUNT(*) FROM chat_sessions cs
          WHERE cs.website_id = w.id AND cs.status = 'active') AS active_sessions,
        (SELECT COUNT(*) FROM chat_sessions cs
          WHERE cs.website_id = w.id AND cs.status = 'waiting') AS waiting_sessions
    FROM websites w
"""


async def website_create(
    db: aiosqlite.Connection,
    name: str,
    domain: str,
    contact_email: Optional[str] = None,
) -> Website:
    api_key = str(uuid.uuid4())
    try:
        async with transaction(db):
            async with db.execute("SELECT id FROM websites WHERE domain = ?", (domain,)) as cur:
                if await cur.fetchone():
                    raise ConflictError("Website with this domain already registered")
            async with db.execute(
                "INSERT INTO websites (name, domain, api_key, status, contact_email, created_at) "
                "VALUES (?, ?, ?, 'active', ?, ?) RETURNING id",
                (name, domain, api_key, contact_email, _now()),
            ) as cur:
                row = await cur.fetchone()
    except sqlite3.IntegrityError as e:
        raise ConflictError("Website with this domain already registered") from e
    logger.info(f"Website registered: {row['id']} '{name}' ({domain})")
    return await website_get(db, row["id"])


async def website_get(db: aiosqlite.Connection, website_id: int) -> Optional[Website]:
    async with db.execute(_WEBSITE_SELECT + " WHERE w.id = ?", (website_id,)) as cur:
        row = await cur.fetchone()
    return _row_to_website(row) if row else None


async def website_list(db: aiosqlite.Connection) -> list[Website]:
    async with db.execute(_WEBSITE_SELECT + " ORDER BY w.created_at DESC, w.id DESC") as cur:
        rows = await cur.fetchall()
    return [_row_to_website(r) for r in rows]


async def website_update(
    db: aiosqlite.Connection,
    website_id: int,
    name: Optional[str] = None,
    status: Optional[str] = None,
) -> Website:
    if status is not None and status not in {"active", "inactive"}:
        raise ValidationError("Status must be 'active' or 'inactive'")
    async with transaction(db):
        current = await website_get(db, website_id)
        if current is None:
            raise NotFoundError("Website not found")
        await db.execute(
            "UPDATE websites SET name = ?, status = ?, updated_at = ? WHERE id = ?",
            (name or current.name, status or current.status, _now(), website_id),
        )
    return await website_get(db, website_id)


async def website_regenerate_key(db: aiosqlite.Connection, website_id: int) -> Website:
    async with transaction(db):
        async with db.execute(
            "UPDATE websites SET api_key = ?, updated_at = ? WHERE id = ?",
            (str(uuid.uuid4()), _now(), website_id),
        ) as cur:
            updated = cur.rowcount
    if updated == 0:
        raise NotFoundError("Website not found")
    return await website_get(db, website_id)


async def website_delete(db: aiosqlite.Connection, website_id: int) -> Website:
    async with transaction(db):
        website = await website_get(db, website_id)
        if website is None:
            raise NotFoundError("Website not found")
        if website.active_sessions or website.waiting_sessions:
            raise ConflictError("Cannot delete website with active or waiting chat sessions")
        await db.execute("DELETE FROM websites WHERE id = ?", (website_id,))
    logger.info(f"Website deleted: {website_id} '{website.domain}'")
    return website


async def website_stats(db: aiosqlite.Connection, website_id: int, days: int = 30) -> dict:
    return await _session_stats(db, "website_id", website_id, days)


def _row_to_website(row: aiosqlite.Row) -> Website:
    keys = row.keys()
    return Website(
        id=row["id"],
        name=row["name"],
        domain=row["domain"],
        api_key=row["api_key"],
        status=row["status"],
        contact_email=row["contact_email"],
        created_at=_parse_dt(row["created_at"]),
        total_sessions=row["total_sessions"] if "total_sessions" in keys else 0,
        active_sessions=row["active_sessions"] if "active_sessions" in keys else 0,
        waiting_sessions=row["waiting_sessions"] if "waiting_sessions" in keys else 0,
    )


async def _session_stats(db: aiosqlite.Connection, column: str, owner_id: int, days: int) -> dict:
    """Per-agent or per-website session statistics over the last `days` days."""
    if column not in {"agent_id", "website_id"}:
        raise ValueError(f"Unsupported stats column '{column}'")
    cutoff = _cutoff(days)
    now = _now()
    async with db.execute(
        f"""
        SELECT
            COUNT(*) AS total_sessions,
            COUNT(CASE WHEN status = 'active' THEN 1 END) AS active_sessions,
            COUNT(CASE WHEN status = 'waiting' THEN 1 END) AS waiting_sessions,
            COUNT(CASE WHEN status = 'closed' THEN 1 END) AS closed_sessions,
            COUNT(CASE WHEN started_at >= ? THEN 1 END) AS recent_sessions,
            AVG((julianday(COALESCE(ended_at, ?)) - julianday(started_at)) * 1440.0)
                AS avg_session_duration_minutes
        FROM chat_sessions WHERE {column} = ?
        """,
        (cutoff, now, owner_id),
    ) as cur:
        row = await cur.fetchone()
    async with db.execute(
        f"""
        SELECT substr(started_at, 1, 10) AS date, COUNT(*) AS sessions
        FROM chat_sessions WHERE {column} = ? AND started_at >= ?
        GROUP BY substr(started_at, 1, 10) ORDER BY date ASC
        """,
        (owner_id, cutoff),
    ) as cur:
        daily = await cur.fetchall()
    avg = row["avg_session_duration_minutes"]
    return {
        "total_sessions": row["total_sessions"],
        "active_sessions": row["active_sessions"],
        "waiting_sessions": row["waiting_sessions"],
        "closed_sessions": row["closed_sessions"],
        f"sessions_last_{days}_days": row["recent_sessions"],
        "avg_session_duration_minutes": round(avg, 2) if avg is not None else None,
        "daily": [{"date": d["date"], "sessions": d["sessions"]} for d in daily],
    }


# ─────────────────────────────────────────────
# Chat sessions
# ─────────────────────────────────────────────

_SESSION_SELECT = """
    SELECT cs.*, w.name AS website_name, w.domain AS website_domain, a.name AS agent_name
    FROM chat_sessions cs
    LEFT JOIN websites w ON cs.website_id = w.id
    LEFT JOIN agents a ON cs.agent_id = a.id
"""


async def session_create(
    db: aiosqlite.Connection,
    website_id: int,
    session_id: str,
    customer_name: Optional[str] = None,
    customer_email: Optional[str] = None,
    customer_phone: Optional[str] = None,
    topic: Optional[str] = None,
    customer_ip: Optional[str] = None,
) -> ChatSession:
    now = _now()
    try:
        async with transaction(db):
            await db.execute(
                "INSERT INTO chat_sessions (session_id, website_id, customer_name, customer_email, "
                "customer_phone, customer_ip, topic, status, started_at, last_activity) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, 'waiting', ?, ?)",
                (session_id, website_id, customer_name, customer_email, customer_phone,
                 customer_ip, topic, now, now),
            )
    except sqlite3.IntegrityError as e:
        # UNIQUE constraint on session_id: the session already exists
        logger.info(f"Session '{session_id}' already exists: {e}")
        raise ConflictError("Session already exists") from e
    return await session_get(db, session_id)


async def session_exists(db: aiosqlite.Connection, session_id: str) -> bool:
    async with db.execute("SELECT 1 FROM chat_sessions WHERE session_id = ?", (session_id,)) as cur:
        return await cur.fetchone() is not None


async def session_get(db: aiosqlite.Connection, session_id: str) -> Optional[ChatSession]:
    async with db.execute(_SESSION_SELECT + " WHERE cs.session_id = ?", (session_id,)) as cur:
        row = await cur.fetchone()
    return _row_to_session(row) if row else None


async def session_list(
    db: aiosqlite.Connection,
    status: Optional[str] = None,
    website_id: Optional[int] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[ChatSession], int]:
    """Return one page of sessions (newest first) and the total matching count."""
    clauses, params = [], []
    if status:
        if status not in SESSION_STATUSES:
            raise ValidationError(f"Invalid status '{status}'")
        clauses.append("cs.status = ?")
        params.append(status)
    if website_id is not None:
        clauses.append("cs.website_id = ?")
        params.append(website_id)
    where = (" WHERE " + " AND ".join(clauses)) if clauses else ""

    async with db.execute(
        _SESSION_SELECT + where + " ORDER BY cs.started_at DESC, cs.id DESC LIMIT ? OFFSET ?",
        (*params, limit, offset),
    ) as cur:
        rows = await cur.fetchall()
    async with db.execute(f"SELECT COUNT(*) AS total FROM chat_sessions cs{where}", params) as cur:
        total = (await cur.fetchone())["total"]
    return [_row_to_session(r) for r in rows], total


async def session_assign(db: aiosqlite.Connection, session_id: str, agent_id: int) -> bool:
    async with transaction(db):
        async with db.execute(
            "UPDATE chat_sessions SET agent_id = ?, status = 'active', last_activity = ? "
            "WHERE session_id = ?",
            (agent_id, _now(), session_id),
        ) as cur:
            updated = cur.rowcount
    return updated > 0


async def session_close(db: aiosqlite.Connection, session_id: str) -> bool:
    now = _now()
    async with transaction(db):
        async with db.execute(
            "UPDATE chat_sessions SET status = 'closed', ended_at = ?, last_activity = ? "
            "WHERE session_id = ?",
            (now, now, session_id),
        ) as cur:
            updated = cur.rowcount
    return updated > 0


async def session_touch(db: aiosqlite.Connection, session_id: str) -> None:
    async with transaction(db):
        await db.execute(
            "UPDATE chat_sessions SET last_activity = ? WHERE session_id = ?",
            (_now(), session_id),
        )


async def session_delete(db: aiosqlite.Connection, session_id: str) -> int:
    """
    Remove a session together with its messages and assignment log.
    Returns the number of messages deleted.
    """
    async with transaction(db):
        if not await session_exists(db, session_id):
            raise NotFoundError("Chat session not found")
        async with db.execute("DELETE FROM messages WHERE session_id = ?", (session_id,)) as cur:
            deleted = cur.rowcount
        await db.execute("DELETE FROM chat_assignments WHERE session_id = ?", (session_id,))
        await db.execute("DELETE FROM chat_sessions WHERE session_id = ?", (session_id,))
    logger.info(f"Session deleted: {session_id} ({deleted} messages)")
    return deleted


async def session_origin_domain(db: aiosqlite.Connection, session_id: str) -> Optional[str]:
    async with db.execute(
        "SELECT w.domain FROM chat_sessions cs JOIN websites w ON cs.website_id = w.id "
        "WHERE cs.session_id = ?",
        (session_id,),
    ) as cur:
        row = await cur.fetchone()
    return row["domain"] if row else None


def _row_to_session(row: aiosqlite.Row) -> ChatSession:
    keys = row.keys()
    return ChatSession(
        session_id=row["session_id"],
        website_id=row["website_id"],
        agent_id=row["agent_id"],
        customer_name=row["customer_name"],
        customer_email=row["customer_email"],
        customer_phone=row["customer_phone"],
        customer_ip=row["customer_ip"],
        topic=row["topic"],
        status=row["status"],
        priority=row["priority"],
        started_at=_parse_dt(row["started_at"]),
        last_activity=_parse_dt(row["last_activity"]),
        ended_at=_parse_dt(row["ended_at"]),
        website_name=row["website_name"] if "website_name" in keys else None,
        website_domain=row["website_domain"] if "website_domain" in keys else None,
        agent_name=row["agent_name"] if "agent_name" in keys else None,
    )


# ─────────────────────────────────────────────
# Assignment audit log
# ─────────────────────────────────────────────

async def assignment_create(
    db: aiosqlite.Connection,
    session_id: str,
    agent_id: int,
    assignment_type: str = "manual",
) -> ChatAssignment:
    now = _now()
    async with transaction(db):
        async with db.execute(
            "INSERT INTO chat_assignments (session_id, agent_id, assignment_type, created_at) "
            "VALUES (?, ?, ?, ?) RETURNING id",
            (session_id, agent_id, assignment_type, now),
        ) as cur:
            row = await cur.fetchone()
    return ChatAssignment(id=row["id"], session_id=session_id, agent_id=agent_id,
                          assignment_type=assignment_type, created_at=_parse_dt(now))


async def assignment_list(db: aiosqlite.Connection, session_id: str) -> list[ChatAssignment]:
    async with db.execute(
        "SELECT * FROM chat_assignments WHERE session_id = ? ORDER BY id ASC", (session_id,)
    ) as cur:
        rows = await cur.fetchall()
    return [ChatAssignment(id=r["id"], session_id=r["session_id"], agent_id=r["agent_id"],
                           assignment_type=r["assignment_type"],
                           created_at=_parse_dt(r["created_at"])) for r in rows]


# ─────────────────────────────────────────────
# Messages
# ─────────────────────────────────────────────

async def message_create(
    db: aiosqlite.Connection,
    session_id: str,
    sender_type: str,
    content: str,
    sender_id: Optional[int] = None,
    message_type: str = "text",
    metadata: Optional[dict] = None,
) -> Message:
    if sender_type not in SENDER_TYPES:
        raise ValidationError(f"Invalid sender_type '{sender_type}'")
    now = _now()
    meta_json = json.dumps(metadata) if metadata else None
    async with transaction(db):
        async with db.execute(
            "INSERT INTO messages (session_id, sender_type, sender_id, content, message_type, metadata, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?) RETURNING id",
            (session_id, sender_type, sender_id, content, message_type, meta_json, now),
        ) as cur:
            row = await cur.fetchone()
    logger.debug(f"Message stored: id={row['id']} session={session_id} sender={sender_type}")
    return Message(id=row["id"], session_id=session_id, sender_type=sender_type,
                   sender_id=sender_id, content=content, message_type=message_type,
                   metadata=meta_json, created_at=_parse_dt(now))


async def message_list(db: aiosqlite.Connection, session_id: str) -> list[Message]:
    """Full history of a session, oldest first. No pagination."""
    async with db.execute(
        "SELECT * FROM messages WHERE session_id = ? ORDER BY created_at ASC, id ASC",
        (session_id,),
    ) as cur:
        rows = await cur.fetchall()
    return [_row_to_message(r) for r in rows]


async def message_count(db: aiosqlite.Connection, session_id: str) -> int:
    async with db.execute(
        "SELECT COUNT(*) AS cnt FROM messages WHERE session_id = ?", (session_id,)
    ) as cur:
        return (await cur.fetchone())["cnt"]


def _row_to_message(row: aiosqlite.Row) -> Message:
    return Message(
        id=row["id"],
        session_id=row["session_id"],
        sender_type=row["sender_type"],
        sender_id=row["sender_id"],
        content=row["content"],
        message_type=row["message_type"],
        metadata=row["metadata"],
        created_at=_parse_dt(row["created_at"]),
    )


# ─────────────────────────────────────────────
# Surveys
# ─────────────────────────────────────────────

async def survey_create(
    db: aiosqlite.Connection,
    session_id: str,
    problem_solved: bool,
    customer_name: Optional[str] = None,
    customer_email: Optional[str] = None,
    feedback: Optional[str] = None,
    rating: Optional[int] = None,
) -> Survey:
    if rating is not None and not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5")
    session = await session_get(db, session_id)
    if session is None:
        raise NotFoundError("Session not found")
    now = _now()
    async with transaction(db):
        async with db.execute(
            "INSERT INTO chat_surveys (session_id, customer_name, customer_email, agent_id, agent_name, "
            "website_id, website_name, problem_solved, feedback, rating, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) RETURNING id",
            (session_id, customer_name, customer_email, session.agent_id, session.agent_name,
             session.website_id, session.website_name, int(problem_solved), feedback, rating, now),
        ) as cur:
            row = await cur.fetchone()
    logger.info(f"Survey submitted: {row['id']} for session {session_id}")
    return await survey_get(db, row["id"])


async def survey_get(db: aiosqlite.Connection, survey_id: int) -> Optional[Survey]:
    async with db.execute("SELECT * FROM chat_surveys WHERE id = ?", (survey_id,)) as cur:
        row = await cur.fetchone()
    return _row_to_survey(row) if row else None


def _survey_filters(
    problem_solved: Optional[bool] = None,
    agent_id: Optional[int] = None,
    website_id: Optional[int] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
) -> tuple[str, list]:
    clauses, params = [], []
    if problem_solved is not None:
        clauses.append("problem_solved = ?")
        params.append(int(problem_solved))
    if agent_id is not None:
        clauses.append("agent_id = ?")
        params.append(agent_id)
    if website_id is not None:
        clauses.append("website_id = ?")
        params.append(website_id)
    if date_from:
        clauses.append("created_at >= ?")
        params.append(date_from)
    if date_to:
        clauses.append("created_at <= ?")
        params.append(date_to)
    return ((" WHERE " + " AND ".join(clauses)) if clauses else ""), params


async def survey_list(
    db: aiosqlite.Connection,
    page: int = 1,
    limit: int = 50,
    problem_solved: Optional[bool] = None,
    agent_id: Optional[int] = None,
) -> tuple[list[Survey], int]:
    where, params = _survey_filters(problem_solved=problem_solved, agent_id=agent_id)
    offset = (max(page, 1) - 1) * limit
    async with db.execute(
        f"SELECT * FROM chat_surveys{where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
        (*params, limit, offset),
    ) as cur:
        rows = await cur.fetchall()
    async with db.execute(f"SELECT COUNT(*) AS total FROM chat_surveys{where}", params) as cur:
        total = (await cur.fetchone())["total"]
    return [_row_to_survey(r) for r in rows], total


async def survey_stats(
    db: aiosqlite.Connection,
    agent_id: Optional[int] = None,
    website_id: Optional[int] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
) -> dict:
    where, params = _survey_filters(agent_id=agent_id, website_id=website_id,
                                    date_from=date_from, date_to=date_to)
    async with db.execute(
        f"""
        SELECT
            COUNT(*) AS total_surveys,
            COUNT(CASE WHEN problem_solved = 1 THEN 1 END) AS problem_solved_count,
            COUNT(CASE WHEN problem_solved = 0 THEN 1 END) AS problem_not_solved_count,
            AVG(rating) AS average_rating,
            COUNT(CASE WHEN rating >= 4 THEN 1 END) AS high_rating_count,
            COUNT(CASE WHEN rating <= 2 THEN 1 END) AS low_rating_count
        FROM chat_surveys{where}
        """,
        params,
    ) as cur:
        row = await cur.fetchone()
    total = row["total_surveys"]
    satisfaction = round(row["problem_solved_count"] / total * 100, 1) if total else 0.0
    return {
        "total_surveys": total,
        "problem_solved_count": row["problem_solved_count"],
        "problem_not_solved_count": row["problem_not_solved_count"],
        "satisfaction_rate": satisfaction,
        "average_rating": round(row["average_rating"] or 0, 1),
        "high_rating_count": row["high_rating_count"],
        "low_rating_count": row["low_rating_count"],
    }


async def survey_clear(db: aiosqlite.Connection) -> int:
    async with transaction(db):
        async with db.execute("DELETE FROM chat_surveys") as cur:
            deleted = cur.rowcount
    logger.info(f"Cleared {deleted} surveys.")
    return deleted


def _row_to_survey(row: aiosqlite.Row) -> Survey:
    return Survey(
        id=row["id"],
        session_id=row["session_id"],
        customer_name=row["customer_name"],
        customer_email=row["customer_email"],
        agent_id=row["agent_id"],
        agent_name=row["agent_name"],
        website_id=row["website_id"],
        website_name=row["website_name"],
        problem_solved=bool(row["problem_solved"]),
        feedback=row["feedback"],
        rating=row["rating"],
        created_at=_parse_dt(row["created_at"]),
    )


# ─────────────────────────────────────────────
# Offline messages
# ─────────────────────────────────────────────

_OFFLINE_SELECT = """
    SELECT om.*, w.name AS website_name
    FROM offline_messages om
    LEFT JOIN websites w ON om.website_id = w.id
"""


async def offline_create(
    db: aiosqlite.Connection,
    website_id: int,
    message: str,
    customer_name: Optional[str] = None,
    customer_email: Optional[str] = None,
    customer_phone: Optional[str] = None,
    subject: Optional[str] = None,
    priority: str = "normal",
) -> OfflineMessage:
    if priority not in OFFLINE_PRIORITIES:
        raise ValidationError(f"Invalid priority '{priority}'")
    now = _now()
    async with transaction(db):
        async with db.execute(
            "INSERT INTO offline_messages (website_id, customer_name, customer_email, customer_phone, "
            "subject, message, priority, status, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, 'unread', ?, ?) RETURNING id",
            (website_id, customer_name, customer_email, customer_phone, subject, message,
             priority, now, now),
        ) as cur:
            row = await cur.fetchone()
    logger.info(f"Offline message stored: {row['id']} for website {website_id}")
    return await offline_get(db, row["id"])


async def offline_get(db: aiosqlite.Connection, message_id: int) -> Optional[OfflineMessage]:
    async with db.execute(_OFFLINE_SELECT + " WHERE om.id = ?", (message_id,)) as cur:
        row = await cur.fetchone()
    if row is None:
        return None
    msg = _row_to_offline(row)
    async with db.execute(
        "SELECT r.*, a.name AS agent_name FROM offline_message_replies r "
        "LEFT JOIN agents a ON r.agent_id = a.id "
        "WHERE r.offline_message_id = ? ORDER BY r.created_at ASC, r.id ASC",
        (message_id,),
    ) as cur:
        replies = await cur.fetchall()
    msg.replies = [
        OfflineReply(
            id=r["id"],
            offline_message_id=r["offline_message_id"],
            agent_id=r["agent_id"],
            agent_name=r["agent_name"],
            reply_message=r["reply_message"],
            reply_type=r["reply_type"],
            is_internal=bool(r["is_internal"]),
            created_at=_parse_dt(r["created_at"]),
        )
        for r in replies
    ]
    return msg


async def offline_list(
    db: aiosqlite.Connection,
    status: Optional[str] = None,
    priority: Optional[str] = None,
) -> list[OfflineMessage]:
    clauses, params = [], []
    if status:
        if status not in OFFLINE_STATUSES:
            raise ValidationError(f"Invalid status '{status}'")
        clauses.append("om.status = ?")
        params.append(status)
    if priority:
        if priority not in OFFLINE_PRIORITIES:
            raise ValidationError(f"Invalid priority '{priority}'")
        clauses.append("om.priority = ?")
        params.append(priority)
    where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
    async with db.execute(
        _OFFLINE_SELECT + where + " ORDER BY om.created_at DESC, om.id DESC", params
    ) as cur:
        rows = await cur.fetchall()
    return [_row_to_offline(r) for r in rows]


async def offline_reply(
    db: aiosqlite.Connection,
    message_id: int,
    agent_id: Optional[int],
    reply_message: str,
    reply_type: str = "text",
    is_internal: bool = False,
) -> OfflineMessage:
    now = _now()
    async with transaction(db):
        async with db.execute("SELECT id FROM offline_messages WHERE id = ?", (message_id,)) as cur:
            if await cur.fetchone() is None:
                raise NotFoundError("Offline message not found")
        await db.execute(
            "INSERT INTO offline_message_replies (offline_message_id, agent_id, reply_message, "
            "reply_type, is_internal, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (message_id, agent_id, reply_message, reply_type, int(is_internal), now),
        )
        # Internal notes do not count as answering the customer
        if not is_internal:
            await db.execute(
                "UPDATE offline_messages SET status = 'replied', updated_at = ? WHERE id = ?",
                (now, message_id),
            )
    return await offline_get(db, message_id)


async def offline_set_status(
    db: aiosqlite.Connection,
    message_id: int,
    status: str,
    assigned_agent_id: Optional[int] = None,
) -> OfflineMessage:
    if status not in OFFLINE_STATUSES:
        raise ValidationError(f"Invalid status '{status}'")
    async with transaction(db):
        async with db.execute(
            "UPDATE offline_messages SET status = ?, "
            "assigned_agent_id = COALESCE(?, assigned_agent_id), updated_at = ? WHERE id = ?",
            (status, assigned_agent_id, _now(), message_id),
        ) as cur:
            updated = cur.rowcount
    if updated == 0:
        raise NotFoundError("Offline message not found")
    return await offline_get(db, message_id)


async def offline_unread_count(db: aiosqlite.Connection) -> int:
    async with db.execute("SELECT COUNT(*) AS cnt FROM offline_messages WHERE status = 'unread'") as cur:
        return (await cur.fetchone())["cnt"]


def _row_to_offline(row: aiosqlite.Row) -> OfflineMessage:
    return OfflineMessage(
        id=row["id"],
        website_id=row["website_id"],
        customer_name=row["customer_name"],
        customer_email=row["customer_email"],
        customer_phone=row["customer_phone"],
        subject=row["subject"],
        message=row["message"],
        priority=row["priority"],
        status=row["status"],
        assigned_agent_id=row["assigned_agent_id"],
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
        website_name=row["website_name"] if "website_name" in row.keys() else None,
    )
