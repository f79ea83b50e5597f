"""
SQLite database connection management, schema initialization and transactions.
Uses aiosqlite for fully async, non-blocking access.
"""
import aiosqlite
import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import AsyncIterator, Optional

from src.config import DB_PATH

logger = logging.getLogger(__name__)

# Module-level connection pool (single shared connection with WAL mode)
_db: aiosqlite.Connection | None = None
_lock = asyncio.Lock()

# One writer at a time per connection; inner transaction() calls join the outer one.
_tx_locks: "weakref.WeakKeyDictionary[aiosqlite.Connection, asyncio.Lock]" = weakref.WeakKeyDictionary()
_active_tx: ContextVar[Optional[aiosqlite.Connection]] = ContextVar("_active_tx", default=None)


async def get_db() -> aiosqlite.Connection:
    """Return the shared async database connection, initializing it if needed."""
    global _db
    if _db is None:
        async with _lock:
            if _db is None:
                if DB_PATH != ":memory:":
                    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
                _db = await aiosqlite.connect(DB_PATH)
                _db.row_factory = aiosqlite.Row
                # WAL mode: allows concurrent reads while writing
                await _db.execute("PRAGMA journal_mode=WAL")
                await _db.execute("PRAGMA foreign_keys=ON")
                await init_schema(_db)
                logger.info(f"Database initialized at {DB_PATH}")
    return _db


async def close_db() -> None:
    """Gracefully close the database connection."""
    global _db
    if _db is not None:
        await _db.close()
        _db = None
        logger.info("Database connection closed.")


@asynccontextmanager
async def transaction(db: aiosqlite.Connection) -> AsyncIterator[aiosqlite.Connection]:
    """
    Run the enclosed statements as one atomic unit.

    Commits on normal exit and rolls back on any exception, which is then
    re-raised unchanged so domain errors thrown to abort the unit keep their type.
    Nested use on the same connection within one task joins the outer unit.
    """
    if _active_tx.get() is db:
        yield db
        return

    lock = _tx_locks.get(db)
    if lock is None:
        lock = _tx_locks.setdefault(db, asyncio.Lock())

    async with lock:
        token = _active_tx.set(db)
        try:
            await db.execute("BEGIN")
            try:
                yield db
            except BaseException:
                await db.rollback()
                raise
            else:
                await db.commit()
        finally:
            _active_tx.reset(token)


async def init_schema(db: aiosqlite.Connection) -> None:
    """Create all tables if they do not already exist (idempotent)."""
    await db.executescript("""
        PRAGMA foreign_keys=ON;

        -- ----------------------------------------------------------------
        -- Agent: a human support operator using the dashboard
        -- ----------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS agents (
            id                   INTEGER PRIMARY KEY AUTOINCREMENT,
            name                 TEXT NOT NULL,
            email                TEXT NOT NULL UNIQUE,
            password_hash        TEXT NOT NULL,
            status               TEXT NOT NULL DEFAULT 'offline'
                                 CHECK (status IN ('online', 'offline')),
            max_concurrent_chats INTEGER NOT NULL DEFAULT 5,
            last_active          TEXT,
            token                TEXT,
            created_at           TEXT NOT NULL,
            updated_at           TEXT
        );

        CREATE UNIQUE INDEX IF NOT EXISTS idx_agents_token ON agents(token);

        -- ----------------------------------------------------------------
        -- Website: an origin hosting the chat widget
        -- ----------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS websites (
            id            INTEGER PRIMARY KEY AUTOINCREMENT,
            name          TEXT NOT NULL,
            domain        TEXT NOT NULL UNIQUE,
            api_key       TEXT NOT NULL,
            status        TEXT NOT NULL DEFAULT 'active'
                          CHECK (status IN ('active', 'inactive')),
            contact_email TEXT,
            created_at    TEXT NOT NULL,
            updated_at    TEXT
        );

        -- ----------------------------------------------------------------
        -- Chat session: one conversation started from a widget.
        -- `session_id` is the external key; `id` never leaves this layer.
        -- ----------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS chat_sessions (
            id             INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id     TEXT NOT NULL UNIQUE,
            website_id     INTEGER REFERENCES websites(id) ON DELETE SET NULL,
            agent_id       INTEGER REFERENCES agents(id) ON DELETE SET NULL,
            customer_name  TEXT,
            customer_email TEXT,
            customer_phone TEXT,
            customer_ip    TEXT,
            topic          TEXT,
            status         TEXT NOT NULL DEFAULT 'waiting'
                           CHECK (status IN ('waiting', 'active', 'closed')),
            priority       TEXT NOT NULL DEFAULT 'normal',
            started_at     TEXT NOT NULL,
            last_activity  TEXT NOT NULL,
            ended_at       TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_sessions_status ON chat_sessions(status, started_at);
        CREATE INDEX IF NOT EXISTS idx_sessions_agent ON chat_sessions(agent_id, status);

        -- ----------------------------------------------------------------
        -- Message: append-only chat turn or system annotation
        -- ----------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS messages (
            id           INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id   TEXT NOT NULL REFERENCES chat_sessions(session_id),
            sender_type  TEXT NOT NULL
                         CHECK (sender_type IN ('agent', 'customer', 'system', 'user')),
            sender_id    INTEGER,
            content      TEXT NOT NULL,
            message_type TEXT NOT NULL DEFAULT 'text',
            metadata     TEXT,
            created_at   TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_messages_session_created
            ON messages(session_id, created_at, id);

        -- ----------------------------------------------------------------
        -- Assignment audit log: written alongside strict assignments only
        -- ----------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS chat_assignments (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id      TEXT NOT NULL
                            REFERENCES chat_sessions(session_id) ON DELETE CASCADE,
            agent_id        INTEGER NOT NULL,
            assignment_type TEXT NOT NULL DEFAULT 'manual'
                            CHECK (assignment_type IN ('manual', 'auto')),
            created_at      TEXT NOT NULL
        );

        -- ----------------------------------------------------------------
        -- Post-chat satisfaction surveys (names denormalised at submit time)
        -- ----------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS chat_surveys (
            id             INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id     TEXT NOT NULL,
            customer_name  TEXT,
            customer_email TEXT,
            agent_id       INTEGER,
            agent_name     TEXT,
            website_id     INTEGER,
            website_name   TEXT,
            problem_solved INTEGER NOT NULL,
            feedback       TEXT,
            rating         INTEGER CHECK (rating IS NULL OR rating BETWEEN 1 AND 5),
            created_at     TEXT NOT NULL
        );

        -- ----------------------------------------------------------------
        -- Offline messages left while no agent was available
        -- ----------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS offline_messages (
            id                INTEGER PRIMARY KEY AUTOINCREMENT,
            website_id        INTEGER REFERENCES websites(id) ON DELETE SET NULL,
            customer_name     TEXT,
            customer_email    TEXT,
            customer_phone    TEXT,
            subject           TEXT,
            message           TEXT NOT NULL,
            priority          TEXT NOT NULL DEFAULT 'normal'
                              CHECK (priority IN ('low', 'normal', 'high', 'urgent')),
            status            TEXT NOT NULL DEFAULT 'unread'
                              CHECK (status IN ('unread', 'read', 'replied', 'closed')),
            assigned_agent_id INTEGER REFERENCES agents(id) ON DELETE SET NULL,
            created_at        TEXT NOT NULL,
            updated_at        TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS offline_message_replies (
            id                 INTEGER PRIMARY KEY AUTOINCREMENT,
            offline_message_id INTEGER NOT NULL
                               REFERENCES offline_messages(id) ON DELETE CASCADE,
            agent_id           INTEGER,
            reply_message      TEXT NOT NULL,
            reply_type         TEXT NOT NULL DEFAULT 'text',
            is_internal        INTEGER NOT NULL DEFAULT 0,
            created_at         TEXT NOT NULL
        );
    """)
    await db.commit()
    logger.info("Schema initialized.")
