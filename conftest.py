"""
Shared fixtures for the dashboard test-suite.

Unit tests run against an in-memory aiosqlite database. HTTP tests run the
FastAPI app in-process through TestClient with the database pointed at a
temporary file and the origin notifier replaced by a stub.
"""
import aiosqlite
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from src.auth import hash_password
from src.db import crud
from src.db.database import init_schema
from src.realtime import Publisher

# Manual scripts that need a dedicated running server
collect_ignore = ["examples"]


class RecordingPublisher(Publisher):
    """Captures every published event as (room or None, event, data)."""

    def __init__(self):
        self.events: list[tuple] = []

    async def publish(self, event, data):
        self.events.append((None, event, data))

    async def publish_to_room(self, room, event, data, exclude=None):
        self.events.append((room, event, data))

    def named(self, event: str) -> list[tuple]:
        return [e for e in self.events if e[1] == event]


class StubNotifier:
    """Records origin notifications instead of sending them."""

    def __init__(self, result: bool = True):
        self.calls: list[tuple] = []
        self.result = result

    async def notify(self, domain, session_id, text):
        self.calls.append((domain, session_id, text))
        return self.result

    async def aclose(self):
        pass


@pytest_asyncio.fixture
async def db():
    conn = await aiosqlite.connect(":memory:")
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA foreign_keys=ON")
    await init_schema(conn)
    yield conn
    await conn.close()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def notifier():
    return StubNotifier()


async def make_agent(db, name="Alice", email=None, status="online", max_chats=2):
    agent = await crud.agent_create(db, name, email or f"{name.lower()}@example.com",
                                    hash_password("secret"), max_chats)
    if status == "online":
        agent = await crud.agent_set_status(db, agent.id, "online")
    return agent


async def make_website(db, domain="shop.example.com", status="active"):
    website = await crud.website_create(db, "Shop", domain)
    if status != "active":
        website = await crud.website_update(db, website.id, status=status)
    return website


@pytest.fixture
def client(tmp_path, monkeypatch):
    import src.db.database as dbmod

    monkeypatch.setattr(dbmod, "DB_PATH", str(tmp_path / "dashboard_test.db"))
    monkeypatch.setattr(dbmod, "_db", None)

    import src.main as mainmod

    monkeypatch.setattr(mainmod, "OriginNotifier", StubNotifier)

    with TestClient(mainmod.app) as c:
        yield c


@pytest.fixture
def auth_headers(client):
    """Register and log in an agent; returns its bearer headers."""
    r = client.post("/api/auth/register", json={
        "name": "Alice", "email": "alice@example.com", "password": "secret", "max_concurrent_chats": 2,
    })
    assert r.status_code == 201, r.text
    r = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "secret"})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['token']}"}
