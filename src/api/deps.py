"""
Request-scoped wiring: services built on the shared connection plus the
publisher and notifier created once in the application lifespan.
"""
from fastapi import Request

from src.db.database import get_db
from src.realtime import Publisher
from src.services.lifecycle import SessionLifecycle
from src.services.messaging import MessageRouter


def get_publisher(request: Request) -> Publisher:
    return request.app.state.publisher


async def get_lifecycle(request: Request) -> SessionLifecycle:
    db = await get_db()
    return SessionLifecycle(db, request.app.state.publisher, request.app.state.notifier)


async def get_router(request: Request) -> MessageRouter:
    db = await get_db()
    return MessageRouter(db, request.app.state.publisher)
