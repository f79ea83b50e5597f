"""
Central Chat Dashboard main entry point.

Starts a FastAPI HTTP server that:
  1. Serves the REST API used by website widgets and the agent dashboard
  2. Fans lifecycle and message events out to dashboards over the /ws WebSocket
  3. Notifies the website hosting a chat when an agent joins or closes it
"""
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.api import agents, auth, chats, offline, surveys, websites
from src.config import ALLOWED_ORIGINS, APP_VERSION, DEBUG_ERRORS, ENVIRONMENT, HOST, PORT
from src.db.database import close_db, get_db
from src.errors import DashboardError, InternalError
from src.notify import OriginNotifier
from src.realtime import ConnectionHub

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("chatdash")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: initialize DB, realtime hub and origin notifier
    await get_db()
    app.state.publisher = ConnectionHub()
    app.state.notifier = OriginNotifier()
    logger.info(f"Central Chat Dashboard running at http://{HOST}:{PORT} ({ENVIRONMENT})")
    yield
    # Shutdown
    await app.state.notifier.aclose()
    await close_db()


app = FastAPI(
    title="Central Chat Dashboard",
    description="Live-chat support dashboard for agents handling website widget sessions.",
    version=APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=ALLOWED_ORIGINS != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─────────────────────────────────────────────
# Error responses: always {"error": message}
# ─────────────────────────────────────────────

@app.exception_handler(DashboardError)
async def dashboard_error_handler(request: Request, exc: DashboardError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    err = InternalError(f"{type(exc).__name__}: {exc}" if DEBUG_ERRORS else "Internal server error")
    return JSONResponse(status_code=err.status_code, content={"error": err.message})


# ─────────────────────────────────────────────
# REST API
# ─────────────────────────────────────────────

app.include_router(auth.router)
app.include_router(agents.router)
app.include_router(websites.router)
app.include_router(surveys.router)
# Offline routes go before chats so /offline-messages/... is never read as a session id
app.include_router(offline.router)
app.include_router(chats.router)


# ─────────────────────────────────────────────
# Realtime bus for dashboards
# ─────────────────────────────────────────────

@app.websocket("/ws")
async def realtime_ws(websocket: WebSocket):
    """
    Dashboard event stream. Server frames carry the events published by the
    lifecycle and message services; client frames are agent-join, join-chat,
    leave-chat, typing-start, typing-stop and ping.
    """
    hub: ConnectionHub = websocket.app.state.publisher
    conn = await hub.connect(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                await conn.send("error", {"message": "Invalid JSON"})
                continue
            if not isinstance(frame, dict):
                await conn.send("error", {"message": "Frames must be JSON objects"})
                continue
            await hub.handle_frame(conn, frame)
    except WebSocketDisconnect:
        pass
    finally:
        await hub.disconnect(conn)


# ─────────────────────────────────────────────
# Health check / service info
# ─────────────────────────────────────────────

@app.get("/health")
@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "service": "central-chat-dashboard",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/api")
async def api_info():
    return {
        "name": "Central Chat Dashboard API",
        "version": APP_VERSION,
        "endpoints": {
            "auth": "/api/auth",
            "agents": "/api/agents",
            "websites": "/api/websites",
            "chats": "/api/chats",
            "surveys": "/api/surveys",
            "realtime": "/ws",
        },
    }


# ─────────────────────────────────────────────
# Entry point
# ─────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run("src.main:app", host=HOST, port=PORT, reload=True)
