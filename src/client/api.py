"""
Async HTTP client for the dashboard REST API.

Every failed call raises DashboardAPIError carrying the server's ``error``
message, or "Network error" when the server could not be reached.
"""
import logging
from typing import Optional
from urllib.parse import quote

import httpx

from src.config import CLIENT_BASE_URL

logger = logging.getLogger(__name__)


def _seg(value: str) -> str:
    """Escape a value used as a single URL path segment."""
    return quote(str(value), safe="")


class DashboardAPIError(Exception):
    def __init__(self, message: str, status: Optional[int] = None):
        self.message = message
        self.status = status
        super().__init__(message)


class DashboardAPI:
    def __init__(
        self,
        base_url: str = CLIENT_BASE_URL,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            resp = await self._client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"{method} {path} failed: {type(e).__name__}: {e}")
            raise DashboardAPIError("Network error") from e

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.status_code >= 400:
            message = body.get("error") if isinstance(body, dict) else None
            raise DashboardAPIError(message or f"Request failed ({resp.status_code})", resp.status_code)
        return body

    # ── auth ─────────────────────────────────────────────────────────────────

    async def login(self, email: str, password: str) -> dict:
        body = await self._request("POST", "/api/auth/login", json={"email": email, "password": password})
        self.token = body["token"]
        return body["agent"]

    async def logout(self) -> None:
        try:
            await self._request("POST", "/api/auth/logout")
        finally:
            self.token = None

    async def me(self) -> dict:
        return (await self._request("GET", "/api/auth/me"))["agent"]

    # ── directory ────────────────────────────────────────────────────────────

    async def list_sessions(self, status: Optional[str] = None, limit: int = 50, offset: int = 0) -> list[dict]:
        params = {"limit": limit, "offset": offset}
        if status:
            params["status"] = status
        return (await self._request("GET", "/api/chats/sessions", params=params))["sessions"]

    async def list_websites(self) -> list[dict]:
        return (await self._request("GET", "/api/websites"))["websites"]

    async def list_agents(self) -> list[dict]:
        return (await self._request("GET", "/api/agents"))["agents"]

    # ── session actions ──────────────────────────────────────────────────────

    async def get_messages(self, session_id: str) -> list[dict]:
        return (await self._request("GET", f"/api/chats/{_seg(session_id)}/messages"))["messages"]

    async def assign(self, session_id: str, agent_id: int) -> dict:
        body = await self._request("POST", f"/api/chats/sessions/{_seg(session_id)}/assign", json={"agent_id": agent_id})
        return body["session"]

    async def send_message(self, session_id: str, content: str) -> dict:
        body = await self._request("POST", f"/api/chats/sessions/{_seg(session_id)}/messages", json={"content": content})
        return body["message"]

    async def close(self, session_id: str) -> dict:
        return (await self._request("POST", f"/api/chats/sessions/{_seg(session_id)}/close"))["session"]

    async def delete(self, session_id: str) -> None:
        await self._request("DELETE", "/api/chats/delete", json={"session_id": session_id})

    async def set_status(self, agent_id: int, status: str) -> dict:
        return (await self._request("PUT", f"/api/agents/{agent_id}/status", json={"status": status}))["agent"]
