"""
Best-effort notification of the website that hosts a session's widget.

The widget host exposes an ``admin-ajax.php`` action that accepts system
messages (agent connected, chat closed). Calls are bounded by a timeout,
never retried, and their failures are logged and discarded.
"""
import logging
from typing import Optional

import httpx

from src.config import NOTIFY_ACTION, NOTIFY_ENABLED, NOTIFY_PATH, NOTIFY_SCHEME, NOTIFY_TIMEOUT
from src.errors import UpstreamNotifyError, ValidationError

logger = logging.getLogger(__name__)


def clean_domain(raw: str) -> str:
    """Normalise a website domain; it must be a bare host usable in an origin URL."""
    domain = raw.strip().lower()
    try:
        url = httpx.URL(f"https://{domain}")
    except httpx.InvalidURL as e:
        raise ValidationError(f"Invalid domain: {raw!r}") from e
    if not domain or url.host != domain or url.port is not None or url.raw_path not in (b"", b"/") or url.fragment:
        raise ValidationError(f"Invalid domain: {raw!r}")
    return domain


class OriginNotifier:
    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        scheme: str = NOTIFY_SCHEME,
        timeout: float = NOTIFY_TIMEOUT,
        enabled: bool = NOTIFY_ENABLED,
    ):
        self._client = client
        self._owns_client = client is None
        self.scheme = scheme
        self.timeout = timeout
        self.enabled = enabled

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def endpoint(self, domain: str) -> str:
        return f"{self.scheme}://{domain}{NOTIFY_PATH}"

    async def notify(self, domain: Optional[str], session_id: str, text: str) -> bool:
        """POST a system message to the origin. Returns True only on confirmed success."""
        if not self.enabled or not domain:
            return False
        try:
            return await self._send(domain, session_id, text)
        except UpstreamNotifyError as e:
            logger.warning(f"{e} (session {session_id})")
            return False

    async def _send(self, domain: str, session_id: str, text: str) -> bool:
        form = {
            "action": NOTIFY_ACTION,
            "session_id": session_id,
            "message": text,
            "sender_type": "system",
        }
        try:
            resp = await self._get_client().post(self.endpoint(domain), data=form, timeout=self.timeout)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise UpstreamNotifyError(domain, f"{type(e).__name__}: {e}") from e

        if resp.status_code >= 400:
            raise UpstreamNotifyError(domain, resp.text[:200], status=resp.status_code)
        try:
            body = resp.json()
        except ValueError as e:
            raise UpstreamNotifyError(domain, "response is not JSON", status=resp.status_code) from e

        ok = bool(body.get("success")) if isinstance(body, dict) else False
        logger.info(f"Notified {domain} for session {session_id}: success={ok}")
        return ok
