"""
Error taxonomy for the chat dashboard.

Every domain error carries the HTTP status it maps to; the FastAPI exception
handlers in ``src.main`` turn them into ``{"error": message}`` responses.
``UpstreamNotifyError`` is the exception: it is raised and caught inside the
origin notifier and never reaches a caller.
"""
from typing import Optional


class DashboardError(Exception):
    """Base class for errors that are part of the dashboard's contract."""

    status_code = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(DashboardError):
    """Missing or malformed input."""

    status_code = 400


class NotFoundError(DashboardError):
    """Unknown website, session, agent, survey or offline message."""

    status_code = 404


class ConflictError(DashboardError):
    """Duplicate key or a request that conflicts with current state."""

    status_code = 400


class InvalidTransitionError(ConflictError):
    """Raised when a session cannot move to the requested state."""

    def __init__(self, session_id: str, current: str, target: str) -> None:
        self.session_id = session_id
        self.current = current
        self.target = target
        super().__init__(f"Cannot move session {session_id} from '{current}' to '{target}'")


class CapacityExceededError(DashboardError):
    """Raised when an agent already handles its maximum number of chats."""

    status_code = 400

    def __init__(self, agent_id: int, current: int, maximum: int) -> None:
        self.agent_id = agent_id
        self.current = current
        self.maximum = maximum
        super().__init__("Agent has reached maximum concurrent chats")


class AuthenticationError(DashboardError):
    status_code = 401


class ForbiddenError(DashboardError):
    status_code = 403


class UpstreamNotifyError(DashboardError):
    """The originating website could not be reached or rejected the call."""

    status_code = 502

    def __init__(self, domain: str, reason: str, status: Optional[int] = None) -> None:
        self.domain = domain
        self.reason = reason
        self.status = status
        super().__init__(f"Notify {domain} failed: {reason}")


class InternalError(DashboardError):
    status_code = 500
