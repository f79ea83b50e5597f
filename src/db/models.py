"""
Data models (dataclasses) for the chat dashboard.
These are plain Python objects used across the DB, service, and API layers.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass
class Agent:
    id: int
    name: str
    email: str
    password_hash: str
    status: str                   # online | offline
    max_concurrent_chats: int
    current_chats: int            # derived: count of active sessions, never stored
    last_active: Optional[datetime]
    created_at: datetime
    token: Optional[str] = None   # bearer token issued at login, cleared at logout
    total_sessions: int = 0

    @property
    def is_online(self) -> bool:
        return self.status == "online"

    @property
    def has_capacity(self) -> bool:
        return self.current_chats < self.max_concurrent_chats


@dataclass
class Website:
    id: int
    name: str
    domain: str
    api_key: str
    status: str                   # active | inactive
    contact_email: Optional[str]
    created_at: datetime
    total_sessions: int = 0
    active_sessions: int = 0
    waiting_sessions: int = 0


@dataclass
class ChatSession:
    session_id: str               # external correlation key shared by widget and dashboard
    website_id: Optional[int]
    agent_id: Optional[int]
    customer_name: Optional[str]
    customer_email: Optional[str]
    customer_phone: Optional[str]
    customer_ip: Optional[str]
    topic: Optional[str]
    status: str                   # waiting | active | closed
    priority: str
    started_at: datetime
    last_activity: datetime
    ended_at: Optional[datetime]
    website_name: Optional[str] = None
    website_domain: Optional[str] = None
    agent_name: Optional[str] = None


@dataclass
class Message:
    id: int
    session_id: str
    sender_type: str              # agent | customer | system | user
    sender_id: Optional[int]
    content: str
    message_type: str
    metadata: Optional[str]       # JSON string
    created_at: datetime


@dataclass
class ChatAssignment:
    id: int
    session_id: str
    agent_id: int
    assignment_type: str          # manual | auto
    created_at: datetime


@dataclass
class Survey:
    id: int
    session_id: str
    customer_name: Optional[str]
    customer_email: Optional[str]
    agent_id: Optional[int]
    agent_name: Optional[str]
    website_id: Optional[int]
    website_name: Optional[str]
    problem_solved: bool
    feedback: Optional[str]
    rating: Optional[int]
    created_at: datetime


@dataclass
class OfflineReply:
    id: int
    offline_message_id: int
    agent_id: Optional[int]
    agent_name: Optional[str]
    reply_message: str
    reply_type: str
    is_internal: bool
    created_at: datetime


@dataclass
class OfflineMessage:
    """A message left through the widget while no agent was available."""
    id: int
    website_id: Optional[int]
    customer_name: Optional[str]
    customer_email: Optional[str]
    customer_phone: Optional[str]
    subject: Optional[str]
    message: str
    priority: str                 # low | normal | high | urgent
    status: str                   # unread | read | replied | closed
    assigned_agent_id: Optional[int]
    created_at: datetime
    updated_at: datetime
    website_name: Optional[str] = None
    replies: list[OfflineReply] = field(default_factory=list)
