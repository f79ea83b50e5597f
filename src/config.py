"""
Central Chat Dashboard configuration
"""
import os
import json
from pathlib import Path

# Project root
BASE_DIR = Path(__file__).resolve().parent.parent

# SQLite database file
_repo_default_db = BASE_DIR / "data" / "dashboard.db"
_user_default_db = Path.home() / ".chatdash" / "dashboard.db"

config_data = {}
_config_file = BASE_DIR / "data" / "config.json"
if _config_file.exists():
    try:
        with open(_config_file, "r", encoding="utf-8") as _f:
            config_data = json.load(_f)
    except (OSError, ValueError):
        config_data = {}


def _flag(value) -> bool:
    return str(value).lower() in {"1", "true", "yes"}


if os.getenv("CHATDASH_DB"):
    DB_PATH = os.getenv("CHATDASH_DB")
elif _repo_default_db.parent.exists():
    DB_PATH = str(_repo_default_db)
else:
    # Installed package mode normally runs outside repository checkout.
    DB_PATH = str(_user_default_db)

# HTTP server - default to localhost only
HOST = os.getenv("CHATDASH_HOST", config_data.get("HOST", "127.0.0.1"))
PORT = int(os.getenv("CHATDASH_PORT", config_data.get("PORT", "3000")))
APP_VERSION = "1.0.0"

# production | development. Development exposes exception text in 500 responses.
ENVIRONMENT = os.getenv("CHATDASH_ENV", config_data.get("ENVIRONMENT", "production")).lower()
DEBUG_ERRORS = ENVIRONMENT == "development"

# CORS origins for the dashboard and widget callers (empty = allow all)
ALLOWED_ORIGINS = [
    o.strip()
    for o in os.getenv("CHATDASH_ALLOWED_ORIGINS", config_data.get("ALLOWED_ORIGINS", "")).split(",")
    if o.strip()
] or ["*"]

# Origin notification: best-effort POST to the website that hosts the widget
NOTIFY_ENABLED = _flag(os.getenv("CHATDASH_NOTIFY_ENABLED", config_data.get("NOTIFY_ENABLED", "true")))
NOTIFY_TIMEOUT = float(os.getenv("CHATDASH_NOTIFY_TIMEOUT", config_data.get("NOTIFY_TIMEOUT", "5")))
NOTIFY_SCHEME = os.getenv("CHATDASH_NOTIFY_SCHEME", config_data.get("NOTIFY_SCHEME", "https"))
NOTIFY_PATH = "/wp-admin/admin-ajax.php"
NOTIFY_ACTION = "ohsi_receive_agent_message"

# Agents created without an explicit limit
DEFAULT_MAX_CONCURRENT_CHATS = int(os.getenv("CHATDASH_DEFAULT_MAX_CHATS", "5"))
# Default page size for GET /api/chats/sessions
SESSION_PAGE_LIMIT = int(os.getenv("CHATDASH_SESSION_PAGE_LIMIT", "50"))

# Dashboard client settings
CLIENT_BASE_URL = os.getenv("CHATDASH_BASE_URL", f"http://{HOST}:{PORT}")
# Fallback polling of the open session's messages (seconds)
POLL_INTERVAL = float(os.getenv("CHATDASH_POLL_INTERVAL", "3"))
# Realtime connection open timeout (seconds)
WS_CONNECT_TIMEOUT = float(os.getenv("CHATDASH_WS_CONNECT_TIMEOUT", "20"))


def get_config_dict():
    return {
        "HOST": HOST,
        "PORT": PORT,
        "ENVIRONMENT": ENVIRONMENT,
        "NOTIFY_ENABLED": NOTIFY_ENABLED,
        "NOTIFY_TIMEOUT": NOTIFY_TIMEOUT,
        "NOTIFY_SCHEME": NOTIFY_SCHEME,
    }


def save_config_dict(new_data: dict):
    config_file = BASE_DIR / "data" / "config.json"
    config_file.parent.mkdir(parents=True, exist_ok=True)

    current = {}
    if config_file.exists():
        with open(config_file, "r", encoding="utf-8") as f:
            current = json.load(f)

    current.update(new_data)
    with open(config_file, "w", encoding="utf-8") as f:
        json.dump(current, f, indent=2)
