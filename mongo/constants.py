import os
import logging
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Configure logging
logger = logging.getLogger(__name__)

# Database configuration
DATABASE_NAME = os.getenv("MONGODB_DATABASE", "taskflow")
_DEFAULT_MONGODB_URI = "mongodb://localhost:27017"

def _resolve_mongo_uri() -> str:
    """Resolve the MongoDB connection string with sane fallbacks."""
    candidates = [
        os.getenv("MONGODB_URI"),
        os.getenv("MONGODB_CONNECTION_STRING"),
    ]

    for candidate in candidates:
        if candidate and candidate.strip():
            return candidate.strip()

    if any(candidate == "" for candidate in candidates):
        logger.warning("MONGODB connection string env var was empty; falling back to default URI.")

    return _DEFAULT_MONGODB_URI

MONGODB_CONNECTION_STRING = _resolve_mongo_uri()


def _flag(name: str) -> bool:
    return os.getenv(name, "").lower() in ("1", "true", "yes")


# Query layer: raise typed errors instead of silently dropping malformed filters / unknown relations
STRICT_QUERY_MODE: bool = _flag("STRICT_QUERY_MODE")

# app_settings read-through cache lifetime
SETTINGS_CACHE_TTL_SECONDS: int = int(os.getenv("SETTINGS_CACHE_TTL_SECONDS", "60"))

# Telegram Bot API
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_API_BASE = os.getenv("TELEGRAM_API_BASE", "https://api.telegram.org")

# Periodic consistency sweep (0 disables the background loop)
RECONCILE_INTERVAL_SECONDS: int = int(os.getenv("RECONCILE_INTERVAL_SECONDS", "0"))

# Work-assignment task_type values
TASK_TYPE_TASK = "task"
TASK_TYPE_SUBTASK = "subtask"

# HTTP server port for main.py
PORT: int = int(os.getenv("PORT", "3000"))
