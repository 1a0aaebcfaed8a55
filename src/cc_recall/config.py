"""cc-recall configuration."""

import os
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name)
    if not value:
        return default
    return Path(value).expanduser()


# Claude Code sessions location
SESSIONS_DIR = _env_path(
    "CC_RECALL_SESSIONS_DIR",
    _env_path("CLAUDE_SESSIONS_DIR", Path.home() / ".claude" / "projects"),
)

# Index location
INDEX_PATH = _env_path(
    "CC_RECALL_INDEX_PATH", Path.home() / ".local" / "share" / "cc-recall" / "index.db"
)

# "scan" re-parses logs on every query, "index" reads the SQLite index
BACKEND = os.getenv("CC_RECALL_BACKEND", "scan").strip().lower()

# Seconds to wait on a locked database before giving up
DB_TIMEOUT = _env_float("CC_RECALL_DB_TIMEOUT", 5.0)

# Parser thread pool size
WORKERS = max(1, _env_int("CC_RECALL_WORKERS", 8))

LOG_LEVEL = os.getenv("CC_RECALL_LOG_LEVEL", "WARNING").upper()

# Result limits
DEFAULT_LIMIT = 20
MAX_LIMIT = 100

DEFAULT_STATS_DAYS = 7
