"""
Configuration for the conversation-history cache.

Values can be overridden through environment variables (or a .env file,
which the CLI loads with python-dotenv before importing this module).
"""

import os
from pathlib import Path


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name)
    return Path(value).expanduser() if value else default


class HistoryConfig:
    """Default history cache configuration."""
    PROJECTS_DIR = _env_path("CLAUDE_PROJECTS_DIR", Path.home() / ".claude" / "projects")
    CACHE_DIR = _env_path("CLAUDE_HISTORY_CACHE_DIR", Path.home() / ".genesis-tools" / "claude-history")
    DB_NAME = "stats-cache.db"

    # Bump whenever metadata extraction changes; a mismatch wipes the cache
    METADATA_VERSION = "3"

    USER_TEXT_CAP = 5000
    MAX_FILE_SIZE = 10 * 1024 * 1024
    SQLITE_TIMEOUT_SECONDS = 30.0

    ALL_PROJECTS = "__all__"
