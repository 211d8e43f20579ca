"""
Configuration for the HAR analyzer.

Values can be overridden through environment variables (or a .env file,
which the CLI loads with python-dotenv before importing this module).
"""

import os
from pathlib import Path


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name)
    return Path(value).expanduser() if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


class AnalyzerConfig:
    """Default analyzer configuration."""
    HOME_DIR = _env_path("HAR_ANALYZER_HOME", Path.home() / ".har-analyzer")
    SESSIONS_DIRNAME = "sessions"
    REFS_DIRNAME = "refs"
    POINTER_FILENAME = "last_session.json"

    # Sessions are swept by age of creation, not by last access
    SESSION_TTL_SECONDS = _env_float("HAR_ANALYZER_SESSION_TTL_HOURS", 24 * 7) * 3600
    SESSION_FORMAT_VERSION = 1

    # Values shorter than this are always printed inline
    REF_THRESHOLD = 200
    REF_PREVIEW_CHARS = 80
    # How long a writer waits for another invocation to release the ref store
    REF_LOCK_TIMEOUT_SECONDS = _env_float("HAR_ANALYZER_LOCK_TIMEOUT", 10.0)
