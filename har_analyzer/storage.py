"""
Atomic JSON file helpers shared by the session and reference stores.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from .exceptions import StorageIOError

logger = logging.getLogger(__name__)


def atomic_write_text(target_path: Path, text: str) -> None:
    """
    Write text to target_path atomically.

    Uses write-to-temp-then-rename so readers in other processes never see
    a partially written file.

    Raises:
        StorageIOError: If the file cannot be written
    """
    target_path = Path(target_path)
    try:
        target_path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            suffix=".tmp",
            prefix=f"{target_path.stem}_",
            dir=target_path.parent,
        )
    except OSError as e:
        raise StorageIOError(f"Cannot write {target_path}: {e}") from e

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(temp_path, target_path)
    except OSError as e:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise StorageIOError(f"Cannot write {target_path}: {e}") from e


def read_json(path: Path) -> Optional[Any]:
    """Read a JSON file; None if it is missing or unreadable."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable file {path}: {e}")
        return None
