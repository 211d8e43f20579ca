"""
Session Manager for the HAR analyzer.

Persists parsed HAR sessions under ~/.har-analyzer/sessions/{source_hash}.json
so later CLI invocations can skip re-parsing. The last-used session is tracked
through an explicit pointer file (last_session.json) next to the sessions.
"""

import json
import logging
import time
from pathlib import Path
from typing import Callable, List, Optional

from pydantic import ValidationError

from .config import AnalyzerConfig
from .exceptions import NoSessionError, StorageIOError
from .models import HarSession, SessionInfo
from .parser import compute_source_hash, parse_har_file
from .ref_store import RefStoreManager
from .storage import atomic_write_text, read_json

logger = logging.getLogger(__name__)


class SessionManager:
    """
    Manages parsed HAR sessions in ~/.har-analyzer/

    Layout:
        sessions/{source_hash}.json   parsed session (entries, stats)
        refs/{source_hash}.json       reference store of the session
        last_session.json             {"last_session_hash": ...}
    """

    def __init__(
        self,
        base_dir: Optional[Path] = None,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize session manager.

        Args:
            base_dir: Analyzer home directory (default: AnalyzerConfig.HOME_DIR)
            ttl_seconds: Session lifetime counted from creation
            clock: Time source, injectable for tests
        """
        self.base_dir = Path(base_dir) if base_dir else AnalyzerConfig.HOME_DIR
        self.ttl_seconds = AnalyzerConfig.SESSION_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.clock = clock

    @property
    def sessions_dir(self) -> Path:
        return self.base_dir / AnalyzerConfig.SESSIONS_DIRNAME

    @property
    def pointer_file(self) -> Path:
        return self.base_dir / AnalyzerConfig.POINTER_FILENAME

    def get_session_file(self, source_hash: str) -> Path:
        return self.sessions_dir / f"{source_hash}.json"

    def ref_store(self, session: HarSession) -> RefStoreManager:
        """Reference store scoped to the given session."""
        return RefStoreManager(session.source_hash, base_dir=self.base_dir)

    # ------------------------------------------------------------------
    # Last-used pointer
    # ------------------------------------------------------------------

    def get_current_hash(self) -> Optional[str]:
        data = read_json(self.pointer_file)
        if isinstance(data, dict):
            return data.get("last_session_hash")
        return None

    def _set_current_hash(self, source_hash: Optional[str]) -> None:
        try:
            if source_hash is None:
                self.pointer_file.unlink(missing_ok=True)
            else:
                atomic_write_text(self.pointer_file, json.dumps({"last_session_hash": source_hash}))
        except (OSError, StorageIOError) as e:
            logger.warning(f"Could not update last-session pointer: {e}")

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    def _read_session(self, source_hash: str) -> Optional[HarSession]:
        session_file = self.get_session_file(source_hash)
        if not session_file.exists():
            return None
        try:
            session = HarSession.model_validate_json(session_file.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable session {source_hash}: {e}")
            return None
        if session.version != AnalyzerConfig.SESSION_FORMAT_VERSION:
            logger.info(f"Session {source_hash} has format v{session.version}, re-parse required")
            return None
        return session

    def save_session(self, session: HarSession) -> Path:
        """
        Write a session to disk atomically.

        Raises:
            StorageIOError: If the session cannot be written
        """
        session_file = self.get_session_file(session.source_hash)
        atomic_write_text(session_file, session.model_dump_json())
        return session_file

    def _touch(self, session: HarSession) -> None:
        session.last_accessed_at = self.clock()
        try:
            self.save_session(session)
        except StorageIOError as e:
            logger.warning(f"Could not update access time of session {session.source_hash}: {e}")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create_session(self, file_path: Path) -> HarSession:
        """
        Load a HAR file into a session, reusing the cached parse when the
        content hash matches an existing session.

        Args:
            file_path: Path to the HAR file

        Returns:
            The (new or cached) session, now marked as last used

        Raises:
            FileNotFoundError: If the file doesn't exist
            HarParseError: If the file is not a valid HAR
        """
        har_path = Path(file_path).expanduser().resolve()
        if not har_path.exists():
            raise FileNotFoundError(f"HAR file not found: {har_path}")

        raw = har_path.read_bytes()
        source_hash = compute_source_hash(raw)

        session = self._read_session(source_hash)
        if session is not None:
            logger.debug(f"Session cache hit for {har_path} ({source_hash})")
            if session.source_file != str(har_path):
                session.source_file = str(har_path)
            self._touch(session)
        else:
            logger.debug(f"Parsing {har_path} into new session {source_hash}")
            session = parse_har_file(har_path, raw=raw)
            session.created_at = session.last_accessed_at = self.clock()
            try:
                self.save_session(session)
            except StorageIOError as e:
                logger.warning(f"Session {source_hash} could not be cached: {e}")

        self._set_current_hash(source_hash)
        return session

    def load_session(self) -> Optional[HarSession]:
        """Return the last-used session, or None."""
        source_hash = self.get_current_hash()
        if not source_hash:
            return None
        return self._read_session(source_hash)

    def find_session_hash(self, hash_or_prefix: str) -> Optional[str]:
        """Resolve an exact session hash or a unique prefix of one."""
        if self.get_session_file(hash_or_prefix).exists():
            return hash_or_prefix
        if not self.sessions_dir.exists():
            return None
        matches = [p.stem for p in self.sessions_dir.glob(f"{hash_or_prefix}*.json")]
        return matches[0] if len(matches) == 1 else None

    def require_session(self, source_hash: Optional[str] = None) -> HarSession:
        """
        Return the named session, or the last-used one.

        Raises:
            NoSessionError: If no such session exists
        """
        if source_hash:
            resolved = self.find_session_hash(source_hash)
            session = self._read_session(resolved) if resolved else None
            if session is None:
                raise NoSessionError(
                    f"Session {source_hash} not found. Use `sessions` to list sessions "
                    f"or `load <file>` to create one."
                )
            return session

        session = self.load_session()
        if session is None:
            raise NoSessionError()
        return session

    def list_sessions(self) -> List[SessionInfo]:
        """All cached sessions, most recently used first."""
        if not self.sessions_dir.exists():
            return []

        current = self.get_current_hash()
        infos = []
        for session_file in self.sessions_dir.glob("*.json"):
            session = self._read_session(session_file.stem)
            if session is None:
                continue
            infos.append(SessionInfo(
                source_hash=session.source_hash,
                source_file=session.source_file,
                entry_count=session.stats.entry_count,
                created_at=session.created_at,
                last_accessed_at=session.last_accessed_at,
                is_current=session.source_hash == current,
            ))

        infos.sort(key=lambda info: info.last_accessed_at, reverse=True)
        return infos

    def delete_session(self, source_hash: str) -> bool:
        """
        Delete a session and its reference store.

        Returns:
            True if the session file existed and was removed
        """
        session_file = self.get_session_file(source_hash)
        existed = session_file.exists()
        session_file.unlink(missing_ok=True)
        RefStoreManager(source_hash, base_dir=self.base_dir).clear()

        if self.get_current_hash() == source_hash:
            self._set_current_hash(None)
        return existed

    def clean_expired_sessions(self) -> int:
        """
        Delete sessions created more than ttl_seconds ago.

        Never raises for individual sessions; failures are logged and skipped.

        Returns:
            Number of sessions deleted
        """
        if not self.sessions_dir.exists():
            return 0

        cutoff = self.clock() - self.ttl_seconds
        removed = 0
        for session_file in list(self.sessions_dir.glob("*.json")):
            source_hash = session_file.stem
            try:
                data = read_json(session_file)
                created_at = data.get("created_at") if isinstance(data, dict) else None
                # Unreadable session files are treated as expired
                if created_at is not None and float(created_at) >= cutoff:
                    continue
                if self.delete_session(source_hash):
                    removed += 1
                    logger.info(f"Removed expired session {source_hash}")
            except (OSError, TypeError, ValueError) as e:
                logger.warning(f"Failed to remove session {source_hash}: {e}")
                continue

        return removed
