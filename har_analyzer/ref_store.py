"""
Session-scoped reference store.

Large values (bodies, header blocks) are printed in full the first time they
are shown within a session and stored under their context tag
(e.g. e14.rs.body). Later renderings of the same tag print a short preview
plus a [ref:<tag>] pointer that `expand` resolves back to the full value.
"""

import logging
import time
from pathlib import Path
from typing import List, Optional, Tuple

from filelock import FileLock, Timeout
from pydantic import ValidationError

from .config import AnalyzerConfig
from .exceptions import StorageIOError
from .models import RefEntry, RefStore
from .storage import atomic_write_text, read_json

logger = logging.getLogger(__name__)


def make_preview(value: str, max_chars: int = AnalyzerConfig.REF_PREVIEW_CHARS) -> str:
    """Single-line preview: first max_chars characters with newlines escaped."""
    return value[:max_chars].replace('\r', '').replace('\n', '\\n')


class RefStoreManager:
    """Reads and writes the reference table of one session"""

    def __init__(self, source_hash: str, base_dir: Optional[Path] = None,
                 threshold: int = AnalyzerConfig.REF_THRESHOLD):
        """
        Args:
            source_hash: Hash of the session the references belong to
            base_dir: Analyzer home directory (default: AnalyzerConfig.HOME_DIR)
            threshold: Values shorter than this are never referenced
        """
        self.source_hash = source_hash
        self.base_dir = Path(base_dir) if base_dir else AnalyzerConfig.HOME_DIR
        self.threshold = threshold
        self._store: Optional[RefStore] = None

    @property
    def store_path(self) -> Path:
        return self.base_dir / AnalyzerConfig.REFS_DIRNAME / f"{self.source_hash}.json"

    @property
    def lock_path(self) -> Path:
        return self.store_path.with_suffix(".lock")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _read_store(self) -> RefStore:
        data = read_json(self.store_path)
        if data is None:
            return RefStore(source_hash=self.source_hash)
        try:
            return RefStore.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Ignoring corrupt reference store {self.store_path}: {e}")
            return RefStore(source_hash=self.source_hash)

    def _load(self) -> RefStore:
        if self._store is None:
            self._store = self._read_store()
        return self._store

    def _persist(self, context_tag: str, value: str) -> Tuple[RefEntry, bool]:
        """
        Store value under context_tag unless the tag already exists on disk.

        Returns:
            (entry, created) where entry is the value now stored for the tag

        Raises:
            StorageIOError: If the store cannot be written
        """
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIOError(f"Cannot create {self.lock_path.parent}: {e}") from e

        lock = FileLock(str(self.lock_path), timeout=AnalyzerConfig.REF_LOCK_TIMEOUT_SECONDS)
        try:
            with lock:
                # Read and write under the lock so concurrent invocations keep each other's tags
                store = self._read_store()
                existing = store.refs.get(context_tag)
                if existing is not None:
                    self._store = store
                    return existing, False

                entry = RefEntry(
                    id=context_tag,
                    source_hash=self.source_hash,
                    context_tag=context_tag,
                    full_value=value,
                    preview=make_preview(value),
                    size=len(value),
                    created_at=time.time(),
                )
                store.refs[context_tag] = entry
                atomic_write_text(self.store_path, store.model_dump_json())
                self._store = store
                return entry, True
        except Timeout as e:
            raise StorageIOError(f"Reference store {self.store_path} is locked: {e}") from e

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, ref_id: str) -> Optional[RefEntry]:
        return self._load().refs.get(ref_id)

    def expand(self, ref_id: str) -> Optional[str]:
        """Full stored value for a reference ID, or None if unknown."""
        entry = self.get(ref_id)
        return entry.full_value if entry else None

    def list_refs(self) -> List[RefEntry]:
        return sorted(self._load().refs.values(), key=lambda r: r.created_at)

    def format_value(self, raw: str, context_tag: str, full: bool = False) -> str:
        """
        Render a value, deduplicating large values across invocations.

        Args:
            raw: Value to render
            context_tag: Stable ID of where the value came from (e.g. e14.rs.body)
            full: Bypass the reference system entirely

        Returns:
            The value itself, or a preview plus [ref:<tag>] pointer if the
            tag was already shown in this session
        """
        if len(raw) < self.threshold or full:
            return raw

        existing = self.get(context_tag)
        if existing is not None:
            return self.render_reference(existing)

        try:
            entry, created = self._persist(context_tag, raw)
        except StorageIOError as e:
            logger.warning(f"Could not store reference {context_tag}, printing in full: {e}")
            return raw

        if not created:
            return self.render_reference(entry)
        return self.render_first(entry)

    @staticmethod
    def render_first(entry: RefEntry) -> str:
        return (
            f"{entry.full_value}\n"
            f"[ref:{entry.id}] {entry.size:,} chars stored; later views show a preview, "
            f"run `expand {entry.id}` for the full value"
        )

    @staticmethod
    def render_reference(entry: RefEntry) -> str:
        return f"{entry.preview}... [ref:{entry.id}] ({entry.size:,} chars, run `expand {entry.id}`)"

    def clear(self) -> bool:
        """Delete this session's reference table. True if a file was removed."""
        self._store = None
        self.lock_path.unlink(missing_ok=True)
        try:
            self.store_path.unlink()
            return True
        except FileNotFoundError:
            return False
