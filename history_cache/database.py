"""
SQLite cache for conversation-history metadata and statistics.

Caches per-file metadata and aggregated daily stats so that listings and
statistics do not re-scan every JSONL file on each request.
"""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .config import HistoryConfig
from .models import CachedTotals, DailyStats, FileIndexRecord, SessionMetadataRecord, TokenUsage

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
-- Daily aggregated statistics
CREATE TABLE IF NOT EXISTS daily_stats (
    date TEXT NOT NULL,
    project TEXT NOT NULL DEFAULT '__all__',
    conversations INTEGER NOT NULL DEFAULT 0,
    messages INTEGER NOT NULL DEFAULT 0,
    subagent_sessions INTEGER NOT NULL DEFAULT 0,
    tool_counts TEXT,
    hourly_activity TEXT,
    token_usage TEXT,
    model_counts TEXT,
    branch_counts TEXT,
    computed_at TEXT NOT NULL,
    PRIMARY KEY (date, project)
);

-- File index for incremental stats updates
CREATE TABLE IF NOT EXISTS file_index (
    file_path TEXT PRIMARY KEY,
    mtime INTEGER NOT NULL,
    message_count INTEGER NOT NULL DEFAULT 0,
    first_date TEXT,
    last_date TEXT,
    project TEXT,
    is_subagent INTEGER NOT NULL DEFAULT 0,
    last_indexed TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS cache_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS totals_cache (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    total_conversations INTEGER NOT NULL DEFAULT 0,
    total_messages INTEGER NOT NULL DEFAULT 0,
    total_subagents INTEGER NOT NULL DEFAULT 0,
    project_count INTEGER NOT NULL DEFAULT 0,
    last_updated TEXT NOT NULL
);

-- Session metadata for fast listing and search
CREATE TABLE IF NOT EXISTS session_metadata (
    file_path TEXT PRIMARY KEY,
    session_id TEXT,
    custom_title TEXT,
    summary TEXT,
    first_prompt TEXT,
    git_branch TEXT,
    project TEXT,
    cwd TEXT,
    mtime INTEGER NOT NULL,
    first_timestamp TEXT,
    is_subagent INTEGER NOT NULL DEFAULT 0,
    all_user_text TEXT
);

CREATE INDEX IF NOT EXISTS idx_daily_stats_date ON daily_stats(date);
CREATE INDEX IF NOT EXISTS idx_file_index_mtime ON file_index(mtime);
CREATE INDEX IF NOT EXISTS idx_file_index_project ON file_index(project);
CREATE INDEX IF NOT EXISTS idx_session_metadata_session_id ON session_metadata(session_id);
"""

# Columns added after the first schema; older databases get them on open
MIGRATIONS = [
    "ALTER TABLE daily_stats ADD COLUMN token_usage TEXT",
    "ALTER TABLE daily_stats ADD COLUMN model_counts TEXT",
    "ALTER TABLE daily_stats ADD COLUMN branch_counts TEXT",
    "ALTER TABLE session_metadata ADD COLUMN all_user_text TEXT",
]

SESSION_COLUMNS = (
    "file_path", "session_id", "custom_title", "summary", "first_prompt", "git_branch",
    "project", "cwd", "mtime", "first_timestamp", "is_subagent", "all_user_text",
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _safe_json(value: Optional[str], fallback):
    """Parse a JSON column, falling back if it is empty or corrupt."""
    if value is None:
        return fallback
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse JSON from cache, using fallback. Input: {value[:100]}...")
        return fallback


class CacheDatabase:
    """Connection and queries for the history cache database"""

    def __init__(self, cache_dir: Optional[Path] = None, db_name: str = HistoryConfig.DB_NAME):
        """
        Args:
            cache_dir: Directory holding the database (default: HistoryConfig.CACHE_DIR)
            db_name: Database file name
        """
        self.cache_dir = Path(cache_dir) if cache_dir else HistoryConfig.CACHE_DIR
        self.db_path = self.cache_dir / db_name
        self._connection: Optional[sqlite3.Connection] = None

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Opening stats cache database at {self.db_path}")
            conn = sqlite3.connect(str(self.db_path), timeout=HistoryConfig.SQLITE_TIMEOUT_SECONDS)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode = WAL")
            self._init_schema(conn)
            self._connection = conn
        return self._connection

    @staticmethod
    def _init_schema(conn: sqlite3.Connection) -> None:
        conn.executescript(SCHEMA_SQL)
        for migration in MIGRATIONS:
            try:
                conn.execute(migration)
            except sqlite3.OperationalError:
                # Column already exists
                pass
        conn.commit()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back on error."""
        conn = self.connection
        with conn:
            yield conn

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def __enter__(self) -> "CacheDatabase":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Cache meta
    # ------------------------------------------------------------------

    def get_meta(self, key: str) -> Optional[str]:
        row = self.connection.execute("SELECT value FROM cache_meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_meta(self, key: str, value: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO cache_meta (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )

    # ------------------------------------------------------------------
    # Session metadata
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> SessionMetadataRecord:
        return SessionMetadataRecord(
            file_path=row["file_path"],
            session_id=row["session_id"],
            custom_title=row["custom_title"],
            summary=row["summary"],
            first_prompt=row["first_prompt"],
            git_branch=row["git_branch"],
            project=row["project"],
            cwd=row["cwd"],
            mtime=row["mtime"],
            first_timestamp=row["first_timestamp"],
            is_subagent=row["is_subagent"] == 1,
            all_user_text=row["all_user_text"],
        )

    def get_session_metadata(self, file_path: str) -> Optional[SessionMetadataRecord]:
        row = self.connection.execute(
            "SELECT * FROM session_metadata WHERE file_path = ?", (file_path,)
        ).fetchone()
        return self._row_to_session(row) if row else None

    def get_session_mtimes(self) -> Dict[str, int]:
        rows = self.connection.execute("SELECT file_path, mtime FROM session_metadata").fetchall()
        return {row["file_path"]: row["mtime"] for row in rows}

    def upsert_session_metadata(self, record: SessionMetadataRecord) -> None:
        placeholders = ", ".join("?" for _ in SESSION_COLUMNS)
        updates = ", ".join(f"{col} = excluded.{col}" for col in SESSION_COLUMNS[1:])
        values = record.model_dump()
        values["is_subagent"] = 1 if record.is_subagent else 0
        with self.transaction() as conn:
            conn.execute(
                f"""
                INSERT INTO session_metadata ({", ".join(SESSION_COLUMNS)}) VALUES ({placeholders})
                ON CONFLICT(file_path) DO UPDATE SET {updates}
                """,
                tuple(values[col] for col in SESSION_COLUMNS),
            )

    def get_all_session_metadata(self) -> List[SessionMetadataRecord]:
        rows = self.connection.execute(
            "SELECT * FROM session_metadata ORDER BY first_timestamp DESC"
        ).fetchall()
        return [self._row_to_session(r) for r in rows]

    def get_session_metadata_by_dir(self, dir_path: str) -> List[SessionMetadataRecord]:
        """Rows whose file lies under dir_path (prefix match, no LIKE escaping issues)."""
        prefix = dir_path if dir_path.endswith(os.sep) else dir_path + os.sep
        rows = self.connection.execute(
            """
            SELECT * FROM session_metadata
            WHERE substr(file_path, 1, length(?)) = ?
            ORDER BY first_timestamp DESC
            """,
            (prefix, prefix),
        ).fetchall()
        return [self._row_to_session(r) for r in rows]

    def get_session_metadata_by_project(self, project: str) -> List[SessionMetadataRecord]:
        rows = self.connection.execute(
            "SELECT * FROM session_metadata WHERE project = ? ORDER BY first_timestamp DESC",
            (project,),
        ).fetchall()
        return [self._row_to_session(r) for r in rows]

    def get_session_paths(self) -> List[Tuple[str, bool]]:
        """(file_path, is_subagent) for every cached session."""
        rows = self.connection.execute("SELECT file_path, is_subagent FROM session_metadata").fetchall()
        return [(row["file_path"], row["is_subagent"] == 1) for row in rows]

    def remove_session_metadata(self, file_paths: Iterable[str]) -> int:
        paths = [(p,) for p in file_paths]
        if not paths:
            return 0
        with self.transaction() as conn:
            conn.executemany("DELETE FROM session_metadata WHERE file_path = ?", paths)
        return len(paths)

    # ------------------------------------------------------------------
    # File index
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_file_index(row: sqlite3.Row) -> FileIndexRecord:
        return FileIndexRecord(
            file_path=row["file_path"],
            mtime=row["mtime"],
            message_count=row["message_count"],
            first_date=row["first_date"],
            last_date=row["last_date"],
            project=row["project"],
            is_subagent=row["is_subagent"] == 1,
            last_indexed=row["last_indexed"],
        )

    def get_file_index(self, file_path: str) -> Optional[FileIndexRecord]:
        row = self.connection.execute("SELECT * FROM file_index WHERE file_path = ?", (file_path,)).fetchone()
        return self._row_to_file_index(row) if row else None

    def get_all_file_indexes(self) -> List[FileIndexRecord]:
        rows = self.connection.execute("SELECT * FROM file_index").fetchall()
        return [self._row_to_file_index(r) for r in rows]

    def upsert_file_index(self, record: FileIndexRecord) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO file_index
                    (file_path, mtime, message_count, first_date, last_date, project, is_subagent, last_indexed)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.file_path,
                    record.mtime,
                    record.message_count,
                    record.first_date,
                    record.last_date,
                    record.project,
                    1 if record.is_subagent else 0,
                    record.last_indexed,
                ),
            )

    def remove_file_index(self, file_path: str) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM file_index WHERE file_path = ?", (file_path,))

    def get_project_counts(self) -> Dict[str, int]:
        rows = self.connection.execute(
            """
            SELECT project, COUNT(*) AS count FROM file_index
            WHERE project IS NOT NULL
            GROUP BY project ORDER BY count DESC
            """
        ).fetchall()
        return {row["project"]: row["count"] for row in rows}

    def get_conversation_lengths(self) -> List[int]:
        rows = self.connection.execute(
            "SELECT message_count FROM file_index WHERE message_count > 0 ORDER BY message_count"
        ).fetchall()
        return [row["message_count"] for row in rows]

    # ------------------------------------------------------------------
    # Daily stats
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_daily(row: sqlite3.Row) -> DailyStats:
        return DailyStats(
            date=row["date"],
            project=row["project"],
            conversations=row["conversations"],
            messages=row["messages"],
            subagent_sessions=row["subagent_sessions"],
            tool_counts=_safe_json(row["tool_counts"], {}),
            hourly_activity=_safe_json(row["hourly_activity"], {}),
            token_usage=TokenUsage(**_safe_json(row["token_usage"], {})),
            model_counts=_safe_json(row["model_counts"], {}),
            branch_counts=_safe_json(row["branch_counts"], {}),
        )

    def get_daily_stats(self, date: str, project: str = HistoryConfig.ALL_PROJECTS) -> Optional[DailyStats]:
        row = self.connection.execute(
            "SELECT * FROM daily_stats WHERE date = ? AND project = ?", (date, project)
        ).fetchone()
        return self._row_to_daily(row) if row else None

    def upsert_daily_stats(self, stats: DailyStats) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO daily_stats
                    (date, project, conversations, messages, subagent_sessions, tool_counts,
                     hourly_activity, token_usage, model_counts, branch_counts, computed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    stats.date,
                    stats.project,
                    stats.conversations,
                    stats.messages,
                    stats.subagent_sessions,
                    json.dumps(stats.tool_counts),
                    json.dumps(stats.hourly_activity),
                    stats.token_usage.model_dump_json(),
                    json.dumps(stats.model_counts),
                    json.dumps(stats.branch_counts),
                    _now_iso(),
                ),
            )

    def get_daily_stats_in_range(self, date_from: Optional[str] = None,
                                 date_to: Optional[str] = None) -> List[DailyStats]:
        sql = "SELECT * FROM daily_stats WHERE project = ?"
        params: list = [HistoryConfig.ALL_PROJECTS]
        if date_from:
            sql += " AND date >= ?"
            params.append(date_from)
        if date_to:
            sql += " AND date <= ?"
            params.append(date_to)
        sql += " ORDER BY date DESC"
        rows = self.connection.execute(sql, params).fetchall()
        return [self._row_to_daily(r) for r in rows]

    def get_cached_dates(self) -> List[str]:
        rows = self.connection.execute(
            "SELECT DISTINCT date FROM daily_stats WHERE project = ? ORDER BY date DESC",
            (HistoryConfig.ALL_PROJECTS,),
        ).fetchall()
        return [row["date"] for row in rows]

    def delete_daily_stats(self, date: str) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM daily_stats WHERE date = ?", (date,))

    def invalidate_date_range(self, date_from: Optional[str], date_to: Optional[str]) -> None:
        if not date_from or not date_to:
            return
        with self.transaction() as conn:
            conn.execute("DELETE FROM daily_stats WHERE date >= ? AND date <= ?", (date_from, date_to))
        logger.debug(f"Invalidated cache for date range: {date_from} to {date_to}")

    # ------------------------------------------------------------------
    # Totals
    # ------------------------------------------------------------------

    def get_cached_totals(self) -> Optional[CachedTotals]:
        row = self.connection.execute("SELECT * FROM totals_cache WHERE id = 1").fetchone()
        if not row:
            return None
        return CachedTotals(
            total_conversations=row["total_conversations"],
            total_messages=row["total_messages"],
            total_subagents=row["total_subagents"],
            project_count=row["project_count"],
            last_updated=row["last_updated"],
        )

    def update_cached_totals(self, total_conversations: int, total_messages: int,
                             total_subagents: int, project_count: int) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO totals_cache
                    (id, total_conversations, total_messages, total_subagents, project_count, last_updated)
                VALUES (1, ?, ?, ?, ?, ?)
                """,
                (total_conversations, total_messages, total_subagents, project_count, _now_iso()),
            )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Delete every cached row (schema is kept)."""
        with self.transaction() as conn:
            for table in ("daily_stats", "file_index", "cache_meta", "totals_cache", "session_metadata"):
                conn.execute(f"DELETE FROM {table}")
        logger.info("Cleared all history cache tables")

    def clear_stats(self) -> None:
        """Delete statistics rows, keeping session metadata."""
        with self.transaction() as conn:
            for table in ("daily_stats", "file_index", "totals_cache"):
                conn.execute(f"DELETE FROM {table}")
        logger.info("Cleared statistics cache tables")

    def cache_stats(self) -> dict:
        conn = self.connection
        days = conn.execute(
            "SELECT COUNT(DISTINCT date) AS count, MIN(date) AS oldest, MAX(date) AS newest "
            "FROM daily_stats WHERE project = ?",
            (HistoryConfig.ALL_PROJECTS,),
        ).fetchone()
        files = conn.execute("SELECT COUNT(*) AS count FROM file_index").fetchone()
        sessions = conn.execute("SELECT COUNT(*) AS count FROM session_metadata").fetchone()
        return {
            "db_path": str(self.db_path),
            "total_days": days["count"],
            "oldest_date": days["oldest"],
            "newest_date": days["newest"],
            "total_files": files["count"],
            "total_sessions": sessions["count"],
            "metadata_version": self.get_meta("metadata_version"),
            "last_updated": self.get_meta("last_full_update"),
        }
