"""
Incremental session listing backed by the metadata cache.

Each call re-extracts only the conversation files whose mtime changed since
they were last indexed, drops rows for files that disappeared from disk, and
answers from the cache.
"""

import logging
import os
import sqlite3
from pathlib import Path
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from .config import HistoryConfig
from .database import CacheDatabase
from .extract import (
    extract_session_metadata,
    file_mtime_ms,
    find_conversation_files,
    find_conversation_files_in_dir,
    resolve_project_dir,
)
from .models import SearchResult, SessionListingResult, SessionMetadataRecord

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


class SessionListingOptions(BaseModel):
    """Options for get_session_listing"""
    project: Optional[str] = Field(default=None, description="Project name or directory; None for all projects")
    exclude_subagents: bool = Field(default=True, description="Leave subagent transcripts out of the listing")
    limit: Optional[int] = Field(default=None, description="Maximum sessions to return")


def ensure_metadata_version(cache: CacheDatabase) -> bool:
    """
    Wipe the cache when it was built by a different extraction version.

    Returns:
        True if the cache was wiped
    """
    stored = cache.get_meta("metadata_version")
    if stored == HistoryConfig.METADATA_VERSION:
        return False

    if stored is not None:
        logger.info(f"Metadata version changed ({stored} -> {HistoryConfig.METADATA_VERSION}), re-indexing")
        cache.reset()
    cache.set_meta("metadata_version", HistoryConfig.METADATA_VERSION)
    return stored is not None


def _sort_key(record: SessionMetadataRecord) -> str:
    return record.first_timestamp or ""


def get_session_listing(
    options: Optional[SessionListingOptions] = None,
    cache: Optional[CacheDatabase] = None,
    projects_dir: Optional[Path] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> SessionListingResult:
    """
    List conversation sessions, indexing new and changed files first.

    Args:
        options: Project scope, subagent handling and limit
        cache: Cache database (default: one at HistoryConfig.CACHE_DIR)
        projects_dir: Root of the project directories
        on_progress: Called as (processed, total, current_file) per file

    Returns:
        SessionListingResult with the sessions (newest first) and counters
    """
    options = options or SessionListingOptions()
    cache = cache or CacheDatabase()
    projects_dir = Path(projects_dir) if projects_dir else HistoryConfig.PROJECTS_DIR

    reindexed = ensure_metadata_version(cache)

    # ========================================================================
    # 1. Enumerate files in scope
    # ========================================================================

    if options.project:
        scope_dir = resolve_project_dir(options.project, projects_dir)
        if scope_dir is None:
            logger.info(f"No project directory found for {options.project!r}")
            return SessionListingResult(reindexed=reindexed, scope=options.project)
        files = find_conversation_files_in_dir(scope_dir, options.exclude_subagents)
        scope = scope_dir.name
    else:
        scope_dir = projects_dir
        files = find_conversation_files(projects_dir, exclude_subagents=options.exclude_subagents)
        scope = "all projects"

    # ========================================================================
    # 2. Re-index new and changed files
    # ========================================================================

    cached_mtimes = cache.get_session_mtimes()
    on_disk = set()
    indexed = 0
    # Extracted but not persisted; served from memory for this call
    uncached: Dict[str, SessionMetadataRecord] = {}

    for processed, file_path in enumerate(files, 1):
        path_str = str(file_path)
        on_disk.add(path_str)
        if on_progress:
            on_progress(processed, len(files), path_str)

        try:
            mtime = file_mtime_ms(file_path)
        except OSError as e:
            logger.warning(f"Cannot stat {file_path}: {e}")
            continue
        if cached_mtimes.get(path_str) == mtime:
            continue

        record = extract_session_metadata(file_path, mtime, projects_dir)
        if record is None:
            continue
        try:
            cache.upsert_session_metadata(record)
        except sqlite3.Error as e:
            logger.warning(f"Could not cache metadata for {file_path}: {e}")
            uncached[path_str] = record
            continue
        indexed += 1

    # ========================================================================
    # 3. Remove rows of deleted files within the scope
    # ========================================================================

    scoped_rows = cache.get_session_metadata_by_dir(str(scope_dir))
    stale = [
        row.file_path for row in scoped_rows
        if row.file_path not in on_disk
        and not (options.exclude_subagents and row.is_subagent)
        and not os.path.exists(row.file_path)
    ]
    stale_removed = cache.remove_session_metadata(stale)
    if stale_removed:
        logger.info(f"Removed {stale_removed} stale session rows")
        stale_set = set(stale)
        scoped_rows = [row for row in scoped_rows if row.file_path not in stale_set]

    if uncached:
        scoped_rows = [row for row in scoped_rows if row.file_path not in uncached]
        scoped_rows.extend(uncached.values())

    # ========================================================================
    # 4. Answer from the cache
    # ========================================================================

    sessions = [row for row in scoped_rows if not (options.exclude_subagents and row.is_subagent)]
    sessions.sort(key=_sort_key, reverse=True)
    if options.limit is not None:
        sessions = sessions[:options.limit]

    return SessionListingResult(
        sessions=sessions,
        total=len(scoped_rows),
        subagents=sum(1 for row in scoped_rows if row.is_subagent),
        indexed=indexed,
        stale_removed=stale_removed,
        reindexed=reindexed,
        project_count=len({row.project for row in scoped_rows if row.project}),
        scope=scope,
    )


# ============================================================================
# METADATA SEARCH
# ============================================================================

# Weight of a query word found in each field
SEARCH_FIELD_WEIGHTS = (
    ("custom_title", 3.0),
    ("summary", 2.0),
    ("first_prompt", 1.5),
    ("all_user_text", 1.0),
)


def score_session(record: SessionMetadataRecord, words: List[str]) -> float:
    """
    Relevance of a session for the query words, 0 when any word is missing.
    """
    fields = [((getattr(record, name) or "").lower(), weight) for name, weight in SEARCH_FIELD_WEIGHTS]
    score = 0.0
    for word in words:
        word_score = sum(weight for text, weight in fields if word in text)
        if word_score == 0:
            return 0.0
        score += word_score
    return score


def search_sessions(
    query: str,
    cache: Optional[CacheDatabase] = None,
    projects_dir: Optional[Path] = None,
    project: Optional[str] = None,
    include_subagents: bool = False,
    limit: Optional[int] = 20,
) -> List[SearchResult]:
    """
    Search session titles, summaries and user messages.

    The cache is refreshed first, so results reflect the files on disk.

    Args:
        query: Words that must all appear (case-insensitive)
        cache: Cache database
        projects_dir: Root of the project directories
        project: Restrict to one project
        include_subagents: Also search subagent transcripts
        limit: Maximum results

    Returns:
        Matches, best first
    """
    words = [w for w in query.lower().split() if w]
    if not words:
        return []

    listing = get_session_listing(
        SessionListingOptions(project=project, exclude_subagents=not include_subagents),
        cache=cache,
        projects_dir=projects_dir,
    )

    results = []
    for record in listing.sessions:
        score = score_session(record, words)
        if score > 0:
            results.append(SearchResult(session=record, relevance_score=score))

    results.sort(key=lambda r: (r.relevance_score, _sort_key(r.session)), reverse=True)
    if limit is not None:
        results = results[:limit]
    return results
