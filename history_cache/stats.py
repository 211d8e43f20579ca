"""
Incremental conversation statistics.

Per-file statistics are merged into daily rows (project "__all__") and a
file_index row remembers the mtime and date range each file contributed, so
unchanged files are never re-read.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Optional

from .config import HistoryConfig
from .database import CacheDatabase
from .extract import (
    compute_file_stats,
    extract_project_name,
    file_mtime_ms,
    find_conversation_files,
    is_subagent_file,
)
from .models import (
    AggregatedStats,
    CachedTotals,
    ConversationStats,
    DailyStats,
    FileIndexRecord,
    FileStats,
    TokenUsage,
)

logger = logging.getLogger(__name__)


def merge_counts(base: Dict[str, int], extra: Dict[str, int]) -> Dict[str, int]:
    merged = dict(base)
    for key, count in extra.items():
        merged[key] = merged.get(key, 0) + count
    return merged


def invalidate_file_days(cache: CacheDatabase, record: FileIndexRecord, reason: str) -> None:
    """
    Drop the daily rows a file contributed to.

    Whole days are dropped, so other files' counts for those days stay out
    until a full refresh.
    """
    if not record.first_date or not record.last_date:
        return
    cache.invalidate_date_range(record.first_date, record.last_date)
    logger.info(
        f"Conversation file {reason}: {record.file_path}. Stats for "
        f"{record.first_date}..{record.last_date} are partial "
        f"until `stats --refresh`"
    )


def process_file_for_cache(
    file_path: Path,
    cache: CacheDatabase,
    projects_dir: Optional[Path] = None,
) -> Optional[FileStats]:
    """
    Fold one conversation file into the daily statistics.

    Tool, hourly, token, model and branch data are attributed to the file's
    first date; message counts go to the day they were sent.

    Returns:
        The file's stats, or None if the file was unchanged or unreadable
    """
    file_path = Path(file_path)
    path_str = str(file_path)
    try:
        mtime = file_mtime_ms(file_path)
        existing = cache.get_file_index(path_str)
        if existing and existing.mtime == mtime:
            return None
        file_stats = compute_file_stats(file_path)
    except OSError as e:
        logger.warning(f"Error processing file {file_path}: {e}")
        return None
    except (TypeError, ValueError) as e:
        logger.warning(f"Skipping malformed conversation file {file_path}: {e}")
        return None

    if existing:
        # Modified file: drop the days it contributed to before re-adding
        invalidate_file_days(cache, existing, "changed")

    is_subagent = is_subagent_file(file_path)
    cache.upsert_file_index(FileIndexRecord(
        file_path=path_str,
        mtime=mtime,
        message_count=file_stats.messages,
        first_date=file_stats.first_date,
        last_date=file_stats.last_date,
        project=extract_project_name(file_path, projects_dir),
        is_subagent=is_subagent,
        last_indexed=datetime.now(timezone.utc).isoformat(),
    ))

    for date_str, message_count in file_stats.daily_activity.items():
        is_first = date_str == file_stats.first_date
        daily = cache.get_daily_stats(date_str) or DailyStats(date=date_str)

        daily.conversations += 1 if is_first else 0
        daily.messages += message_count
        daily.subagent_sessions += 1 if is_first and is_subagent else 0
        if is_first:
            daily.tool_counts = merge_counts(daily.tool_counts, file_stats.tool_counts)
            daily.hourly_activity = merge_counts(daily.hourly_activity, file_stats.hourly_activity)
            daily.token_usage = daily.token_usage.add(file_stats.token_usage)
            daily.model_counts = merge_counts(daily.model_counts, file_stats.model_counts)
            daily.branch_counts = merge_counts(daily.branch_counts, file_stats.branch_counts)

        cache.upsert_daily_stats(daily)

    return file_stats


def aggregate_daily_stats(daily_stats) -> AggregatedStats:
    """Merge daily rows into one summary."""
    result = AggregatedStats()
    for day in daily_stats:
        result.total_conversations += day.conversations
        result.total_messages += day.messages
        result.subagent_count += day.subagent_sessions
        result.daily_activity[day.date] = day.messages
        result.tool_counts = merge_counts(result.tool_counts, day.tool_counts)
        result.hourly_activity = merge_counts(result.hourly_activity, day.hourly_activity)
        result.token_usage = result.token_usage.add(day.token_usage)
        result.daily_tokens[day.date] = TokenUsage(**day.token_usage.model_dump())
        result.model_counts = merge_counts(result.model_counts, day.model_counts)
        result.branch_counts = merge_counts(result.branch_counts, day.branch_counts)
    return result


def get_conversation_stats_with_cache(
    cache: Optional[CacheDatabase] = None,
    projects_dir: Optional[Path] = None,
    force_refresh: bool = False,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    on_progress: Optional[Callable[[int, int, Optional[str]], None]] = None,
) -> ConversationStats:
    """
    Conversation statistics, processing only new and changed files.

    Args:
        cache: Cache database (default: one at HistoryConfig.CACHE_DIR)
        projects_dir: Root of the project directories
        force_refresh: Rebuild all statistics from scratch
        date_from: First day to include (YYYY-MM-DD)
        date_to: Last day to include (YYYY-MM-DD)
        on_progress: Called as (processed, total, first_date) for each processed file

    Returns:
        ConversationStats over the requested days
    """
    cache = cache or CacheDatabase()
    projects_dir = Path(projects_dir) if projects_dir else HistoryConfig.PROJECTS_DIR

    if force_refresh:
        cache.clear_stats()

    files = find_conversation_files(projects_dir)
    known = {record.file_path for record in cache.get_all_file_indexes()}
    on_disk = {str(f) for f in files}
    for gone in known - on_disk:
        record = cache.get_file_index(gone)
        if record:
            invalidate_file_days(cache, record, "deleted")
        cache.remove_file_index(gone)

    for processed, file_path in enumerate(files, 1):
        file_stats = process_file_for_cache(file_path, cache, projects_dir)
        if on_progress and file_stats:
            on_progress(processed, len(files), file_stats.first_date)

    cache.set_meta("last_full_update", datetime.now(timezone.utc).isoformat())

    aggregated = aggregate_daily_stats(cache.get_daily_stats_in_range(date_from, date_to))
    project_counts = cache.get_project_counts()

    cache.update_cached_totals(
        total_conversations=aggregated.total_conversations,
        total_messages=aggregated.total_messages,
        total_subagents=aggregated.subagent_count,
        project_count=len(project_counts),
    )

    return ConversationStats(
        **aggregated.model_dump(),
        project_counts=project_counts,
        conversation_lengths=cache.get_conversation_lengths(),
    )


def get_quick_stats(cache: Optional[CacheDatabase] = None) -> Optional[CachedTotals]:
    """Totals from the last full statistics run, without scanning files."""
    cache = cache or CacheDatabase()
    return cache.get_cached_totals()
