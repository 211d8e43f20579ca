"""
Tests for the SQLite cache database.
"""

import os

import pytest

from history_cache.database import CacheDatabase
from history_cache.models import DailyStats, SessionMetadataRecord, TokenUsage


@pytest.fixture
def cache(tmp_path):
    db = CacheDatabase(cache_dir=tmp_path / "cache")
    yield db
    db.close()


def record(path: str, **fields) -> SessionMetadataRecord:
    defaults = {"file_path": path, "session_id": os.path.basename(path), "mtime": 1}
    defaults.update(fields)
    return SessionMetadataRecord(**defaults)


def test_schema_and_wal(cache):
    mode = cache.connection.execute("PRAGMA journal_mode").fetchone()[0]
    assert mode.lower() == "wal"
    assert cache.db_path.exists()


def test_upsert_is_last_writer_wins(cache):
    cache.upsert_session_metadata(record("/p/a.jsonl", summary="one", mtime=1))
    cache.upsert_session_metadata(record("/p/a.jsonl", summary="two", mtime=2, is_subagent=True))

    stored = cache.get_session_metadata("/p/a.jsonl")
    assert stored.summary == "two"
    assert stored.mtime == 2
    assert stored.is_subagent is True
    assert cache.get_session_mtimes() == {"/p/a.jsonl": 2}


def test_metadata_by_dir_is_prefix_scoped(cache):
    sep = os.sep
    cache.upsert_session_metadata(record(f"{sep}p{sep}alpha{sep}a.jsonl"))
    cache.upsert_session_metadata(record(f"{sep}p{sep}alpha-two{sep}b.jsonl"))
    cache.upsert_session_metadata(record(f"{sep}p{sep}al%pha{sep}c.jsonl"))

    rows = cache.get_session_metadata_by_dir(f"{sep}p{sep}alpha")
    assert [r.session_id for r in rows] == ["a.jsonl"]
    assert len(cache.get_session_metadata_by_dir(f"{sep}p")) == 3


def test_remove_session_metadata(cache):
    cache.upsert_session_metadata(record("/p/a.jsonl"))
    cache.upsert_session_metadata(record("/p/b.jsonl"))
    assert cache.remove_session_metadata(["/p/a.jsonl"]) == 1
    assert cache.remove_session_metadata([]) == 0
    assert [p for p, _ in cache.get_session_paths()] == ["/p/b.jsonl"]


def test_daily_stats_roundtrip_and_invalidation(cache):
    for date in ("2025-01-09", "2025-01-10", "2025-01-11"):
        cache.upsert_daily_stats(DailyStats(
            date=date, conversations=1, messages=3,
            tool_counts={"Read": 1}, token_usage=TokenUsage(input_tokens=7),
        ))

    day = cache.get_daily_stats("2025-01-10")
    assert day.tool_counts == {"Read": 1}
    assert day.token_usage.input_tokens == 7
    assert cache.get_cached_dates() == ["2025-01-11", "2025-01-10", "2025-01-09"]
    assert [d.date for d in cache.get_daily_stats_in_range("2025-01-10", "2025-01-11")] == \
        ["2025-01-11", "2025-01-10"]

    cache.invalidate_date_range("2025-01-10", "2025-01-11")
    assert cache.get_cached_dates() == ["2025-01-09"]


def test_corrupt_json_column_falls_back(cache):
    cache.upsert_daily_stats(DailyStats(date="2025-01-10"))
    with cache.transaction() as conn:
        conn.execute("UPDATE daily_stats SET tool_counts = 'not json'")
    assert cache.get_daily_stats("2025-01-10").tool_counts == {}


def test_totals_and_reset(cache):
    assert cache.get_cached_totals() is None
    cache.update_cached_totals(total_conversations=5, total_messages=50, total_subagents=1, project_count=2)
    assert cache.get_cached_totals().total_messages == 50

    cache.set_meta("metadata_version", "3")
    cache.upsert_session_metadata(record("/p/a.jsonl"))
    cache.reset()

    assert cache.get_cached_totals() is None
    assert cache.get_meta("metadata_version") is None
    assert cache.get_all_session_metadata() == []
    assert cache.cache_stats()["total_sessions"] == 0


def test_data_survives_reopen(tmp_path):
    with CacheDatabase(cache_dir=tmp_path) as db:
        db.upsert_session_metadata(record("/p/a.jsonl", summary="kept"))
    with CacheDatabase(cache_dir=tmp_path) as db:
        assert db.get_session_metadata("/p/a.jsonl").summary == "kept"
