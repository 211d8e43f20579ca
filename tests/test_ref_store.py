"""
Unit tests for the session-scoped reference store.
"""

import threading
import time

import pytest

from har_analyzer import ref_store as ref_store_module
from har_analyzer.exceptions import StorageIOError
from har_analyzer.ref_store import RefStoreManager, make_preview

BIG_A = "A" * 150 + "\n" + "a" * 150
BIG_B = "B" * 400


@pytest.fixture
def refs(tmp_path):
    return RefStoreManager("abc123", base_dir=tmp_path)


def test_short_values_pass_through(refs):
    assert refs.format_value("short", "e0.rs.body") == "short"
    assert refs.list_refs() == []
    assert not refs.store_path.exists()


def test_first_render_is_full_then_preview(refs):
    first = refs.format_value(BIG_A, "e1.rs.body")
    assert first.startswith(BIG_A)
    assert "[ref:e1.rs.body]" in first

    second = refs.format_value(BIG_A, "e1.rs.body")
    assert BIG_A not in second
    assert second.startswith(make_preview(BIG_A))
    assert "[ref:e1.rs.body]" in second
    assert "expand e1.rs.body" in second


def test_preview_escapes_newlines():
    preview = make_preview("line1\nline2", max_chars=80)
    assert preview == "line1\\nline2"
    assert len(make_preview("x" * 500)) == 80


def test_first_write_wins(refs):
    refs.format_value(BIG_A, "e2.rs.body")
    second = refs.format_value(BIG_B, "e2.rs.body")

    assert second.startswith(make_preview(BIG_A))
    assert refs.expand("e2.rs.body") == BIG_A


def test_first_write_wins_across_instances(tmp_path):
    RefStoreManager("abc123", base_dir=tmp_path).format_value(BIG_A, "e2.rs.body")
    other = RefStoreManager("abc123", base_dir=tmp_path)
    assert other.expand("e2.rs.body") == BIG_A
    assert other.format_value(BIG_B, "e2.rs.body").startswith(make_preview(BIG_A))


def test_full_bypass_creates_nothing(refs):
    assert refs.format_value(BIG_A, "e3.rs.body", full=True) == BIG_A
    assert refs.expand("e3.rs.body") is None

    # The next regular render is still a miss: full value plus marker
    rendered = refs.format_value(BIG_A, "e3.rs.body")
    assert rendered.startswith(BIG_A)


def test_full_bypass_ignores_existing_ref(refs):
    refs.format_value(BIG_A, "e4.rs.body")
    assert refs.format_value(BIG_B, "e4.rs.body", full=True) == BIG_B


def test_expand_unknown_is_none(refs):
    assert refs.expand("e99.rs.body") is None


def test_refs_are_scoped_per_session(tmp_path):
    RefStoreManager("one", base_dir=tmp_path).format_value(BIG_A, "e0.rs.body")
    assert RefStoreManager("two", base_dir=tmp_path).expand("e0.rs.body") is None


def test_storage_failure_degrades_to_full_value(refs, monkeypatch):
    def fail(*args, **kwargs):
        raise StorageIOError("disk full")

    monkeypatch.setattr(ref_store_module, "atomic_write_text", fail)
    assert refs.format_value(BIG_A, "e5.rs.body") == BIG_A
    assert refs.expand("e5.rs.body") is None


def test_clear_removes_store(refs):
    refs.format_value(BIG_A, "e6.rs.body")
    assert refs.clear() is True
    assert refs.expand("e6.rs.body") is None
    assert refs.clear() is False
    assert not refs.lock_path.exists()


def test_overlapping_writers_keep_both_refs(tmp_path, monkeypatch):
    first = RefStoreManager("abc123", base_dir=tmp_path)
    second = RefStoreManager("abc123", base_dir=tmp_path)
    first.list_refs()

    # The second writer starts while the first holds the store between read and write
    real_read = first._read_store
    worker = threading.Thread(target=second.format_value, args=(BIG_B, "e8.rs.body"))

    def read_then_pause():
        store = real_read()
        worker.start()
        time.sleep(0.3)
        return store

    monkeypatch.setattr(first, "_read_store", read_then_pause)
    first.format_value(BIG_A, "e7.rs.body")
    worker.join(timeout=10)

    fresh = RefStoreManager("abc123", base_dir=tmp_path)
    assert fresh.expand("e7.rs.body") == BIG_A
    assert fresh.expand("e8.rs.body") == BIG_B


def test_lock_timeout_degrades_to_full_value(refs, monkeypatch):
    def locked(*args, **kwargs):
        raise ref_store_module.Timeout(str(refs.lock_path))

    monkeypatch.setattr(ref_store_module.FileLock, "acquire", locked)
    assert refs.format_value(BIG_A, "e9.rs.body") == BIG_A
    assert refs.expand("e9.rs.body") is None
