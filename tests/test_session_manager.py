"""
Unit tests for the session manager.
"""

import pytest

from conftest import make_har_entry
from har_analyzer import session_manager as session_manager_module
from har_analyzer.exceptions import NoSessionError
from har_analyzer.session_manager import SessionManager


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager(tmp_path, clock):
    return SessionManager(base_dir=tmp_path / "home", ttl_seconds=3600, clock=clock)


@pytest.fixture
def har_path(write_har):
    return write_har([make_har_entry(status=200), make_har_entry(status=404)])


def test_create_session_persists_and_sets_pointer(manager, har_path):
    session = manager.create_session(har_path)

    assert manager.get_session_file(session.source_hash).exists()
    assert manager.get_current_hash() == session.source_hash
    assert manager.load_session().source_hash == session.source_hash
    assert session.stats.entry_count == 2


def test_reload_same_content_is_cache_hit(manager, har_path, clock, monkeypatch):
    first = manager.create_session(har_path)

    def no_parse(*args, **kwargs):
        raise AssertionError("cached session was re-parsed")

    monkeypatch.setattr(session_manager_module, "parse_har_file", no_parse)
    clock.now += 60
    second = manager.create_session(har_path)

    assert second.source_hash == first.source_hash
    assert second.created_at == first.created_at
    assert second.last_accessed_at == first.last_accessed_at + 60
    assert len(manager.list_sessions()) == 1


def test_same_content_different_path_reuses_session(manager, har_path, tmp_path):
    first = manager.create_session(har_path)
    copy_path = tmp_path / "copy.har"
    copy_path.write_bytes(har_path.read_bytes())

    second = manager.create_session(copy_path)
    assert second.source_hash == first.source_hash
    assert second.source_file == str(copy_path.resolve())


def test_require_session_without_load(manager):
    with pytest.raises(NoSessionError, match="No session loaded"):
        manager.require_session()


def test_require_session_by_prefix(manager, har_path):
    session = manager.create_session(har_path)
    assert manager.require_session(session.source_hash[:6]).source_hash == session.source_hash

    with pytest.raises(NoSessionError):
        manager.require_session("ffffffffffffffff")


def test_list_sessions_newest_first(manager, write_har, clock):
    old = manager.create_session(write_har([make_har_entry(status=200)], name="old.har"))
    clock.now += 10
    new = manager.create_session(write_har([make_har_entry(status=500)], name="new.har"))

    infos = manager.list_sessions()
    assert [i.source_hash for i in infos] == [new.source_hash, old.source_hash]
    assert infos[0].is_current and not infos[1].is_current


def test_clean_expired_sessions(manager, write_har, clock):
    old = manager.create_session(write_har([make_har_entry(status=200)], name="old.har"))
    manager.ref_store(old).format_value("x" * 500, "e0.rs.body")
    ref_path = manager.ref_store(old).store_path
    assert ref_path.exists()

    clock.now += 3000
    fresh = manager.create_session(write_har([make_har_entry(status=500)], name="fresh.har"))
    manager._set_current_hash(old.source_hash)

    clock.now += 1000
    assert manager.clean_expired_sessions() == 1

    assert not manager.get_session_file(old.source_hash).exists()
    assert not ref_path.exists()
    assert manager.get_session_file(fresh.source_hash).exists()
    assert manager.get_current_hash() is None


def test_expiry_counts_from_creation_not_access(manager, har_path, clock):
    manager.create_session(har_path)
    clock.now += 3000
    manager.create_session(har_path)
    clock.now += 1000
    assert manager.clean_expired_sessions() == 1


def test_clean_treats_corrupt_session_as_expired(manager, har_path):
    manager.create_session(har_path)
    broken = manager.sessions_dir / "deadbeefdeadbeef.json"
    broken.write_text("{not json", encoding="utf-8")

    assert manager.clean_expired_sessions() == 1
    assert not broken.exists()
    assert len(manager.list_sessions()) == 1


def test_corrupt_session_is_reparsed(manager, har_path):
    session = manager.create_session(har_path)
    manager.get_session_file(session.source_hash).write_text("{}", encoding="utf-8")

    again = manager.create_session(har_path)
    assert again.stats.entry_count == 2
