import pytest

from chunked_upload.core.session import SessionStatus, UploadSession
from chunked_upload.services.session_store import UploadSessionStore


def _session(key="k1", offset=100, chunk_index=0, **kwargs):
    return UploadSession(key=key, offset=offset, chunk_index=chunk_index, first_chunk_path=f"temp/a/ab/{key}.0", **kwargs)


def test_get_missing_returns_none(session_store):
    assert session_store.get("nope") is None


def test_insert_and_get(session_store):
    session_store.insert(_session(file_name="movie.mp4", declared_size=300))

    loaded = session_store.get("k1")
    assert loaded.offset == 100
    assert loaded.chunk_index == 0
    assert loaded.first_chunk_path == "temp/a/ab/k1.0"
    assert loaded.status == SessionStatus.ACTIVE
    assert loaded.file_name == "movie.mp4"
    assert loaded.declared_size == 300
    assert loaded.created_at > 0
    assert loaded.updated_at > 0


def test_state_survives_a_new_store_instance(session_factory, session_store):
    session_store.insert(_session())

    fresh = UploadSessionStore(session_factory)
    assert fresh.get("k1").to_dict() == session_store.get("k1").to_dict()


def test_upsert_creates_and_updates(session_store):
    created = session_store.upsert("k2", offset=10, chunk_index=0, first_chunk_path="temp/x", status=SessionStatus.ACTIVE)
    assert created.offset == 10

    updated = session_store.upsert("k2", offset=30, chunk_index=1)
    assert updated.offset == 30
    assert updated.chunk_index == 1
    assert session_store.get("k2").offset == 30


def test_upsert_rejects_unknown_fields(session_store):
    with pytest.raises(ValueError):
        session_store.upsert("k1", bogus=1)


def test_advance_requires_matching_offset(session_store):
    session_store.insert(_session())

    assert session_store.advance("k1", expected_offset=100, offset=150, chunk_index=1)
    assert not session_store.advance("k1", expected_offset=100, offset=200, chunk_index=2)

    loaded = session_store.get("k1")
    assert (loaded.offset, loaded.chunk_index) == (150, 1)


def test_advance_requires_active_session(session_store):
    session_store.insert(_session(status=SessionStatus.FAILED))

    assert not session_store.advance("k1", expected_offset=100, offset=150, chunk_index=1)


def test_transition_is_conditional(session_store):
    session_store.insert(_session())

    assert session_store.transition("k1", (SessionStatus.ACTIVE,), SessionStatus.FINALIZING)
    assert not session_store.transition("k1", (SessionStatus.ACTIVE,), SessionStatus.FINALIZING)
    assert session_store.transition(
        "k1", (SessionStatus.FINALIZING,), SessionStatus.COMPLETE, final_location="/final/x"
    )

    loaded = session_store.get("k1")
    assert loaded.status == SessionStatus.COMPLETE
    assert loaded.final_location == "/final/x"


def test_delete_with_status_guard(session_store):
    session_store.insert(_session(status=SessionStatus.FINALIZING))

    assert not session_store.delete("k1", statuses=(SessionStatus.ACTIVE, SessionStatus.FAILED))
    assert session_store.get("k1") is not None
    assert session_store.delete("k1")
    assert session_store.get("k1") is None


def test_delete_with_updated_before(session_store):
    session_store.insert(_session(created_at=1000.0, updated_at=1000.0))

    assert not session_store.delete("k1", updated_before=500.0)
    assert session_store.delete("k1", updated_before=1500.0)


def test_list_stale_filters_by_age_and_status(session_store):
    session_store.insert(_session("old", created_at=100.0, updated_at=100.0))
    session_store.insert(_session("old-final", created_at=100.0, updated_at=100.0, status=SessionStatus.FINALIZING))
    session_store.insert(_session("new", created_at=900.0, updated_at=900.0))

    stale = session_store.list_stale(500.0, (SessionStatus.ACTIVE, SessionStatus.FAILED))
    assert [s.key for s in stale] == ["old"]
