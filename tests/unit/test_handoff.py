from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from media_ingest.ingest.exceptions import InvalidTransitionError, PublishError
from media_ingest.ingest.handoff import (
    HandoffPublisher,
    HandoffReconciler,
    build_processing_message,
    needs_handoff,
)
from media_ingest.ingest.staging import ChunkStaging
from media_ingest.queue.memory_adapter import InMemoryBroker
from media_ingest.sessions.memory_store import InMemorySessionStore
from media_ingest.sessions.models import UploadSession, UploadStatus, utcnow

HASH = "ef" * 32


def _make_session(upload_id: str, status: UploadStatus, **overrides: object) -> UploadSession:
    now = utcnow()
    values: dict[str, object] = {
        "id": upload_id,
        "filename": "clip.mp4",
        "size": 10,
        "content_type": "video/mp4",
        "owner_id": "owner-1",
        "chunk_size": 10,
        "total_chunks": 1,
        "status": status,
        "created_at": now,
        "expires_at": now + timedelta(hours=1),
        "content_hash": HASH,
        "storage_key": f"uploads/owner-1/ef/{HASH}/clip.mp4",
        "metadata": {"title": "Clip"},
    }
    values.update(overrides)
    return UploadSession(**values)  # type: ignore[arg-type]


class TestBuildProcessingMessage:
    def test_carries_session_fields(self) -> None:
        message = build_processing_message(_make_session("u-1", UploadStatus.COMPLETE), "media")

        assert message.upload_id == "u-1"
        assert message.storage_bucket == "media"
        assert message.content_hash == HASH
        assert message.metadata == {"title": "Clip"}

    def test_unstored_session_raises(self) -> None:
        session = _make_session("u-1", UploadStatus.HASHING, storage_key=None)

        with pytest.raises(ValueError, match="not been stored"):
            build_processing_message(session, "media")


class TestNeedsHandoff:
    def test_complete_stored_session(self) -> None:
        assert needs_handoff(_make_session("u-1", UploadStatus.COMPLETE))

    def test_duplicate_linked_session(self) -> None:
        assert not needs_handoff(_make_session("u-1", UploadStatus.COMPLETE, asset_id="a-1"))

    def test_already_handed_off(self) -> None:
        assert not needs_handoff(_make_session("u-1", UploadStatus.HANDED_OFF))


class TestHandoffReconciler:
    def test_republishes_only_pending_sessions(self, tmp_path: Path) -> None:
        store = InMemorySessionStore()
        store.create(_make_session("pending", UploadStatus.COMPLETE, error_kind="publish"))
        store.create(_make_session("linked", UploadStatus.COMPLETE, asset_id="a-1"))
        store.create(_make_session("done", UploadStatus.HANDED_OFF))
        store.create(_make_session("busy", UploadStatus.HASHING, storage_key=None))
        broker = InMemoryBroker()
        handoff = HandoffPublisher(broker, store, ChunkStaging(tmp_path), "media")

        count = HandoffReconciler(store, handoff).run_once()

        assert count == 1
        assert [m.upload_id for m in broker.published] == ["pending"]
        assert store.get("pending").status is UploadStatus.HANDED_OFF

    def test_publish_failure_leaves_session_pending(self, tmp_path: Path) -> None:
        store = InMemorySessionStore()
        store.create(_make_session("pending", UploadStatus.COMPLETE))
        publisher = MagicMock()
        publisher.publish.side_effect = PublishError("down")
        handoff = HandoffPublisher(publisher, store, ChunkStaging(tmp_path), "media")

        count = HandoffReconciler(store, handoff).run_once()

        assert count == 0
        session = store.get("pending")
        assert session.status is UploadStatus.COMPLETE
        assert session.error_kind == "publish"
        assert session.error_message == "down"


class TestHandoffPublisher:
    def test_concurrent_handoff_counts_as_handed_off(self, tmp_path: Path) -> None:
        store = InMemorySessionStore()
        session = _make_session("u-1", UploadStatus.COMPLETE)
        store.create(session)
        publisher = MagicMock()
        publisher.publish.side_effect = lambda _message: store.transition(
            "u-1", UploadStatus.HANDED_OFF
        )
        handoff = HandoffPublisher(publisher, store, ChunkStaging(tmp_path), "media")

        assert handoff.handoff(session) is True
        assert store.get("u-1").status is UploadStatus.HANDED_OFF
        assert store.get("u-1").error_kind is None

    def test_other_transition_errors_propagate(self, tmp_path: Path) -> None:
        store = InMemorySessionStore()
        session = _make_session("u-1", UploadStatus.COMPLETE)
        store.create(session)
        publisher = MagicMock()
        publisher.publish.side_effect = lambda _message: store.transition(
            "u-1", UploadStatus.FAILED
        )
        handoff = HandoffPublisher(publisher, store, ChunkStaging(tmp_path), "media")

        with pytest.raises(InvalidTransitionError):
            handoff.handoff(session)
