import uuid
from datetime import timedelta

import pytest

from media_ingest.ingest.exceptions import InvalidTransitionError, NotFoundError
from media_ingest.sessions.models import UploadSession, UploadStatus, utcnow
from media_ingest.sessions.redis_store import RedisSessionStore


def _make_session() -> UploadSession:
    now = utcnow()
    return UploadSession(
        id=str(uuid.uuid4()),
        filename="clip.mp4",
        size=2500,
        content_type="video/mp4",
        owner_id="owner-1",
        chunk_size=1000,
        total_chunks=3,
        status=UploadStatus.INITIALIZED,
        created_at=now,
        expires_at=now + timedelta(minutes=5),
        metadata={"title": "Clip"},
    )


@pytest.mark.integration
class TestRedisSessionStore:
    def test_round_trip(self, redis_store: RedisSessionStore) -> None:
        session = _make_session()
        redis_store.create(session)

        loaded = redis_store.get(session.id)

        assert loaded.filename == "clip.mp4"
        assert loaded.metadata == {"title": "Clip"}
        assert loaded.status is UploadStatus.INITIALIZED
        assert redis_store.client.ttl(f"upload:{session.id}") > 0

    def test_chunk_claims_are_idempotent(self, redis_store: RedisSessionStore) -> None:
        session = _make_session()
        redis_store.create(session)

        assert redis_store.claim_chunk(session, 1) is True
        assert redis_store.claim_chunk(session, 1) is False
        assert redis_store.increment_received(session.id) == 1
        assert redis_store.received_indices(session.id) == {1}

    def test_transitions_are_forward_only(self, redis_store: RedisSessionStore) -> None:
        session = _make_session()
        redis_store.create(session)

        moved = redis_store.transition(session.id, UploadStatus.UPLOADING)

        assert moved.status is UploadStatus.UPLOADING
        with pytest.raises(InvalidTransitionError):
            redis_store.transition(session.id, UploadStatus.INITIALIZED)

    def test_unknown_session(self, redis_store: RedisSessionStore) -> None:
        with pytest.raises(NotFoundError):
            redis_store.increment_received(str(uuid.uuid4()))
        with pytest.raises(NotFoundError):
            redis_store.update_fields(str(uuid.uuid4()), error_kind="io")
