import threading
from collections.abc import Iterator
from dataclasses import replace

from media_ingest.ingest.exceptions import NotFoundError
from media_ingest.sessions.base import BaseSessionStore
from media_ingest.sessions.models import UploadSession, UploadStatus, utcnow


class InMemorySessionStore(BaseSessionStore):
    """Process-local session store for single-node deployments and tests.

    A single lock guards the maps; every operation is short and does no I/O.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, UploadSession] = {}
        self._chunks: dict[str, set[int]] = {}

    def create(self, session: UploadSession) -> None:
        with self._lock:
            self._sessions[session.id] = replace(session, metadata=dict(session.metadata))
            self._chunks[session.id] = set()

    def get(self, upload_id: str) -> UploadSession:
        with self._lock:
            session = self._live(upload_id)
            return replace(session, metadata=dict(session.metadata))

    def claim_chunk(self, session: UploadSession, index: int) -> bool:
        with self._lock:
            marks = self._chunks.setdefault(session.id, set())
            if index in marks:
                return False
            marks.add(index)
            return True

    def release_chunk(self, upload_id: str, index: int) -> None:
        with self._lock:
            self._chunks.get(upload_id, set()).discard(index)

    def received_indices(self, upload_id: str) -> set[int]:
        with self._lock:
            return set(self._chunks.get(upload_id, set()))

    def increment_received(self, upload_id: str) -> int:
        with self._lock:
            session = self._live(upload_id)
            session.received_chunks += 1
            session.last_chunk_at = utcnow()
            return session.received_chunks

    def update_fields(self, upload_id: str, **fields: str | None) -> None:
        with self._lock:
            session = self._live(upload_id)
            for name, value in fields.items():
                if value is not None:
                    setattr(session, name, value)

    def delete(self, upload_id: str) -> None:
        with self._lock:
            self._sessions.pop(upload_id, None)
            self._chunks.pop(upload_id, None)

    def iter_sessions(self) -> Iterator[UploadSession]:
        with self._lock:
            now = utcnow()
            live = [
                replace(s, metadata=dict(s.metadata))
                for s in self._sessions.values()
                if not s.is_expired(now)
            ]
        yield from live

    def _compare_and_set_status(
        self,
        upload_id: str,
        expected: UploadStatus,
        target: UploadStatus,
        fields: dict[str, str],
    ) -> bool:
        with self._lock:
            session = self._live(upload_id)
            if session.status is not expected:
                return False
            session.status = target
            for name, value in fields.items():
                setattr(session, name, value)
            return True

    def _live(self, upload_id: str) -> UploadSession:
        session = self._sessions.get(upload_id)
        if session is None:
            raise NotFoundError(f"Upload {upload_id} not found")
        if session.is_expired():
            self._sessions.pop(upload_id, None)
            self._chunks.pop(upload_id, None)
            raise NotFoundError(f"Upload {upload_id} not found")
        return session
