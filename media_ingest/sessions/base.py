from abc import ABC, abstractmethod
from collections.abc import Iterator

from media_ingest.ingest.exceptions import InvalidTransitionError
from media_ingest.logging.logger import Log
from media_ingest.sessions.models import UploadSession, UploadStatus, can_transition


class BaseSessionStore(ABC):
    """Contract for upload session stores.

    Sessions expire passively: once expires_at has passed, every read
    behaves as if the session never existed.
    """

    MAX_TRANSITION_ATTEMPTS = 5

    def connect(self) -> None:
        """Open the underlying client. No-op for in-process stores."""

    def close(self) -> None:
        """Release the underlying client. No-op for in-process stores."""

    @abstractmethod
    def create(self, session: UploadSession) -> None:
        """Persist a new session with a TTL ending at session.expires_at."""

    @abstractmethod
    def get(self, upload_id: str) -> UploadSession:
        """Return the session.

        Raises:
            NotFoundError: if the session is absent or expired.
        """

    @abstractmethod
    def claim_chunk(self, session: UploadSession, index: int) -> bool:
        """Atomically mark a chunk index as received.

        Returns True only for the single caller that set the mark.
        """

    @abstractmethod
    def release_chunk(self, upload_id: str, index: int) -> None:
        """Drop a chunk mark so the index can be uploaded again."""

    @abstractmethod
    def received_indices(self, upload_id: str) -> set[int]:
        """Return every marked chunk index."""

    @abstractmethod
    def increment_received(self, upload_id: str) -> int:
        """Atomically increment the received counter and return the new value.

        Raises:
            NotFoundError: if the session expired in the meantime.
        """

    @abstractmethod
    def update_fields(self, upload_id: str, **fields: str | None) -> None:
        """Set non-status fields on an existing session.

        Raises:
            NotFoundError: if the session is absent or expired.
        """

    @abstractmethod
    def delete(self, upload_id: str) -> None:
        """Remove the session and its chunk marks."""

    @abstractmethod
    def iter_sessions(self) -> Iterator[UploadSession]:
        """Yield every live session."""

    @abstractmethod
    def _compare_and_set_status(
        self,
        upload_id: str,
        expected: UploadStatus,
        target: UploadStatus,
        fields: dict[str, str],
    ) -> bool:
        """Write target status and fields only if the status is still expected.

        Raises:
            NotFoundError: if the session is absent or expired.
        """

    def transition(
        self,
        upload_id: str,
        target: UploadStatus,
        **fields: str | None,
    ) -> UploadSession:
        """Move a session to target status, enforcing forward-only transitions.

        Raises:
            InvalidTransitionError: if the move is not allowed from the
                current status or the status kept changing underneath us.
            NotFoundError: if the session is absent or expired.
        """
        values = {k: str(v) for k, v in fields.items() if v is not None}
        for _ in range(self.MAX_TRANSITION_ATTEMPTS):
            session = self.get(upload_id)
            if not can_transition(session.status, target):
                raise InvalidTransitionError(
                    f"Upload {upload_id} cannot move from {session.status.value} "
                    f"to {target.value}"
                )
            if self._compare_and_set_status(upload_id, session.status, target, values):
                Log.info(
                    f"Upload {upload_id}: {session.status.value} -> {target.value}"
                )
                return self.get(upload_id)
        raise InvalidTransitionError(
            f"Upload {upload_id} status changed concurrently while moving to {target.value}"
        )
