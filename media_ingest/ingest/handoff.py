from media_ingest.ingest.exceptions import (
    ErrorKind,
    InvalidTransitionError,
    NotFoundError,
    PublishError,
)
from media_ingest.ingest.staging import ChunkStaging
from media_ingest.logging.logger import Log
from media_ingest.queue.base import BasePublisher
from media_ingest.queue.messages import ProcessingMessage
from media_ingest.sessions.base import BaseSessionStore
from media_ingest.sessions.models import UploadSession, UploadStatus, utcnow


def build_processing_message(session: UploadSession, bucket: str) -> ProcessingMessage:
    if session.storage_key is None or session.content_hash is None:
        raise ValueError(f"Upload {session.id} has not been stored yet")
    return ProcessingMessage(
        upload_id=session.id,
        storage_key=session.storage_key,
        storage_bucket=bucket,
        file_type=session.content_type,
        content_hash=session.content_hash,
        owner_id=session.owner_id,
        timestamp=utcnow(),
        metadata=dict(session.metadata),
    )


def needs_handoff(session: UploadSession) -> bool:
    """True for stored sessions whose processing message never went out."""
    return (
        session.status is UploadStatus.COMPLETE
        and session.storage_key is not None
        and session.asset_id is None
    )


class HandoffPublisher:
    """Publishes the processing message for a stored session."""

    def __init__(
        self,
        publisher: BasePublisher,
        session_store: BaseSessionStore,
        staging: ChunkStaging,
        bucket: str,
    ) -> None:
        self._publisher = publisher
        self._session_store = session_store
        self._staging = staging
        self._bucket = bucket

    def handoff(self, session: UploadSession) -> bool:
        """Publish and move the session to handed_off.

        A publish failure keeps the session complete with error kind
        "publish" recorded; returns False in that case.
        """
        message = build_processing_message(session, self._bucket)
        try:
            self._publisher.publish(message)
        except PublishError as exc:
            Log.error(f"Upload {session.id}: handoff publish failed: {exc}")
            self._session_store.update_fields(
                session.id,
                error_kind=ErrorKind.PUBLISH.value,
                error_message=str(exc),
            )
            return False

        try:
            self._session_store.transition(session.id, UploadStatus.HANDED_OFF)
        except InvalidTransitionError:
            # The reconciler and the finalizer can race on the same session.
            if self._session_store.get(session.id).status is not UploadStatus.HANDED_OFF:
                raise
            Log.info(f"Upload {session.id} was already handed off")
            return True
        self._staging.remove(session.id)
        Log.info(
            f"Upload {session.id}: handed off {session.storage_key} "
            f"(hash {session.content_hash})"
        )
        return True


class HandoffReconciler:
    """Re-publishes sessions that were stored but never handed off."""

    def __init__(self, session_store: BaseSessionStore, handoff: HandoffPublisher) -> None:
        self._session_store = session_store
        self._handoff = handoff

    def run_once(self) -> int:
        """Scan tracked sessions once; return how many were handed off."""
        handed_off = 0
        for session in self._session_store.iter_sessions():
            if not needs_handoff(session):
                continue
            Log.info(f"Reconciling upload {session.id}: re-publishing handoff")
            try:
                if self._handoff.handoff(session):
                    handed_off += 1
            except (NotFoundError, InvalidTransitionError) as exc:
                Log.warning(f"Upload {session.id} changed during reconciliation: {exc}")
        if handed_off:
            Log.info(f"Reconciliation handed off {handed_off} upload(s)")
        return handed_off
