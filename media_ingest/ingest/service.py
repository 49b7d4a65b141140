import threading
import uuid
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import timedelta
from pathlib import Path

from media_ingest.config.settings import Settings
from media_ingest.database.repositories.base import BaseAssetRepository
from media_ingest.ingest.assembler import ChunkAssembler
from media_ingest.ingest.exceptions import (
    InvalidTransitionError,
    ValidationError,
)
from media_ingest.ingest.finalizer import UploadFinalizer, build_finalizer
from media_ingest.ingest.handoff import HandoffPublisher, needs_handoff
from media_ingest.ingest.integrity import DedupEngine, IntegrityChecker, is_hex_digest
from media_ingest.ingest.metadata import validate_metadata
from media_ingest.ingest.models import (
    ChunkReceipt,
    FinalizeOutcome,
    InitRequest,
    InitResult,
    StatusSnapshot,
)
from media_ingest.ingest.staging import ChunkStaging
from media_ingest.logging.logger import Log
from media_ingest.queue.base import BasePublisher
from media_ingest.sessions.base import BaseSessionStore
from media_ingest.sessions.models import (
    UploadSession,
    UploadStatus,
    total_chunks_for,
    utcnow,
)
from media_ingest.storage.base import BaseObjectStore

DEFAULT_OWNER = "anonymous"


class UploadService:
    """Ingestion entry point: session init, chunk receipt and status reads.

    Assembly runs on a dedicated executor so one session's finalize never
    blocks chunk receipt for another.
    """

    MAX_TRACKED_ASSEMBLIES = 1024

    def __init__(
        self,
        settings: Settings,
        session_store: BaseSessionStore,
        staging: ChunkStaging,
        finalizer: UploadFinalizer,
        handoff: HandoffPublisher,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self._settings = settings
        self._session_store = session_store
        self._staging = staging
        self._finalizer = finalizer
        self._handoff = handoff
        self._executor = executor or ThreadPoolExecutor(
            max_workers=settings.assembly_workers,
            thread_name_prefix="assembly",
        )
        self._assemblies: OrderedDict[str, Future[FinalizeOutcome]] = OrderedDict()
        self._assemblies_lock = threading.Lock()

    def init_upload(self, request: InitRequest) -> InitResult:
        """Validate and create a session.

        Raises:
            ValidationError: if the request violates upload policy. No
                session is created in that case.
        """
        self._validate_init(request)
        metadata = validate_metadata(request.metadata)
        chunk_size = self._settings.chunk_size_bytes
        now = utcnow()
        session = UploadSession(
            id=str(uuid.uuid4()),
            filename=request.filename.strip(),
            size=request.size,
            content_type=request.content_type,
            owner_id=request.owner_id or DEFAULT_OWNER,
            chunk_size=chunk_size,
            total_chunks=total_chunks_for(request.size, chunk_size),
            status=UploadStatus.INITIALIZED,
            created_at=now,
            expires_at=now + timedelta(seconds=self._settings.session_ttl_seconds),
            metadata=metadata,
            expected_hash=request.expected_hash.lower() if request.expected_hash else None,
        )
        self._session_store.create(session)
        Log.info(
            f"Initialized upload {session.id}: {session.filename} "
            f"({session.size} bytes, {session.total_chunks} chunks)"
        )
        return InitResult(
            upload_id=session.id,
            chunk_size=session.chunk_size,
            total_chunks=session.total_chunks,
            expires_at=session.expires_at,
        )

    def receive_chunk(
        self,
        upload_id: str,
        index: int,
        data: bytes,
        declared_total: int | None = None,
    ) -> ChunkReceipt:
        """Stage one chunk. Re-sending a received index changes nothing.

        Raises:
            NotFoundError: if the session is absent or expired.
            ValidationError: on a bad index, total or chunk length.
        """
        session = self._session_store.get(upload_id)
        if declared_total is not None and declared_total != session.total_chunks:
            raise ValidationError(
                f"totalChunks {declared_total} does not match session total "
                f"{session.total_chunks}"
            )
        if isinstance(index, bool) or not isinstance(index, int):
            raise ValidationError("chunkNumber must be an integer")
        if not 0 <= index < session.total_chunks:
            raise ValidationError(
                f"chunkNumber {index} out of range 0..{session.total_chunks - 1}"
            )
        if len(data) > session.chunk_size:
            raise ValidationError(
                f"Chunk {index} is {len(data)} bytes, chunk size is {session.chunk_size}"
            )

        if not self._session_store.claim_chunk(session, index):
            current = self._session_store.get(upload_id)
            Log.debug(f"Upload {upload_id}: chunk {index} already received")
            return ChunkReceipt(
                upload_id=upload_id,
                chunk_number=index,
                received=current.received_chunks,
                total=current.total_chunks,
                duplicate=True,
            )

        try:
            self._staging.write_chunk(upload_id, index, data)
        except OSError:
            self._session_store.release_chunk(upload_id, index)
            raise
        received = self._session_store.increment_received(upload_id)
        Log.debug(f"Upload {upload_id}: chunk {index} staged ({received}/{session.total_chunks})")

        if session.status is UploadStatus.INITIALIZED:
            self._ensure_uploading(upload_id)
        if received == session.total_chunks:
            self._ensure_uploading(upload_id)
            self._session_store.transition(upload_id, UploadStatus.ASSEMBLING)
            self._submit_assembly(upload_id)

        return ChunkReceipt(
            upload_id=upload_id,
            chunk_number=index,
            received=received,
            total=session.total_chunks,
        )

    def get_status(self, upload_id: str) -> StatusSnapshot:
        """Raises NotFoundError if the session is absent or expired."""
        session = self._session_store.get(upload_id)
        if session.status in (UploadStatus.INITIALIZED, UploadStatus.UPLOADING):
            received = self._session_store.received_indices(upload_id)
            missing = [i for i in range(session.total_chunks) if i not in received]
        else:
            missing = []
        return StatusSnapshot(session=session, missing_chunks=missing)

    def republish(self, upload_id: str) -> bool:
        """Re-send the handoff for a stored session that was never handed off."""
        session = self._session_store.get(upload_id)
        if not needs_handoff(session):
            Log.info(f"Upload {upload_id} does not need a handoff ({session.status.value})")
            return False
        return self._handoff.handoff(session)

    def wait_for_assembly(
        self, upload_id: str, timeout: float | None = None
    ) -> FinalizeOutcome | None:
        """Block until the submitted assembly for upload_id finishes.

        Returns None if no assembly was submitted or the wait timed out.
        """
        with self._assemblies_lock:
            future = self._assemblies.get(upload_id)
        if future is None:
            return None
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            return None

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def _ensure_uploading(self, upload_id: str) -> None:
        try:
            self._session_store.transition(upload_id, UploadStatus.UPLOADING)
        except InvalidTransitionError:
            # another chunk already moved it
            pass

    def _submit_assembly(self, upload_id: str) -> None:
        future = self._executor.submit(self._finalizer.finalize, upload_id)
        future.add_done_callback(self._log_outcome)
        with self._assemblies_lock:
            self._assemblies[upload_id] = future
            while len(self._assemblies) > self.MAX_TRACKED_ASSEMBLIES:
                self._assemblies.popitem(last=False)

    @staticmethod
    def _log_outcome(future: Future[FinalizeOutcome]) -> None:
        exc = future.exception()
        if exc is not None:
            Log.error(f"Assembly task crashed: {exc}")
            return
        outcome = future.result()
        Log.info(
            f"Upload {outcome.upload_id} finalized: {outcome.status.value}"
            + (f" ({outcome.error_kind})" if outcome.error_kind else "")
        )

    def _validate_init(self, request: InitRequest) -> None:
        if not isinstance(request.filename, str) or not request.filename.strip():
            raise ValidationError("filename is required")
        if isinstance(request.size, bool) or not isinstance(request.size, int):
            raise ValidationError("fileSize must be an integer")
        if request.size <= 0:
            raise ValidationError("fileSize must be greater than zero")
        if request.size > self._settings.max_upload_size_bytes:
            raise ValidationError(
                f"fileSize {request.size} exceeds maximum "
                f"{self._settings.max_upload_size_bytes}"
            )
        if not request.content_type:
            raise ValidationError("fileType is required")
        if request.content_type not in self._settings.allowed_content_types:
            raise ValidationError(
                f"fileType '{request.content_type}' is not allowed. "
                f"Allowed: {self._settings.allowed_content_types}"
            )
        if request.expected_hash is not None and not is_hex_digest(
            request.expected_hash, self._settings.hash_algorithm
        ):
            raise ValidationError(
                f"expectedHash must be a {self._settings.hash_algorithm} hex digest"
            )


def build_upload_service(
    settings: Settings,
    session_store: BaseSessionStore,
    object_store: BaseObjectStore,
    publisher: BasePublisher,
    asset_repo: BaseAssetRepository,
) -> UploadService:
    """Wire the ingestion side from already-connected resources."""
    staging = ChunkStaging(Path(settings.staging_root))
    assembler = ChunkAssembler(
        staging,
        read_block_bytes=settings.assembly_read_block_bytes,
        high_water_mark_bytes=settings.assembly_high_water_mark_bytes,
    )
    checker = IntegrityChecker(settings.hash_algorithm)
    dedup = DedupEngine(asset_repo, settings.dedup_enabled)
    handoff = HandoffPublisher(publisher, session_store, staging, object_store.bucket)
    finalizer = build_finalizer(
        session_store, staging, assembler, checker, dedup, object_store, handoff
    )
    return UploadService(settings, session_store, staging, finalizer, handoff)
