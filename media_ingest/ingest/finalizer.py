from abc import ABC, abstractmethod

from media_ingest.ingest.assembler import ChunkAssembler
from media_ingest.ingest.exceptions import (
    ErrorKind,
    IngestError,
    InvalidTransitionError,
    NotFoundError,
)
from media_ingest.ingest.handoff import HandoffPublisher
from media_ingest.ingest.integrity import DedupEngine, IntegrityChecker
from media_ingest.ingest.models import FinalizeContext, FinalizeOutcome
from media_ingest.ingest.staging import ChunkStaging
from media_ingest.logging.logger import Log
from media_ingest.sessions.base import BaseSessionStore
from media_ingest.sessions.models import UploadSession, UploadStatus
from media_ingest.storage.base import BaseObjectStore
from media_ingest.storage.keys import source_key


class FinalizeStep(ABC):
    @abstractmethod
    def run(self, context: FinalizeContext) -> FinalizeContext:
        raise NotImplementedError


def _require_session(context: FinalizeContext) -> UploadSession:
    if context.session is None:
        raise ValueError("FinalizeContext.session must be set before this step")
    return context.session


class AssembleStep(FinalizeStep):
    def __init__(self, session_store: BaseSessionStore, assembler: ChunkAssembler) -> None:
        self._session_store = session_store
        self._assembler = assembler

    def run(self, context: FinalizeContext) -> FinalizeContext:
        session = self._session_store.get(context.upload_id)
        context.session = session
        result = self._assembler.assemble(session.id, session.total_chunks)
        context.assembled_path = result.path
        context.session = self._session_store.transition(session.id, UploadStatus.VALIDATING)
        return context


class ValidateSizeStep(FinalizeStep):
    def __init__(self, session_store: BaseSessionStore, checker: IntegrityChecker) -> None:
        self._session_store = session_store
        self._checker = checker

    def run(self, context: FinalizeContext) -> FinalizeContext:
        session = _require_session(context)
        if context.assembled_path is None:
            raise ValueError("FinalizeContext.assembled_path must be set before validation")
        self._checker.verify_size(context.assembled_path, session.size)
        context.session = self._session_store.transition(session.id, UploadStatus.HASHING)
        return context


class HashStep(FinalizeStep):
    def __init__(self, session_store: BaseSessionStore, checker: IntegrityChecker) -> None:
        self._session_store = session_store
        self._checker = checker

    def run(self, context: FinalizeContext) -> FinalizeContext:
        session = _require_session(context)
        if context.assembled_path is None:
            raise ValueError("FinalizeContext.assembled_path must be set before hashing")
        content_hash = self._checker.compute_hash(context.assembled_path)
        context.content_hash = content_hash
        self._session_store.update_fields(session.id, content_hash=content_hash)
        Log.info(f"Upload {session.id}: {self._checker.algorithm} {content_hash}")
        self._checker.verify_expected(content_hash, session.expected_hash)
        return context


class DedupStep(FinalizeStep):
    def __init__(
        self,
        session_store: BaseSessionStore,
        dedup: DedupEngine,
        staging: ChunkStaging,
    ) -> None:
        self._session_store = session_store
        self._dedup = dedup
        self._staging = staging

    def run(self, context: FinalizeContext) -> FinalizeContext:
        session = _require_session(context)
        if context.content_hash is None:
            raise ValueError("FinalizeContext.content_hash must be set before dedup")

        existing = self._dedup.find_duplicate(context.content_hash)
        if existing is None:
            context.session = self._session_store.transition(
                session.id, UploadStatus.UPLOADING_TO_STORE
            )
            return context

        self._session_store.transition(
            session.id, UploadStatus.DUPLICATE, asset_id=existing.id
        )
        context.session = self._session_store.transition(session.id, UploadStatus.COMPLETE)
        context.asset_id = existing.id
        context.storage_key = existing.storage_key
        context.finished = True
        self._staging.remove(session.id)
        return context


class StoreStep(FinalizeStep):
    def __init__(self, session_store: BaseSessionStore, object_store: BaseObjectStore) -> None:
        self._session_store = session_store
        self._object_store = object_store

    def run(self, context: FinalizeContext) -> FinalizeContext:
        session = _require_session(context)
        if context.assembled_path is None or context.content_hash is None:
            raise ValueError("FinalizeContext must be hashed before storing")
        key = source_key(session.owner_id, context.content_hash, session.filename)
        self._object_store.put_file(context.assembled_path, key, session.content_type)
        context.storage_key = key
        context.session = self._session_store.transition(
            session.id, UploadStatus.COMPLETE, storage_key=key
        )
        return context


class PublishStep(FinalizeStep):
    def __init__(self, handoff: HandoffPublisher) -> None:
        self._handoff = handoff

    def run(self, context: FinalizeContext) -> FinalizeContext:
        session = _require_session(context)
        context.handed_off = self._handoff.handoff(session)
        return context


class UploadFinalizer:
    """Runs assemble -> validate -> hash -> dedup -> store -> publish.

    Failures are converted into a failed session plus a FinalizeOutcome;
    finalize() never raises.
    """

    def __init__(
        self,
        session_store: BaseSessionStore,
        staging: ChunkStaging,
        steps: list[FinalizeStep],
    ) -> None:
        self._session_store = session_store
        self._staging = staging
        self._steps = steps

    def finalize(self, upload_id: str) -> FinalizeOutcome:
        Log.info("Finalizing upload", upload_id=upload_id)
        context = FinalizeContext(upload_id=upload_id)
        try:
            for step in self._steps:
                if context.finished:
                    break
                context = step.run(context)
        except IngestError as exc:
            return self._fail(context, exc.kind, str(exc))
        except OSError as exc:
            return self._fail(context, ErrorKind.IO, f"I/O error: {exc}")
        except Exception as exc:
            Log.exception("Unexpected finalize error", upload_id=upload_id)
            return self._fail(context, ErrorKind.IO, f"{type(exc).__name__}: {exc}")

        # finished is only set on the duplicate path, which never publishes
        publish_failed = not context.finished and not context.handed_off
        status = UploadStatus.HANDED_OFF if context.handed_off else UploadStatus.COMPLETE
        return FinalizeOutcome(
            upload_id=upload_id,
            status=status,
            content_hash=context.content_hash,
            storage_key=context.storage_key,
            asset_id=context.asset_id,
            error_kind=ErrorKind.PUBLISH.value if publish_failed else None,
        )

    def _fail(self, context: FinalizeContext, kind: ErrorKind, message: str) -> FinalizeOutcome:
        upload_id = context.upload_id
        Log.error(f"Upload failed: {message}", upload_id=upload_id, error_kind=kind.value)
        try:
            self._session_store.transition(
                upload_id,
                UploadStatus.FAILED,
                error_kind=kind.value,
                error_message=message,
            )
        except (NotFoundError, InvalidTransitionError) as exc:
            Log.warning(f"Could not record failure: {exc}", upload_id=upload_id)
        self._staging.remove(upload_id)
        return FinalizeOutcome(
            upload_id=upload_id,
            status=UploadStatus.FAILED,
            content_hash=context.content_hash,
            storage_key=context.storage_key,
            error_kind=kind.value,
            error_message=message,
        )


def build_finalizer(
    session_store: BaseSessionStore,
    staging: ChunkStaging,
    assembler: ChunkAssembler,
    checker: IntegrityChecker,
    dedup: DedupEngine,
    object_store: BaseObjectStore,
    handoff: HandoffPublisher,
) -> UploadFinalizer:
    steps: list[FinalizeStep] = [
        AssembleStep(session_store, assembler),
        ValidateSizeStep(session_store, checker),
        HashStep(session_store, checker),
        DedupStep(session_store, dedup, staging),
        StoreStep(session_store, object_store),
        PublishStep(handoff),
    ]
    return UploadFinalizer(session_store, staging, steps)
