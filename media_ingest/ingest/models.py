from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from media_ingest.sessions.models import UploadSession, UploadStatus


@dataclass(slots=True)
class InitRequest:
    filename: str
    size: int
    content_type: str
    metadata: dict[str, object] | None = None
    expected_hash: str | None = None
    owner_id: str | None = None


@dataclass(frozen=True)
class InitResult:
    upload_id: str
    chunk_size: int
    total_chunks: int
    expires_at: datetime


@dataclass(frozen=True)
class ChunkReceipt:
    upload_id: str
    chunk_number: int
    received: int
    total: int
    duplicate: bool = False


@dataclass(frozen=True)
class StatusSnapshot:
    session: UploadSession
    missing_chunks: list[int]

    @property
    def progress(self) -> int:
        return self.session.progress

    def to_dict(self) -> dict[str, object]:
        s = self.session
        return {
            "uploadId": s.id,
            "filename": s.filename,
            "fileSize": s.size,
            "fileType": s.content_type,
            "status": s.status.value,
            "progress": self.progress,
            "receivedChunks": s.received_chunks,
            "totalChunks": s.total_chunks,
            "missingChunks": self.missing_chunks,
            "contentHash": s.content_hash,
            "assetId": s.asset_id,
            "errorKind": s.error_kind,
            "errorMessage": s.error_message,
            "expiresAt": s.expires_at.isoformat(),
        }


@dataclass(slots=True)
class FinalizeContext:
    """Mutable state carried through the finalize steps."""

    upload_id: str
    session: UploadSession | None = None
    assembled_path: Path | None = None
    content_hash: str | None = None
    storage_key: str | None = None
    asset_id: str | None = None
    handed_off: bool = False
    finished: bool = False


@dataclass(frozen=True)
class FinalizeOutcome:
    """Result of one assembly-to-handoff run. Never raised, always returned."""

    upload_id: str
    status: UploadStatus
    content_hash: str | None = None
    storage_key: str | None = None
    asset_id: str | None = None
    error_kind: str | None = None
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is not UploadStatus.FAILED
