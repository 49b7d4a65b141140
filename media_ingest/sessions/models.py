import json
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class UploadStatus(str, Enum):
    INITIALIZED = "initialized"
    UPLOADING = "uploading"
    ASSEMBLING = "assembling"
    VALIDATING = "validating"
    HASHING = "hashing"
    DUPLICATE = "duplicate"
    UPLOADING_TO_STORE = "uploading_to_store"
    COMPLETE = "complete"
    HANDED_OFF = "handed_off"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadStatus.HANDED_OFF, UploadStatus.FAILED)


_FORWARD: dict[UploadStatus, frozenset[UploadStatus]] = {
    UploadStatus.INITIALIZED: frozenset({UploadStatus.UPLOADING}),
    UploadStatus.UPLOADING: frozenset({UploadStatus.ASSEMBLING}),
    UploadStatus.ASSEMBLING: frozenset({UploadStatus.VALIDATING}),
    UploadStatus.VALIDATING: frozenset({UploadStatus.HASHING}),
    UploadStatus.HASHING: frozenset(
        {UploadStatus.DUPLICATE, UploadStatus.UPLOADING_TO_STORE}
    ),
    UploadStatus.DUPLICATE: frozenset({UploadStatus.COMPLETE}),
    UploadStatus.UPLOADING_TO_STORE: frozenset({UploadStatus.COMPLETE}),
    UploadStatus.COMPLETE: frozenset({UploadStatus.HANDED_OFF}),
    UploadStatus.HANDED_OFF: frozenset(),
    UploadStatus.FAILED: frozenset(),
}


def can_transition(current: UploadStatus, target: UploadStatus) -> bool:
    """Return True if a session may move from current to target.

    Transitions only move forward along the pipeline; failed is reachable
    from every non-terminal state.
    """
    if current.is_terminal:
        return False
    if target is UploadStatus.FAILED:
        return True
    return target in _FORWARD[current]


def total_chunks_for(size: int, chunk_size: int) -> int:
    return math.ceil(size / chunk_size)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UploadSession:
    """Server-side record of one chunked upload attempt."""

    id: str
    filename: str
    size: int
    content_type: str
    owner_id: str
    chunk_size: int
    total_chunks: int
    status: UploadStatus
    created_at: datetime
    expires_at: datetime
    metadata: dict[str, str] = field(default_factory=dict)
    received_chunks: int = 0
    last_chunk_at: datetime | None = None
    expected_hash: str | None = None
    content_hash: str | None = None
    storage_key: str | None = None
    asset_id: str | None = None
    error_kind: str | None = None
    error_message: str | None = None

    @property
    def progress(self) -> int:
        """Chunk receipt progress as an integer percentage, 0-100."""
        if self.total_chunks <= 0:
            return 0
        return min(100, (self.received_chunks * 100) // self.total_chunks)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def to_mapping(self) -> dict[str, str]:
        """Flatten into a str -> str mapping for hash-based stores."""
        mapping = {
            "id": self.id,
            "filename": self.filename,
            "size": str(self.size),
            "content_type": self.content_type,
            "owner_id": self.owner_id,
            "chunk_size": str(self.chunk_size),
            "total_chunks": str(self.total_chunks),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "metadata": json.dumps(self.metadata, sort_keys=True),
            "received_chunks": str(self.received_chunks),
        }
        optional = {
            "last_chunk_at": self.last_chunk_at.isoformat() if self.last_chunk_at else None,
            "expected_hash": self.expected_hash,
            "content_hash": self.content_hash,
            "storage_key": self.storage_key,
            "asset_id": self.asset_id,
            "error_kind": self.error_kind,
            "error_message": self.error_message,
        }
        mapping.update({k: v for k, v in optional.items() if v is not None})
        return mapping

    @classmethod
    def from_mapping(cls, data: dict[str, str]) -> "UploadSession":
        last_chunk_at = data.get("last_chunk_at")
        return cls(
            id=data["id"],
            filename=data["filename"],
            size=int(data["size"]),
            content_type=data["content_type"],
            owner_id=data["owner_id"],
            chunk_size=int(data["chunk_size"]),
            total_chunks=int(data["total_chunks"]),
            status=UploadStatus(data["status"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            metadata=json.loads(data.get("metadata") or "{}"),
            received_chunks=int(data.get("received_chunks", "0")),
            last_chunk_at=datetime.fromisoformat(last_chunk_at) if last_chunk_at else None,
            expected_hash=data.get("expected_hash"),
            content_hash=data.get("content_hash"),
            storage_key=data.get("storage_key"),
            asset_id=data.get("asset_id"),
            error_kind=data.get("error_kind"),
            error_message=data.get("error_message"),
        )


@dataclass(frozen=True)
class ChunkProgress:
    """Counter state after a chunk receipt."""

    received: int
    total: int
    newly_received: bool
