from enum import Enum


class ErrorKind(str, Enum):
    """Failure classification written into session and asset status."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    SIZE_MISMATCH = "size_mismatch"
    INTEGRITY = "integrity"
    MISSING_CHUNK = "missing_chunk"
    STORE = "store"
    PUBLISH = "publish"
    TRANSCODE_TOOL = "transcode_tool"
    IO = "io"
    INVALID_TRANSITION = "invalid_transition"


class IngestError(Exception):
    """Base exception for all ingestion errors."""

    kind: ErrorKind = ErrorKind.IO


class ValidationError(IngestError):
    """Raised when init or chunk input violates upload policy."""

    kind = ErrorKind.VALIDATION


class NotFoundError(IngestError):
    """Raised when a session or asset is unknown, expired or deleted."""

    kind = ErrorKind.NOT_FOUND


class SizeMismatchError(IngestError):
    """Raised when the assembled byte count differs from the declared size."""

    kind = ErrorKind.SIZE_MISMATCH


class IntegrityError(IngestError):
    """Raised when the computed content hash differs from the client's."""

    kind = ErrorKind.INTEGRITY


class MissingChunkError(IngestError):
    """Raised when a staged chunk is absent at assembly time."""

    kind = ErrorKind.MISSING_CHUNK

    def __init__(self, index: int) -> None:
        super().__init__(f"Chunk {index} is missing")
        self.index = index


class StoreError(IngestError):
    """Raised when the object store rejects or cannot take a write."""

    kind = ErrorKind.STORE


class PublishError(IngestError):
    """Raised when the processing message cannot be published."""

    kind = ErrorKind.PUBLISH


class InvalidTransitionError(IngestError):
    """Raised when a status change would move a session backwards."""

    kind = ErrorKind.INVALID_TRANSITION
