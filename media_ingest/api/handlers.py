from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from media_ingest.ingest.asset_service import AssetService
from media_ingest.ingest.exceptions import NotFoundError, ValidationError
from media_ingest.ingest.models import InitRequest
from media_ingest.ingest.service import UploadService
from media_ingest.logging.logger import Log


@dataclass(frozen=True)
class ApiResponse:
    status_code: int
    body: dict[str, object] = field(default_factory=dict)


def _error(status_code: int, exc: Exception) -> ApiResponse:
    return ApiResponse(status_code, {"error": str(exc)})


class UploadApi:
    """Framework-free handlers; an HTTP layer maps requests onto these.

    ValidationError maps to 400, NotFoundError to 404. Anything else
    propagates to the embedding server.
    """

    def __init__(self, uploads: UploadService, assets: AssetService) -> None:
        self._uploads = uploads
        self._assets = assets

    def init(self, payload: Mapping[str, object]) -> ApiResponse:
        def call() -> ApiResponse:
            size = payload.get("fileSize")
            if size is None:
                raise ValidationError("fileSize is required")
            metadata = payload.get("metadata")
            if metadata is not None and not isinstance(metadata, Mapping):
                raise ValidationError("metadata must be an object")
            result = self._uploads.init_upload(
                InitRequest(
                    filename=_as_str(payload.get("filename")) or "",
                    size=_as_int(size, "fileSize"),
                    content_type=_as_str(payload.get("fileType")) or "",
                    metadata=dict(metadata) if metadata is not None else None,
                    expected_hash=_as_str(payload.get("expectedHash")),
                    owner_id=_as_str(payload.get("ownerId")),
                )
            )
            return ApiResponse(
                201,
                {
                    "uploadId": result.upload_id,
                    "chunkSize": result.chunk_size,
                    "totalChunks": result.total_chunks,
                    "expiresAt": result.expires_at.isoformat(),
                },
            )

        return self._handle("init", call)

    def upload_chunk(self, payload: Mapping[str, object]) -> ApiResponse:
        def call() -> ApiResponse:
            chunk = payload.get("chunk")
            if not isinstance(chunk, (bytes, bytearray)):
                raise ValidationError("chunk must be binary data")
            total = payload.get("totalChunks")
            receipt = self._uploads.receive_chunk(
                str(payload.get("uploadId")),
                _as_int(payload.get("chunkNumber"), "chunkNumber"),
                bytes(chunk),
                declared_total=None if total is None else _as_int(total, "totalChunks"),
            )
            return ApiResponse(
                200,
                {
                    "uploadId": receipt.upload_id,
                    "chunkNumber": receipt.chunk_number,
                    "received": receipt.received,
                    "total": receipt.total,
                },
            )

        return self._handle("uploadChunk", call)

    def get_status(self, upload_id: str) -> ApiResponse:
        return self._handle(
            "getStatus",
            lambda: ApiResponse(200, self._uploads.get_status(upload_id).to_dict()),
        )

    def get_asset(self, asset_id: str) -> ApiResponse:
        return self._handle("getAsset", lambda: ApiResponse(200, self._assets.get_asset(asset_id)))

    def update_asset_metadata(self, asset_id: str, fields: Mapping[str, object]) -> ApiResponse:
        return self._handle(
            "updateAssetMetadata",
            lambda: ApiResponse(200, self._assets.update_metadata(asset_id, dict(fields))),
        )

    def delete_asset(self, asset_id: str) -> ApiResponse:
        def call() -> ApiResponse:
            self._assets.soft_delete(asset_id)
            return ApiResponse(204)

        return self._handle("deleteAsset", call)

    @staticmethod
    def _handle(operation: str, call: Callable[[], ApiResponse]) -> ApiResponse:
        try:
            return call()
        except ValidationError as exc:
            Log.info(f"{operation} rejected: {exc}")
            return _error(400, exc)
        except NotFoundError as exc:
            Log.info(f"{operation} not found: {exc}")
            return _error(404, exc)


def _as_int(value: object, name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    raise ValidationError(f"{name} must be an integer")


def _as_str(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"expected a string, got {type(value).__name__}")
    return value
