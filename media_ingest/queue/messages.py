import json
from dataclasses import dataclass, field
from datetime import datetime

from media_ingest.queue.exceptions import MalformedMessageError

MESSAGE_TYPE_NEW_UPLOAD = "new_upload"


@dataclass(frozen=True)
class ProcessingMessage:
    """Durable handoff from upload completion to the transcode consumer.

    Delivery is at-least-once; consumers key idempotency off content_hash.
    """

    upload_id: str
    storage_key: str
    storage_bucket: str
    file_type: str
    content_hash: str
    owner_id: str
    timestamp: datetime
    metadata: dict[str, str] = field(default_factory=dict)
    type: str = MESSAGE_TYPE_NEW_UPLOAD

    def to_json(self) -> bytes:
        payload = {
            "type": self.type,
            "uploadId": self.upload_id,
            "storageKey": self.storage_key,
            "storageBucket": self.storage_bucket,
            "fileType": self.file_type,
            "metadata": self.metadata,
            "contentHash": self.content_hash,
            "ownerId": self.owner_id,
            "timestamp": self.timestamp.isoformat(),
        }
        return json.dumps(payload, sort_keys=True).encode("utf-8")

    @classmethod
    def from_json(cls, body: bytes) -> "ProcessingMessage":
        """Parse a wire payload.

        Raises:
            MalformedMessageError: if the body is not a valid new_upload message.
        """
        try:
            payload = json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise MalformedMessageError(f"Message body is not JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise MalformedMessageError("Message body must be a JSON object")
        if payload.get("type") != MESSAGE_TYPE_NEW_UPLOAD:
            raise MalformedMessageError(f"Unsupported message type: {payload.get('type')!r}")

        required = ("uploadId", "storageKey", "storageBucket", "fileType", "contentHash", "timestamp")
        missing = [name for name in required if not payload.get(name)]
        if missing:
            raise MalformedMessageError(f"Message is missing fields: {missing}")
        metadata = payload.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise MalformedMessageError("metadata must be an object")
        try:
            timestamp = datetime.fromisoformat(payload["timestamp"])
        except (TypeError, ValueError) as exc:
            raise MalformedMessageError(f"Invalid timestamp: {exc}") from exc

        return cls(
            upload_id=str(payload["uploadId"]),
            storage_key=str(payload["storageKey"]),
            storage_bucket=str(payload["storageBucket"]),
            file_type=str(payload["fileType"]),
            content_hash=str(payload["contentHash"]).lower(),
            owner_id=str(payload.get("ownerId") or ""),
            timestamp=timestamp,
            metadata={str(k): str(v) for k, v in metadata.items()},
        )
