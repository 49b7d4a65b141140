from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class AssetStatus(str, Enum):
    READY = "ready"
    PROCESSING_FAILED = "processing_failed"


@dataclass(frozen=True)
class Variant:
    """One produced rendition of an asset."""

    profile: str
    width: int
    height: int
    bitrate: int
    key: str

    def to_dict(self) -> dict[str, object]:
        return {
            "profile": self.profile,
            "width": self.width,
            "height": self.height,
            "bitrate": self.bitrate,
            "key": self.key,
        }

    @classmethod
    def from_dict(cls, profile: str, data: dict[str, Any]) -> "Variant":
        return cls(
            profile=profile,
            width=int(data["width"]),
            height=int(data["height"]),
            bitrate=int(data["bitrate"]),
            key=str(data["key"]),
        )


@dataclass
class AssetRecord:
    """Represents a row from the assets table."""

    id: str
    owner_id: str
    content_hash: str
    storage_key: str
    content_type: str
    status: AssetStatus
    variants: dict[str, Variant] = field(default_factory=dict)
    thumbnail_key: str | None = None
    manifest_key: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None

    def variants_payload(self) -> dict[str, dict[str, object]]:
        return {
            name: {k: v for k, v in variant.to_dict().items() if k != "profile"}
            for name, variant in self.variants.items()
        }

    def to_read_surface(self) -> dict[str, object]:
        """Shape exposed to external readers."""
        ordered = sorted(self.variants.values(), key=lambda v: v.bitrate, reverse=True)
        return {
            "id": self.id,
            "status": self.status.value,
            "contentHash": self.content_hash,
            "variants": [v.to_dict() for v in ordered],
            "thumbnailKey": self.thumbnail_key,
            "manifestKey": self.manifest_key,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class UpsertResult:
    """Outcome of an upsert keyed by content hash."""

    asset: AssetRecord
    created: bool
