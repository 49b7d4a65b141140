from abc import ABC, abstractmethod

from media_ingest.database.models import AssetRecord, UpsertResult


class BaseAssetRepository(ABC):
    """Contract for the hash-keyed asset metadata store."""

    def ensure_schema(self) -> None:
        """Create storage structures if they do not exist."""

    @abstractmethod
    def find_by_hash(self, content_hash: str) -> AssetRecord | None:
        """Return the non-deleted asset for a content hash, whoever owns it."""

    @abstractmethod
    def find_by_id(self, asset_id: str) -> AssetRecord:
        """Return a non-deleted asset.

        Raises:
            NotFoundError: if the asset is unknown or soft-deleted.
        """

    @abstractmethod
    def upsert_by_hash(self, asset: AssetRecord) -> UpsertResult:
        """Insert, or on content-hash conflict update processing results.

        On conflict the existing id, owner, storage key and metadata are kept.
        """

    @abstractmethod
    def update_metadata(self, asset_id: str, metadata: dict[str, str]) -> AssetRecord:
        """Merge metadata fields into a non-deleted asset.

        Raises:
            NotFoundError: if the asset is unknown or soft-deleted.
        """

    @abstractmethod
    def soft_delete(self, asset_id: str) -> None:
        """Set deleted_at on a non-deleted asset.

        Raises:
            NotFoundError: if the asset is unknown or already deleted.
        """
