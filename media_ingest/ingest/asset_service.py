import uuid

from media_ingest.database.repositories.base import BaseAssetRepository
from media_ingest.ingest.exceptions import NotFoundError
from media_ingest.ingest.metadata import validate_metadata
from media_ingest.logging.logger import Log


class AssetService:
    """Read, metadata update and soft delete over finished assets."""

    def __init__(self, asset_repo: BaseAssetRepository) -> None:
        self._asset_repo = asset_repo

    def get_asset(self, asset_id: str) -> dict[str, object]:
        _check_asset_id(asset_id)
        return self._asset_repo.find_by_id(asset_id).to_read_surface()

    def update_metadata(self, asset_id: str, fields: dict[str, object] | None) -> dict[str, object]:
        """Raises ValidationError on disallowed keys, NotFoundError if absent."""
        _check_asset_id(asset_id)
        metadata = validate_metadata(fields)
        asset = self._asset_repo.update_metadata(asset_id, metadata)
        Log.info(f"Asset {asset_id}: metadata updated ({sorted(metadata)})")
        return asset.to_read_surface()

    def soft_delete(self, asset_id: str) -> None:
        _check_asset_id(asset_id)
        self._asset_repo.soft_delete(asset_id)
        Log.info(f"Asset {asset_id} soft-deleted")


def _check_asset_id(asset_id: str) -> None:
    try:
        uuid.UUID(str(asset_id))
    except ValueError as exc:
        raise NotFoundError(f"Asset {asset_id} not found") from exc
