import threading
from dataclasses import replace

from media_ingest.database.models import AssetRecord, AssetStatus, UpsertResult
from media_ingest.database.repositories.base import BaseAssetRepository
from media_ingest.ingest.exceptions import NotFoundError
from media_ingest.sessions.models import utcnow


class InMemoryAssetRepository(BaseAssetRepository):
    """Process-local asset store with the same upsert semantics as Postgres."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._assets: dict[str, AssetRecord] = {}

    def find_by_hash(self, content_hash: str) -> AssetRecord | None:
        with self._lock:
            asset = self._live_by_hash(content_hash)
            return _copy(asset) if asset is not None else None

    def find_by_id(self, asset_id: str) -> AssetRecord:
        with self._lock:
            return _copy(self._live_by_id(asset_id))

    def upsert_by_hash(self, asset: AssetRecord) -> UpsertResult:
        with self._lock:
            existing = self._live_by_hash(asset.content_hash)
            now = utcnow()
            if existing is None:
                stored = replace(
                    _copy(asset), created_at=now, updated_at=now, deleted_at=None
                )
                self._assets[stored.id] = stored
                return UpsertResult(asset=_copy(stored), created=True)
            if existing.status is AssetStatus.READY and asset.status is not AssetStatus.READY:
                return UpsertResult(asset=_copy(existing), created=False)
            existing.status = asset.status
            existing.variants = dict(asset.variants)
            existing.thumbnail_key = asset.thumbnail_key
            existing.manifest_key = asset.manifest_key
            existing.updated_at = now
            return UpsertResult(asset=_copy(existing), created=False)

    def update_metadata(self, asset_id: str, metadata: dict[str, str]) -> AssetRecord:
        with self._lock:
            asset = self._live_by_id(asset_id)
            asset.metadata = {**asset.metadata, **metadata}
            asset.updated_at = utcnow()
            return _copy(asset)

    def soft_delete(self, asset_id: str) -> None:
        with self._lock:
            asset = self._live_by_id(asset_id)
            asset.deleted_at = utcnow()
            asset.updated_at = asset.deleted_at

    def count(self, include_deleted: bool = False) -> int:
        with self._lock:
            return sum(
                1 for a in self._assets.values() if include_deleted or a.deleted_at is None
            )

    def _live_by_hash(self, content_hash: str) -> AssetRecord | None:
        for asset in self._assets.values():
            if asset.content_hash == content_hash and asset.deleted_at is None:
                return asset
        return None

    def _live_by_id(self, asset_id: str) -> AssetRecord:
        asset = self._assets.get(asset_id)
        if asset is None or asset.deleted_at is not None:
            raise NotFoundError(f"Asset {asset_id} not found")
        return asset


def _copy(asset: AssetRecord) -> AssetRecord:
    return replace(asset, variants=dict(asset.variants), metadata=dict(asset.metadata))
