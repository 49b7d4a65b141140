from pathlib import Path
from typing import Any

from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from media_ingest.database.connection import Database
from media_ingest.database.models import AssetRecord, AssetStatus, UpsertResult, Variant
from media_ingest.database.repositories.base import BaseAssetRepository
from media_ingest.ingest.exceptions import NotFoundError

_SCHEMA_PATH = Path(__file__).resolve().parent.parent / "schema.sql"

_COLUMNS = """
    id, owner_id, content_hash, storage_key, content_type, status, variants,
    thumbnail_key, manifest_key, metadata, created_at, updated_at, deleted_at
"""


def row_to_asset(row: dict[str, Any]) -> AssetRecord:
    variants = row.get("variants") or {}
    return AssetRecord(
        id=str(row["id"]),
        owner_id=row["owner_id"],
        content_hash=row["content_hash"],
        storage_key=row["storage_key"],
        content_type=row["content_type"],
        status=AssetStatus(row["status"]),
        variants={name: Variant.from_dict(name, data) for name, data in variants.items()},
        thumbnail_key=row.get("thumbnail_key"),
        manifest_key=row.get("manifest_key"),
        metadata=dict(row.get("metadata") or {}),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
        deleted_at=row.get("deleted_at"),
    )


class PostgresAssetRepository(BaseAssetRepository):
    """Database operations for the assets table."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def ensure_schema(self) -> None:
        """Apply the bundled schema. Statements are idempotent."""
        sql = _SCHEMA_PATH.read_text(encoding="utf-8")
        with self._db.connection() as conn:
            conn.execute(sql)
            conn.commit()

    def find_by_hash(self, content_hash: str) -> AssetRecord | None:
        with self._db.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"SELECT {_COLUMNS} FROM assets WHERE content_hash = %s AND deleted_at IS NULL",
                    (content_hash,),
                )
                row = cur.fetchone()
        return row_to_asset(row) if row is not None else None

    def find_by_id(self, asset_id: str) -> AssetRecord:
        with self._db.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM assets
                    WHERE id = %s AND deleted_at IS NULL
                    """,
                    (asset_id,),
                )
                row = cur.fetchone()

        if row is None:
            raise NotFoundError(f"Asset {asset_id} not found")
        return row_to_asset(row)

    def upsert_by_hash(self, asset: AssetRecord) -> UpsertResult:
        """Insert or update keyed by content hash.

        A ready asset is never downgraded to processing_failed by a later
        redelivery; in that case the existing row is returned unchanged.
        """
        with self._db.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    INSERT INTO assets
                        (id, owner_id, content_hash, storage_key, content_type, status,
                         variants, thumbnail_key, manifest_key, metadata)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (content_hash) WHERE deleted_at IS NULL
                    DO UPDATE SET
                        status = EXCLUDED.status,
                        variants = EXCLUDED.variants,
                        thumbnail_key = EXCLUDED.thumbnail_key,
                        manifest_key = EXCLUDED.manifest_key,
                        updated_at = NOW()
                    WHERE assets.status <> 'ready' OR EXCLUDED.status = 'ready'
                    RETURNING {_COLUMNS}, (xmax = 0) AS inserted
                    """,
                    (
                        asset.id,
                        asset.owner_id,
                        asset.content_hash,
                        asset.storage_key,
                        asset.content_type,
                        asset.status.value,
                        Jsonb(asset.variants_payload()),
                        asset.thumbnail_key,
                        asset.manifest_key,
                        Jsonb(asset.metadata),
                    ),
                )
                row = cur.fetchone()
            conn.commit()

        if row is not None:
            return UpsertResult(asset=row_to_asset(row), created=bool(row["inserted"]))

        existing = self.find_by_hash(asset.content_hash)
        if existing is None:
            raise NotFoundError(f"Asset for hash {asset.content_hash} vanished during upsert")
        return UpsertResult(asset=existing, created=False)

    def update_metadata(self, asset_id: str, metadata: dict[str, str]) -> AssetRecord:
        with self._db.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    UPDATE assets
                    SET metadata = metadata || %s, updated_at = NOW()
                    WHERE id = %s AND deleted_at IS NULL
                    RETURNING {_COLUMNS}
                    """,
                    (Jsonb(metadata), asset_id),
                )
                row = cur.fetchone()
            conn.commit()

        if row is None:
            raise NotFoundError(f"Asset {asset_id} not found")
        return row_to_asset(row)

    def soft_delete(self, asset_id: str) -> None:
        with self._db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE assets
                    SET deleted_at = NOW(), updated_at = NOW()
                    WHERE id = %s AND deleted_at IS NULL
                    """,
                    (asset_id,),
                )
                if cur.rowcount == 0:
                    raise NotFoundError(f"Asset {asset_id} not found")
            conn.commit()
