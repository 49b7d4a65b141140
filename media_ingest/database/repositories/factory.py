from media_ingest.config.settings import Settings
from media_ingest.database.connection import Database
from media_ingest.database.repositories.asset_repository import PostgresAssetRepository
from media_ingest.database.repositories.base import BaseAssetRepository
from media_ingest.database.repositories.memory_asset_repository import InMemoryAssetRepository


class AssetRepositoryFactory:
    """Creates the asset store selected by settings."""

    BACKENDS = ("postgres", "memory")

    @classmethod
    def create(cls, settings: Settings, database: Database | None) -> BaseAssetRepository:
        backend = settings.asset_store_backend.lower()
        if backend == "postgres":
            if database is None:
                raise ValueError("asset_store_backend=postgres requires a Database")
            return PostgresAssetRepository(database)
        if backend == "memory":
            return InMemoryAssetRepository()
        raise ValueError(
            f"Unknown asset store backend '{backend}'. Choose from: {list(cls.BACKENDS)}"
        )
