from pathlib import Path

from media_ingest.config.settings import Settings
from media_ingest.storage.base import BaseObjectStore
from media_ingest.storage.local_adapter import LocalObjectStore
from media_ingest.storage.s3_adapter import S3ObjectStore
from media_ingest.utils.retry import RetryConfig


class ObjectStoreFactory:
    """Creates the object store adapter selected by settings."""

    BACKENDS = ("s3", "local")

    @classmethod
    def create(cls, settings: Settings) -> BaseObjectStore:
        backend = settings.storage_backend.lower()
        if backend == "s3":
            return S3ObjectStore(
                bucket=settings.storage_bucket,
                region=settings.storage_region,
                endpoint_url=settings.storage_endpoint_url,
                access_key=settings.storage_access_key,
                secret_key=settings.storage_secret_key,
                retry_config=RetryConfig.from_settings(settings),
            )
        if backend == "local":
            return LocalObjectStore(Path(settings.storage_local_root), settings.storage_bucket)
        raise ValueError(
            f"Unknown storage backend '{backend}'. Choose from: {list(cls.BACKENDS)}"
        )
