import os
import uuid
from collections.abc import Generator

import pytest

from media_ingest.config.settings import Settings
from media_ingest.database.connection import Database
from media_ingest.database.repositories.asset_repository import PostgresAssetRepository
from media_ingest.sessions.redis_store import RedisSessionStore
from media_ingest.utils.retry import RetryConfig


def _test_settings() -> Settings:
    os.environ.setdefault("DB_DATABASE", "media_ingest_test")
    os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
    os.environ.setdefault("CONNECT_MAX_ATTEMPTS", "1")
    return Settings()


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    return _test_settings()


@pytest.fixture(scope="session")
def database(test_settings: Settings) -> Generator[Database, None, None]:
    db = Database(test_settings)
    try:
        db.connect()
        PostgresAssetRepository(db).ensure_schema()
    except Exception as e:
        db.close()
        pytest.skip(f"PostgreSQL test DB not available: {e}. Set DB_* env to run.")
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def pg_asset_repo(database: Database) -> Generator[PostgresAssetRepository, None, None]:
    """Repository whose rows are removed after the test, keyed by content hash."""
    repo = PostgresAssetRepository(database)
    yield repo
    with database.connection() as conn:
        conn.execute("DELETE FROM assets WHERE content_hash LIKE %s", ("it-%",))
        conn.commit()


@pytest.fixture
def unique_hash() -> str:
    """A content hash marker that pg_asset_repo cleans up."""
    return f"it-{uuid.uuid4().hex}"


@pytest.fixture
def redis_store(test_settings: Settings) -> Generator[RedisSessionStore, None, None]:
    store = RedisSessionStore(test_settings.redis_url, RetryConfig(max_attempts=1))
    try:
        store.connect()
    except Exception as e:
        pytest.skip(f"Redis not available: {e}. Set REDIS_URL to run.")
    created: list[str] = []
    original_create = store.create

    def tracking_create(session):  # type: ignore[no-untyped-def]
        created.append(session.id)
        original_create(session)

    store.create = tracking_create  # type: ignore[method-assign]
    try:
        yield store
    finally:
        for upload_id in created:
            store.delete(upload_id)
        store.close()
