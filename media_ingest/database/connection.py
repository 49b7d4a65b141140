from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

import psycopg
from psycopg_pool import ConnectionPool

from media_ingest.config.settings import Settings
from media_ingest.utils.retry import RetryConfig, retry_with_backoff


def build_conninfo(settings: Settings) -> str:
    return (
        f"host={settings.db_host} "
        f"port={settings.db_port} "
        f"dbname={settings.db_database} "
        f"user={settings.db_username} "
        f"password={settings.db_password}"
    )


class Database:
    """Owns the connection pool; callers borrow connections per operation."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._pool: ConnectionPool | None = None

    def connect(self) -> None:
        """Open the pool and wait until the first connection is usable."""
        pool = ConnectionPool(
            build_conninfo(self._settings),
            min_size=self._settings.db_pool_min_size,
            max_size=self._settings.db_pool_max_size,
            open=False,
        )
        pool.open()
        retry_with_backoff(
            lambda: pool.wait(timeout=10.0),
            config=RetryConfig.from_settings(self._settings),
            description="Database connect",
            retry_on=(psycopg.OperationalError, TimeoutError),
        )
        self._pool = pool

    def close(self) -> None:
        if self._pool is not None:
            self._pool.close()
            self._pool = None

    @contextmanager
    def connection(self) -> Generator[psycopg.Connection[Any], None, None]:
        """Yield a connection from the pool. Caller manages commit/rollback."""
        if self._pool is None:
            raise RuntimeError("Connection pool not initialized. Call connect() first.")
        with self._pool.connection() as conn:
            yield conn
