from media_ingest.config.settings import Settings
from media_ingest.sessions.base import BaseSessionStore
from media_ingest.sessions.memory_store import InMemorySessionStore
from media_ingest.sessions.redis_store import RedisSessionStore
from media_ingest.utils.retry import RetryConfig


class SessionStoreFactory:
    """Creates the session store selected by settings."""

    BACKENDS = ("redis", "memory")

    @classmethod
    def create(cls, settings: Settings) -> BaseSessionStore:
        backend = settings.session_backend.lower()
        if backend == "redis":
            return RedisSessionStore(settings.redis_url, RetryConfig.from_settings(settings))
        if backend == "memory":
            return InMemorySessionStore()
        raise ValueError(
            f"Unknown session backend '{backend}'. Choose from: {list(cls.BACKENDS)}"
        )
