from collections.abc import Iterator

import redis

from media_ingest.ingest.exceptions import NotFoundError
from media_ingest.sessions.base import BaseSessionStore
from media_ingest.sessions.models import UploadSession, UploadStatus, utcnow
from media_ingest.utils.retry import RetryConfig, retry_with_backoff

_INCREMENT_IF_EXISTS = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return -1
end
local received = redis.call('HINCRBY', KEYS[1], 'received_chunks', 1)
redis.call('HSET', KEYS[1], 'last_chunk_at', ARGV[1])
return received
"""

_COMPARE_AND_SET_STATUS = """
local current = redis.call('HGET', KEYS[1], 'status')
if not current then
    return -1
end
if current ~= ARGV[1] then
    return 0
end
redis.call('HSET', KEYS[1], 'status', ARGV[2])
for i = 3, #ARGV, 2 do
    redis.call('HSET', KEYS[1], ARGV[i], ARGV[i + 1])
end
return 1
"""

_SET_IF_EXISTS = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return 0
end
for i = 1, #ARGV, 2 do
    redis.call('HSET', KEYS[1], ARGV[i], ARGV[i + 1])
end
return 1
"""


def session_key(upload_id: str) -> str:
    return f"upload:{upload_id}"


def chunks_key(upload_id: str) -> str:
    return f"upload-chunks:{upload_id}"


class RedisSessionStore(BaseSessionStore):
    """Session store backed by Redis hashes with key expiry as the TTL."""

    def __init__(self, url: str, retry_config: RetryConfig) -> None:
        self._url = url
        self._retry_config = retry_config
        self._client: redis.Redis | None = None

    def connect(self) -> None:
        client = redis.Redis.from_url(self._url, decode_responses=True)
        retry_with_backoff(
            client.ping,
            config=self._retry_config,
            description="Redis connect",
            retry_on=(redis.ConnectionError, redis.TimeoutError),
        )
        self._client = client
        self._increment = client.register_script(_INCREMENT_IF_EXISTS)
        self._compare_and_set = client.register_script(_COMPARE_AND_SET_STATUS)
        self._set_if_exists = client.register_script(_SET_IF_EXISTS)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis session store not connected. Call connect() first.")
        return self._client

    def create(self, session: UploadSession) -> None:
        key = session_key(session.id)
        pipe = self.client.pipeline(transaction=True)
        pipe.hset(key, mapping=session.to_mapping())
        pipe.expireat(key, session.expires_at)
        pipe.execute()

    def get(self, upload_id: str) -> UploadSession:
        data = self.client.hgetall(session_key(upload_id))
        if not data:
            raise NotFoundError(f"Upload {upload_id} not found")
        return UploadSession.from_mapping(data)

    def claim_chunk(self, session: UploadSession, index: int) -> bool:
        key = chunks_key(session.id)
        pipe = self.client.pipeline(transaction=True)
        pipe.sadd(key, index)
        pipe.expireat(key, session.expires_at)
        added, _ = pipe.execute()
        return added == 1

    def release_chunk(self, upload_id: str, index: int) -> None:
        self.client.srem(chunks_key(upload_id), index)

    def received_indices(self, upload_id: str) -> set[int]:
        return {int(member) for member in self.client.smembers(chunks_key(upload_id))}

    def increment_received(self, upload_id: str) -> int:
        received = int(
            self._increment(keys=[session_key(upload_id)], args=[utcnow().isoformat()])
        )
        if received < 0:
            raise NotFoundError(f"Upload {upload_id} not found")
        return received

    def update_fields(self, upload_id: str, **fields: str | None) -> None:
        args = _flatten({k: str(v) for k, v in fields.items() if v is not None})
        if not args:
            return
        if not self._set_if_exists(keys=[session_key(upload_id)], args=args):
            raise NotFoundError(f"Upload {upload_id} not found")

    def delete(self, upload_id: str) -> None:
        self.client.delete(session_key(upload_id), chunks_key(upload_id))

    def iter_sessions(self) -> Iterator[UploadSession]:
        for key in self.client.scan_iter(match="upload:*", _type="HASH"):
            data = self.client.hgetall(key)
            if data:
                yield UploadSession.from_mapping(data)

    def _compare_and_set_status(
        self,
        upload_id: str,
        expected: UploadStatus,
        target: UploadStatus,
        fields: dict[str, str],
    ) -> bool:
        result = int(
            self._compare_and_set(
                keys=[session_key(upload_id)],
                args=[expected.value, target.value, *_flatten(fields)],
            )
        )
        if result < 0:
            raise NotFoundError(f"Upload {upload_id} not found")
        return result == 1


def _flatten(fields: dict[str, str]) -> list[str]:
    args: list[str] = []
    for name, value in fields.items():
        args.extend((name, value))
    return args
