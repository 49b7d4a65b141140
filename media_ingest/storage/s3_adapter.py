from pathlib import Path
from typing import Any

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, ClientError

from media_ingest.ingest.exceptions import StoreError
from media_ingest.logging.logger import Log
from media_ingest.storage.base import BaseObjectStore
from media_ingest.utils.retry import RetryConfig, retry_with_backoff


class S3ObjectStore(BaseObjectStore):
    """S3-compatible object store built on boto3.

    Uploads go through the managed transfer layer, which streams large files
    as multipart parts so memory stays bounded by the part size.
    """

    def __init__(
        self,
        *,
        bucket: str,
        region: str,
        retry_config: RetryConfig,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        multipart_chunk_bytes: int = 8 * 1024 * 1024,
    ) -> None:
        super().__init__(bucket)
        self._region = region
        self._endpoint_url = endpoint_url
        self._access_key = access_key
        self._secret_key = secret_key
        self._retry_config = retry_config
        self._transfer_config = TransferConfig(
            multipart_chunksize=multipart_chunk_bytes,
            max_concurrency=4,
        )
        self._client: Any = None

    def connect(self) -> None:
        client_kwargs: dict[str, Any] = {
            "service_name": "s3",
            "region_name": self._region,
        }
        if self._endpoint_url:
            client_kwargs["endpoint_url"] = self._endpoint_url
        if self._access_key and self._secret_key:
            client_kwargs["aws_access_key_id"] = self._access_key
            client_kwargs["aws_secret_access_key"] = self._secret_key
        client = boto3.client(**client_kwargs)
        retry_with_backoff(
            lambda: client.head_bucket(Bucket=self._bucket),
            config=self._retry_config,
            description=f"Object store connect (bucket {self._bucket})",
            retry_on=(BotoCoreError, ClientError),
        )
        self._client = client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    @property
    def client(self) -> Any:
        if self._client is None:
            raise RuntimeError("Object store not connected. Call connect() first.")
        return self._client

    def put_file(self, path: Path, key: str, content_type: str) -> None:
        try:
            self.client.upload_file(
                str(path),
                self._bucket,
                key,
                ExtraArgs={"ContentType": content_type},
                Config=self._transfer_config,
            )
        except (BotoCoreError, ClientError, OSError) as exc:
            raise StoreError(f"Failed to store {key}: {exc}") from exc
        Log.debug(f"Stored {path} as s3://{self._bucket}/{key}")

    def put_bytes(self, data: bytes, key: str, content_type: str) -> None:
        try:
            self.client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StoreError(f"Failed to store {key}: {exc}") from exc

    def download_file(self, key: str, path: Path) -> None:
        try:
            self.client.download_file(
                self._bucket, key, str(path), Config=self._transfer_config
            )
        except (BotoCoreError, ClientError, OSError) as exc:
            raise StoreError(f"Failed to fetch {key}: {exc}") from exc

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self._bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StoreError(f"Failed to check {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise StoreError(f"Failed to check {key}: {exc}") from exc
        return True

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StoreError(f"Failed to delete {key}: {exc}") from exc
