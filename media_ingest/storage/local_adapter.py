import os
import shutil
import uuid
from pathlib import Path

from media_ingest.ingest.exceptions import StoreError
from media_ingest.storage.base import BaseObjectStore


class LocalObjectStore(BaseObjectStore):
    """Filesystem-backed object store: {root}/{bucket}/{key}.

    Writes go to a temporary sibling and are renamed into place, so a reader
    never observes a partially written object.
    """

    def __init__(self, root: Path, bucket: str) -> None:
        super().__init__(bucket)
        self._root = root

    def connect(self) -> None:
        try:
            self._bucket_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreError(f"Object store root unavailable: {exc}") from exc

    @property
    def _bucket_dir(self) -> Path:
        return self._root / self._bucket

    def path_for(self, key: str) -> Path:
        path = (self._bucket_dir / key).resolve()
        if not path.is_relative_to(self._bucket_dir.resolve()):
            raise StoreError(f"Key escapes the bucket: {key}")
        return path

    def put_file(self, path: Path, key: str, content_type: str) -> None:
        target = self.path_for(key)
        tmp = target.with_name(f".{target.name}.{uuid.uuid4().hex[:8]}.partial")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(path, tmp)
            os.replace(tmp, target)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise StoreError(f"Failed to store {key}: {exc}") from exc

    def put_bytes(self, data: bytes, key: str, content_type: str) -> None:
        target = self.path_for(key)
        tmp = target.with_name(f".{target.name}.{uuid.uuid4().hex[:8]}.partial")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            os.replace(tmp, target)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise StoreError(f"Failed to store {key}: {exc}") from exc

    def download_file(self, key: str, path: Path) -> None:
        source = self.path_for(key)
        if not source.exists():
            raise StoreError(f"Object not found: {key}")
        try:
            shutil.copyfile(source, path)
        except OSError as exc:
            raise StoreError(f"Failed to fetch {key}: {exc}") from exc

    def exists(self, key: str) -> bool:
        return self.path_for(key).exists()

    def delete(self, key: str) -> None:
        try:
            self.path_for(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StoreError(f"Failed to delete {key}: {exc}") from exc
