from abc import ABC, abstractmethod
from pathlib import Path


class BaseObjectStore(ABC):
    """Contract for all object store adapters.

    Every failed operation raises StoreError.
    """

    def __init__(self, bucket: str) -> None:
        self._bucket = bucket

    @property
    def bucket(self) -> str:
        return self._bucket

    def connect(self) -> None:
        """Verify the store is reachable."""

    def close(self) -> None:
        """Release client resources."""

    @abstractmethod
    def put_file(self, path: Path, key: str, content_type: str) -> None:
        """Stream a local file into the store under key."""

    @abstractmethod
    def put_bytes(self, data: bytes, key: str, content_type: str) -> None:
        """Write a small in-memory payload under key."""

    @abstractmethod
    def download_file(self, key: str, path: Path) -> None:
        """Stream the object at key into a local file."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Return True if an object exists under key."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove the object at key. Missing objects are not an error."""
