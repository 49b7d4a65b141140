import hashlib
from pathlib import Path

from media_ingest.database.models import AssetRecord, AssetStatus
from media_ingest.database.repositories.base import BaseAssetRepository
from media_ingest.ingest.exceptions import IntegrityError, SizeMismatchError
from media_ingest.logging.logger import Log


def digest_length(algorithm: str) -> int:
    """Hex length of a digest produced by the given hashlib algorithm."""
    return hashlib.new(algorithm).digest_size * 2


def is_hex_digest(value: str, algorithm: str) -> bool:
    if len(value) != digest_length(algorithm):
        return False
    try:
        int(value, 16)
    except ValueError:
        return False
    return True


class IntegrityChecker:
    """Size and content-hash verification over an assembled file."""

    def __init__(self, algorithm: str = "sha256", block_size: int = 1024 * 1024) -> None:
        self._algorithm = algorithm
        self._block_size = block_size

    @property
    def algorithm(self) -> str:
        return self._algorithm

    def verify_size(self, path: Path, declared_size: int) -> int:
        actual = path.stat().st_size
        if actual != declared_size:
            raise SizeMismatchError(
                f"Assembled file is {actual} bytes, declared size was {declared_size}"
            )
        return actual

    def compute_hash(self, path: Path) -> str:
        digest = hashlib.new(self._algorithm)
        with open(path, "rb") as fh:
            while block := fh.read(self._block_size):
                digest.update(block)
        return digest.hexdigest()

    def verify_expected(self, actual: str, expected: str | None) -> None:
        if expected is None:
            return
        if actual.lower() != expected.lower():
            raise IntegrityError(
                f"Content hash {actual} does not match expected {expected.lower()}"
            )


class DedupEngine:
    """Looks up existing content by hash across all owners.

    Only a ready asset counts as a duplicate. Content whose asset failed
    processing is stored and published again so the worker can retry it.
    """

    def __init__(self, asset_repo: BaseAssetRepository, enabled: bool = True) -> None:
        self._asset_repo = asset_repo
        self._enabled = enabled

    def find_duplicate(self, content_hash: str) -> AssetRecord | None:
        if not self._enabled:
            return None
        asset = self._asset_repo.find_by_hash(content_hash)
        if asset is None:
            return None
        if asset.status is not AssetStatus.READY:
            Log.info(
                f"Content {content_hash} has asset {asset.id} in {asset.status.value}; "
                "processing again"
            )
            return None
        Log.info(f"Content {content_hash} already stored as asset {asset.id}")
        return asset
