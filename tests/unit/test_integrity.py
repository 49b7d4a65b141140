import hashlib
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from media_ingest.database.models import AssetRecord, AssetStatus
from media_ingest.ingest.exceptions import IntegrityError, SizeMismatchError
from media_ingest.ingest.integrity import DedupEngine, IntegrityChecker, is_hex_digest


def _write(tmp_path: Path, data: bytes) -> Path:
    path = tmp_path / "assembled.bin"
    path.write_bytes(data)
    return path


def _make_asset(status: AssetStatus) -> AssetRecord:
    return AssetRecord(
        id="asset-1",
        owner_id="owner-1",
        content_hash="h",
        storage_key="uploads/owner-1/h/clip.mp4",
        content_type="video/mp4",
        status=status,
    )


class TestIntegrityChecker:
    def test_verify_size_passes(self, tmp_path: Path) -> None:
        assert IntegrityChecker().verify_size(_write(tmp_path, b"x" * 10), 10) == 10

    def test_verify_size_mismatch(self, tmp_path: Path) -> None:
        with pytest.raises(SizeMismatchError, match="9 bytes, declared size was 10"):
            IntegrityChecker().verify_size(_write(tmp_path, b"x" * 9), 10)

    def test_streaming_hash_matches_hashlib(self, tmp_path: Path) -> None:
        data = bytes(range(256)) * 100
        checker = IntegrityChecker(block_size=100)

        assert checker.compute_hash(_write(tmp_path, data)) == hashlib.sha256(data).hexdigest()

    def test_configurable_algorithm(self, tmp_path: Path) -> None:
        checker = IntegrityChecker("md5")
        assert checker.compute_hash(_write(tmp_path, b"abc")) == hashlib.md5(b"abc").hexdigest()

    def test_expected_hash_is_case_insensitive(self) -> None:
        IntegrityChecker().verify_expected("abcdef", "ABCDEF")

    def test_expected_hash_mismatch(self) -> None:
        with pytest.raises(IntegrityError):
            IntegrityChecker().verify_expected("abcdef", "000000")

    def test_no_expected_hash_skips(self) -> None:
        IntegrityChecker().verify_expected("abcdef", None)


class TestIsHexDigest:
    def test_accepts_sha256(self) -> None:
        assert is_hex_digest("A" * 64, "sha256")

    def test_rejects_wrong_length(self) -> None:
        assert not is_hex_digest("a" * 63, "sha256")

    def test_rejects_non_hex(self) -> None:
        assert not is_hex_digest("g" * 64, "sha256")


class TestDedupEngine:
    def test_ready_asset_is_a_duplicate(self) -> None:
        repo = MagicMock()
        repo.find_by_hash.return_value = _make_asset(AssetStatus.READY)

        assert DedupEngine(repo).find_duplicate("h").id == "asset-1"  # type: ignore[union-attr]
        repo.find_by_hash.assert_called_once_with("h")

    def test_failed_asset_is_processed_again(self) -> None:
        repo = MagicMock()
        repo.find_by_hash.return_value = _make_asset(AssetStatus.PROCESSING_FAILED)

        assert DedupEngine(repo).find_duplicate("h") is None

    def test_unknown_content(self) -> None:
        repo = MagicMock()
        repo.find_by_hash.return_value = None

        assert DedupEngine(repo).find_duplicate("h") is None

    def test_disabled_never_looks_up(self) -> None:
        repo = MagicMock()
        assert DedupEngine(repo, enabled=False).find_duplicate("h") is None
        repo.find_by_hash.assert_not_called()
