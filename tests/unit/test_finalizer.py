import hashlib
from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock

from media_ingest.database.models import AssetRecord, AssetStatus
from media_ingest.database.repositories.memory_asset_repository import InMemoryAssetRepository
from media_ingest.ingest.assembler import ChunkAssembler
from media_ingest.ingest.exceptions import PublishError, StoreError
from media_ingest.ingest.finalizer import UploadFinalizer, build_finalizer
from media_ingest.ingest.handoff import HandoffPublisher
from media_ingest.ingest.integrity import DedupEngine, IntegrityChecker
from media_ingest.ingest.staging import ChunkStaging
from media_ingest.queue.memory_adapter import InMemoryBroker
from media_ingest.sessions.memory_store import InMemorySessionStore
from media_ingest.sessions.models import UploadSession, UploadStatus, utcnow
from media_ingest.storage.local_adapter import LocalObjectStore

DATA = b"0123456789" * 250
CHUNK = 1000


def _make_session(upload_id: str = "u-1", **overrides: object) -> UploadSession:
    now = utcnow()
    values: dict[str, object] = {
        "id": upload_id,
        "filename": "clip.mp4",
        "size": len(DATA),
        "content_type": "video/mp4",
        "owner_id": "owner-1",
        "chunk_size": CHUNK,
        "total_chunks": 3,
        "status": UploadStatus.UPLOADING,
        "created_at": now,
        "expires_at": now + timedelta(hours=1),
    }
    values.update(overrides)
    return UploadSession(**values)  # type: ignore[arg-type]


class _Harness:
    def __init__(self, tmp_path: Path, publisher: object | None = None, object_store: object | None = None) -> None:
        self.sessions = InMemorySessionStore()
        self.staging = ChunkStaging(tmp_path / "staging")
        self.objects = LocalObjectStore(tmp_path / "objects", "media-test")
        self.objects.connect()
        self.broker = InMemoryBroker()
        self.assets = InMemoryAssetRepository()
        handoff = HandoffPublisher(
            publisher or self.broker, self.sessions, self.staging, "media-test"
        )
        self.finalizer: UploadFinalizer = build_finalizer(
            self.sessions,
            self.staging,
            ChunkAssembler(self.staging, read_block_bytes=64, high_water_mark_bytes=256),
            IntegrityChecker(),
            DedupEngine(self.assets),
            object_store or self.objects,  # type: ignore[arg-type]
            handoff,
        )

    def stage(self, session: UploadSession, data: bytes = DATA) -> None:
        self.sessions.create(session)
        for index in range(session.total_chunks):
            self.staging.write_chunk(session.id, index, data[index * CHUNK : (index + 1) * CHUNK])
        self.sessions.transition(session.id, UploadStatus.ASSEMBLING)


class TestFinalizeSuccess:
    def test_stores_and_hands_off(self, tmp_path: Path) -> None:
        harness = _Harness(tmp_path)
        harness.stage(_make_session())

        outcome = harness.finalizer.finalize("u-1")

        assert outcome.status is UploadStatus.HANDED_OFF
        assert outcome.content_hash == hashlib.sha256(DATA).hexdigest()
        assert outcome.error_kind is None
        session = harness.sessions.get("u-1")
        assert session.status is UploadStatus.HANDED_OFF
        assert session.storage_key == outcome.storage_key
        assert harness.objects.path_for(outcome.storage_key).read_bytes() == DATA  # type: ignore[arg-type]
        (message,) = harness.broker.published
        assert message.upload_id == "u-1"
        assert message.content_hash == hashlib.sha256(DATA).hexdigest()
        assert not harness.staging.session_dir("u-1").exists()

    def test_expected_hash_match_passes(self, tmp_path: Path) -> None:
        harness = _Harness(tmp_path)
        harness.stage(_make_session(expected_hash=hashlib.sha256(DATA).hexdigest()))

        assert harness.finalizer.finalize("u-1").status is UploadStatus.HANDED_OFF


class TestFinalizeDuplicate:
    def test_duplicate_links_existing_asset(self, tmp_path: Path) -> None:
        harness = _Harness(tmp_path)
        existing = AssetRecord(
            id="asset-1",
            owner_id="someone",
            content_hash=hashlib.sha256(DATA).hexdigest(),
            storage_key="uploads/someone/x/clip.mp4",
            content_type="video/mp4",
            status=AssetStatus.READY,
        )
        harness.assets.upsert_by_hash(existing)
        harness.stage(_make_session())

        outcome = harness.finalizer.finalize("u-1")

        assert outcome.status is UploadStatus.COMPLETE
        assert outcome.asset_id == "asset-1"
        assert outcome.error_kind is None
        session = harness.sessions.get("u-1")
        assert session.status is UploadStatus.COMPLETE
        assert session.asset_id == "asset-1"
        assert harness.broker.published == []
        assert not (tmp_path / "objects" / "media-test" / "uploads").exists()
        assert not harness.staging.session_dir("u-1").exists()

    def test_failed_asset_content_is_stored_and_published_again(self, tmp_path: Path) -> None:
        harness = _Harness(tmp_path)
        harness.assets.upsert_by_hash(
            AssetRecord(
                id="asset-1",
                owner_id="owner-1",
                content_hash=hashlib.sha256(DATA).hexdigest(),
                storage_key="uploads/owner-1/x/clip.mp4",
                content_type="video/mp4",
                status=AssetStatus.PROCESSING_FAILED,
            )
        )
        harness.stage(_make_session())

        outcome = harness.finalizer.finalize("u-1")

        assert outcome.status is UploadStatus.HANDED_OFF
        assert outcome.asset_id is None
        assert harness.sessions.get("u-1").asset_id is None
        assert harness.objects.exists(outcome.storage_key)  # type: ignore[arg-type]
        assert [m.upload_id for m in harness.broker.published] == ["u-1"]


class TestFinalizeFailures:
    def test_integrity_failure(self, tmp_path: Path) -> None:
        harness = _Harness(tmp_path)
        harness.stage(_make_session(expected_hash="0" * 64))

        outcome = harness.finalizer.finalize("u-1")

        assert outcome.status is UploadStatus.FAILED
        assert outcome.error_kind == "integrity"
        session = harness.sessions.get("u-1")
        assert session.status is UploadStatus.FAILED
        assert session.error_kind == "integrity"
        assert harness.broker.published == []
        assert not harness.staging.session_dir("u-1").exists()

    def test_size_mismatch(self, tmp_path: Path) -> None:
        harness = _Harness(tmp_path)
        harness.stage(_make_session(size=len(DATA) + 1))

        outcome = harness.finalizer.finalize("u-1")

        assert outcome.error_kind == "size_mismatch"
        assert harness.sessions.get("u-1").status is UploadStatus.FAILED

    def test_missing_chunk(self, tmp_path: Path) -> None:
        harness = _Harness(tmp_path)
        session = _make_session()
        harness.sessions.create(session)
        harness.staging.write_chunk("u-1", 0, DATA[:CHUNK])
        harness.sessions.transition("u-1", UploadStatus.ASSEMBLING)

        outcome = harness.finalizer.finalize("u-1")

        assert outcome.error_kind == "missing_chunk"
        assert "Chunk 1" in (outcome.error_message or "")

    def test_store_failure(self, tmp_path: Path) -> None:
        store = MagicMock()
        store.put_file.side_effect = StoreError("bucket gone")
        harness = _Harness(tmp_path, object_store=store)
        harness.stage(_make_session())

        outcome = harness.finalizer.finalize("u-1")

        assert outcome.status is UploadStatus.FAILED
        assert outcome.error_kind == "store"
        assert harness.broker.published == []

    def test_publish_failure_keeps_session_complete(self, tmp_path: Path) -> None:
        publisher = MagicMock()
        publisher.publish.side_effect = PublishError("broker down")
        harness = _Harness(tmp_path, publisher=publisher)
        harness.stage(_make_session())

        outcome = harness.finalizer.finalize("u-1")

        assert outcome.status is UploadStatus.COMPLETE
        assert outcome.error_kind == "publish"
        assert outcome.succeeded
        session = harness.sessions.get("u-1")
        assert session.status is UploadStatus.COMPLETE
        assert session.error_kind == "publish"
        assert session.storage_key is not None

    def test_unknown_session(self, tmp_path: Path) -> None:
        harness = _Harness(tmp_path)

        outcome = harness.finalizer.finalize("missing")

        assert outcome.status is UploadStatus.FAILED
        assert outcome.error_kind == "not_found"
