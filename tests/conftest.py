import threading
from collections.abc import Callable, Generator
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from media_ingest.config.settings import Settings
from media_ingest.database.repositories.memory_asset_repository import InMemoryAssetRepository
from media_ingest.ingest.service import UploadService, build_upload_service
from media_ingest.queue.memory_adapter import InMemoryBroker
from media_ingest.sessions.memory_store import InMemorySessionStore
from media_ingest.storage.local_adapter import LocalObjectStore
from media_ingest.transcode.exceptions import TranscodeToolError
from media_ingest.transcode.ffmpeg import FFmpegRunner
from media_ingest.transcode.orchestrator import TranscodeOrchestrator
from media_ingest.transcode.profiles import TranscodeProfile

CHUNK_SIZE = 1000


def make_settings(tmp_path: Path, **overrides: object) -> Settings:
    """Settings wired to the in-process backends under tmp_path."""
    values: dict[str, object] = {
        "session_backend": "memory",
        "queue_backend": "memory",
        "storage_backend": "local",
        "asset_store_backend": "memory",
        "storage_local_root": str(tmp_path / "objects"),
        "staging_root": str(tmp_path / "staging"),
        "work_root": str(tmp_path / "work"),
        "chunk_size_bytes": CHUNK_SIZE,
        "assembly_read_block_bytes": 64,
        "assembly_high_water_mark_bytes": 256,
        "assembly_workers": 2,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)  # type: ignore[arg-type]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def object_store(tmp_path: Path) -> LocalObjectStore:
    return LocalObjectStore(tmp_path / "objects", "media-test")


@pytest.fixture
def broker() -> InMemoryBroker:
    return InMemoryBroker()


@pytest.fixture
def asset_repo() -> InMemoryAssetRepository:
    return InMemoryAssetRepository()


@pytest.fixture
def upload_service(
    settings: Settings,
    session_store: InMemorySessionStore,
    object_store: LocalObjectStore,
    broker: InMemoryBroker,
    asset_repo: InMemoryAssetRepository,
) -> Generator[UploadService, None, None]:
    service = build_upload_service(settings, session_store, object_store, broker, asset_repo)
    try:
        yield service
    finally:
        service.close()


class FakeFFmpegRunner(FFmpegRunner):
    """Writes placeholder HLS output instead of invoking ffmpeg."""

    def __init__(self, fail_profiles: tuple[str, ...] = (), duration: float | None = 60.0) -> None:
        super().__init__()
        self.fail_profiles = set(fail_profiles)
        self.duration = duration
        self.transcoded: list[str] = []
        self._lock = threading.Lock()

    def transcode(self, source: Path, profile: TranscodeProfile, output_dir: Path) -> Path:
        with self._lock:
            self.transcoded.append(profile.name)
        if profile.name in self.fail_profiles:
            raise TranscodeToolError(
                f"transcode {profile.name} failed with exit code 1",
                stderr="Conversion failed!",
                returncode=1,
            )
        output_dir.mkdir(parents=True, exist_ok=True)
        (output_dir / "segment_00000.ts").write_bytes(source.read_bytes()[:16])
        playlist = output_dir / "index.m3u8"
        playlist.write_text("#EXTM3U\n#EXT-X-ENDLIST\n", encoding="utf-8")
        return playlist

    def extract_thumbnail(self, source: Path, output: Path, at_seconds: float, width: int) -> Path:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(b"\xff\xd8jpeg")
        return output

    def probe_duration(self, source: Path) -> float:
        if self.duration is None:
            raise TranscodeToolError("ffprobe reported no duration")
        return self.duration


TEST_PROFILES = [
    TranscodeProfile("720p", 1280, 720, 2_800_000, 128_000),
    TranscodeProfile("480p", 854, 480, 1_400_000, 128_000),
    TranscodeProfile("360p", 640, 360, 800_000, 96_000),
]


@pytest.fixture
def make_orchestrator(
    tmp_path: Path,
    object_store: LocalObjectStore,
    asset_repo: InMemoryAssetRepository,
    session_store: InMemorySessionStore,
) -> Generator[Callable[..., TranscodeOrchestrator], None, None]:
    """Factory for orchestrators backed by FakeFFmpegRunner."""
    created: list[TranscodeOrchestrator] = []

    def factory(
        fail_profiles: tuple[str, ...] = (), duration: float | None = 60.0
    ) -> TranscodeOrchestrator:
        orchestrator = TranscodeOrchestrator(
            profiles=TEST_PROFILES,
            runner=FakeFFmpegRunner(fail_profiles, duration),
            object_store=object_store,
            asset_repo=asset_repo,
            codec_pool=ThreadPoolExecutor(max_workers=2, thread_name_prefix="codec"),
            work_root=tmp_path / "work",
            session_store=session_store,
        )
        created.append(orchestrator)
        return orchestrator

    yield factory
    for orchestrator in created:
        orchestrator.close()
