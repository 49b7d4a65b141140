import shutil
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

from media_ingest.config.settings import Settings
from media_ingest.database.models import AssetRecord, AssetStatus, Variant
from media_ingest.database.repositories.base import BaseAssetRepository
from media_ingest.ingest.exceptions import IngestError, NotFoundError, StoreError
from media_ingest.logging.logger import Log
from media_ingest.queue.messages import ProcessingMessage
from media_ingest.sessions.base import BaseSessionStore
from media_ingest.storage.base import BaseObjectStore
from media_ingest.storage.keys import (
    manifest_key,
    rendition_key,
    safe_filename,
    thumbnail_key,
)
from media_ingest.transcode.exceptions import TranscodeToolError
from media_ingest.transcode.ffmpeg import PLAYLIST_NAME, FFmpegRunner, thumbnail_offset
from media_ingest.transcode.manifest import MANIFEST_CONTENT_TYPE, ManifestBuilder
from media_ingest.transcode.models import RenditionResult, TranscodeJobResult
from media_ingest.transcode.profiles import TranscodeProfile, load_profiles

_SEGMENT_CONTENT_TYPES = {
    ".m3u8": MANIFEST_CONTENT_TYPE,
    ".ts": "video/mp2t",
}


class TranscodeOrchestrator:
    """Turns one processing message into an asset with renditions.

    Every codec invocation across all jobs goes through the shared codec
    pool, so at most N ffmpeg processes run per worker process.
    """

    def __init__(
        self,
        profiles: list[TranscodeProfile],
        runner: FFmpegRunner,
        object_store: BaseObjectStore,
        asset_repo: BaseAssetRepository,
        codec_pool: ThreadPoolExecutor,
        work_root: Path,
        session_store: BaseSessionStore | None = None,
        thumbnail_width: int = 640,
        manifest_builder: ManifestBuilder | None = None,
    ) -> None:
        self._profiles = profiles
        self._runner = runner
        self._object_store = object_store
        self._asset_repo = asset_repo
        self._codec_pool = codec_pool
        self._work_root = work_root
        self._session_store = session_store
        self._thumbnail_width = thumbnail_width
        self._manifest_builder = manifest_builder or ManifestBuilder()

    def process(self, message: ProcessingMessage) -> TranscodeJobResult:
        """Transcode a stored upload, or link it to the existing ready asset.

        Raises:
            StoreError: if the source cannot be downloaded or the asset
                cannot be recorded. The message should be retried.
        """
        content_hash = message.content_hash
        existing = self._asset_repo.find_by_hash(content_hash)
        if existing is not None and existing.status is AssetStatus.READY:
            Log.info(
                f"Content {content_hash} already ready as asset {existing.id}; "
                f"skipping transcode for upload {message.upload_id}"
            )
            self._discard_redundant_source(message, existing)
            self._link_session(message.upload_id, existing.id)
            return TranscodeJobResult(content_hash=content_hash, asset=existing, skipped=True)

        work_dir = self._work_root / f"{content_hash}-{uuid.uuid4().hex[:8]}"
        try:
            return self._transcode_all(message, work_dir)
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

    def close(self) -> None:
        self._codec_pool.shutdown(wait=True)

    def _transcode_all(self, message: ProcessingMessage, work_dir: Path) -> TranscodeJobResult:
        content_hash = message.content_hash
        source = work_dir / f"source-{safe_filename(Path(message.storage_key).name)}"
        work_dir.mkdir(parents=True, exist_ok=True)
        self._object_store.download_file(message.storage_key, source)
        Log.info(f"Downloaded {message.storage_key} for transcoding ({content_hash})")

        duration = self._probe(source)
        rendition_futures: list[Future[RenditionResult]] = [
            self._codec_pool.submit(self._render_profile, source, profile, work_dir, content_hash)
            for profile in self._profiles
        ]
        thumbnail_future = self._codec_pool.submit(
            self._render_thumbnail, source, work_dir, content_hash, duration
        )
        renditions = [future.result() for future in rendition_futures]
        thumb_key = thumbnail_future.result()

        succeeded = [r for r in renditions if r.succeeded]
        manifest = self._publish_manifest(content_hash, succeeded) if succeeded else None
        status = AssetStatus.READY if succeeded else AssetStatus.PROCESSING_FAILED
        for failed in (r for r in renditions if not r.succeeded):
            Log.warning(
                f"Profile {failed.profile.name} failed for {content_hash}: "
                f"{failed.error_message}"
            )

        candidate = AssetRecord(
            id=str(uuid.uuid4()),
            owner_id=message.owner_id,
            content_hash=content_hash,
            storage_key=message.storage_key,
            content_type=message.file_type,
            status=status,
            variants={r.profile.name: r.variant for r in succeeded if r.variant is not None},
            thumbnail_key=thumb_key,
            manifest_key=manifest,
            metadata=dict(message.metadata),
        )
        result = self._asset_repo.upsert_by_hash(candidate)
        asset = result.asset
        Log.info(
            f"Asset {asset.id} {'created' if result.created else 'updated'} for "
            f"{content_hash}: {asset.status.value}, "
            f"{len(succeeded)}/{len(renditions)} renditions"
        )
        self._discard_redundant_source(message, asset)
        self._link_session(message.upload_id, asset.id)
        return TranscodeJobResult(
            content_hash=content_hash,
            asset=asset,
            renditions=renditions,
            created=result.created,
        )

    def _probe(self, source: Path) -> float | None:
        try:
            duration = self._runner.probe_duration(source)
        except TranscodeToolError as exc:
            Log.warning(f"Could not probe {source.name}: {exc} {exc.stderr}".rstrip())
            return None
        Log.debug(f"Probed {source.name}: {duration:.2f}s")
        return duration

    def _render_profile(
        self,
        source: Path,
        profile: TranscodeProfile,
        work_dir: Path,
        content_hash: str,
    ) -> RenditionResult:
        output_dir = work_dir / "renditions" / safe_filename(profile.name)
        try:
            self._runner.transcode(source, profile, output_dir)
            for path in sorted(output_dir.iterdir()):
                self._object_store.put_file(
                    path,
                    rendition_key(content_hash, profile.name, path.name),
                    _SEGMENT_CONTENT_TYPES.get(path.suffix, "application/octet-stream"),
                )
        except TranscodeToolError as exc:
            return RenditionResult(
                profile=profile,
                error_kind=exc.kind.value,
                error_message=str(exc),
                stderr=exc.stderr,
            )
        except IngestError as exc:
            return RenditionResult(profile=profile, error_kind=exc.kind.value, error_message=str(exc))
        except OSError as exc:
            return RenditionResult(profile=profile, error_kind="io", error_message=str(exc))

        Log.info(f"Rendition {profile.name} ready for {content_hash}")
        return RenditionResult(
            profile=profile,
            variant=Variant(
                profile=profile.name,
                width=profile.width,
                height=profile.height,
                bitrate=profile.bandwidth,
                key=rendition_key(content_hash, profile.name, PLAYLIST_NAME),
            ),
        )

    def _render_thumbnail(
        self,
        source: Path,
        work_dir: Path,
        content_hash: str,
        duration: float | None,
    ) -> str | None:
        output = work_dir / "thumbnail.jpg"
        key = thumbnail_key(content_hash)
        try:
            self._runner.extract_thumbnail(
                source, output, thumbnail_offset(duration), self._thumbnail_width
            )
            self._object_store.put_file(output, key, "image/jpeg")
        except (IngestError, OSError) as exc:
            Log.warning(f"Thumbnail failed for {content_hash}: {exc}")
            return None
        return key

    def _publish_manifest(self, content_hash: str, succeeded: list[RenditionResult]) -> str | None:
        entries = [(r.profile, f"{safe_filename(r.profile.name)}/{PLAYLIST_NAME}") for r in succeeded]
        body = self._manifest_builder.build(entries)
        key = manifest_key(content_hash)
        try:
            self._object_store.put_bytes(body.encode("utf-8"), key, MANIFEST_CONTENT_TYPE)
        except StoreError as exc:
            Log.error(f"Manifest upload failed for {content_hash}: {exc}")
            return None
        return key

    def _discard_redundant_source(self, message: ProcessingMessage, asset: AssetRecord) -> None:
        if asset.storage_key == message.storage_key:
            return
        Log.info(
            f"Deleting redundant source {message.storage_key}; "
            f"asset {asset.id} keeps {asset.storage_key}"
        )
        try:
            self._object_store.delete(message.storage_key)
        except StoreError as exc:
            Log.warning(f"Could not delete redundant source {message.storage_key}: {exc}")

    def _link_session(self, upload_id: str, asset_id: str) -> None:
        if self._session_store is None:
            return
        try:
            self._session_store.update_fields(upload_id, asset_id=asset_id)
        except NotFoundError:
            Log.debug(f"Upload {upload_id} no longer tracked; asset {asset_id} not linked")


def build_orchestrator(
    settings: Settings,
    object_store: BaseObjectStore,
    asset_repo: BaseAssetRepository,
    session_store: BaseSessionStore | None = None,
    profiles: list[TranscodeProfile] | None = None,
) -> TranscodeOrchestrator:
    """Build an orchestrator with its shared codec pool."""
    if profiles is None:
        path = Path(settings.transcode_profiles_path) if settings.transcode_profiles_path else None
        profiles = load_profiles(path)
    runner = FFmpegRunner(
        ffmpeg_path=settings.ffmpeg_path,
        ffprobe_path=settings.ffprobe_path,
        loglevel=settings.ffmpeg_loglevel,
        segment_seconds=settings.hls_segment_seconds,
    )
    codec_pool = ThreadPoolExecutor(
        max_workers=settings.transcode_concurrency,
        thread_name_prefix="codec",
    )
    return TranscodeOrchestrator(
        profiles=profiles,
        runner=runner,
        object_store=object_store,
        asset_repo=asset_repo,
        codec_pool=codec_pool,
        work_root=Path(settings.work_root),
        session_store=session_store,
        thumbnail_width=settings.thumbnail_width,
    )
