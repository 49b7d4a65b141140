import json
import subprocess
from pathlib import Path

from media_ingest.logging.logger import Log
from media_ingest.transcode.exceptions import TranscodeToolError
from media_ingest.transcode.profiles import TranscodeProfile

PLAYLIST_NAME = "index.m3u8"
SEGMENT_PATTERN = "segment_%05d.ts"
STDERR_TAIL_CHARS = 4000

THUMBNAIL_MIN_OFFSET = 3.0
THUMBNAIL_MAX_OFFSET = 30.0


def thumbnail_offset(duration: float | None) -> float:
    """Seek position for the poster frame: 10% in, clamped to 3..30 seconds.

    Clips shorter than the lower bound are sampled at their midpoint.
    """
    if duration is None or duration <= 0:
        return THUMBNAIL_MIN_OFFSET
    offset = min(max(duration * 0.1, THUMBNAIL_MIN_OFFSET), THUMBNAIL_MAX_OFFSET)
    if offset >= duration:
        offset = duration / 2
    return offset


class FFmpegRunner:
    """Builds and runs ffmpeg/ffprobe command lines."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        loglevel: str = "warning",
        segment_seconds: int = 6,
    ) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.loglevel = loglevel
        self.segment_seconds = segment_seconds

    def build_transcode_command(
        self, source: Path, profile: TranscodeProfile, output_dir: Path
    ) -> list[str]:
        """HLS VOD rendition, scaled and padded to the exact profile size."""
        w, h = profile.width, profile.height
        vb = profile.video_bitrate
        cmd = [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel", self.loglevel,
            "-y",
            "-i", str(source),
            "-vf",
            f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
            f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2,setsar=1",
            "-c:v", "libx264",
            "-preset", profile.preset,
            "-b:v", str(vb),
            "-maxrate", str(int(vb * 1.07)),
            "-bufsize", str(vb * 2),
        ]
        if profile.frame_rate:
            cmd.extend(["-r", str(profile.frame_rate)])
        if profile.keyframe_interval:
            cmd.extend([
                "-g", str(profile.keyframe_interval),
                "-keyint_min", str(profile.keyframe_interval),
                "-sc_threshold", "0",
            ])
        if profile.tune:
            cmd.extend(["-tune", profile.tune])
        cmd.extend([
            "-c:a", "aac",
            "-b:a", str(profile.audio_bitrate),
            "-ac", "2",
            "-ar", "48000",
            "-f", "hls",
            "-hls_time", str(self.segment_seconds),
            "-hls_playlist_type", "vod",
            "-hls_list_size", "0",
            "-hls_segment_type", "mpegts",
            "-hls_segment_filename", str(output_dir / SEGMENT_PATTERN),
            str(output_dir / PLAYLIST_NAME),
        ])
        return cmd

    def build_thumbnail_command(
        self, source: Path, output: Path, at_seconds: float, width: int
    ) -> list[str]:
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel", self.loglevel,
            "-y",
            "-ss", f"{at_seconds:.3f}",
            "-i", str(source),
            "-frames:v", "1",
            "-vf", f"scale={width}:-2",
            "-q:v", "2",
            str(output),
        ]

    def build_probe_command(self, source: Path) -> list[str]:
        return [
            self.ffprobe_path,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "json",
            str(source),
        ]

    def transcode(self, source: Path, profile: TranscodeProfile, output_dir: Path) -> Path:
        """Run one rendition; returns the rendition playlist path.

        Raises:
            TranscodeToolError: if ffmpeg fails or produces no playlist.
        """
        output_dir.mkdir(parents=True, exist_ok=True)
        self._run(self.build_transcode_command(source, profile, output_dir), f"transcode {profile.name}")
        playlist = output_dir / PLAYLIST_NAME
        if not playlist.exists():
            raise TranscodeToolError(f"ffmpeg produced no playlist for {profile.name}")
        return playlist

    def extract_thumbnail(self, source: Path, output: Path, at_seconds: float, width: int) -> Path:
        output.parent.mkdir(parents=True, exist_ok=True)
        self._run(self.build_thumbnail_command(source, output, at_seconds, width), "thumbnail")
        if not output.exists():
            raise TranscodeToolError("ffmpeg produced no thumbnail")
        return output

    def probe_duration(self, source: Path) -> float:
        """Container duration in seconds.

        Raises:
            TranscodeToolError: if ffprobe fails or reports no duration.
        """
        result = self._run(self.build_probe_command(source), "probe")
        try:
            payload = json.loads(result.stdout or "{}")
            return float(payload["format"]["duration"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            raise TranscodeToolError(f"ffprobe reported no duration: {exc}") from exc

    def _run(self, cmd: list[str], description: str) -> subprocess.CompletedProcess[str]:
        Log.debug(f"Running {description}: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except OSError as exc:
            raise TranscodeToolError(f"{description}: cannot execute {cmd[0]}: {exc}") from exc
        if result.returncode != 0:
            stderr = (result.stderr or "")[-STDERR_TAIL_CHARS:]
            raise TranscodeToolError(
                f"{description} failed with exit code {result.returncode}",
                stderr=stderr,
                returncode=result.returncode,
            )
        return result
