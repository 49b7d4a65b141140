import json
import re
from dataclasses import dataclass
from pathlib import Path

from media_ingest.logging.logger import Log
from media_ingest.transcode.exceptions import ProfileConfigError

_DEFAULT_PROFILES_PATH = Path(__file__).parent / "profiles.json"
_BITRATE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([kKmM]?)\s*$")
_FRAME_RATE = re.compile(r"^\s*(\d+(?:\.\d+)?)(?:\s*/\s*(\d+))?\s*$")

REQUIRED_FIELDS = ("name", "width", "height", "videoBitrate", "audioBitrate")


@dataclass(frozen=True)
class TranscodeProfile:
    """One output rendition. Bitrates are in bits per second."""

    name: str
    width: int
    height: int
    video_bitrate: int
    audio_bitrate: int
    preset: str = "veryfast"
    frame_rate: str | None = None
    keyframe_interval: int | None = None
    tune: str | None = None

    @property
    def bandwidth(self) -> int:
        return self.video_bitrate + self.audio_bitrate


def parse_bitrate(value: object) -> int:
    """Parse 2500000, "2500k" or "2.5M" into bits per second.

    Raises:
        ValueError: for anything else.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid bitrate: {value!r}")
    if isinstance(value, int):
        bitrate = value
    else:
        match = _BITRATE.match(str(value))
        if match is None:
            raise ValueError(f"Invalid bitrate: {value!r}")
        number, unit = match.groups()
        factor = {"": 1, "k": 1000, "m": 1_000_000}[unit.lower()]
        bitrate = int(float(number) * factor)
    if bitrate <= 0:
        raise ValueError(f"Bitrate must be positive: {value!r}")
    return bitrate


def parse_frame_rate(value: object) -> str:
    """Parse 30, 29.97 or "30000/1001" into the form ffmpeg takes for -r.

    Raises:
        ValueError: for anything else.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid frame rate: {value!r}")
    match = _FRAME_RATE.match(str(value))
    if match is None:
        raise ValueError(f"Invalid frame rate: {value!r}")
    number, denominator = match.groups()
    if denominator is not None:
        if "." in number or int(number) <= 0 or int(denominator) <= 0:
            raise ValueError(f"Invalid frame rate: {value!r}")
        return f"{int(number)}/{int(denominator)}"
    rate = float(number)
    if rate <= 0:
        raise ValueError(f"Frame rate must be positive: {value!r}")
    return str(int(rate)) if rate.is_integer() else number


def profile_from_dict(entry: dict[str, object]) -> TranscodeProfile:
    """Build a profile from one config entry.

    Raises:
        ValueError: if a required field is missing or malformed.
    """
    missing = [name for name in REQUIRED_FIELDS if entry.get(name) in (None, "")]
    if missing:
        raise ValueError(f"missing fields {missing}")

    width = int(str(entry["width"]))
    height = int(str(entry["height"]))
    if width <= 0 or height <= 0:
        raise ValueError(f"invalid resolution {width}x{height}")
    frame_rate = entry.get("frameRate")
    keyframe_interval = entry.get("keyframeInterval")
    tune = entry.get("tune")
    return TranscodeProfile(
        name=str(entry["name"]),
        width=width,
        height=height,
        video_bitrate=parse_bitrate(entry["videoBitrate"]),
        audio_bitrate=parse_bitrate(entry["audioBitrate"]),
        preset=str(entry.get("preset") or "veryfast"),
        frame_rate=parse_frame_rate(frame_rate) if frame_rate is not None else None,
        keyframe_interval=int(str(keyframe_interval)) if keyframe_interval is not None else None,
        tune=str(tune) if tune else None,
    )


def load_profiles(path: Path | None = None) -> list[TranscodeProfile]:
    """Load transcode profiles from a JSON file.

    Args:
        path: Profile file. Defaults to the bundled profiles.json.
              Accepts either a list or {"profiles": [...]}.

    Returns:
        Valid profiles in file order. Incomplete entries are skipped
        with a warning.

    Raises:
        ProfileConfigError: if the file cannot be read or parsed, or no
            entry is usable.
    """
    if path is None:
        path = _DEFAULT_PROFILES_PATH
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ProfileConfigError(f"Failed to load transcode profiles: {exc}") from exc

    entries = raw.get("profiles") if isinstance(raw, dict) else raw
    if not isinstance(entries, list):
        raise ProfileConfigError(f"{path}: expected a list of profiles")

    profiles: list[TranscodeProfile] = []
    seen: set[str] = set()
    for position, entry in enumerate(entries):
        if not isinstance(entry, dict):
            Log.warning(f"Skipping transcode profile #{position}: not an object")
            continue
        try:
            profile = profile_from_dict(entry)
        except ValueError as exc:
            Log.warning(f"Skipping transcode profile #{position} ({entry.get('name')}): {exc}")
            continue
        if profile.name in seen:
            Log.warning(f"Skipping duplicate transcode profile '{profile.name}'")
            continue
        seen.add(profile.name)
        profiles.append(profile)

    if not profiles:
        raise ProfileConfigError(f"{path}: no usable transcode profiles")
    Log.info(f"Loaded {len(profiles)} transcode profiles: {[p.name for p in profiles]}")
    return profiles
