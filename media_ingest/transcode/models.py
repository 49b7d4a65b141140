from dataclasses import dataclass, field

from media_ingest.database.models import AssetRecord, Variant
from media_ingest.transcode.profiles import TranscodeProfile


@dataclass(frozen=True)
class RenditionResult:
    """Outcome of one profile's transcode and upload."""

    profile: TranscodeProfile
    variant: Variant | None = None
    error_kind: str | None = None
    error_message: str | None = None
    stderr: str = ""

    @property
    def succeeded(self) -> bool:
        return self.variant is not None


@dataclass
class TranscodeJobResult:
    """Outcome of one processing message."""

    content_hash: str
    asset: AssetRecord
    renditions: list[RenditionResult] = field(default_factory=list)
    skipped: bool = False
    created: bool = False

    @property
    def failed_profiles(self) -> list[str]:
        return [r.profile.name for r in self.renditions if not r.succeeded]
