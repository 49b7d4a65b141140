from media_ingest.ingest.exceptions import ErrorKind, IngestError


class TranscodeToolError(IngestError):
    """Raised when an ffmpeg/ffprobe invocation fails. Carries captured stderr."""

    kind = ErrorKind.TRANSCODE_TOOL

    def __init__(self, message: str, stderr: str = "", returncode: int | None = None) -> None:
        super().__init__(message)
        self.stderr = stderr
        self.returncode = returncode


class ProfileConfigError(Exception):
    """Raised when the transcode profile file is unreadable or has no usable entries."""
