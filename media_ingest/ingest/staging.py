import os
import shutil
from pathlib import Path

from media_ingest.logging.logger import Log


class ChunkStaging:
    """Per-session staging directories: {root}/{upload_id}/chunks/{index}.part.

    A staging directory is owned by exactly one session.
    """

    def __init__(self, root: Path) -> None:
        self._root = root

    def session_dir(self, upload_id: str) -> Path:
        return self._root / upload_id

    def chunk_path(self, upload_id: str, index: int) -> Path:
        return self.session_dir(upload_id) / "chunks" / f"{index:06d}.part"

    def assembled_path(self, upload_id: str) -> Path:
        return self.session_dir(upload_id) / "assembled.bin"

    def write_chunk(self, upload_id: str, index: int, data: bytes) -> Path:
        """Write chunk bytes atomically so a reader never sees a partial chunk."""
        target = self.chunk_path(upload_id, index)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(".tmp")
        try:
            with open(tmp, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, target)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise
        return target

    def remove(self, upload_id: str) -> None:
        """Best-effort removal of a session's staging directory."""
        path = self.session_dir(upload_id)
        if not path.exists():
            return
        try:
            shutil.rmtree(path)
            Log.debug(f"Removed staging for upload {upload_id}")
        except OSError as exc:
            Log.warning(f"Could not remove staging for upload {upload_id}: {exc}")
