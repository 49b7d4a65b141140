import os
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from media_ingest.ingest.exceptions import MissingChunkError
from media_ingest.ingest.staging import ChunkStaging
from media_ingest.logging.logger import Log


class BackpressureSink:
    """Buffered writer that reports when it cannot accept more data.

    write() returns False once the buffered bytes reach the high-water mark;
    the producer must call drain() before writing again.
    """

    def __init__(self, fileobj: BinaryIO, high_water_mark: int) -> None:
        self._fileobj = fileobj
        self._high_water_mark = high_water_mark
        self._buffer = bytearray()
        self.bytes_written = 0
        self.drain_count = 0
        self.peak_buffered = 0

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def write(self, data: bytes) -> bool:
        self._buffer.extend(data)
        self.peak_buffered = max(self.peak_buffered, len(self._buffer))
        return len(self._buffer) < self._high_water_mark

    def drain(self) -> None:
        if not self._buffer:
            return
        self._fileobj.write(self._buffer)
        self.bytes_written += len(self._buffer)
        self._buffer.clear()
        self.drain_count += 1

    def close(self) -> None:
        self.drain()
        self._fileobj.flush()
        os.fsync(self._fileobj.fileno())


@dataclass(frozen=True)
class AssemblyResult:
    path: Path
    bytes_written: int


class ChunkAssembler:
    """Concatenates staged chunks 0..total-1 in ascending order."""

    def __init__(
        self,
        staging: ChunkStaging,
        read_block_bytes: int,
        high_water_mark_bytes: int,
    ) -> None:
        self._staging = staging
        self._read_block_bytes = read_block_bytes
        self._high_water_mark_bytes = high_water_mark_bytes

    def assemble(self, upload_id: str, total_chunks: int) -> AssemblyResult:
        """Stream every chunk into the assembled file, deleting each as it lands.

        Raises:
            MissingChunkError: for the lowest missing index; nothing is consumed.
            OSError: on any read/write failure.
        """
        missing = self.first_missing(upload_id, total_chunks)
        if missing is not None:
            raise MissingChunkError(missing)

        output = self._staging.assembled_path(upload_id)
        with open(output, "wb") as fh:
            sink = BackpressureSink(fh, self._high_water_mark_bytes)
            for index in range(total_chunks):
                self._copy_chunk(upload_id, index, sink)
            sink.close()

        Log.info(
            f"Assembled {total_chunks} chunks for upload {upload_id}: "
            f"{sink.bytes_written} bytes, {sink.drain_count} drains"
        )
        return AssemblyResult(path=output, bytes_written=sink.bytes_written)

    def first_missing(self, upload_id: str, total_chunks: int) -> int | None:
        for index in range(total_chunks):
            if not self._staging.chunk_path(upload_id, index).exists():
                return index
        return None

    def _copy_chunk(self, upload_id: str, index: int, sink: BackpressureSink) -> None:
        path = self._staging.chunk_path(upload_id, index)
        try:
            src = open(path, "rb")
        except FileNotFoundError as exc:
            raise MissingChunkError(index) from exc
        with src:
            while block := src.read(self._read_block_bytes):
                if not sink.write(block):
                    sink.drain()
        sink.drain()
        path.unlink()
