import io
import os
import random
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from media_ingest.ingest.assembler import BackpressureSink, ChunkAssembler
from media_ingest.ingest.exceptions import MissingChunkError
from media_ingest.ingest.staging import ChunkStaging


def _stage_all(staging: ChunkStaging, upload_id: str, chunks: list[bytes], order: list[int]) -> None:
    for index in order:
        staging.write_chunk(upload_id, index, chunks[index])


def _make_chunks(count: int, size: int = 700) -> list[bytes]:
    rng = random.Random(42)
    return [bytes(rng.getrandbits(8) for _ in range(size)) for _ in range(count)]


class TestChunkStaging:
    def test_write_chunk_is_atomic_file(self, tmp_path: Path) -> None:
        staging = ChunkStaging(tmp_path)

        path = staging.write_chunk("u-1", 3, b"abc")

        assert path.read_bytes() == b"abc"
        assert path.name == "000003.part"
        assert not list(path.parent.glob("*.tmp"))

    def test_remove_deletes_session_dir(self, tmp_path: Path) -> None:
        staging = ChunkStaging(tmp_path)
        staging.write_chunk("u-1", 0, b"abc")

        staging.remove("u-1")

        assert not staging.session_dir("u-1").exists()

    def test_remove_missing_is_noop(self, tmp_path: Path) -> None:
        ChunkStaging(tmp_path).remove("never-created")


class TestBackpressureSink:
    def test_write_signals_at_high_water_mark(self) -> None:
        sink = BackpressureSink(io.BytesIO(), high_water_mark=10)

        assert sink.write(b"12345") is True
        assert sink.write(b"67890") is False

    def test_drain_flushes_buffer(self) -> None:
        out = io.BytesIO()
        sink = BackpressureSink(out, high_water_mark=10)
        sink.write(b"hello")

        sink.drain()

        assert out.getvalue() == b"hello"
        assert sink.buffered == 0
        assert sink.bytes_written == 5
        assert sink.drain_count == 1

    def test_drain_empty_is_noop(self) -> None:
        out = MagicMock()
        sink = BackpressureSink(out, high_water_mark=10)

        sink.drain()

        out.write.assert_not_called()


class TestChunkAssembler:
    def test_out_of_order_upload_assembles_identically(self, tmp_path: Path) -> None:
        staging = ChunkStaging(tmp_path)
        chunks = _make_chunks(5)
        _stage_all(staging, "u-1", chunks, [3, 0, 4, 1, 2])
        assembler = ChunkAssembler(staging, read_block_bytes=64, high_water_mark_bytes=200)

        result = assembler.assemble("u-1", 5)

        assert result.path.read_bytes() == b"".join(chunks)
        assert result.bytes_written == 5 * 700

    def test_chunk_files_are_deleted(self, tmp_path: Path) -> None:
        staging = ChunkStaging(tmp_path)
        _stage_all(staging, "u-1", _make_chunks(3), [0, 1, 2])
        assembler = ChunkAssembler(staging, read_block_bytes=64, high_water_mark_bytes=200)

        assembler.assemble("u-1", 3)

        assert not any(staging.chunk_path("u-1", i).exists() for i in range(3))

    def test_buffer_stays_bounded(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        staging = ChunkStaging(tmp_path)
        _stage_all(staging, "u-1", _make_chunks(4, size=1000), [0, 1, 2, 3])
        sinks: list[BackpressureSink] = []
        original_init = BackpressureSink.__init__

        def tracking_init(self: BackpressureSink, fileobj: object, high_water_mark: int) -> None:
            original_init(self, fileobj, high_water_mark)  # type: ignore[arg-type]
            sinks.append(self)

        monkeypatch.setattr(BackpressureSink, "__init__", tracking_init)
        assembler = ChunkAssembler(staging, read_block_bytes=50, high_water_mark_bytes=200)

        assembler.assemble("u-1", 4)

        (sink,) = sinks
        assert sink.peak_buffered < 200 + 50
        assert sink.drain_count > 4

    def test_missing_chunk_names_lowest_index(self, tmp_path: Path) -> None:
        staging = ChunkStaging(tmp_path)
        chunks = _make_chunks(4)
        _stage_all(staging, "u-1", chunks, [0, 3])
        assembler = ChunkAssembler(staging, read_block_bytes=64, high_water_mark_bytes=200)

        with pytest.raises(MissingChunkError) as exc_info:
            assembler.assemble("u-1", 4)

        assert exc_info.value.index == 1
        assert "Chunk 1 is missing" in str(exc_info.value)
        assert staging.chunk_path("u-1", 0).exists()

    def test_first_missing(self, tmp_path: Path) -> None:
        staging = ChunkStaging(tmp_path)
        _stage_all(staging, "u-1", _make_chunks(3), [0, 1, 2])
        assembler = ChunkAssembler(staging, read_block_bytes=64, high_water_mark_bytes=200)

        assert assembler.first_missing("u-1", 3) is None
        os.remove(staging.chunk_path("u-1", 2))
        assert assembler.first_missing("u-1", 3) == 2
