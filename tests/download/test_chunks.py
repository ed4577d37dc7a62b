"""Tests for byte-range planning."""

from __future__ import annotations

import pytest

from mediarelay.download.chunks import plan_chunks


class TestPlanChunks:
    def test_exact_multiple(self) -> None:
        chunks = plan_chunks(4096, 1024)
        assert [c.range_header for c in chunks] == [
            "bytes=0-1023",
            "bytes=1024-2047",
            "bytes=2048-3071",
            "bytes=3072-4095",
        ]

    def test_short_last_chunk(self) -> None:
        chunks = plan_chunks(2500, 1024)
        assert [(c.start, c.end) for c in chunks] == [(0, 1023), (1024, 2047), (2048, 2499)]
        assert sum(c.length for c in chunks) == 2500

    def test_smaller_than_one_chunk(self) -> None:
        assert [(c.index, c.start, c.end) for c in plan_chunks(10, 1024)] == [(0, 0, 9)]

    @pytest.mark.parametrize(("size", "chunk_size"), [(0, 1024), (-1, 1024), (10, 0)])
    def test_invalid(self, size: int, chunk_size: int) -> None:
        with pytest.raises(ValueError):
            plan_chunks(size, chunk_size)
