"""Byte-range planning for chunked transfers."""

from __future__ import annotations

from mediarelay.shared.models import Chunk


def plan_chunks(size: int, chunk_size: int) -> list[Chunk]:
    """Partition ``[0, size)`` into consecutive inclusive ranges of ``chunk_size``.

    The last chunk is shorter when ``size`` is not a multiple of ``chunk_size``.
    """
    if size <= 0:
        raise ValueError(f"size must be positive, got {size}")
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return [
        Chunk(index=index, start=start, end=min(start + chunk_size, size) - 1)
        for index, start in enumerate(range(0, size, chunk_size))
    ]
