"""Chunk range planning for splitting oversized documents.

Ranges are half-open, cover ``[0, total)`` contiguously and overlap their
neighbours by at most ``overlap`` units. The same planner is used for text
(units are characters) and image documents (units are pages).
"""

from __future__ import annotations

import math
from typing import Sequence, TypeVar

from src.models.document import ChunkRange

T = TypeVar("T")


def plan_chunk_ranges(total: int, split_count: int, overlap: int = 0) -> list[ChunkRange]:
    """Split ``[0, total)`` into ``split_count`` overlapping ranges.

    Args:
        total: Number of units to cover.
        split_count: Requested number of ranges.
        overlap: Units each range extends into its neighbours.

    Returns:
        Ranges in order. A degenerate request (``total == 0`` or
        ``split_count <= 0``) yields a single empty range.

    Example:
        >>> plan_chunk_ranges(10, 2, 1)
        [ChunkRange(start=0, end=6), ChunkRange(start=5, end=10)]
    """
    if total <= 0 or split_count <= 0:
        return [ChunkRange(0, 0)]

    overlap = max(0, overlap)
    base = math.ceil(total / split_count)
    ranges: list[ChunkRange] = []

    for index in range(split_count):
        start = index * base
        end = min((index + 1) * base, total)

        if index > 0:
            start -= overlap
        if index < split_count - 1:
            end += overlap

        start = max(0, min(start, total))
        end = max(0, min(end, total))

        # Keep ranges contiguous even when base windows run past the end
        if ranges:
            start = min(max(start, ranges[-1].end - overlap), total)
        end = max(end, start)
        ranges.append(ChunkRange(start, end))

    ranges[-1] = ChunkRange(ranges[-1].start, total)
    return ranges


def slice_by_ranges(content: Sequence[T], ranges: Sequence[ChunkRange]) -> list[Sequence[T]]:
    """Apply ``ranges`` to a string or a list of pages."""
    return [content[chunk.start : chunk.end] for chunk in ranges]
