"""
Output segmentation for size-limited consumers.

Downstream control programs accept string payloads of at most 250
characters, so every coalesced read is cut into consecutive slices of
that size before it reaches the event sink.
"""
from __future__ import annotations

from typing import Iterator

MAX_CHUNK_SIZE = 250


def iter_segments(data: str, max_size: int = MAX_CHUNK_SIZE) -> Iterator[str]:
    """
    Yield consecutive slices of data, each at most max_size long.

    Every slice except possibly the last is exactly max_size long.
    Empty input yields nothing.
    """
    assert max_size > 0, f"max_size must be positive, got {max_size}"

    for start in range(0, len(data), max_size):
        yield data[start:start + max_size]


def segment(data: str, max_size: int = MAX_CHUNK_SIZE) -> list[str]:
    """
    Split data into ceil(len(data) / max_size) ordered chunks.

    Concatenating the result reproduces data exactly. When data fits in
    one chunk the result is [data]; when data is empty the result is [].

    Args:
        data: Coalesced inbound text
        max_size: Largest chunk the consumer accepts

    Returns:
        List of chunks in original order
    """
    return list(iter_segments(data, max_size))
