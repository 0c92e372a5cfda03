"""Conversion between raw little-endian PCM bytes and sample sequences."""

from __future__ import annotations

import logging
import struct
from collections.abc import Sequence

logger = logging.getLogger(__name__)

BYTES_PER_SAMPLE = 2
SAMPLE_MIN = -32_768
SAMPLE_MAX = 32_767


def decode_pcm16(data: bytes | bytearray | memoryview) -> tuple[int, ...]:
    """
    Decode signed 16-bit little-endian PCM into a tuple of samples.

    A trailing odd byte cannot form a sample; it is dropped and logged instead
    of failing the frame.
    """
    sample_count = len(data) // BYTES_PER_SAMPLE
    usable = sample_count * BYTES_PER_SAMPLE
    if usable != len(data):
        logger.warning("Dropping trailing byte of odd-length PCM frame (%d bytes)", len(data))
    return struct.unpack_from(f"<{sample_count}h", data)


def encode_pcm16(samples: Sequence[int]) -> bytes:
    """Pack samples back into signed 16-bit little-endian bytes."""
    return struct.pack(f"<{len(samples)}h", *samples)


def clamp_sample(value: int) -> int:
    """Clamp ``value`` into the signed 16-bit range."""
    return max(SAMPLE_MIN, min(SAMPLE_MAX, value))
