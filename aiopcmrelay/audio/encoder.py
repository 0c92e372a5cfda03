"""MP3 encoding of accumulated PCM batches."""

from __future__ import annotations

import base64
import logging
from collections.abc import Sequence
from itertools import chain
from typing import cast

import av
from av.logging import Capture

from .pcm import encode_pcm16

logger = logging.getLogger(__name__)

MP3_FRAME_SAMPLES = 1152
"""Samples per MPEG-1 Layer III frame."""

_CODEC = "libmp3lame"
_INPUT_FORMAT = "s16"
_LAYOUT = "mono"


class Mp3Encoder:
    """
    Block-oriented MP3 encoder for one flush cycle.

    The encoder may hold samples back and return nothing for some blocks; the
    trailing bytes only come out of ``flush``. Instances are single use.
    """

    def __init__(self, *, sample_rate: int, bit_rate: int) -> None:
        """
        Open a libmp3lame encoder.

        Args:
            sample_rate: Sample rate of the mono input in Hz.
            bit_rate: Target bitrate in kbps.
        """
        self.sample_rate = sample_rate
        self._context = cast("av.AudioCodecContext", av.AudioCodecContext.create(_CODEC, "w"))
        self._context.sample_rate = sample_rate
        self._context.layout = _LAYOUT
        self._context.format = "s16p"
        self._context.bit_rate = bit_rate * 1000
        with Capture() as logs:
            self._context.open()
        for log in logs:
            logger.debug("Opening AudioCodecContext log from av: %s", log)
        self._flushed = False

    def encode_block(self, samples: Sequence[int]) -> bytes:
        """Feed one block of at most ``MP3_FRAME_SAMPLES`` samples."""
        if self._flushed:
            raise RuntimeError("encode_block called after flush")
        if not samples:
            return b""
        frame = av.AudioFrame(format=_INPUT_FORMAT, layout=_LAYOUT, samples=len(samples))
        frame.sample_rate = self.sample_rate
        frame.planes[0].update(encode_pcm16(samples))
        return b"".join(bytes(packet) for packet in self._context.encode(frame))

    def flush(self) -> bytes:
        """Drain the samples the encoder still holds."""
        if self._flushed:
            return b""
        self._flushed = True
        return b"".join(bytes(packet) for packet in self._context.encode(None))


def encode_chunks_to_mp3(
    chunks: Sequence[Sequence[int]], *, sample_rate: int, bit_rate: int
) -> str | None:
    """
    Encode a batch of sample chunks into one base64 MP3 payload.

    Returns None for an empty batch without creating an encoder.
    """
    samples = tuple(chain.from_iterable(chunks))
    if not samples:
        return None

    encoder = Mp3Encoder(sample_rate=sample_rate, bit_rate=bit_rate)
    fragments: list[bytes] = []
    for start in range(0, len(samples), MP3_FRAME_SAMPLES):
        fragment = encoder.encode_block(samples[start : start + MP3_FRAME_SAMPLES])
        if fragment:
            fragments.append(fragment)
    trailing = encoder.flush()
    if trailing:
        fragments.append(trailing)

    mp3 = b"".join(fragments)
    logger.debug("Encoded %d samples into %d MP3 bytes", len(samples), len(mp3))
    return base64.b64encode(mp3).decode()
