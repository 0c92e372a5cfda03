"""Tests for PCM decoding, the low-pass filter and the accumulator."""

from __future__ import annotations

import logging
import math
import struct

import pytest

from aiopcmrelay.audio import AudioAccumulator, LowPassFilter, decode_pcm16, encode_pcm16

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------
# PCM decoding
# ---------------------------------------------------------------------


def test_decode_reads_little_endian_signed_samples() -> None:
    data = b"\x00\x80" + b"\xff\x7f" + b"\xff\xff" + b"\x01\x00"
    assert decode_pcm16(data) == (-32768, 32767, -1, 1)


@pytest.mark.parametrize(
    "data",
    [
        b"",
        bytes(range(256)),
        struct.pack("<4h", -32768, 32767, 0, -2),
    ],
)
def test_decode_then_encode_reproduces_bytes(data: bytes) -> None:
    samples = decode_pcm16(data)
    assert len(samples) == len(data) // 2
    assert encode_pcm16(samples) == data


def test_odd_length_frame_drops_trailing_byte(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING):
        samples = decode_pcm16(b"\x01\x00\x02\x00\x03")
    assert samples == (1, 2)
    assert "odd-length" in caplog.text


# ---------------------------------------------------------------------
# Low-pass filter
# ---------------------------------------------------------------------


def test_alpha_is_derived_from_rate_and_cutoff() -> None:
    lpf = LowPassFilter(32_000, 1_000)
    dt = 1 / 32_000
    rc = 1 / (2 * math.pi * 1_000)
    assert lpf.alpha == pytest.approx(dt / (rc + dt))


def test_zero_signal_stays_zero() -> None:
    for cutoff in (10.0, 1_000.0, 15_000.0):
        result = LowPassFilter(32_000, cutoff).apply([0] * 500)
        assert result.filtered == (0,) * 500
        assert result.last_value == 0.0


def test_constant_signal_converges_to_constant() -> None:
    result = LowPassFilter(32_000, 1_000).apply([1_000] * 2_000)
    assert result.filtered[0] < 1_000
    assert result.filtered[-1] == 1_000
    assert result.last_value == pytest.approx(1_000)


def test_chunked_filtering_matches_single_pass() -> None:
    lpf = LowPassFilter(32_000, 1_000)
    chunk_a = [int(8_000 * math.sin(n / 3)) for n in range(700)]
    chunk_b = [int(-5_000 * math.cos(n / 7)) for n in range(900)]

    first = lpf.apply(chunk_a)
    second = lpf.apply(chunk_b, first.last_value)
    whole = lpf.apply(chunk_a + chunk_b)

    assert first.filtered + second.filtered == whole.filtered
    assert second.last_value == pytest.approx(whole.last_value)


def test_output_is_clamped_to_16_bit_range() -> None:
    lpf = LowPassFilter(32_000, 1_000)
    high = lpf.apply([32_767] * 4, previous=60_000.0)
    low = lpf.apply([-32_768] * 4, previous=-60_000.0)
    assert high.filtered[0] == 32_767
    assert all(-32_768 <= s <= 32_767 for s in high.filtered + low.filtered)
    assert low.filtered[0] == -32_768
    # The carry stays unclamped
    assert high.last_value > 32_767


def test_filter_rejects_invalid_parameters() -> None:
    with pytest.raises(ValueError, match="sample_rate"):
        LowPassFilter(0, 1_000)
    with pytest.raises(ValueError, match="cutoff"):
        LowPassFilter(32_000, 0)


# ---------------------------------------------------------------------
# Accumulator
# ---------------------------------------------------------------------


def test_drain_returns_chunks_in_arrival_order_and_resets() -> None:
    acc = AudioAccumulator(logger=logger)
    acc.push((1, 2))
    acc.push((3,))
    acc.push((4, 5, 6))

    assert acc.buffered_samples == 6
    assert acc.drain() == [(1, 2), (3,), (4, 5, 6)]
    assert len(acc) == 0
    assert acc.buffered_samples == 0
    assert acc.drain() == []


def test_push_after_drain_goes_to_fresh_buffer() -> None:
    acc = AudioAccumulator(logger=logger)
    acc.push((1,))
    drained = acc.drain()
    acc.push((2,))
    assert drained == [(1,)]
    assert acc.drain() == [(2,)]


def test_empty_chunks_are_ignored() -> None:
    acc = AudioAccumulator(logger=logger)
    acc.push(())
    assert len(acc) == 0


def test_ceiling_drops_oldest_chunks(caplog: pytest.LogCaptureFixture) -> None:
    acc = AudioAccumulator(logger=logger, max_samples=5)
    acc.push((1, 2))
    acc.push((3, 4))
    with caplog.at_level(logging.WARNING):
        acc.push((5, 6, 7))

    assert acc.drain() == [(3, 4), (5, 6, 7)]
    assert acc.dropped_samples == 2
    assert "dropped 2 oldest samples" in caplog.text


def test_ceiling_keeps_newest_chunk_even_if_larger() -> None:
    acc = AudioAccumulator(logger=logger, max_samples=2)
    acc.push((1,))
    acc.push((2, 3, 4))
    assert acc.drain() == [(2, 3, 4)]
