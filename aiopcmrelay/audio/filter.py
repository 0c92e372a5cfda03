"""Single-pole low-pass filter applied to incoming PCM."""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import NamedTuple

from .pcm import clamp_sample


class FilterResult(NamedTuple):
    """Output of one filter call."""

    filtered: tuple[int, ...]
    """Rounded and clamped output samples."""
    last_value: float
    """Unrounded last output, to be carried into the next call."""


class LowPassFilter:
    """
    One-pole exponential low-pass filter: ``y[n] = a*x[n] + (1-a)*y[n-1]``.

    The smoothing factor is derived once from the sample rate and cutoff. The
    filter keeps no state between calls; callers carry ``last_value`` so that
    consecutive chunks are filtered as one continuous signal.
    """

    __slots__ = ("alpha", "cutoff", "sample_rate")

    def __init__(self, sample_rate: int, cutoff: float) -> None:
        """Compute the smoothing factor for ``sample_rate`` and ``cutoff``."""
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if cutoff <= 0:
            raise ValueError("cutoff must be positive")
        self.sample_rate = sample_rate
        self.cutoff = cutoff
        dt = 1 / sample_rate
        rc = 1 / (2 * math.pi * cutoff)
        self.alpha = dt / (rc + dt)

    def apply(self, samples: Sequence[int], previous: float = 0.0) -> FilterResult:
        """Filter ``samples`` starting from the carried output ``previous``."""
        alpha = self.alpha
        keep = 1 - alpha
        filtered: list[int] = []
        for sample in samples:
            previous = alpha * sample + keep * previous
            filtered.append(clamp_sample(math.floor(previous + 0.5)))
        return FilterResult(tuple(filtered), previous)
