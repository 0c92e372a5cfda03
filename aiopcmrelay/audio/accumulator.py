"""Buffering of filtered PCM between two flush cycles."""

from __future__ import annotations

import logging
from collections import deque


class AudioAccumulator:
    """
    Collect filtered sample chunks in arrival order until the next flush.

    The buffer is unbounded unless ``max_samples`` is given, in which case the
    oldest chunks are dropped to stay below the ceiling. ``drain`` swaps the
    whole buffer out in one step, so a chunk pushed concurrently lands either
    in the drained batch or in the fresh buffer, never in both or neither.
    """

    def __init__(self, *, logger: logging.Logger, max_samples: int | None = None) -> None:
        """
        Initialize an empty accumulator.

        Args:
            logger: Logger of the owning session.
            max_samples: Optional ceiling for buffered samples, None keeps it unbounded.
        """
        self._logger = logger
        self.max_samples = max_samples
        self._chunks: deque[tuple[int, ...]] = deque()
        self.buffered_samples = 0
        self.dropped_samples = 0

    def __len__(self) -> int:
        """Return the number of buffered chunks."""
        return len(self._chunks)

    def push(self, chunk: tuple[int, ...]) -> None:
        """Append a filtered chunk, enforcing the ceiling if one is set."""
        if not chunk:
            return
        self._chunks.append(chunk)
        self.buffered_samples += len(chunk)
        if self.max_samples is None:
            return
        dropped = 0
        while self.buffered_samples > self.max_samples and len(self._chunks) > 1:
            oldest = self._chunks.popleft()
            self.buffered_samples -= len(oldest)
            dropped += len(oldest)
        if dropped:
            self.dropped_samples += dropped
            self._logger.warning(
                "Buffer above %d samples, dropped %d oldest samples",
                self.max_samples,
                dropped,
            )

    def drain(self) -> list[tuple[int, ...]]:
        """Hand over all buffered chunks and leave the accumulator empty."""
        chunks, self._chunks = self._chunks, deque()
        self.buffered_samples = 0
        return list(chunks)
