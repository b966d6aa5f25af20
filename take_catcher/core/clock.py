"""Elapsed-time sources for event timestamps.

All timestamps in the capture engine are milliseconds relative to the clock's
base.  ``epoch_ms`` anchors that base to wall-clock time so snapshots can be
stored with absolute timestamps and restored onto the same timeline.
"""

from __future__ import annotations

import time


class MonotonicClock:
    """Millisecond clock backed by ``time.perf_counter()``."""

    def __init__(self) -> None:
        self._start = time.perf_counter()
        self._epoch_ms = time.time() * 1000.0
        self._offset_ms = 0.0

    @property
    def epoch_ms(self) -> float:
        """Wall-clock epoch (ms since 1970) of timestamp zero."""
        return self._epoch_ms

    def now(self) -> float:
        return (time.perf_counter() - self._start) * 1000.0 + self._offset_ms

    def rebase(self, epoch_ms: float) -> None:
        """Move timestamp zero to ``epoch_ms``, keeping ``now()`` continuous
        with wall-clock time.

        Used when restoring a snapshot captured under an earlier base.
        """
        self._offset_ms += self._epoch_ms - epoch_ms
        self._epoch_ms = epoch_ms


class ManualClock:
    """Clock advanced by hand, for tests and offline replay."""

    def __init__(self, start_ms: float = 0.0, epoch_ms: float = 0.0) -> None:
        self._now = start_ms
        self._epoch_ms = epoch_ms

    @property
    def epoch_ms(self) -> float:
        return self._epoch_ms

    def now(self) -> float:
        return self._now

    def set(self, ms: float) -> None:
        if ms < self._now:
            raise ValueError(f"clock cannot move backwards ({ms} < {self._now})")
        self._now = ms

    def advance(self, ms: float) -> float:
        self.set(self._now + ms)
        return self._now

    def rebase(self, epoch_ms: float) -> None:
        self._now += self._epoch_ms - epoch_ms
        self._epoch_ms = epoch_ms
