"""Time-ordered event log with a retention horizon.

Pure Python, no Qt dependency.  The buffer only stores events; note and pedal
state live in ``SustainTracker`` and are unaffected by eviction.
"""

from __future__ import annotations

import bisect
import logging
from collections.abc import Iterable
from dataclasses import replace

from .events import CapturedEvent

log = logging.getLogger(__name__)


def _event_time(evt: CapturedEvent) -> float:
    return evt.t


class RollingBuffer:
    """Append-only list of events, trimmed to the last ``retention_minutes``."""

    def __init__(self, retention_minutes: float) -> None:
        self._events: list[CapturedEvent] = []
        self.retention_minutes = retention_minutes

    @property
    def retention_minutes(self) -> float:
        return self._retention_minutes

    @retention_minutes.setter
    def retention_minutes(self, minutes: float) -> None:
        if minutes <= 0:
            raise ValueError(f"retention must be positive, got {minutes}")
        self._retention_minutes = float(minutes)

    @property
    def retention_ms(self) -> float:
        return self._retention_minutes * 60_000.0

    @property
    def events(self) -> list[CapturedEvent]:
        """Return a copy of the buffered events."""
        return list(self._events)

    @property
    def last_time(self) -> float | None:
        return self._events[-1].t if self._events else None

    def __len__(self) -> int:
        return len(self._events)

    def append(self, evt: CapturedEvent) -> CapturedEvent:
        """Append an event, keeping timestamps non-decreasing.

        An event older than the newest one is clamped to the newest
        timestamp.  Returns the stored event.
        """
        if self._events and evt.t < self._events[-1].t:
            log.debug("Clamping out-of-order event at %.3f ms", evt.t)
            evt = replace(evt, t=self._events[-1].t)
        self._events.append(evt)
        return evt

    def extend(self, events: Iterable[CapturedEvent]) -> None:
        for evt in events:
            self.append(evt)

    def slice(self, start_ms: float, end_ms: float) -> list[CapturedEvent]:
        """Events with ``start_ms <= t <= end_ms`` in insertion order."""
        lo = bisect.bisect_left(self._events, start_ms, key=_event_time)
        hi = bisect.bisect_right(self._events, end_ms, key=_event_time)
        return self._events[lo:hi]

    def gc(self, now_ms: float) -> int:
        """Evict events older than the retention horizon.

        Returns the number of evicted events.
        """
        cutoff = now_ms - self.retention_ms
        if cutoff <= 0:
            return 0
        idx = bisect.bisect_left(self._events, cutoff, key=_event_time)
        if idx:
            del self._events[:idx]
            log.debug("Evicted %d events older than %.0f ms", idx, cutoff)
        return idx

    def clear(self) -> None:
        self._events.clear()
