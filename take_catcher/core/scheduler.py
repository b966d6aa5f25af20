"""One-shot and repeating timers driven by the same loop that delivers MIDI.

``Scheduler`` is the interface the capture engine talks to.  The live
application uses the ``QTimer`` implementation from ``qt_runtime``;
``ManualScheduler`` runs on a ``ManualClock`` for tests and offline replay.
"""

from __future__ import annotations

import heapq
import itertools
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Protocol

from .clock import ManualClock

log = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...

    @property
    def active(self) -> bool: ...


class Scheduler(ABC):
    @abstractmethod
    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` once after ``delay_ms``."""

    @abstractmethod
    def call_repeating(self, interval_ms: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` every ``interval_ms`` until cancelled."""


class _ManualTask:
    __slots__ = ("due", "interval", "callback", "cancelled")

    def __init__(self, due: float, interval: float | None, callback: Callable[[], None]) -> None:
        self.due = due
        self.interval = interval
        self.callback = callback
        self.cancelled = False

    @property
    def active(self) -> bool:
        return not self.cancelled

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler(Scheduler):
    """Deterministic scheduler: nothing runs until ``advance()`` is called."""

    def __init__(self, clock: ManualClock) -> None:
        self._clock = clock
        self._queue: list[tuple[float, int, _ManualTask]] = []
        self._seq = itertools.count()

    @property
    def clock(self) -> ManualClock:
        return self._clock

    @property
    def pending_count(self) -> int:
        return sum(1 for _, _, task in self._queue if not task.cancelled)

    def _push(self, task: _ManualTask) -> None:
        heapq.heappush(self._queue, (task.due, next(self._seq), task))

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> _ManualTask:
        task = _ManualTask(self._clock.now() + max(0.0, delay_ms), None, callback)
        self._push(task)
        return task

    def call_repeating(self, interval_ms: float, callback: Callable[[], None]) -> _ManualTask:
        if interval_ms <= 0:
            raise ValueError(f"interval must be positive, got {interval_ms}")
        task = _ManualTask(self._clock.now() + interval_ms, interval_ms, callback)
        self._push(task)
        return task

    def advance(self, ms: float) -> None:
        """Move the clock forward, running due callbacks in order."""
        target = self._clock.now() + ms
        while self._queue and self._queue[0][0] <= target:
            due, _, task = heapq.heappop(self._queue)
            if task.cancelled:
                continue
            self._clock.set(max(due, self._clock.now()))
            if task.interval is None:
                task.cancelled = True
            task.callback()
            if task.interval is not None and not task.cancelled:
                task.due = due + task.interval
                self._push(task)
        self._clock.set(target)

    def run_pending(self) -> None:
        self.advance(0)
