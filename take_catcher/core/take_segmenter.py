"""Automatic take detection: Idle -> Recording on activity, back to Idle
after ``take_idle_seconds`` without any.

Pure Python, no Qt dependency.  Timers come from the injected ``Scheduler``.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from enum import IntEnum, auto

from .constants import DEFAULT_TAKE_IDLE_SECONDS, MIN_TAKE_IDLE_MS
from .events import Take
from .scheduler import Scheduler, TimerHandle

log = logging.getLogger(__name__)


class TakeState(IntEnum):
    IDLE = auto()
    RECORDING = auto()


class TakeSegmenter:
    """Two-state machine owning the open take and the list of closed takes."""

    def __init__(
        self,
        scheduler: Scheduler,
        idle_seconds: float = DEFAULT_TAKE_IDLE_SECONDS,
        on_take_opened: Callable[[int, Take], None] | None = None,
        on_take_closed: Callable[[int, Take], None] | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._takes: list[Take] = []
        self._current: Take | None = None
        self._timer: TimerHandle | None = None
        self._idle_seconds = DEFAULT_TAKE_IDLE_SECONDS
        self.idle_seconds = idle_seconds
        self.on_take_opened = on_take_opened
        self.on_take_closed = on_take_closed

    # --- Properties ---

    @property
    def state(self) -> TakeState:
        return TakeState.IDLE if self._current is None else TakeState.RECORDING

    @property
    def takes(self) -> list[Take]:
        """Closed takes in chronological order (copy)."""
        return list(self._takes)

    @property
    def current_take(self) -> Take | None:
        return self._current

    @property
    def idle_seconds(self) -> float:
        return self._idle_seconds

    @idle_seconds.setter
    def idle_seconds(self, seconds: float) -> None:
        if not math.isfinite(seconds) or seconds <= 0:
            raise ValueError(f"idle timeout must be a positive number, got {seconds}")
        self._idle_seconds = float(seconds)
        if self._current is not None:
            self._arm()

    @property
    def idle_ms(self) -> float:
        return max(MIN_TAKE_IDLE_MS, self._idle_seconds * 1000.0)

    # --- Transitions ---

    def activity(self, t: float, opens_take: bool = True) -> bool:
        """Report activity at ``t``. Returns True if a take was opened."""
        if self._current is None:
            if not opens_take:
                return False
            self._current = Take(start_ms=t, last_activity_ms=t)
            self._arm()
            index = len(self._takes)
            log.info("Take %d started", index + 1)
            if self.on_take_opened is not None:
                self.on_take_opened(index, self._current)
            return True
        self._current.last_activity_ms = max(self._current.last_activity_ms, t)
        self._arm()
        return False

    def finalize(self) -> Take | None:
        """Close the open take now, if any."""
        if self._current is None:
            return None
        return self._close()

    def _arm(self) -> None:
        self._cancel_timer()
        self._timer = self._scheduler.call_later(self.idle_ms, self._on_idle)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_idle(self) -> None:
        self._timer = None
        if self._current is not None:
            self._close()

    def _close(self) -> Take:
        self._cancel_timer()
        take = self._current
        assert take is not None
        take.end_ms = take.last_activity_ms
        self._takes.append(take)
        self._current = None
        index = len(self._takes) - 1
        log.info("Take %d ended (%.1f s)", index + 1, take.duration_ms / 1000.0)
        if self.on_take_closed is not None:
            self.on_take_closed(index, take)
        return take

    # --- Maintenance ---

    def restore(self, takes: list[Take]) -> None:
        """Replace the closed-take list (snapshot restore)."""
        if any(take.end_ms is None for take in takes):
            raise ValueError("only closed takes can be restored")
        self._takes = sorted(takes, key=lambda take: take.start_ms)

    def reset(self) -> None:
        """Drop every take and cancel the idle timer."""
        self._cancel_timer()
        self._current = None
        self._takes.clear()

    def shutdown(self) -> None:
        """Cancel the idle timer without closing the open take."""
        self._cancel_timer()
