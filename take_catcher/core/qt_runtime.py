"""Qt event-loop glue for live capture.

``QtScheduler`` implements the engine's ``Scheduler`` with ``QTimer``;
``MessageBridge`` timestamps MIDI messages on the rtmidi thread and moves
them onto the Qt thread through a queued signal, so ingest and timers share
one loop while arrival times stay exact.

Qt-dependent classes use the lazy-definition pattern to avoid module-level
Qt imports.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from .scheduler import Scheduler

log = logging.getLogger(__name__)

_QtSchedulerClass = None
_MessageBridgeClass = None


def _ensure_qt_classes():
    """Define Qt-dependent classes on first use."""
    global _QtSchedulerClass, _MessageBridgeClass

    if _QtSchedulerClass is not None:
        return

    from PyQt6.QtCore import QObject, QTimer, pyqtSignal

    class QtTimerHandle:
        """Cancelable wrapper around a QTimer."""

        def __init__(self, timer: QTimer, owner: QtScheduler) -> None:
            self._timer = timer
            self._owner = owner

        @property
        def active(self) -> bool:
            return self._timer is not None and self._timer.isActive()

        def cancel(self) -> None:
            if self._timer is None:
                return
            self._timer.stop()
            self._owner._release(self)
            self._timer.deleteLater()
            self._timer = None

    class QtScheduler(Scheduler):
        """Timers on the Qt event loop of the calling thread."""

        def __init__(self, parent: QObject | None = None) -> None:
            self._parent = parent
            self._handles: set[QtTimerHandle] = set()

        def _release(self, handle: QtTimerHandle) -> None:
            self._handles.discard(handle)

        def _start(self, ms: float, single_shot: bool, callback: Callable[[], None]) -> QtTimerHandle:
            timer = QTimer(self._parent)
            timer.setSingleShot(single_shot)
            handle = QtTimerHandle(timer, self)

            def fire() -> None:
                if single_shot:
                    handle.cancel()
                try:
                    callback()
                except Exception:
                    log.exception("Timer callback failed")

            timer.timeout.connect(fire)
            self._handles.add(handle)
            timer.start(max(0, int(round(ms))))
            return handle

        def call_later(self, delay_ms: float, callback: Callable[[], None]) -> QtTimerHandle:
            return self._start(delay_ms, True, callback)

        def call_repeating(self, interval_ms: float, callback: Callable[[], None]) -> QtTimerHandle:
            if interval_ms <= 0:
                raise ValueError(f"interval must be positive, got {interval_ms}")
            return self._start(interval_ms, False, callback)

        def cancel_all(self) -> None:
            for handle in list(self._handles):
                handle.cancel()

    class MessageBridge(QObject):
        """Queues MIDI messages from the rtmidi thread to the Qt thread."""

        message_received = pyqtSignal(bytes, str, str, float)

        def __init__(
            self, handler: Callable[[bytes, str, str, float], object], clock, parent=None,
        ) -> None:
            super().__init__(parent)
            self._clock = clock
            self.message_received.connect(handler)

        def post(self, data: bytes, source_id: str, source_name: str) -> None:
            """Called on the rtmidi thread; the arrival time is read here."""
            at = self._clock.now()
            self.message_received.emit(bytes(data), source_id, source_name, at)

    _QtSchedulerClass = QtScheduler
    _MessageBridgeClass = MessageBridge


def create_qt_scheduler(parent=None):
    """Create a QTimer-backed Scheduler (requires a Q(Core)Application)."""
    _ensure_qt_classes()
    return _QtSchedulerClass(parent)


def create_message_bridge(handler, clock, parent=None):
    """Create a MessageBridge delivering to ``handler`` on the Qt thread.

    ``handler`` receives ``(data, source_id, source_name, t)`` where ``t`` is
    ``clock.now()`` at the moment the message arrived.
    """
    _ensure_qt_classes()
    return _MessageBridgeClass(handler, clock, parent)
