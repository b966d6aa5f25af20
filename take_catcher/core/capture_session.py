"""Always-on capture session.

Owns the rolling buffer, sustain tracker and take segmenter, and exposes the
export and persistence operations.  Collaborators (clock, scheduler, message
source, snapshot store) are passed in.

Every entry point runs under one re-entrant lock, so the session can be fed
straight from the rtmidi callback thread while timers fire on another.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .clock import MonotonicClock
from .config import CaptureSettings
from .constants import GC_INTERVAL_MS
from .events import CapturedEvent, NoteInterval, Take
from .ingest import EventIngest, IngestResult
from .midi_listener import MidiListener
from .note_reconstructor import reconstruct_tracks
from .rolling_buffer import RollingBuffer
from .scheduler import Scheduler, TimerHandle
from .sequence_encoder import EncoderUnavailableError, SequenceEncoder, export_file_name
from .snapshot_store import SNAPSHOT_VERSION, SnapshotError, SnapshotStore, validate
from .sustain import SustainTracker
from .take_segmenter import TakeSegmenter

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ExportResult:
    """Outcome of an export. ``path`` is None when nothing was written."""

    data: bytes
    file_name: str
    bpm: float
    tracks: dict[str, list[NoteInterval]]
    path: Path | None = None

    @property
    def track_count(self) -> int:
        return len(self.tracks)

    @property
    def note_count(self) -> int:
        return sum(len(notes) for notes in self.tracks.values())


class _GuardedScheduler(Scheduler):
    """Runs timer callbacks under the session lock, never after teardown."""

    def __init__(self, inner: Scheduler, session: CaptureSession) -> None:
        self._inner = inner
        self._session = session

    def _wrap(self, callback: Callable[[], None]) -> Callable[[], None]:
        session = self._session

        def run() -> None:
            with session._lock:
                if session._destroyed:
                    return
                callback()
        return run

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        return self._inner.call_later(delay_ms, self._wrap(callback))

    def call_repeating(self, interval_ms: float, callback: Callable[[], None]) -> TimerHandle:
        return self._inner.call_repeating(interval_ms, self._wrap(callback))


class CaptureSession:
    """Explicitly constructed capture engine instance."""

    def __init__(
        self,
        scheduler: Scheduler,
        settings: CaptureSettings | None = None,
        clock: Any = None,
        store: SnapshotStore | None = None,
        on_status: Callable[[str], None] | None = None,
        encoder: SequenceEncoder | None = None,
    ) -> None:
        self.settings = settings or CaptureSettings()
        self._clock = clock or MonotonicClock()
        self._store = store
        self._on_status = on_status
        self._encoder = encoder or SequenceEncoder()
        self._lock = threading.RLock()
        self._destroyed = False
        self._listener: MidiListener | None = None
        self._status = "Starting…"

        self._scheduler = _GuardedScheduler(scheduler, self)
        self._buffer = RollingBuffer(self.settings.buffer_minutes)
        self._tracker = SustainTracker()
        self._segmenter = TakeSegmenter(
            self._scheduler,
            self.settings.take_idle_seconds,
            on_take_opened=self._on_take_opened,
            on_take_closed=self._on_take_closed,
        )
        self._ingest = EventIngest(self._tracker, self._buffer, self._segmenter)
        self._gc_timer: TimerHandle | None = self._scheduler.call_repeating(
            GC_INTERVAL_MS, self.gc,
        )

    # --- Properties ---

    @property
    def clock(self):
        return self._clock

    @property
    def status(self) -> str:
        return self._status

    @property
    def is_capturing(self) -> bool:
        return self._listener is not None and not self._destroyed

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def events(self) -> list[CapturedEvent]:
        with self._lock:
            return self._buffer.events

    @property
    def takes(self) -> list[Take]:
        with self._lock:
            return self._segmenter.takes

    @property
    def current_take(self) -> Take | None:
        return self._segmenter.current_take

    @property
    def tracker(self) -> SustainTracker:
        return self._tracker

    @property
    def segmenter(self) -> TakeSegmenter:
        return self._segmenter

    def _report(self, text: str) -> None:
        self._status = text
        log.info(text)
        if self._on_status is not None:
            try:
                self._on_status(text)
            except Exception:
                log.exception("Status callback failed")

    # --- Message source ---

    def attach(
        self,
        listener: MidiListener,
        name_filter: str = "",
        deliver: Callable[[bytes, str, str], object] | None = None,
    ) -> bool:
        """Start capturing from every matching input.

        ``deliver`` receives messages on the MIDI thread; it defaults to
        ``handle_message``.  Returns False (and reports status) if MIDI is
        unavailable.
        """
        with self._lock:
            if self._destroyed:
                return False
            try:
                names = listener.open_all(deliver or self.handle_message, name_filter)
            except Exception as e:
                self._listener = None
                self._report(f"MIDI access failed: {e}")
                return False
            self._listener = listener
            self._report(f"Inputs: {', '.join(names) or 'none'}")
            return True

    def detach(self) -> None:
        with self._lock:
            if self._listener is not None:
                self._listener.close()
                self._listener = None

    def handle_message(
        self,
        data: bytes | Sequence[int] | None,
        source_id: str = "",
        source_name: str = "",
        t: float | None = None,
    ) -> IngestResult | None:
        """Ingest one raw message.

        ``t`` is the arrival time on the session clock, taken by the caller
        when the message was received; it defaults to now.
        """
        with self._lock:
            if self._destroyed:
                return None
            at = self._clock.now() if t is None else t
            return self._ingest.ingest(data, at, source_id, source_name)

    # --- Takes ---

    def _on_take_opened(self, index: int, take: Take) -> None:
        self._report(f"Take {index + 1} started")

    def _on_take_closed(self, index: int, take: Take) -> None:
        self._report(f"Take {index + 1} ended")
        if self.settings.auto_export:
            try:
                self.save_take(index)
            except (EncoderUnavailableError, OSError, ValueError):
                log.exception("Auto-export of take %d failed", index + 1)
        self.persist()

    def set_take_idle_seconds(self, seconds: float) -> None:
        with self._lock:
            self._segmenter.idle_seconds = seconds
            self.settings.take_idle_seconds = self._segmenter.idle_seconds
            self._report(f"Auto-take idle: {seconds:g}s")

    def set_default_bpm(self, bpm: float) -> None:
        if bpm <= 0:
            raise ValueError(f"bpm must be positive, got {bpm}")
        self.settings.default_bpm = float(bpm)

    def set_group_by_channel(self, enabled: bool) -> None:
        self.settings.group_by_channel = bool(enabled)

    def set_buffer_minutes(self, minutes: float) -> None:
        with self._lock:
            self._buffer.retention_minutes = minutes
            self.settings.buffer_minutes = self._buffer.retention_minutes

    # --- Export ---

    def render_range(
        self, start_ms: float, end_ms: float, bpm: float | None = None, label: str = "range",
    ) -> ExportResult:
        """Reconstruct and encode ``[start_ms, end_ms]`` without writing a file."""
        if end_ms < start_ms:
            raise ValueError(f"range ends before it starts ({start_ms} > {end_ms})")
        bpm = self.settings.default_bpm if bpm is None else bpm
        with self._lock:
            events = self._buffer.slice(start_ms, end_ms)
            tracks = reconstruct_tracks(
                events, start_ms, end_ms, self.settings.group_by_channel,
            )
        data = self._encoder.encode(tracks, bpm)
        return ExportResult(
            data=data, file_name=export_file_name(label, bpm), bpm=bpm, tracks=tracks,
        )

    def save_range(
        self,
        start_ms: float,
        end_ms: float,
        bpm: float | None = None,
        label: str = "range",
        output_dir: str | Path | None = None,
    ) -> ExportResult:
        """Export ``[start_ms, end_ms]`` to a .mid file in ``output_dir``."""
        result = self.render_range(start_ms, end_ms, bpm, label)
        directory = Path(output_dir) if output_dir is not None else self.settings.output_dir
        path = self._encoder.write(result.data, directory / result.file_name)
        self._report(f"Saved {result.file_name}")
        return ExportResult(
            data=result.data, file_name=result.file_name, bpm=result.bpm,
            tracks=result.tracks, path=path,
        )

    def save_take(
        self, index: int, bpm: float | None = None, output_dir: str | Path | None = None,
    ) -> ExportResult | None:
        """Export take ``index`` (0-based).

        ``index == len(takes)`` refers to the take still being recorded,
        exported up to now.  Returns None for an unknown index.
        """
        with self._lock:
            takes = self._segmenter.takes
            current = self._segmenter.current_take
            if 0 <= index < len(takes):
                take = takes[index]
                end = take.end_ms
            elif index == len(takes) and current is not None:
                take = current
                end = self._clock.now()
            else:
                self._report(f"No take #{index + 1}")
                return None
            return self.save_range(
                take.start_ms, end, bpm, label=f"take-{index + 1}", output_dir=output_dir,
            )

    def save_recent(
        self, seconds: float, bpm: float | None = None, output_dir: str | Path | None = None,
    ) -> ExportResult:
        """Export the last ``seconds`` of the buffer."""
        if seconds <= 0:
            raise ValueError(f"seconds must be positive, got {seconds}")
        with self._lock:
            end = self._clock.now()
            start = max(0.0, end - seconds * 1000.0)
            return self.save_range(start, end, bpm, label=f"last-{seconds:g}s", output_dir=output_dir)

    # --- Buffer hygiene ---

    def gc(self) -> int:
        """Evict events past the retention horizon. Returns the count."""
        with self._lock:
            return self._buffer.gc(self._clock.now())

    def clear(self) -> None:
        """Drop all events, pedal and note state, and takes."""
        with self._lock:
            self._buffer.clear()
            self._tracker.reset()
            self._segmenter.reset()
            self._report("Cleared buffer.")
            self.persist()

    # --- Persistence ---

    def snapshot(self) -> dict[str, Any]:
        """Serializable state. An open take is not included."""
        with self._lock:
            epoch = self._clock.epoch_ms
            return {
                "version": SNAPSHOT_VERSION,
                "base_epoch_ms": epoch,
                "events": [evt.to_dict(epoch) for evt in self._buffer.events],
                "takes": [take.to_dict(epoch) for take in self._segmenter.takes],
                "settings": self.settings.to_dict(),
            }

    def restore(self, snapshot: dict[str, Any]) -> bool:
        """Load a snapshot, replacing buffered events and closed takes.

        The clock is rebased onto the snapshot's epoch when that is earlier,
        so restored and new events share one timeline.  A bad snapshot is
        discarded and the session starts empty.
        """
        with self._lock:
            try:
                validate(snapshot)
                base = float(snapshot["base_epoch_ms"])
                epoch = min(base, self._clock.epoch_ms)
                events = sorted(
                    (CapturedEvent.from_dict(d, epoch) for d in snapshot["events"]),
                    key=lambda e: e.t,
                )
                takes = [Take.from_dict(d, epoch) for d in snapshot["takes"]]
            except (KeyError, TypeError, ValueError, SnapshotError) as e:
                log.warning("Discarding snapshot: %s", e)
                if self._store is not None:
                    self._store.discard()
                return False

            if epoch < self._clock.epoch_ms:
                self._clock.rebase(epoch)
            self.settings.update_from_dict(snapshot.get("settings", {}))
            self._buffer.retention_minutes = self.settings.buffer_minutes
            self._segmenter.idle_seconds = self.settings.take_idle_seconds
            self._buffer.clear()
            self._buffer.extend(events)
            self._segmenter.restore(takes)
            log.info("Restored %d events and %d takes", len(events), len(takes))
            return True

    def load_persisted(self) -> bool:
        if self._store is None:
            return False
        snapshot = self._store.load()
        if snapshot is None:
            return False
        return self.restore(snapshot)

    def persist(self) -> bool:
        """Write a snapshot, halving the event log once if over quota.

        Failures are logged and never affect live capture.
        """
        if self._store is None:
            return False
        with self._lock:
            snapshot = self.snapshot()
            for attempt in range(2):
                try:
                    self._store.save(snapshot)
                    return True
                except OSError as e:
                    if attempt == 0:
                        log.warning("Snapshot write failed (%s); dropping oldest half", e)
                        events = snapshot["events"]
                        snapshot["events"] = events[len(events) // 2:]
                    else:
                        log.warning("Snapshot write failed again; skipping persistence")
            return False

    # --- Teardown ---

    def destroy(self) -> None:
        """Detach from MIDI, cancel timers, close any open take and persist.

        Safe to call more than once.
        """
        with self._lock:
            if self._destroyed:
                return
            self.detach()
            self._segmenter.finalize()
            self._segmenter.shutdown()
            if self._gc_timer is not None:
                self._gc_timer.cancel()
                self._gc_timer = None
            self.persist()
            self._destroyed = True
            log.info("Capture session closed")
