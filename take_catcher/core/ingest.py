"""Raw MIDI message normalisation.

Turns a channel-voice byte message into typed ``CapturedEvent`` objects,
resolves note terminations through ``SustainTracker``, appends the result to
the ``RollingBuffer`` and reports activity to the ``TakeSegmenter``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .constants import (
    PITCH_BEND_CENTER,
    STATUS_CONTROL_CHANGE,
    STATUS_NOTE_OFF,
    STATUS_NOTE_ON,
    STATUS_PITCH_BEND,
    SUSTAIN_CONTROLLER,
)
from .events import CapturedEvent, EventKind
from .rolling_buffer import RollingBuffer
from .sustain import PedalEdge, SustainTracker, Termination

if TYPE_CHECKING:
    from .take_segmenter import TakeSegmenter

log = logging.getLogger(__name__)


@dataclass(slots=True)
class IngestResult:
    """Events produced by one message and how it affects take segmentation.

    ``activity`` extends an open take; ``opens_take`` may also open one.
    """

    events: list[CapturedEvent] = field(default_factory=list)
    activity: bool = False
    opens_take: bool = False
    orphan: bool = False


def _normalise(data: bytes | Sequence[int] | None) -> tuple[int, ...] | None:
    """Validate a raw payload. Returns None when it is empty or malformed."""
    if not data:
        return None
    try:
        payload = tuple(int(b) for b in data)
    except (TypeError, ValueError):
        return None
    if payload[0] < 0x80 or payload[0] > 0xFF:
        return None
    if any(b < 0 or b > 0x7F for b in payload[1:]):
        return None
    return payload


class EventIngest:
    """Entry point for every incoming message."""

    def __init__(
        self,
        tracker: SustainTracker,
        buffer: RollingBuffer,
        segmenter: TakeSegmenter | None = None,
    ) -> None:
        self._tracker = tracker
        self._buffer = buffer
        self._segmenter = segmenter

    def ingest(
        self,
        data: bytes | Sequence[int] | None,
        t: float,
        source_id: str = "",
        source_name: str = "",
    ) -> IngestResult:
        payload = _normalise(data)
        if payload is None:
            return IngestResult()

        result = self._translate(payload, t, source_id, source_name)
        if not result.events:
            return result

        for evt in result.events:
            self._buffer.append(evt)
        if self._segmenter is not None and result.activity:
            self._segmenter.activity(t, opens_take=result.opens_take)
        return result

    def _translate(
        self, payload: tuple[int, ...], t: float, source_id: str, source_name: str,
    ) -> IngestResult:
        status = payload[0]
        kind = status & 0xF0
        ch = (status & 0x0F) + 1

        def event(k: EventKind, **fields) -> CapturedEvent:
            return CapturedEvent(t=t, kind=k, channel=ch, source_id=source_id,
                                 source_name=source_name, **fields)

        if kind in (STATUS_NOTE_ON, STATUS_NOTE_OFF):
            if len(payload) < 2:
                return IngestResult()
            note = payload[1]
            velocity = payload[2] if len(payload) > 2 else 0
            if kind == STATUS_NOTE_ON and velocity > 0:
                self._tracker.note_on(ch, note, t, velocity, source_id)
                return IngestResult(
                    [event(EventKind.NOTE_ON, note=note, velocity=velocity)],
                    activity=True, opens_take=True,
                )
            return self._terminate(ch, note, event)

        if kind == STATUS_CONTROL_CHANGE:
            if len(payload) < 2:
                return IngestResult()
            controller = payload[1]
            value = payload[2] if len(payload) > 2 else 0
            events = [event(EventKind.CONTROL_CHANGE, controller=controller, value=value)]
            if controller != SUSTAIN_CONTROLLER:
                return IngestResult(events, activity=True, opens_take=True)
            edge, flushed = self._tracker.pedal(ch, value)
            for _, note in flushed:
                events.append(event(EventKind.NOTE_OFF, note=note))
            if flushed:
                log.debug("Pedal up on ch %d flushed %d notes", ch, len(flushed))
            return IngestResult(events, activity=True, opens_take=edge == PedalEdge.DOWN)

        if kind == STATUS_PITCH_BEND:
            lsb = payload[1] if len(payload) > 1 else 0
            msb = payload[2] if len(payload) > 2 else 0
            value = ((msb << 7) | lsb) - PITCH_BEND_CENTER
            return IngestResult(
                [event(EventKind.PITCH_BEND, value=value)], activity=True, opens_take=True,
            )

        return IngestResult([event(EventKind.RAW, data=payload)], activity=True, opens_take=True)

    def _terminate(self, ch: int, note: int, event) -> IngestResult:
        outcome = self._tracker.terminate(ch, note)
        if outcome == Termination.DEFERRED:
            return IngestResult([event(EventKind.NOTE_OFF_DEFERRED, note=note)], activity=True)
        return IngestResult(
            [event(EventKind.NOTE_OFF, note=note)],
            activity=True,
            orphan=outcome == Termination.ORPHAN,
        )
