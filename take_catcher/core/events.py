"""Captured events, takes, and reconstructed note intervals.

Pure Python data classes shared by the capture engine and the exporter.
Timestamps are milliseconds relative to the session clock.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class EventKind(str, Enum):
    NOTE_ON = "noteon"
    NOTE_OFF = "noteoff"
    NOTE_OFF_DEFERRED = "noteoff_deferred"
    CONTROL_CHANGE = "cc"
    PITCH_BEND = "pitchbend"
    RAW = "raw"


def _ranged(d: dict[str, Any], key: str, lo: int, hi: int) -> int | None:
    value = d.get(key)
    if value is None:
        return None
    number = int(value)
    if not lo <= number <= hi:
        raise ValueError(f"{key}={value!r} outside {lo}..{hi}")
    return number


@dataclass(frozen=True, slots=True)
class CapturedEvent:
    """A single captured channel-voice event.

    ``value`` holds the controller value for control changes and the signed
    bend amount (-8192..8191) for pitch bends.  ``data`` keeps the original
    bytes of messages recorded as ``RAW``.
    """

    t: float
    kind: EventKind
    channel: int
    note: int | None = None
    velocity: int | None = None
    controller: int | None = None
    value: int | None = None
    data: tuple[int, ...] = ()
    source_id: str = ""
    source_name: str = ""

    @property
    def key(self) -> tuple[int, int] | None:
        """(channel, note) for note events, else None."""
        if self.note is None:
            return None
        return (self.channel, self.note)

    def to_dict(self, epoch_ms: float) -> dict[str, Any]:
        d: dict[str, Any] = {
            "at": epoch_ms + self.t,
            "type": self.kind.value,
            "ch": self.channel,
        }
        for name, value in (
            ("note", self.note),
            ("vel", self.velocity),
            ("cc", self.controller),
            ("val", self.value),
        ):
            if value is not None:
                d[name] = value
        if self.data:
            d["bytes"] = list(self.data)
        if self.source_id:
            d["inputId"] = self.source_id
        if self.source_name:
            d["inputName"] = self.source_name
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any], epoch_ms: float) -> CapturedEvent:
        """Inverse of ``to_dict``.

        Numeric fields are coerced to int and range-checked; bad input raises
        KeyError, TypeError or ValueError.
        """
        kind = EventKind(d["type"])
        channel = _ranged(d, "ch", 1, 16)
        if channel is None:
            raise ValueError("event has no channel")
        if kind is EventKind.PITCH_BEND:
            value = _ranged(d, "val", -8192, 8191)
        else:
            value = _ranged(d, "val", 0, 127)
        data = tuple(int(b) for b in d.get("bytes", ()))
        if any(not 0 <= b <= 255 for b in data):
            raise ValueError(f"bytes={data!r} outside 0..255")
        return cls(
            t=float(d["at"]) - epoch_ms,
            kind=kind,
            channel=channel,
            note=_ranged(d, "note", 0, 127),
            velocity=_ranged(d, "vel", 0, 127),
            controller=_ranged(d, "cc", 0, 127),
            value=value,
            data=data,
            source_id=str(d.get("inputId", "")),
            source_name=str(d.get("inputName", "")),
        )


@dataclass
class Take:
    """An automatically detected performance segment.

    ``end_ms`` is None while the take is still open.
    """

    start_ms: float
    end_ms: float | None = None
    last_activity_ms: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.end_ms is None

    @property
    def duration_ms(self) -> float:
        end = self.end_ms if self.end_ms is not None else self.last_activity_ms
        return max(0.0, end - self.start_ms)

    def to_dict(self, epoch_ms: float) -> dict[str, float]:
        if self.end_ms is None:
            raise ValueError("open takes are not serialised")
        return {"start_at": epoch_ms + self.start_ms, "end_at": epoch_ms + self.end_ms}

    @classmethod
    def from_dict(cls, d: dict[str, Any], epoch_ms: float) -> Take:
        start = float(d["start_at"]) - epoch_ms
        end = float(d["end_at"]) - epoch_ms
        if end < start:
            raise ValueError(f"take ends before it starts: {d!r}")
        return cls(start_ms=start, end_ms=end, last_activity_ms=end)


@dataclass(frozen=True, slots=True)
class NoteInterval:
    """A closed, reconstructed note (end_ms > start_ms)."""

    channel: int
    note: int
    start_ms: float
    end_ms: float
    velocity: int

    @property
    def duration_ms(self) -> float:
        return self.end_ms - self.start_ms
