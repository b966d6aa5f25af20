"""Per-channel sustain pedal state and deferred note terminations.

A note released while its channel's pedal is down stays sounding: its key is
parked in the channel's pending set and only closed when the pedal comes up.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum, auto

from .constants import SUSTAIN_THRESHOLD

NoteKey = tuple[int, int]  # (channel, note)


class Termination(IntEnum):
    """How a note-off request was resolved."""
    ORPHAN = auto()      # no active note; passed through
    DEFERRED = auto()    # pedal down; closes on pedal-up
    IMMEDIATE = auto()   # closed now


class PedalEdge(IntEnum):
    NONE = auto()
    DOWN = auto()
    UP = auto()


@dataclass(slots=True)
class ActiveNote:
    onset_ms: float
    velocity: int
    source_id: str = ""


@dataclass(slots=True)
class ChannelPedalState:
    down: bool = False
    pending_keys: set[NoteKey] = field(default_factory=set)


class SustainTracker:
    """Live pedal and active-note state, keyed by channel and (channel, note)."""

    def __init__(self) -> None:
        self._channels: dict[int, ChannelPedalState] = {}
        self._active: dict[NoteKey, ActiveNote] = {}

    def _state(self, channel: int) -> ChannelPedalState:
        state = self._channels.get(channel)
        if state is None:
            state = self._channels[channel] = ChannelPedalState()
        return state

    # --- Queries ---

    def is_down(self, channel: int) -> bool:
        state = self._channels.get(channel)
        return state is not None and state.down

    def pending_keys(self, channel: int) -> frozenset[NoteKey]:
        state = self._channels.get(channel)
        return frozenset(state.pending_keys) if state else frozenset()

    def active_note(self, channel: int, note: int) -> ActiveNote | None:
        return self._active.get((channel, note))

    @property
    def active_notes(self) -> dict[NoteKey, ActiveNote]:
        return dict(self._active)

    # --- Mutations ---

    def note_on(self, channel: int, note: int, t: float, velocity: int, source_id: str = "") -> None:
        """Start a note.  Re-striking a parked key takes it off the pending set."""
        key = (channel, note)
        state = self._channels.get(channel)
        if state is not None:
            state.pending_keys.discard(key)
        self._active[key] = ActiveNote(onset_ms=t, velocity=velocity, source_id=source_id)

    def terminate(self, channel: int, note: int) -> Termination:
        key = (channel, note)
        if key not in self._active:
            return Termination.ORPHAN
        state = self._state(channel)
        if state.down:
            state.pending_keys.add(key)
            return Termination.DEFERRED
        del self._active[key]
        return Termination.IMMEDIATE

    def pedal(self, channel: int, value: int) -> tuple[PedalEdge, list[NoteKey]]:
        """Apply a sustain controller value.

        Returns the edge and, on pedal-up, the keys whose termination was
        flushed (sorted by note number).
        """
        state = self._state(channel)
        was_down = state.down
        state.down = value >= SUSTAIN_THRESHOLD
        if state.down and not was_down:
            return PedalEdge.DOWN, []
        if was_down and not state.down:
            flushed = [
                key for key in sorted(state.pending_keys)
                if self._active.pop(key, None) is not None
            ]
            state.pending_keys.clear()
            return PedalEdge.UP, flushed
        return PedalEdge.NONE, []

    def reset(self) -> None:
        self._channels.clear()
        self._active.clear()
