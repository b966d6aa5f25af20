"""Rebuild closed note intervals from a slice of captured events.

The replay starts from empty pedal and note state every time, so the result
depends only on the events passed in, never on the live ``SustainTracker``.
"""

from __future__ import annotations

from collections.abc import Iterable

from .constants import SUSTAIN_CONTROLLER, SUSTAIN_THRESHOLD
from .events import CapturedEvent, EventKind, NoteInterval

MAIN_TRACK = "main"


def track_key(channel: int, group_by_channel: bool) -> str:
    return f"ch-{channel}" if group_by_channel else MAIN_TRACK


def reconstruct_notes(
    events: Iterable[CapturedEvent],
    window_start: float,
    window_end: float,
) -> list[NoteInterval]:
    """Replay ``events`` and return every note interval inside the window.

    Intervals are clamped to ``[window_start, window_end]``; those left with
    no positive duration are dropped.  Notes still sounding after the last
    event are closed at ``window_end``.
    """
    active: dict[tuple[int, int], tuple[float, int]] = {}
    sustain: dict[int, bool] = {}
    pending: dict[int, set[tuple[int, int]]] = {}
    notes: list[NoteInterval] = []

    def push(ch: int, note: int, t_on: float, t_off: float, vel: int) -> None:
        start = max(window_start, min(window_end, t_on))
        end = max(window_start, min(window_end, t_off))
        if end > start:
            notes.append(NoteInterval(ch, note, start, end, vel))

    for evt in events:
        ch = evt.channel
        if evt.kind == EventKind.CONTROL_CHANGE and evt.controller == SUSTAIN_CONTROLLER:
            down = (evt.value or 0) >= SUSTAIN_THRESHOLD
            was_down = sustain.get(ch, False)
            sustain[ch] = down
            if was_down and not down:
                for key in sorted(pending.get(ch, ())):
                    st = active.pop(key, None)
                    if st is not None:
                        push(ch, key[1], st[0], evt.t, st[1])
                pending.pop(ch, None)
            continue

        key = evt.key
        if key is None:
            continue

        if evt.kind == EventKind.NOTE_ON:
            prev = active.get(key)
            if prev is not None:
                # re-strike of a sounding key ends the previous note
                push(ch, evt.note, prev[0], evt.t, prev[1])
                pending.get(ch, set()).discard(key)
            active[key] = (evt.t, evt.velocity or 0)
        elif evt.kind in (EventKind.NOTE_OFF, EventKind.NOTE_OFF_DEFERRED):
            st = active.get(key)
            if st is None:
                continue
            if sustain.get(ch, False):
                pending.setdefault(ch, set()).add(key)
            else:
                push(ch, evt.note, st[0], evt.t, st[1])
                del active[key]

    for (ch, note), (t_on, vel) in active.items():
        push(ch, note, t_on, window_end, vel)
    return notes


def group_notes(
    notes: Iterable[NoteInterval],
    group_by_channel: bool = False,
    channels: Iterable[int] = (),
) -> dict[str, list[NoteInterval]]:
    """Split intervals into tracks, each sorted by start time.

    With ``group_by_channel``, every channel in ``channels`` gets a track even
    if it has no intervals.  Tracks are ordered by channel number.  A single
    empty ``main`` track is returned when there is nothing else.
    """
    by_channel: dict[int, list[NoteInterval]] = {}
    if group_by_channel:
        for ch in channels:
            by_channel.setdefault(ch, [])
    for n in notes:
        by_channel.setdefault(n.channel if group_by_channel else 0, []).append(n)

    tracks: dict[str, list[NoteInterval]] = {}
    for ch in sorted(by_channel):
        key = track_key(ch, group_by_channel) if group_by_channel else MAIN_TRACK
        tracks[key] = sorted(by_channel[ch], key=lambda n: (n.start_ms, n.channel, n.note))
    if not tracks:
        tracks[MAIN_TRACK] = []
    return tracks


def reconstruct_tracks(
    events: Iterable[CapturedEvent],
    window_start: float,
    window_end: float,
    group_by_channel: bool = False,
) -> dict[str, list[NoteInterval]]:
    """``reconstruct_notes`` followed by ``group_notes``."""
    events = list(events)
    notes = reconstruct_notes(events, window_start, window_end)
    channels = {e.channel for e in events if e.kind == EventKind.NOTE_ON}
    return group_notes(notes, group_by_channel, channels)
