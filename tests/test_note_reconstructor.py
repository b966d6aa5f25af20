"""Tests for note reconstruction — sustain resolution, truncation, grouping."""

from __future__ import annotations

import random

from take_catcher.core.events import CapturedEvent, EventKind, NoteInterval
from take_catcher.core.note_reconstructor import (
    group_notes,
    reconstruct_notes,
    reconstruct_tracks,
)

# ── Helpers ─────────────────────────────────────────────────


def on(t, note, vel=100, ch=1):
    return CapturedEvent(t=t, kind=EventKind.NOTE_ON, channel=ch, note=note, velocity=vel)


def off(t, note, ch=1, deferred=False):
    kind = EventKind.NOTE_OFF_DEFERRED if deferred else EventKind.NOTE_OFF
    return CapturedEvent(t=t, kind=kind, channel=ch, note=note)


def pedal(t, value, ch=1):
    return CapturedEvent(t=t, kind=EventKind.CONTROL_CHANGE, channel=ch, controller=64, value=value)


# ── Scenarios ───────────────────────────────────────────────


class TestScenarios:
    def test_sustained_note_ends_at_pedal_up(self):
        events = [
            on(0, 60, 100),
            pedal(10, 127),
            off(50, 60, deferred=True),
            pedal(200, 0),
            off(200, 60),  # flush event recorded by ingest
        ]
        assert reconstruct_notes(events, 0, 250) == [NoteInterval(1, 60, 0, 200, 100)]

    def test_unterminated_note_is_truncated(self):
        notes = reconstruct_notes([on(0, 64, 90, ch=2)], 0, 1000)
        assert notes == [NoteInterval(2, 64, 0, 1000, 90)]

    def test_orphan_note_off_yields_nothing(self):
        assert reconstruct_notes([off(5, 72)], 0, 100) == []


class TestReplay:
    def test_pairs_without_sustain(self):
        rng = random.Random(7)
        events, expected, t = [], {}, 0.0
        for note in rng.sample(range(36, 96), 20):
            start = t
            t += rng.randint(1, 50)
            events.append(on(start, note))
            expected[note] = start
        for note in list(expected):
            t += rng.randint(1, 50)
            events.append(off(t, note))
            expected[note] = (expected[note], t)
        notes = reconstruct_notes(events, 0, t + 100)
        assert len(notes) == 20
        for n in notes:
            assert (n.start_ms, n.end_ms) == expected[n.note]

    def test_clamped_to_window(self):
        notes = reconstruct_notes([on(0, 60), off(300, 60)], 100, 200)
        assert notes == [NoteInterval(1, 60, 100, 200, 100)]

    def test_zero_length_dropped(self):
        assert reconstruct_notes([on(10, 60), off(10, 60)], 0, 100) == []

    def test_note_starting_at_window_end_dropped(self):
        assert reconstruct_notes([on(100, 60)], 0, 100) == []

    def test_held_through_pedal_up(self):
        events = [on(0, 60), pedal(10, 127), pedal(20, 0), off(80, 60)]
        assert reconstruct_notes(events, 0, 100) == [NoteInterval(1, 60, 0, 80, 100)]

    def test_pedal_on_other_channel_ignored(self):
        events = [on(0, 60, ch=1), pedal(5, 127, ch=2), off(30, 60, ch=1)]
        assert reconstruct_notes(events, 0, 100)[0].end_ms == 30

    def test_deferred_without_pedal_in_slice_closes_immediately(self):
        # slice starts after the pedal-down event
        notes = reconstruct_notes([on(0, 60), off(40, 60, deferred=True)], 0, 100)
        assert notes == [NoteInterval(1, 60, 0, 40, 100)]

    def test_pending_note_truncated_when_pedal_stays_down(self):
        events = [on(0, 60), pedal(5, 127), off(10, 60, deferred=True)]
        assert reconstruct_notes(events, 0, 500)[0].end_ms == 500

    def test_restrike_closes_previous_note(self):
        events = [on(0, 60, 80), on(100, 60, 90), off(150, 60)]
        assert reconstruct_notes(events, 0, 200) == [
            NoteInterval(1, 60, 0, 100, 80),
            NoteInterval(1, 60, 100, 150, 90),
        ]

    def test_pure_function_of_slice(self):
        events = [on(0, 60), pedal(10, 127), off(20, 60), pedal(30, 0)]
        assert reconstruct_notes(events, 0, 50) == reconstruct_notes(events, 0, 50)


class TestGrouping:
    def test_single_track_sorted(self):
        notes = [NoteInterval(2, 64, 50, 60, 1), NoteInterval(1, 60, 10, 20, 1)]
        tracks = group_notes(notes)
        assert list(tracks) == ["main"]
        assert [n.start_ms for n in tracks["main"]] == [10, 50]

    def test_group_by_channel(self):
        events = [on(0, 60, ch=3), on(5, 40, ch=1), off(50, 60, ch=3), off(60, 40, ch=1)]
        tracks = reconstruct_tracks(events, 0, 100, group_by_channel=True)
        assert list(tracks) == ["ch-1", "ch-3"]
        assert tracks["ch-3"][0].note == 60

    def test_empty_channel_track_kept(self):
        events = [on(0, 60, ch=1), off(50, 60, ch=1), on(70, 62, ch=2), off(70, 62, ch=2)]
        tracks = reconstruct_tracks(events, 0, 100, group_by_channel=True)
        assert list(tracks) == ["ch-1", "ch-2"]
        assert tracks["ch-2"] == []

    def test_no_notes_gives_empty_main_track(self):
        assert reconstruct_tracks([], 0, 100) == {"main": []}
