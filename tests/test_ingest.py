"""Tests for EventIngest — raw message decoding and sustain handling."""

from __future__ import annotations

import pytest

from take_catcher.core.events import EventKind
from take_catcher.core.ingest import EventIngest
from take_catcher.core.rolling_buffer import RollingBuffer
from take_catcher.core.sustain import SustainTracker
from take_catcher.core.take_segmenter import TakeState, TakeSegmenter


@pytest.fixture
def parts(scheduler):
    tracker = SustainTracker()
    buffer = RollingBuffer(30)
    segmenter = TakeSegmenter(scheduler, idle_seconds=3)
    return EventIngest(tracker, buffer, segmenter), tracker, buffer, segmenter


class TestDecoding:
    def test_note_on(self, parts):
        ingest, tracker, buffer, _ = parts
        result = ingest.ingest([0x90, 60, 100], 0.0, "in-1", "Piano")
        (evt,) = result.events
        assert evt.kind == EventKind.NOTE_ON
        assert (evt.channel, evt.note, evt.velocity) == (1, 60, 100)
        assert (evt.source_id, evt.source_name) == ("in-1", "Piano")
        assert tracker.active_note(1, 60) is not None
        assert len(buffer) == 1

    def test_channel_is_one_based(self, parts):
        ingest, *_ = parts
        (evt,) = ingest.ingest(bytes([0x9F, 60, 100]), 0.0).events
        assert evt.channel == 16

    def test_note_on_velocity_zero_is_note_off(self, parts):
        ingest, tracker, *_ = parts
        ingest.ingest([0x90, 60, 100], 0.0)
        (evt,) = ingest.ingest([0x90, 60, 0], 10.0).events
        assert evt.kind == EventKind.NOTE_OFF
        assert tracker.active_note(1, 60) is None

    def test_note_off(self, parts):
        ingest, *_ = parts
        ingest.ingest([0x80, 60, 100], 0.0)
        ingest.ingest([0x90, 61, 1], 0.0)
        (evt,) = ingest.ingest([0x81, 61, 64], 1.0).events
        assert evt.kind == EventKind.NOTE_OFF
        assert evt.channel == 2

    def test_pitch_bend(self, parts):
        ingest, *_ = parts
        assert ingest.ingest([0xE0, 0x00, 0x40], 0.0).events[0].value == 0
        assert ingest.ingest([0xE0, 0x00, 0x00], 0.0).events[0].value == -8192
        assert ingest.ingest([0xE0, 0x7F, 0x7F], 0.0).events[0].value == 8191

    def test_other_controller(self, parts):
        ingest, *_ = parts
        (evt,) = ingest.ingest([0xB3, 7, 90], 0.0).events
        assert evt.kind == EventKind.CONTROL_CHANGE
        assert (evt.channel, evt.controller, evt.value) == (4, 7, 90)

    def test_program_change_is_raw(self, parts):
        ingest, *_ = parts
        (evt,) = ingest.ingest([0xC0, 5], 0.0).events
        assert evt.kind == EventKind.RAW
        assert evt.data == (0xC0, 5)

    @pytest.mark.parametrize("payload", [None, b"", [], [0x3C, 0x40], [0x90], [0x90, 200, 1], ["x"]])
    def test_malformed_payload_ignored(self, parts, payload):
        ingest, _, buffer, segmenter = parts
        result = ingest.ingest(payload, 0.0)
        assert result.events == []
        assert len(buffer) == 0
        assert segmenter.state == TakeState.IDLE


class TestSustain:
    def test_deferred_note_off_and_flush(self, parts):
        ingest, tracker, buffer, _ = parts
        ingest.ingest([0x90, 60, 100], 0.0)
        ingest.ingest([0xB0, 64, 127], 10.0)
        (deferred,) = ingest.ingest([0x80, 60, 0], 50.0).events
        assert deferred.kind == EventKind.NOTE_OFF_DEFERRED
        assert tracker.active_note(1, 60) is not None

        result = ingest.ingest([0xB0, 64, 0], 200.0)
        kinds = [e.kind for e in result.events]
        assert kinds == [EventKind.CONTROL_CHANGE, EventKind.NOTE_OFF]
        assert result.events[1].t == 200.0
        assert result.events[1].note == 60
        assert tracker.active_notes == {}
        assert len(buffer) == 5

    def test_orphan_note_off_passes_through(self, parts):
        ingest, tracker, buffer, _ = parts
        result = ingest.ingest([0x80, 72, 0], 5.0)
        assert result.orphan
        assert [e.kind for e in result.events] == [EventKind.NOTE_OFF]
        assert len(buffer) == 1
        assert tracker.active_notes == {}


class TestActivity:
    def test_note_on_opens_take(self, parts):
        ingest, _, _, segmenter = parts
        ingest.ingest([0x90, 60, 100], 42.0)
        assert segmenter.state == TakeState.RECORDING
        assert segmenter.current_take.start_ms == 42.0

    def test_pedal_down_opens_take(self, parts):
        ingest, _, _, segmenter = parts
        result = ingest.ingest([0xB0, 64, 127], 0.0)
        assert result.opens_take
        assert segmenter.state == TakeState.RECORDING

    def test_note_off_does_not_open_take(self, parts):
        ingest, _, _, segmenter = parts
        ingest.ingest([0x80, 60, 0], 0.0)
        assert segmenter.state == TakeState.IDLE

    def test_pedal_up_does_not_open_take(self, parts):
        ingest, tracker, _, segmenter = parts
        tracker.pedal(1, 127)
        ingest.ingest([0xB0, 64, 0], 0.0)
        assert segmenter.state == TakeState.IDLE

    def test_note_off_extends_open_take(self, parts):
        ingest, _, _, segmenter = parts
        ingest.ingest([0x90, 60, 100], 0.0)
        ingest.ingest([0x80, 60, 0], 900.0)
        assert segmenter.current_take.last_activity_ms == 900.0
