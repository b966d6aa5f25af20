"""Write reconstructed note intervals as Standard MIDI Files via mido.

Every track is re-based against the earliest onset across *all* tracks so
tracks exported together stay aligned.
"""

from __future__ import annotations

import io
import logging
import math
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from .constants import (
    ENCODER_VELOCITY_MAX,
    ENCODER_VELOCITY_MIN,
    EXPORT_PPQ,
    FILE_PREFIX,
    TRACK_NAME_PREFIX,
)
from .events import NoteInterval

if TYPE_CHECKING:
    import mido

log = logging.getLogger(__name__)


class EncoderUnavailableError(RuntimeError):
    """The MIDI file library could not be loaded."""


def _require_mido():
    try:
        import mido
    except ImportError as exc:
        raise EncoderUnavailableError(
            "mido is not installed; install it to export MIDI files"
        ) from exc
    return mido


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def ms_to_offset_ticks(ms: float, bpm: float, ppq: int = EXPORT_PPQ) -> int:
    """Position in ticks of a re-based onset at ``bpm``."""
    return _round_half_up(ms / 60000.0 * (bpm * ppq))


def scale_velocity(velocity: int) -> int:
    """MIDI velocity (0-127) to the note encoder's 1-100 range."""
    scaled = _round_half_up(velocity / 127.0 * 100.0)
    return max(ENCODER_VELOCITY_MIN, min(ENCODER_VELOCITY_MAX, scaled))


def encoder_to_midi_velocity(velocity: int) -> int:
    """Encoder velocity (1-100) back to the 7-bit value written to the file."""
    velocity = min(ENCODER_VELOCITY_MAX, velocity)
    return _round_half_up(velocity / 100.0 * 127.0)


def global_origin(tracks: Mapping[str, Sequence[NoteInterval]]) -> float:
    """Earliest onset across all tracks (0 when there are no notes)."""
    starts = [n.start_ms for notes in tracks.values() for n in notes]
    return min(starts) if starts else 0.0


def export_file_name(label: str, bpm: float, when: datetime | None = None) -> str:
    """``takecatcher-<label>-<bpm>bpm-<timestamp>.mid`` with a UTC timestamp."""
    when = when or datetime.now(timezone.utc)
    when = when.astimezone(timezone.utc)
    stamp = when.strftime("%Y-%m-%dT%H-%M-%S-") + f"{when.microsecond // 1000:03d}Z"
    return f"{FILE_PREFIX}-{label}-{_round_half_up(bpm)}bpm-{stamp}.mid"


class SequenceEncoder:
    """Build tempo-consistent multi-track MIDI files from note intervals."""

    def __init__(self, ppq: int = EXPORT_PPQ) -> None:
        if ppq <= 0:
            raise ValueError(f"ppq must be positive, got {ppq}")
        self.ppq = ppq

    def build(self, tracks: Mapping[str, Sequence[NoteInterval]], bpm: float) -> mido.MidiFile:
        """Create a ``mido.MidiFile``: type 0 for one track, type 1 otherwise.

        Empty tracks keep their tempo, time signature and name meta events.
        """
        mido = _require_mido()
        if not math.isfinite(bpm) or bpm <= 0:
            raise ValueError(f"bpm must be a positive number, got {bpm}")
        if not tracks:
            tracks = {"main": []}

        origin = global_origin(tracks)
        tempo = mido.bpm2tempo(bpm)
        mid = mido.MidiFile(type=0 if len(tracks) == 1 else 1, ticks_per_beat=self.ppq)

        for key, notes in tracks.items():
            trk = mido.MidiTrack()
            mid.tracks.append(trk)
            trk.append(mido.MetaMessage("set_tempo", tempo=tempo, time=0))
            trk.append(mido.MetaMessage(
                "time_signature", numerator=4, denominator=4,
                clocks_per_click=24, notated_32nd_notes_per_beat=8, time=0,
            ))
            trk.append(mido.MetaMessage("track_name", name=f"{TRACK_NAME_PREFIX} {key}", time=0))

            # (abs_tick, order, seq, message): note_off sorts before note_on on the same tick
            timed: list[tuple[int, int, int, mido.Message]] = []
            for seq, n in enumerate(notes):
                start_tick = ms_to_offset_ticks(n.start_ms - origin, bpm, self.ppq)
                # both ends are rounded from the origin; a note lasts at least one tick
                end_tick = max(
                    start_tick + 1, ms_to_offset_ticks(n.end_ms - origin, bpm, self.ppq),
                )
                vel = encoder_to_midi_velocity(scale_velocity(n.velocity))
                ch = (n.channel - 1) & 0x0F
                timed.append((start_tick, 1, seq, mido.Message(
                    "note_on", note=n.note, velocity=vel, channel=ch)))
                timed.append((end_tick, 0, seq, mido.Message(
                    "note_off", note=n.note, velocity=0, channel=ch)))
            timed.sort(key=lambda item: item[:3])

            prev_tick = 0
            for abs_tick, _, _, msg in timed:
                trk.append(msg.copy(time=abs_tick - prev_tick))
                prev_tick = abs_tick
            trk.append(mido.MetaMessage("end_of_track", time=0))

        return mid

    def encode(self, tracks: Mapping[str, Sequence[NoteInterval]], bpm: float) -> bytes:
        """Return the Standard MIDI File bytes."""
        mid = self.build(tracks, bpm)
        buf = io.BytesIO()
        mid.save(file=buf)
        return buf.getvalue()

    @staticmethod
    def write(data: bytes, file_path: str | Path) -> Path:
        """Write encoded bytes, creating parent directories."""
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        log.info("Wrote %s (%d bytes)", path.name, len(data))
        return path
