"""MIDI status bytes, capture defaults, and export constants."""

# Channel-voice status nibbles (high nibble of the leading byte)
STATUS_NOTE_OFF = 0x80
STATUS_NOTE_ON = 0x90
STATUS_CONTROL_CHANGE = 0xB0
STATUS_PITCH_BEND = 0xE0

# Sustain pedal (damper) controller and its on/off threshold
SUSTAIN_CONTROLLER = 64
SUSTAIN_THRESHOLD = 64

# 14-bit pitch bend centre
PITCH_BEND_CENTER = 8192

# Capture defaults
DEFAULT_BUFFER_MINUTES = 30
DEFAULT_BPM = 120.0
DEFAULT_TAKE_IDLE_SECONDS = 3.0

# Idle timeout floor in milliseconds
MIN_TAKE_IDLE_MS = 500

# Buffer sweep period in milliseconds
GC_INTERVAL_MS = 10_000

# Export resolution (pulses per quarter note)
EXPORT_PPQ = 128

# Velocity range of the note encoder
ENCODER_VELOCITY_MIN = 1
ENCODER_VELOCITY_MAX = 100

FILE_PREFIX = "takecatcher"
TRACK_NAME_PREFIX = "TakeCatcher"
