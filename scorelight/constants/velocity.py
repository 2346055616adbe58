"""MIDI velocity constants.

Velocity is the MIDI attack strength (0-127). The timeline carries no dynamics,
so every scheduled note uses the same playback velocity.
"""

DEFAULT_PLAYBACK_VELOCITY = 90  # Scheduled notes from the timeline
DEFAULT_MANUAL_VELOCITY = 100   # Keys pressed by hand
TEST_TONE_VELOCITY = 80

MIN_VELOCITY = 1
MAX_VELOCITY = 127
