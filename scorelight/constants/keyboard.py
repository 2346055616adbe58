"""Keyboard layout constants.

The keyboard widget addresses keys by index, not pitch. Index 0 is the lowest
pitch it can emit (C1 = 24), so ``index = pitch - LOWEST_EMITTABLE_PITCH``.
"""

LOWEST_EMITTABLE_PITCH = 24     # C1
HIGHEST_PITCH = 127
SEMITONES_PER_OCTAVE = 12

MIN_OCTAVES = 2                 # Smallest window the keyboard will show
PAD_SEMITONES = 1               # Margin around the lowest and highest note
DEFAULT_WINDOW_LOW = 60         # C4, used before any score is loaded
