"""Keyboard display window fitting.

Works out which octaves an on-screen keyboard must show so every note of a
timeline can light up, and maps pitches into the keyboard's index space.

The fitted window is always octave aligned: it starts on a C and ends on a
B, and spans at least ``min_octaves`` octaves. A user-supplied range can
either replace the fitted window (strict) or be merged with it (non-strict).

```python
fitter = KeyboardRangeFitter()
window = fitter.fit(timeline, override=RangeOverride.from_values("C2", "G5", strict=False))
print(window.low_pitch, window.high_pitch, window.octaves)
```
"""

import dataclasses
import logging
import math
import re
import typing

import scorelight.constants.keyboard as kb
import scorelight.timeline


logger = logging.getLogger(__name__)


_NOTE_INDEX = {
	"c": 0, "c#": 1, "db": 1, "d": 2, "d#": 3, "eb": 3, "e": 4, "f": 5,
	"f#": 6, "gb": 6, "g": 7, "g#": 8, "ab": 8, "a": 9, "a#": 10, "bb": 10, "b": 11,
}

_NOTE_NAME_RE = re.compile(r"^([A-Ga-g])([#b]?)(-?\d+)$")
_MIDI_NUMBER_RE = re.compile(r"^-?\d+$")


def parse_note_name (name: str) -> typing.Optional[int]:

	"""Convert a note name such as ``"C4"``, ``"F#2"`` or ``"Bb-1"`` to a MIDI number (C4 = 60)."""

	match = _NOTE_NAME_RE.match(name.strip())

	if not match:
		return None

	letter, accidental, octave = match.groups()
	pitch = 12 * (int(octave) + 1) + _NOTE_INDEX[(letter + accidental).lower()]

	return pitch if 0 <= pitch <= 127 else None


def parse_pitch (value: typing.Union[int, str, None]) -> typing.Optional[int]:

	"""Accept a MIDI number (0-127) or a note name and return the MIDI number, or None."""

	if value is None:
		return None

	if isinstance(value, bool):
		return None

	if isinstance(value, int):
		return value if 0 <= value <= 127 else None

	text = str(value).strip()

	if _MIDI_NUMBER_RE.match(text):
		number = int(text)
		return number if 0 <= number <= 127 else None

	return parse_note_name(text)


@dataclasses.dataclass (frozen=True)
class DisplayWindow:

	"""
	An octave-aligned pitch range shown by the keyboard.

	``high_pitch`` may run past 127 when the top octave is only partly
	playable; those keys are drawn but never lit.
	"""

	low_pitch: int
	high_pitch: int

	def __post_init__ (self) -> None:

		if self.low_pitch % kb.SEMITONES_PER_OCTAVE != 0 or (self.high_pitch + 1) % kb.SEMITONES_PER_OCTAVE != 0:
			raise ValueError(f"Window {self.low_pitch}..{self.high_pitch} is not octave aligned")

		if self.high_pitch < self.low_pitch:
			raise ValueError("high_pitch must not be below low_pitch")

	@property
	def key_count (self) -> int:
		return self.high_pitch - self.low_pitch + 1

	@property
	def octaves (self) -> int:
		return self.key_count // kb.SEMITONES_PER_OCTAVE

	def contains (self, pitch: int) -> bool:
		return self.low_pitch <= pitch <= self.high_pitch

	def leftmost_index (self, base: int = kb.LOWEST_EMITTABLE_PITCH) -> int:

		"""Keyboard index of the window's first key (never below 0)."""

		return max(0, self.low_pitch - base)

	def index_of (self, pitch: int, base: int = kb.LOWEST_EMITTABLE_PITCH) -> int:

		"""Keyboard index of a (visual) pitch: a fixed offset from ``base``."""

		return self.leftmost_index(base) + (pitch - self.low_pitch)

	def indices (self, base: int = kb.LOWEST_EMITTABLE_PITCH) -> typing.List[int]:

		"""Every keyboard index inside the window."""

		first = self.leftmost_index(base)
		return list(range(first, first + self.key_count))


DEFAULT_WINDOW = DisplayWindow(kb.DEFAULT_WINDOW_LOW, kb.DEFAULT_WINDOW_LOW + kb.MIN_OCTAVES * kb.SEMITONES_PER_OCTAVE - 1)


@dataclasses.dataclass (frozen=True)
class RangeOverride:

	"""
	A user-supplied keyboard range.

	With ``strict=True`` the keyboard keeps exactly this range whatever the
	score contains; with ``strict=False`` the range is merged with the range
	fitted to the score.
	"""

	low: int
	high: int
	strict: bool = True

	@classmethod
	def from_values (cls, low: typing.Union[int, str], high: typing.Union[int, str], strict: bool = True) -> "RangeOverride":

		"""Build an override from MIDI numbers or note names, in either order.

		Raises:
			ValueError: Either bound is not a valid pitch.
		"""

		low_pitch = parse_pitch(low)
		high_pitch = parse_pitch(high)

		if low_pitch is None or high_pitch is None:
			raise ValueError(f"Invalid keyboard range {low!r}..{high!r}: use MIDI numbers or note names like C2")

		return cls(low=min(low_pitch, high_pitch), high=max(low_pitch, high_pitch), strict=strict)


class KeyboardRangeFitter:

	"""
	Computes the :class:`DisplayWindow` a keyboard needs for a timeline.
	"""

	def __init__ (
		self,
		min_octaves: int = kb.MIN_OCTAVES,
		pad_semitones: int = kb.PAD_SEMITONES,
		lowest_emittable: int = kb.LOWEST_EMITTABLE_PITCH
	) -> None:

		if min_octaves < 1:
			raise ValueError("min_octaves must be at least 1")

		if pad_semitones < 0:
			raise ValueError("pad_semitones cannot be negative")

		self.min_octaves = min_octaves
		self.pad_semitones = pad_semitones
		self.lowest_emittable = lowest_emittable

	def fit_range (self, low: int, high: int, floor: typing.Optional[int] = None) -> DisplayWindow:

		"""Octave-align an arbitrary pitch range.

		Parameters:
			low: Lowest pitch that must be visible.
			high: Highest pitch that must be visible.
			floor: Lowest pitch allowed (defaults to the lowest emittable pitch).
		"""

		floor = self.lowest_emittable if floor is None else floor

		low = max(floor, min(kb.HIGHEST_PITCH, low))
		high = max(low, min(kb.HIGHEST_PITCH, high))

		octave = kb.SEMITONES_PER_OCTAVE
		fit_low = (low // octave) * octave
		fit_high = math.ceil((high + 1) / octave) * octave - 1
		octaves = max(self.min_octaves, (fit_high - fit_low + 1) // octave)

		return DisplayWindow(fit_low, fit_low + octaves * octave - 1)

	def fit (
		self,
		timeline: scorelight.timeline.Timeline,
		override: typing.Optional[RangeOverride] = None,
		transpose: int = 0,
		force_fit: bool = False
	) -> DisplayWindow:

		"""Fit the keyboard window to a timeline.

		Parameters:
			timeline: The loaded notes.
			override: Optional user range (strict replaces, non-strict merges).
			transpose: Visual transpose in semitones; only the keyboard window
				moves, the timeline keeps its true pitches.
			force_fit: Fit to the notes even when a strict override is set.
		"""

		if override is not None and override.strict and not force_fit:
			window = self.fit_range(override.low, override.high)
			logger.info(f"Keyboard range (strict) MIDI {window.low_pitch}..{window.high_pitch}, {window.octaves} octaves")
			return window

		pitch_range = timeline.pitch_range()

		if pitch_range is None:
			if override is not None:
				return self.fit_range(override.low, override.high)
			return DEFAULT_WINDOW

		low = max(self.lowest_emittable, pitch_range[0] + transpose - self.pad_semitones)
		high = min(kb.HIGHEST_PITCH, pitch_range[1] + transpose + self.pad_semitones)

		if override is not None and not override.strict:
			low = min(low, override.low)
			high = max(high, override.high)

		window = self.fit_range(low, high)
		logger.info(f"Keyboard range MIDI {window.low_pitch}..{window.high_pitch}, {window.octaves} octaves, leftmost key {window.leftmost_index(self.lowest_emittable)}")

		return window

	def fit_roll (self, timeline: scorelight.timeline.Timeline) -> DisplayWindow:

		"""Fit a piano-roll window to the true pitches (no transpose, no override, floor 0)."""

		pitch_range = timeline.pitch_range()

		if pitch_range is None:
			return DEFAULT_WINDOW

		return self.fit_range(pitch_range[0] - self.pad_semitones, pitch_range[1] + self.pad_semitones, floor=0)
