"""Nominal tempo detection from MusicXML metadata.

The nominal tempo is expressed in quarter notes per minute. It is read from
the score in this order, and the first match wins:

1. The first ``<sound tempo="...">`` value (already in quarter notes per
   minute), rounded to the nearest integer. An unusable first value falls
   through to the metronome; later ``<sound>`` tempos are never read.

2. The first ``<direction-type><metronome>`` mark, converted from its beat
   unit: "dotted quarter = 60" is 90 quarter notes per minute.

When neither is present (or the first metronome mark is unusable, e.g. a
metric modulation with no ``<per-minute>``), nothing is detected and the
caller keeps whatever tempo it already had.
"""

import logging
import math
import typing

import scorelight.constants.durations
import scorelight.musicxml


logger = logging.getLogger(__name__)


def round_half_up (value: float) -> int:

	"""Round to the nearest integer, halves away from zero for positive values."""

	return int(math.floor(value + 0.5))


def dot_factor (dots: int) -> float:

	"""Length multiplier for ``dots`` augmentation dots: 1, 1.5, 1.75, ..."""

	return 1.0 + sum(0.5 ** k for k in range(1, dots + 1))


def quarter_notes_per_minute (per_minute: float, beat_unit: str, dots: int = 0) -> int:

	"""Convert a metronome mark to whole quarter notes per minute (at least 1).

	Parameters:
		per_minute: Number of beat units per minute.
		beat_unit: MusicXML note type name ("quarter", "eighth", "16th", ...).
			Unknown names count as a quarter note.
		dots: Number of augmentation dots on the beat unit.

	Example:
		```python
		quarter_notes_per_minute(60, "eighth", dots=1)  # 45
		```
	"""

	if per_minute <= 0:
		raise ValueError("per_minute must be positive")

	if dots < 0:
		raise ValueError("dots cannot be negative")

	base = scorelight.constants.durations.BEAT_UNITS.get(beat_unit.strip().lower(), scorelight.constants.durations.QUARTER)

	return max(1, round_half_up(per_minute * base * dot_factor(dots)))


def _sound_tempo (root: scorelight.musicxml.Element) -> typing.Optional[int]:

	for sound in root.iter("sound"):

		raw = sound.get("tempo")

		if raw is None:
			continue

		# Only the first tempo directive counts, usable or not.
		try:
			tempo = float(raw)
		except ValueError:
			logger.debug(f"First sound tempo {raw!r} is not a number")
			return None

		if math.isfinite(tempo) and tempo > 0:
			return max(1, round_half_up(tempo))

		logger.debug(f"First sound tempo {raw!r} is not positive")
		return None

	return None


def _metronome_tempo (root: scorelight.musicxml.Element) -> typing.Optional[int]:

	for direction_type in root.iter("direction-type"):

		metronome = direction_type.find("metronome")

		if metronome is None:
			continue

		# Only the first metronome mark counts, usable or not.
		per_minute = scorelight.musicxml.element_number(metronome, "per-minute")
		beat_unit = scorelight.musicxml.element_text(metronome, "beat-unit")

		if per_minute is None or per_minute <= 0 or beat_unit is None:
			logger.debug("First metronome mark has no usable per-minute/beat-unit")
			return None

		dots = len(metronome.findall("beat-unit-dot"))
		return quarter_notes_per_minute(per_minute, beat_unit, dots)

	return None


def detect_tempo_from_root (root: scorelight.musicxml.Element) -> typing.Optional[int]:

	"""Detect the nominal tempo of an already parsed score, or return None."""

	tempo = _sound_tempo(root)

	if tempo is None:
		tempo = _metronome_tempo(root)

	if tempo is None:
		logger.info("No tempo found in score")
	else:
		logger.info(f"Tempo from score: {tempo} BPM")

	return tempo


def detect_tempo (markup: scorelight.musicxml.Markup) -> typing.Optional[int]:

	"""Detect the nominal tempo (quarter notes per minute) of MusicXML markup.

	Returns ``None`` when the score carries no usable tempo.

	Raises:
		scorelight.errors.ScoreParseError: The markup is not well-formed XML.
	"""

	return detect_tempo_from_root(scorelight.musicxml.parse_markup(markup, require_score=False))
