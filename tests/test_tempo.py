import pytest

import scorelight.errors
import scorelight.tempo


def metronome (per_minute: str, beat_unit: str, dots: int = 0) -> str:

	return (
		"<direction><direction-type><metronome>"
		f"<beat-unit>{beat_unit}</beat-unit>"
		+ "<beat-unit-dot/>" * dots
		+ f"<per-minute>{per_minute}</per-minute>"
		"</metronome></direction-type></direction>"
	)


def with_directions (*directions: str) -> str:
	return '<score-partwise><part id="P1"><measure number="1">' + "".join(directions) + "</measure></part></score-partwise>"


def test_quarter_note_metronome () -> None:

	"""quarter = 120 is 120 BPM."""

	assert scorelight.tempo.detect_tempo(with_directions(metronome("120", "quarter"))) == 120


def test_dotted_eighth_metronome () -> None:

	"""dotted eighth = 60 is 45 quarter notes per minute."""

	assert scorelight.tempo.detect_tempo(with_directions(metronome("60", "eighth", dots=1))) == 45


def test_sound_tempo_wins_over_metronome () -> None:

	"""An explicit ``<sound tempo>`` is used before any metronome mark."""

	markup = with_directions(metronome("60", "half"), '<sound tempo="96.4"/>')

	assert scorelight.tempo.detect_tempo(markup) == 96


def test_sound_tempo_rounds_half_up () -> None:

	"""Sound tempos are rounded to the nearest integer, halves up."""

	assert scorelight.tempo.detect_tempo(with_directions('<sound tempo="72.5"/>')) == 73


@pytest.mark.parametrize("first", ['<sound tempo="fast"/>', '<sound tempo="0"/>', '<sound tempo="-60"/>'])
def test_unusable_first_sound_tempo_falls_through_to_metronome (first: str) -> None:

	"""A bad first sound tempo is not replaced by a later one; the metronome is used."""

	markup = with_directions(first, '<sound tempo="132"/>', metronome("80", "quarter"))

	assert scorelight.tempo.detect_tempo(markup) == 80


def test_sound_without_tempo_is_skipped () -> None:

	"""A sound element carrying only dynamics does not end the search."""

	markup = with_directions('<sound dynamics="80"/>', '<sound tempo="132"/>')

	assert scorelight.tempo.detect_tempo(markup) == 132


def test_only_first_metronome_is_used () -> None:

	"""A later metronome mark is ignored even when the first one is unusable."""

	markup = with_directions(metronome("", "quarter"), metronome("100", "quarter"))

	assert scorelight.tempo.detect_tempo(markup) is None


def test_no_tempo () -> None:

	"""A score without tempo markings yields None."""

	assert scorelight.tempo.detect_tempo(with_directions()) is None


def test_unknown_beat_unit_counts_as_quarter () -> None:

	"""Unrecognised beat units fall back to a quarter note."""

	assert scorelight.tempo.detect_tempo(with_directions(metronome("90", "breve"))) == 90


def test_tempo_is_at_least_one () -> None:

	"""Very slow marks are floored at 1 BPM."""

	assert scorelight.tempo.detect_tempo(with_directions(metronome("1", "64th"))) == 1


def test_malformed_markup_raises () -> None:

	"""Broken markup raises ScoreParseError."""

	with pytest.raises(scorelight.errors.ScoreParseError):
		scorelight.tempo.detect_tempo("<score-partwise>")


@pytest.mark.parametrize("per_minute,unit,dots,expected", [
	(120, "quarter", 0, 120),
	(60, "half", 0, 120),
	(60, "half", 1, 180),
	(40, "whole", 0, 160),
	(60, "eighth", 1, 45),
	(120, "8th", 0, 60),
	(100, "16th", 0, 25),
	(60, "quarter", 2, 105),
	(100, "32nd", 0, 13),
])
def test_quarter_notes_per_minute (per_minute: float, unit: str, dots: int, expected: int) -> None:

	"""Metronome marks convert to quarter notes per minute."""

	assert scorelight.tempo.quarter_notes_per_minute(per_minute, unit, dots) == expected


def test_dot_factor () -> None:

	"""Each dot adds half of the previous addition."""

	assert scorelight.tempo.dot_factor(0) == 1.0
	assert scorelight.tempo.dot_factor(1) == 1.5
	assert scorelight.tempo.dot_factor(3) == 1.875


def test_quarter_notes_per_minute_rejects_bad_input () -> None:

	"""Non-positive rates and negative dots raise ValueError."""

	with pytest.raises(ValueError):
		scorelight.tempo.quarter_notes_per_minute(0, "quarter")

	with pytest.raises(ValueError):
		scorelight.tempo.quarter_notes_per_minute(60, "quarter", dots=-1)
