"""Tempo-independent note timeline.

A :class:`Timeline` is the result of extracting a score: an ordered, immutable
sequence of :class:`NoteEvent` objects measured in **beats** (1.0 = one quarter
note). Nothing in a timeline depends on tempo - the scheduler converts beats to
seconds only when a playback pass is scheduled.
"""

import dataclasses
import typing


@dataclasses.dataclass (frozen=True)
class NoteEvent:

	"""
	A single sounding note, from its attack to its release, in beats.
	"""

	pitch: int
	start_beat: float
	end_beat: float

	def __post_init__ (self) -> None:

		if not 0 <= self.pitch <= 127:
			raise ValueError(f"Pitch {self.pitch} is outside the MIDI range 0-127")

		if self.start_beat < 0:
			raise ValueError("start_beat cannot be negative")

		if self.end_beat <= self.start_beat:
			raise ValueError("end_beat must be greater than start_beat")

	@property
	def duration (self) -> float:

		"""Length of the note in beats."""

		return self.end_beat - self.start_beat


class Timeline:

	"""
	Ordered note events of one loaded score.

	Events are sorted ascending by ``start_beat``. The sort is stable, so
	notes that start together keep the order in which they were extracted.
	A timeline is never modified after construction; loading another score
	replaces it wholesale.
	"""

	def __init__ (self, events: typing.Iterable[NoteEvent] = ()) -> None:

		self._events: typing.Tuple[NoteEvent, ...] = tuple(sorted(events, key=lambda e: e.start_beat))
		self._total_beats: float = max((e.end_beat for e in self._events), default=0.0)

	@property
	def events (self) -> typing.Tuple[NoteEvent, ...]:
		"""All note events, ascending by start beat."""
		return self._events

	@property
	def total_beats (self) -> float:
		"""End of the last sounding note, or 0.0 for an empty timeline."""
		return self._total_beats

	@property
	def is_empty (self) -> bool:
		return not self._events

	def __len__ (self) -> int:
		return len(self._events)

	def __iter__ (self) -> typing.Iterator[NoteEvent]:
		return iter(self._events)

	def __getitem__ (self, index: int) -> NoteEvent:
		return self._events[index]

	def __eq__ (self, other: object) -> bool:

		if not isinstance(other, Timeline):
			return NotImplemented

		return self._events == other._events

	def __repr__ (self) -> str:
		return f"Timeline({len(self._events)} events, {self._total_beats:g} beats)"

	def pitch_range (self) -> typing.Optional[typing.Tuple[int, int]]:

		"""Return ``(lowest, highest)`` pitch, or ``None`` when empty."""

		if not self._events:
			return None

		pitches = [e.pitch for e in self._events]
		return min(pitches), max(pitches)

	def events_from (self, beat: float) -> typing.List[typing.Tuple[int, NoteEvent]]:

		"""Return ``(index, event)`` for the events still sounding at or after ``beat``.

		``index`` is the event's position in the whole timeline, so it is the
		same whichever beat a pass starts from. A note that started before
		``beat`` but ends after it is included, so a pass resumed mid-note
		re-attacks it instead of leaving a silent gap.
		"""

		return [(index, e) for index, e in enumerate(self._events) if beat <= 0 or e.end_beat > beat]

	def seconds_at (self, bpm: float) -> float:

		"""Real-time length of the timeline when played at ``bpm``."""

		if bpm <= 0:
			raise ValueError("BPM must be positive")

		return self._total_beats * 60.0 / bpm
