"""MusicXML to beat timeline extraction.

Walks every part of a MusicXML score (``score-partwise``, or
``score-timewise`` regrouped per part) and produces a :class:`Timeline` of
sounding notes measured in quarter-note beats.

How time is tracked:

- ``<divisions>`` gives ticks per quarter note. It starts at 1 for each part
  and is replaced whenever an ``<attributes>`` block declares a new value,
  including mid-measure.
- Each voice has a beat cursor. Notes and rests advance it, ``<backup>`` moves
  it back (never below zero) and ``<forward>`` moves it on. When the stream
  of notes switches to another voice, that voice picks up the position where
  the previous voice left the stream, which is how MusicXML lays out several
  voices in one measure with ``<backup>``.
- ``<chord/>`` notes start together with the previous note of their voice
  and do not advance the cursor.
- Tied notes (``<tie type="start|stop">``) are merged into one event.

Notes without a usable pitch (unpitched percussion, missing step or octave)
and zero-length notes (grace notes) produce no event; they still move the
cursor by whatever duration they declare.

```python
timeline = scorelight.musicxml.extract_timeline(xml_text)
print(timeline.total_beats)
```
"""

import dataclasses
import logging
import math
import typing
import xml.etree.ElementTree

import scorelight.errors
import scorelight.timeline


logger = logging.getLogger(__name__)


PARTWISE = "score-partwise"
TIMEWISE = "score-timewise"
DEFAULT_VOICE = "1"

STEP_SEMITONES = {"C": 0, "D": 2, "E": 4, "F": 5, "G": 7, "A": 9, "B": 11}

Markup = typing.Union[str, bytes]
Element = xml.etree.ElementTree.Element


def parse_markup (markup: Markup, require_score: bool = True) -> Element:

	"""Parse raw markup into an element tree root.

	Parameters:
		markup: MusicXML text or bytes.
		require_score: When True, the root must be ``<score-partwise>`` or
			``<score-timewise>``.

	Raises:
		scorelight.errors.ScoreParseError: The markup is not well-formed, or
			is not a MusicXML score when ``require_score`` is set.
	"""

	try:
		root = xml.etree.ElementTree.fromstring(markup)
	except xml.etree.ElementTree.ParseError as exc:
		raise scorelight.errors.ScoreParseError(f"Markup is not well-formed XML: {exc}") from exc

	if require_score and root.tag not in (PARTWISE, TIMEWISE):
		raise scorelight.errors.ScoreParseError(
			f"Unsupported root element <{root.tag}> (expected <{PARTWISE}> or <{TIMEWISE}>)"
		)

	return root


def element_text (element: Element, path: str) -> typing.Optional[str]:

	"""Stripped text of the first match for ``path``, or None when absent or empty."""

	found = element.find(path)

	if found is None or found.text is None:
		return None

	text = found.text.strip()
	return text or None


def element_number (element: Element, path: str) -> typing.Optional[float]:

	"""Finite float value of the first match for ``path``, or None."""

	text = element_text(element, path)

	if text is None:
		return None

	try:
		value = float(text)
	except ValueError:
		return None

	return value if math.isfinite(value) else None


def read_pitch (note: Element) -> typing.Optional[int]:

	"""Return the MIDI pitch of a ``<note>``, or None when it has no usable pitch.

	``12 * (octave + 1) + semitone(step) + alter`` with C4 = 60. Fractional
	alters (microtones) are rounded half up to the nearest semitone.
	"""

	pitch = note.find("pitch")

	if pitch is None:
		return None

	step = element_text(pitch, "step")
	octave = element_number(pitch, "octave")

	if step is None or step.upper() not in STEP_SEMITONES or octave is None:
		return None

	alter = element_number(pitch, "alter") or 0.0
	midi = math.floor(12 * (octave + 1) + STEP_SEMITONES[step.upper()] + alter + 0.5)

	if not 0 <= midi <= 127:
		return None

	return midi


def _tie_types (note: Element) -> typing.Set[str]:

	"""Tie types on a note, read from ``<tie>`` or, failing that, ``<notations><tied>``."""

	ties = note.findall("tie")

	if not ties:
		ties = note.findall("notations/tied")

	return {t.get("type", "") for t in ties}


def iter_parts (root: Element) -> typing.Iterator[typing.Tuple[str, typing.List[Element]]]:

	"""Yield ``(part_id, measures)`` for each part of a score.

	For a timewise score the measures of one part are the ``<part>`` elements
	nested in each ``<measure>``; their children are the same note, backup,
	forward and attributes elements as in a partwise measure.
	"""

	if root.tag == TIMEWISE:

		grouped: typing.Dict[str, typing.List[Element]] = {}

		for measure in root.findall("measure"):
			for part in measure.findall("part"):
				grouped.setdefault(part.get("id", ""), []).append(part)

		yield from grouped.items()
		return

	for position, part in enumerate(root.findall("part")):
		yield part.get("id", f"P{position + 1}"), part.findall("measure")


@dataclasses.dataclass
class _Slot:

	"""Mutable note under construction; ties extend ``end``."""

	pitch: int
	start: float
	end: float


class _PartState:

	"""
	Parse-time state of one part: divisions, voice cursors and open ties.
	"""

	def __init__ (self, part_id: str) -> None:

		self.part_id = part_id
		self.divisions: float = 1.0
		self.cursors: typing.Dict[str, float] = {DEFAULT_VOICE: 0.0}
		self.current_voice: str = DEFAULT_VOICE
		self.chord_starts: typing.Dict[str, float] = {}
		self.last_lead_start: float = 0.0
		self.open_ties: typing.Dict[typing.Tuple[str, int], int] = {}
		self.slots: typing.List[_Slot] = []

	def enter_voice (self, voice: str) -> float:

		"""Make ``voice`` the voice holding the stream and return its cursor."""

		if voice != self.current_voice:
			self.cursors[voice] = self.cursors.get(self.current_voice, 0.0)
			self.current_voice = voice

		return self.cursors.setdefault(voice, 0.0)

	def advance (self, beats: float) -> None:

		self.cursors[self.current_voice] = self.cursors.get(self.current_voice, 0.0) + beats

	def rewind (self, beats: float) -> None:

		self.cursors[self.current_voice] = max(0.0, self.cursors.get(self.current_voice, 0.0) - beats)

	def beats (self, element: Element) -> typing.Optional[float]:

		"""Duration of an element in beats, or None when it declares none."""

		ticks = element_number(element, "duration")

		if ticks is None:
			return None

		return max(0.0, ticks) / self.divisions


class TimelineExtractor:

	"""
	Converts MusicXML markup into a :class:`~scorelight.timeline.Timeline`.

	One extractor can be reused; each call to :meth:`extract` starts from a
	clean state. After a call, :attr:`part_cursors` holds the final voice
	cursors of every part, which is handy for checking measure arithmetic.
	"""

	def __init__ (self) -> None:

		self.part_cursors: typing.Dict[str, typing.Dict[str, float]] = {}

	def extract (self, markup: Markup, bpm: typing.Optional[float] = None) -> scorelight.timeline.Timeline:

		"""Extract the note timeline of a score.

		Parameters:
			markup: MusicXML text or bytes.
			bpm: Optional tempo used only to log the real-time length. The
				timeline itself is always in beats.

		Raises:
			scorelight.errors.ScoreParseError: The markup cannot be parsed.
		"""

		return self.extract_root(parse_markup(markup), bpm=bpm)

	def extract_root (self, root: Element, bpm: typing.Optional[float] = None) -> scorelight.timeline.Timeline:

		"""Extract the timeline of an already parsed score root."""

		self.part_cursors = {}
		events: typing.List[scorelight.timeline.NoteEvent] = []

		for part_id, measures in iter_parts(root):

			state = _PartState(part_id)

			for measure in measures:
				self._read_measure(state, measure)

			self.part_cursors[part_id] = dict(state.cursors)

			events.extend(
				scorelight.timeline.NoteEvent(pitch=slot.pitch, start_beat=slot.start, end_beat=slot.end)
				for slot in state.slots
				if slot.end > slot.start
			)

		timeline = scorelight.timeline.Timeline(events)

		if timeline.is_empty:
			logger.warning("No notes found in score (rests or layout only?)")
		elif bpm:
			logger.info(f"Extracted {len(timeline)} notes, {timeline.total_beats:.2f} beats ({timeline.seconds_at(bpm):.2f}s at {bpm:g} BPM)")
		else:
			logger.info(f"Extracted {len(timeline)} notes, {timeline.total_beats:.2f} beats")

		return timeline

	def _read_measure (self, state: _PartState, measure: Element) -> None:

		"""Process the children of one measure in document order."""

		for child in measure:

			if child.tag == "note":
				self._read_note(state, child)

			elif child.tag == "backup":
				state.rewind(state.beats(child) or 0.0)

			elif child.tag == "forward":
				voice = element_text(child, "voice")
				if voice is not None:
					state.enter_voice(voice)
				state.advance(state.beats(child) or 0.0)

			elif child.tag == "attributes":
				divisions = element_number(child, "divisions")
				if divisions is not None and divisions > 0:
					state.divisions = divisions
				elif child.find("divisions") is not None:
					logger.debug(f"Part {state.part_id}: ignoring invalid divisions, keeping {state.divisions:g}")

	def _read_note (self, state: _PartState, note: Element) -> None:

		"""Place one ``<note>`` on its voice cursor."""

		voice = element_text(note, "voice") or DEFAULT_VOICE
		is_chord = note.find("chord") is not None
		length = state.beats(note)

		if note.find("rest") is not None:
			state.enter_voice(voice)
			state.advance(length or 0.0)
			return

		if is_chord:
			start = state.chord_starts.get(voice, state.last_lead_start)
		else:
			start = state.enter_voice(voice)
			state.chord_starts[voice] = start
			state.last_lead_start = start

		pitch = read_pitch(note)

		if pitch is None:
			logger.debug(f"Part {state.part_id}: dropping note without a usable pitch at beat {start:g}")

		elif length is None and is_chord:
			logger.debug(f"Part {state.part_id}: dropping chord note without duration at beat {start:g}")

		else:
			self._place(state, voice, pitch, start, start + (length or 0.0), _tie_types(note))

		if not is_chord:
			state.advance(length or 0.0)

	@staticmethod
	def _place (state: _PartState, voice: str, pitch: int, start: float, end: float, ties: typing.Set[str]) -> None:

		"""Record a note, merging it into an open tie when it continues one."""

		key = (voice, pitch)
		tie_start = "start" in ties
		tie_stop = "stop" in ties

		if tie_stop and key in state.open_ties:

			slot = state.slots[state.open_ties[key]]
			slot.end = max(slot.end, end)

			if not tie_start:
				del state.open_ties[key]

			return

		# A tie-stop without an open tie is just an ordinary note.
		if end <= start:
			return

		state.slots.append(_Slot(pitch=pitch, start=start, end=end))

		if tie_start:
			state.open_ties[key] = len(state.slots) - 1
		else:
			state.open_ties.pop(key, None)


def extract_timeline (markup: Markup, bpm: typing.Optional[float] = None) -> scorelight.timeline.Timeline:

	"""Extract the note timeline of a MusicXML score (see :class:`TimelineExtractor`)."""

	return TimelineExtractor().extract(markup, bpm=bpm)
