"""Keyboard capability: index mapping, lighting and manual key input.

The keyboard widget reports presses either as a MIDI pitch or as a key
index, depending on which callback fired. :meth:`Keyboard.resolve_pitch` is
the single place where that ambiguity is resolved; everything past it deals
in true pitches.

A visual transpose shifts only which key lights up. Sound and the timeline
always use the untransposed pitch, so the conversion lives here and nowhere
else:

	visual pitch = true pitch + transpose
	index        = visual pitch - base
"""

import collections.abc
import dataclasses
import logging
import math
import numbers
import typing

import scorelight.audio
import scorelight.constants.keyboard
import scorelight.constants.velocity
import scorelight.keyboard_range
import scorelight.lighting


logger = logging.getLogger(__name__)


@dataclasses.dataclass (frozen=True)
class KeyIndex:

	"""A keyboard position, as opposed to a plain ``int`` which is a MIDI pitch."""

	index: int


KeyRef = typing.Union[int, float, KeyIndex, typing.Mapping[str, typing.Any]]


class KeyLayout:

	"""
	Maps true pitches to keyboard indices for one display window.
	"""

	def __init__ (
		self,
		window: scorelight.keyboard_range.DisplayWindow = scorelight.keyboard_range.DEFAULT_WINDOW,
		transpose: int = 0,
		base: int = scorelight.constants.keyboard.LOWEST_EMITTABLE_PITCH
	) -> None:

		self.window = window
		self.transpose = transpose
		self.base = base

	def index_for_pitch (self, pitch: int) -> typing.Optional[int]:

		"""Keyboard index that lights for a true pitch, or None when it is off the keyboard."""

		visual = pitch + self.transpose

		if not self.window.contains(visual):
			return None

		return self.window.index_of(visual, self.base)

	def pitch_for_index (self, index: int) -> int:

		"""True pitch sounded by the key at ``index``."""

		return self.base + index - self.transpose

	def all_indices (self) -> typing.List[int]:
		return self.window.indices(self.base)


class Keyboard:

	"""
	Manual key input and direct lighting, bypassing the scheduler.

	Presses go straight to the shared audio handle. A pitch already held by
	hand is ignored until it is released.
	"""

	def __init__ (
		self,
		audio: scorelight.audio.AudioOutput,
		lighting: scorelight.lighting.LightingOutput,
		layout: typing.Optional[KeyLayout] = None,
		velocity: int = scorelight.constants.velocity.DEFAULT_MANUAL_VELOCITY
	) -> None:

		self.audio = audio
		self.lighting = lighting
		self.layout = layout if layout is not None else KeyLayout()
		self.velocity = velocity

	def resolve_pitch (self, key: KeyRef) -> typing.Optional[int]:

		"""Turn a widget key reference into a true MIDI pitch, or None if invalid.

		Accepts a pitch number, a :class:`KeyIndex`, or a widget payload
		mapping with ``midi``/``note`` (pitch) or ``index``/``keyIndex``
		(position) entries.
		"""

		pitch: typing.Optional[float] = None

		if isinstance(key, KeyIndex):
			pitch = self.layout.pitch_for_index(key.index)

		elif isinstance(key, collections.abc.Mapping):
			for name in ("midi", "note"):
				if isinstance(key.get(name), numbers.Real):
					pitch = key[name]
					break
			else:
				for name in ("index", "keyIndex"):
					if isinstance(key.get(name), numbers.Real) and math.isfinite(key[name]):
						pitch = self.layout.pitch_for_index(round(key[name]))
						break

		elif isinstance(key, numbers.Real) and not isinstance(key, bool):
			pitch = key

		if pitch is None or not math.isfinite(pitch):
			return None

		midi = round(pitch)

		return midi if 0 <= midi <= 127 else None

	def emit_press (self, key: KeyRef) -> typing.Optional[int]:

		"""Sound a key pressed by hand. Returns the pitch, or None if the key was invalid."""

		pitch = self.resolve_pitch(key)

		if pitch is None:
			logger.debug(f"Ignoring press of invalid key {key!r}")
			return None

		self.audio.play_pitch(pitch, self.velocity)
		return pitch

	def emit_release (self, key: KeyRef) -> typing.Optional[int]:

		"""Release a key pressed by hand. Returns the pitch, or None if the key was invalid."""

		pitch = self.resolve_pitch(key)

		if pitch is None:
			logger.debug(f"Ignoring release of invalid key {key!r}")
			return None

		self.audio.release_pitch(pitch)
		return pitch

	def light (self, indices: typing.Iterable[int]) -> None:
		self.lighting.light(list(indices))

	def dim (self, indices: typing.Iterable[int]) -> None:
		self.lighting.dim(list(indices))

	def light_pitch (self, pitch: int) -> None:

		index = self.layout.index_for_pitch(pitch)

		if index is not None:
			self.lighting.light([index])

	def dim_pitch (self, pitch: int) -> None:

		index = self.layout.index_for_pitch(pitch)

		if index is not None:
			self.lighting.dim([index])

	def dim_all (self) -> None:

		"""Return every key of the window to the unlit state."""

		self.lighting.dim(self.layout.all_indices())
