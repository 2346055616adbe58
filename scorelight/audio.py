"""MIDI audio output shared by scheduled playback and manual keys.

scorelight produces no sound itself; it drives a MIDI synthesizer (hardware,
a softsynth or the OS default synth) through ``mido``. One :class:`MidiAudio`
handle is created per process and passed to every component that sounds
notes, so the scheduler and manual key presses resolve to the same voice
table and :meth:`MidiAudio.silence_all` silences both.

Voices are spread round-robin over the melodic MIDI channels (the GM drum
channel is skipped). That lets scheduled playback sound the same pitch
twice at once: each voice gets its own channel, so releasing one does not
cut the other. Manual input is monophonic per pitch.

The port is opened lazily on first use. If it cannot be opened the handle
stays silent until :meth:`MidiAudio.resume` is called explicitly, for example
from a "test tone" button; it is never reopened behind the caller's back.
"""

import itertools
import logging
import time
import typing

import mido

import scorelight.constants.velocity


logger = logging.getLogger(__name__)


DRUM_CHANNEL = 9
MELODIC_CHANNELS = [ch for ch in range(16) if ch != DRUM_CHANNEL]

# Late scheduled notes beyond this many seconds are reported at debug level.
LATE_WARNING_SECONDS = 0.02

CC_ALL_NOTES_OFF = 123


@typing.runtime_checkable
class AudioOutput (typing.Protocol):

	"""
	What the scheduler, the keyboard and the player need from an audio device.
	"""

	def play_pitch (self, pitch: int, velocity: int) -> None:
		"""Start a manual note; ignored if that pitch is already held by hand."""
		...

	def release_pitch (self, pitch: int) -> None:
		"""Release a manual note; ignored if it is not sounding."""
		...

	def schedule_onset (self, pitch: int, time: float, velocity: int) -> typing.Optional[int]:
		"""Start a scheduled voice due at ``time`` and return its token."""
		...

	def schedule_release (self, token: int, time: float) -> None:
		"""Release the scheduled voice ``token`` due at ``time``."""
		...

	def silence_all (self) -> None:
		"""Release every sounding voice, scheduled or manual."""
		...

	def resume (self) -> bool:
		"""Explicitly retry opening the device; True when it is usable."""
		...


def select_output_device (device_name: typing.Optional[str] = None) -> typing.Tuple[typing.Optional[str], typing.Optional[typing.Any]]:

	"""
	Select and open a MIDI output device.

	If ``device_name`` is provided, opens that device. Otherwise the first
	available output is used (the OS default synth on most systems).

	Returns:
		A tuple of (device_name, midi_out_object) or (None, None) on failure.
	"""

	try:
		outputs = mido.get_output_names()
		logger.info(f"Available MIDI outputs: {outputs}")

		if not outputs:
			logger.error("No MIDI output devices found.")
			return None, None

		if device_name is not None and device_name not in outputs:
			logger.error(f"MIDI output device '{device_name}' not found. Available devices: {outputs}")
			return None, None

		selected_name = device_name if device_name is not None else outputs[0]
		midi_out = mido.open_output(selected_name)
		logger.info(f"Opened MIDI output: {selected_name}")

		return selected_name, midi_out

	except Exception as e:
		logger.error(f"Failed to open MIDI output: {e}")
		return None, None


class VoiceTable:

	"""
	Sounding voices keyed by token, with manual notes indexed by pitch.

	Tokens are unique for the life of the table, so a stale release for a
	voice that was already silenced is harmless.
	"""

	def __init__ (self, channels: typing.Sequence[int] = MELODIC_CHANNELS) -> None:

		if not channels:
			raise ValueError("At least one MIDI channel is required")

		self.channels: typing.List[int] = list(channels)
		self.voices: typing.Dict[int, typing.Tuple[int, int]] = {}
		self.manual: typing.Dict[int, int] = {}
		self._tokens = itertools.count(1)
		self._next_channel = 0

	def allocate (self, pitch: int) -> typing.Tuple[int, int]:

		"""Reserve a voice for ``pitch`` and return ``(token, channel)``.

		Channels are tried round-robin, skipping any that already sound
		``pitch``, because a note off there would cut the other voice. Only
		when every channel holds the pitch is one shared.
		"""

		busy = {channel for channel, sounding in self.voices.values() if sounding == pitch}
		count = len(self.channels)
		offset = 0

		for step in range(count):
			if self.channels[(self._next_channel + step) % count] not in busy:
				offset = step
				break

		channel = self.channels[(self._next_channel + offset) % count]
		self._next_channel += offset + 1

		token = next(self._tokens)
		self.voices[token] = (channel, pitch)

		return token, channel

	def release (self, token: int) -> typing.Optional[typing.Tuple[int, int]]:

		"""Forget a voice and return its ``(channel, pitch)``, or None if unknown."""

		voice = self.voices.pop(token, None)

		if voice is not None:
			for pitch, manual_token in list(self.manual.items()):
				if manual_token == token:
					del self.manual[pitch]

		return voice

	def clear (self) -> typing.List[typing.Tuple[int, int]]:

		"""Forget every voice and return what was sounding."""

		sounding = list(self.voices.values())
		self.voices.clear()
		self.manual.clear()

		return sounding

	def sounding_pitches (self) -> typing.Set[int]:
		return {pitch for _, pitch in self.voices.values()}


def _clamp_velocity (velocity: int) -> int:

	return max(scorelight.constants.velocity.MIN_VELOCITY, min(int(velocity), scorelight.constants.velocity.MAX_VELOCITY))


class MidiAudio:

	"""
	The process-wide audio handle: a lazily opened ``mido`` output port plus
	the shared :class:`VoiceTable`.
	"""

	def __init__ (
		self,
		device_name: typing.Optional[str] = None,
		channels: typing.Sequence[int] = MELODIC_CHANNELS,
		program: int = 0,
		clock: typing.Callable[[], float] = time.perf_counter
	) -> None:

		"""Create the handle without touching any MIDI device.

		Parameters:
			device_name: MIDI output name. When omitted the first available
				output is used.
			channels: MIDI channels voices are spread over.
			program: GM program selected on every channel when the port opens
				(0 = Acoustic Grand Piano).
			clock: Time source used to report late scheduled notes.
		"""

		self.device_name = device_name
		self.program = program
		self.voices = VoiceTable(channels)
		self.midi_out: typing.Optional[typing.Any] = None
		self._clock = clock
		self._opened = False

	@property
	def is_open (self) -> bool:
		return self.midi_out is not None

	def open (self) -> bool:

		"""Open the output port on first use. Later calls never reopen it."""

		if self._opened:
			return self.midi_out is not None

		self._opened = True

		device_name, midi_out = select_output_device(self.device_name)

		if midi_out is None:
			logger.warning("Audio output unavailable; notes will be silent until resume()")
			return False

		self.device_name = device_name
		self.midi_out = midi_out

		for channel in self.voices.channels:
			self._send(mido.Message('program_change', channel=channel, program=self.program))

		return True

	def resume (self) -> bool:

		"""Explicitly (re)open the port, e.g. after a user gesture. Returns True when open."""

		if self.midi_out is None:
			self._opened = False

		return self.open()

	def close (self) -> None:

		"""Release every voice and close the port."""

		self.silence_all()

		if self.midi_out is not None:
			try:
				self.midi_out.close()
			except Exception:
				logger.exception("Failed to close MIDI output")
			self.midi_out = None

	def _send (self, message: mido.Message) -> None:

		if self.midi_out is None and not self.open():
			return

		try:
			self.midi_out.send(message)  # type: ignore[union-attr]
		except Exception:
			logger.exception("MIDI send failed (device may be disconnected)")

	def _voice_on (self, pitch: int, velocity: int) -> int:

		token, channel = self.voices.allocate(pitch)
		self._send(mido.Message('note_on', channel=channel, note=pitch, velocity=_clamp_velocity(velocity)))

		return token

	def _voice_off (self, token: int) -> None:

		voice = self.voices.release(token)

		if voice is None:
			return

		channel, pitch = voice
		self._send(mido.Message('note_off', channel=channel, note=pitch, velocity=0))

	def play_pitch (self, pitch: int, velocity: int = scorelight.constants.velocity.DEFAULT_MANUAL_VELOCITY) -> None:

		"""Start a manual note. A pitch already held by hand is ignored."""

		if not 0 <= pitch <= 127:
			raise ValueError(f"Pitch {pitch} is outside the MIDI range 0-127")

		if pitch in self.voices.manual:
			return

		self.voices.manual[pitch] = self._voice_on(pitch, velocity)

	def release_pitch (self, pitch: int) -> None:

		"""Release a manual note; a pitch that is not held is ignored."""

		token = self.voices.manual.get(pitch)

		if token is not None:
			self._voice_off(token)

	def schedule_onset (self, pitch: int, time: float, velocity: int = scorelight.constants.velocity.DEFAULT_PLAYBACK_VELOCITY) -> int:

		"""Start a scheduled voice. ``time`` is when it was due, for lateness reporting."""

		late = self._clock() - time

		if late > LATE_WARNING_SECONDS:
			logger.debug(f"Note {pitch} started {late * 1000:.1f} ms late")

		return self._voice_on(pitch, velocity)

	def schedule_release (self, token: int, time: float) -> None:

		"""Release a scheduled voice; unknown or already released tokens are ignored."""

		self._voice_off(token)

	def silence_all (self) -> None:

		"""Release every voice (note off, not an abrupt sound cut) on every channel.

		Tracked voices get their own note off; an All Notes Off controller on
		each channel then catches anything the table no longer knows about.
		"""

		sounding = self.voices.clear()

		if self.midi_out is None:
			return

		for channel, pitch in sounding:
			self._send(mido.Message('note_off', channel=channel, note=pitch, velocity=0))

		for channel in self.voices.channels:
			self._send(mido.Message('control_change', channel=channel, control=CC_ALL_NOTES_OFF, value=0))

		logger.debug(f"Released {len(sounding)} voices")
