import asyncio
import collections
import dataclasses
import enum
import heapq
import itertools
import logging
import time
import typing

import scorelight.audio
import scorelight.constants.velocity
import scorelight.event_emitter
import scorelight.keyboard
import scorelight.lighting
import scorelight.timeline
import scorelight.transport


logger = logging.getLogger(__name__)


# Gap between start() and the first possible onset, so every command of a
# pass is in the future when it is queued.
DEFAULT_LEAD_IN = 0.03

# Longest single sleep of the dispatch task.
MAX_SLEEP = 0.05


class PlaybackState (enum.Enum):

	"""Lifecycle of the scheduler."""

	IDLE = "idle"
	SCHEDULED = "scheduled"
	PLAYING = "playing"
	STOPPED = "stopped"


class CommandKind (enum.IntEnum):

	"""
	What a scheduled command does when it fires.

	The numeric order is the firing order of commands due at the same
	instant: releases before attacks (so a repeated note on one key is not
	dimmed by its predecessor) and the end of the pass, where a looping
	pass restarts, after everything else.
	"""

	AUDIO_OFF = 0
	LIGHT_OFF = 1
	AUDIO_ON = 2
	LIGHT_ON = 3
	LOOP = 4


@dataclasses.dataclass (order=True)
class ScheduledCommand:

	"""
	A command due at ``fire_at`` seconds on the scheduler clock.
	"""

	fire_at: float
	kind: CommandKind
	sequence: int
	pitch: int = dataclasses.field(compare=False, default=0)
	velocity: int = dataclasses.field(compare=False, default=0)
	note_index: int = dataclasses.field(compare=False, default=-1)
	generation: int = dataclasses.field(compare=False, default=0)


class PlaybackScheduler:

	"""
	Turns a beat timeline into timed sound and light commands at a live tempo.

	Every pass is a batch of commands in a heap keyed by fire time, all
	tagged with the current **generation**. ``stop()``, ``retempo()`` and a
	loop restart bump the generation and drop the queue, and any command
	that still reaches the firing stage with an old generation is ignored,
	so nothing from a superseded pass can sound or light a key.

	When started inside a running asyncio loop the scheduler fires commands
	from its own task. Hosts with their own frame loop (or tests) can call
	:meth:`dispatch_due` instead.
	"""

	def __init__ (
		self,
		audio: scorelight.audio.AudioOutput,
		lighting: scorelight.lighting.LightingOutput,
		layout: typing.Optional[scorelight.keyboard.KeyLayout] = None,
		lead_in: float = DEFAULT_LEAD_IN,
		velocity: int = scorelight.constants.velocity.DEFAULT_PLAYBACK_VELOCITY,
		loop: bool = False,
		clock: typing.Callable[[], float] = time.perf_counter
	) -> None:

		"""Create an idle scheduler.

		Parameters:
			audio: Shared audio handle.
			lighting: Keyboard lighting output.
			layout: Pitch to keyboard index mapping (window and visual transpose).
			lead_in: Seconds between scheduling a pass and its first beat.
			velocity: MIDI velocity of every scheduled note.
			loop: Restart from beat 0 at the end of each pass.
			clock: Monotonic time source in seconds.
		"""

		if lead_in < 0:
			raise ValueError("lead_in cannot be negative")

		self.audio = audio
		self.lighting = lighting
		self.layout = layout if layout is not None else scorelight.keyboard.KeyLayout()
		self.lead_in = lead_in
		self.velocity = velocity

		self.state = PlaybackState.IDLE
		self.generation = 0
		self.timeline: typing.Optional[scorelight.timeline.Timeline] = None
		self.bpm: float = 0.0
		self.event_queue: typing.List[ScheduledCommand] = []
		self.task: typing.Optional[asyncio.Task] = None
		self.transport = scorelight.transport.TransportClock(clock)
		self.events = scorelight.event_emitter.EventEmitter()
		self.loop = loop

		self._clock = clock
		self._sequence = itertools.count()
		self._voice_tokens: typing.Dict[int, int] = {}
		self._lit: typing.Counter[int] = collections.Counter()

	@property
	def loop (self) -> bool:

		"""Restart from beat 0 when a pass ends. May change at any time; the
		value at the end of the current pass decides."""

		return self._loop

	@loop.setter
	def loop (self, value: bool) -> None:

		self._loop = bool(value)
		self.transport.loop = self._loop

	@property
	def is_playing (self) -> bool:
		return self.state in (PlaybackState.SCHEDULED, PlaybackState.PLAYING)

	def start (self, timeline: scorelight.timeline.Timeline, bpm: float, from_beat: float = 0.0) -> bool:

		"""Schedule a pass of ``timeline`` at ``bpm`` and start playing.

		Only valid while idle or stopped. An empty timeline is a logged no-op.

		Parameters:
			timeline: Notes to play.
			bpm: Live tempo in quarter notes per minute.
			from_beat: Beat to start from; notes already sounding at that beat
				are re-attacked.

		Returns:
			True when a pass was scheduled.
		"""

		if bpm <= 0:
			raise ValueError("BPM must be positive")

		if self.is_playing:
			logger.warning("start() ignored: already playing")
			return False

		if timeline.is_empty:
			logger.warning("Nothing to play: no notes loaded")
			return False

		self.timeline = timeline
		self.bpm = bpm

		self._schedule_pass(max(0.0, from_beat))
		self.state = PlaybackState.PLAYING
		self._ensure_task()

		self.events.emit_sync("start", self.generation, from_beat, bpm)

		return True

	def stop (self) -> None:

		"""Stop playback from any state. Safe to call repeatedly.

		Cancels every pending command, releases every sounding voice (manual
		ones included) and dims every key of the window.
		"""

		was_playing = self.is_playing

		self._release_pass()
		self.transport.stop()

		if self.task is not None and not self.task.done() and self.task is not _current_task():
			self.task.cancel()

		self.task = None
		self.state = PlaybackState.STOPPED

		if was_playing:
			logger.info("Playback stopped")

		self.events.emit_sync("stop", self.generation)

	def retempo (self, bpm: float) -> None:

		"""Change the live tempo.

		While playing, the current beat is captured, playback is stopped and
		restarted from that beat at the new tempo; sounding notes are released
		rather than stretched. Otherwise the tempo is kept for the next start.
		"""

		if bpm <= 0:
			raise ValueError("BPM must be positive")

		if not self.is_playing or self.timeline is None:
			self.bpm = bpm
			return

		timeline = self.timeline
		beat = self.transport.position()

		if beat >= timeline.total_beats:
			if not self.loop:
				self.stop()
				self.bpm = bpm
				return
			beat = 0.0

		logger.info(f"Tempo {self.bpm:g} -> {bpm:g} BPM at beat {beat:.2f}")

		self.stop()
		self.start(timeline, bpm, from_beat=beat)

		self.events.emit_sync("retempo", bpm, beat)

	def dispatch_due (self, now: typing.Optional[float] = None) -> int:

		"""Fire every command due at ``now`` (defaults to the clock).

		Returns:
			The number of commands fired (stale ones are not counted).
		"""

		if self.state is not PlaybackState.PLAYING:
			return 0

		now = self._clock() if now is None else now

		due: typing.List[ScheduledCommand] = []

		while self.event_queue and self.event_queue[0].fire_at <= now:
			due.append(heapq.heappop(self.event_queue))

		fired = 0

		for command in due:

			# A command earlier in this batch may have stopped or restarted playback.
			if command.generation != self.generation:
				continue

			if command.kind is CommandKind.LOOP:
				if self.loop:
					self._restart_loop()
				continue

			self._fire(command)
			fired += 1

		if self.state is PlaybackState.PLAYING and not self.event_queue:
			self._finish()

		return fired

	def _schedule_pass (self, from_beat: float) -> None:

		"""Build the command heap of one pass under the current generation."""

		assert self.timeline is not None, "A timeline is required to schedule a pass"

		self.state = PlaybackState.SCHEDULED

		now = self._clock()
		scale = 60.0 / self.bpm
		first_beat_at = now + self.lead_in
		origin = first_beat_at - from_beat * scale
		generation = self.generation

		commands: typing.List[ScheduledCommand] = []
		count = 0

		for index, event in self.timeline.events_from(from_beat):

			onset = origin + max(event.start_beat, from_beat) * scale
			offset = origin + event.end_beat * scale

			for kind, fire_at in (
				(CommandKind.AUDIO_ON, onset),
				(CommandKind.AUDIO_OFF, offset),
				(CommandKind.LIGHT_ON, onset),
				(CommandKind.LIGHT_OFF, offset),
			):
				commands.append(ScheduledCommand(
					fire_at = fire_at,
					kind = kind,
					sequence = next(self._sequence),
					pitch = event.pitch,
					velocity = self.velocity,
					note_index = index,
					generation = generation
				))

			count += 1

		# End of pass: restarts from beat 0 if looping is on when it fires.
		commands.append(ScheduledCommand(
			fire_at = origin + self.timeline.total_beats * scale,
			kind = CommandKind.LOOP,
			sequence = next(self._sequence),
			generation = generation
		))

		heapq.heapify(commands)
		self.event_queue = commands

		self.transport.start(from_beat, self.bpm, self.timeline.total_beats, at=first_beat_at, loop=self.loop)

		logger.info(f"Scheduled {count} notes @ {self.bpm:g} BPM from beat {from_beat:g} (generation {generation})")

	def _release_pass (self) -> None:

		"""Invalidate the current pass and return sound and lights to rest."""

		self.generation += 1
		self.event_queue = []
		self._voice_tokens.clear()
		self._lit.clear()

		try:
			self.audio.silence_all()
		except Exception:
			logger.exception("Audio output failed to silence voices")

		try:
			self.lighting.dim(self.layout.all_indices())
		except Exception:
			logger.exception("Lighting output failed to dim keys")

	def _restart_loop (self) -> None:

		"""Stop the finished pass and schedule the next one from beat 0."""

		self._release_pass()
		self._schedule_pass(0.0)
		self.state = PlaybackState.PLAYING

		logger.debug(f"Loop restart (generation {self.generation})")
		self.events.emit_sync("loop", self.generation)

	def _finish (self) -> None:

		"""End a non-looping pass whose last command has fired."""

		self.state = PlaybackState.STOPPED
		self.transport.stop()

		logger.info("Playback finished")
		self.events.emit_sync("finished")

	def _fire (self, command: ScheduledCommand) -> None:

		"""Hand one command to its collaborator."""

		try:

			if command.kind is CommandKind.AUDIO_ON:
				token = self.audio.schedule_onset(command.pitch, command.fire_at, command.velocity)
				if token is not None:
					self._voice_tokens[command.note_index] = token

			elif command.kind is CommandKind.AUDIO_OFF:
				token = self._voice_tokens.pop(command.note_index, None)
				if token is not None:
					self.audio.schedule_release(token, command.fire_at)

			elif command.kind is CommandKind.LIGHT_ON:
				index = self.layout.index_for_pitch(command.pitch)
				if index is not None:
					self._lit[index] += 1
					if self._lit[index] == 1:
						self.lighting.light([index])

			elif command.kind is CommandKind.LIGHT_OFF:
				index = self.layout.index_for_pitch(command.pitch)
				if index is not None and self._lit[index] > 0:
					self._lit[index] -= 1
					if self._lit[index] == 0:
						del self._lit[index]
						self.lighting.dim([index])

		except Exception:
			logger.exception(f"Failed to fire {command.kind.name} for pitch {command.pitch}")

		self.events.emit_sync("command", command)

	def _ensure_task (self) -> None:

		"""Start the dispatch task when an event loop is running."""

		if self.task is not None and not self.task.done():
			return

		try:
			loop = asyncio.get_running_loop()
		except RuntimeError:
			logger.debug("No running event loop: call dispatch_due() to fire commands")
			return

		self.task = loop.create_task(self._run_loop())

	async def _run_loop (self) -> None:

		"""Sleep until the next command is due, fire it, repeat until the pass ends."""

		while self.state is PlaybackState.PLAYING and self.event_queue:

			delay = self.event_queue[0].fire_at - self._clock()

			if delay > 0:
				await asyncio.sleep(min(delay, MAX_SLEEP))
				continue

			self.dispatch_due()


def _current_task () -> typing.Optional[asyncio.Task]:

	try:
		return asyncio.current_task()
	except RuntimeError:
		return None
