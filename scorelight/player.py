"""Player session: one loaded score, its tempos and its keyboard window.

The player ties the pieces together:

- loading (file, URL or raw markup) runs tempo detection and timeline
  extraction, fits the keyboard window and installs everything at once. A
  failed load raises :class:`scorelight.errors.ScoreLoadError` and leaves
  the previous score playable.
- two tempos are tracked. The **nominal** tempo comes from the score (or the
  configured default) and is fixed per load; the **live** tempo is what the
  scheduler plays at and can change during playback.
- one :class:`scorelight.audio.MidiAudio` handle is shared by the scheduler
  and manual key input, so :meth:`Player.panic` silences both.

```python
player = scorelight.player.Player(scorelight.config.load_config())
player.load("minuet.musicxml")
player.play()
player.set_tempo(80)
```
"""

import asyncio
import logging
import signal
import time
import typing

import scorelight.audio
import scorelight.config
import scorelight.constants.velocity
import scorelight.display
import scorelight.errors
import scorelight.event_emitter
import scorelight.fetch
import scorelight.keyboard
import scorelight.keyboard_range
import scorelight.lighting
import scorelight.musicxml
import scorelight.scheduler
import scorelight.tempo
import scorelight.timeline


logger = logging.getLogger(__name__)


TEST_TONE_PITCH = 69        # A4, 440 Hz
TEST_TONE_SECONDS = 0.3


class Player:

	"""
	Loads scores and drives playback, tempo and the keyboard for one session.
	"""

	def __init__ (
		self,
		config: typing.Optional[scorelight.config.PlayerConfig] = None,
		audio: typing.Optional[scorelight.audio.AudioOutput] = None,
		lighting: typing.Optional[scorelight.lighting.LightingOutput] = None,
		clock: typing.Callable[[], float] = time.perf_counter
	) -> None:

		"""Create a player with nothing loaded.

		Parameters:
			config: Session configuration (defaults for every section when omitted).
			audio: Audio handle. A :class:`scorelight.audio.MidiAudio` on the
				configured device is created (and owned) when omitted.
			lighting: Keyboard lighting. OSC lighting on the configured host
				and port is created when omitted, or nothing if OSC is disabled.
			clock: Monotonic time source shared with the scheduler.
		"""

		self.config = config if config is not None else scorelight.config.PlayerConfig()

		self._owns_audio = audio is None

		if audio is None:
			audio = scorelight.audio.MidiAudio(
				device_name = self.config.midi.output_device,
				program = self.config.midi.program,
				clock = clock
			)

		if lighting is None:
			if self.config.osc.enabled:
				lighting = scorelight.lighting.OscLighting(host=self.config.osc.host, port=self.config.osc.port)
			else:
				lighting = scorelight.lighting.NullLighting()

		self.audio = audio
		self.lighting = lighting
		self.events = scorelight.event_emitter.EventEmitter()
		self.fitter = scorelight.keyboard_range.KeyboardRangeFitter(min_octaves=self.config.keyboard.min_octaves)
		self.override = self.config.keyboard.range_override()

		self.name: typing.Optional[str] = None
		self._timeline = scorelight.timeline.Timeline()
		self._nominal_bpm: float = self.config.tempo.bpm or self.config.tempo.default_bpm
		self._live_bpm: float = self._nominal_bpm
		self._window = self._fit_window(self._timeline)
		self._roll_window = self.fitter.fit_roll(self._timeline)

		layout = scorelight.keyboard.KeyLayout(self._window, transpose=self.config.keyboard.transpose)

		self.keyboard = scorelight.keyboard.Keyboard(
			self.audio,
			self.lighting,
			layout,
			velocity = self.config.playback.manual_velocity
		)

		self.scheduler = scorelight.scheduler.PlaybackScheduler(
			self.audio,
			self.lighting,
			layout,
			lead_in = self.config.playback.lead_in,
			velocity = self.config.playback.velocity,
			loop = self.config.tempo.loop,
			clock = clock
		)

	# ------------------------------------------------------------------
	# State
	# ------------------------------------------------------------------

	@property
	def timeline (self) -> scorelight.timeline.Timeline:
		return self._timeline

	@property
	def nominal_bpm (self) -> float:

		"""Tempo declared by the loaded score (or the configured default)."""

		return self._nominal_bpm

	@property
	def live_bpm (self) -> float:

		"""Tempo playback runs at."""

		return self._live_bpm

	@property
	def window (self) -> scorelight.keyboard_range.DisplayWindow:

		"""Keyboard window (visual pitches) for the loaded score."""

		return self._window

	@property
	def roll_window (self) -> scorelight.keyboard_range.DisplayWindow:

		"""Piano-roll window (true pitches) for the loaded score."""

		return self._roll_window

	@property
	def layout (self) -> scorelight.keyboard.KeyLayout:
		return self.keyboard.layout

	@property
	def can_play (self) -> bool:
		return not self._timeline.is_empty

	@property
	def is_playing (self) -> bool:
		return self.scheduler.is_playing

	@property
	def loop (self) -> bool:
		return self.scheduler.loop

	@property
	def position (self) -> float:

		"""Current playhead position in beats."""

		return self.scheduler.transport.position()

	# ------------------------------------------------------------------
	# Loading
	# ------------------------------------------------------------------

	def _fit_window (self, timeline: scorelight.timeline.Timeline) -> scorelight.keyboard_range.DisplayWindow:

		return self.fitter.fit(
			timeline,
			override = self.override,
			transpose = self.config.keyboard.transpose,
			force_fit = self.config.keyboard.fit
		)

	def load_markup (self, markup: scorelight.musicxml.Markup, name: str = scorelight.fetch.DEFAULT_NAME) -> scorelight.timeline.Timeline:

		"""Install a score from MusicXML text.

		Everything is computed before anything is replaced, so a failure
		leaves the previous score, tempos and window in place.

		Raises:
			scorelight.errors.ScoreLoadError: The markup cannot be parsed.
		"""

		try:
			root = scorelight.musicxml.parse_markup(markup)
			timeline = scorelight.musicxml.TimelineExtractor().extract_root(root)
		except scorelight.errors.ScoreLoadError as exc:
			logger.error(f"Could not load {name}: {exc}")
			raise

		nominal = self._nominal_bpm

		if self.config.tempo.bpm is not None:
			nominal = self.config.tempo.bpm
		else:
			detected = scorelight.tempo.detect_tempo_from_root(root)
			if detected is not None:
				nominal = detected
			else:
				logger.info(f"No tempo marking in {name}; keeping {nominal:g} BPM")

		window = self._fit_window(timeline)
		roll_window = self.fitter.fit_roll(timeline)
		layout = scorelight.keyboard.KeyLayout(window, transpose=self.config.keyboard.transpose)

		# Dims the old window before it is replaced.
		self.scheduler.stop()

		self.name = name
		self._timeline = timeline
		self._nominal_bpm = nominal
		self._live_bpm = self.config.tempo.bpm if self.config.tempo.bpm is not None else nominal
		self._window = window
		self._roll_window = roll_window
		self.keyboard.layout = layout
		self.scheduler.layout = layout

		logger.info(
			f"Loaded {name}: {len(timeline)} notes, {timeline.total_beats:.2f} beats"
			+ (f" ({timeline.seconds_at(self._live_bpm):.1f}s @ {self._live_bpm:g} BPM)" if not timeline.is_empty else "")
		)

		self.events.emit_sync("loaded", name, timeline)

		return timeline

	def load (self, source: str) -> scorelight.timeline.Timeline:

		"""Load from a URL or a file path (``.xml``, ``.musicxml`` or ``.mxl``).

		Raises:
			scorelight.errors.ScoreLoadError: The score cannot be read or parsed.
		"""

		try:
			name, markup = scorelight.fetch.load_source(source, timeout=self.config.fetch.timeout)
		except scorelight.errors.ScoreLoadError as exc:
			logger.error(f"Could not load {source}: {exc}")
			raise

		return self.load_markup(markup, name)

	def load_file (self, path: str) -> scorelight.timeline.Timeline:

		"""Load a score from disk."""

		if scorelight.fetch.is_url(path):
			raise ValueError(f"{path} is a URL, not a file path")

		return self.load(path)

	def load_url (self, url: str) -> scorelight.timeline.Timeline:

		"""Download and load a score."""

		if not scorelight.fetch.is_url(url):
			raise ValueError(f"{url} is not an http(s) URL")

		return self.load(url)

	# ------------------------------------------------------------------
	# Transport
	# ------------------------------------------------------------------

	def play (self) -> bool:

		"""Start playback from the beginning at the live tempo.

		Returns:
			True when playback started.
		"""

		if not self.can_play:
			logger.warning("Nothing to play: no notes loaded")
			return False

		if self.is_playing:
			return False

		self.audio.resume()

		return self.scheduler.start(self._timeline, self._live_bpm)

	def stop (self) -> None:
		self.scheduler.stop()

	def set_tempo (self, bpm: float) -> None:

		"""Change the live tempo; a running pass continues from the current beat."""

		if bpm <= 0:
			raise ValueError("BPM must be positive")

		self._live_bpm = bpm
		self.scheduler.retempo(bpm)

	def set_loop (self, loop: bool) -> None:

		"""Turn looping on or off. Takes effect when the current pass ends."""

		self.scheduler.loop = loop
		logger.info(f"Loop {'on' if loop else 'off'}")

	def panic (self) -> None:

		"""Stop everything: scheduled notes, manual notes and lights."""

		self.scheduler.stop()
		logger.warning("Panic: all voices released, lights cleared")

	# ------------------------------------------------------------------
	# Keys
	# ------------------------------------------------------------------

	def press (self, key: scorelight.keyboard.KeyRef) -> typing.Optional[int]:
		return self.keyboard.emit_press(key)

	def release (self, key: scorelight.keyboard.KeyRef) -> typing.Optional[int]:
		return self.keyboard.emit_release(key)

	async def test_tone (self, pitch: int = TEST_TONE_PITCH, seconds: float = TEST_TONE_SECONDS) -> bool:

		"""Retry the audio device and play a short tone.

		Returns:
			True when the device is available.
		"""

		if not self.audio.resume():
			logger.warning("Test tone: no audio output available")
			return False

		self.audio.play_pitch(pitch, scorelight.constants.velocity.TEST_TONE_VELOCITY)

		try:
			await asyncio.sleep(seconds)
		finally:
			self.audio.release_pitch(pitch)

		return True

	def close (self) -> None:

		"""Stop playback and close the audio device if the player created it."""

		self.scheduler.stop()

		if self._owns_audio and isinstance(self.audio, scorelight.audio.MidiAudio):
			self.audio.close()

	# ------------------------------------------------------------------
	# Main loop
	# ------------------------------------------------------------------

	async def run (self, source: typing.Optional[str] = None) -> None:

		"""Load ``source`` (or the configured score), play it and wait.

		Returns when playback finishes (unless looping) or on Ctrl+C/SIGTERM.

		Raises:
			scorelight.errors.ScoreLoadError: The score cannot be loaded.
			ValueError: No score was given.
		"""

		source = source if source is not None else self.config.score

		if source is None:
			raise ValueError("No score given: pass a file or URL, or set 'score' in the config")

		self.load(source)

		if not self.play():
			self.close()
			return

		logger.info("Playing score. Press Ctrl+C to stop.")

		stop_event = asyncio.Event()
		finished = asyncio.Event()
		loop = asyncio.get_running_loop()

		def _request_stop () -> None:

			"""
			Signal handler to request a clean shutdown.
			"""

			stop_event.set()

		for sig in (signal.SIGINT, signal.SIGTERM):
			loop.add_signal_handler(sig, _request_stop)

		self.scheduler.events.on("finished", finished.set)

		display: typing.Optional[scorelight.display.Display] = None
		tasks = [
			asyncio.create_task(stop_event.wait()),
			asyncio.create_task(finished.wait()),
		]

		if self.config.display.enabled:
			display = scorelight.display.Display(self, fps=self.config.display.fps)
			display.start()
			tasks.append(asyncio.create_task(display.run()))

		try:
			await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)

		finally:

			for sig in (signal.SIGINT, signal.SIGTERM):
				loop.remove_signal_handler(sig)

			self.scheduler.events.off("finished", finished.set)

			for task in tasks:
				task.cancel()

			await asyncio.gather(*tasks, return_exceptions=True)

			if display is not None:
				display.stop()

			self.close()
