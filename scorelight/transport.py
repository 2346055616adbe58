"""Playhead clock: elapsed real time mapped back to a beat position.

The transport clock only answers "where is playback now?" for the playhead
and for capturing the resume point on a tempo change. It never touches the
schedule.
"""

import time
import typing


class TransportClock:

	"""
	Tracks one playback pass: where it started (in beats and seconds) and at
	what tempo.
	"""

	def __init__ (self, clock: typing.Callable[[], float] = time.perf_counter) -> None:

		self._clock = clock
		self.running: bool = False
		self.bpm: float = 0.0
		self.total_beats: float = 0.0
		self.loop: bool = False
		self._origin_beat: float = 0.0
		self._origin_time: float = 0.0

	def start (self, from_beat: float, bpm: float, total_beats: float, at: typing.Optional[float] = None, loop: bool = False) -> None:

		"""Begin tracking a pass.

		Parameters:
			from_beat: Beat position at ``at``.
			bpm: Live tempo of the pass.
			total_beats: Length of the timeline.
			at: Real time at which ``from_beat`` sounds (defaults to now). A
				time in the future holds the position until then.
			loop: Wrap the position back to 0 at ``total_beats``.
		"""

		if bpm <= 0:
			raise ValueError("BPM must be positive")

		self.running = True
		self.bpm = bpm
		self.total_beats = total_beats
		self.loop = loop
		self._origin_beat = from_beat
		self._origin_time = self._clock() if at is None else at

	def stop (self) -> None:

		"""Stop tracking; the position returns to the start."""

		self.running = False
		self._origin_beat = 0.0

	def elapsed_seconds (self) -> float:

		"""Real time since the pass origin (0 while stopped or before the lead-in ends)."""

		if not self.running:
			return 0.0

		return max(0.0, self._clock() - self._origin_time)

	def position (self) -> float:

		"""Current beat position, clamped to the timeline (or wrapped when looping)."""

		if not self.running:
			return self._origin_beat

		beat = self._origin_beat + self.elapsed_seconds() * self.bpm / 60.0

		if self.total_beats <= 0:
			return 0.0

		if self.loop:
			return beat % self.total_beats

		return min(beat, self.total_beats)

	@property
	def finished (self) -> bool:

		"""True once a non-looping pass has reached the end of the timeline."""

		return self.running and not self.loop and self.position() >= self.total_beats

	def progress (self) -> float:

		"""Position as a fraction of the timeline (0.0 - 1.0)."""

		if self.total_beats <= 0:
			return 0.0

		return self.position() / self.total_beats
