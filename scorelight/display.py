"""Terminal playhead for score playback.

While a score plays, one line at the bottom of stderr shows where playback
is::

	120 BPM  Beat 12.50 / 64.00  [####................]  LOOP

Log output keeps working: :class:`DisplayLogHandler` erases the playhead,
prints the record and puts the playhead back. The display reads the
transport position only and never touches the schedule.
"""

import asyncio
import logging
import sys
import typing

if typing.TYPE_CHECKING:
	from scorelight.player import Player


DEFAULT_FPS = 30.0
_BAR_WIDTH = 20


class DisplayLogHandler (logging.Handler):

	"""Writes log records above the playhead line instead of through it."""

	def __init__ (self, display: "Display") -> None:

		super().__init__()
		self._display = display

	def emit (self, record: logging.LogRecord) -> None:

		try:
			text = self.format(record)
			self._display.clear_line()
			sys.stderr.write(f"{text}\n")
			sys.stderr.flush()
			self._display.draw()
		except Exception:
			self.handleError(record)


class Display:

	"""Playhead line for one :class:`scorelight.player.Player`.

	Example:
		```python
		display = scorelight.display.Display(player)
		display.start()
		await display.run()
		```
	"""

	def __init__ (self, player: "Player", fps: float = DEFAULT_FPS) -> None:

		"""
		Parameters:
			player: Source of the live tempo, position and loop flag.
			fps: Redraws per second in :meth:`run`.
		"""

		if fps <= 0:
			raise ValueError("fps must be positive")

		self._player = player
		self.fps = fps
		self._active: bool = False
		self._handler: typing.Optional[DisplayLogHandler] = None
		self._saved_handlers: typing.List[logging.Handler] = []
		self._last_line: str = ""

	@property
	def active (self) -> bool:
		return self._active

	def start (self) -> None:

		"""Route root logging through the playhead until :meth:`stop`."""

		if self._active:
			return

		root_logger = logging.getLogger()
		previous = list(root_logger.handlers)

		handler = DisplayLogHandler(self)
		formatter = next((h.formatter for h in previous if h.formatter is not None), None)
		handler.setFormatter(formatter or logging.Formatter(logging.BASIC_FORMAT))

		for h in previous:
			root_logger.removeHandler(h)
		root_logger.addHandler(handler)

		self._saved_handlers = previous
		self._handler = handler
		self._active = True

	def stop (self) -> None:

		"""Erase the playhead and give logging back to the previous handlers."""

		if not self._active:
			return

		self.clear_line()
		self._active = False

		root_logger = logging.getLogger()

		if self._handler is not None:
			root_logger.removeHandler(self._handler)

		for h in self._saved_handlers:
			root_logger.addHandler(h)

		self._saved_handlers = []
		self._handler = None

	def update (self) -> None:

		"""Recompute the playhead text and draw it."""

		if not self._active:
			return

		self._last_line = self.format_status()
		self.draw()

	def draw (self) -> None:

		"""Draw the last computed playhead text over the current line."""

		if not self._active or not self._last_line:
			return

		sys.stderr.write(f"\r\033[K{self._last_line}")
		sys.stderr.flush()

	def clear_line (self) -> None:

		"""Wipe the playhead from the terminal line."""

		if not self._active:
			return

		sys.stderr.write("\r\033[K")
		sys.stderr.flush()

	def format_status (self) -> str:

		"""Playhead text for the player as it is now."""

		player = self._player
		total = player.timeline.total_beats
		position = player.position

		filled = round(_BAR_WIDTH * position / total) if total > 0 else 0
		filled = max(0, min(_BAR_WIDTH, filled))

		parts = [
			f"{player.live_bpm:g} BPM",
			f"Beat {position:.2f} / {total:.2f}",
			"[" + "#" * filled + "." * (_BAR_WIDTH - filled) + "]",
		]

		if player.loop:
			parts.append("LOOP")

		return "  ".join(parts)

	async def run (self) -> None:

		"""Keep the playhead current until the task is cancelled."""

		interval = 1.0 / self.fps

		while True:
			self.update()
			await asyncio.sleep(interval)
