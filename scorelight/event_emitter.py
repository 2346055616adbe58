"""Listener registry for playback notifications.

The scheduler and the player announce state changes through an
:class:`EventEmitter` so the display, a GUI or a test can follow playback
without the core knowing about them. Event names used by scorelight:

- ``"start"`` ``(generation, from_beat, bpm)`` - a pass was scheduled
- ``"stop"`` ``(generation)`` - playback stopped and every voice was released
- ``"loop"`` ``(generation)`` - a looping pass restarted from beat 0
- ``"retempo"`` ``(bpm, beat)`` - playback resumed at a new tempo
- ``"finished"`` ``()`` - a non-looping pass played to the end
- ``"command"`` ``(command)`` - a scheduled command fired
- ``"loaded"`` ``(name, timeline)`` - the player installed a new score
"""

import asyncio
import logging
import typing


logger = logging.getLogger(__name__)

CallbackType = typing.Callable[..., typing.Any]


class EventEmitter:

	"""
	Registry of named events and their sync or async callbacks.
	"""

	def __init__ (self) -> None:

		self._listeners: typing.Dict[str, typing.List[CallbackType]] = {}

	def on (self, event_name: str, callback: CallbackType) -> None:

		"""Register ``callback`` for ``event_name``."""

		self._listeners.setdefault(event_name, []).append(callback)

	def once (self, event_name: str, callback: CallbackType) -> None:

		"""Register ``callback`` to run on the next ``event_name`` only."""

		def _wrapper (*args: typing.Any, **kwargs: typing.Any) -> typing.Any:
			self.off(event_name, _wrapper)
			return callback(*args, **kwargs)

		self.on(event_name, _wrapper)

	def off (self, event_name: str, callback: CallbackType) -> None:

		"""Unregister a callback.

		Raises ``ValueError`` if the callback is not registered for the event.
		"""

		listeners = self._listeners.get(event_name, [])

		if callback not in listeners:
			raise ValueError(f"Callback not registered for event {event_name!r}")

		listeners.remove(callback)

	def listener_count (self, event_name: str) -> int:
		return len(self._listeners.get(event_name, []))

	def emit_sync (self, event_name: str, *args: typing.Any, **kwargs: typing.Any) -> None:

		"""Call every listener of ``event_name`` now.

		Coroutine listeners are handed to the running event loop as tasks;
		without a running loop they are skipped with a warning. A failing
		listener is logged and does not stop the others.
		"""

		for callback in list(self._listeners.get(event_name, [])):

			try:
				result = callback(*args, **kwargs)
			except Exception:
				logger.exception(f"Listener for {event_name!r} failed")
				continue

			if asyncio.iscoroutine(result):
				try:
					asyncio.get_running_loop().create_task(result)
				except RuntimeError:
					result.close()
					logger.warning(f"Async listener for {event_name!r} skipped: no running event loop")

	async def emit_async (self, event_name: str, *args: typing.Any, **kwargs: typing.Any) -> None:

		"""Call every listener of ``event_name`` and await the async ones together."""

		pending: typing.List[typing.Awaitable[typing.Any]] = []

		for callback in list(self._listeners.get(event_name, [])):

			result = callback(*args, **kwargs)

			if asyncio.iscoroutine(result):
				pending.append(result)

		if pending:
			await asyncio.gather(*pending)
