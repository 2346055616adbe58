"""Keyboard lighting output over OSC.

The keyboard widget that shows lit keys is an external program (a browser
page, a LED strip controller, a VJ tool). scorelight tells it which keys to
light or dim by **keyboard index**, never by pitch; the index mapping is done
by :class:`scorelight.keyboard.KeyLayout` before anything is sent.

Messages sent by :class:`OscLighting` (addresses are configurable):

- ``/keyboard/light <index> [<index> ...]``
- ``/keyboard/dim <index> [<index> ...]``
"""

import logging
import typing

import pythonosc.udp_client


logger = logging.getLogger(__name__)


@typing.runtime_checkable
class LightingOutput (typing.Protocol):

	"""
	What the scheduler and the keyboard need from a lighting device.
	"""

	def light (self, indices: typing.Iterable[int]) -> None:
		...

	def dim (self, indices: typing.Iterable[int]) -> None:
		...


class NullLighting:

	"""Lighting output that discards everything (lighting disabled)."""

	def light (self, indices: typing.Iterable[int]) -> None:
		return None

	def dim (self, indices: typing.Iterable[int]) -> None:
		return None


class OscLighting:

	"""Send light/dim index lists to a keyboard display over UDP."""

	def __init__ (
		self,
		host: str = "127.0.0.1",
		port: int = 9001,
		light_address: str = "/keyboard/light",
		dim_address: str = "/keyboard/dim"
	) -> None:

		self.host = host
		self.port = port
		self.light_address = light_address
		self.dim_address = dim_address
		self._client: typing.Optional[pythonosc.udp_client.SimpleUDPClient] = None

	def _send (self, address: str, indices: typing.Iterable[int]) -> None:

		args = [int(i) for i in indices]

		if not args:
			return

		if self._client is None:
			self._client = pythonosc.udp_client.SimpleUDPClient(self.host, self.port)
			logger.info(f"Sending keyboard lighting to {self.host}:{self.port}")

		try:
			self._client.send_message(address, args)
		except Exception as e:
			logger.warning(f"OSC send error: {e}")

	def light (self, indices: typing.Iterable[int]) -> None:

		"""Light the given keyboard indices."""

		self._send(self.light_address, indices)

	def dim (self, indices: typing.Iterable[int]) -> None:

		"""Dim the given keyboard indices."""

		self._send(self.dim_address, indices)
