"""Player configuration loaded from YAML.

Every key is optional. A complete file looks like this:

```yaml
score: https://example.com/minuet.musicxml

tempo:
  default_bpm: 100     # used when the score declares no tempo
  bpm: 72              # fixed live tempo; suppresses tempo detection
  loop: false

keyboard:
  low: C2              # MIDI number or note name
  high: G5
  strict: true         # keep exactly low..high whatever the score contains
  fit: false           # fit to the notes even when strict
  transpose: 0         # lights only; sound stays at true pitch
  min_octaves: 2

playback:
  lead_in: 0.03
  velocity: 90
  manual_velocity: 100

midi:
  output_device: null  # first available output when omitted
  program: 0

osc:
  enabled: true
  host: 127.0.0.1
  port: 9001

display:
  enabled: true
  fps: 30

fetch:
  timeout: 15
```
"""

import dataclasses
import logging
import os
import typing

import yaml

import scorelight.constants.keyboard
import scorelight.constants.velocity
import scorelight.fetch
import scorelight.keyboard_range


logger = logging.getLogger(__name__)


DEFAULT_CONFIG_PATH = "config.yaml"


def _check_velocity (name: str, value: int) -> None:

	if not scorelight.constants.velocity.MIN_VELOCITY <= value <= scorelight.constants.velocity.MAX_VELOCITY:
		raise ValueError(f"{name} must be between {scorelight.constants.velocity.MIN_VELOCITY} and {scorelight.constants.velocity.MAX_VELOCITY}, got {value}")


@dataclasses.dataclass (frozen=True)
class TempoConfig:

	default_bpm: float = 100.0
	bpm: typing.Optional[float] = None
	loop: bool = False

	def __post_init__ (self) -> None:

		if self.default_bpm <= 0:
			raise ValueError("tempo.default_bpm must be positive")

		if self.bpm is not None and self.bpm <= 0:
			raise ValueError("tempo.bpm must be positive")


@dataclasses.dataclass (frozen=True)
class KeyboardConfig:

	low: typing.Optional[typing.Union[int, str]] = None
	high: typing.Optional[typing.Union[int, str]] = None
	strict: bool = True
	fit: bool = False
	transpose: int = 0
	min_octaves: int = scorelight.constants.keyboard.MIN_OCTAVES

	def __post_init__ (self) -> None:

		if (self.low is None) != (self.high is None):
			raise ValueError("keyboard.low and keyboard.high must be given together")

		if self.min_octaves < 1:
			raise ValueError("keyboard.min_octaves must be at least 1")

		# Parse now so a bad note name fails at load time.
		self.range_override()

	def range_override (self) -> typing.Optional[scorelight.keyboard_range.RangeOverride]:

		"""The configured keyboard range, or None when no range is set."""

		if self.low is None or self.high is None:
			return None

		return scorelight.keyboard_range.RangeOverride.from_values(self.low, self.high, strict=self.strict)


@dataclasses.dataclass (frozen=True)
class PlaybackConfig:

	lead_in: float = 0.03
	velocity: int = scorelight.constants.velocity.DEFAULT_PLAYBACK_VELOCITY
	manual_velocity: int = scorelight.constants.velocity.DEFAULT_MANUAL_VELOCITY

	def __post_init__ (self) -> None:

		if self.lead_in < 0:
			raise ValueError("playback.lead_in cannot be negative")

		_check_velocity("playback.velocity", self.velocity)
		_check_velocity("playback.manual_velocity", self.manual_velocity)


@dataclasses.dataclass (frozen=True)
class MidiConfig:

	output_device: typing.Optional[str] = None
	program: int = 0

	def __post_init__ (self) -> None:

		if not 0 <= self.program <= 127:
			raise ValueError("midi.program must be between 0 and 127")


@dataclasses.dataclass (frozen=True)
class OscConfig:

	enabled: bool = True
	host: str = "127.0.0.1"
	port: int = 9001

	def __post_init__ (self) -> None:

		if not 0 < self.port < 65536:
			raise ValueError(f"osc.port must be between 1 and 65535, got {self.port}")


@dataclasses.dataclass (frozen=True)
class DisplayConfig:

	enabled: bool = True
	fps: float = 30.0

	def __post_init__ (self) -> None:

		if self.fps <= 0:
			raise ValueError("display.fps must be positive")


@dataclasses.dataclass (frozen=True)
class FetchConfig:

	timeout: float = scorelight.fetch.DEFAULT_TIMEOUT

	def __post_init__ (self) -> None:

		if self.timeout <= 0:
			raise ValueError("fetch.timeout must be positive")


_SECTIONS: typing.Dict[str, typing.Type[typing.Any]] = {
	"tempo": TempoConfig,
	"keyboard": KeyboardConfig,
	"playback": PlaybackConfig,
	"midi": MidiConfig,
	"osc": OscConfig,
	"display": DisplayConfig,
	"fetch": FetchConfig,
}


@dataclasses.dataclass (frozen=True)
class PlayerConfig:

	"""Complete, validated configuration of a :class:`scorelight.player.Player`."""

	score: typing.Optional[str] = None
	tempo: TempoConfig = dataclasses.field(default_factory=TempoConfig)
	keyboard: KeyboardConfig = dataclasses.field(default_factory=KeyboardConfig)
	playback: PlaybackConfig = dataclasses.field(default_factory=PlaybackConfig)
	midi: MidiConfig = dataclasses.field(default_factory=MidiConfig)
	osc: OscConfig = dataclasses.field(default_factory=OscConfig)
	display: DisplayConfig = dataclasses.field(default_factory=DisplayConfig)
	fetch: FetchConfig = dataclasses.field(default_factory=FetchConfig)

	@classmethod
	def from_dict (cls, data: typing.Optional[typing.Mapping[str, typing.Any]]) -> "PlayerConfig":

		"""Build a configuration from parsed YAML.

		Raises:
			ValueError: Unknown section or key, or an invalid value.
		"""

		if not data:
			return cls()

		if not isinstance(data, dict):
			raise ValueError(f"Configuration must be a mapping, got {type(data).__name__}")

		kwargs: typing.Dict[str, typing.Any] = {}

		for key, value in data.items():

			if key == "score":
				kwargs["score"] = None if value is None else str(value)
				continue

			section = _SECTIONS.get(key)

			if section is None:
				raise ValueError(f"Unknown configuration section {key!r}")

			if value is None:
				continue

			if not isinstance(value, dict):
				raise ValueError(f"Configuration section {key!r} must be a mapping")

			try:
				kwargs[key] = section(**value)
			except TypeError as exc:
				raise ValueError(f"Invalid keys in section {key!r}: {exc}") from exc

		return cls(**kwargs)


def load_config (config_path: str = DEFAULT_CONFIG_PATH) -> PlayerConfig:

	"""
	Load configuration from a YAML file.
	"""

	if not os.path.exists(config_path):
		logger.warning(f"Config file {config_path} not found. Using defaults.")
		return PlayerConfig()

	with open(config_path, 'r') as f:
		data = yaml.safe_load(f)

	return PlayerConfig.from_dict(data)
