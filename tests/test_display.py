import logging

import pytest

import scorelight.display
import scorelight.player

import fakes
from score_builders import note, score


@pytest.fixture
def player (audio: fakes.FakeAudio, lighting: fakes.FakeLighting, clock: fakes.FakeClock) -> scorelight.player.Player:
	return scorelight.player.Player(audio=audio, lighting=lighting, clock=clock)


def test_format_status_with_nothing_loaded (player: scorelight.player.Player) -> None:

	"""Status line shows the tempo and an empty bar before any score is loaded."""

	display = scorelight.display.Display(player)

	assert display.format_status() == "100 BPM  Beat 0.00 / 0.00  [....................]"


def test_format_status_during_playback (player: scorelight.player.Player, clock: fakes.FakeClock) -> None:

	"""Status line follows the transport position and shows loop mode."""

	player.load_markup(score(note("C", 4, 4) + note("D", 4, 4)))
	player.set_tempo(60)
	player.set_loop(True)
	player.play()

	clock.advance(0.03 + 2.0)

	status = scorelight.display.Display(player).format_status()

	assert status.startswith("60 BPM  Beat 2.00 / 8.00  ")
	assert "[#####...............]" in status
	assert status.endswith("  LOOP")


def test_start_and_stop_swap_log_handlers (player: scorelight.player.Player) -> None:

	"""start() replaces the root handlers and stop() puts them back."""

	root_logger = logging.getLogger()
	original = list(root_logger.handlers)

	display = scorelight.display.Display(player)
	display.start()

	try:
		assert display.active
		assert len(root_logger.handlers) == 1
		assert isinstance(root_logger.handlers[0], scorelight.display.DisplayLogHandler)

	finally:
		display.stop()

	assert not display.active
	assert root_logger.handlers == original


def test_log_lines_redraw_the_status (player: scorelight.player.Player, capsys: pytest.CaptureFixture[str]) -> None:

	"""A log message is written above the status line, which is then redrawn."""

	display = scorelight.display.Display(player)
	display.start()

	try:
		display.update()
		logging.getLogger("scorelight.test").warning("hello")
	finally:
		display.stop()

	err = capsys.readouterr().err

	assert "hello\n" in err
	assert err.count("100 BPM") >= 2


def test_fps_must_be_positive (player: scorelight.player.Player) -> None:

	"""A zero frame rate is rejected."""

	with pytest.raises(ValueError):
		scorelight.display.Display(player, fps=0)
