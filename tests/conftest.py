import typing

import mido
import pytest

import fakes


# Module-level reference so tests can access the most recently opened FakeMidiOut.
_current_fake_output: typing.Optional[fakes.FakeMidiOut] = None


def _fake_get_output_names () -> list[str]:

	"""Return a fixed list of MIDI output names for tests."""

	return ["Dummy MIDI"]


def _fake_open_output (name: str) -> fakes.FakeMidiOut:

	"""Return a fresh fake MIDI output regardless of the name."""

	global _current_fake_output
	fake = fakes.FakeMidiOut()
	_current_fake_output = fake
	return fake


@pytest.fixture
def patch_midi (monkeypatch: pytest.MonkeyPatch) -> None:

	"""Patch mido to use a fake MIDI output for all tests that need it."""

	monkeypatch.setattr(mido, "get_output_names", _fake_get_output_names)
	monkeypatch.setattr(mido, "open_output", _fake_open_output)


@pytest.fixture
def midi_out (patch_midi: None) -> typing.Callable[[], typing.Optional[fakes.FakeMidiOut]]:

	"""Return a getter for the fake port opened most recently."""

	global _current_fake_output
	_current_fake_output = None

	return lambda: _current_fake_output


@pytest.fixture
def clock () -> fakes.FakeClock:
	return fakes.FakeClock()


@pytest.fixture
def audio () -> fakes.FakeAudio:
	return fakes.FakeAudio()


@pytest.fixture
def lighting () -> fakes.FakeLighting:
	return fakes.FakeLighting()
