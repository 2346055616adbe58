import asyncio
import heapq

import pytest

import scorelight.keyboard
import scorelight.keyboard_range
import scorelight.scheduler
import scorelight.timeline

import fakes


def make_timeline (*notes: tuple[int, float, float]) -> scorelight.timeline.Timeline:
	return scorelight.timeline.Timeline(
		scorelight.timeline.NoteEvent(pitch=p, start_beat=s, end_beat=e) for p, s, e in notes
	)


@pytest.fixture
def scheduler (audio: fakes.FakeAudio, lighting: fakes.FakeLighting, clock: fakes.FakeClock) -> scorelight.scheduler.PlaybackScheduler:

	"""A scheduler with no lead-in on a manual clock (starts at t=100)."""

	return scorelight.scheduler.PlaybackScheduler(audio, lighting, lead_in=0.0, clock=clock)


def record_commands (scheduler: scorelight.scheduler.PlaybackScheduler) -> list[scorelight.scheduler.ScheduledCommand]:

	fired: list[scorelight.scheduler.ScheduledCommand] = []
	scheduler.events.on("command", fired.append)
	return fired


def test_commands_fire_at_beat_times (scheduler: scorelight.scheduler.PlaybackScheduler, audio: fakes.FakeAudio, lighting: fakes.FakeLighting) -> None:

	"""At 60 BPM each beat is one second after the start."""

	timeline = make_timeline((60, 0, 1), (64, 1, 2))

	assert scheduler.start(timeline, 60)
	assert scheduler.state is scorelight.scheduler.PlaybackState.PLAYING

	assert scheduler.dispatch_due(100.0) == 2
	assert audio.ons() == [60]
	assert lighting.lit == {36}

	assert scheduler.dispatch_due(100.5) == 0

	assert scheduler.dispatch_due(101.0) == 4
	assert audio.ons() == [60, 64]
	assert audio.offs() == [60]
	assert lighting.lit == {40}

	assert scheduler.dispatch_due(102.0) == 2
	assert audio.offs() == [60, 64]
	assert lighting.lit == set()
	assert scheduler.state is scorelight.scheduler.PlaybackState.STOPPED


def test_onsets_receive_their_intended_fire_time (scheduler: scorelight.scheduler.PlaybackScheduler, audio: fakes.FakeAudio) -> None:

	"""Audio gets the scheduled time even when dispatch runs late."""

	scheduler.start(make_timeline((60, 1, 2)), 120)
	scheduler.dispatch_due(105.0)

	assert ("on", 60, 100.5, scheduler.velocity) in audio.calls
	assert ("off", 60, 101.0) in audio.calls


def test_lead_in_delays_the_first_note (audio: fakes.FakeAudio, lighting: fakes.FakeLighting, clock: fakes.FakeClock) -> None:

	"""Nothing fires before the lead-in has passed."""

	scheduler = scorelight.scheduler.PlaybackScheduler(audio, lighting, lead_in=0.5, clock=clock)
	scheduler.start(make_timeline((60, 0, 1)), 60)

	assert scheduler.dispatch_due(100.4) == 0
	assert scheduler.dispatch_due(100.5) == 2


def test_release_fires_before_attack_at_the_same_time (scheduler: scorelight.scheduler.PlaybackScheduler, lighting: fakes.FakeLighting) -> None:

	"""A repeated note re-lights its key after the previous note's release."""

	fired = record_commands(scheduler)

	scheduler.start(make_timeline((60, 0, 1), (60, 1, 2)), 60)
	scheduler.dispatch_due(100.0)
	del fired[:]

	scheduler.dispatch_due(101.0)

	kinds = scorelight.scheduler.CommandKind
	assert [c.kind for c in fired] == [kinds.AUDIO_OFF, kinds.LIGHT_OFF, kinds.AUDIO_ON, kinds.LIGHT_ON]
	assert lighting.lit == {36}


def test_overlapping_notes_keep_a_key_lit (scheduler: scorelight.scheduler.PlaybackScheduler, lighting: fakes.FakeLighting, audio: fakes.FakeAudio) -> None:

	"""A key stays lit until the last note on it ends."""

	scheduler.start(make_timeline((60, 0, 2), (60, 1, 3)), 60)

	scheduler.dispatch_due(100.0)
	scheduler.dispatch_due(101.0)
	scheduler.dispatch_due(102.0)

	assert lighting.lit == {36}
	assert lighting.history.count(("light", [36])) == 1
	assert audio.ons() == [60, 60]
	assert audio.offs() == [60]

	scheduler.dispatch_due(103.0)

	assert lighting.lit == set()
	assert audio.offs() == [60, 60]


def test_stop_then_start_fires_nothing_from_the_old_pass (scheduler: scorelight.scheduler.PlaybackScheduler, audio: fakes.FakeAudio, lighting: fakes.FakeLighting) -> None:

	"""After stop and start only the new generation's commands fire."""

	timeline = make_timeline((60, 0, 1), (64, 1, 2))
	fired = record_commands(scheduler)

	scheduler.start(timeline, 60)
	scheduler.dispatch_due(100.0)

	scheduler.stop()

	assert audio.silenced == 1
	assert audio.sounding == {}
	assert lighting.lit == set()
	assert scheduler.event_queue == []

	scheduler.start(timeline, 60)
	del fired[:]

	scheduler.dispatch_due(110.0)

	assert len(fired) == 8
	assert all(c.generation == scheduler.generation for c in fired)


def test_stale_commands_are_discarded (scheduler: scorelight.scheduler.PlaybackScheduler, audio: fakes.FakeAudio) -> None:

	"""Commands tagged with an old generation are ignored on dispatch."""

	timeline = make_timeline((60, 0, 1), (64, 1, 2))

	scheduler.start(timeline, 60)
	stale = list(scheduler.event_queue)

	scheduler.stop()
	scheduler.start(timeline, 60)

	for command in stale:
		heapq.heappush(scheduler.event_queue, command)

	assert scheduler.dispatch_due(110.0) == 8
	assert audio.ons() == [60, 64]


def test_stop_is_idempotent (scheduler: scorelight.scheduler.PlaybackScheduler, audio: fakes.FakeAudio) -> None:

	"""Stopping twice (or before ever starting) is harmless."""

	scheduler.stop()
	scheduler.stop()

	assert scheduler.state is scorelight.scheduler.PlaybackState.STOPPED
	assert scheduler.dispatch_due(1000.0) == 0


def test_start_with_empty_timeline_is_a_no_op (scheduler: scorelight.scheduler.PlaybackScheduler) -> None:

	"""An empty timeline cannot be played."""

	assert not scheduler.start(scorelight.timeline.Timeline(), 60)
	assert scheduler.state is scorelight.scheduler.PlaybackState.IDLE


def test_start_while_playing_is_ignored (scheduler: scorelight.scheduler.PlaybackScheduler) -> None:

	"""A second start does not schedule another pass."""

	timeline = make_timeline((60, 0, 1))

	assert scheduler.start(timeline, 60)
	generation = scheduler.generation

	assert not scheduler.start(timeline, 90)
	assert scheduler.generation == generation
	assert scheduler.bpm == 60


def test_start_rejects_bad_tempo (scheduler: scorelight.scheduler.PlaybackScheduler) -> None:

	"""Zero or negative BPM raises ValueError."""

	with pytest.raises(ValueError):
		scheduler.start(make_timeline((60, 0, 1)), 0)


def test_finished_event (scheduler: scorelight.scheduler.PlaybackScheduler) -> None:

	"""A non-looping pass announces its end once."""

	finished: list[bool] = []
	scheduler.events.on("finished", lambda: finished.append(True))

	scheduler.start(make_timeline((60, 0, 1)), 60)
	scheduler.dispatch_due(101.0)
	scheduler.dispatch_due(102.0)

	assert finished == [True]
	assert not scheduler.is_playing


def test_loop_restarts_from_the_beginning (scheduler: scorelight.scheduler.PlaybackScheduler, audio: fakes.FakeAudio, clock: fakes.FakeClock) -> None:

	"""In loop mode the pass is rescheduled when it ends."""

	loops: list[int] = []
	scheduler.events.on("loop", loops.append)
	scheduler.loop = True

	scheduler.start(make_timeline((60, 0, 1)), 60)
	first_generation = scheduler.generation

	scheduler.dispatch_due()
	clock.advance(1.0)
	scheduler.dispatch_due()

	assert loops == [scheduler.generation]
	assert scheduler.generation == first_generation + 1
	assert scheduler.state is scorelight.scheduler.PlaybackState.PLAYING

	scheduler.dispatch_due()

	assert audio.ons() == [60, 60]
	assert scheduler.event_queue[0].fire_at == pytest.approx(102.0)


def test_loop_can_be_switched_off_for_the_next_pass (scheduler: scorelight.scheduler.PlaybackScheduler, clock: fakes.FakeClock) -> None:

	"""Turning loop off lets the current looping pass run out."""

	scheduler.loop = True
	scheduler.start(make_timeline((60, 0, 1)), 60)

	clock.advance(1.0)
	scheduler.dispatch_due()

	scheduler.loop = False
	scheduler.dispatch_due()
	clock.advance(1.0)
	scheduler.dispatch_due()

	assert scheduler.state is scorelight.scheduler.PlaybackState.STOPPED


def test_loop_switched_on_during_a_pass (scheduler: scorelight.scheduler.PlaybackScheduler, clock: fakes.FakeClock) -> None:

	"""Turning loop on mid-pass restarts when that pass ends."""

	scheduler.start(make_timeline((60, 0, 1)), 60)
	scheduler.loop = True

	clock.advance(1.0)
	scheduler.dispatch_due()

	assert scheduler.is_playing
	assert scheduler.transport.loop


def test_retempo_resumes_from_the_current_beat (scheduler: scorelight.scheduler.PlaybackScheduler, audio: fakes.FakeAudio, clock: fakes.FakeClock) -> None:

	"""A tempo change restarts at the captured beat with the new scale."""

	retempos: list[tuple[float, float]] = []
	scheduler.events.on("retempo", lambda bpm, beat: retempos.append((bpm, beat)))

	scheduler.start(make_timeline((60, 0, 4), (64, 3, 4)), 60)
	scheduler.dispatch_due()

	clock.advance(2.0)
	scheduler.retempo(120)

	assert audio.silenced == 1
	assert scheduler.bpm == 120
	assert scheduler.is_playing
	assert retempos == [(120, 2.0)]
	assert scheduler.transport.position() == pytest.approx(2.0)

	times = sorted((c.fire_at, c.kind, c.pitch) for c in scheduler.event_queue)
	kinds = scorelight.scheduler.CommandKind

	assert (pytest.approx(102.0), kinds.AUDIO_ON, 60) in times
	assert (pytest.approx(103.0), kinds.AUDIO_OFF, 60) in times
	assert (pytest.approx(102.5), kinds.AUDIO_ON, 64) in times


def test_resumed_pass_keeps_timeline_indices (scheduler: scorelight.scheduler.PlaybackScheduler, clock: fakes.FakeClock) -> None:

	"""Notes already finished are dropped and the rest keep their timeline positions."""

	scheduler.start(make_timeline((60, 0, 1), (62, 1, 2), (64, 2, 4)), 60)

	clock.advance(2.5)
	scheduler.retempo(120)

	indexed = {(c.note_index, c.pitch) for c in scheduler.event_queue if c.kind is not scorelight.scheduler.CommandKind.LOOP}

	assert indexed == {(2, 64)}


def test_retempo_while_stopped_only_records_the_tempo (scheduler: scorelight.scheduler.PlaybackScheduler) -> None:

	"""Without playback a tempo change waits for the next start."""

	scheduler.retempo(90)

	assert scheduler.bpm == 90
	assert scheduler.state is scorelight.scheduler.PlaybackState.IDLE


def test_retempo_rejects_bad_tempo (scheduler: scorelight.scheduler.PlaybackScheduler) -> None:

	"""Zero BPM raises ValueError."""

	with pytest.raises(ValueError):
		scheduler.retempo(0)


def test_transposed_layout_moves_lights_not_sound (audio: fakes.FakeAudio, lighting: fakes.FakeLighting, clock: fakes.FakeClock) -> None:

	"""Visual transpose changes the lit key; the true pitch is sounded."""

	layout = scorelight.keyboard.KeyLayout(scorelight.keyboard_range.DisplayWindow(60, 83), transpose=12)
	scheduler = scorelight.scheduler.PlaybackScheduler(audio, lighting, layout, lead_in=0.0, clock=clock)

	scheduler.start(make_timeline((48, 0, 1), (80, 0, 1)), 60)
	scheduler.dispatch_due(100.0)

	assert audio.ons() == [48, 80]
	assert lighting.lit == {36}


def test_failing_lighting_does_not_stop_playback (audio: fakes.FakeAudio, clock: fakes.FakeClock) -> None:

	"""Lighting errors are logged and scheduling carries on."""

	class BrokenLighting:

		def light (self, indices: list[int]) -> None:
			raise RuntimeError("display unplugged")

		def dim (self, indices: list[int]) -> None:
			raise RuntimeError("display unplugged")

	scheduler = scorelight.scheduler.PlaybackScheduler(audio, BrokenLighting(), lead_in=0.0, clock=clock)

	scheduler.start(make_timeline((60, 0, 1)), 60)
	scheduler.dispatch_due(100.0)
	scheduler.dispatch_due(101.0)

	assert audio.ons() == [60]
	assert audio.offs() == [60]

	scheduler.stop()


def test_negative_lead_in_is_rejected (audio: fakes.FakeAudio, lighting: fakes.FakeLighting) -> None:

	"""lead_in must not be negative."""

	with pytest.raises(ValueError):
		scorelight.scheduler.PlaybackScheduler(audio, lighting, lead_in=-0.1)


@pytest.mark.asyncio
async def test_dispatch_task_plays_to_the_end (audio: fakes.FakeAudio, lighting: fakes.FakeLighting) -> None:

	"""Inside an event loop the scheduler fires commands on its own."""

	scheduler = scorelight.scheduler.PlaybackScheduler(audio, lighting, lead_in=0.01)
	finished = asyncio.Event()
	scheduler.events.on("finished", finished.set)

	scheduler.start(make_timeline((60, 0, 0.1), (62, 0.1, 0.2)), 600)

	assert scheduler.task is not None

	await asyncio.wait_for(finished.wait(), timeout=2.0)

	assert audio.ons() == [60, 62]
	assert audio.offs() == [60, 62]
	assert lighting.lit == set()


@pytest.mark.asyncio
async def test_stop_cancels_the_dispatch_task (audio: fakes.FakeAudio, lighting: fakes.FakeLighting) -> None:

	"""Stopping cancels pending commands and the task that fires them."""

	scheduler = scorelight.scheduler.PlaybackScheduler(audio, lighting, lead_in=0.01)

	scheduler.start(make_timeline((60, 0, 10)), 60)
	task = scheduler.task

	await asyncio.sleep(0.05)
	scheduler.stop()
	await asyncio.sleep(0.01)

	assert task is not None and task.cancelled()
	assert audio.sounding == {}
	assert scheduler.task is None
