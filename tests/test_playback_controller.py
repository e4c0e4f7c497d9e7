from __future__ import annotations

import random

import pytest

from momentseek.errors import InvalidClipBounds
from momentseek.models import Segment
from momentseek.playback.controller import ClipMode, FreeMode, PlaybackController


class _RecordingClock:
    def __init__(self) -> None:
        self.commands: list[tuple[str, float | None]] = []

    def seek(self, time: float) -> None:
        self.commands.append(("seek", time))

    def play(self) -> None:
        self.commands.append(("play", None))

    def pause(self) -> None:
        self.commands.append(("pause", None))


def test_new_controller_starts_free_and_paused() -> None:
    controller = PlaybackController(120)

    session = controller.session
    assert session.mode == FreeMode()
    assert session.current_time == 0.0
    assert session.is_playing is False
    assert session.upper_bound is None


def test_tick_past_clip_end_pauses_without_advancing() -> None:
    controller = PlaybackController(60)
    controller.enter_clip(Segment(5, 15, 0.8))
    controller.play()

    controller.tick(20)

    assert controller.is_playing is False
    assert controller.current_time == 5
    assert controller.current_time < 15


def test_tick_before_clip_start_forces_seek_to_lower_bound() -> None:
    clock = _RecordingClock()
    controller = PlaybackController(60, clock=clock)
    controller.enter_clip(Segment(5, 15, 0.8))

    controller.tick(2)

    assert controller.current_time == 5
    assert clock.commands[-1] == ("seek", 5)


def test_tick_inside_clip_is_adopted() -> None:
    controller = PlaybackController(60)
    controller.enter_clip(Segment(5, 15, 0.8))

    controller.tick(9.5)

    assert controller.current_time == 9.5


def test_free_mode_tick_is_adopted_unconditionally() -> None:
    controller = PlaybackController(60)

    controller.tick(42.0)

    assert controller.current_time == 42.0


@pytest.mark.parametrize(
    ("target", "expected"),
    [(-3, 0.0), (30, 30), (75, 60)],
)
def test_free_mode_seek_clamps_to_duration(target: float, expected: float) -> None:
    controller = PlaybackController(60)

    controller.seek(target)

    assert controller.current_time == expected


def test_free_mode_seek_without_known_duration_only_clamps_at_zero() -> None:
    controller = PlaybackController()

    controller.seek(500)
    assert controller.current_time == 500

    controller.load(120)
    assert controller.current_time == 120


@pytest.mark.parametrize(
    ("target", "expected"),
    [(0, 5), (10, 10), (99, 15)],
)
def test_clip_mode_seek_clamps_to_bounds(target: float, expected: float) -> None:
    controller = PlaybackController(60)
    controller.enter_clip(Segment(5, 15, 0.8))

    controller.seek(target)

    assert controller.current_time == expected


def test_skip_uses_default_delta_and_clamps() -> None:
    controller = PlaybackController(60)
    controller.seek(55)

    controller.skip_forward()
    assert controller.current_time == 60

    controller.skip_backward()
    controller.skip_backward()
    assert controller.current_time == 40

    controller.enter_clip(Segment(20, 28, 0.5))
    controller.skip_backward(3)
    assert controller.current_time == 20
    controller.skip_forward(100)
    assert controller.current_time == 28


def test_play_at_clip_end_replays_from_start() -> None:
    controller = PlaybackController(60)
    controller.enter_clip(Segment(5, 15, 0.8))
    controller.seek(15)

    controller.play()

    assert controller.current_time == 5
    assert controller.is_playing is True


def test_play_in_free_mode_reclamps_position() -> None:
    controller = PlaybackController(60)
    controller.tick(75)

    controller.play()

    assert controller.current_time == 60
    assert controller.is_playing is True


def test_enter_clip_keeps_playing_state() -> None:
    controller = PlaybackController(60)
    controller.play()

    controller.enter_clip(Segment(10, 20, 0.5))

    assert controller.is_playing is True
    assert controller.session.mode == ClipMode(10, 20)
    assert controller.current_time == 10


def test_exit_clip_leaves_position_and_unconstrains() -> None:
    controller = PlaybackController(60)
    controller.enter_clip(Segment(10, 20, 0.5))
    controller.seek(17)

    controller.exit_clip()
    assert controller.mode == FreeMode()
    assert controller.current_time == 17

    controller.seek(45)
    assert controller.current_time == 45


def test_toggle_flips_playing_state() -> None:
    clock = _RecordingClock()
    controller = PlaybackController(60, clock=clock)

    controller.toggle()
    assert controller.is_playing is True
    controller.toggle()
    assert controller.is_playing is False
    assert [name for name, _ in clock.commands] == ["play", "pause"]


@pytest.mark.parametrize(("lower", "upper"), [(10, 10), (10, 5), (-1, 5), (0, float("inf"))])
def test_invalid_clip_bounds_are_rejected_and_state_kept(lower: float, upper: float) -> None:
    controller = PlaybackController(60)
    controller.enter_clip(Segment(1, 4, 0.3))
    controller.seek(3)
    before = controller.session

    with pytest.raises(InvalidClipBounds):
        controller.enter_clip_bounds(lower, upper)

    assert controller.session == before


def test_reentering_same_clip_is_idempotent() -> None:
    segment = Segment(12, 18, 0.6)

    once = PlaybackController(60)
    once.seek(30)
    once.exit_clip()
    once.enter_clip(segment)

    twice = PlaybackController(60)
    twice.seek(30)
    for _ in range(2):
        twice.exit_clip()
        twice.enter_clip(segment)

    assert once.session == twice.session


def test_clip_invariant_holds_for_random_event_sequences() -> None:
    rng = random.Random(1234)
    lower, upper = 12.0, 31.5

    for _ in range(50):
        controller = PlaybackController(rng.choice([None, 40.0, 300.0]))
        controller.enter_clip(Segment(lower, upper, 0.9))
        for _ in range(100):
            event = rng.choice(["seek", "tick", "skip_forward", "skip_backward", "play", "pause"])
            value = rng.uniform(-50.0, 400.0)
            if event in {"seek", "tick"}:
                getattr(controller, event)(value)
            elif event.startswith("skip"):
                getattr(controller, event)(rng.uniform(0.0, 40.0))
            else:
                getattr(controller, event)()
            assert lower <= controller.current_time <= upper
