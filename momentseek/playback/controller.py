from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Protocol, Union

from momentseek.errors import InvalidClipBounds
from momentseek.models import Segment

DEFAULT_SKIP_SECONDS = 10.0

logger = logging.getLogger(__name__)


class MediaClock(Protocol):
    """Player-side sink for the commands the controller issues."""

    def seek(self, time: float) -> None: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...


@dataclass(frozen=True, slots=True)
class FreeMode:
    """Unconstrained playback over the whole video."""


@dataclass(frozen=True, slots=True)
class ClipMode:
    """Playback constrained to [lower_bound, upper_bound]."""

    lower_bound: float
    upper_bound: float


PlaybackMode = Union[FreeMode, ClipMode]


@dataclass(frozen=True, slots=True)
class PlaybackSession:
    """Snapshot of the controller state handed to the presentation layer."""

    mode: PlaybackMode
    current_time: float
    is_playing: bool
    duration: float | None

    @property
    def is_clip(self) -> bool:
        return isinstance(self.mode, ClipMode)

    @property
    def lower_bound(self) -> float:
        return self.mode.lower_bound if isinstance(self.mode, ClipMode) else 0.0

    @property
    def upper_bound(self) -> float | None:
        return self.mode.upper_bound if isinstance(self.mode, ClipMode) else None


class PlaybackController:
    """State machine owning a video session's position and clip bounds.

    Every stimulus (seek, tick, skip, play, mode switch) goes through here and
    is clamped before it lands, so `lower <= current_time <= upper` holds after
    each call while a clip is active.
    """

    def __init__(
        self,
        duration: float | None = None,
        *,
        skip_seconds: float = DEFAULT_SKIP_SECONDS,
        clock: MediaClock | None = None,
    ) -> None:
        self._mode: PlaybackMode = FreeMode()
        self._duration = _known_duration(duration)
        self._current_time = 0.0
        self._is_playing = False
        self._skip_seconds = skip_seconds
        self._clock = clock

    @property
    def session(self) -> PlaybackSession:
        return PlaybackSession(
            mode=self._mode,
            current_time=self._current_time,
            is_playing=self._is_playing,
            duration=self._duration,
        )

    @property
    def mode(self) -> PlaybackMode:
        return self._mode

    @property
    def current_time(self) -> float:
        return self._current_time

    @property
    def is_playing(self) -> bool:
        return self._is_playing

    @property
    def duration(self) -> float | None:
        return self._duration

    def load(self, duration: float | None) -> None:
        """Record the media duration once the player reports it."""

        self._duration = _known_duration(duration)
        if isinstance(self._mode, FreeMode):
            self._current_time = self._clamp(self._current_time)

    def enter_clip(self, segment: Segment) -> None:
        self.enter_clip_bounds(segment.start_time, segment.end_time)

    def enter_clip_bounds(self, lower_bound: float, upper_bound: float) -> None:
        finite = math.isfinite(lower_bound) and math.isfinite(upper_bound)
        if not finite or lower_bound < 0 or upper_bound <= lower_bound:
            raise InvalidClipBounds(f"lower={lower_bound}, upper={upper_bound}")

        self._mode = ClipMode(lower_bound=float(lower_bound), upper_bound=float(upper_bound))
        self._move_to(self._mode.lower_bound)
        logger.debug("Entered clip mode [%.3f, %.3f].", lower_bound, upper_bound)

    def exit_clip(self) -> None:
        if isinstance(self._mode, ClipMode):
            logger.debug("Exited clip mode at %.3f.", self._current_time)
        self._mode = FreeMode()

    def seek(self, time: float) -> None:
        if not math.isfinite(time):
            return
        self._move_to(self._clamp(time))

    def tick(self, time: float) -> None:
        """Adopt a time update from the media clock, enforcing clip bounds."""

        if not math.isfinite(time):
            return
        if isinstance(self._mode, ClipMode):
            if time < self._mode.lower_bound:
                self._move_to(self._mode.lower_bound)
                return
            if time >= self._mode.upper_bound:
                self.pause()
                return
        self._current_time = time

    def play(self) -> None:
        if isinstance(self._mode, ClipMode) and self._current_time >= self._mode.upper_bound:
            self._move_to(self._mode.lower_bound)
        else:
            legal = self._clamp(self._current_time)
            if legal != self._current_time:
                self._move_to(legal)

        self._is_playing = True
        if self._clock is not None:
            self._clock.play()

    def pause(self) -> None:
        self._is_playing = False
        if self._clock is not None:
            self._clock.pause()

    def toggle(self) -> None:
        if self._is_playing:
            self.pause()
        else:
            self.play()

    def skip_forward(self, delta: float | None = None) -> None:
        self.seek(self._current_time + (self._skip_seconds if delta is None else delta))

    def skip_backward(self, delta: float | None = None) -> None:
        self.seek(self._current_time - (self._skip_seconds if delta is None else delta))

    def _clamp(self, time: float) -> float:
        if isinstance(self._mode, ClipMode):
            return max(self._mode.lower_bound, min(self._mode.upper_bound, time))
        upper = self._duration if self._duration is not None else math.inf
        return max(0.0, min(upper, time))

    def _move_to(self, time: float) -> None:
        self._current_time = time
        if self._clock is not None:
            self._clock.seek(time)


def _known_duration(duration: float | None) -> float | None:
    if duration is None or not math.isfinite(duration) or duration <= 0:
        return None
    return float(duration)
