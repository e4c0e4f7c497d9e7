from __future__ import annotations

import logging
import math

import numpy as np

from momentseek.models import ResultSet, Timeline, TimelinePoint

DEFAULT_RESOLUTION = 200
DEFAULT_FALLBACK_DURATION_SECONDS = 150.0

logger = logging.getLogger(__name__)


def synthesize_timeline(
    results: ResultSet,
    video_duration: float | None,
    *,
    resolution: int = DEFAULT_RESOLUTION,
    fallback_duration: float = DEFAULT_FALLBACK_DURATION_SECONDS,
    inclusive_end: bool = False,
) -> Timeline:
    """Sample a max-confidence curve over [0, video_duration).

    Sample i sits at i * (duration / resolution). Its confidence is the highest
    confidence among segments containing that time, 0 when none does. Segments
    contain [start, end) unless inclusive_end is set.
    """

    if isinstance(resolution, bool) or not isinstance(resolution, int) or resolution <= 0:
        raise ValueError(f"resolution must be a positive integer, got {resolution!r}.")

    duration, degraded = _resolve_duration(video_duration, fallback_duration)
    times = np.arange(resolution, dtype=np.float64) * (duration / resolution)
    curve = np.full(resolution, -np.inf, dtype=np.float64)
    covered_any = np.zeros(resolution, dtype=bool)

    for segment in results:
        upper = times <= segment.end_time if inclusive_end else times < segment.end_time
        covered = (times >= segment.start_time) & upper
        curve = np.where(covered, np.maximum(curve, segment.confidence), curve)
        covered_any |= covered

    # uncovered samples read 0; covered ones keep the raw max, negatives included
    curve = np.where(covered_any, curve, 0.0)
    points = tuple(
        TimelinePoint(time=float(time), confidence=float(confidence))
        for time, confidence in zip(times, curve)
    )
    return Timeline(points=points, video_duration=duration, resolution=resolution, degraded=degraded)


def _resolve_duration(video_duration: float | None, fallback_duration: float) -> tuple[float, bool]:
    if video_duration is not None and math.isfinite(video_duration) and video_duration > 0:
        return float(video_duration), False

    if not math.isfinite(fallback_duration) or fallback_duration <= 0:
        raise ValueError(f"fallback_duration must be positive, got {fallback_duration!r}.")

    logger.warning(
        "Video duration unknown (%s); sampling timeline against fallback of %.1fs.",
        video_duration,
        fallback_duration,
    )
    return float(fallback_duration), True
