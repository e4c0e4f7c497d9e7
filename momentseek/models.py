from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Iterator


@dataclass(frozen=True, slots=True)
class Segment:
    """A scored time interval within a video."""

    start_time: float
    end_time: float
    confidence: float

    def __post_init__(self) -> None:
        for name in ("start_time", "end_time", "confidence"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ValueError(f"{name} must be a finite number, got {value!r}.")
        if self.start_time < 0:
            raise ValueError(f"start_time must be >= 0, got {self.start_time}.")
        if self.end_time <= self.start_time:
            raise ValueError(f"end_time ({self.end_time}) must be greater than start_time ({self.start_time}).")

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    @property
    def display_confidence(self) -> float:
        return _clamp(self.confidence)

    def contains(self, time: float, *, inclusive_end: bool = False) -> bool:
        if inclusive_end:
            return self.start_time <= time <= self.end_time
        return self.start_time <= time < self.end_time


def rank_key(segment: Segment) -> tuple[float, float, float]:
    """Sort key for ResultSet ordering: confidence desc, then start asc, then end asc."""

    return (-segment.confidence, segment.start_time, segment.end_time)


@dataclass(frozen=True, slots=True)
class ResultSet:
    """Ranked, immutable collection of segments answering one query."""

    segments: tuple[Segment, ...] = ()

    @classmethod
    def ranked(cls, segments: Iterable[Segment]) -> ResultSet:
        return cls(segments=tuple(sorted(segments, key=rank_key)))

    @property
    def best_segment(self) -> Segment | None:
        return self.segments[0] if self.segments else None

    @property
    def is_empty(self) -> bool:
        return not self.segments

    def top(self, n: int) -> tuple[Segment, ...]:
        return self.segments[: max(n, 0)]

    def __len__(self) -> int:
        return len(self.segments)

    def __iter__(self) -> Iterator[Segment]:
        return iter(self.segments)

    def __getitem__(self, index: int) -> Segment:
        return self.segments[index]


@dataclass(frozen=True, slots=True)
class TimelinePoint:
    time: float
    confidence: float

    @property
    def display_confidence(self) -> float:
        return _clamp(self.confidence)


@dataclass(frozen=True, slots=True)
class Timeline:
    """Fixed-resolution confidence curve plus the duration it was sampled against."""

    points: tuple[TimelinePoint, ...]
    video_duration: float
    resolution: int
    degraded: bool = False

    def __len__(self) -> int:
        return len(self.points)


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """Persisted record of one completed query and its result set."""

    id: str
    created_at: datetime
    owner_id: str
    query_text: str
    video_label: str
    results: ResultSet = field(default_factory=ResultSet)
    aux_document_label: str | None = None

    @classmethod
    def create(
        cls,
        *,
        owner_id: str,
        query_text: str,
        video_label: str,
        results: ResultSet,
        aux_document_label: str | None = None,
        created_at: datetime | None = None,
    ) -> HistoryEntry:
        return cls(
            id=uuid.uuid4().hex,
            created_at=created_at or datetime.now(timezone.utc),
            owner_id=owner_id,
            query_text=query_text,
            video_label=video_label,
            results=results,
            aux_document_label=aux_document_label,
        )


def _clamp(value: float, minimum: float = 0.0, maximum: float = 1.0) -> float:
    return max(minimum, min(maximum, value))
