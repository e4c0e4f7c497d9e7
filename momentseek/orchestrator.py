from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Literal

from momentseek.config import Settings
from momentseek.errors import QueryRejected, RequestSuperseded, StorageUnavailable
from momentseek.history.ledger import HistoryLedger
from momentseek.history.store import JsonlHistoryStore
from momentseek.ingest.probe import (
    DEFAULT_MAX_DOCUMENT_MB,
    DEFAULT_MAX_VIDEO_MB,
    probe_duration,
    validate_document_upload,
    validate_video_upload,
)
from momentseek.models import HistoryEntry, ResultSet, Segment, Timeline
from momentseek.playback.controller import DEFAULT_SKIP_SECONDS, MediaClock, PlaybackController
from momentseek.prediction.client import HttpPredictionClient, PredictionService
from momentseek.results.normalizer import DEFAULT_RESPONSE_FIELD, normalize_prediction
from momentseek.timeline.synthesizer import (
    DEFAULT_FALLBACK_DURATION_SECONDS,
    DEFAULT_RESOLUTION,
    synthesize_timeline,
)

OutcomeStatus = Literal["ok", "no_match", "superseded"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class QueryOutcome:
    """What the presentation layer receives for one submitted query."""

    status: OutcomeStatus
    sequence: int
    results: ResultSet
    timeline: Timeline | None = None
    entry: HistoryEntry | None = None
    storage_error: StorageUnavailable | None = None

    @property
    def no_match(self) -> bool:
        return self.status == "no_match"

    @property
    def persisted(self) -> bool:
        return self.entry is not None and self.storage_error is None


class QueryOrchestrator:
    """Runs submit -> predict -> normalize -> timeline -> history for one viewing session.

    Only one query may be in flight. Every submission takes a sequence number;
    a response that comes back after the session moved on is dropped.
    """

    def __init__(
        self,
        predictor: PredictionService,
        ledger: HistoryLedger,
        *,
        response_field: str = DEFAULT_RESPONSE_FIELD,
        resolution: int = DEFAULT_RESOLUTION,
        fallback_duration: float = DEFAULT_FALLBACK_DURATION_SECONDS,
        inclusive_end: bool = False,
        max_video_mb: int = DEFAULT_MAX_VIDEO_MB,
        max_document_mb: int = DEFAULT_MAX_DOCUMENT_MB,
        skip_seconds: float = DEFAULT_SKIP_SECONDS,
        clock: MediaClock | None = None,
        duration_probe: Callable[[Path], float | None] = probe_duration,
    ) -> None:
        self.predictor = predictor
        self.ledger = ledger
        self.response_field = response_field
        self.resolution = resolution
        self.fallback_duration = fallback_duration
        self.inclusive_end = inclusive_end
        self.max_video_mb = max_video_mb
        self.max_document_mb = max_document_mb
        self.skip_seconds = skip_seconds
        self.clock = clock
        self.duration_probe = duration_probe

        self.controller = PlaybackController(skip_seconds=skip_seconds, clock=clock)
        self.video_path: Path | None = None
        self.last_outcome: QueryOutcome | None = None
        self._sequence = 0
        self._in_flight = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        predictor: PredictionService | None = None,
        ledger: HistoryLedger | None = None,
    ) -> QueryOrchestrator:
        return cls(
            predictor=predictor
            or HttpPredictionClient(
                settings.prediction.endpoint,
                timeout_seconds=settings.prediction.timeout_seconds,
                max_retries=settings.prediction.max_retries,
                include_document=settings.prediction.include_document,
            ),
            ledger=ledger or HistoryLedger(JsonlHistoryStore(settings.history.store_dir)),
            response_field=settings.prediction.response_field,
            resolution=settings.timeline.resolution,
            fallback_duration=settings.timeline.fallback_duration_seconds,
            inclusive_end=settings.timeline.inclusive_end,
            max_video_mb=settings.ingest.max_video_mb,
            max_document_mb=settings.ingest.max_document_mb,
            skip_seconds=settings.playback.skip_seconds,
        )

    @property
    def sequence(self) -> int:
        return self._sequence

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def load_video(self, video_path: str | Path, duration: float | None = None) -> None:
        """Start a new session on a video; any outstanding request becomes stale."""

        self.video_path = Path(video_path).expanduser()
        self.controller = PlaybackController(duration, skip_seconds=self.skip_seconds, clock=self.clock)
        self.last_outcome = None
        self.cancel()

    def cancel(self) -> None:
        self._sequence += 1
        self._in_flight = False

    def submit(
        self,
        query_text: str,
        owner_id: str,
        *,
        document_path: str | Path | None = None,
    ) -> QueryOutcome:
        if self._in_flight:
            raise QueryRejected("A prediction request is still outstanding.", summary="A query is already running.")
        if not query_text or not query_text.strip():
            raise QueryRejected("Query text is blank.", summary="Please enter a question about the video.")
        if self.video_path is None:
            raise QueryRejected("No video loaded.", summary="Please upload a video before submitting a query.")

        video = validate_video_upload(self.video_path, self.max_video_mb)
        document = (
            validate_document_upload(document_path, self.max_document_mb) if document_path is not None else None
        )

        self._sequence += 1
        sequence = self._sequence
        self._in_flight = True
        logger.info("Submitting query #%d for %s: %r", sequence, video.name, query_text)

        try:
            payload = self.predictor.predict(video, query_text, document)
        except Exception as exc:
            if sequence != self._sequence:
                logger.debug("Discarding failed response #%d: %s", sequence, exc)
                return QueryOutcome(status="superseded", sequence=sequence, results=ResultSet())
            self.last_outcome = None
            raise
        finally:
            if sequence == self._sequence:
                self._in_flight = False

        try:
            self._ensure_current(sequence)
        except RequestSuperseded as exc:
            logger.debug("Discarding response: %s", exc.detail)
            return QueryOutcome(status="superseded", sequence=sequence, results=ResultSet())

        try:
            results = normalize_prediction(payload, field=self.response_field)
            timeline = synthesize_timeline(
                results,
                self._video_duration(video),
                resolution=self.resolution,
                fallback_duration=self.fallback_duration,
                inclusive_end=self.inclusive_end,
            )
        except ValueError:
            self.last_outcome = None
            raise

        if results.is_empty:
            logger.info("Query #%d found no matching segments.", sequence)
        else:
            logger.info("Query #%d found %d potential moment(s).", sequence, len(results))

        entry = HistoryEntry.create(
            owner_id=owner_id,
            query_text=query_text,
            video_label=video.name,
            results=results,
            aux_document_label=document.name if document is not None else None,
        )
        storage_error: StorageUnavailable | None = None
        try:
            self.ledger.append(entry)
        except StorageUnavailable as exc:
            logger.warning("History not saved; keeping in-memory results: %s", exc.detail)
            storage_error = exc

        outcome = QueryOutcome(
            status="no_match" if results.is_empty else "ok",
            sequence=sequence,
            results=results,
            timeline=timeline,
            entry=entry,
            storage_error=storage_error,
        )
        self.last_outcome = outcome
        return outcome

    def timeline(self) -> Timeline | None:
        """Resample the current results against the latest known duration."""

        if self.last_outcome is None:
            return None
        return synthesize_timeline(
            self.last_outcome.results,
            self.controller.duration,
            resolution=self.resolution,
            fallback_duration=self.fallback_duration,
            inclusive_end=self.inclusive_end,
        )

    def play_best_match(self) -> Segment | None:
        if self.last_outcome is None:
            return None
        best = self.last_outcome.results.best_segment
        if best is not None:
            self.play_segment(best)
        return best

    def play_segment(self, segment: Segment) -> None:
        self.controller.enter_clip(segment)
        self.controller.play()

    def exit_clip(self) -> None:
        self.controller.exit_clip()

    def _ensure_current(self, sequence: int) -> None:
        if sequence != self._sequence:
            raise RequestSuperseded(f"response #{sequence} arrived after request #{self._sequence}")

    def _video_duration(self, video: Path) -> float | None:
        if self.controller.duration is None:
            probed = self.duration_probe(video)
            if probed is not None:
                self.controller.load(probed)
        return self.controller.duration
