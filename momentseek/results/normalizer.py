from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from momentseek.errors import MalformedResponse
from momentseek.models import ResultSet, Segment

DEFAULT_RESPONSE_FIELD = "predicted_moments"

logger = logging.getLogger(__name__)


def normalize_prediction(payload: Any, *, field: str = DEFAULT_RESPONSE_FIELD) -> ResultSet:
    """Turn a raw prediction payload into a ranked, de-duplicated ResultSet.

    An empty moments list is a valid outcome and yields an empty ResultSet;
    shape problems raise MalformedResponse.
    """

    if not isinstance(payload, Mapping):
        raise MalformedResponse(f"Prediction payload must be a JSON object, got {type(payload).__name__}.")
    if field not in payload:
        raise MalformedResponse(f"Prediction payload is missing the '{field}' field.")

    rows = payload[field]
    if not isinstance(rows, list):
        raise MalformedResponse(f"'{field}' must be a list, got {type(rows).__name__}.")

    seen: set[tuple[float, float, float]] = set()
    segments: list[Segment] = []
    for idx, row in enumerate(rows):
        segment = _segment_from_row(row, idx)
        triple = (segment.start_time, segment.end_time, segment.confidence)
        if triple in seen:
            continue
        seen.add(triple)
        segments.append(segment)

    if len(segments) < len(rows):
        logger.debug("Dropped %d duplicate moment(s) from prediction payload.", len(rows) - len(segments))

    return ResultSet.ranked(segments)


def _segment_from_row(row: Any, idx: int) -> Segment:
    if isinstance(row, (str, bytes)) or not isinstance(row, Sequence) or len(row) != 3:
        raise MalformedResponse(f"Moment {idx} must be a [start, end, confidence] triple, got {row!r}.")

    start, end, confidence = row
    try:
        return Segment(start_time=_to_float(start), end_time=_to_float(end), confidence=_to_float(confidence))
    except (TypeError, ValueError) as exc:
        raise MalformedResponse(f"Moment {idx} is invalid: {exc}") from exc


def _to_float(raw_value: Any) -> float:
    if isinstance(raw_value, bool) or not isinstance(raw_value, (int, float)):
        raise TypeError(f"expected a number, got {raw_value!r}")
    return float(raw_value)
