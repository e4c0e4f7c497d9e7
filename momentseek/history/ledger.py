from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Literal

from pydantic import BaseModel, Field

from momentseek.errors import StorageUnavailable
from momentseek.history.store import HistoryStore
from momentseek.models import HistoryEntry, Segment

SortField = Literal["created_at", "query_text", "video_label", "confidence"]
SortDirection = Literal["asc", "desc"]

DEFAULT_PAGE_SIZE = 10

logger = logging.getLogger(__name__)


class HistoryQuery(BaseModel):
    sort_field: SortField = "created_at"
    sort_direction: SortDirection = "desc"
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=DEFAULT_PAGE_SIZE, ge=1)
    search_text: str | None = None


@dataclass(frozen=True, slots=True)
class HistoryPage:
    entries: tuple[HistoryEntry, ...]
    page: int
    page_size: int
    total_count: int
    total_pages: int


class HistoryLedger:
    """Append-only, owner-scoped query history over a pluggable store."""

    def __init__(self, store: HistoryStore) -> None:
        self.store = store

    def append(self, entry: HistoryEntry) -> None:
        try:
            self.store.append(entry)
        except (OSError, ValueError) as exc:
            raise StorageUnavailable(f"append failed for entry {entry.id}: {exc}") from exc
        logger.info("Recorded history entry %s (%d segment(s)).", entry.id, len(entry.results))

    def query(self, owner_id: str, params: HistoryQuery | None = None) -> HistoryPage:
        """Return one page of the owner's entries, filtered then sorted.

        Ties on the sort field fall back to ascending id, so repeated calls
        against an unchanged store return identical pages.
        """

        params = params or HistoryQuery()
        entries = self._load(owner_id)

        needle = (params.search_text or "").strip().casefold()
        if needle:
            entries = [
                entry
                for entry in entries
                if needle in entry.query_text.casefold() or needle in entry.video_label.casefold()
            ]

        by_id = sorted(entries, key=lambda entry: entry.id)
        ordered = sorted(
            by_id,
            key=_SORT_KEYS[params.sort_field],
            reverse=params.sort_direction == "desc",
        )

        total_count = len(ordered)
        offset = (params.page - 1) * params.page_size
        return HistoryPage(
            entries=tuple(ordered[offset : offset + params.page_size]),
            page=params.page,
            page_size=params.page_size,
            total_count=total_count,
            total_pages=math.ceil(total_count / params.page_size),
        )

    def get(self, owner_id: str, entry_id: str) -> HistoryEntry | None:
        for entry in self._load(owner_id):
            if entry.id == entry_id:
                return entry
        return None

    def _load(self, owner_id: str) -> list[HistoryEntry]:
        try:
            return self.store.list_for_owner(owner_id)
        except (OSError, ValueError) as exc:
            raise StorageUnavailable(f"read failed: {exc}") from exc


def best_of(entry: HistoryEntry) -> Segment | None:
    """Highest-confidence segment of an entry, or None when it found nothing."""

    return entry.results.best_segment


def _best_confidence(entry: HistoryEntry) -> float:
    best = best_of(entry)
    return best.confidence if best is not None else -math.inf


_SORT_KEYS: dict[str, Callable[[HistoryEntry], Any]] = {
    "created_at": lambda entry: entry.created_at,
    "query_text": lambda entry: entry.query_text.casefold(),
    "video_label": lambda entry: entry.video_label.casefold(),
    "confidence": _best_confidence,
}
