from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from pydantic import ValidationError

from momentseek.errors import StorageUnavailable
from momentseek.history.ledger import HistoryLedger, HistoryQuery, best_of
from momentseek.history.store import InMemoryHistoryStore, JsonlHistoryStore
from momentseek.models import HistoryEntry, ResultSet, Segment

BASE_TIME = datetime(2024, 4, 15, 14, 30, tzinfo=timezone.utc)


def _entry(
    entry_id: str,
    *,
    query: str = "when does the door open",
    video: str = "cam1.mp4",
    minutes: int = 0,
    owner: str = "owner-a",
    segments: tuple[Segment, ...] = (Segment(1, 2, 0.5),),
) -> HistoryEntry:
    return HistoryEntry(
        id=entry_id,
        created_at=BASE_TIME + timedelta(minutes=minutes),
        owner_id=owner,
        query_text=query,
        video_label=video,
        results=ResultSet.ranked(segments),
    )


def _ledger(*entries: HistoryEntry) -> HistoryLedger:
    ledger = HistoryLedger(InMemoryHistoryStore())
    for entry in entries:
        ledger.append(entry)
    return ledger


def test_first_page_desc_returns_latest_entry_with_total_pages() -> None:
    ledger = _ledger(_entry("e1", minutes=0), _entry("e2", minutes=5))

    page = ledger.query(
        "owner-a",
        HistoryQuery(sort_field="created_at", sort_direction="desc", page=1, page_size=1),
    )

    assert [entry.id for entry in page.entries] == ["e2"]
    assert page.total_pages == 2
    assert page.total_count == 2


def test_query_is_scoped_to_owner() -> None:
    ledger = _ledger(_entry("e1"), _entry("e2", owner="owner-b"))

    page = ledger.query("owner-a")

    assert [entry.id for entry in page.entries] == ["e1"]


def test_search_matches_query_or_video_case_insensitively() -> None:
    ledger = _ledger(
        _entry("e1", query="Show the CAR parking", video="lot.mp4"),
        _entry("e2", query="people in a group", video="Office_Car_Meeting.mp4"),
        _entry("e3", query="door opens", video="cam1.mp4"),
    )

    page = ledger.query("owner-a", HistoryQuery(search_text="car", sort_direction="asc"))

    assert sorted(entry.id for entry in page.entries) == ["e1", "e2"]
    assert page.total_count == 2
    assert page.total_pages == 1


def test_ties_on_sort_field_break_by_id() -> None:
    ledger = _ledger(
        _entry("c", query="same"),
        _entry("a", query="same"),
        _entry("b", query="same"),
    )

    asc = ledger.query("owner-a", HistoryQuery(sort_field="query_text", sort_direction="asc"))
    desc = ledger.query("owner-a", HistoryQuery(sort_field="query_text", sort_direction="desc"))

    assert [entry.id for entry in asc.entries] == ["a", "b", "c"]
    assert [entry.id for entry in desc.entries] == ["a", "b", "c"]


def test_sort_by_query_text_ascending() -> None:
    ledger = _ledger(_entry("1", query="zebra"), _entry("2", query="Apple"), _entry("3", query="mango"))

    page = ledger.query("owner-a", HistoryQuery(sort_field="query_text", sort_direction="asc"))

    assert [entry.query_text for entry in page.entries] == ["Apple", "mango", "zebra"]


def test_sort_by_best_confidence_puts_empty_results_last_when_desc() -> None:
    ledger = _ledger(
        _entry("low", segments=(Segment(0, 1, 0.2),)),
        _entry("none", segments=()),
        _entry("high", segments=(Segment(0, 1, 0.3), Segment(4, 6, 0.95))),
    )

    page = ledger.query("owner-a", HistoryQuery(sort_field="confidence", sort_direction="desc"))

    assert [entry.id for entry in page.entries] == ["high", "low", "none"]


def test_pagination_is_stable_and_past_end_is_empty() -> None:
    ledger = _ledger(*[_entry(f"e{idx}", minutes=idx % 3) for idx in range(7)])
    params = HistoryQuery(sort_field="created_at", sort_direction="desc", page=2, page_size=3)

    first = ledger.query("owner-a", params)
    second = ledger.query("owner-a", params)

    assert first == second
    assert first.total_pages == 3
    assert len(first.entries) == 3
    assert ledger.query("owner-a", HistoryQuery(page=9, page_size=3)).entries == ()


def test_empty_history_has_zero_pages() -> None:
    page = _ledger().query("owner-a")

    assert page.entries == ()
    assert page.total_pages == 0


@pytest.mark.parametrize(
    "kwargs",
    [{"page": 0}, {"page_size": 0}, {"sort_field": "owner_id"}, {"sort_direction": "up"}],
)
def test_invalid_query_parameters_are_rejected(kwargs: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        HistoryQuery(**kwargs)


def test_best_of_returns_highest_confidence_or_none() -> None:
    entry = _entry("e1", segments=(Segment(10, 12, 0.4), Segment(3, 5, 0.9), Segment(1, 5, 0.9)))

    assert best_of(entry) == Segment(1, 5, 0.9)
    assert best_of(_entry("e2", segments=())) is None


def test_get_looks_up_entry_by_id() -> None:
    ledger = _ledger(_entry("e1"), _entry("e2"))

    assert ledger.get("owner-a", "e2").id == "e2"
    assert ledger.get("owner-b", "e2") is None


def test_jsonl_store_persists_entries_across_instances(tmp_path: Path) -> None:
    entry = HistoryEntry.create(
        owner_id="user@example.com",
        query_text="when does the car park?",
        video_label="parking_lot.mp4",
        aux_document_label="notes.pdf",
        results=ResultSet.ranked([Segment(45.32, 58.17, 0.8723), Segment(1, 3, 0.2)]),
    )
    HistoryLedger(JsonlHistoryStore(tmp_path)).append(entry)

    reloaded = HistoryLedger(JsonlHistoryStore(tmp_path)).query("user@example.com")

    assert reloaded.entries == (entry,)
    assert list(tmp_path.glob("history_*.jsonl"))


def test_jsonl_store_keeps_owners_in_separate_files(tmp_path: Path) -> None:
    store = JsonlHistoryStore(tmp_path)

    assert store.owner_path("a") != store.owner_path("b")
    assert store.owner_path("../../etc/passwd").parent == tmp_path


def test_append_failure_surfaces_storage_unavailable() -> None:
    class _BrokenStore(InMemoryHistoryStore):
        def append(self, entry: HistoryEntry) -> None:
            raise OSError("disk full")

    with pytest.raises(StorageUnavailable, match="disk full"):
        HistoryLedger(_BrokenStore()).append(_entry("e1"))


def test_corrupt_history_file_surfaces_storage_unavailable(tmp_path: Path) -> None:
    store = JsonlHistoryStore(tmp_path)
    path = store.owner_path("owner-a")
    path.write_text('{"id": "broken"\n', encoding="utf-8")

    with pytest.raises(StorageUnavailable, match="Corrupt history record"):
        HistoryLedger(store).query("owner-a")
