from __future__ import annotations

import hashlib
import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from momentseek.models import HistoryEntry, ResultSet, Segment


class HistoryStore(Protocol):
    """Keyed append plus per-owner read of history records."""

    def append(self, entry: HistoryEntry) -> None: ...

    def list_for_owner(self, owner_id: str) -> list[HistoryEntry]: ...


class InMemoryHistoryStore:
    """Process-local store, used for tests and one-shot sessions."""

    def __init__(self) -> None:
        self._entries: dict[str, list[HistoryEntry]] = {}

    def append(self, entry: HistoryEntry) -> None:
        self._entries.setdefault(entry.owner_id, []).append(entry)

    def list_for_owner(self, owner_id: str) -> list[HistoryEntry]:
        return list(self._entries.get(owner_id, []))


class JsonlHistoryStore:
    """
    Append-only JSON-lines store, one file per owner under `root`.

    Owner tokens are hashed into the filename so arbitrary identifiers never
    reach the filesystem as path components.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).expanduser()

    def owner_path(self, owner_id: str) -> Path:
        digest = hashlib.sha256(owner_id.encode("utf-8")).hexdigest()[:24]
        return self.root / f"history_{digest}.jsonl"

    def append(self, entry: HistoryEntry) -> None:
        path = self.owner_path(entry.owner_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(entry_to_dict(entry), ensure_ascii=False, sort_keys=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
            handle.flush()
            os.fsync(handle.fileno())

    def list_for_owner(self, owner_id: str) -> list[HistoryEntry]:
        path = self.owner_path(owner_id)
        if not path.exists():
            return []

        entries: list[HistoryEntry] = []
        with path.open("r", encoding="utf-8") as handle:
            for line_number, line in enumerate(handle, start=1):
                if not line.strip():
                    continue
                try:
                    entries.append(entry_from_dict(json.loads(line)))
                except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
                    raise ValueError(f"Corrupt history record at {path}:{line_number} ({exc}).") from exc
        return entries


def entry_to_dict(entry: HistoryEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "created_at": entry.created_at.isoformat(),
        "owner_id": entry.owner_id,
        "query_text": entry.query_text,
        "video_label": entry.video_label,
        "aux_document_label": entry.aux_document_label,
        "results": [
            [segment.start_time, segment.end_time, segment.confidence]
            for segment in entry.results
        ],
    }


def entry_from_dict(row: dict[str, Any]) -> HistoryEntry:
    if not isinstance(row, dict):
        raise TypeError("History record must be an object.")

    segments = [
        Segment(start_time=float(start), end_time=float(end), confidence=float(confidence))
        for start, end, confidence in row.get("results", [])
    ]
    aux_label = row.get("aux_document_label")
    return HistoryEntry(
        id=str(row["id"]),
        created_at=datetime.fromisoformat(str(row["created_at"])),
        owner_id=str(row["owner_id"]),
        query_text=str(row["query_text"]),
        video_label=str(row["video_label"]),
        results=ResultSet.ranked(segments),
        aux_document_label=str(aux_label) if aux_label is not None else None,
    )
