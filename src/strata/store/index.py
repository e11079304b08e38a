"""In-memory record index: id -> Record plus path -> Record."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

from strata.store.base import Record


class RecordIndex:
    """Records keyed by id, in insertion order, with a reverse index by file path."""

    def __init__(self) -> None:
        self._records: dict[str, Record] = {}
        self._by_path: dict[Path, Record] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Record]:
        return iter(self._records.values())

    def __contains__(self, profile_id: str) -> bool:
        return profile_id in self._records

    def get(self, profile_id: str) -> Record | None:
        return self._records.get(profile_id)

    def add(self, profile_id: str) -> Record:
        """Return the record for *profile_id*, creating it if needed."""
        record = self._records.get(profile_id)
        if record is None:
            record = Record(profile_id)
            self._records[profile_id] = record
        return record

    def remove(self, record: Record) -> None:
        """Drop a record and its path entries; its handle goes stale."""
        assert self._records.get(record.id) is record
        del self._records[record.id]
        self.unlink_paths(record)
        record.clear_export()

    def snapshot(self) -> list[Record]:
        return list(self._records.values())

    # ── Path index ────────────────────────────────────────────

    def owner_of(self, path: Path) -> Record | None:
        return self._by_path.get(path)

    def link_paths(self, record: Record) -> None:
        for obs in record.observations:
            self._by_path[obs.path] = record

    def unlink_paths(self, record: Record) -> None:
        for path in [p for p, r in self._by_path.items() if r is record]:
            del self._by_path[path]

    def clear_paths(self) -> None:
        self._by_path.clear()

    def paths(self) -> dict[Path, Record]:
        return dict(self._by_path)
