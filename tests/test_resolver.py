"""Tests for the per-record merge resolver."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from helpers import ID_X, write_profile
from strata.store.base import EPHEMERAL, PERSISTENT, VOLATILE, FileObservation, Record, read_only
from strata.store.codec import HINT_MASKED, FrontmatterProfileCodec
from strata.store.index import RecordIndex
from strata.store.profile import Profile
from strata.store.resolver import (
    EventBatch,
    observation_sort_key,
    prioritize_loaded,
    resolve,
    winning_path,
)

OWNER = object()


def _observe(path: Path, tier, priority: int) -> FileObservation:
    profile, st = FrontmatterProfileCodec().decode(path)
    return FileObservation.from_stat(tier, priority, path, st, profile)


@pytest.fixture
def index() -> RecordIndex:
    return RecordIndex()


class TestSortOrder:
    def test_priority_first(self, tmp_path: Path):
        a = _observe(write_profile(tmp_path / "a.profile", ID_X, "A", mtime=100), read_only(0), 2)
        b = _observe(write_profile(tmp_path / "b.profile", ID_X, "B", mtime=1), PERSISTENT, 1)
        assert sorted([a, b], key=observation_sort_key) == [b, a]

    def test_newer_mtime_wins_within_priority(self, tmp_path: Path):
        old = _observe(write_profile(tmp_path / "a.profile", ID_X, "A", mtime=1), PERSISTENT, 1)
        new = _observe(write_profile(tmp_path / "b.profile", ID_X, "B", mtime=2), PERSISTENT, 1)
        assert sorted([old, new], key=observation_sort_key) == [new, old]

    def test_filename_breaks_ties(self, tmp_path: Path):
        b = _observe(write_profile(tmp_path / "b.profile", ID_X, "B", mtime=5), PERSISTENT, 1)
        a = _observe(write_profile(tmp_path / "a.profile", ID_X, "A", mtime=5), PERSISTENT, 1)
        assert sorted([b, a], key=observation_sort_key) == [a, b]


class TestPrioritizeLoaded:
    def test_moves_match_to_front(self, tmp_path: Path):
        a = _observe(write_profile(tmp_path / "a.profile", ID_X, "A"), PERSISTENT, 1)
        b = _observe(write_profile(tmp_path / "b.profile", ID_X, "B"), PERSISTENT, 1)
        observations = [a, b]
        assert prioritize_loaded(observations, str(tmp_path / "b.profile"))
        assert observations == [b, a]

    def test_matches_by_inode(self, tmp_path: Path):
        a = _observe(write_profile(tmp_path / "a.profile", ID_X, "A"), PERSISTENT, 1)
        b = _observe(write_profile(tmp_path / "b.profile", ID_X, "B"), PERSISTENT, 1)
        os.symlink(tmp_path / "b.profile", tmp_path / "alias")
        observations = [a, b]
        assert prioritize_loaded(observations, str(tmp_path / "alias"))
        assert observations[0] is b

    def test_missing_target(self, tmp_path: Path):
        a = _observe(write_profile(tmp_path / "a.profile", ID_X, "A"), PERSISTENT, 1)
        assert not prioritize_loaded([a], str(tmp_path / "gone.profile"))

    def test_relative_target(self, tmp_path: Path):
        a = _observe(write_profile(tmp_path / "a.profile", ID_X, "A"), PERSISTENT, 1)
        assert not prioritize_loaded([a], "a.profile")


class TestResolve:
    def test_new_record_exports_best(self, index: RecordIndex, tmp_path: Path):
        record = index.add(ID_X)
        record.observations = [
            _observe(write_profile(tmp_path / "a.profile", ID_X, "Low"), read_only(0), 2),
            _observe(write_profile(tmp_path / "b.profile", ID_X, "High"), VOLATILE, 0),
        ]
        batch = EventBatch()
        resolve(record, index, OWNER, batch)

        assert record.exported_value.name == "High"
        assert record.exported_tier == VOLATILE
        assert batch.changed == [ID_X]
        assert record.handle is not None and record.handle.valid
        assert all(o.profile is None for o in record.observations)
        assert index.owner_of(tmp_path / "a.profile") is record
        assert winning_path(record) == tmp_path / "b.profile"

    def test_unchanged_value_queues_nothing(self, index: RecordIndex, tmp_path: Path):
        path = write_profile(tmp_path / "a.profile", ID_X, "Same")
        record = index.add(ID_X)
        record.exported_value = Profile(id=ID_X, name="Same")
        record.exported_tier = PERSISTENT
        record.observations = [_observe(path, VOLATILE, 0)]
        batch = EventBatch()
        resolve(record, index, OWNER, batch)

        assert not batch
        assert record.exported_tier == VOLATILE

    def test_hint_overrides_priority(self, index: RecordIndex, tmp_path: Path):
        low = write_profile(tmp_path / "low.profile", ID_X, "Low")
        record = index.add(ID_X)
        record.observations = [
            _observe(write_profile(tmp_path / "high.profile", ID_X, "High"), VOLATILE, 0),
            _observe(low, read_only(0), 2),
        ]
        record.loaded_hint_persistent = str(low)
        resolve(record, index, OWNER, EventBatch())

        assert record.exported_value.name == "Low"
        assert record.exported_tier == read_only(0)
        assert not record.has_hints()

    def test_volatile_hint_shadows_persistent_hint(self, index: RecordIndex, tmp_path: Path):
        a = write_profile(tmp_path / "a.profile", ID_X, "A")
        b = write_profile(tmp_path / "b.profile", ID_X, "B")
        record = index.add(ID_X)
        record.observations = [_observe(a, PERSISTENT, 1), _observe(b, PERSISTENT, 1)]
        record.loaded_hint_volatile = str(b)
        record.loaded_hint_persistent = str(a)
        resolve(record, index, OWNER, EventBatch())
        assert record.exported_value.name == "B"

    def test_invalid_hint_falls_back_to_order(self, index: RecordIndex, tmp_path: Path):
        record = index.add(ID_X)
        record.observations = [
            _observe(write_profile(tmp_path / "a.profile", ID_X, "A"), PERSISTENT, 1)
        ]
        record.loaded_hint_volatile = str(tmp_path / "missing.profile")
        resolve(record, index, OWNER, EventBatch())
        assert record.exported_value.name == "A"

    def test_mask_withdraws_export(self, index: RecordIndex, tmp_path: Path):
        record = index.add(ID_X)
        record.exported_value = Profile(id=ID_X, name="A")
        record.exported_tier = read_only(0)
        handle = record.ensure_handle(OWNER)
        record.observations = [
            _observe(write_profile(tmp_path / "a.profile", ID_X, "A"), read_only(0), 2)
        ]
        record.loaded_hint_volatile = HINT_MASKED
        batch = EventBatch()
        resolve(record, index, OWNER, batch)

        assert batch.removed == [(ID_X, handle)]
        assert record.exported_value is None
        assert record.handle is None
        assert not handle.valid
        assert ID_X in index
        assert index.owner_of(tmp_path / "a.profile") is record

    def test_no_observations_removes_record(self, index: RecordIndex):
        record = index.add(ID_X)
        record.exported_value = Profile(id=ID_X, name="A")
        record.exported_tier = PERSISTENT
        handle = record.ensure_handle(OWNER)
        batch = EventBatch()
        resolve(record, index, OWNER, batch)

        assert batch.removed == [(ID_X, handle)]
        assert ID_X not in index
        assert not handle.valid

    def test_mask_without_files_removes_quietly(self, index: RecordIndex):
        record = index.add(ID_X)
        record.loaded_hint_persistent = HINT_MASKED
        batch = EventBatch()
        resolve(record, index, OWNER, batch)
        assert not batch
        assert ID_X not in index

    def test_ephemeral_is_kept(self, index: RecordIndex, tmp_path: Path):
        record = index.add(ID_X)
        record.exported_value = Profile(id=ID_X, name="Memory")
        record.exported_tier = EPHEMERAL
        record.observations = [
            _observe(write_profile(tmp_path / "a.profile", ID_X, "Disk"), VOLATILE, 0)
        ]
        record.loaded_hint_volatile = HINT_MASKED
        batch = EventBatch()
        resolve(record, index, OWNER, batch)

        assert not batch
        assert record.exported_value.name == "Memory"
        assert record.exported_tier == EPHEMERAL
        assert winning_path(record) is None
        assert index.owner_of(tmp_path / "a.profile") is record

    def test_ephemeral_without_files_survives(self, index: RecordIndex):
        record = index.add(ID_X)
        record.exported_value = Profile(id=ID_X, name="Memory")
        record.exported_tier = EPHEMERAL
        resolve(record, index, OWNER, EventBatch())
        assert index.get(ID_X) is record

    def test_secret_only_difference_is_not_a_change(self, index: RecordIndex, tmp_path: Path):
        path = write_profile(
            tmp_path / "a.profile", ID_X, "A", secrets={"token": ("disk", "agent-owned")}
        )
        record = index.add(ID_X)
        record.exported_value = Profile(id=ID_X, name="A")
        record.exported_tier = PERSISTENT
        record.observations = [_observe(path, PERSISTENT, 1)]
        batch = EventBatch()
        resolve(record, index, OWNER, batch)
        assert not batch
        assert record.exported_value.secrets == {}


def test_record_without_owner_match_has_no_handle_access():
    record = Record(ID_X, exported_value=Profile(id=ID_X, name="A"), exported_tier=PERSISTENT)
    handle = record.ensure_handle(OWNER)
    assert handle.record_for(OWNER) is record
    assert handle.record_for(object()) is None
