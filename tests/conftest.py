"""Shared fixtures for the profile store tests."""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from helpers import RecordingSink
from strata.store.plugin import ProfileStore
from strata.store.tiers import TierLayout


@pytest.fixture
def dirs(tmp_path: Path) -> SimpleNamespace:
    d = SimpleNamespace(
        run=tmp_path / "run",
        etc=tmp_path / "etc",
        lib=tmp_path / "lib",
        lib2=tmp_path / "lib2",
    )
    for path in vars(d).values():
        path.mkdir()
    return d


@pytest.fixture
def layout(dirs: SimpleNamespace) -> TierLayout:
    return TierLayout(
        volatile_dir=dirs.run,
        persistent_dir=dirs.etc,
        readonly_dirs=[dirs.lib, dirs.lib2],
    )


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def store(layout: TierLayout, sink: RecordingSink) -> ProfileStore:
    s = ProfileStore(layout)
    s.add_sink(sink)
    return s
