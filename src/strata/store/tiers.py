"""Tier directories: path classification, filename filter and priority policy."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Literal

from strata.store.base import (
    PERSISTENT,
    VOLATILE,
    PathClassificationError,
    Tier,
    TierKind,
    read_only,
)

PROFILE_SUFFIX = ".profile"

_IGNORED_SUFFIXES = (
    "~",
    ".bak",
    ".orig",
    ".rej",
    ".swp",
    ".tmp",
    ".loaded",
    ".rpmnew",
    ".rpmsave",
    ".pem",
    ".der",
    ".key",
)
_IGNORED_INFIXES = (".dpkg-",)

ReadOnlyOrder = Literal["earlier-first", "later-first"]


def ignore_filename(filename: str, require_suffix: bool = True) -> bool:
    """Return True if *filename* must not be read as a profile file."""
    if not filename or filename.startswith(".") or "/" in filename:
        return True
    if filename.endswith(_IGNORED_SUFFIXES):
        return True
    if any(infix in filename for infix in _IGNORED_INFIXES):
        return True
    if require_suffix:
        return not (filename.endswith(PROFILE_SUFFIX) and len(filename) > len(PROFILE_SUFFIX))
    return False


def ignore_filename_for(tier: Tier, filename: str) -> bool:
    # Persistent files predate the suffix requirement.
    return ignore_filename(filename, require_suffix=tier.kind is not TierKind.PERSISTENT)


@dataclass(frozen=True)
class TierPolicy:
    """Assigns priority ranks to tiers. Lower rank is more authoritative.

    ``earlier-first`` ranks read-only directories in configuration order
    (2, 3, ...). ``later-first`` lets later read-only directories shadow
    earlier ones.
    """

    readonly_count: int = 0
    readonly_order: ReadOnlyOrder = "earlier-first"

    def rank(self, tier: Tier) -> int:
        if tier.kind is TierKind.VOLATILE:
            return 0
        if tier.kind is TierKind.PERSISTENT:
            return 1
        if tier.kind is TierKind.READ_ONLY:
            if not 0 <= tier.index < self.readonly_count:
                raise ValueError(f"unknown read-only tier {tier}")
            if self.readonly_order == "later-first":
                return 2 + (self.readonly_count - 1 - tier.index)
            return 2 + tier.index
        raise ValueError(f"tier {tier} has no priority rank")


@dataclass
class TierLayout:
    """The configured tier directories."""

    volatile_dir: Path | None = None
    persistent_dir: Path | None = None
    readonly_dirs: list[Path] = field(default_factory=list)
    readonly_order: ReadOnlyOrder = "earlier-first"

    def __post_init__(self) -> None:
        self.volatile_dir = _normalize(self.volatile_dir)
        self.persistent_dir = _normalize(self.persistent_dir)
        if self.persistent_dir == self.volatile_dir:
            self.persistent_dir = None
        taken = {self.volatile_dir, self.persistent_dir}
        readonly: list[Path] = []
        for d in map(_normalize, self.readonly_dirs):
            if d is not None and d not in taken:
                readonly.append(d)
                taken.add(d)
        self.readonly_dirs = readonly
        self.policy = TierPolicy(len(self.readonly_dirs), self.readonly_order)

    def directories(self) -> Iterator[tuple[Tier, Path]]:
        """Yield (tier, directory) in scan order: volatile, persistent, read-only."""
        if self.volatile_dir is not None:
            yield VOLATILE, self.volatile_dir
        if self.persistent_dir is not None:
            yield PERSISTENT, self.persistent_dir
        for i, d in enumerate(self.readonly_dirs):
            yield read_only(i), d

    def directory_of(self, tier: Tier) -> Path | None:
        if tier.kind is TierKind.VOLATILE:
            return self.volatile_dir
        if tier.kind is TierKind.PERSISTENT:
            return self.persistent_dir
        if tier.kind is TierKind.READ_ONLY and 0 <= tier.index < len(self.readonly_dirs):
            return self.readonly_dirs[tier.index]
        return None

    def hint_directories(self) -> Iterator[tuple[Tier, Path]]:
        """Directories whose hint markers are honoured."""
        for tier, d in self.directories():
            if tier.writable:
                yield tier, d

    def writable_dir(self) -> tuple[Tier, Path] | None:
        """Where new files go: persistent if configured, else volatile."""
        if self.persistent_dir is not None:
            return PERSISTENT, self.persistent_dir
        if self.volatile_dir is not None:
            return VOLATILE, self.volatile_dir
        return None

    def rank(self, tier: Tier) -> int:
        return self.policy.rank(tier)

    def locate(self, path: Path) -> tuple[Tier, Path, str]:
        """Return (tier, directory, filename) for a direct child of a tier directory.

        Applies no filename filter.
        """
        if not path.is_absolute():
            raise PathClassificationError(f"{path}: not an absolute path")
        path = _normalize(path)
        for tier, d in self.directories():
            if path.parent == d:
                return tier, d, path.name
        raise PathClassificationError(f"{path}: not inside a profile directory")

    def classify(self, path: Path) -> tuple[Tier, str]:
        """Return (tier, filename) for a profile file, or raise PathClassificationError."""
        tier, _, filename = self.locate(path)
        if ignore_filename_for(tier, filename):
            raise PathClassificationError(f"{path}: not a valid profile filename")
        return tier, filename


def _normalize(path: Path | str | None) -> Path | None:
    if path is None:
        return None
    return Path(os.path.normpath(os.path.abspath(path)))
