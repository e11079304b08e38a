"""Store protocols and shared types."""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from strata.store.profile import Profile


# ── Errors ────────────────────────────────────────────────────


class StoreError(Exception):
    """Base class for all profile store errors."""


class PathClassificationError(StoreError):
    """Path is not absolute, outside every configured directory, or rejected by name."""


class DecodeError(StoreError):
    """A profile file is malformed or fails validation."""


class DirectoryAccessError(StoreError):
    """A tier directory cannot be listed."""


class HandleMismatchError(StoreError):
    """A handle does not belong to this store or to the expected id."""


class WriteError(StoreError):
    """Writing, renaming or removing a profile or hint file failed."""


class ProfileExistsError(StoreError):
    """A profile with the same id is already exported."""


# ── Tiers ─────────────────────────────────────────────────────


class TierKind(enum.Enum):
    EPHEMERAL = "ephemeral"
    VOLATILE = "volatile"
    PERSISTENT = "persistent"
    READ_ONLY = "read-only"


@dataclass(frozen=True, order=False)
class Tier:
    """An authority level. READ_ONLY tiers are distinguished by configuration position."""

    kind: TierKind
    index: int = 0

    @property
    def writable(self) -> bool:
        return self.kind in (TierKind.VOLATILE, TierKind.PERSISTENT)

    def __str__(self) -> str:
        if self.kind is TierKind.READ_ONLY:
            return f"{self.kind.value}[{self.index}]"
        return self.kind.value


EPHEMERAL = Tier(TierKind.EPHEMERAL)
VOLATILE = Tier(TierKind.VOLATILE)
PERSISTENT = Tier(TierKind.PERSISTENT)


def read_only(index: int) -> Tier:
    return Tier(TierKind.READ_ONLY, index)


class CommitReason(enum.Flag):
    NONE = 0
    USER_ACTION = enum.auto()
    ID_CHANGED = enum.auto()


class FileEventKind(enum.Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


# ── Records ───────────────────────────────────────────────────


@dataclass
class FileObservation:
    """One file's contribution to a record during one scan.

    ``profile`` is only set while the scan that produced it is running.
    """

    tier: Tier
    priority: int
    path: Path
    mtime_ns: int
    dev: int
    ino: int
    profile: Profile | None = None

    def __post_init__(self) -> None:
        assert self.path.is_absolute(), self.path

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def mtime(self) -> tuple[int, int]:
        """Modification time as (seconds, nanoseconds)."""
        return divmod(self.mtime_ns, 1_000_000_000)

    @classmethod
    def from_stat(
        cls,
        tier: Tier,
        priority: int,
        path: Path,
        st: os.stat_result,
        profile: Profile | None = None,
    ) -> FileObservation:
        return cls(
            tier=tier,
            priority=priority,
            path=path,
            mtime_ns=st.st_mtime_ns,
            dev=st.st_dev,
            ino=st.st_ino,
            profile=profile,
        )


class RecordHandle:
    """Opaque token handed to consumers to refer back to a record.

    The back-link is cleared when the record is destroyed or stops exporting
    a profile; a cleared handle is stale and rejected by the store.
    """

    __slots__ = ("_owner", "_record", "id")

    def __init__(self, owner: object, record: Record) -> None:
        self._owner = owner
        self._record: Record | None = record
        self.id = record.id

    @property
    def valid(self) -> bool:
        return self._record is not None

    @property
    def profile(self) -> Profile | None:
        """The profile currently exported for this handle, if any."""
        if self._record is None:
            return None
        return self._record.exported_value

    @property
    def tier(self) -> Tier | None:
        if self._record is None:
            return None
        return self._record.exported_tier

    def record_for(self, owner: object) -> Record | None:
        """The live record behind this handle, if it was issued by *owner*."""
        if owner is not self._owner:
            return None
        return self._record

    def invalidate(self) -> None:
        self._record = None

    def __repr__(self) -> str:
        state = "" if self.valid else ", stale"
        return f"RecordHandle({self.id!r}{state})"


@dataclass(eq=False)
class Record:
    """In-memory state for one profile id."""

    id: str
    exported_value: Profile | None = None
    exported_tier: Tier | None = None
    observations: list[FileObservation] = field(default_factory=list)
    handle: RecordHandle | None = None
    loaded_hint_volatile: str | None = None
    loaded_hint_persistent: str | None = None

    def ensure_handle(self, owner: object) -> RecordHandle | None:
        if self.handle is None and self.exported_value is not None:
            self.handle = RecordHandle(owner, self)
        return self.handle

    def clear_export(self) -> None:
        self.exported_value = None
        self.exported_tier = None
        if self.handle is not None:
            self.handle.invalidate()
            self.handle = None

    def has_hints(self) -> bool:
        return self.loaded_hint_volatile is not None or self.loaded_hint_persistent is not None


# ── Collaborator protocols ────────────────────────────────────


@runtime_checkable
class ProfileCodec(Protocol):
    """Reads and writes single profile files."""

    def decode(self, path: Path, base_dir: Path | None = None) -> tuple[Profile, os.stat_result]:
        """Parse and validate one file. Raises DecodeError."""
        ...

    def encode(
        self,
        profile: Profile,
        directory: Path,
        existing_path: Path | None = None,
        rename: bool = False,
    ) -> tuple[Path, Profile | None]:
        """Write a profile; return the final path and the re-read profile if it differs."""
        ...


@runtime_checkable
class HintCodec(Protocol):
    """Reads and writes loaded-hint markers."""

    def parse_name(self, filename: str) -> str | None: ...

    def read(self, directory: Path, profile_id: str) -> str | None: ...

    def write(
        self, directory: Path, profile_id: str, target: Path | None, masked: bool = False
    ) -> Path: ...

    def remove(self, directory: Path, profile_id: str) -> None: ...


@runtime_checkable
class NotificationSink(Protocol):
    """Receives add/modify/remove notifications for exported profiles."""

    def on_removed(self, profile_id: str, handle: RecordHandle | None) -> None: ...

    def on_changed(self, profile_id: str, handle: RecordHandle, profile: Profile) -> None: ...
