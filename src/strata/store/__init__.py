"""Layered profile store.

Layout:
    <volatile_dir>/                   # runtime profiles and loaded hints
    ├── office.profile
    └── <id>.loaded -> /path/of/explicitly/loaded.profile
    <persistent_dir>/                 # writable profiles (suffix optional)
    <readonly_dir>/...                # zero or more read-only directories

A hint pointing at /dev/null masks the id.
"""

from strata.store.base import (
    CommitReason,
    DecodeError,
    DirectoryAccessError,
    FileEventKind,
    HandleMismatchError,
    PathClassificationError,
    ProfileExistsError,
    RecordHandle,
    StoreError,
    Tier,
    TierKind,
    WriteError,
)
from strata.store.plugin import ProfileStore
from strata.store.profile import Profile, Secret
from strata.store.tiers import TierLayout, TierPolicy

__all__ = [
    "CommitReason",
    "DecodeError",
    "DirectoryAccessError",
    "FileEventKind",
    "HandleMismatchError",
    "PathClassificationError",
    "Profile",
    "ProfileExistsError",
    "ProfileStore",
    "RecordHandle",
    "Secret",
    "StoreError",
    "Tier",
    "TierKind",
    "TierLayout",
    "TierPolicy",
    "WriteError",
]
