"""Walk one tier directory and collect file observations and hints."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from strata.store.base import (
    DecodeError,
    DirectoryAccessError,
    FileObservation,
    HintCodec,
    ProfileCodec,
    Tier,
    TierKind,
)
from strata.store.index import RecordIndex
from strata.store.tiers import ignore_filename_for

logger = logging.getLogger(__name__)


def list_directory(directory: Path) -> list[str]:
    """Return entry names of *directory*. Raises DirectoryAccessError."""
    try:
        return os.listdir(directory)
    except OSError as e:
        raise DirectoryAccessError(f"{directory}: {e}") from e


def read_observation(
    codec: ProfileCodec,
    tier: Tier,
    priority: int,
    path: Path,
    base_dir: Path | None,
) -> FileObservation:
    """Decode one file into an observation. Raises DecodeError."""
    profile, st = codec.decode(path, base_dir)
    return FileObservation.from_stat(tier, priority, path, st, profile)


def load_dir(
    index: RecordIndex,
    tier: Tier,
    priority: int,
    directory: Path | None,
    codec: ProfileCodec,
    hints: HintCodec,
    base_dir: Path | None = None,
) -> int:
    """Collect every profile file and hint marker in *directory* into *index*.

    Returns the number of observations added. A directory that cannot be
    listed is skipped.
    """
    if directory is None:
        return 0
    try:
        names = list_directory(directory)
    except DirectoryAccessError as e:
        logger.debug("load: skip directory: %s", e)
        return 0

    added = 0
    for filename in names:
        if ignore_filename_for(tier, filename):
            _collect_hint(index, tier, directory, filename, hints)
            continue

        path = directory / filename
        if not path.is_file():
            logger.debug('load: "%s": skip non-regular file', path)
            continue
        try:
            obs = read_observation(codec, tier, priority, path, base_dir)
        except DecodeError as e:
            logger.warning('load: "%s": failed to load profile: %s', path, e)
            continue

        record = index.add(obs.profile.id)
        record.observations.append(obs)
        added += 1
    return added


def _collect_hint(
    index: RecordIndex, tier: Tier, directory: Path, filename: str, hints: HintCodec
) -> None:
    profile_id = hints.parse_name(filename)
    target = hints.read(directory, profile_id) if profile_id else None
    if target is None:
        logger.debug('load: "%s/%s": skip file due to filename pattern', directory, filename)
        return
    if not tier.writable:
        logger.debug('load: "%s/%s": skip hint in read-only directory', directory, filename)
        return

    record = index.add(profile_id)
    if tier.kind is TierKind.VOLATILE:
        record.loaded_hint_volatile = target
    else:
        record.loaded_hint_persistent = target
