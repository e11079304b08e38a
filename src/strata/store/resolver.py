"""Pick the winning file for a record after a scan.

Observations are ordered by priority rank (smaller first), then newer
modification time, then filename. A loaded hint pins a specific file to the
front regardless of that order; a masking hint hides the id entirely.
Profiles exported from memory (the ephemeral tier) are never replaced by a
scan.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from strata.store.base import EPHEMERAL, FileObservation, Record, RecordHandle
from strata.store.codec import HINT_MASKED
from strata.store.index import RecordIndex

logger = logging.getLogger(__name__)


@dataclass
class EventBatch:
    """Notifications queued while resolving, emitted once the batch is done."""

    removed: list[tuple[str, RecordHandle | None]] = field(default_factory=list)
    changed: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.removed or self.changed)


def observation_sort_key(obs: FileObservation) -> tuple[int, int, str]:
    return (obs.priority, -obs.mtime_ns, obs.filename)


def prioritize_loaded(observations: list[FileObservation], loaded_path: str) -> bool:
    """Move the observation for *loaded_path* to the front, matching by inode.

    Returns False if the path cannot be stat'ed or matches no observation.
    """
    if not os.path.isabs(loaded_path):
        return False
    try:
        st = os.stat(loaded_path)
    except OSError:
        return False
    for i, obs in enumerate(observations):
        if obs.dev == st.st_dev and obs.ino == st.st_ino:
            if i:
                observations.insert(0, observations.pop(i))
            return True
    return False


def _take_hint(record: Record) -> tuple[str | None, str]:
    """Consume the transient hint fields; the volatile hint shadows the persistent one."""
    volatile, persistent = record.loaded_hint_volatile, record.loaded_hint_persistent
    record.loaded_hint_volatile = record.loaded_hint_persistent = None
    if volatile is not None:
        if persistent is not None:
            logger.debug(
                "load: persistent hint for %s (%s) shadowed by volatile hint (%s)",
                record.id,
                persistent,
                volatile,
            )
        return volatile, "volatile"
    if persistent is not None:
        return persistent, "persistent"
    return None, ""


def resolve(record: Record, index: RecordIndex, owner: object, batch: EventBatch) -> None:
    """Resolve one record in place, queueing notifications into *batch*.

    The record may be removed from *index*.
    """
    loaded_path, hint_tier = _take_hint(record)
    masked = False

    record.observations.sort(key=observation_sort_key)

    if loaded_path is not None:
        if loaded_path == HINT_MASKED:
            masked = True
            loaded_path = None
        elif not prioritize_loaded(record.observations, loaded_path):
            logger.debug(
                "load: %s hint for %s: ignore invalid target %s", hint_tier, record.id, loaded_path
            )
            loaded_path = None

    if record.exported_tier == EPHEMERAL:
        if masked:
            logger.debug(
                "load: masking of %s via %s hint ignored due to in-memory profile",
                record.id,
                hint_tier,
            )
        for obs in record.observations:
            logger.debug('load: "%s": profile %s shadowed by in-memory profile', obs.path, record.id)
        _finish(record, index, owner)
        return

    best = record.observations[0] if record.observations else None
    if best is None or masked:
        if record.exported_value is not None:
            batch.removed.append((record.id, record.handle))
        if not record.observations:
            if masked:
                logger.debug("load: %s masked but there are no profiles with that id", record.id)
            index.remove(record)
            return
        for obs in record.observations:
            logger.debug('load: "%s": profile %s masked by %s hint', obs.path, record.id, hint_tier)
        record.clear_export()
        _finish(record, index, owner)
        return

    for obs in record.observations[1:]:
        logger.debug('load: "%s": profile %s shadowed by "%s"', obs.path, record.id, best.path)

    record.exported_tier = best.tier
    modified = not best.profile.same_as(record.exported_value)
    logger.debug(
        'load: "%s": profile %s (%s) loaded (%s)%s',
        best.path,
        record.id,
        best.profile.name,
        ("updated" if record.exported_value is not None else "added") if modified else "unchanged",
        f" (hinted by {hint_tier} hint)" if loaded_path else "",
    )
    if modified:
        record.exported_value = best.profile
        batch.changed.append(record.id)

    _finish(record, index, owner)


def _finish(record: Record, index: RecordIndex, owner: object) -> None:
    record.ensure_handle(owner)
    for obs in record.observations:
        obs.profile = None
    index.link_paths(record)


def winning_path(record: Record) -> Path | None:
    """Path of the file the exported profile came from, if it came from a file."""
    if record.exported_value is None or record.exported_tier == EPHEMERAL:
        return None
    if record.observations and record.observations[0].tier == record.exported_tier:
        return record.observations[0].path
    return None
