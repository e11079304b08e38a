"""Profile store — reconcile profiles spread over tiered directories.

The same profile id may be described by files in the volatile, persistent and
read-only directories. A full reload scans every directory and lets the
resolver decide which file wins per id; single-file loads and file events
update just the ids they touch, ending in the same state a full reload would
produce.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Iterator

from strata.store.base import (
    EPHEMERAL,
    CommitReason,
    DecodeError,
    FileEventKind,
    HandleMismatchError,
    HintCodec,
    NotificationSink,
    PathClassificationError,
    ProfileCodec,
    ProfileExistsError,
    Record,
    RecordHandle,
    TierKind,
    WriteError,
)
from strata.store.codec import FrontmatterProfileCodec, SymlinkHintCodec
from strata.store.collector import load_dir, read_observation
from strata.store.index import RecordIndex
from strata.store.profile import Profile
from strata.store.resolver import EventBatch, resolve, winning_path
from strata.store.tiers import TierLayout, ignore_filename_for

if TYPE_CHECKING:
    from strata.config import StoreConfig

logger = logging.getLogger(__name__)


class ProfileStore:
    """Layered profile store with change notifications."""

    def __init__(
        self,
        layout: TierLayout,
        codec: ProfileCodec | None = None,
        hints: HintCodec | None = None,
    ) -> None:
        self.layout = layout
        self._codec = codec or FrontmatterProfileCodec()
        self._hints = hints or SymlinkHintCodec()
        self._index = RecordIndex()
        self._sinks: list[NotificationSink] = []
        self.initialized = False

    @classmethod
    def from_config(cls, config: StoreConfig) -> ProfileStore:
        return cls(
            TierLayout(
                volatile_dir=config.volatile_dir,
                persistent_dir=config.persistent_dir,
                readonly_dirs=list(config.readonly_dirs),
                readonly_order=config.readonly_order,
            )
        )

    @property
    def base_dir(self) -> Path | None:
        """Directory used to synthesize ids for files that carry none."""
        return self.layout.persistent_dir or self.layout.volatile_dir

    # ── Notifications ─────────────────────────────────────────

    def add_sink(self, sink: NotificationSink) -> None:
        self._sinks.append(sink)

    def _emit(self, batch: EventBatch) -> None:
        for profile_id, handle in batch.removed:
            logger.info("Profile removed: %s", profile_id)
            for sink in self._sinks:
                sink.on_removed(profile_id, handle)
        for profile_id in batch.changed:
            record = self._index.get(profile_id)
            if record is None or record.exported_value is None:
                continue
            self._notify_changed(record)

    def _notify_changed(self, record: Record) -> None:
        handle = record.ensure_handle(self)
        logger.info(
            "Profile changed: %s (%s) from %s", record.id, record.exported_value.name, record.exported_tier
        )
        for sink in self._sinks:
            sink.on_changed(record.id, handle, record.exported_value)

    # ── Reads ─────────────────────────────────────────────────

    def get(self, profile_id: str) -> RecordHandle | None:
        record = self._index.get(profile_id)
        if record is None or record.exported_value is None:
            return None
        return record.ensure_handle(self)

    def handles(self) -> Iterator[RecordHandle]:
        """Handles of all exported profiles, in index order."""
        for record in self._index.snapshot():
            if record.exported_value is not None:
                yield record.ensure_handle(self)

    def path_of(self, handle: RecordHandle) -> Path | None:
        """The file the exported profile was loaded from, None for in-memory profiles."""
        return winning_path(self._record_for(handle))

    def _record_for(self, handle: RecordHandle) -> Record:
        record = handle.record_for(self) if isinstance(handle, RecordHandle) else None
        if record is None or self._index.get(record.id) is not record:
            raise HandleMismatchError(f"handle {handle!r} does not belong to this store")
        return record

    # ── Full reload ───────────────────────────────────────────

    def reload_all(self) -> None:
        """Rescan every tier directory and emit the resulting notifications."""
        self.initialized = True

        self._index.clear_paths()
        for record in self._index:
            record.observations.clear()
            record.loaded_hint_volatile = record.loaded_hint_persistent = None

        for tier, directory in self.layout.directories():
            load_dir(
                self._index,
                tier,
                self.layout.rank(tier),
                directory,
                self._codec,
                self._hints,
                self.base_dir,
            )

        batch = EventBatch()
        for record in self._index.snapshot():
            resolve(record, self._index, self, batch)
        self._emit(batch)

    # ── Single file ───────────────────────────────────────────

    def load_one(self, path: Path | str) -> RecordHandle:
        """Load exactly one file and make it the winner for its id.

        Raises PathClassificationError or DecodeError.
        """
        path = Path(path)
        tier, filename = self.layout.classify(path)
        directory = self.layout.directory_of(tier)
        path = directory / filename

        try:
            obs = read_observation(self._codec, tier, self.layout.rank(tier), path, self.base_dir)
        except DecodeError as e:
            logger.debug('load: "%s": failed to load profile: %s', path, e)
            raise

        profile = obs.profile
        record = self._index.add(profile.id)
        modified = not profile.same_as(record.exported_value)

        # Unlike a reload, an explicit load replaces an in-memory profile.
        record.exported_tier = tier
        logger.debug(
            'load: "%s": profile %s (%s) loaded (%s)',
            path,
            record.id,
            profile.name,
            ("updated" if record.exported_value is not None else "added") if modified else "unchanged",
        )

        previous_owner = self._index.owner_of(path)
        record.observations = [o for o in record.observations if o.path != path]
        record.observations.insert(0, obs)
        obs.profile = None
        self._index.link_paths(record)

        self._write_loaded_hint(record.id, path)

        if modified:
            record.exported_value = profile
        handle = record.ensure_handle(self)
        if modified:
            self._notify_changed(record)

        if previous_owner is not None and previous_owner is not record:
            self._refresh({previous_owner.id: set()})
        return handle

    def _write_loaded_hint(self, profile_id: str, path: Path) -> None:
        directory = self.layout.volatile_dir
        if directory is None:
            logger.debug("load: no volatile directory, not recording hint for %s", profile_id)
            return
        try:
            marker = self._hints.write(directory, profile_id, path)
        except WriteError as e:
            logger.warning("load: failure writing hint for %s: %s", profile_id, e)
            return
        logger.debug('load: wrote hint "%s" -> "%s"', marker, path)

    # ── File events ───────────────────────────────────────────

    def handle_file_event(self, path: Path | str, kind: FileEventKind) -> None:
        """Apply one create/modify/delete event for a file in a tier directory."""
        path = Path(path)
        try:
            tier, directory, filename = self.layout.locate(path)
        except PathClassificationError as e:
            logger.debug("event: ignore %s: %s", kind.value, e)
            return
        path = directory / filename

        affected: dict[str, set[Path]] = {}
        if ignore_filename_for(tier, filename):
            hint_id = self._hints.parse_name(filename) if tier.writable else None
            if hint_id is None:
                logger.debug('event: "%s": skip file due to filename pattern', path)
                return
            affected[hint_id] = set()
        else:
            owner = self._index.owner_of(path)
            if owner is not None:
                affected[owner.id] = {path}
            if kind is not FileEventKind.DELETED and path.is_file():
                try:
                    obs = read_observation(
                        self._codec, tier, self.layout.rank(tier), path, self.base_dir
                    )
                except DecodeError as e:
                    logger.warning('event: "%s": failed to load profile: %s', path, e)
                else:
                    affected.setdefault(obs.profile.id, set()).add(path)

        logger.debug('event: "%s" %s, affects %s', path, kind.value, sorted(affected) or "nothing")
        if affected:
            self._refresh(affected)

    def _refresh(self, affected: dict[str, set[Path]]) -> None:
        """Re-collect and resolve only the given ids, then emit notifications."""
        pending = {k: set(v) for k, v in affected.items()}
        batch = EventBatch()

        while pending:
            profile_id = next(iter(pending))
            extra = pending.pop(profile_id)
            record = self._index.get(profile_id)

            candidates = dict.fromkeys(o.path for o in record.observations) if record else {}
            candidates.update(dict.fromkeys(sorted(extra)))

            observations = []
            for path in candidates:
                try:
                    tier, _ = self.layout.classify(path)
                except PathClassificationError:
                    continue
                if not path.is_file():
                    continue
                try:
                    obs = read_observation(
                        self._codec, tier, self.layout.rank(tier), path, self.base_dir
                    )
                except DecodeError as e:
                    logger.warning('load: "%s": failed to load profile: %s', path, e)
                    continue
                other = obs.profile.id
                if other != profile_id:
                    other_record = self._index.get(other)
                    if (
                        other in pending
                        or other_record is None
                        or all(o.path != path for o in other_record.observations)
                    ):
                        pending.setdefault(other, set()).add(path)
                    continue
                observations.append(obs)

            hints = {
                tier.kind: self._hints.read(directory, profile_id)
                for tier, directory in self.layout.hint_directories()
            }
            if record is None:
                if not observations and not any(hints.values()):
                    continue
                record = self._index.add(profile_id)

            self._index.unlink_paths(record)
            record.observations = observations
            record.loaded_hint_volatile = hints.get(TierKind.VOLATILE)
            record.loaded_hint_persistent = hints.get(TierKind.PERSISTENT)
            resolve(record, self._index, self, batch)

        self._emit(batch)

    # ── Write surface ─────────────────────────────────────────

    def add(self, profile: Profile, persist: bool = False) -> tuple[RecordHandle, Profile]:
        """Add a new profile, in memory only or written to disk.

        Returns the handle and the profile as stored (re-read from disk when
        persisted). Raises ProfileExistsError or WriteError.
        """
        existing = self._index.get(profile.id)
        if existing is not None and existing.exported_value is not None:
            raise ProfileExistsError(f"profile {profile.id} already exists")

        if not persist:
            record = self._index.add(profile.id)
            record.exported_value = profile
            record.exported_tier = EPHEMERAL
            logger.info("Added in-memory profile %s (%s)", profile.id, profile.name)
            return record.ensure_handle(self), profile

        target = self.layout.writable_dir()
        if target is None:
            raise WriteError("no writable profile directory configured")
        tier, directory = target
        path, reread = self._codec.encode(profile, directory)
        stored = reread or profile

        record = self._index.add(profile.id)
        record.exported_value = stored
        record.exported_tier = tier
        self._write_loaded_hint(profile.id, path)
        logger.info('Added profile %s (%s) as "%s"', profile.id, profile.name, path)

        self._refresh({profile.id: {path}})
        record = self._index.get(profile.id)
        if record is None or record.exported_value is None:
            raise WriteError(f"{path}: profile {profile.id} is not visible after writing")
        return record.ensure_handle(self), record.exported_value

    def commit(
        self,
        handle: RecordHandle,
        profile: Profile,
        reason: CommitReason = CommitReason.NONE,
    ) -> Profile | None:
        """Persist new content for an exported profile.

        Returns the re-read profile when it differs from *profile*, else None.
        Raises HandleMismatchError or WriteError.
        """
        record = self._record_for(handle)
        if profile.id != record.id:
            raise HandleMismatchError(f"handle for {record.id} used to commit {profile.id}")

        if record.exported_tier == EPHEMERAL:
            record.exported_value = profile
            logger.info("Updated in-memory profile %s (%s)", record.id, profile.name)
            return None

        existing = winning_path(record)
        if existing is not None and record.exported_tier.writable:
            tier, directory = record.exported_tier, existing.parent
        else:
            target = self.layout.writable_dir()
            if target is None:
                raise WriteError(f"no writable profile directory to shadow {existing}")
            tier, directory = target
            existing = None

        rename = CommitReason.USER_ACTION in reason and CommitReason.ID_CHANGED in reason
        path, reread = self._codec.encode(profile, directory, existing, rename=rename)

        record.exported_value = reread or profile
        record.exported_tier = tier
        self._write_loaded_hint(record.id, path)
        if existing is not None and existing != path:
            logger.info('Updated profile %s and renamed "%s" to "%s"', record.id, existing, path)
        else:
            logger.info('Updated profile %s in "%s"', record.id, path)

        self._refresh({record.id: {path} | ({existing} if existing else set())})
        return reread

    def delete(self, handle: RecordHandle) -> None:
        """Delete a profile: remove writable files and mask remaining read-only ones.

        Raises HandleMismatchError or WriteError.
        """
        record = self._record_for(handle)
        paths = {o.path for o in record.observations}

        if record.exported_tier != EPHEMERAL:
            for obs in record.observations:
                if not obs.tier.writable:
                    continue
                try:
                    obs.path.unlink(missing_ok=True)
                except OSError as e:
                    raise WriteError(f"{obs.path}: cannot delete profile: {e}") from e
                logger.info('Deleted profile file "%s"', obs.path)

            for _, directory in self.layout.hint_directories():
                self._hints.remove(directory, record.id)

            if any(not o.tier.writable for o in record.observations):
                target = self.layout.writable_dir()
                if target is None:
                    raise WriteError(f"cannot mask read-only files of {record.id}")
                marker = self._hints.write(target[1], record.id, None, masked=True)
                logger.info('Masked read-only profile %s via "%s"', record.id, marker)

        record.clear_export()
        self._refresh({record.id: paths})
