"""File codecs: frontmatter profile files and symlink hint markers.

Profile file layout::

    ---
    id: 6f1c2d0e-8a55-4e0b-9d1f-3a4b5c6d7e8f
    name: Office WiFi
    type: wifi
    settings:
      ssid: office
    secrets:
      psk: {value: hunter2, flags: none}
    ---
    Free-form notes.

Hint markers are symlinks named ``<id>.loaded`` pointing at the loaded file,
or at ``/dev/null`` to mask the id.
"""

from __future__ import annotations

import logging
import os
import re
import uuid
from pathlib import Path
from typing import Any

import frontmatter
import yaml

from strata.store.base import DecodeError, WriteError
from strata.store.profile import SECRET_FLAGS, Profile, Secret, is_valid_id
from strata.store.tiers import PROFILE_SUFFIX

logger = logging.getLogger(__name__)

HINT_SUFFIX = ".loaded"
HINT_MASKED = os.devnull

_HINT_RE = re.compile(
    r"^(?P<id>[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})"
    + re.escape(HINT_SUFFIX)
    + "$"
)


class FrontmatterProfileCodec:
    """Reads and writes profiles as markdown files with YAML frontmatter."""

    # ── Decoding ──────────────────────────────────────────────

    def decode(self, path: Path, base_dir: Path | None = None) -> tuple[Profile, os.stat_result]:
        if not path.is_file():
            raise DecodeError(f"{path}: not a regular file")
        try:
            with path.open("r", encoding="utf-8") as f:
                st = os.fstat(f.fileno())
                text = f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise DecodeError(f"{path}: cannot read: {e}") from e

        try:
            post = frontmatter.loads(text)
        except (yaml.YAMLError, ValueError, TypeError) as e:
            # JSON frontmatter errors are ValueErrors
            raise DecodeError(f"{path}: invalid frontmatter: {e}") from e
        if not isinstance(post.metadata, dict):
            raise DecodeError(f"{path}: frontmatter must be a mapping")

        profile = self._profile_from_metadata(dict(post.metadata), post.content, path, base_dir)
        return profile, st

    def _profile_from_metadata(
        self, meta: dict[str, Any], body: str, path: Path, base_dir: Path | None
    ) -> Profile:
        profile_id = meta.get("id")
        if profile_id is None:
            profile_id = synthesize_id(path, base_dir)
        elif not is_valid_id(str(profile_id)):
            raise DecodeError(f"{path}: invalid id {profile_id!r}")
        profile_id = str(uuid.UUID(str(profile_id)))

        name = meta.get("name")
        if not isinstance(name, str) or not name.strip():
            raise DecodeError(f"{path}: missing name")

        settings = meta.get("settings") or {}
        if not isinstance(settings, dict):
            raise DecodeError(f"{path}: settings must be a mapping")

        return Profile(
            id=profile_id,
            name=name.strip(),
            type=str(meta.get("type") or "generic"),
            settings=settings,
            secrets=self._parse_secrets(meta.get("secrets") or {}, path),
            body=body,
        )

    def _parse_secrets(self, raw: Any, path: Path) -> dict[str, Secret]:
        if not isinstance(raw, dict):
            raise DecodeError(f"{path}: secrets must be a mapping")
        secrets: dict[str, Secret] = {}
        for key, entry in raw.items():
            if isinstance(entry, dict):
                value = entry.get("value", "")
                flags = entry.get("flags", "none")
            else:
                value, flags = entry, "none"
            if not isinstance(flags, str) or flags not in SECRET_FLAGS:
                raise DecodeError(f"{path}: secret {key!r} has unknown flags {flags!r}")
            secrets[str(key)] = Secret(value="" if value is None else str(value), flags=flags)
        return secrets

    # ── Encoding ──────────────────────────────────────────────

    def encode(
        self,
        profile: Profile,
        directory: Path,
        existing_path: Path | None = None,
        rename: bool = False,
    ) -> tuple[Path, Profile | None]:
        if existing_path is not None and existing_path.parent == directory and not rename:
            path = existing_path
        else:
            path = self._resolve_path(profile, directory, existing_path)

        text = frontmatter.dumps(frontmatter.Post(profile.body, **self._metadata(profile)))
        tmp = path.with_name(f".{path.name}.tmp")
        try:
            directory.mkdir(parents=True, exist_ok=True)
            tmp.write_text(text + "\n", encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise WriteError(f"{path}: cannot write profile: {e}") from e

        if existing_path is not None and existing_path != path and existing_path.parent == directory:
            try:
                existing_path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Failed to remove renamed profile %s: %s", existing_path, e)

        reread, _ = self.decode(path, directory)
        # frontmatter strips surrounding whitespace from the body
        expected = profile.with_changes(body=profile.body.strip())
        return path, None if reread == expected else reread

    def _metadata(self, profile: Profile) -> dict[str, Any]:
        meta: dict[str, Any] = {"id": profile.id, "name": profile.name, "type": profile.type}
        if profile.settings:
            meta["settings"] = profile.settings
        secrets = {
            k: {"value": s.value, "flags": s.flags} for k, s in profile.stored_secrets().items()
        }
        if secrets:
            meta["secrets"] = secrets
        return meta

    def _resolve_path(self, profile: Profile, directory: Path, existing: Path | None) -> Path:
        """Pick a free filename derived from the profile name."""
        slug = slugify(profile.name)
        path = directory / f"{slug}{PROFILE_SUFFIX}"
        counter = 2
        while path.exists() and path != existing:
            path = directory / f"{slug}-{counter}{PROFILE_SUFFIX}"
            counter += 1
        return path


class SymlinkHintCodec:
    """Loaded-hint markers stored as symlinks."""

    def filename(self, profile_id: str) -> str:
        return f"{profile_id}{HINT_SUFFIX}"

    def parse_name(self, filename: str) -> str | None:
        """Return the id for a canonically spelled marker name, else None."""
        m = _HINT_RE.match(filename)
        return m.group("id") if m else None

    def read(self, directory: Path, profile_id: str) -> str | None:
        """Return the hint target, HINT_MASKED, or None if there is no usable marker."""
        try:
            target = os.readlink(directory / self.filename(profile_id))
        except OSError:
            return None
        if target == HINT_MASKED or os.path.isabs(target):
            return target
        return None

    def write(
        self, directory: Path, profile_id: str, target: Path | None, masked: bool = False
    ) -> Path:
        marker = directory / self.filename(profile_id)
        link_target = HINT_MASKED if masked or target is None else str(target)
        tmp = directory / f".{marker.name}.tmp"
        try:
            directory.mkdir(parents=True, exist_ok=True)
            tmp.unlink(missing_ok=True)
            os.symlink(link_target, tmp)
            os.replace(tmp, marker)
        except OSError as e:
            raise WriteError(f"{marker}: cannot write hint: {e}") from e
        return marker

    def remove(self, directory: Path, profile_id: str) -> None:
        marker = directory / self.filename(profile_id)
        try:
            marker.unlink(missing_ok=True)
        except OSError as e:
            raise WriteError(f"{marker}: cannot remove hint: {e}") from e


def synthesize_id(path: Path, base_dir: Path | None = None) -> str:
    """Deterministic id for files that carry none."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"strata:{base_dir or ''}:{path}"))


def slugify(name: str) -> str:
    """Minimal slug: strip illegal chars, spaces to hyphens, keep CJK."""
    slug = re.sub(r'[<>:"/\\|?*\n\r\t]', "", name)
    slug = slug.strip().replace(" ", "-").lstrip(".")
    return slug or "unnamed"
