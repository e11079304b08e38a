"""Helpers for writing profile files and recording notifications."""

from __future__ import annotations

import os
from pathlib import Path

ID_X = "6f1c2d0e-8a55-4e0b-9d1f-3a4b5c6d7e8f"
ID_Y = "0b7e3c52-1d2a-4f4e-8a8b-2c9d5e6f7a81"
ID_Z = "d3a1f9b0-5c4e-4b7a-9e2d-8f1a6b3c4d5e"

BASE_NS = 1_700_000_000 * 1_000_000_000


def write_profile(
    path: Path,
    profile_id: str | None,
    name: str,
    *,
    mtime: int | None = None,
    settings: dict[str, str] | None = None,
    secrets: dict[str, tuple[str, str]] | None = None,
    body: str = "",
) -> Path:
    """Write a profile file by hand. *mtime* is in seconds relative to a fixed base."""
    lines = ["---"]
    if profile_id is not None:
        lines.append(f"id: {profile_id}")
    lines.append(f"name: {name}")
    if settings:
        lines.append("settings:")
        lines.extend(f"  {k}: {v}" for k, v in settings.items())
    if secrets:
        lines.append("secrets:")
        lines.extend(
            f"  {k}: {{value: {value}, flags: {flags}}}" for k, (value, flags) in secrets.items()
        )
    lines.append("---")
    lines.append(body)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    if mtime is not None:
        set_mtime(path, mtime)
    return path


def set_mtime(path: Path, mtime: int) -> None:
    ns = BASE_NS + mtime * 1_000_000_000
    os.utime(path, ns=(ns, ns))


class RecordingSink:
    """Collects notifications in order."""

    def __init__(self) -> None:
        self.events: list[tuple] = []
        self.handles: dict[str, object] = {}

    def on_removed(self, profile_id, handle) -> None:
        self.events.append(("removed", profile_id))

    def on_changed(self, profile_id, handle, profile) -> None:
        self.handles[profile_id] = handle
        self.events.append(("changed", profile_id, profile.name))

    def clear(self) -> None:
        self.events.clear()
