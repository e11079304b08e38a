"""Configuration loading from environment variables and strata.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_VOLATILE_DIR = Path.home() / ".strata" / "run"
_DEFAULT_PERSISTENT_DIR = Path.home() / ".strata" / "profiles"
_DEFAULT_READONLY_DIRS = [Path("/usr/lib/strata/profiles")]
_CONFIG_FILENAME = "strata.toml"
_READONLY_ORDERS = ("earlier-first", "later-first")


@dataclass
class StoreConfig:
    """Top-level strata configuration."""

    volatile_dir: Path | None = _DEFAULT_VOLATILE_DIR
    persistent_dir: Path | None = _DEFAULT_PERSISTENT_DIR
    readonly_dirs: list[Path] = field(default_factory=lambda: list(_DEFAULT_READONLY_DIRS))
    readonly_order: str = "earlier-first"
    monitor: bool = False
    log_level: str = "INFO"


def _parse_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _parse_dirs(value: object) -> list[Path]:
    if isinstance(value, str):
        parts = value.split(os.pathsep)
    else:
        parts = list(value or [])
    return [Path(p).expanduser() for p in parts if str(p).strip()]


def _persistent_dir(value: object) -> Path | None:
    # An empty value disables the persistent directory on purpose.
    if value is None:
        return _DEFAULT_PERSISTENT_DIR
    text = str(value).strip()
    if not text:
        return None
    path = Path(text).expanduser()
    if not path.is_absolute():
        return _DEFAULT_PERSISTENT_DIR
    return path


def load_config(config_path: Path | None = None) -> StoreConfig:
    """Load configuration from environment variables and optional strata.toml.

    Priority: environment variables > strata.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.strata/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, Path.home() / ".strata" / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    store_data = file_data.get("store", {})

    volatile = os.getenv("STRATA_VOLATILE_DIR", store_data.get("volatile_dir"))
    readonly = os.getenv("STRATA_READONLY_DIRS", store_data.get("readonly_dirs"))
    readonly_order = os.getenv("STRATA_READONLY_ORDER", store_data.get("readonly_order", "earlier-first"))
    if readonly_order not in _READONLY_ORDERS:
        raise ValueError(
            f"Invalid readonly_order {readonly_order!r}, expected one of {_READONLY_ORDERS}"
        )

    config = StoreConfig(
        volatile_dir=Path(volatile).expanduser() if volatile else _DEFAULT_VOLATILE_DIR,
        persistent_dir=_persistent_dir(
            os.getenv("STRATA_PERSISTENT_DIR", store_data.get("persistent_dir"))
        ),
        readonly_dirs=(
            _parse_dirs(readonly) if readonly is not None else list(_DEFAULT_READONLY_DIRS)
        ),
        readonly_order=readonly_order,
        monitor=_parse_bool(os.getenv("STRATA_MONITOR", store_data.get("monitor", False))),
        log_level=os.getenv("STRATA_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
