"""Entry point: python -m strata [list|load PATH|watch]

- No args / "list": Reload all directories and print exported profiles
- "load PATH":      Explicitly load one profile file
- "watch":          Reload, then apply directory changes until interrupted
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

from strata.config import StoreConfig, load_config
from strata.store.base import RecordHandle, StoreError
from strata.store.plugin import ProfileStore
from strata.store.profile import Profile

logger = logging.getLogger(__name__)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


class LoggingSink:
    """Notification sink that logs every change."""

    def on_removed(self, profile_id: str, handle: RecordHandle | None) -> None:
        logger.info("removed %s", profile_id)

    def on_changed(self, profile_id: str, handle: RecordHandle, profile: Profile) -> None:
        logger.info("changed %s (%s) from %s", profile_id, profile.name, handle.tier)


def _describe(store: ProfileStore, handle: RecordHandle) -> str:
    path = store.path_of(handle)
    return f"{handle.id}  {str(handle.tier):<14} {handle.profile.name}  {path or '(in-memory)'}"


def _build_store(config: StoreConfig) -> ProfileStore:
    store = ProfileStore.from_config(config)
    store.add_sink(LoggingSink())
    store.reload_all()
    return store


def _run_list() -> None:
    config = load_config()
    _setup_logging(config.log_level)

    store = _build_store(config)
    for handle in store.handles():
        print(_describe(store, handle))


def _run_load(path: str) -> None:
    config = load_config()
    _setup_logging(config.log_level)

    store = _build_store(config)
    try:
        handle = store.load_one(path)
    except StoreError as e:
        print(f"Failed to load {path}: {e}", file=sys.stderr)
        sys.exit(1)
    print(_describe(store, handle))


async def _watch(store: ProfileStore) -> None:
    from strata.monitor import ProfileMonitor

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_event.set)

    await ProfileMonitor(store).run(shutdown_event)


def _run_watch() -> None:
    config = load_config()
    _setup_logging(config.log_level)

    if not config.monitor:
        print("Monitoring is disabled (set STRATA_MONITOR=1 or [store] monitor = true)")
        sys.exit(1)

    store = _build_store(config)
    asyncio.run(_watch(store))


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "list"

    if cmd == "list":
        _run_list()
    elif cmd == "load" and len(sys.argv) > 2:
        _run_load(sys.argv[2])
    elif cmd == "watch":
        _run_watch()
    else:
        print("Usage: python -m strata [list|load PATH|watch]")
        print("  list        — Print exported profiles (default)")
        print("  load PATH   — Explicitly load one profile file")
        print("  watch       — Apply directory changes until interrupted")
        sys.exit(1)


if __name__ == "__main__":
    main()
