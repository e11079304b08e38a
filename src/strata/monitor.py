"""Profile monitor — feed directory change events into the store.

A watchdog observer thread posts (path, kind) messages into an asyncio
queue; a consumer coroutine on the event loop applies them one by one via
ProfileStore.handle_file_event. Moves become a delete plus a create.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from strata.store.base import FileEventKind
from strata.store.plugin import ProfileStore

logger = logging.getLogger(__name__)

FileEvent = tuple[Path, FileEventKind]


class _QueueingHandler(FileSystemEventHandler):
    """Translate watchdog callbacks into queue messages on the event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue[FileEvent]) -> None:
        super().__init__()
        self._loop = loop
        self._queue = queue

    def _post(self, path: str | bytes, kind: FileEventKind) -> None:
        if isinstance(path, bytes):
            path = path.decode(errors="surrogateescape")
        self._loop.call_soon_threadsafe(self._queue.put_nowait, (Path(path), kind))

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._post(event.src_path, FileEventKind.CREATED)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._post(event.src_path, FileEventKind.MODIFIED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._post(event.src_path, FileEventKind.DELETED)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._post(event.src_path, FileEventKind.DELETED)
            self._post(event.dest_path, FileEventKind.CREATED)


class ProfileMonitor:
    """Watch the store's tier directories and apply file events.

    Directories missing at startup are picked up once they appear: they are
    checked every ``poll_interval`` seconds, and the files already inside a
    newly watched directory are queued as created.
    """

    def __init__(self, store: ProfileStore, poll_interval: float = 5.0) -> None:
        self.store = store
        self.poll_interval = poll_interval
        self.queue: asyncio.Queue[FileEvent] = asyncio.Queue()
        self._observer: Observer | None = None
        self._handler: _QueueingHandler | None = None
        self._watched: set[Path] = set()

    def _watch_dirs(self) -> list[Path]:
        return [d for _, d in self.store.layout.directories() if d.is_dir()]

    def start_observer(self) -> None:
        """Start the watchdog observer thread. Must be called from the event loop."""
        self._handler = _QueueingHandler(asyncio.get_running_loop(), self.queue)
        self._observer = Observer()
        self.schedule_new_dirs(replay=False)
        self._observer.start()

    def stop_observer(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=5)
        self._observer = None
        self._watched.clear()

    def schedule_new_dirs(self, replay: bool = True) -> None:
        """Watch tier directories that exist now but are not watched yet."""
        if self._observer is None:
            return
        for directory in self._watch_dirs():
            if directory in self._watched:
                continue
            self._observer.schedule(self._handler, str(directory), recursive=False)
            self._watched.add(directory)
            logger.info("Monitoring %s", directory)
            if replay:
                self._replay(directory)

    def _replay(self, directory: Path) -> None:
        try:
            names = sorted(os.listdir(directory))
        except OSError as e:
            logger.warning("Failed to list new directory %s: %s", directory, e)
            return
        for name in names:
            self.queue.put_nowait((directory / name, FileEventKind.CREATED))

    def apply(self, path: Path, kind: FileEventKind) -> None:
        """Apply one event; errors are logged so the loop keeps running."""
        try:
            self.store.handle_file_event(path, kind)
        except Exception as e:
            logger.error("Failed to apply %s event for %s: %s", kind.value, path, e)

    async def consume(self, shutdown_event: asyncio.Event) -> None:
        """Drain the queue until shutdown_event is set."""
        while not shutdown_event.is_set():
            get = asyncio.ensure_future(self.queue.get())
            stop = asyncio.ensure_future(shutdown_event.wait())
            done, _ = await asyncio.wait(
                {get, stop}, timeout=self.poll_interval, return_when=asyncio.FIRST_COMPLETED
            )
            if get in done:
                path, kind = get.result()
                self.apply(path, kind)
            else:
                get.cancel()
            stop.cancel()
            self.schedule_new_dirs()

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Observe directories and apply events until shutdown_event is set."""
        self.start_observer()
        logger.info("ProfileMonitor started")
        try:
            await self.consume(shutdown_event)
        finally:
            self.stop_observer()
            logger.info("ProfileMonitor stopped.")
