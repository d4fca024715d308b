"""Filesystem watcher that feeds vault changes into the event loop."""

import asyncio
import logging
import os
from typing import Callable

from watchdog.events import (
    DirMovedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .tree import FileEntry, FileEvent, FileEventKind, LocalFileTree

logger = logging.getLogger(__name__)

EventCallback = Callable[[FileEvent], None]


class VaultEventHandler(FileSystemEventHandler):
    """Translates watchdog events into FileEvents.

    Runs on the observer thread; each FileEvent is handed to the asyncio loop
    with call_soon_threadsafe.
    """

    def __init__(
        self,
        tree: LocalFileTree,
        loop: asyncio.AbstractEventLoop,
        callback: EventCallback,
    ):
        self.tree = tree
        self._loop = loop
        self._callback = callback

    def _emit(self, event: FileEvent) -> None:
        logger.debug(f"{event.kind.value}: {event.entry.path}")
        self._loop.call_soon_threadsafe(self._callback, event)

    def _entry(self, raw_path: str | bytes, is_folder: bool) -> FileEntry | None:
        rel = self.tree.relative(os.fsdecode(raw_path))
        if rel is None or any(part.startswith(".") for part in rel.split("/")):
            return None
        if not is_folder and not self.tree.is_tracked(rel):
            return None
        return FileEntry(rel, is_folder=is_folder)

    def on_created(self, event: FileSystemEvent) -> None:
        if entry := self._entry(event.src_path, event.is_directory):
            self._emit(FileEvent(FileEventKind.CREATE, entry))

    def on_modified(self, event: FileSystemEvent) -> None:
        # Directory mtime changes carry no content
        if event.is_directory:
            return
        if entry := self._entry(event.src_path, False):
            self._emit(FileEvent(FileEventKind.MODIFY, entry))

    def on_deleted(self, event: FileSystemEvent) -> None:
        if entry := self._entry(event.src_path, event.is_directory):
            self._emit(FileEvent(FileEventKind.DELETE, entry))

    def on_moved(self, event: FileMovedEvent | DirMovedEvent) -> None:
        old = self._entry(event.src_path, event.is_directory)
        new = self._entry(event.dest_path, event.is_directory)
        if new and old:
            self._emit(FileEvent(FileEventKind.RENAME, new, old_path=old.path))
        elif new:
            # Moved in from an untracked name or from outside the vault
            self._emit(FileEvent(FileEventKind.CREATE, new))
        elif old:
            self._emit(FileEvent(FileEventKind.DELETE, old))


class VaultWatcher:
    """Watches a LocalFileTree recursively and reports changes."""

    def __init__(self, tree: LocalFileTree, callback: EventCallback):
        self.tree = tree
        self._callback = callback
        self._observer: Observer | None = None

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Start watching. Events are delivered on the given (or current) loop."""
        if self._observer is not None:
            return

        loop = loop or asyncio.get_event_loop()
        handler = VaultEventHandler(self.tree, loop, self._callback)
        self._observer = Observer()
        self._observer.schedule(handler, str(self.tree.root), recursive=True)
        self._observer.start()
        logger.info(f"Watching vault {self.tree.root}")

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None
        logger.info("Vault watcher stopped")

    @property
    def is_running(self) -> bool:
        return self._observer is not None
