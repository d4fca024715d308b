"""Per-change propagation of local edits to the remote vault."""

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Awaitable

from ..errors import SyncError
from ..notices import Notifier, log_notifier
from ..state import SyncStateStore
from ..vault.tree import FileEntry, FileEvent, FileEventKind, FileTree
from .guard import EventSuppressionGuard
from .remote_client import RemoteSyncClient

logger = logging.getLogger(__name__)


class PathSequencer:
    """Serializes remote notifications that touch the same path.

    Handlers run as independent tasks, so without this a later modify could
    reach the remote before the create it follows. Locks are taken in sorted
    order so a rename holding two paths cannot deadlock another rename.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, *paths: str) -> AsyncIterator[None]:
        keys = sorted(set(paths))
        for key in keys:
            self._locks.setdefault(key, asyncio.Lock())
            self._users[key] = self._users.get(key, 0) + 1
        try:
            async with AsyncExitStack() as stack:
                for key in keys:
                    await stack.enter_async_context(self._locks[key])
                yield
        finally:
            for key in keys:
                self._users[key] -= 1
                if self._users[key] == 0:
                    del self._users[key]
                    del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class IncrementalSynchronizer:
    """Translates single local file changes into remote notifications.

    Each handler is a no-op while event suppression is active, while the
    device is not bound to a vault, and for folder entries. Failures are
    logged and announced but never raised to the event dispatcher, and
    nothing is retried.
    """

    def __init__(
        self,
        client: RemoteSyncClient,
        store: SyncStateStore,
        tree: FileTree,
        guard: EventSuppressionGuard,
        notify: Notifier = log_notifier,
    ):
        self.client = client
        self.store = store
        self.tree = tree
        self.guard = guard
        self.notify = notify
        self.sequencer = PathSequencer()

    def _vault_for(self, entry: FileEntry) -> str | None:
        """Return the bound vault id if this entry should be synced."""
        if self.guard.active:
            logger.debug(f"Suppressed event for {entry.path}")
            return None
        if entry.is_folder:
            return None
        return self.store.state.vault_id or None

    async def _send(self, action: str, path: str, call: Awaitable[None]) -> bool:
        try:
            await call
        except SyncError as e:
            logger.error(f"Sync error ({action} {path}): {e}")
            self.notify(f"Failed to sync {action} of {path}", logging.WARNING)
            return False
        logger.debug(f"Synced {action}: {path}")
        return True

    async def on_create(self, entry: FileEntry) -> bool:
        vault_id = self._vault_for(entry)
        if not vault_id:
            return False
        async with self.sequencer.hold(entry.path):
            return await self._send(
                "create", entry.path, self.client.notify_create(vault_id, entry.path)
            )

    async def on_modify(self, entry: FileEntry) -> bool:
        vault_id = self._vault_for(entry)
        if not vault_id:
            return False
        async with self.sequencer.hold(entry.path):
            try:
                content = await self.tree.read(entry.path)
            except SyncError as e:
                # Usually the file was deleted before the read ran
                logger.error(f"Sync error (modify {entry.path}): {e}")
                return False
            return await self._send(
                "modify",
                entry.path,
                self.client.notify_modify(vault_id, entry.path, content),
            )

    async def on_rename(self, entry: FileEntry, old_path: str) -> bool:
        vault_id = self._vault_for(entry)
        if not vault_id:
            return False
        async with self.sequencer.hold(old_path, entry.path):
            return await self._send(
                "rename",
                old_path,
                self.client.notify_rename(vault_id, old_path, entry.path),
            )

    async def on_delete(self, entry: FileEntry) -> bool:
        vault_id = self._vault_for(entry)
        if not vault_id:
            return False
        async with self.sequencer.hold(entry.path):
            return await self._send(
                "delete", entry.path, self.client.notify_delete(vault_id, entry.path)
            )

    async def dispatch(self, event: FileEvent) -> bool:
        """Route a FileEvent to its handler."""
        if event.kind == FileEventKind.CREATE:
            return await self.on_create(event.entry)
        if event.kind == FileEventKind.MODIFY:
            return await self.on_modify(event.entry)
        if event.kind == FileEventKind.RENAME:
            if not event.old_path:
                logger.warning(f"Rename event for {event.entry.path} has no old path")
                return False
            return await self.on_rename(event.entry, event.old_path)
        if event.kind == FileEventKind.DELETE:
            return await self.on_delete(event.entry)
        return False
