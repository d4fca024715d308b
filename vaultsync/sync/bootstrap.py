"""One-time vault binding and full-tree reconciliation.

After the handshake the remote decides the direction: an existing vault
overwrites the local tree (pull), a new vault is seeded from the local tree
(push). There is no merge.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath
from typing import Awaitable, Callable

from ..errors import HostIOError, SyncError
from ..notices import Notifier, log_notifier
from ..state import SyncStateStore
from ..vault.tree import FileTree
from .guard import EventSuppressionGuard
from .remote_client import FileRecord, RemoteSyncClient, VaultStatus

logger = logging.getLogger(__name__)

# Asked before the local tree is wiped: (file_count, folder_count) -> proceed?
ConfirmClear = Callable[[int, int], Awaitable[bool]]


async def always_confirm(file_count: int, folder_count: int) -> bool:
    return True


class BootstrapStatus(Enum):
    PULLED = "pulled"
    PUSHED = "pushed"
    DECLINED = "declined"  # User refused the local wipe
    FAILED = "failed"


@dataclass
class BootstrapResult:
    """Result of a bootstrap run."""

    status: BootstrapStatus
    vault_id: str | None = None
    files_pulled: int = 0
    files_pushed: int = 0
    error: str | None = None
    timestamp: datetime | None = None

    @property
    def success(self) -> bool:
        return self.status in (BootstrapStatus.PULLED, BootstrapStatus.PUSHED)


class BootstrapSynchronizer:
    """Binds the device to a vault and performs the initial full sync."""

    def __init__(
        self,
        client: RemoteSyncClient,
        store: SyncStateStore,
        tree: FileTree,
        guard: EventSuppressionGuard,
        confirm_clear: ConfirmClear = always_confirm,
        notify: Notifier = log_notifier,
    ):
        """Initialize the synchronizer.

        Args:
            client: Remote API client.
            store: Sync state store; receives the vault id and sync time.
            tree: Local file tree to clear/populate or upload.
            guard: Suppression gate held while the tree is rewritten.
            confirm_clear: Capability asked before the local tree is wiped.
            notify: Sink for user-visible notices.
        """
        self.client = client
        self.store = store
        self.tree = tree
        self.guard = guard
        self.confirm_clear = confirm_clear
        self.notify = notify

    async def run(self, email: str) -> BootstrapResult:
        """Handshake for an identity and reconcile the whole tree.

        Never raises a SyncError; failures are logged, announced and
        reported in the result.
        """
        try:
            handshake = await self.client.handshake(email)
        except SyncError as e:
            logger.error(f"Vault handshake failed: {e}")
            self.notify("Failed to initialize vault", logging.ERROR)
            return BootstrapResult(BootstrapStatus.FAILED, error=str(e))

        try:
            self.store.bind_vault(handshake.vault_id)
        except SyncError as e:
            logger.error(f"Cannot bind vault: {e}")
            self.notify("Failed to initialize vault", logging.ERROR)
            return BootstrapResult(
                BootstrapStatus.FAILED, vault_id=handshake.vault_id, error=str(e)
            )

        if handshake.status == VaultStatus.EXISTING:
            result = await self._pull(handshake.vault_id)
            if result.success:
                self.notify("Connected to existing vault")
        else:
            result = await self._push(handshake.vault_id)
            if result.success:
                self.notify(f"Created new vault with {result.files_pushed} files")
        return result

    async def _pull(self, vault_id: str) -> BootstrapResult:
        """Replace the local tree with the vault's file set."""
        # Fetch before anything destructive so a network failure leaves the
        # local tree intact
        try:
            records = await self.client.pull_all(vault_id)
            files = await self.tree.list_files()
            folders = await self.tree.list_folders()
        except SyncError as e:
            logger.error(f"Failed to sync from server: {e}")
            self.notify("Failed to sync from server", logging.ERROR)
            return BootstrapResult(BootstrapStatus.FAILED, vault_id=vault_id, error=str(e))

        if not await self.confirm_clear(len(files), len(folders)):
            logger.info("Local vault clear declined, skipping pull")
            self.notify("Sync from server cancelled", logging.WARNING)
            return BootstrapResult(BootstrapStatus.DECLINED, vault_id=vault_id)

        try:
            async with self.guard.suppress():
                await self._clear(files, folders)
                for record in records:
                    await self._ensure_path_and_create(record)
        except SyncError as e:
            logger.error(f"Failed to sync from server: {e}")
            self.notify("Failed to sync from server", logging.ERROR)
            return BootstrapResult(BootstrapStatus.FAILED, vault_id=vault_id, error=str(e))

        timestamp = self._mark_synced()
        logger.info(f"Pulled {len(records)} files from vault {vault_id}")
        return BootstrapResult(
            BootstrapStatus.PULLED,
            vault_id=vault_id,
            files_pulled=len(records),
            timestamp=timestamp,
        )

    def _mark_synced(self) -> datetime | None:
        try:
            return self.store.mark_synced()
        except HostIOError as e:
            logger.error(f"Could not record sync time: {e}")
            return None

    async def _clear(self, files, folders) -> None:
        """Delete all files, then all folders deepest first.

        Every entry is attempted; if any delete failed, HostIOError is raised
        afterwards naming the entries left behind.
        """
        failed = []
        for entry in files:
            try:
                await self.tree.delete(entry.path)
                logger.debug(f"Deleted file: {entry.path}")
            except HostIOError as e:
                logger.error(f"Error deleting file: {entry.path}: {e}")
                failed.append(entry.path)

        for entry in sorted(folders, key=lambda f: f.path.count("/"), reverse=True):
            try:
                await self.tree.delete(entry.path, recursive=True)
                logger.debug(f"Deleted folder: {entry.path}")
            except HostIOError as e:
                logger.error(f"Error deleting folder: {entry.path}: {e}")
                failed.append(entry.path)

        if failed:
            raise HostIOError(f"Could not clear local vault: {', '.join(failed)}")

    async def _ensure_path_and_create(self, record: FileRecord) -> None:
        current = PurePosixPath()
        for part in PurePosixPath(record.path).parts[:-1]:
            current = current / part
            await self.tree.create_folder(current.as_posix())
        await self.tree.create(record.path, record.content)

    async def _push(self, vault_id: str) -> BootstrapResult:
        """Seed a new vault with every local file."""
        try:
            entries = await self.tree.list_files()
            records = [
                FileRecord(path=entry.path, content=await self.tree.read(entry.path))
                for entry in entries
            ]
            await self.client.push_all(vault_id, records)
        except SyncError as e:
            logger.error(f"Failed to sync to server: {e}")
            self.notify("Failed to sync to server", logging.ERROR)
            return BootstrapResult(BootstrapStatus.FAILED, vault_id=vault_id, error=str(e))

        timestamp = self._mark_synced()
        return BootstrapResult(
            BootstrapStatus.PUSHED,
            vault_id=vault_id,
            files_pushed=len(records),
            timestamp=timestamp,
        )
