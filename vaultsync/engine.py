"""Wires state, remote client, vault and synchronizers into one engine."""

import asyncio
import logging
from typing import Any

from .config import Config
from .errors import ValidationError
from .notices import Notifier, log_notifier
from .state import SqliteStateBackend, SyncStateStore
from .sync.bootstrap import (
    BootstrapResult,
    BootstrapStatus,
    BootstrapSynchronizer,
    ConfirmClear,
    always_confirm,
)
from .sync.guard import EventSuppressionGuard
from .sync.incremental import IncrementalSynchronizer
from .sync.remote_client import RemoteSyncClient
from .vault.tree import FileEvent, FileTree, LocalFileTree
from .vault.watcher import VaultWatcher

logger = logging.getLogger(__name__)


def validate_email(email: str) -> str:
    """Return the trimmed identity or raise ValidationError."""
    email = (email or "").strip()
    if not email:
        raise ValidationError("An email address is required")
    if "@" not in email:
        raise ValidationError("Please enter a valid email address")
    return email


class SyncEngine:
    """Synchronization engine for one vault replica.

    Owns the suppression guard, so two engines in one process never share
    suppression state.
    """

    def __init__(
        self,
        store: SyncStateStore,
        client: RemoteSyncClient,
        tree: FileTree,
        confirm_clear: ConfirmClear = always_confirm,
        notify: Notifier = log_notifier,
        settle_seconds: float = 0.0,
    ):
        self.store = store
        self.client = client
        self.tree = tree
        self.notify = notify
        self.guard = EventSuppressionGuard(store, settle_seconds=settle_seconds)
        self.bootstrap = BootstrapSynchronizer(
            client, store, tree, self.guard, confirm_clear, notify
        )
        self.incremental = IncrementalSynchronizer(client, store, tree, self.guard, notify)
        self._watcher: VaultWatcher | None = None
        self._tasks: set[asyncio.Task] = set()
        self._bootstrap_lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        config: Config,
        confirm_clear: ConfirmClear = always_confirm,
        notify: Notifier = log_notifier,
    ) -> "SyncEngine":
        """Build an engine backed by SQLite state and a directory vault."""
        store = SyncStateStore(SqliteStateBackend(config.vault.state_db_path))
        client = RemoteSyncClient(config.remote.base_url, timeout=config.remote.timeout)
        tree = LocalFileTree(config.vault.root, config.vault.extensions)
        if not config.sync.confirm_clear:
            confirm_clear = always_confirm
        return cls(
            store,
            client,
            tree,
            confirm_clear=confirm_clear,
            notify=notify,
            settle_seconds=config.sync.suppression_settle_seconds,
        )

    def load(self) -> None:
        """Load persisted state; never fails (falls back to in-memory state)."""
        state = self.store.load()
        logger.info(
            f"Device {state.device_id}, vault {state.vault_id or 'unbound'}, "
            f"last sync {state.last_sync_timestamp or 'never'}"
        )

    async def set_user_email(self, email: str) -> BootstrapResult | None:
        """Record the user identity and bootstrap if it changed.

        Returns None when the identity is unchanged and already bound. If a
        bound device fails to bootstrap under a new identity, the previous
        identity is restored so the change can be retried.

        Raises:
            ValidationError: The identity is empty or has no "@".
        """
        email = validate_email(email)
        state = self.store.state

        async with self._bootstrap_lock:
            if email == state.user_email and state.is_bound:
                logger.debug("Identity unchanged, skipping bootstrap")
                return None

            previous = state.user_email
            was_bound = state.is_bound
            self.store.set_user_email(email)
            result = await self.bootstrap.run(email)

            if result.status == BootstrapStatus.FAILED and was_bound:
                logger.warning(
                    f"Identity {email} was not bound, keeping {previous or 'none'} "
                    f"on vault {state.vault_id}"
                )
                self.store.set_user_email(previous)
            return result

    def handle_event(self, event: FileEvent) -> None:
        """Schedule an event for propagation. Safe to call from loop callbacks."""
        # Checked at delivery: by the time a task runs the gate may be open
        if self.guard.active:
            logger.debug(f"Dropped {event.kind.value} of {event.entry.path} during suppression")
            return
        task = asyncio.ensure_future(self.incremental.dispatch(event))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        if exc := task.exception():
            logger.error("Unexpected error in sync handler", exc_info=exc)

    async def drain(self) -> None:
        """Wait for all scheduled event handlers to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def start_watching(self) -> None:
        if not isinstance(self.tree, LocalFileTree):
            raise TypeError("Watching requires a LocalFileTree")
        if self._watcher is None:
            self._watcher = VaultWatcher(self.tree, self.handle_event)
        self._watcher.start()

    def stop_watching(self) -> None:
        if self._watcher:
            self._watcher.stop()

    async def close(self) -> None:
        """Stop watching, finish pending work and release resources."""
        self.stop_watching()
        await self.drain()
        await self.client.close()
        self.store.close()

    def get_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary describing the replica and its binding.
        """
        state = self.store.state
        return {
            "device_id": state.device_id,
            "vault_id": state.vault_id,
            "user_email": state.user_email,
            "last_sync": (
                state.last_sync_timestamp.isoformat()
                if state.last_sync_timestamp
                else None
            ),
            "suppressing_events": self.guard.active,
            "pending_events": len(self._tasks),
            "degraded": self.store.degraded,
            "remote_url": self.client.base_url,
        }
