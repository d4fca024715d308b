"""Suppression of outgoing sync while remote changes are applied locally."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from ..errors import HostIOError, SyncError
from ..state import SyncStateStore

logger = logging.getLogger(__name__)


class EventSuppressionGuard:
    """A single on/off gate owned by one engine instance.

    While active, every incremental handler drops its event. The gate is a
    flag, not a counter: entering it twice is an error rather than nesting.
    The flag is mirrored into the persisted sync state.
    """

    def __init__(self, store: SyncStateStore, settle_seconds: float = 0.0):
        """Initialize the guard.

        Args:
            store: State store the flag is persisted to.
            settle_seconds: How long suppress() keeps the gate closed after
                its block ends, so that filesystem notifications for the
                block's own writes arrive while they are still dropped.
        """
        self._store = store
        self._active = False
        self.settle_seconds = settle_seconds

    @property
    def active(self) -> bool:
        return self._active

    def enter(self) -> None:
        if self._active:
            raise SyncError("Event suppression is already active")
        self._active = True
        try:
            self._store.set_ignore_events(True)
        except HostIOError:
            self._active = False
            self._store.state.is_ignore_events = False
            raise
        logger.debug("Event suppression on")

    def exit(self) -> None:
        # Clear in memory first so a persistence failure cannot leave it stuck
        self._active = False
        try:
            self._store.set_ignore_events(False)
        except HostIOError as e:
            logger.error(f"Could not persist cleared suppression flag: {e}")
        logger.debug("Event suppression off")

    @asynccontextmanager
    async def suppress(self) -> AsyncIterator["EventSuppressionGuard"]:
        """Hold the gate for the duration of the block, releasing on any exit."""
        self.enter()
        try:
            yield self
        finally:
            try:
                if self.settle_seconds > 0:
                    await asyncio.sleep(self.settle_seconds)
            finally:
                self.exit()
