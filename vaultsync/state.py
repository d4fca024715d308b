"""Durable sync state: device identity, vault binding and last sync time.

The state is a single record persisted as a key/value document. The default
backend stores it in a small SQLite table next to the rest of the client's
data; tests and the degraded startup path use an in-memory backend.
"""

import json
import logging
import socket
import sqlite3
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .errors import HostIOError, SyncError

logger = logging.getLogger(__name__)

STATE_SCHEMA = """
CREATE TABLE IF NOT EXISTS sync_state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


def default_device_id() -> str:
    """Derive a device identifier from the host name."""
    return socket.gethostname() or f"device-{uuid.uuid4().hex[:8]}"


@dataclass
class SyncState:
    """The persisted sync record for this replica."""

    device_id: str = ""
    vault_id: str | None = None
    last_sync_timestamp: datetime | None = None
    is_ignore_events: bool = False
    user_email: str = ""

    @property
    def is_bound(self) -> bool:
        return bool(self.vault_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for persistence."""
        return {
            "device_id": self.device_id,
            "vault_id": self.vault_id,
            "last_sync_timestamp": (
                self.last_sync_timestamp.isoformat()
                if self.last_sync_timestamp
                else None
            ),
            "is_ignore_events": self.is_ignore_events,
            "user_email": self.user_email,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncState":
        """Create from dictionary, filling missing keys with defaults."""
        defaults = cls()
        last_sync = data.get("last_sync_timestamp")
        return cls(
            device_id=data.get("device_id") or defaults.device_id,
            vault_id=data.get("vault_id") or None,
            last_sync_timestamp=(
                datetime.fromisoformat(last_sync) if last_sync else None
            ),
            is_ignore_events=bool(data.get("is_ignore_events", False)),
            user_email=data.get("user_email") or defaults.user_email,
        )


class StateBackend(ABC):
    """Load/save of the state record as an opaque key/value document."""

    @abstractmethod
    def load(self) -> dict[str, Any]:
        """Return the stored document, or an empty dict if nothing is stored."""

    @abstractmethod
    def save(self, data: dict[str, Any]) -> None:
        """Replace the stored document."""

    def close(self) -> None:
        pass


class MemoryStateBackend(StateBackend):
    """Keeps the document in memory only."""

    def __init__(self, data: dict[str, Any] | None = None):
        self.data: dict[str, Any] = dict(data or {})

    def load(self) -> dict[str, Any]:
        return dict(self.data)

    def save(self, data: dict[str, Any]) -> None:
        self.data = dict(data)


class SqliteStateBackend(StateBackend):
    """Stores each state field as a JSON value in a SQLite table."""

    def __init__(self, db_path: str | Path):
        """Initialize the backend.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        try:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path))
            self._conn.executescript(STATE_SCHEMA)
            self._conn.commit()
        except (sqlite3.Error, OSError) as e:
            self._conn = None
            raise HostIOError(f"Cannot open state database {self.db_path}: {e}") from e

        logger.debug(f"State backend connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def load(self) -> dict[str, Any]:
        conn = self._ensure_connected()
        try:
            rows = conn.execute("SELECT key, value FROM sync_state").fetchall()
        except sqlite3.Error as e:
            raise HostIOError(f"Cannot read sync state: {e}") from e
        return {key: json.loads(value) for key, value in rows}

    def save(self, data: dict[str, Any]) -> None:
        conn = self._ensure_connected()
        try:
            # One transaction: readers never see a half-written record
            with conn:
                conn.execute("DELETE FROM sync_state")
                conn.executemany(
                    "INSERT INTO sync_state (key, value) VALUES (?, ?)",
                    [(key, json.dumps(value)) for key, value in data.items()],
                )
        except sqlite3.Error as e:
            raise HostIOError(f"Cannot write sync state: {e}") from e


class SyncStateStore:
    """Owns the SyncState record and persists it on every mutation."""

    def __init__(self, backend: StateBackend):
        self._backend = backend
        self._state = SyncState()
        self._degraded = False

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def degraded(self) -> bool:
        """True when running on in-memory state after a backend failure."""
        return self._degraded

    def load(self) -> SyncState:
        """Load persisted state merged over defaults.

        Assigns and persists a device id on first run. A suppression flag left
        set by a crashed process is cleared. If the backend is unavailable the
        store falls back to in-memory defaults instead of failing.
        """
        try:
            self._state = SyncState.from_dict(self._backend.load())
        except (HostIOError, ValueError) as e:
            logger.warning(f"Sync state unavailable, starting unsynced: {e}")
            self._backend = MemoryStateBackend()
            self._degraded = True
            self._state = SyncState(device_id=default_device_id())
            return self._state

        dirty = False

        if not self._state.device_id:
            self._state.device_id = default_device_id()
            logger.info(f"Assigned device id {self._state.device_id}")
            dirty = True

        if self._state.is_ignore_events:
            logger.warning("Clearing event suppression flag left over from a previous run")
            self._state.is_ignore_events = False
            dirty = True

        if dirty:
            self.save()

        return self._state

    def save(self, state: SyncState | None = None) -> None:
        """Persist the full state record."""
        if state is not None:
            self._state = state
        self._backend.save(self._state.to_dict())

    def bind_vault(self, vault_id: str) -> None:
        """Bind this replica to a vault. A binding is never changed."""
        if not vault_id:
            raise SyncError("Refusing to bind to an empty vault id")
        current = self._state.vault_id
        if current == vault_id:
            return
        if current:
            raise SyncError(
                f"Device is already bound to vault {current}, refusing to rebind to {vault_id}"
            )
        self._state.vault_id = vault_id
        self.save()
        logger.info(f"Bound to vault {vault_id}")

    def mark_synced(self, when: datetime | None = None) -> datetime:
        """Record a completed full sync. The timestamp never moves backwards."""
        when = when or datetime.now(timezone.utc)
        last = self._state.last_sync_timestamp
        if last is None or when > last:
            self._state.last_sync_timestamp = when
            self.save()
        return self._state.last_sync_timestamp

    def set_user_email(self, email: str) -> None:
        self._state.user_email = email
        self.save()

    def set_ignore_events(self, flag: bool) -> None:
        self._state.is_ignore_events = flag
        self.save()

    def close(self) -> None:
        self._backend.close()
