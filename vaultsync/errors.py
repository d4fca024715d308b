"""Error types raised by the sync engine."""


class SyncError(Exception):
    """Base class for all sync failures."""


class NetworkError(SyncError):
    """The remote could not be reached (connection refused, timeout)."""


class ProtocolError(SyncError):
    """The remote answered with a failure status or an unreadable body."""

    def __init__(self, message: str, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class HostIOError(SyncError):
    """A local read, create or delete on the vault failed."""


class ValidationError(SyncError):
    """The user identity is missing or malformed."""
