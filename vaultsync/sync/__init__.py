"""Synchronization engine components.

Bootstrap reconciliation on first contact with a vault, incremental
per-change propagation, and the suppression gate between them.
"""

from .bootstrap import BootstrapResult, BootstrapStatus, BootstrapSynchronizer
from .guard import EventSuppressionGuard
from .incremental import IncrementalSynchronizer, PathSequencer
from .remote_client import FileRecord, HandshakeResult, RemoteSyncClient, VaultStatus

__all__ = [
    "BootstrapResult",
    "BootstrapStatus",
    "BootstrapSynchronizer",
    "EventSuppressionGuard",
    "FileRecord",
    "HandshakeResult",
    "IncrementalSynchronizer",
    "PathSequencer",
    "RemoteSyncClient",
    "VaultStatus",
]
