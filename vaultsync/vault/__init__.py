"""Local vault access: file tree operations and change watching."""

from .tree import FileEntry, FileEvent, FileEventKind, FileTree, LocalFileTree
from .watcher import VaultWatcher

__all__ = [
    "FileEntry",
    "FileEvent",
    "FileEventKind",
    "FileTree",
    "LocalFileTree",
    "VaultWatcher",
]
