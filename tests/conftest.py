"""Shared fixtures: an in-memory vault and a mocked remote."""

from pathlib import PurePosixPath
from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from vaultsync.errors import HostIOError
from vaultsync.state import MemoryStateBackend, SyncStateStore
from vaultsync.sync.remote_client import RemoteSyncClient
from vaultsync.vault.tree import FileEntry, FileEvent, FileEventKind, FileTree


class MemoryFileTree(FileTree):
    """A FileTree kept in dicts that reports its own mutations like a host would."""

    def __init__(self, files: dict[str, str] | None = None):
        self.files: dict[str, str] = {}
        self.folders: set[str] = set()
        self.listener: Callable[[FileEvent], None] | None = None
        for path, content in (files or {}).items():
            self._add_parents(path)
            self.files[path] = content

    def _add_parents(self, path: str) -> None:
        for parent in PurePosixPath(path).parents:
            if str(parent) != ".":
                self.folders.add(parent.as_posix())

    def _emit(self, kind: FileEventKind, path: str, is_folder: bool) -> None:
        if self.listener:
            self.listener(FileEvent(kind, FileEntry(path, is_folder=is_folder)))

    async def read(self, path: str) -> str:
        if path not in self.files:
            raise HostIOError(f"No such file: {path}")
        return self.files[path]

    async def create_folder(self, path: str) -> None:
        if path in self.folders:
            return
        self.folders.add(path)
        self._emit(FileEventKind.CREATE, path, True)

    async def create(self, path: str, content: str) -> None:
        if path in self.files:
            raise HostIOError(f"File exists: {path}")
        self.files[path] = content
        self._emit(FileEventKind.CREATE, path, False)

    async def delete(self, path: str, recursive: bool = False) -> None:
        if path in self.files:
            del self.files[path]
            self._emit(FileEventKind.DELETE, path, False)
            return
        if path not in self.folders:
            raise HostIOError(f"No such entry: {path}")
        prefix = f"{path}/"
        children = [p for p in self.files if p.startswith(prefix)]
        subfolders = [f for f in self.folders if f.startswith(prefix)]
        if (children or subfolders) and not recursive:
            raise HostIOError(f"Folder not empty: {path}")
        for child in children:
            del self.files[child]
            self._emit(FileEventKind.DELETE, child, False)
        for sub in subfolders:
            self.folders.discard(sub)
        self.folders.discard(path)
        self._emit(FileEventKind.DELETE, path, True)

    async def list_files(self) -> list[FileEntry]:
        return [FileEntry(p) for p in sorted(self.files)]

    async def list_folders(self) -> list[FileEntry]:
        return [FileEntry(f, is_folder=True) for f in sorted(self.folders)]

    def is_tracked(self, path: str) -> bool:
        return True


def make_remote() -> MagicMock:
    """A RemoteSyncClient double whose calls all succeed."""
    client = MagicMock(spec=RemoteSyncClient)
    client.base_url = "http://remote.test"
    client.handshake = AsyncMock()
    client.pull_all = AsyncMock(return_value=[])
    client.push_all = AsyncMock(return_value=None)
    client.notify_create = AsyncMock(return_value=None)
    client.notify_modify = AsyncMock(return_value=None)
    client.notify_rename = AsyncMock(return_value=None)
    client.notify_delete = AsyncMock(return_value=None)
    client.close = AsyncMock(return_value=None)
    return client


def notify_calls(client: MagicMock) -> int:
    """Total number of incremental notifications sent."""
    return sum(
        getattr(client, name).await_count
        for name in ("notify_create", "notify_modify", "notify_rename", "notify_delete")
    )


@pytest.fixture
def store():
    """A loaded store on in-memory persistence."""
    store = SyncStateStore(MemoryStateBackend())
    store.load()
    return store


@pytest.fixture
def bound_store(store):
    """A store already bound to vault v1."""
    store.bind_vault("v1")
    return store


@pytest.fixture
def remote():
    return make_remote()


@pytest.fixture
def tree():
    return MemoryFileTree()
