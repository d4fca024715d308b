"""The local file tree the engine keeps in sync.

Paths handed to and returned from a FileTree are always relative to the vault
root and use forward slashes, matching the wire format.
"""

import asyncio
import logging
import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from functools import partial
from pathlib import Path, PurePosixPath
from typing import Any, Callable

from ..errors import HostIOError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileEntry:
    """A file or folder in the tree."""

    path: str
    is_folder: bool = False

    @property
    def name(self) -> str:
        return PurePosixPath(self.path).name


class FileEventKind(Enum):
    CREATE = "create"
    MODIFY = "modify"
    RENAME = "rename"
    DELETE = "delete"


@dataclass(frozen=True)
class FileEvent:
    """A change observed on the tree. old_path is only set for renames."""

    kind: FileEventKind
    entry: FileEntry
    old_path: str | None = None


class FileTree(ABC):
    """Read, create, delete and enumerate entries of a vault."""

    @abstractmethod
    async def read(self, path: str) -> str:
        """Return the full text of a file."""

    @abstractmethod
    async def create_folder(self, path: str) -> None:
        """Create a folder. An existing folder is not an error."""

    @abstractmethod
    async def create(self, path: str, content: str) -> None:
        """Create a new file with the given content."""

    @abstractmethod
    async def delete(self, path: str, recursive: bool = False) -> None:
        """Delete a file, or a folder (with its contents if recursive)."""

    @abstractmethod
    async def list_files(self) -> list[FileEntry]:
        """List every synced file."""

    @abstractmethod
    async def list_folders(self) -> list[FileEntry]:
        """List every folder except the root."""

    @abstractmethod
    def is_tracked(self, path: str) -> bool:
        """Whether a file at this path takes part in sync."""


def _is_hidden(rel: PurePosixPath) -> bool:
    return any(part.startswith(".") for part in rel.parts)


class LocalFileTree(FileTree):
    """A FileTree backed by a directory on disk.

    Blocking filesystem calls run in the default executor so the event loop
    keeps dispatching while large vaults are read or cleared.
    """

    def __init__(self, root: str | Path, extensions: list[str] | None = None):
        """Initialize the tree.

        Args:
            root: Vault directory.
            extensions: File extensions that take part in sync. None or an
                empty list means every non-hidden file.
        """
        self.root = Path(root).expanduser().resolve()
        self.extensions = [e.lower() for e in extensions] if extensions else []

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, partial(func, *args))

    def resolve(self, path: str) -> Path:
        """Map a relative vault path to an absolute one inside the root."""
        rel = PurePosixPath(path.strip("/"))
        if not rel.parts or ".." in rel.parts:
            raise HostIOError(f"Invalid vault path: {path!r}")
        return self.root.joinpath(*rel.parts)

    def relative(self, abs_path: str | Path) -> str | None:
        """Map an absolute path back to a vault path, or None if outside."""
        try:
            rel = Path(abs_path).resolve().relative_to(self.root)
        except ValueError:
            return None
        posix = rel.as_posix()
        return None if posix == "." else posix

    def is_tracked(self, path: str) -> bool:
        rel = PurePosixPath(path)
        if _is_hidden(rel):
            return False
        if not self.extensions:
            return True
        return rel.suffix.lower() in self.extensions

    async def read(self, path: str) -> str:
        target = self.resolve(path)
        try:
            return await self._run(target.read_text, "utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise HostIOError(f"Cannot read {path}: {e}") from e

    async def create_folder(self, path: str) -> None:
        target = self.resolve(path)
        try:
            await self._run(partial(target.mkdir, parents=True, exist_ok=True))
        except OSError as e:
            raise HostIOError(f"Cannot create folder {path}: {e}") from e

    def _create_file(self, target: Path, content: str) -> None:
        # "x" mode: creating over an existing file is an error
        with open(target, "x", encoding="utf-8") as f:
            f.write(content)

    async def create(self, path: str, content: str) -> None:
        target = self.resolve(path)
        try:
            await self._run(self._create_file, target, content)
        except OSError as e:
            raise HostIOError(f"Cannot create {path}: {e}") from e
        logger.debug(f"Created file: {path}")

    def _delete(self, target: Path, recursive: bool) -> None:
        if target.is_dir():
            if recursive:
                shutil.rmtree(target)
            else:
                target.rmdir()
        else:
            target.unlink()

    async def delete(self, path: str, recursive: bool = False) -> None:
        target = self.resolve(path)
        try:
            await self._run(self._delete, target, recursive)
        except OSError as e:
            raise HostIOError(f"Cannot delete {path}: {e}") from e
        logger.debug(f"Deleted: {path}")

    def _walk(self) -> tuple[list[FileEntry], list[FileEntry]]:
        files: list[FileEntry] = []
        folders: list[FileEntry] = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            # Prune hidden directories in place so os.walk skips them
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            base = Path(dirpath).relative_to(self.root)
            for name in dirnames:
                folders.append(FileEntry((base / name).as_posix(), is_folder=True))
            for name in sorted(filenames):
                rel = (base / name).as_posix()
                if self.is_tracked(rel):
                    files.append(FileEntry(rel))
        return files, folders

    async def list_files(self) -> list[FileEntry]:
        try:
            files, _ = await self._run(self._walk)
        except OSError as e:
            raise HostIOError(f"Cannot list vault {self.root}: {e}") from e
        return files

    async def list_folders(self) -> list[FileEntry]:
        try:
            _, folders = await self._run(self._walk)
        except OSError as e:
            raise HostIOError(f"Cannot list vault {self.root}: {e}") from e
        return folders
