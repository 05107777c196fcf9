"""Document repository backends.

The routing layer only talks to the `Repository` protocol. Two backends are
provided: a directory on disk and an in-memory store for embedding and tests.
"""

from __future__ import annotations

import asyncio
import os
import posixpath
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Callable, Optional, Protocol

from .addressing import clean_path
from .errors import InvalidAddress, NotFound
from .locking import atomic_write_text, document_lock

LOCK_DIR_NAME = ".mcp-vault"


@dataclass
class DocumentStat:
    """Size and timestamps of a document."""
    size: int
    created: datetime
    modified: datetime


class Repository(Protocol):
    """Storage primitives consumed by the routing layer."""

    async def exists(self, path: str) -> bool: ...

    async def is_document(self, path: str) -> bool: ...

    async def read(self, path: str) -> str: ...

    async def write(self, path: str, content: str) -> None: ...

    async def create(self, path: str, content: str) -> None:
        """Create a document. Raises FileExistsError if it already exists."""
        ...

    async def modify(self, path: str, transform: Callable[[str], str]) -> str:
        """Read, transform and write a document under one lock."""
        ...

    async def list_all_paths(self) -> list[str]: ...

    async def create_directory(self, path: str) -> None: ...

    async def stat(self, path: str) -> DocumentStat: ...


class FilesystemRepository:
    """Documents stored as files below a root directory.

    Hidden entries (names starting with ".") are not part of the repository.
    """

    def __init__(self, root: Path, lock_timeout: float = 10.0):
        self.root = Path(root).resolve()
        self.lock_dir = self.root / LOCK_DIR_NAME / "locks"
        self.lock_timeout = lock_timeout

    def _full_path(self, path: str) -> Path:
        relative = clean_path(path)
        full = (self.root / relative).resolve()
        if full != self.root and self.root not in full.parents:
            raise InvalidAddress(f"Path escapes the vault: {path}")
        return full

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self._full_path(path).exists)

    async def is_document(self, path: str) -> bool:
        if not clean_path(path):
            return False
        return await asyncio.to_thread(self._full_path(path).is_file)

    def _read(self, path: str) -> str:
        full = self._full_path(path)
        if not full.is_file():
            raise NotFound(f"File not found: {path}")
        return full.read_text(encoding="utf-8")

    async def read(self, path: str) -> str:
        return await asyncio.to_thread(self._read, path)

    def _write(self, path: str, content: str) -> None:
        full = self._full_path(path)
        with document_lock(self.lock_dir, clean_path(path), timeout=self.lock_timeout):
            atomic_write_text(full, content)

    async def write(self, path: str, content: str) -> None:
        await asyncio.to_thread(self._write, path, content)

    def _create(self, path: str, content: str) -> None:
        full = self._full_path(path)
        with document_lock(self.lock_dir, clean_path(path), timeout=self.lock_timeout):
            if full.exists():
                raise FileExistsError(f"Document already exists: {path}")
            atomic_write_text(full, content)

    async def create(self, path: str, content: str) -> None:
        await asyncio.to_thread(self._create, path, content)

    def _modify(self, path: str, transform: Callable[[str], str]) -> str:
        full = self._full_path(path)
        with document_lock(self.lock_dir, clean_path(path), timeout=self.lock_timeout):
            if not full.is_file():
                raise NotFound(f"File not found: {path}")
            updated = transform(full.read_text(encoding="utf-8"))
            atomic_write_text(full, updated)
            return updated

    async def modify(self, path: str, transform: Callable[[str], str]) -> str:
        return await asyncio.to_thread(self._modify, path, transform)

    def _list_all_paths(self) -> list[str]:
        paths = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            rel_dir = Path(dirpath).relative_to(self.root).as_posix()
            for name in filenames:
                if name.startswith("."):
                    continue
                paths.append(name if rel_dir == "." else f"{rel_dir}/{name}")
        return sorted(paths)

    async def list_all_paths(self) -> list[str]:
        return await asyncio.to_thread(self._list_all_paths)

    async def create_directory(self, path: str) -> None:
        full = self._full_path(path)
        await asyncio.to_thread(full.mkdir, parents=True, exist_ok=True)

    def _stat(self, path: str) -> DocumentStat:
        full = self._full_path(path)
        if not full.is_file():
            raise NotFound(f"File not found: {path}")
        st = full.stat()
        return DocumentStat(
            size=st.st_size,
            created=datetime.fromtimestamp(st.st_ctime, tz=timezone.utc),
            modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        )

    async def stat(self, path: str) -> DocumentStat:
        return await asyncio.to_thread(self._stat, path)


class MemoryRepository:
    """Documents held in a dict keyed by canonical path.

    Writers to one path are serialized by an asyncio.Lock that only lives
    while someone holds or waits for it.
    """

    def __init__(self, documents: Optional[dict[str, str]] = None):
        self._documents: dict[str, str] = {}
        self._stats: dict[str, DocumentStat] = {}
        self._directories: set[str] = set()
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        for path, content in (documents or {}).items():
            self._store(clean_path(path), content)

    def _store(self, path: str, content: str) -> None:
        now = datetime.now(timezone.utc)
        created = self._stats[path].created if path in self._stats else now
        self._documents[path] = content
        self._stats[path] = DocumentStat(size=len(content.encode("utf-8")), created=created, modified=now)

    @asynccontextmanager
    async def _locked(self, path: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(path, asyncio.Lock())
        self._lock_users[path] = self._lock_users.get(path, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[path] -= 1
            if not self._lock_users[path]:
                del self._lock_users[path]
                del self._locks[path]

    async def exists(self, path: str) -> bool:
        path = clean_path(path)
        if path == "" or path in self._documents or path in self._directories:
            return True
        return any(doc.startswith(path + "/") for doc in self._documents)

    async def is_document(self, path: str) -> bool:
        return clean_path(path) in self._documents

    async def read(self, path: str) -> str:
        path = clean_path(path)
        if path not in self._documents:
            raise NotFound(f"File not found: {path}")
        return self._documents[path]

    async def write(self, path: str, content: str) -> None:
        path = clean_path(path)
        async with self._locked(path):
            self._store(path, content)

    async def create(self, path: str, content: str) -> None:
        path = clean_path(path)
        async with self._locked(path):
            if path in self._documents:
                raise FileExistsError(f"Document already exists: {path}")
            self._store(path, content)

    async def modify(self, path: str, transform: Callable[[str], str]) -> str:
        path = clean_path(path)
        async with self._locked(path):
            if path not in self._documents:
                raise NotFound(f"File not found: {path}")
            updated = transform(self._documents[path])
            self._store(path, updated)
            return updated

    async def list_all_paths(self) -> list[str]:
        return sorted(self._documents)

    async def create_directory(self, path: str) -> None:
        path = clean_path(path)
        while path:
            self._directories.add(path)
            path = posixpath.dirname(path)

    async def stat(self, path: str) -> DocumentStat:
        path = clean_path(path)
        if path not in self._stats:
            raise NotFound(f"File not found: {path}")
        return self._stats[path]
