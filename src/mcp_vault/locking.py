"""File locking utilities for concurrent document writes."""

from __future__ import annotations

import hashlib
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import portalocker


def lock_path_for(lock_dir: Path, key: str) -> Path:
    """Map a document key to its lock file inside `lock_dir`.

    Lock files live outside the document tree so they never show up in
    listings.
    """
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()
    return lock_dir / f"{digest}.lock"


@contextmanager
def document_lock(lock_dir: Path, key: str, timeout: float = 10.0) -> Generator[None, None, None]:
    """Acquire an exclusive lock for a document.

    Args:
        lock_dir: Directory holding lock files
        key: Canonical document path
        timeout: Seconds to wait for lock

    Raises:
        portalocker.LockException: If lock cannot be acquired
    """
    lock_path = lock_path_for(lock_dir, key)
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    if not lock_path.exists():
        lock_path.touch()

    with portalocker.Lock(lock_path, timeout=timeout):
        yield


def atomic_write_text(path: Path, content: str, encoding: str = "utf-8") -> None:
    """Write text to a file atomically.

    Writes to a temporary file in the target directory, then replaces the
    target, so readers see either the old or the new content.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)

    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as f:
            f.write(content)
        os.replace(tmp_path, path)

    except BaseException:
        if tmp_path.exists():
            tmp_path.unlink()
        raise
