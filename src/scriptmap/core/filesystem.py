# src/scriptmap/core/filesystem.py
"""Filesystem handles bound into script runtimes.

Two handles are exposed to every script:
- dfs: the distributed (shared) filesystem, rooted at the job's shared root.
  Scripts are loaded from here and materialized datasets live here.
- local: a worker-private scratch directory, created with the worker and
  removed when the worker is destroyed.

Both are read/write. Paths are relative to the handle's root; absolute paths
are accepted only if they fall inside the root.
"""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path
from typing import IO, Any


class FileSystemHandle:
    """Read/write access to a directory tree.

    Raises:
        ValueError: For any path resolving outside the root
    """

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, path: str | Path) -> Path:
        """Map a handle-relative path onto the real filesystem."""
        candidate = Path(path)
        full = candidate.resolve() if candidate.is_absolute() else (self._root / candidate).resolve()
        if full != self._root and self._root not in full.parents:
            raise ValueError(f"path {str(path)!r} escapes filesystem root {self._root}")
        return full

    def exists(self, path: str | Path) -> bool:
        return self.resolve(path).exists()

    def open(self, path: str | Path, mode: str = "r", encoding: str | None = None) -> IO[Any]:
        full = self.resolve(path)
        if any(flag in mode for flag in "wax"):
            full.parent.mkdir(parents=True, exist_ok=True)
        if "b" in mode:
            return full.open(mode)
        return full.open(mode, encoding=encoding or "utf-8")

    def read_text(self, path: str | Path, encoding: str = "utf-8") -> str:
        return self.resolve(path).read_text(encoding=encoding)

    def write_text(self, path: str | Path, data: str, encoding: str = "utf-8") -> None:
        full = self.resolve(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_text(data, encoding=encoding)

    def read_bytes(self, path: str | Path) -> bytes:
        return self.resolve(path).read_bytes()

    def write_bytes(self, path: str | Path, data: bytes) -> None:
        full = self.resolve(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_bytes(data)

    def ls(self, path: str | Path = ".") -> list[str]:
        """Sorted entry names of a directory."""
        return sorted(entry.name for entry in self.resolve(path).iterdir())

    def mkdirs(self, path: str | Path) -> Path:
        full = self.resolve(path)
        full.mkdir(parents=True, exist_ok=True)
        return full

    def rm(self, path: str | Path, recursive: bool = False) -> None:
        full = self.resolve(path)
        if full == self._root:
            raise ValueError("refusing to remove filesystem root")
        if full.is_dir():
            if not recursive:
                raise IsADirectoryError(f"{path} is a directory (pass recursive=True)")
            shutil.rmtree(full)
        else:
            full.unlink()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self._root)!r})"


class DistributedFileSystem(FileSystemHandle):
    """Shared filesystem visible to every worker."""


class LocalFileSystem(FileSystemHandle):
    """Worker-private scratch space, scoped to the worker's lifetime."""

    def __init__(self, root: Path | str, *, owned: bool = False) -> None:
        super().__init__(root)
        self._owned = owned
        self._closed = False

    @classmethod
    def scratch(cls, prefix: str = "scriptmap-worker-") -> LocalFileSystem:
        """Create a fresh temporary directory owned by this handle."""
        return cls(tempfile.mkdtemp(prefix=prefix), owned=True)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Remove the scratch directory if this handle created it."""
        if self._closed:
            return
        self._closed = True
        if self._owned:
            shutil.rmtree(self.root, ignore_errors=True)

    def __enter__(self) -> LocalFileSystem:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
