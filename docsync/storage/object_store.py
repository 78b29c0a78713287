"""Key/value object store holding document content."""

from __future__ import annotations

import asyncio
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


def storage_key(project_id: str, path: str) -> str:
    """Deterministic object key for a project file."""
    return f"{project_id}/{path.lstrip('/')}"


@runtime_checkable
class ObjectStore(Protocol):
    """Minimal object store contract used by the sync engines."""

    async def put(self, key: str, data: bytes) -> None:
        """Store ``data`` under ``key``, overwriting any previous value."""
        ...

    async def get(self, key: str) -> bytes | None:
        """Return the bytes stored under ``key``, or None when absent."""
        ...


@dataclass
class FilesystemObjectStore:
    """Object store backed by a directory; keys map to relative file paths."""

    root: Path

    def _resolve(self, key: str) -> Path:
        """Resolve a key inside root, raising ValueError on traversal attempts."""
        target = (self.root / key.lstrip("/")).resolve()
        if not target.is_relative_to(self.root.resolve()):
            msg = f"Invalid object key: {key}"
            raise ValueError(msg)
        return target

    def _write(self, key: str, data: bytes) -> None:
        target = self._resolve(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        # Each writer gets its own temp file; the rename publishes a complete object.
        tmp: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                dir=target.parent, prefix=f".{target.name}.", suffix=".tmp", delete=False
            ) as handle:
                tmp = Path(handle.name)
                handle.write(data)
            tmp.replace(target)
        except OSError:
            if tmp is not None:
                tmp.unlink(missing_ok=True)
            raise

    def _read(self, key: str) -> bytes | None:
        target = self._resolve(key)
        if not target.is_file():
            return None
        return target.read_bytes()

    async def put(self, key: str, data: bytes) -> None:
        await asyncio.to_thread(self._write, key, data)
        logger.debug("Stored object %s (%d bytes)", key, len(data))

    async def get(self, key: str) -> bytes | None:
        return await asyncio.to_thread(self._read, key)
