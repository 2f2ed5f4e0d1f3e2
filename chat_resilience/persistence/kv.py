"""
Key-value persistence substrate.

The resilience layer only needs get/set/remove of byte strings under a
handful of fixed keys. Two implementations are provided:
- MemoryKeyValueStore: process-local, for tests and ephemeral sessions
- FileKeyValueStore: one file per key with atomic temp file + rename writes
"""

from __future__ import annotations

import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

import aiofiles
import aiofiles.os

from ..exceptions import StorageIOError

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class KeyValueStore(ABC):
    """Abstract async byte-string store."""

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Return the value stored under ``key``, or None if absent."""
        pass

    @abstractmethod
    async def set(self, key: str, value: bytes) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete ``key``. Removing a missing key is not an error."""
        pass


class MemoryKeyValueStore(KeyValueStore):
    """Dictionary-backed store."""

    def __init__(self, initial: dict[str, bytes] | None = None):
        self._data: dict[str, bytes] = dict(initial or {})

    async def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class FileKeyValueStore(KeyValueStore):
    """Directory-backed store, one file per key.

    Keys are mapped to file names by replacing characters outside
    ``[A-Za-z0-9_.-]``; ``@vector_db`` becomes ``_vector_db.bin``. The
    mapping is not injective (``@a`` and ``_a`` share ``_a.bin``), so callers
    must not use keys that differ only in replaced characters. The four
    snapshot keys map to distinct files.
    """

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path)

    def _path_for(self, key: str) -> Path:
        return self.base_path / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.bin"

    async def get(self, key: str) -> bytes | None:
        path = self._path_for(key)
        try:
            if not await aiofiles.os.path.exists(path):
                return None
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except OSError as e:
            raise StorageIOError("get", key, e) from e

    async def set(self, key: str, value: bytes) -> None:
        path = self._path_for(key)
        try:
            await aiofiles.os.makedirs(self.base_path, exist_ok=True)
        except OSError as e:
            raise StorageIOError("create_directory", str(self.base_path), e) from e

        fd, temp_path = tempfile.mkstemp(dir=self.base_path, prefix=".tmp_", suffix=".bin")
        try:
            os.close(fd)
            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(value)
                await f.flush()
                os.fsync(f.fileno())

            await aiofiles.os.replace(temp_path, path)
        except Exception as e:
            try:
                await aiofiles.os.remove(temp_path)
            except OSError:
                pass
            raise StorageIOError("set", key, e) from e

    async def remove(self, key: str) -> None:
        path = self._path_for(key)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageIOError("remove", key, e) from e
