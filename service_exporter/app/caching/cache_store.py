"""
Cache stores for last-known-good query results.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import tempfile
import time
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional, Protocol, Union, runtime_checkable

from shared.errors import StoreIOError
from shared.logging import get_logger

from ..domain.cache_key import CacheKey
from .locks import KeyedLocks


CACHE_EXTENSION = ".json"

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheEntry:
    """Stored payload and the POSIX time it was written."""

    payload: bytes
    stored_at: float

    def age(self, now: float) -> float:
        return now - self.stored_at

    def is_expired(self, lifetime: timedelta, now: float) -> bool:
        return self.age(now) > lifetime.total_seconds()


@runtime_checkable
class CacheStore(Protocol):
    """Keyed get/put contract shared by all cache backends."""

    async def get(self, key: CacheKey) -> Optional[CacheEntry]:
        """Return the stored entry, or None when absent. Raises ``StoreIOError``."""
        ...

    async def put(self, key: CacheKey, payload: bytes) -> None:
        """Overwrite the entry for ``key``. Raises ``StoreIOError``."""
        ...

    async def is_expired(self, key: CacheKey, lifetime: timedelta) -> bool:
        """True when older than ``lifetime``, absent or unreadable. Never raises."""
        ...

    def now(self) -> float:
        ...


class _LockedCacheStore:
    """Applies the per-key reader/writer discipline around backend reads and writes."""

    def __init__(self, *, clock: Clock = time.time):
        self._clock = clock
        self._locks = KeyedLocks()
        self.logger = get_logger("exporter.cache_store")

    def now(self) -> float:
        return self._clock()

    async def _read(self, key: CacheKey) -> Optional[CacheEntry]:
        raise NotImplementedError

    async def _write(self, key: CacheKey, payload: bytes) -> None:
        raise NotImplementedError

    async def get(self, key: CacheKey) -> Optional[CacheEntry]:
        async with self._locks.reading(key):
            return await self._read(key)

    async def put(self, key: CacheKey, payload: bytes) -> None:
        async with self._locks.writing(key):
            await self._write(key, bytes(payload))

    async def is_expired(self, key: CacheKey, lifetime: timedelta) -> bool:
        try:
            entry = await self.get(key)
        except StoreIOError as exc:
            self.logger.warning("Cache entry unreadable; treating as expired", key=str(key), error=exc.details)
            return True
        if entry is None:
            return True
        return entry.is_expired(lifetime, self.now())

    async def age(self, key: CacheKey) -> Optional[float]:
        """Seconds since ``key`` was stored, or None when absent."""
        entry = await self.get(key)
        if entry is None:
            return None
        return entry.age(self.now())


class MemoryCacheStore(_LockedCacheStore):
    """Process-local store; entries do not survive restarts."""

    def __init__(self, *, clock: Clock = time.time):
        super().__init__(clock=clock)
        self._entries: Dict[CacheKey, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def _read(self, key: CacheKey) -> Optional[CacheEntry]:
        return self._entries.get(key)

    async def _write(self, key: CacheKey, payload: bytes) -> None:
        self._entries[key] = CacheEntry(payload=payload, stored_at=self.now())


class FileCacheStore(_LockedCacheStore):
    """
    Filesystem store laid out as ``<root>/<client>/<query>.json``.

    Freshness comes from the file's modification time. Writes land in a
    temporary file in the same directory and are renamed over the entry, so a
    reader (in this or another process) sees either the old or the new bytes.
    """

    def __init__(self, root: Union[str, Path], *, clock: Clock = time.time):
        super().__init__(clock=clock)
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: CacheKey) -> Path:
        return self._root / key.client_id / f"{key.query_name}{CACHE_EXTENSION}"

    def ensure_namespaces(self, client_ids: Iterable[str]) -> None:
        """Create one directory per client. Raises ``StoreIOError``."""
        for client_id in client_ids:
            namespace = self._root / client_id
            try:
                namespace.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise StoreIOError(
                    f"Cannot create cache directory {namespace}",
                    details={"path": str(namespace), "error": str(exc)},
                ) from exc

    async def _read(self, key: CacheKey) -> Optional[CacheEntry]:
        return await asyncio.to_thread(self._read_sync, key)

    async def _write(self, key: CacheKey, payload: bytes) -> None:
        await asyncio.to_thread(self._write_sync, key, payload)

    def _read_sync(self, key: CacheKey) -> Optional[CacheEntry]:
        path = self.path_for(key)
        try:
            with path.open("rb") as handle:
                stored_at = os.fstat(handle.fileno()).st_mtime
                payload = handle.read()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreIOError(
                "Failed to read cache",
                details={"key": str(key), "path": str(path), "error": str(exc)},
            ) from exc
        return CacheEntry(payload=payload, stored_at=stored_at)

    def _write_sync(self, key: CacheKey, payload: bytes) -> None:
        path = self.path_for(key)
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
            ) as handle:
                tmp_name = handle.name
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as exc:
            raise StoreIOError(
                "Failed to write cache",
                details={"key": str(key), "path": str(path), "error": str(exc)},
            ) from exc
        finally:
            if tmp_name is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
