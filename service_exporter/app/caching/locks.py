"""
Per-key reader/writer locks for cache entries.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable


class ReadWriteLock:
    """asyncio multiple-reader / single-writer lock.

    Writers take precedence over newly arriving readers so a steady stream of
    cache hits cannot starve a refresh.
    """

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def writing(self) -> bool:
        return self._writer

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and not self._waiting_writers)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            self._waiting_writers += 1
            try:
                await self._cond.wait_for(lambda: not self._writer and not self._readers)
            except BaseException:
                self._waiting_writers -= 1
                self._cond.notify_all()
                raise
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class KeyedLocks:
    """Lazily created ``ReadWriteLock`` per key.

    Locks are reference counted and dropped once no task holds or awaits them,
    so arbitrary request keys do not accumulate.
    """

    def __init__(self) -> None:
        self._locks: Dict[Hashable, ReadWriteLock] = {}
        self._users: Dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def _checkout(self, key: Hashable) -> ReadWriteLock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = ReadWriteLock()
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _release(self, key: Hashable) -> None:
        remaining = self._users[key] - 1
        if remaining:
            self._users[key] = remaining
        else:
            del self._users[key]
            del self._locks[key]

    @asynccontextmanager
    async def reading(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._checkout(key)
        try:
            async with lock.read():
                yield
        finally:
            self._release(key)

    @asynccontextmanager
    async def writing(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._checkout(key)
        try:
            async with lock.write():
                yield
        finally:
            self._release(key)
