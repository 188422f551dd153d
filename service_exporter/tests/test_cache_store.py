"""
Unit tests for cache stores and per-key locks.
"""

import asyncio
import os
import time
from datetime import timedelta

import pytest

from service_exporter.app.caching.cache_store import (
    CacheEntry,
    CacheStore,
    FileCacheStore,
    MemoryCacheStore,
)
from service_exporter.app.caching.locks import KeyedLocks, ReadWriteLock
from service_exporter.app.domain.cache_key import CacheKey
from shared.errors import StoreIOError


KEY = CacheKey("billing", "invoices")


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestMemoryCacheStore:
    """Test cases for MemoryCacheStore."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def store(self, clock):
        return MemoryCacheStore(clock=clock)

    def test_satisfies_protocol(self, store):
        assert isinstance(store, CacheStore)

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store):
        assert await store.get(KEY) is None

    @pytest.mark.asyncio
    async def test_put_then_get(self, store, clock):
        await store.put(KEY, b'{"data":{}}')

        entry = await store.get(KEY)

        assert entry == CacheEntry(payload=b'{"data":{}}', stored_at=clock.now)

    @pytest.mark.asyncio
    async def test_put_overwrites(self, store, clock):
        await store.put(KEY, b"old")
        clock.advance(10)
        await store.put(KEY, b"new")

        entry = await store.get(KEY)

        assert entry.payload == b"new"
        assert entry.stored_at == clock.now

    @pytest.mark.asyncio
    async def test_repeated_gets_return_identical_bytes(self, store):
        await store.put(KEY, b"payload")

        results = [(await store.get(KEY)).payload for _ in range(5)]

        assert results == [b"payload"] * 5

    @pytest.mark.asyncio
    async def test_is_expired_when_absent(self, store):
        assert await store.is_expired(KEY, timedelta(minutes=5)) is True

    @pytest.mark.asyncio
    async def test_is_expired_boundary(self, store, clock):
        await store.put(KEY, b"payload")

        clock.advance(300)
        assert await store.is_expired(KEY, timedelta(minutes=5)) is False

        clock.advance(0.001)
        assert await store.is_expired(KEY, timedelta(minutes=5)) is True

    @pytest.mark.asyncio
    async def test_age(self, store, clock):
        assert await store.age(KEY) is None

        await store.put(KEY, b"payload")
        clock.advance(42)

        assert await store.age(KEY) == 42

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, store):
        other = CacheKey("billing", "payments")
        await store.put(KEY, b"invoices")
        await store.put(other, b"payments")

        assert (await store.get(KEY)).payload == b"invoices"
        assert (await store.get(other)).payload == b"payments"
        assert len(store) == 2


class TestFileCacheStore:
    """Test cases for FileCacheStore."""

    @pytest.fixture
    def store(self, tmp_path):
        return FileCacheStore(tmp_path / "cache")

    def test_satisfies_protocol(self, store):
        assert isinstance(store, CacheStore)

    def test_layout(self, store, tmp_path):
        assert store.path_for(KEY) == tmp_path / "cache" / "billing" / "invoices.json"

    def test_ensure_namespaces_creates_client_directories(self, store):
        store.ensure_namespaces(["billing", "inventory"])

        assert (store.root / "billing").is_dir()
        assert (store.root / "inventory").is_dir()

    def test_ensure_namespaces_failure_raises_store_io_error(self, tmp_path):
        blocker = tmp_path / "cache"
        blocker.write_text("not a directory")
        store = FileCacheStore(blocker)

        with pytest.raises(StoreIOError):
            store.ensure_namespaces(["billing"])

    @pytest.mark.asyncio
    async def test_put_then_get(self, store):
        before = time.time()
        await store.put(KEY, b'{"data":{}}')

        entry = await store.get(KEY)

        assert entry.payload == b'{"data":{}}'
        assert entry.stored_at >= before - 2
        assert store.path_for(KEY).read_bytes() == b'{"data":{}}'

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store):
        assert await store.get(KEY) is None

    @pytest.mark.asyncio
    async def test_put_leaves_no_temporary_files(self, store):
        await store.put(KEY, b"one")
        await store.put(KEY, b"two")

        assert sorted(p.name for p in (store.root / "billing").iterdir()) == ["invoices.json"]

    @pytest.mark.asyncio
    async def test_freshness_from_modification_time(self, store):
        await store.put(KEY, b"payload")
        path = store.path_for(KEY)

        assert await store.is_expired(KEY, timedelta(minutes=5)) is False

        stale = time.time() - 6 * 60
        os.utime(path, (stale, stale))

        assert await store.is_expired(KEY, timedelta(minutes=5)) is True

    @pytest.mark.asyncio
    async def test_entries_survive_new_store_instance(self, store):
        await store.put(KEY, b"durable")

        reopened = FileCacheStore(store.root)

        assert (await reopened.get(KEY)).payload == b"durable"

    @pytest.mark.asyncio
    async def test_unreadable_entry_raises_on_get_and_is_expired(self, store):
        store.path_for(KEY).mkdir(parents=True)

        with pytest.raises(StoreIOError):
            await store.get(KEY)

        assert await store.is_expired(KEY, timedelta(minutes=5)) is True

    @pytest.mark.asyncio
    async def test_write_failure_raises_store_io_error(self, tmp_path):
        blocker = tmp_path / "cache"
        blocker.write_text("not a directory")
        store = FileCacheStore(blocker)

        with pytest.raises(StoreIOError) as exc_info:
            await store.put(KEY, b"payload")

        assert exc_info.value.code == "STORE_IO_ERROR"

    @pytest.mark.asyncio
    async def test_concurrent_put_and_get_never_mix_payloads(self, store):
        first = b"a" * 256 * 1024
        second = b"b" * 256 * 1024
        await store.put(KEY, first)

        async def writer():
            for i in range(20):
                await store.put(KEY, first if i % 2 else second)

        async def reader():
            seen = []
            for _ in range(40):
                entry = await store.get(KEY)
                seen.append(entry.payload)
            return seen

        _, *reads = await asyncio.gather(writer(), reader(), reader())

        for payloads in reads:
            for payload in payloads:
                assert payload in (first, second)


class TestReadWriteLock:
    """Test cases for the reader/writer lock."""

    @pytest.mark.asyncio
    async def test_readers_share(self):
        lock = ReadWriteLock()

        async with lock.read():
            async with lock.read():
                assert lock.readers == 2

    @pytest.mark.asyncio
    async def test_writer_excludes_readers(self):
        lock = ReadWriteLock()
        events = []

        async def write():
            async with lock.write():
                events.append("write-start")
                await asyncio.sleep(0.01)
                events.append("write-end")

        async def read():
            await asyncio.sleep(0)
            async with lock.read():
                events.append("read")

        await asyncio.gather(write(), read())

        assert events == ["write-start", "write-end", "read"]

    @pytest.mark.asyncio
    async def test_writer_waits_for_active_readers(self):
        lock = ReadWriteLock()
        events = []

        async def read():
            async with lock.read():
                events.append("read-start")
                await asyncio.sleep(0.01)
                events.append("read-end")

        async def write():
            await asyncio.sleep(0)
            async with lock.write():
                events.append("write")

        await asyncio.gather(read(), write())

        assert events == ["read-start", "read-end", "write"]

    @pytest.mark.asyncio
    async def test_writes_are_serialized(self):
        lock = ReadWriteLock()
        active = []
        overlaps = []

        async def write(tag):
            async with lock.write():
                if active:
                    overlaps.append(tag)
                active.append(tag)
                await asyncio.sleep(0.001)
                active.remove(tag)

        await asyncio.gather(*(write(i) for i in range(10)))

        assert overlaps == []

    @pytest.mark.asyncio
    async def test_cancelled_writer_does_not_block_readers(self):
        lock = ReadWriteLock()

        async with lock.read():
            waiting = asyncio.ensure_future(lock.write().__aenter__())
            await asyncio.sleep(0)
            waiting.cancel()
            with pytest.raises(asyncio.CancelledError):
                await waiting

        async with lock.read():
            assert lock.readers == 1


class TestKeyedLocks:
    """Test cases for KeyedLocks."""

    @pytest.mark.asyncio
    async def test_locks_are_released_after_use(self):
        locks = KeyedLocks()

        async with locks.reading(KEY):
            assert len(locks) == 1
        async with locks.writing(KEY):
            assert len(locks) == 1

        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_distinct_keys_do_not_block(self):
        locks = KeyedLocks()
        other = CacheKey("billing", "payments")

        async with locks.writing(KEY):
            await asyncio.wait_for(_enter_write(locks, other), timeout=1)


async def _enter_write(locks, key):
    async with locks.writing(key):
        return True
