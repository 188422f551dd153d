"""
Request dispatcher: serve cached query results or refresh them from upstream.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import AsyncIterator, Dict, Optional, Tuple, TYPE_CHECKING

from shared.errors import ExporterError, StoreIOError
from shared.logging import get_logger, set_query_context

from .cache_key import CacheKey

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..adapters.upstream_client import UpstreamClient
    from ..caching.cache_store import CacheEntry, CacheStore
    from ..queries.query_loader import QueryLoader
    from ..registry.client_registry import ClientEntry, ClientRegistry
    from shared.metrics import MetricsCollector


DEFAULT_CACHE_LIFETIME = timedelta(minutes=60)


class DispatchOutcome(str, Enum):
    """How a successful request was answered."""

    HIT = "HIT"
    REFRESH = "REFRESH"


@dataclass(frozen=True)
class DispatchResult:
    key: CacheKey
    payload: bytes
    outcome: DispatchOutcome


class QueryDispatcher:
    """
    Decides per request whether to serve the cached payload or refresh it.

    A fresh entry is served as-is. A missing or stale entry triggers
    load -> execute -> put. Refreshes of one key are single-flight: requests
    that arrive while a refresh is running wait for it and then serve the
    entry it wrote, or fail with the same error when it failed. A failed
    ``put`` is logged and the fetched payload is still returned.
    """

    def __init__(
        self,
        registry: "ClientRegistry",
        loader: "QueryLoader",
        upstream: "UpstreamClient",
        store: "CacheStore",
        *,
        default_lifetime: timedelta = DEFAULT_CACHE_LIFETIME,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.registry = registry
        self.loader = loader
        self.upstream = upstream
        self.store = store
        self.default_lifetime = default_lifetime
        self.metrics = metrics
        self.logger = get_logger("exporter.dispatcher")
        self._refresh_locks: Dict[CacheKey, asyncio.Lock] = {}
        self._refresh_waiters: Dict[CacheKey, int] = {}
        self._refresh_failures: Dict[CacheKey, Tuple[int, ExporterError]] = {}
        self._sequence = itertools.count()

    async def dispatch(self, path: str) -> DispatchResult:
        """Serve ``/queries/<client>/<query>``. Raises ``ExporterError`` subclasses."""
        key = CacheKey.from_path(path)
        return await self.dispatch_key(key)

    async def dispatch_key(self, key: CacheKey) -> DispatchResult:
        set_query_context(key.client_id, key.query_name)
        client = self.registry.require(key.client_id)
        lifetime = self.lifetime_for(client)

        entry = await self._fresh_entry(key, lifetime)
        if entry is not None:
            self._count("cache_hits_total", client_id=key.client_id)
            return DispatchResult(key=key, payload=entry.payload, outcome=DispatchOutcome.HIT)

        self._count("cache_misses_total", client_id=key.client_id)

        # The refresh runs in its own task so a disconnecting caller cannot
        # cancel the upstream call or the cache write.
        refresh = asyncio.ensure_future(self._refresh(key, client, lifetime))
        refresh.add_done_callback(_consume_result)
        return await asyncio.shield(refresh)

    def lifetime_for(self, client: "ClientEntry") -> timedelta:
        return client.resolve_lifetime(self.default_lifetime)

    async def _fresh_entry(self, key: CacheKey, lifetime: timedelta) -> Optional["CacheEntry"]:
        try:
            entry = await self.store.get(key)
        except StoreIOError as exc:
            self.logger.warning("Cache read failed; refreshing", key=str(key), details=exc.details)
            self._count("cache_store_failures_total", operation="read")
            return None
        if entry is None or entry.is_expired(lifetime, self.store.now()):
            return None
        return entry

    async def _refresh(self, key: CacheKey, client: "ClientEntry", lifetime: timedelta) -> DispatchResult:
        ticket = next(self._sequence)
        async with self._refresh_lock(key):
            entry = await self._fresh_entry(key, lifetime)
            if entry is not None:
                self.logger.debug("Served entry written by concurrent refresh", key=str(key))
                return DispatchResult(key=key, payload=entry.payload, outcome=DispatchOutcome.HIT)

            # A refresh that failed while this request was queued answers it too.
            failure = self._refresh_failures.get(key)
            if failure is not None and failure[0] > ticket:
                self.logger.debug("Sharing failure of concurrent refresh", key=str(key), code=failure[1].code)
                raise failure[1]

            start_time = time.time()
            try:
                query = await self.loader.load(key.client_id, key.query_name)
                payload = await self.upstream.execute(query, client, client_id=key.client_id)
            except ExporterError as exc:
                self._refresh_failures[key] = (next(self._sequence), exc)
                self._count("cache_refresh_total", client_id=key.client_id, status="error")
                raise
            self._refresh_failures.pop(key, None)

            try:
                await self.store.put(key, payload)
            except StoreIOError as exc:
                self.logger.error("Failed to write cache", key=str(key), details=exc.details)
                self._count("cache_store_failures_total", operation="write")

            self._count("cache_refresh_total", client_id=key.client_id, status="ok")
            self.logger.info(
                "Refreshed cache",
                key=str(key),
                bytes=len(payload),
                lifetime_seconds=lifetime.total_seconds(),
                duration_ms=round((time.time() - start_time) * 1000, 2),
            )
            return DispatchResult(key=key, payload=payload, outcome=DispatchOutcome.REFRESH)

    @asynccontextmanager
    async def _refresh_lock(self, key: CacheKey) -> AsyncIterator[None]:
        lock = self._refresh_locks.get(key)
        if lock is None:
            lock = self._refresh_locks[key] = asyncio.Lock()
        self._refresh_waiters[key] = self._refresh_waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refresh_waiters[key] -= 1
            if not self._refresh_waiters[key]:
                del self._refresh_waiters[key]
                del self._refresh_locks[key]
                self._refresh_failures.pop(key, None)

    def _count(self, metric_name: str, **labels) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric_name, **labels)


def _consume_result(task: "asyncio.Future") -> None:
    # Marks the outcome as retrieved when the awaiting request was cancelled;
    # failures were already logged inside the refresh.
    if not task.cancelled():
        task.exception()
