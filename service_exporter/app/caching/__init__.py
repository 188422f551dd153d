"""
Exporter caching package.

Cache stores keep the last successfully fetched payload per (client, query)
and guard each key with a multiple-reader / single-writer lock.
"""

from .cache_store import CacheEntry, CacheStore, FileCacheStore, MemoryCacheStore
from .locks import KeyedLocks, ReadWriteLock

__all__ = [
    "CacheEntry",
    "CacheStore",
    "FileCacheStore",
    "MemoryCacheStore",
    "KeyedLocks",
    "ReadWriteLock",
]
