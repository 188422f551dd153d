"""
Domain layer for the exporter: cache keys and request dispatching.
"""

from .cache_key import CacheKey
from .dispatcher import DispatchOutcome, DispatchResult, QueryDispatcher

__all__ = ["CacheKey", "DispatchOutcome", "DispatchResult", "QueryDispatcher"]
