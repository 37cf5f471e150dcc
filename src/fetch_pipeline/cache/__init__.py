"""
Response cache with TTL and lazy eviction.
"""
from .cache import (
    ResponseCache,
    CacheEvent,
    CacheEventType,
    CacheEventListener,
    CACHED_STATUS_TEXT,
    DEFAULT_TTL_MS,
)
from .stores import CacheStore, MemoryCacheStore


__all__ = [
    "ResponseCache",
    "CacheEvent",
    "CacheEventType",
    "CacheEventListener",
    "CACHED_STATUS_TEXT",
    "DEFAULT_TTL_MS",
    "CacheStore",
    "MemoryCacheStore",
]
