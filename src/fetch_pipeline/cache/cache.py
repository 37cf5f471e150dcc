"""
TTL response cache keyed by request fingerprint.
"""
import copy
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from ..types import CacheEntry, RequestDescriptor, ResponseEnvelope
from .stores import CacheStore, MemoryCacheStore

logger = logging.getLogger("fetch_pipeline.cache")

DEFAULT_TTL_MS = 60000
CACHED_STATUS_TEXT = "OK (cached)"


class CacheEventType(str, Enum):
    """Event types for cache operations."""

    CACHE_HIT = "cache:hit"
    CACHE_MISS = "cache:miss"
    CACHE_STORE = "cache:store"
    CACHE_EXPIRE = "cache:expire"
    CACHE_INVALIDATE = "cache:invalidate"


@dataclass
class CacheEvent:
    """Cache event."""

    type: CacheEventType
    key: str
    timestamp: float
    metadata: Optional[Dict[str, Any]] = None


CacheEventListener = Callable[[CacheEvent], None]


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


def _strip_query(url: str) -> str:
    return url.split("?", 1)[0]


class ResponseCache:
    """
    Time-bounded store of response bodies.

    - Only cache-eligible methods and 2xx statuses are written
    - An entry older than the TTL is treated as absent and removed on the
      lookup that finds it; there is no background sweep
    - Bodies are deep-copied on the way in and on the way out, so callers
      never hold a reference to a stored object

    Example:
        cache = ResponseCache(ttl_ms=60000)
        cache.set(fingerprint, {"items": []}, method="GET", url=url)
        entry = cache.get(fingerprint)
    """

    def __init__(
        self,
        ttl_ms: float = DEFAULT_TTL_MS,
        methods: Optional[List[str]] = None,
        store: Optional[CacheStore] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._ttl_ms = ttl_ms
        self._methods = [m.upper() for m in (methods or ["GET"])]
        self._store = store or MemoryCacheStore()
        self._clock = clock or _monotonic_ms
        self._listeners: Set[CacheEventListener] = set()

    @property
    def ttl_ms(self) -> float:
        return self._ttl_ms

    def set_ttl(self, ttl_ms: float) -> None:
        """Change the TTL; applies to existing entries on their next lookup."""
        if ttl_ms < 0:
            raise ValueError(f"ttl_ms must not be negative, got {ttl_ms}")
        self._ttl_ms = ttl_ms

    def is_cacheable_method(self, method: str) -> bool:
        """Check if a request method is cache-eligible."""
        return method.upper() in self._methods

    def should_store(self, method: str, status_code: int) -> bool:
        """Whether a response to ``method`` with ``status_code`` may be written."""
        return self.is_cacheable_method(method) and 200 <= status_code < 300

    def get(self, fingerprint: str, ignore_ttl: bool = False) -> Optional[CacheEntry]:
        """Look up an entry; expired entries are removed and reported absent."""
        entry = self._store.get(fingerprint)
        if entry is None:
            self._emit(CacheEventType.CACHE_MISS, fingerprint)
            return None

        age_ms = self._clock() - entry.stored_at_ms
        if not ignore_ttl and age_ms >= self._ttl_ms:
            self._store.delete(fingerprint)
            logger.debug(f"ResponseCache: expired {fingerprint} (age={age_ms:.0f}ms)")
            self._emit(CacheEventType.CACHE_EXPIRE, fingerprint, {"age_ms": age_ms})
            return None

        self._emit(CacheEventType.CACHE_HIT, fingerprint, {"age_ms": age_ms})
        return CacheEntry(
            body=copy.deepcopy(entry.body),
            stored_at_ms=entry.stored_at_ms,
            method=entry.method,
            url=entry.url,
        )

    def set(self, fingerprint: str, body: Any, method: str = "GET", url: str = "") -> None:
        """Store a response body under ``fingerprint``."""
        self._store.set(
            fingerprint,
            CacheEntry(
                body=copy.deepcopy(body),
                stored_at_ms=self._clock(),
                method=method.upper(),
                url=url,
            ),
        )
        self._emit(CacheEventType.CACHE_STORE, fingerprint)

    def invalidate(self, fingerprint: str) -> bool:
        """Remove one entry."""
        removed = self._store.delete(fingerprint)
        if removed:
            self._emit(CacheEventType.CACHE_INVALIDATE, fingerprint)
        return removed

    def invalidate_url(self, method: str, url: str) -> int:
        """Remove entries stored for ``method`` and ``url``.

        A URL without a query string also matches entries of the same URL
        stored with any query string.

        Returns:
            Number of removed entries
        """
        method = method.upper()
        match_any_query = "?" not in url
        removed = 0
        for key, entry in self._store.items():
            if entry.method != method:
                continue
            entry_url = _strip_query(entry.url) if match_any_query else entry.url
            if entry_url == url:
                self._store.delete(key)
                self._emit(CacheEventType.CACHE_INVALIDATE, key)
                removed += 1
        logger.debug(f"ResponseCache: invalidated {removed} entries for {method} {url}")
        return removed

    def clear(self) -> None:
        """Remove every entry."""
        self._store.clear()

    def size(self) -> int:
        return self._store.size()

    def to_response(self, entry: CacheEntry, request: RequestDescriptor) -> ResponseEnvelope:
        """Synthetic 200 envelope for a cache hit."""
        return ResponseEnvelope(
            body=entry.body,
            status_code=200,
            status_text=CACHED_STATUS_TEXT,
            headers={},
            request=request,
            from_cache=True,
        )

    def on(self, listener: CacheEventListener) -> Callable[[], None]:
        """Add event listener."""
        self._listeners.add(listener)
        return lambda: self._listeners.discard(listener)

    def off(self, listener: CacheEventListener) -> None:
        """Remove event listener."""
        self._listeners.discard(listener)

    def _emit(
        self,
        event_type: CacheEventType,
        key: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Emit an event to all listeners."""
        if not self._listeners:
            return
        event = CacheEvent(type=event_type, key=key, timestamp=time.time(), metadata=metadata)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Cache event listener failed for {event_type.value}")
