"""
Cache entry stores for the response cache.
"""
from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Optional, Tuple

from ..types import CacheEntry


class CacheStore(ABC):
    """Cache store interface.

    Synchronous on purpose: lookups and writes happen between suspension
    points of the event loop, so a check-then-use never interleaves with
    another request.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[CacheEntry]:
        """Get an entry by fingerprint."""
        pass

    @abstractmethod
    def set(self, key: str, entry: CacheEntry) -> None:
        """Store an entry."""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete an entry."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove all entries."""
        pass

    @abstractmethod
    def items(self) -> Iterator[Tuple[str, CacheEntry]]:
        """Iterate over (fingerprint, entry) pairs."""
        pass

    @abstractmethod
    def size(self) -> int:
        """Get current number of entries."""
        pass


class MemoryCacheStore(CacheStore):
    """
    In-memory cache store with optional max-entries eviction (oldest first).
    """

    def __init__(self, max_entries: Optional[int] = None) -> None:
        self._cache: Dict[str, CacheEntry] = {}
        self._max_entries = max_entries

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._cache.get(key)

    def set(self, key: str, entry: CacheEntry) -> None:
        # Re-insert so dict order tracks write recency
        self._cache.pop(key, None)
        if self._max_entries is not None:
            while self._cache and len(self._cache) >= self._max_entries:
                oldest_key = next(iter(self._cache))
                del self._cache[oldest_key]
        self._cache[key] = entry

    def delete(self, key: str) -> bool:
        if key in self._cache:
            del self._cache[key]
            return True
        return False

    def clear(self) -> None:
        self._cache.clear()

    def items(self) -> Iterator[Tuple[str, CacheEntry]]:
        return iter(list(self._cache.items()))

    def keys(self) -> List[str]:
        return list(self._cache)

    def size(self) -> int:
        return len(self._cache)
