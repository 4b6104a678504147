"""
Bounded in-memory cache with per-entry expiry.

Entries expire after a fixed time-to-live and the cache never holds more
than a fixed number of entries: inserting past capacity evicts the least
recently used entry. Reads and writes are last-write-wins; cached values are
re-derivable from the ledger, so a lost update only costs a refetch.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, Optional, TypeVar

from common.constants import DEFAULT_CACHE_MAX_ENTRIES, DEFAULT_CACHE_TTL_SECONDS
from common.logging_config import get_logger

logger = get_logger(__name__)

K = TypeVar('K', bound=Hashable)
V = TypeVar('V')


@dataclass
class CacheEntry(Generic[V]):
    """
    Single cache entry.

    Attributes:
        value: Cached value
        expires_at: Clock reading after which the entry is stale
    """
    value: V
    expires_at: float


class TTLCache(Generic[K, V]):
    """
    LRU cache with a time-to-live per entry.

    Not thread-safe; intended for use from a single event loop.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        max_entries: int = DEFAULT_CACHE_MAX_ENTRIES,
        clock: Optional[Callable[[], float]] = None,
        name: str = 'cache',
    ):
        """
        Initialize cache.

        Args:
            ttl_seconds: Lifetime of each entry in seconds
            max_entries: Capacity; oldest-used entries are evicted beyond this
            clock: Monotonic time source (default: time.monotonic)
            name: Label used in log messages
        """
        if ttl_seconds <= 0:
            raise ValueError('ttl_seconds must be positive')
        if max_entries <= 0:
            raise ValueError('max_entries must be positive')

        self._ttl = float(ttl_seconds)
        self._max_entries = max_entries
        self._clock = clock or time.monotonic
        self._name = name
        self._entries: 'OrderedDict[K, CacheEntry[V]]' = OrderedDict()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: K) -> bool:
        return self.get(key) is not None

    def get(self, key: K) -> Optional[V]:
        """
        Return the live value for key, or None when missing or expired.

        A hit marks the entry as most recently used.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None

        if self._clock() >= entry.expires_at:
            del self._entries[key]
            logger.debug(f"[{self._name}] expired entry dropped [key={key}]")
            return None

        self._entries.move_to_end(key)
        return entry.value

    def set(self, key: K, value: V) -> None:
        """Store value under key, evicting the least recently used entry if full."""
        if key in self._entries:
            del self._entries[key]

        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + self._ttl)

        while len(self._entries) > self._max_entries:
            evicted_key, _ = self._entries.popitem(last=False)
            logger.debug(f"[{self._name}] capacity reached, evicted [key={evicted_key}]")

    def delete(self, key: K) -> bool:
        """Remove key. Returns True if an entry was removed."""
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def clean(self) -> int:
        """
        Drop every expired entry.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        stale = [key for key, entry in self._entries.items() if now >= entry.expires_at]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug(f"[{self._name}] pruned {len(stale)} expired entries")
        return len(stale)
