"""
wgbridge TTL Cache

Time-boxed key/value cache with insertion-order eviction.
"""

from __future__ import annotations
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Generic, Iterator, Optional, TypeVar

T = TypeVar("T")


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    """Cached value with the time it was stored."""
    value: T
    stored_at: float

    def is_expired(self, now: float, ttl: float) -> bool:
        return now - self.stored_at >= ttl


class TTLCache(Generic[T]):
    """
    Cache with per-entry TTL and optional capacity.

    Eviction is FIFO by insertion: when full, the oldest-inserted key is
    dropped before a new key is stored. Reads never change eviction order.
    Expired entries are removed when read.
    """

    def __init__(
        self,
        ttl: float,
        max_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        if max_size is not None and max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")

        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry[T]] = OrderedDict()
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    def get(self, key: str) -> Optional[T]:
        """Return the unexpired value for key, or None."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        if entry.is_expired(self._clock(), self.ttl):
            del self._entries[key]
            return None

        return entry.value

    def set(self, key: str, value: T) -> None:
        """Store value under key, evicting the oldest entry if at capacity."""
        if key not in self._entries and self.max_size is not None:
            while len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
                self.evictions += 1

        self._entries[key] = CacheEntry(value=value, stored_at=self._clock())

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        """Drop every entry. Returns how many were removed."""
        count = len(self._entries)
        self._entries.clear()
        return count
