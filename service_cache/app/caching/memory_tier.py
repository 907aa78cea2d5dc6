"""
In-process (tier 1) cache: bounded, least-recently-used, with per-entry TTL.

Each process owns its own instance; it is never a cross-process source of
truth. Operations are synchronous and never suspend.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterator, Optional, TypeVar

from shared.errors import CacheValidationError
from shared.logging import get_logger

T = TypeVar("T")

EvictCallback = Callable[[str, Any], None]


@dataclass
class _Slot(Generic[T]):
    value: T
    expires_at: Optional[float]


class MemoryTier(Generic[T]):
    """LRU cache bounded by entry count.

    ``on_evict(key, value)`` fires when an entry is pushed out by capacity or
    found expired. Explicit ``delete``/``clear`` and overwrites do not fire it.
    """

    def __init__(
        self,
        max_size: int = 1000,
        ttl_seconds: Optional[float] = 300,
        *,
        update_age_on_get: bool = True,
        on_evict: Optional[EvictCallback] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size <= 0:
            raise CacheValidationError("max_size must be positive", {"max_size": max_size})

        self.max_size = max_size
        self.ttl_seconds = ttl_seconds if ttl_seconds and ttl_seconds > 0 else None
        self.update_age_on_get = update_age_on_get
        self.on_evict = on_evict
        self.logger = get_logger("cache.memory")
        self._clock = clock
        self._entries: "OrderedDict[str, _Slot[T]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        slot = self._entries.get(key)
        return slot is not None and not self._is_expired(slot)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    def _deadline(self) -> Optional[float]:
        if self.ttl_seconds is None:
            return None
        return self._clock() + self.ttl_seconds

    def _is_expired(self, slot: "_Slot[T]") -> bool:
        return slot.expires_at is not None and self._clock() >= slot.expires_at

    def _evict(self, key: str, slot: "_Slot[T]") -> None:
        if self.on_evict is None:
            return
        try:
            self.on_evict(key, slot.value)
        except Exception as e:
            self.logger.error("Eviction callback failed", key=key, error=str(e))

    def get(self, key: str, default: Optional[T] = None) -> Optional[T]:
        """Return the value and mark it most recently used."""
        slot = self._entries.get(key)
        if slot is None:
            return default

        if self._is_expired(slot):
            del self._entries[key]
            self._evict(key, slot)
            return default

        self._entries.move_to_end(key)
        if self.update_age_on_get:
            slot.expires_at = self._deadline()
        return slot.value

    def peek(self, key: str, default: Optional[T] = None) -> Optional[T]:
        """Return the value without touching recency or age."""
        slot = self._entries.get(key)
        if slot is None or self._is_expired(slot):
            return default
        return slot.value

    def set(self, key: str, value: T) -> None:
        """Insert or overwrite, evicting the least recently used entries when full."""
        if key in self._entries:
            self._entries.move_to_end(key)
        self._entries[key] = _Slot(value=value, expires_at=self._deadline())

        while len(self._entries) > self.max_size:
            evicted_key, evicted_slot = self._entries.popitem(last=False)
            self._evict(evicted_key, evicted_slot)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry, returning how many were removed."""
        expired = [key for key, slot in self._entries.items() if self._is_expired(slot)]
        for key in expired:
            slot = self._entries.pop(key)
            self._evict(key, slot)
        return len(expired)
