"""
Multi-tier cache orchestrator.

Tiers:
- Tier 1: in-process LRU (``MemoryTier``), private to this process
- Tier 2: distributed store (``DistributedCacheManager``)
- Tier 3: the caller's compute function

A tier 2 hit is promoted into tier 1. Writes go through tier 1 first, then
tier 2. Tier 1 copies are not invalidated in other processes; there they
age out on the tier 1 TTL.
"""

import dataclasses
import time
from typing import Any, Dict, Generic, Iterable, Mapping, Optional, Type, TypeVar, TYPE_CHECKING

from shared.logging import get_logger
from ..store.redis_client import RemoteCacheClient
from .distributed import ComputeFn, DistributedCacheManager, invoke_compute
from .memory_tier import EvictCallback, MemoryTier
from .models import CacheMetrics, CacheOptions, CacheResult, HitRate, SizeInfo
from .presets import CacheTTL, StaleWindow, validate_namespace

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

T = TypeVar("T")

_MISSING: Any = object()


class MultiTierCache(Generic[T]):
    """One logical cache for a namespace, composed of tier 1 and tier 2."""

    def __init__(
        self,
        namespace: str,
        manager: DistributedCacheManager,
        *,
        max_size: int = 1000,
        ttl: int = CacheTTL.MEDIUM,
        on_evict: Optional[EvictCallback] = None,
        enable_metrics: bool = True,
        metrics_collector: Optional["MetricsCollector"] = None,
        payload_type: Optional[Type[T]] = None,
        update_age_on_get: bool = True,
        clock=time.monotonic,
    ):
        self.namespace = validate_namespace(namespace)
        self.tier2 = manager
        self.payload_type = payload_type
        self.enable_metrics = enable_metrics
        self.metrics_collector = metrics_collector
        self.logger = get_logger("cache.multi_tier")
        self.metrics = CacheMetrics()

        self._on_evict = on_evict
        self.tier1: MemoryTier[T] = MemoryTier(
            max_size,
            ttl,
            update_age_on_get=update_age_on_get,
            on_evict=self._handle_evict,
            clock=clock,
        )
        manager.add_refresh_listener(self._handle_refresh)

    @classmethod
    def create(
        cls,
        namespace: str,
        client: RemoteCacheClient,
        *,
        ttl: int = CacheTTL.MEDIUM,
        stale_window: int = StaleWindow.MEDIUM,
        payload_type: Optional[Type[T]] = None,
        **kwargs: Any,
    ) -> "MultiTierCache[T]":
        """Build a cache together with its own distributed manager."""
        manager = DistributedCacheManager(
            client,
            default_ttl=ttl,
            default_stale_window=stale_window,
            payload_type=payload_type,
        )
        return cls(namespace, manager, ttl=ttl, payload_type=payload_type, **kwargs)

    def _record(self, counter: str, amount: int = 1) -> None:
        if self.enable_metrics:
            setattr(self.metrics, counter, getattr(self.metrics, counter) + amount)

    def _emit(self, metric_name: str, value: Optional[float] = None, **labels: Any) -> None:
        if self.metrics_collector is None:
            return
        try:
            if value is None:
                self.metrics_collector.increment_counter(metric_name, namespace=self.namespace, **labels)
            else:
                self.metrics_collector.observe_histogram(metric_name, value, namespace=self.namespace, **labels)
        except Exception as e:  # pragma: no cover
            self.logger.debug("Failed to record cache metric", metric=metric_name, error=str(e))

    def _hit(self, tier: int) -> None:
        self._record(f"tier{tier}_hits")
        self._emit("cache_lookups_total", tier=str(tier), result="hit")

    def _miss(self, tier: int) -> None:
        self._record(f"tier{tier}_misses")
        self._emit("cache_lookups_total", tier=str(tier), result="miss")

    def _promote(self, key: str, data: T) -> None:
        self.tier1.set(key, data)
        self._record("promotions")
        self._emit("cache_promotions_total")

    def _handle_evict(self, key: str, value: Any) -> None:
        self._record("evictions")
        self._emit("cache_evictions_total")
        if self._on_evict is not None:
            self._on_evict(key, value)

    def _handle_refresh(self, namespace: str, key: str, data: Any, error: Optional[Exception]) -> None:
        if namespace != self.namespace:
            return
        self._emit("cache_background_refresh_total", result="error" if error is not None else "success")
        if error is not None:
            return
        # Replace the stale copy promoted before the refresh started
        if self.tier1.peek(key, _MISSING) is not _MISSING:
            self.tier1.set(key, data)

    def _result(self, data: T, tier: int, cached: bool, was_stale: bool, started: float) -> CacheResult[T]:
        elapsed = time.perf_counter() - started
        self._emit("cache_lookup_duration_seconds", elapsed, tier=str(tier))
        return CacheResult(
            data=data,
            tier=tier,
            cached=cached,
            was_stale=was_stale,
            latency_ms=elapsed * 1000,
        )

    async def get(self, key: str) -> Optional[CacheResult[T]]:
        """Pure read across both tiers; None on a full miss."""
        started = time.perf_counter()

        value = self.tier1.get(key, _MISSING)
        if value is not _MISSING:
            self._hit(1)
            return self._result(value, 1, True, False, started)
        self._miss(1)

        lookup = await self.tier2.get(self.namespace, key, check_stale=True, payload_type=self.payload_type)
        if lookup.cached and lookup.data is not None:
            self._hit(2)
            self._promote(key, lookup.data)
            return self._result(lookup.data, 2, True, lookup.is_stale, started)

        self._miss(2)
        return None

    async def set(self, key: str, data: T, options: Optional[CacheOptions] = None) -> bool:
        """Write-through: tier 1 first, then tier 2."""
        self.tier2.resolve_lifetimes(options)
        self.tier1.set(key, data)
        return await self.tier2.set(self.namespace, key, data, options)

    async def get_or_compute(
        self,
        key: str,
        compute_fn: ComputeFn,
        options: Optional[CacheOptions] = None,
    ) -> CacheResult[T]:
        """Read through both tiers, computing and writing through on a full miss."""
        started = time.perf_counter()

        cached = await self.get(key)
        if cached is not None:
            return cached

        self._record("compute_calls")
        self._emit("cache_compute_total")
        data = await invoke_compute(compute_fn)
        await self.set(key, data, options)
        return self._result(data, 3, False, False, started)

    async def get_or_compute_swr(
        self,
        key: str,
        compute_fn: ComputeFn,
        options: Optional[CacheOptions] = None,
    ) -> CacheResult[T]:
        """Like ``get_or_compute`` but stale tier 2 hits are refreshed in the background."""
        started = time.perf_counter()

        value = self.tier1.get(key, _MISSING)
        if value is not _MISSING:
            self._hit(1)
            return self._result(value, 1, True, False, started)
        self._miss(1)

        outcome = await self.tier2.get_or_compute(
            self.namespace,
            key,
            compute_fn,
            options,
            payload_type=self.payload_type,
        )

        if outcome.cached:
            self._hit(2)
            self._promote(key, outcome.data)
            return self._result(outcome.data, 2, True, outcome.was_stale, started)

        # The manager already wrote tier 2; this is the tier 1 half of that write
        self._miss(2)
        self._record("compute_calls")
        self._emit("cache_compute_total")
        self.tier1.set(key, outcome.data)
        return self._result(outcome.data, 3, False, False, started)

    async def delete(self, key: str) -> bool:
        """Remove a key from both tiers."""
        self.tier1.delete(key)
        return await self.tier2.delete(self.namespace, key)

    async def invalidate_by_tag(self, tag: str) -> int:
        """Invalidate a tag in tier 2 and drop this process's tier 1 copies."""
        prefix = f"{self.namespace}:"
        for member in await self.tier2.tag_members(tag):
            if member.startswith(prefix):
                self.tier1.delete(member[len(prefix):])
        return await self.tier2.invalidate_by_tag(tag)

    async def batch_get(self, keys: Iterable[str]) -> Dict[str, Optional[T]]:
        """Look up many keys; only tier 1 misses go to tier 2, in one round trip."""
        results: Dict[str, Optional[T]] = {}
        tier1_misses = []

        for key in dict.fromkeys(keys):
            value = self.tier1.get(key, _MISSING)
            if value is not _MISSING:
                results[key] = value
                self._hit(1)
            else:
                results[key] = None
                tier1_misses.append(key)
                self._miss(1)

        if not tier1_misses:
            return results

        tier2_results = await self.tier2.batch_get(self.namespace, tier1_misses, payload_type=self.payload_type)
        for key in tier1_misses:
            value = tier2_results.get(key)
            if value is not None:
                results[key] = value
                self._hit(2)
                self._promote(key, value)
            else:
                self._miss(2)

        return results

    async def batch_set(self, entries: Mapping[str, T], options: Optional[CacheOptions] = None) -> int:
        """Write many entries through both tiers."""
        self.tier2.resolve_lifetimes(options)
        for key, data in entries.items():
            self.tier1.set(key, data)
        return await self.tier2.batch_set(self.namespace, entries, options)

    async def clear(self) -> int:
        """Empty tier 1 and every tier 2 key in this namespace."""
        self.tier1.clear()
        return await self.tier2.clear_namespace(self.namespace)

    def get_metrics(self) -> CacheMetrics:
        return dataclasses.replace(self.metrics)

    def get_hit_rate(self) -> HitRate:
        return HitRate.from_metrics(self.metrics)

    def reset_metrics(self) -> None:
        self.metrics = CacheMetrics()

    def get_size_info(self) -> SizeInfo:
        size = len(self.tier1)
        return SizeInfo(
            tier1_size=size,
            tier1_max_size=self.tier1.max_size,
            tier1_usage=size / self.tier1.max_size,
        )

    def log_stats(self) -> None:
        """Log hit rates, counters and tier 1 occupancy."""
        size_info = self.get_size_info()
        if self.metrics_collector is not None:
            self.metrics_collector.set_gauge("cache_tier1_entries", size_info.tier1_size, namespace=self.namespace)

        self.logger.info(
            "Multi-tier cache statistics",
            namespace=self.namespace,
            hit_rate=self.get_hit_rate().as_percentages(),
            metrics=self.metrics.to_dict(),
            size=size_info.to_dict(),
        )
