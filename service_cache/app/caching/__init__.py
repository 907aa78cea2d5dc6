"""
Cache package for the judicial data-access layer.

Two tiers behind one interface: a per-process LRU (tier 1) and a Redis
store (tier 2) with stale-while-revalidate, tag invalidation and batch
operations. Correctness never depends on the cache; a missing or failing
store only makes every lookup fall through to the compute callback.
"""

from .distributed import DistributedCacheManager
from .memory_tier import MemoryTier
from .models import CacheLookup, CacheMetrics, CacheOptions, CacheResult, ComputeResult, HitRate, SizeInfo
from .multi_tier import MultiTierCache
from .presets import CachePrefix, CacheTTL, StaleWindow, build_cache_key, generate_cache_tags
from .registry import CacheProfile, CacheRegistry, DEFAULT_PROFILES

__all__ = [
    "CacheLookup",
    "CacheMetrics",
    "CacheOptions",
    "CachePrefix",
    "CacheProfile",
    "CacheRegistry",
    "CacheResult",
    "CacheTTL",
    "ComputeResult",
    "DEFAULT_PROFILES",
    "DistributedCacheManager",
    "HitRate",
    "MemoryTier",
    "MultiTierCache",
    "SizeInfo",
    "StaleWindow",
    "build_cache_key",
    "generate_cache_tags",
]
