"""
Option and result types for the cache layer.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


@dataclass
class CacheOptions:
    """Per-write options.

    ``ttl``/``stale_window`` of None fall back to the manager defaults; a
    ``stale_window`` of 0 disables staleness tracking for the entry.
    """
    ttl: Optional[int] = None
    stale_window: Optional[int] = None
    tags: Optional[List[str]] = None
    version: Optional[str] = None


@dataclass
class CacheLookup(Generic[T]):
    """Result of a distributed-tier read."""
    data: Optional[T]
    is_stale: bool
    cached: bool

    @classmethod
    def miss(cls) -> "CacheLookup[T]":
        return cls(data=None, is_stale=False, cached=False)


@dataclass
class ComputeResult(Generic[T]):
    """Result of a distributed-tier compute-on-miss."""
    data: T
    cached: bool
    was_stale: bool


@dataclass
class CacheResult(Generic[T]):
    """Result of a multi-tier lookup; tier 3 means freshly computed."""
    data: T
    tier: int
    cached: bool
    was_stale: bool
    latency_ms: float


@dataclass
class CacheMetrics:
    """Monotonic counters until reset."""
    tier1_hits: int = 0
    tier1_misses: int = 0
    tier2_hits: int = 0
    tier2_misses: int = 0
    compute_calls: int = 0
    promotions: int = 0
    evictions: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class HitRate:
    tier1: float = 0.0
    tier2: float = 0.0
    overall: float = 0.0

    @classmethod
    def from_metrics(cls, metrics: CacheMetrics) -> "HitRate":
        tier1_total = metrics.tier1_hits + metrics.tier1_misses
        tier2_total = metrics.tier2_hits + metrics.tier2_misses
        overall_total = tier1_total + tier2_total
        return cls(
            tier1=metrics.tier1_hits / tier1_total if tier1_total > 0 else 0.0,
            tier2=metrics.tier2_hits / tier2_total if tier2_total > 0 else 0.0,
            overall=(metrics.tier1_hits + metrics.tier2_hits) / overall_total if overall_total > 0 else 0.0,
        )

    def as_percentages(self) -> Dict[str, str]:
        return {
            "tier1": f"{self.tier1 * 100:.2f}%",
            "tier2": f"{self.tier2 * 100:.2f}%",
            "overall": f"{self.overall * 100:.2f}%",
        }


@dataclass
class SizeInfo:
    tier1_size: int
    tier1_max_size: int
    tier1_usage: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
