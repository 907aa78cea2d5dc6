"""
Per-namespace cache registry.

Build one registry when the application starts and pass it to data-access
code. Nothing here is a module-level instance; each registry owns its
caches and the remote client they share.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, TYPE_CHECKING

from shared.config import CacheConfig, get_config
from shared.errors import CacheConfigurationError
from shared.logging import get_logger
from ..store.redis_client import RemoteCacheClient
from .multi_tier import MultiTierCache
from .presets import CachePrefix, CacheTTL, StaleWindow, is_valid_namespace

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


@dataclass(frozen=True)
class CacheProfile:
    """Sizing for one namespace's cache; unset fields take the registry defaults."""
    namespace: str
    max_size: Optional[int] = None
    ttl: Optional[int] = None
    stale_window: Optional[int] = None


# The api profile is the fallback for unknown entity types and is sized from configuration
DEFAULT_PROFILES = (
    CacheProfile(CachePrefix.JUDGE, max_size=500, ttl=CacheTTL.LONG),  # hot path
    CacheProfile(CachePrefix.COURT, max_size=200, ttl=CacheTTL.LONG),
    CacheProfile(CachePrefix.SEARCH, max_size=1000, ttl=CacheTTL.MEDIUM),
    CacheProfile(CachePrefix.ANALYTICS, max_size=300, ttl=CacheTTL.LONG),
    CacheProfile(CachePrefix.API),
)


class CacheRegistry:
    """Owns one MultiTierCache per namespace plus the shared remote client."""

    def __init__(
        self,
        client: RemoteCacheClient,
        *,
        default_ttl: int = CacheTTL.MEDIUM,
        default_stale_window: int = StaleWindow.MEDIUM,
        default_max_size: int = 500,
        metrics_collector: Optional["MetricsCollector"] = None,
        enable_metrics: bool = True,
    ):
        self.client = client
        self.default_ttl = default_ttl
        self.default_stale_window = default_stale_window
        self.default_max_size = default_max_size
        self.metrics_collector = metrics_collector
        self.enable_metrics = enable_metrics
        self.logger = get_logger("cache.registry")
        self._caches: Dict[str, MultiTierCache[Any]] = {}

    @classmethod
    def from_config(
        cls,
        config: Optional[CacheConfig] = None,
        *,
        profiles: Iterable[CacheProfile] = DEFAULT_PROFILES,
        metrics_collector: Optional["MetricsCollector"] = None,
    ) -> "CacheRegistry":
        """Build a registry and register every profile."""
        config = config or get_config()
        registry = cls(
            RemoteCacheClient.from_config(config),
            default_ttl=config.default_ttl,
            default_stale_window=config.default_stale_window,
            default_max_size=config.tier1_max_size,
            metrics_collector=metrics_collector,
            enable_metrics=config.enable_metrics,
        )
        for profile in profiles:
            registry.register(profile)

        registry.logger.info(
            "Cache registry configured",
            env=config.env,
            redis_configured=config.redis_configured,
            namespaces=registry.namespaces,
        )
        return registry

    def __contains__(self, namespace: str) -> bool:
        return namespace in self._caches

    @property
    def namespaces(self) -> List[str]:
        return list(self._caches)

    def register(self, profile: CacheProfile, **kwargs: Any) -> MultiTierCache[Any]:
        """Create the cache for ``profile.namespace``.

        Namespaces may not contain ``:`` or glob characters so that one
        namespace's key pattern can never match another's entries.
        """
        namespace = profile.namespace
        if not is_valid_namespace(namespace):
            raise CacheConfigurationError("Invalid cache namespace", {"namespace": namespace})
        if namespace in self._caches:
            raise CacheConfigurationError("Cache namespace already registered", {"namespace": namespace})

        max_size = profile.max_size if profile.max_size is not None else self.default_max_size
        ttl = profile.ttl if profile.ttl is not None else self.default_ttl
        stale_window = profile.stale_window if profile.stale_window is not None else self.default_stale_window

        kwargs.setdefault("enable_metrics", self.enable_metrics)
        kwargs.setdefault("metrics_collector", self.metrics_collector)
        cache: MultiTierCache[Any] = MultiTierCache.create(
            namespace,
            self.client,
            ttl=ttl,
            stale_window=stale_window,
            max_size=max_size,
            **kwargs,
        )
        self._caches[namespace] = cache
        self.logger.debug(
            "Registered cache namespace",
            namespace=namespace,
            max_size=max_size,
            ttl=ttl,
            stale_window=stale_window,
        )
        return cache

    def get(self, namespace: str) -> MultiTierCache[Any]:
        try:
            return self._caches[namespace]
        except KeyError:
            raise CacheConfigurationError(
                "Unknown cache namespace",
                {"namespace": namespace, "registered": self.namespaces},
            ) from None

    def get_cache_for_type(self, cache_type: str) -> MultiTierCache[Any]:
        """Resolve a cache by entity type name (``"JUDGE"`` or ``"judge"``), defaulting to the API cache."""
        namespace = cache_type.lower()
        if namespace in self._caches:
            return self._caches[namespace]
        return self.get(CachePrefix.API)

    def log_all_stats(self) -> None:
        for cache in self._caches.values():
            cache.log_stats()

    async def close(self) -> None:
        """Drain background refreshes and close the remote client."""
        for cache in self._caches.values():
            await cache.tier2.close()
        await self.client.close()
