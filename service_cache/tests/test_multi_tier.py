"""
Unit tests for the multi-tier cache orchestrator.
"""

import pytest
from prometheus_client import CollectorRegistry
from pydantic import BaseModel
from structlog.testing import capture_logs

from service_cache.app.caching.models import CacheOptions
from service_cache.app.caching.multi_tier import MultiTierCache
from service_cache.app.caching.presets import CachePrefix
from shared.errors import CacheValidationError
from shared.metrics import MetricsCollector


class CourtSummary(BaseModel):
    id: int
    name: str
    jurisdiction: str


@pytest.fixture
def cache(manager, clock):
    return MultiTierCache(CachePrefix.JUDGE, manager, max_size=100, ttl=300, clock=clock)


@pytest.fixture
def metrics_registry():
    return CollectorRegistry()


@pytest.fixture
def collector(metrics_registry):
    return MetricsCollector("judicial-api", registry=metrics_registry)


class TestLookups:
    """Tier resolution order and promotion."""

    @pytest.mark.asyncio
    async def test_tier1_hit(self, cache):
        await cache.set("42", {"name": "Hon. Jane Doe"})

        result = await cache.get("42")

        assert result.tier == 1
        assert result.cached is True
        assert result.data == {"name": "Hon. Jane Doe"}
        assert result.latency_ms >= 0

    @pytest.mark.asyncio
    async def test_tier2_hit_is_promoted(self, cache, manager, fake_redis):
        await manager.set(CachePrefix.JUDGE, "42", {"name": "Hon. Jane Doe"})

        first = await cache.get("42")
        assert first.tier == 2

        fake_redis.calls.clear()
        second = await cache.get("42")

        assert second.tier == 1
        assert second.data == {"name": "Hon. Jane Doe"}
        assert fake_redis.calls == []
        assert cache.get_metrics().promotions == 1

    @pytest.mark.asyncio
    async def test_full_miss_returns_none(self, cache):
        assert await cache.get("missing") is None

        metrics = cache.get_metrics()
        assert (metrics.tier1_misses, metrics.tier2_misses) == (1, 1)

    @pytest.mark.asyncio
    async def test_lru_eviction_falls_back_to_tier2(self, manager, clock):
        evicted = []
        cache = MultiTierCache(
            CachePrefix.JUDGE,
            manager,
            max_size=2,
            on_evict=lambda key, value: evicted.append(key),
            clock=clock,
        )
        await cache.set("x", 1)
        await cache.set("y", 2)
        await cache.set("z", 3)

        assert "x" not in cache.tier1
        assert evicted == ["x"]
        assert cache.get_metrics().evictions == 1

        result = await cache.get("x")
        assert result.tier == 2

    @pytest.mark.asyncio
    async def test_typed_payload_round_trip(self, client, clock):
        cache = MultiTierCache.create(CachePrefix.COURT, client, payload_type=CourtSummary, clock=clock)
        court = CourtSummary(id=7, name="Superior Court", jurisdiction="CA")
        await cache.set("7", court)
        cache.tier1.clear()

        result = await cache.get("7")

        assert result.tier == 2
        assert isinstance(result.data, CourtSummary)
        assert result.data == court


class TestValidation:
    """Namespace and option checks happen before any tier is touched."""

    @pytest.mark.parametrize("namespace", ["j*", "jud?e", "[jc]ourt", "judge:v2", "tag"])
    def test_overlapping_namespace_is_rejected(self, manager, namespace):
        with pytest.raises(CacheValidationError):
            MultiTierCache(namespace, manager)

    @pytest.mark.asyncio
    async def test_invalid_ttl_leaves_tier1_untouched(self, cache, fake_redis):
        with pytest.raises(CacheValidationError):
            await cache.set("42", "value", CacheOptions(ttl=0))

        assert "42" not in cache.tier1
        assert "judge:42" not in fake_redis.values

    @pytest.mark.asyncio
    async def test_invalid_batch_options_leave_tier1_untouched(self, cache):
        with pytest.raises(CacheValidationError):
            await cache.batch_set({"a": 1, "b": 2}, CacheOptions(stale_window=-1))

        assert len(cache.tier1) == 0


class TestGetOrCompute:
    """Compute on full miss."""

    @pytest.mark.asyncio
    async def test_compute_on_full_miss(self, cache, manager):
        calls = []

        async def compute():
            calls.append(1)
            return {"id": 42}

        result = await cache.get_or_compute("42", compute)

        assert (result.tier, result.cached, result.data) == (3, False, {"id": 42})
        assert cache.get_metrics().compute_calls == 1
        assert (await manager.get(CachePrefix.JUDGE, "42")).data == {"id": 42}

        again = await cache.get_or_compute("42", compute)
        assert again.tier == 1
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_compute_error_propagates(self, cache):
        def compute():
            raise LookupError("judge not found")

        with pytest.raises(LookupError):
            await cache.get_or_compute("404", compute)

    @pytest.mark.asyncio
    async def test_fresh_compute_is_not_a_promotion(self, cache):
        await cache.get_or_compute("42", lambda: "value")
        assert cache.get_metrics().promotions == 0
        assert cache.tier1.peek("42") == "value"


class TestStaleWhileRevalidate:
    """get_or_compute_swr paths."""

    @pytest.mark.asyncio
    async def test_tier1_hit(self, cache):
        await cache.set("42", "cached")
        result = await cache.get_or_compute_swr("42", lambda: "computed")
        assert (result.tier, result.data) == (1, "cached")

    @pytest.mark.asyncio
    async def test_full_miss(self, cache):
        result = await cache.get_or_compute_swr("42", lambda: "computed")

        assert (result.tier, result.cached, result.data) == (3, False, "computed")
        assert cache.tier1.peek("42") == "computed"
        assert cache.get_metrics().compute_calls == 1

    @pytest.mark.asyncio
    async def test_stale_tier2_hit_refreshes_tier1(self, manager, clock, collector, metrics_registry):
        cache = MultiTierCache(CachePrefix.JUDGE, manager, clock=clock, metrics_collector=collector)
        options = CacheOptions(ttl=10, stale_window=4)
        await manager.set(CachePrefix.JUDGE, "42", "old", options)
        clock.advance(7)

        result = await cache.get_or_compute_swr("42", lambda: "new", options)

        assert (result.tier, result.data, result.was_stale) == (2, "old", True)
        assert cache.tier1.peek("42") == "old"

        await manager.wait_for_refreshes()

        assert cache.tier1.peek("42") == "new"
        assert (await manager.get(CachePrefix.JUDGE, "42")).data == "new"
        assert metrics_registry.get_sample_value(
            "cache_background_refresh_total", {"namespace": CachePrefix.JUDGE, "result": "success"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_stale_copy(self, manager, clock, collector, metrics_registry):
        cache = MultiTierCache(CachePrefix.JUDGE, manager, clock=clock, metrics_collector=collector)
        options = CacheOptions(ttl=10, stale_window=4)
        await manager.set(CachePrefix.JUDGE, "42", "old", options)
        clock.advance(7)

        def compute():
            raise RuntimeError("upstream timeout")

        result = await cache.get_or_compute_swr("42", compute, options)
        await manager.wait_for_refreshes()

        assert result.data == "old"
        assert cache.tier1.peek("42") == "old"
        assert metrics_registry.get_sample_value(
            "cache_background_refresh_total", {"namespace": CachePrefix.JUDGE, "result": "error"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_refresh_in_other_namespace_is_ignored(self, manager, clock):
        judges = MultiTierCache(CachePrefix.JUDGE, manager, clock=clock)
        courts = MultiTierCache(CachePrefix.COURT, manager, clock=clock)
        options = CacheOptions(ttl=10, stale_window=4)
        await judges.set("1", "judge")
        await manager.set(CachePrefix.COURT, "1", "old court", options)
        clock.advance(7)

        await courts.get_or_compute_swr("1", lambda: "new court", options)
        await manager.wait_for_refreshes()

        assert judges.tier1.peek("1") == "judge"
        assert courts.tier1.peek("1") == "new court"


class TestInvalidation:
    """Delete, tag invalidation and clear."""

    @pytest.mark.asyncio
    async def test_delete_removes_both_tiers(self, cache, manager):
        await cache.set("42", "value")

        assert await cache.delete("42") is True
        assert "42" not in cache.tier1
        assert (await manager.get(CachePrefix.JUDGE, "42")).cached is False

    @pytest.mark.asyncio
    async def test_invalidate_by_tag_drops_tier1_copies(self, cache):
        tags = CacheOptions(tags=["court:9"])
        await cache.set("a", "A", tags)
        await cache.set("b", "B", tags)
        await cache.set("c", "C")

        assert await cache.invalidate_by_tag("court:9") == 2
        assert "a" not in cache.tier1
        assert "b" not in cache.tier1
        assert await cache.get("a") is None
        assert (await cache.get("c")).tier == 1

    @pytest.mark.asyncio
    async def test_invalidate_by_tag_leaves_other_namespaces_in_tier1(self, manager, clock):
        judges = MultiTierCache(CachePrefix.JUDGE, manager, clock=clock)
        courts = MultiTierCache(CachePrefix.COURT, manager, clock=clock)
        await judges.set("1", "judge", CacheOptions(tags=["judge:1"]))
        await courts.set("1", "court")

        await judges.invalidate_by_tag("judge:1")

        assert "1" not in judges.tier1
        assert "1" in courts.tier1

    @pytest.mark.asyncio
    async def test_clear(self, cache, manager):
        await cache.set("a", 1)
        await cache.set("b", 2)
        await manager.set(CachePrefix.COURT, "a", 1)

        assert await cache.clear() == 2
        assert len(cache.tier1) == 0
        assert (await manager.get(CachePrefix.COURT, "a")).cached is True


class TestBatch:
    """Batch operations across tiers."""

    @pytest.mark.asyncio
    async def test_batch_get(self, cache, manager, fake_redis):
        await cache.set("a", "A")
        await manager.set(CachePrefix.JUDGE, "b", "B")
        fake_redis.calls.clear()

        result = await cache.batch_get(["a", "b", "c"])

        assert result == {"a": "A", "b": "B", "c": None}
        assert fake_redis.calls == ["pipeline"]
        assert cache.tier1.peek("b") == "B"

        metrics = cache.get_metrics()
        assert (metrics.tier1_hits, metrics.tier1_misses) == (1, 2)
        assert (metrics.tier2_hits, metrics.tier2_misses) == (1, 1)
        assert metrics.promotions == 1

    @pytest.mark.asyncio
    async def test_batch_get_all_in_tier1(self, cache, fake_redis):
        await cache.set("a", "A")
        fake_redis.calls.clear()

        assert await cache.batch_get(["a"]) == {"a": "A"}
        assert fake_redis.calls == []

    @pytest.mark.asyncio
    async def test_batch_set(self, cache, manager):
        count = await cache.batch_set({"a": 1, "b": 2}, CacheOptions(tags=["bulk"]))

        assert count == 2
        assert cache.tier1.peek("a") == 1
        assert await manager.tag_members("bulk") == ["judge:a", "judge:b"]


class TestMetrics:
    """Counters, hit rates and statistics."""

    @pytest.mark.asyncio
    async def test_tier1_hit_rate(self, cache):
        await cache.set("42", "value")
        for _ in range(3):
            await cache.get("42")
        await cache.get("missing")

        hit_rate = cache.get_hit_rate()
        assert hit_rate.tier1 == 0.75
        assert hit_rate.tier2 == 0.0
        assert hit_rate.overall == 0.6

    def test_hit_rate_without_lookups(self, cache):
        hit_rate = cache.get_hit_rate()
        assert (hit_rate.tier1, hit_rate.tier2, hit_rate.overall) == (0.0, 0.0, 0.0)

    @pytest.mark.asyncio
    async def test_get_metrics_returns_copy(self, cache):
        snapshot = cache.get_metrics()
        await cache.get("missing")
        assert snapshot.tier1_misses == 0

    @pytest.mark.asyncio
    async def test_reset_metrics(self, cache):
        await cache.get("missing")
        cache.reset_metrics()
        assert cache.get_metrics().tier1_misses == 0

    @pytest.mark.asyncio
    async def test_metrics_disabled(self, manager, clock):
        cache = MultiTierCache(CachePrefix.JUDGE, manager, enable_metrics=False, clock=clock)
        await cache.get("missing")
        assert cache.get_metrics().tier1_misses == 0

    @pytest.mark.asyncio
    async def test_prometheus_lookups(self, manager, clock, collector, metrics_registry):
        cache = MultiTierCache(CachePrefix.JUDGE, manager, clock=clock, metrics_collector=collector)
        await cache.get_or_compute("42", lambda: "value")
        await cache.get("42")

        def sample(name, **labels):
            return metrics_registry.get_sample_value(name, {"namespace": CachePrefix.JUDGE, **labels})

        assert sample("cache_lookups_total", tier="1", result="miss") == 1.0
        assert sample("cache_lookups_total", tier="1", result="hit") == 1.0
        assert sample("cache_lookups_total", tier="2", result="miss") == 1.0
        assert sample("cache_compute_total") == 1.0
        assert sample("cache_lookup_duration_seconds_count", tier="3") == 1.0

    @pytest.mark.asyncio
    async def test_size_info(self, manager, clock):
        cache = MultiTierCache(CachePrefix.JUDGE, manager, max_size=4, clock=clock)
        await cache.set("a", 1)

        info = cache.get_size_info()
        assert (info.tier1_size, info.tier1_max_size, info.tier1_usage) == (1, 4, 0.25)

    @pytest.mark.asyncio
    async def test_log_stats(self, manager, clock, collector, metrics_registry):
        cache = MultiTierCache(CachePrefix.JUDGE, manager, clock=clock, metrics_collector=collector)
        await cache.set("42", "value")
        await cache.get("42")

        with capture_logs() as logs:
            cache.log_stats()

        entry = next(log for log in logs if log["event"] == "Multi-tier cache statistics")
        assert entry["namespace"] == CachePrefix.JUDGE
        assert entry["hit_rate"]["tier1"] == "100.00%"
        assert entry["size"]["tier1_size"] == 1
        assert metrics_registry.get_sample_value(
            "cache_tier1_entries", {"namespace": CachePrefix.JUDGE}
        ) == 1.0


class TestDegradedMode:
    """No remote store: tier 1 still works, nothing raises."""

    @pytest.mark.asyncio
    async def test_operations_degrade(self, unavailable_client):
        cache = MultiTierCache.create(CachePrefix.SEARCH, unavailable_client)

        assert await cache.set("q", [1, 2]) is False
        assert (await cache.get("q")).tier == 1
        assert await cache.get("other") is None
        assert await cache.batch_get(["q", "other"]) == {"q": [1, 2], "other": None}
        assert await cache.invalidate_by_tag("search:q") == 0
        assert await cache.batch_set({"x": 1}) == 0
        assert await cache.clear() == 0

        result = await cache.get_or_compute("z", lambda: "computed")
        assert (result.tier, result.data) == (3, "computed")
