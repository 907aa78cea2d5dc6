"""
Shared fixtures for cache tests.

``FakeRedis`` mimics the slice of the redis.asyncio client the cache uses,
with expiry driven by a controllable clock so TTL and staleness tests never
sleep.
"""

import fnmatch
from typing import Any, Dict, List, Optional, Set

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from service_cache.app.caching.distributed import DistributedCacheManager
from service_cache.app.store.redis_client import RemoteCacheClient


class FakeClock:
    """Wall clock under test control."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePipeline:
    """Queues commands and runs them on execute()."""

    def __init__(self, server: "FakeRedis"):
        self._server = server
        self._queue: List[tuple] = []

    def __getattr__(self, command: str):
        def queue(*args, **kwargs):
            self._queue.append((command, args, kwargs))
            return self
        return queue

    async def execute(self, raise_on_error: bool = True) -> List[Any]:
        self._server.calls.append("pipeline")
        if "pipeline" in self._server.fail_commands:
            raise RedisConnectionError("pipeline failed")

        results: List[Any] = []
        for command, args, kwargs in self._queue:
            try:
                results.append(self._server.run(command, *args, **kwargs))
            except Exception as e:
                if raise_on_error:
                    raise
                results.append(e)
        self._queue = []
        return results


class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis with TTL support."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.values: Dict[str, Any] = {}
        self.expiry: Dict[str, float] = {}
        self.calls: List[str] = []
        self.fail_commands: Set[str] = set()
        self.closed = False

    # -- helpers -------------------------------------------------------
    def _purge(self, key: str) -> None:
        deadline = self.expiry.get(key)
        if deadline is not None and self.clock() >= deadline:
            self.values.pop(key, None)
            self.expiry.pop(key, None)

    def ttl_of(self, key: str) -> Optional[float]:
        """Remaining seconds for a key, None when it has no expiry."""
        self._purge(key)
        deadline = self.expiry.get(key)
        return None if deadline is None else deadline - self.clock()

    def run(self, command: str, *args, **kwargs) -> Any:
        if command in self.fail_commands:
            raise RedisConnectionError(f"{command} failed")
        return getattr(self, f"_{command}")(*args, **kwargs)

    # -- commands ------------------------------------------------------
    def _get(self, key: str) -> Optional[str]:
        self._purge(key)
        value = self.values.get(key)
        if isinstance(value, set):
            raise TypeError("WRONGTYPE")
        return value

    def _set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        self.values[key] = value
        if ex is not None:
            self.expiry[key] = self.clock() + ex
        else:
            self.expiry.pop(key, None)
        return True

    def _delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            self._purge(key)
            if key in self.values:
                del self.values[key]
                self.expiry.pop(key, None)
                removed += 1
        return removed

    def _sadd(self, key: str, *members: str) -> int:
        self._purge(key)
        current = self.values.setdefault(key, set())
        before = len(current)
        current.update(members)
        return len(current) - before

    def _smembers(self, key: str) -> Set[str]:
        self._purge(key)
        return set(self.values.get(key, set()))

    def _expire(self, key: str, seconds: int, nx: bool = False, gt: bool = False) -> bool:
        self._purge(key)
        if key not in self.values:
            return False
        current = self.expiry.get(key)
        if nx and current is not None:
            return False
        if gt and (current is None or self.clock() + seconds <= current):
            return False
        self.expiry[key] = self.clock() + seconds
        return True

    def _keys(self, pattern: str) -> List[str]:
        for key in list(self.values):
            self._purge(key)
        return [key for key in self.values if fnmatch.fnmatchcase(key, pattern)]

    def _ping(self) -> bool:
        return True

    # -- redis.asyncio surface -----------------------------------------
    async def get(self, key):
        self.calls.append("get")
        return self.run("get", key)

    async def set(self, key, value, ex=None):
        self.calls.append("set")
        return self.run("set", key, value, ex=ex)

    async def delete(self, *keys):
        self.calls.append("delete")
        return self.run("delete", *keys)

    async def sadd(self, key, *members):
        self.calls.append("sadd")
        return self.run("sadd", key, *members)

    async def smembers(self, key):
        self.calls.append("smembers")
        return self.run("smembers", key)

    async def expire(self, key, seconds, nx=False, gt=False):
        self.calls.append("expire")
        return self.run("expire", key, seconds, nx=nx, gt=gt)

    async def keys(self, pattern):
        self.calls.append("keys")
        return self.run("keys", pattern)

    async def ping(self):
        self.calls.append("ping")
        return self.run("ping")

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def aclose(self):
        self.closed = True


@pytest.fixture
def clock():
    """Controllable wall clock."""
    return FakeClock()


@pytest.fixture
def fake_redis(clock):
    """In-memory redis server."""
    return FakeRedis(clock)


@pytest.fixture
def client(fake_redis):
    """Remote client bound to the fake server."""
    return RemoteCacheClient(redis_client=fake_redis)


@pytest.fixture
def unavailable_client():
    """Remote client with no store configured."""
    return RemoteCacheClient()


@pytest.fixture
def manager(client, clock):
    """Distributed manager over the fake server."""
    return DistributedCacheManager(client, clock=clock)
