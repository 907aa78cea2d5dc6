"""
Redis client wrapper for the distributed cache tier.
"""

from typing import Any, Dict, List, Optional, Sequence, Set

import redis.asyncio as redis

from shared.config import CacheConfig
from shared.errors import CacheConfigurationError
from shared.logging import get_logger


class PipelineOp:
    """A single command queued into a pipelined round trip."""

    __slots__ = ("command", "args", "kwargs")

    SUPPORTED_COMMANDS = frozenset({"get", "set", "delete", "sadd", "smembers", "expire"})

    def __init__(self, command: str, *args: Any, **kwargs: Any):
        if command not in self.SUPPORTED_COMMANDS:
            raise ValueError(f"Unsupported pipeline command: {command}")
        self.command = command
        self.args = args
        self.kwargs = kwargs

    def __repr__(self) -> str:
        return f"PipelineOp({self.command!r}, {self.args!r}, {self.kwargs!r})"


class RemoteCacheClient:
    """Thin async wrapper over a Redis-compatible key-value store.

    When no URL is configured the client is *unavailable*: every read returns
    "not cached" and every write is a no-op. Transient store errors are left
    to the caller, which knows the namespace/key context worth logging, with
    the exception of pipelines where one failed command must not hide the
    results of the others.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        token: Optional[str] = None,
        *,
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
        retry_on_timeout: bool = True,
        health_check_interval: int = 30,
        redis_client: Optional[redis.Redis] = None,
    ):
        self.url = url
        self.logger = get_logger("cache.store")
        self._redis: Optional[redis.Redis] = redis_client

        if self._redis is not None:
            return

        if not url:
            self.logger.warning("Redis not configured, caching disabled")
            return

        options: Dict[str, Any] = {
            "encoding": "utf-8",
            "decode_responses": True,
            "socket_timeout": socket_timeout,
            "socket_connect_timeout": socket_connect_timeout,
            "retry_on_timeout": retry_on_timeout,
            "health_check_interval": health_check_interval,
        }
        if token:
            options["password"] = token

        try:
            self._redis = redis.from_url(url, **options)
        except ValueError as e:
            self.logger.error("Failed to initialize Redis client - caching will be disabled", error=str(e))
            self._redis = None

    @classmethod
    def from_config(cls, config: CacheConfig) -> "RemoteCacheClient":
        """Build a client from cache configuration."""
        return cls(
            config.redis_url,
            config.redis_token,
            socket_timeout=config.socket_timeout,
            socket_connect_timeout=config.socket_connect_timeout,
            retry_on_timeout=config.retry_on_timeout,
            health_check_interval=config.health_check_interval,
        )

    @property
    def available(self) -> bool:
        """Whether a remote store is configured."""
        return self._redis is not None

    def require(self) -> redis.Redis:
        """Return the underlying redis client or fail loudly."""
        if self._redis is None:
            raise CacheConfigurationError(
                "Remote cache store is not configured",
                {"url_configured": bool(self.url)},
            )
        return self._redis

    async def get(self, key: str) -> Optional[str]:
        """Get a raw value; None when missing or unavailable."""
        if self._redis is None:
            return None
        return await self._redis.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Set a raw value with expiry, overwriting unconditionally."""
        if self._redis is None:
            return False
        return bool(await self._redis.set(key, value, ex=ttl_seconds))

    async def delete(self, *keys: str) -> int:
        """Delete keys, returning how many existed."""
        if self._redis is None or not keys:
            return 0
        return int(await self._redis.delete(*keys))

    async def sadd(self, key: str, *members: str) -> int:
        """Add members to a set."""
        if self._redis is None or not members:
            return 0
        return int(await self._redis.sadd(key, *members))

    async def smembers(self, key: str) -> Set[str]:
        """Get all members of a set."""
        if self._redis is None:
            return set()
        members = await self._redis.smembers(key)
        return set(members or ())

    async def expire(self, key: str, seconds: int, *, nx: bool = False, gt: bool = False) -> bool:
        """Set a key's expiry."""
        if self._redis is None:
            return False
        return bool(await self._redis.expire(key, seconds, nx=nx, gt=gt))

    async def keys(self, pattern: str) -> List[str]:
        """List keys matching a glob pattern."""
        if self._redis is None:
            return []
        return list(await self._redis.keys(pattern))

    async def pipeline(self, ops: Sequence[PipelineOp]) -> List[Any]:
        """Execute ops in one round trip.

        Results keep request order. A command that fails yields None in its
        slot and is logged; the remaining results are still returned.
        """
        if self._redis is None:
            return [None] * len(ops)
        if not ops:
            return []

        pipe = self._redis.pipeline(transaction=False)
        for op in ops:
            getattr(pipe, op.command)(*op.args, **op.kwargs)

        results = await pipe.execute(raise_on_error=False)

        normalized: List[Any] = []
        for op, result in zip(ops, results):
            if isinstance(result, Exception):
                self.logger.warning(
                    "Pipeline command failed",
                    command=op.command,
                    key=op.args[0] if op.args else None,
                    error=str(result),
                )
                normalized.append(None)
            else:
                normalized.append(result)
        return normalized

    async def health_check(self) -> bool:
        """Check Redis health."""
        if self._redis is None:
            return False
        try:
            await self._redis.ping()
            return True
        except Exception as e:
            self.logger.warning("Redis health check failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the connection pool."""
        if self._redis is not None:
            await self._redis.aclose()
            self.logger.info("Redis cache client closed")
