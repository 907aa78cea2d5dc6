"""
Distributed (tier 2) cache manager.

Wraps the remote store with namespacing, envelope serialization,
stale-while-revalidate and tag-based invalidation. The manager holds no
cache state of its own; everything durable lives in the store under
``<namespace>:<key>`` and ``tag:<tag>``.

Every public method degrades instead of raising when the store misbehaves:
reads become misses, writes become no-ops returning False/0.
"""

import asyncio
import functools
import inspect
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Type, Union

from shared.errors import CacheValidationError, EnvelopeDecodeError
from shared.logging import get_logger
from ..store.redis_client import PipelineOp, RemoteCacheClient
from .envelope import build_envelope, decode_envelope, encode_envelope
from .models import CacheLookup, CacheOptions, ComputeResult
from .presets import (
    CacheTTL,
    StaleWindow,
    TAG_INDEX_GRACE_SECONDS,
    build_namespaced_key,
    build_tag_key,
    validate_namespace,
)

ComputeFn = Callable[[], Union[Awaitable[Any], Any]]
RefreshListener = Callable[[str, str, Any, Optional[Exception]], None]


async def invoke_compute(compute_fn: ComputeFn) -> Any:
    """Run a compute callback that may be sync or async."""
    result = compute_fn()
    if inspect.isawaitable(result):
        result = await result
    return result


class DistributedCacheManager:
    """Stale-while-revalidate cache over a RemoteCacheClient."""

    def __init__(
        self,
        client: RemoteCacheClient,
        *,
        default_ttl: int = CacheTTL.MEDIUM,
        default_stale_window: int = StaleWindow.MEDIUM,
        payload_type: Optional[Type[Any]] = None,
        clock: Callable[[], float] = time.time,
    ):
        if default_ttl <= 0:
            raise CacheValidationError("default_ttl must be positive", {"default_ttl": default_ttl})
        if default_stale_window < 0:
            raise CacheValidationError(
                "default_stale_window must not be negative",
                {"default_stale_window": default_stale_window},
            )

        self.client = client
        self.default_ttl = default_ttl
        self.default_stale_window = default_stale_window
        self.payload_type = payload_type
        self.logger = get_logger("cache.distributed")
        self._clock = clock

        self._background_tasks: Set[asyncio.Task] = set()
        self._refreshing: Set[str] = set()
        self._refresh_listeners: List[RefreshListener] = []

    def is_available(self) -> bool:
        """Whether the remote store is configured."""
        return self.client.available

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def resolve_lifetimes(self, options: Optional[CacheOptions]) -> Tuple[int, int]:
        """Effective (ttl, stale_window) for a write; raises CacheValidationError when invalid."""
        ttl = self.default_ttl
        stale_window = self.default_stale_window
        if options is not None:
            if options.ttl is not None:
                ttl = options.ttl
            if options.stale_window is not None:
                stale_window = options.stale_window

        if ttl <= 0:
            raise CacheValidationError("ttl must be positive", {"ttl": ttl})
        if stale_window < 0:
            raise CacheValidationError("stale_window must not be negative", {"stale_window": stale_window})
        return ttl, stale_window

    def _tag_index_ops(self, full_keys: List[str], tags: Iterable[str], ttl: int) -> List[PipelineOp]:
        """Ops adding keys to each tag index without ever shortening its expiry."""
        index_ttl = ttl + TAG_INDEX_GRACE_SECONDS
        ops: List[PipelineOp] = []
        for tag in dict.fromkeys(tags):
            tag_key = build_tag_key(tag)
            ops.append(PipelineOp("sadd", tag_key, *full_keys))
            # NX covers a freshly created index, GT extends an existing one
            ops.append(PipelineOp("expire", tag_key, index_ttl, nx=True))
            ops.append(PipelineOp("expire", tag_key, index_ttl, gt=True))
        return ops

    def _decode(self, raw: Any, payload_type: Optional[Type[Any]], namespace: str, key: str):
        try:
            return decode_envelope(raw, payload_type or self.payload_type)
        except EnvelopeDecodeError as e:
            self.logger.warning(
                "Discarding undecodable cache entry",
                namespace=namespace,
                key=key,
                error=e.message,
            )
            return None

    async def get(
        self,
        namespace: str,
        key: str,
        *,
        check_stale: bool = False,
        expected_version: Optional[str] = None,
        payload_type: Optional[Type[Any]] = None,
    ) -> CacheLookup[Any]:
        """Read an entry; staleness is only reported when ``check_stale`` is set."""
        if not self.client.available:
            return CacheLookup.miss()

        full_key = build_namespaced_key(namespace, key)
        try:
            raw = await self.client.get(full_key)
        except Exception as e:
            self.logger.error("Cache get error", namespace=namespace, key=key, error=str(e))
            return CacheLookup.miss()

        if raw is None:
            return CacheLookup.miss()

        envelope = self._decode(raw, payload_type, namespace, key)
        if envelope is None:
            return CacheLookup.miss()

        if expected_version is not None and envelope.version != expected_version:
            self.logger.debug(
                "Cache entry version mismatch",
                namespace=namespace,
                key=key,
                expected=expected_version,
                found=envelope.version,
            )
            return CacheLookup.miss()

        is_stale = envelope.is_stale(self._now_ms()) if check_stale else False
        return CacheLookup(data=envelope.data, is_stale=is_stale, cached=True)

    async def set(self, namespace: str, key: str, data: Any, options: Optional[CacheOptions] = None) -> bool:
        """Write an entry and index it under its tags."""
        validate_namespace(namespace)
        ttl, stale_window = self.resolve_lifetimes(options)
        if not self.client.available:
            return False

        tags = options.tags if options else None
        version = options.version if options else None
        full_key = build_namespaced_key(namespace, key)

        try:
            envelope = build_envelope(
                data,
                ttl,
                self._now_ms(),
                stale_window=stale_window,
                tags=tags,
                version=version,
            )
            payload = encode_envelope(envelope)
        except CacheValidationError as e:
            self.logger.error("Cache set error", namespace=namespace, key=key, error=e.message)
            return False

        try:
            if tags:
                ops = [PipelineOp("set", full_key, payload, ex=ttl)]
                ops.extend(self._tag_index_ops([full_key], tags, ttl))
                results = await self.client.pipeline(ops)
                return bool(results[0])

            return await self.client.set(full_key, payload, ttl)
        except Exception as e:
            self.logger.error("Cache set error", namespace=namespace, key=key, error=str(e))
            return False

    async def delete(self, namespace: str, key: str) -> bool:
        """Delete a single entry."""
        if not self.client.available:
            return False

        try:
            await self.client.delete(build_namespaced_key(namespace, key))
            return True
        except Exception as e:
            self.logger.error("Cache delete error", namespace=namespace, key=key, error=str(e))
            return False

    async def tag_members(self, tag: str) -> List[str]:
        """Fully-qualified keys currently indexed under a tag."""
        if not self.client.available:
            return []

        try:
            return sorted(await self.client.smembers(build_tag_key(tag)))
        except Exception as e:
            self.logger.error("Tag lookup error", tag=tag, error=str(e))
            return []

    async def invalidate_by_tag(self, tag: str) -> int:
        """Delete every key carrying ``tag`` plus the index itself."""
        if not self.client.available:
            return 0

        tag_key = build_tag_key(tag)
        try:
            members = sorted(await self.client.smembers(tag_key))
            if not members:
                return 0

            ops = [PipelineOp("delete", member) for member in members]
            ops.append(PipelineOp("delete", tag_key))
            results = await self.client.pipeline(ops)

            deleted = sum(int(result) for result in results[:-1] if result)
            self.logger.info("Cache invalidated by tag", tag=tag, keys_deleted=deleted)
            return deleted
        except Exception as e:
            self.logger.error("Tag invalidation error", tag=tag, error=str(e))
            return 0

    async def batch_get(
        self,
        namespace: str,
        keys: Iterable[str],
        *,
        payload_type: Optional[Type[Any]] = None,
    ) -> Dict[str, Any]:
        """Read many entries in one round trip; missing keys map to None."""
        unique_keys = list(dict.fromkeys(keys))
        results: Dict[str, Any] = {key: None for key in unique_keys}
        if not self.client.available or not unique_keys:
            return results

        try:
            raws = await self.client.pipeline(
                [PipelineOp("get", build_namespaced_key(namespace, key)) for key in unique_keys]
            )
        except Exception as e:
            self.logger.error("Batch get error", namespace=namespace, key_count=len(unique_keys), error=str(e))
            return results

        for key, raw in zip(unique_keys, raws):
            if raw is None:
                continue
            envelope = self._decode(raw, payload_type, namespace, key)
            if envelope is not None:
                results[key] = envelope.data

        return results

    async def batch_set(
        self,
        namespace: str,
        entries: Mapping[str, Any],
        options: Optional[CacheOptions] = None,
    ) -> int:
        """Write many entries in one round trip, returning how many were stored."""
        validate_namespace(namespace)
        ttl, stale_window = self.resolve_lifetimes(options)
        if not self.client.available or not entries:
            return 0

        tags = options.tags if options else None
        version = options.version if options else None
        now_ms = self._now_ms()

        ops: List[PipelineOp] = []
        written: List[str] = []
        for key, data in entries.items():
            try:
                payload = encode_envelope(
                    build_envelope(data, ttl, now_ms, stale_window=stale_window, tags=tags, version=version)
                )
            except CacheValidationError as e:
                self.logger.warning("Skipping unserializable batch entry", namespace=namespace, key=key, error=e.message)
                continue
            full_key = build_namespaced_key(namespace, key)
            ops.append(PipelineOp("set", full_key, payload, ex=ttl))
            written.append(full_key)

        if not ops:
            return 0
        set_count = len(ops)
        if tags:
            ops.extend(self._tag_index_ops(written, tags, ttl))

        try:
            results = await self.client.pipeline(ops)
        except Exception as e:
            self.logger.error("Batch set error", namespace=namespace, entry_count=len(entries), error=str(e))
            return 0

        return sum(1 for result in results[:set_count] if result)

    async def get_or_compute(
        self,
        namespace: str,
        key: str,
        compute_fn: ComputeFn,
        options: Optional[CacheOptions] = None,
        *,
        payload_type: Optional[Type[Any]] = None,
    ) -> ComputeResult[Any]:
        """Return the cached value (refreshing it in the background when stale) or compute it.

        Errors from ``compute_fn`` on a full miss propagate to the caller.
        """
        cached = await self.get(
            namespace,
            key,
            check_stale=True,
            expected_version=options.version if options else None,
            payload_type=payload_type,
        )

        if cached.cached and cached.data is not None:
            if cached.is_stale:
                self.refresh_in_background(namespace, key, compute_fn, options)
            return ComputeResult(data=cached.data, cached=True, was_stale=cached.is_stale)

        data = await invoke_compute(compute_fn)
        await self.set(namespace, key, data, options)
        return ComputeResult(data=data, cached=False, was_stale=False)

    def add_refresh_listener(self, listener: RefreshListener) -> None:
        """Register ``listener(namespace, key, data, error)`` for finished background refreshes."""
        self._refresh_listeners.append(listener)

    def refresh_in_background(
        self,
        namespace: str,
        key: str,
        compute_fn: ComputeFn,
        options: Optional[CacheOptions] = None,
    ) -> Optional[asyncio.Task]:
        """Spawn a detached refresh; at most one runs per key at a time."""
        full_key = build_namespaced_key(namespace, key)
        if full_key in self._refreshing:
            self.logger.debug("Background refresh already in flight", namespace=namespace, key=key)
            return None

        self._refreshing.add(full_key)
        task = asyncio.get_running_loop().create_task(
            self._refresh(namespace, key, compute_fn, options),
            name=f"cache-refresh:{full_key}",
        )
        self._background_tasks.add(task)
        task.add_done_callback(functools.partial(self._on_refresh_done, full_key))
        return task

    async def _refresh(
        self,
        namespace: str,
        key: str,
        compute_fn: ComputeFn,
        options: Optional[CacheOptions],
    ) -> None:
        data: Any = None
        error: Optional[Exception] = None
        try:
            data = await invoke_compute(compute_fn)
            await self.set(namespace, key, data, options)
        except Exception as e:
            error = e
            self.logger.error("Background cache refresh failed", namespace=namespace, key=key, error=str(e))
        else:
            self.logger.debug("Background cache refresh completed", namespace=namespace, key=key)

        for listener in list(self._refresh_listeners):
            try:
                listener(namespace, key, data, error)
            except Exception as e:
                self.logger.error("Refresh listener failed", namespace=namespace, key=key, error=str(e))

    def _on_refresh_done(self, full_key: str, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        self._refreshing.discard(full_key)

    @property
    def pending_refreshes(self) -> int:
        return len(self._background_tasks)

    async def wait_for_refreshes(self) -> None:
        """Wait for every background refresh spawned so far."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def clear_namespace(self, namespace: str) -> int:
        """Delete every entry under ``namespace:*``."""
        validate_namespace(namespace)
        if not self.client.available:
            return 0

        try:
            keys = await self.client.keys(f"{namespace}:*")
            if not keys:
                return 0

            await self.client.pipeline([PipelineOp("delete", key) for key in keys])
            self.logger.info("Cleared cache namespace", namespace=namespace, keys_count=len(keys))
            return len(keys)
        except Exception as e:
            self.logger.error("Clear namespace error", namespace=namespace, error=str(e))
            return 0

    async def close(self) -> None:
        """Drain background refreshes; the shared client is closed by its owner."""
        await self.wait_for_refreshes()
