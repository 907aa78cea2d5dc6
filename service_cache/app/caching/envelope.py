"""
Cache entry envelope stored in the distributed tier.

On the wire an entry is JSON of the form::

    {"data": ..., "timestamp": 1700000000000, "ttl": 300,
     "staleAt": 1700000180000, "tags": ["judge:42"], "version": "v2"}

``timestamp`` and ``staleAt`` are epoch milliseconds; ``ttl`` is seconds.
Optional members are omitted rather than written as null.
"""

import json
from typing import Any, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_core import PydanticSerializationError

from shared.errors import CacheValidationError, EnvelopeDecodeError

T = TypeVar("T")

_OPTIONAL_WIRE_FIELDS = ("staleAt", "tags", "version")


class CacheEnvelope(BaseModel, Generic[T]):
    """A cached value plus the metadata needed for staleness and invalidation."""

    model_config = ConfigDict(populate_by_name=True)

    data: T
    timestamp: int
    ttl: int
    stale_at: Optional[int] = Field(default=None, alias="staleAt")
    tags: Optional[List[str]] = None
    version: Optional[str] = None

    @property
    def expires_at(self) -> int:
        """Epoch milliseconds at which the store drops the entry."""
        return self.timestamp + self.ttl * 1000

    def is_stale(self, now_ms: int) -> bool:
        """Whether the entry is past its stale boundary (still servable)."""
        if self.stale_at is None:
            return False
        return now_ms > self.stale_at


def compute_stale_at(timestamp_ms: int, ttl: int, stale_window: int) -> Optional[int]:
    """Stale boundary for an entry; None when staleness tracking is off.

    The window is clamped to the TTL so the boundary never precedes the
    write itself and never follows expiry.
    """
    if stale_window <= 0:
        return None
    window = min(stale_window, ttl)
    return timestamp_ms + (ttl - window) * 1000


def build_envelope(
    data: Any,
    ttl: int,
    timestamp_ms: int,
    *,
    stale_window: int = 0,
    tags: Optional[List[str]] = None,
    version: Optional[str] = None,
) -> CacheEnvelope[Any]:
    return CacheEnvelope[Any](
        data=data,
        timestamp=timestamp_ms,
        ttl=ttl,
        stale_at=compute_stale_at(timestamp_ms, ttl, stale_window),
        tags=list(tags) if tags else None,
        version=version,
    )


def encode_envelope(envelope: CacheEnvelope[Any]) -> str:
    """Serialize an envelope to its wire JSON."""
    try:
        payload = envelope.model_dump(mode="json", by_alias=True)
    except PydanticSerializationError as e:
        raise CacheValidationError("Cache payload is not JSON serializable", {"error": str(e)}) from e

    # Only the optional metadata is dropped when unset; None inside data is kept
    for name in _OPTIONAL_WIRE_FIELDS:
        if payload.get(name) is None:
            payload.pop(name, None)
    return json.dumps(payload, separators=(",", ":"))


def decode_envelope(raw: Any, payload_type: Optional[Type[Any]] = None) -> CacheEnvelope[Any]:
    """Parse wire JSON into an envelope, validating ``data`` as ``payload_type``."""
    model = CacheEnvelope[payload_type] if payload_type is not None else CacheEnvelope[Any]
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    if not isinstance(raw, str):
        raise EnvelopeDecodeError("Cache entry is not a string", {"type": type(raw).__name__})
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        raise EnvelopeDecodeError("Cache entry is not a valid envelope", {"error": str(e)}) from e
