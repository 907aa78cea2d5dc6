"""
TTL presets, namespace prefixes and key helpers shared by cache consumers.
"""

import json
from typing import Any, Iterable, List, Mapping

from shared.errors import CacheValidationError


class CacheTTL:
    """Entry lifetimes in seconds."""

    SHORT = 60  # volatile data
    MEDIUM = 300  # semi-stable data
    LONG = 3600  # stable data
    DAY = 86400  # rarely changing data
    WEEK = 604800  # static content


class StaleWindow:
    """Seconds before expiry during which an entry is served but refreshed."""

    SHORT = 30
    MEDIUM = 120
    LONG = 600


class CachePrefix:
    """Namespaces, one per entity type."""

    JUDGE = "judge"
    COURT = "court"
    CASE = "case"
    ANALYTICS = "analytics"
    SEARCH = "search"
    USER = "user"
    SESSION = "session"
    API = "api"

    @classmethod
    def all(cls) -> List[str]:
        return [cls.JUDGE, cls.COURT, cls.CASE, cls.ANALYTICS, cls.SEARCH, cls.USER, cls.SESSION, cls.API]


# Tag indices outlive their longest member by this margin
TAG_INDEX_GRACE_SECONDS = 300

TAG_KEY_PREFIX = "tag"

# Separator plus the characters KEYS treats as glob syntax
_RESERVED_NAMESPACE_CHARS = frozenset(":*?[]\\")


def is_valid_namespace(namespace: str) -> bool:
    """Whether ``namespace`` can never match another namespace's keys or the tag indices."""
    return (
        bool(namespace)
        and namespace != TAG_KEY_PREFIX
        and not _RESERVED_NAMESPACE_CHARS.intersection(namespace)
    )


def validate_namespace(namespace: str) -> str:
    if not is_valid_namespace(namespace):
        raise CacheValidationError("Invalid cache namespace", {"namespace": namespace})
    return namespace


def build_namespaced_key(namespace: str, key: str) -> str:
    """Fully-qualified store key for an entry."""
    return f"{namespace}:{key}"


def build_tag_key(tag: str) -> str:
    """Store key for a tag index."""
    return f"{TAG_KEY_PREFIX}:{tag}"


def build_cache_key(params: Mapping[str, Any]) -> str:
    """Build a deterministic cache key from request parameters.

    None values are dropped, names are sorted, and nested values are
    rendered as compact JSON so ``{"b": 1, "a": [1]}`` and ``{"a": [1], "b": 1}``
    produce the same key.
    """
    parts = []
    for name in sorted(params):
        value = params[name]
        if value is None:
            continue
        if isinstance(value, (dict, list, tuple)):
            rendered = json.dumps(value, separators=(",", ":"), sort_keys=True, default=str)
        elif isinstance(value, bool):
            rendered = "true" if value else "false"
        else:
            rendered = str(value)
        parts.append(f"{name}:{rendered}")
    return "|".join(parts)


def generate_cache_tags(entity: str, ids: Iterable[Any]) -> List[str]:
    """Tags of the form ``<entity>:<id>`` for bulk invalidation."""
    return [f"{entity}:{entity_id}" for entity_id in ids]
