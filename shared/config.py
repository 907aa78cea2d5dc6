"""
Shared configuration management for the judicial cache layer.
"""

from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CacheConfig(BaseSettings):
    """Cache configuration read from the process environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    env: str = Field(default="local", validation_alias=AliasChoices("CACHE_ENV", "env"))

    # Remote store (redis:// or rediss://); unset means caching is disabled, not a startup failure
    redis_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("CACHE_REDIS_URL", "redis_url"),
    )
    redis_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("CACHE_REDIS_TOKEN", "redis_token"),
    )

    # Transport (applied once at client construction)
    socket_timeout: float = Field(default=5.0, validation_alias=AliasChoices("CACHE_SOCKET_TIMEOUT", "socket_timeout"))
    socket_connect_timeout: float = Field(
        default=5.0,
        validation_alias=AliasChoices("CACHE_SOCKET_CONNECT_TIMEOUT", "socket_connect_timeout"),
    )
    retry_on_timeout: bool = Field(default=True, validation_alias=AliasChoices("CACHE_RETRY_ON_TIMEOUT", "retry_on_timeout"))
    health_check_interval: int = Field(
        default=30,
        validation_alias=AliasChoices("CACHE_HEALTH_CHECK_INTERVAL", "health_check_interval"),
    )

    # Defaults for profiles that leave ttl, stale window or size unset
    default_ttl: int = Field(default=300, validation_alias=AliasChoices("CACHE_DEFAULT_TTL", "default_ttl"))
    default_stale_window: int = Field(
        default=120,
        validation_alias=AliasChoices("CACHE_DEFAULT_STALE_WINDOW", "default_stale_window"),
    )
    tier1_max_size: int = Field(default=500, validation_alias=AliasChoices("CACHE_TIER1_MAX_SIZE", "tier1_max_size"))

    # Observability
    enable_metrics: bool = Field(default=True, validation_alias=AliasChoices("CACHE_ENABLE_METRICS", "enable_metrics"))

    @property
    def redis_configured(self) -> bool:
        """Whether enough settings are present to build a remote client."""
        return bool(self.redis_url)


def get_config(**overrides) -> CacheConfig:
    """Get cache configuration, optionally overriding individual fields."""
    return CacheConfig(**overrides)
