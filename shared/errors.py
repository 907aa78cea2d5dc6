"""
Shared error handling for the judicial cache layer.

Store-level failures are never raised to callers; the cache degrades to a
miss instead. The exceptions below cover programmer errors and the internal
decode path only.
"""

from typing import Dict, Any, Optional


class CacheLayerException(Exception):
    """Base exception for the cache layer."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a loggable mapping."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class CacheConfigurationError(CacheLayerException):
    """Cache wiring errors (unknown namespace, missing client)."""

    def __init__(self, message: str = "Cache configuration error", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_CONFIGURATION_ERROR", message, details)


class CacheValidationError(CacheLayerException):
    """Invalid cache options supplied by the caller."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_VALIDATION_ERROR", message, details)


class EnvelopeDecodeError(CacheLayerException):
    """Stored value could not be decoded into a cache envelope."""

    def __init__(self, message: str = "Envelope decode failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("ENVELOPE_DECODE_ERROR", message, details)
