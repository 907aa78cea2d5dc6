"""
Shared utilities for the judicial cache layer.

This package aggregates common building blocks consumed by the cache:

- config: Cache configuration via pydantic-settings
- logging: Structured logging with correlation context
- metrics: Prometheus metrics helpers
- errors: Canonical error types

Do not import from service_* packages into shared/.
"""
