"""
Judicial cache layer.

Structure:
- app.store: Redis client wrapper (get/set/delete/sets/pipelines with TTL).
- app.caching: Envelope codec, distributed manager, in-process tier,
  multi-tier orchestrator and the per-namespace registry.
"""
