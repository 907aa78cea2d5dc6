"""
Remote store access for the distributed cache tier.
"""

from .redis_client import PipelineOp, RemoteCacheClient

__all__ = ["PipelineOp", "RemoteCacheClient"]
