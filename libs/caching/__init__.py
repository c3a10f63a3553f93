"""
Caching utilities for the legal KB retrieval core.

This module provides:
- In-process TTL caches with passive expiry
- Single-flight de-duplication of concurrent upstream calls
- An optional Redis mirror for sharing retrieval results across processes
"""

from libs.caching.redis_client import close_redis_client, create_redis_client, health_check
from libs.caching.ttl_cache import CacheEntry, RetrievalCache, SingleFlight, TTLCache

__all__ = [
    "CacheEntry",
    "RetrievalCache",
    "SingleFlight",
    "TTLCache",
    "close_redis_client",
    "create_redis_client",
    "health_check",
]
