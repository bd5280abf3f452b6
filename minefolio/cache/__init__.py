"""
Two-tier TTL caching with shared feed keys, request coalescing and detached refresh.
"""
from .core import CacheEntry, CacheMeta, CacheSource, CacheTier, FeedKind
from .ttl_policies import (
    CacheTTL,
    FEED_TTL_CONFIG,
    get_feed_policy,
    get_cache_key,
    cache_control_header,
)
from .coalescer import RequestCoalescer
from .stores import MISS, CacheStore, MemoryCacheStore, DatabaseCacheStore
from .manager import CacheManager, PayloadCodec, list_codec

__all__ = [
    # Core types
    "CacheEntry",
    "CacheMeta",
    "CacheSource",
    "CacheTier",
    "FeedKind",
    # TTL policies
    "CacheTTL",
    "FEED_TTL_CONFIG",
    "get_feed_policy",
    "get_cache_key",
    "cache_control_header",
    # Coalescing
    "RequestCoalescer",
    # Stores
    "MISS",
    "CacheStore",
    "MemoryCacheStore",
    "DatabaseCacheStore",
    # Manager
    "CacheManager",
    "PayloadCodec",
    "list_codec",
]
