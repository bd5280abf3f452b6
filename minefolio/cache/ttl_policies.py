"""
TTL configuration per feed kind and CDN header construction.
"""
from typing import Any, Dict

from .core import CacheTier, FeedKind

NO_STORE = "no-store"


class CacheTTL:
    """
    TTL presets (seconds) for lookups that are not feeds themselves.

    - SHORT: live data and the registered user index
    - MEDIUM: external API results, Twitch app token, channel link lists
    - LONG: identifiers that practically never change (YouTube channel ids)
    """
    SHORT = 60
    MEDIUM = 15 * 60
    LONG = 24 * 60 * 60


# TTL Configuration by feed kind (in seconds)
# cdn_max_age must never exceed ttl; the CDN serves stale for 2x cdn_max_age.
FEED_TTL_CONFIG: Dict[FeedKind, Dict[str, Any]] = {
    FeedKind.LIVE_RUNS: {
        "ttl": 60,                  # 1 minute, runs change split by split
        "cdn_max_age": 30,
        "tier": CacheTier.MEMORY,
        "cache_key": "paceman:liveruns",
    },
    FeedKind.RECENT_PACES: {
        "ttl": 15 * 60,             # 15 minutes, weekly history
        "cdn_max_age": 300,
        "tier": CacheTier.DATABASE,  # expensive to refetch (one call per player)
        "cache_key": "recent_paces:weekly",
    },
    FeedKind.TWITCH_STREAMS: {
        "ttl": 5 * 60,              # 5 minutes
        "cdn_max_age": 60,
        "tier": CacheTier.MEMORY,
        "cache_key": "twitch:streams",
    },
    FeedKind.YOUTUBE_VIDEOS: {
        "ttl": 15 * 60,             # 15 minutes over youtube_video_cache
        "cdn_max_age": 300,
        "tier": CacheTier.MEMORY,
        "cache_key": "youtube:videos",
    },
    FeedKind.YOUTUBE_LIVE: {
        "ttl": 2 * 60,              # 2 minutes over youtube_live_cache
        "cdn_max_age": 60,
        "tier": CacheTier.MEMORY,
        "cache_key": "youtube:live",
    },
}


def get_feed_policy(kind: FeedKind) -> Dict[str, Any]:
    """Get the caching policy for a feed kind."""
    return FEED_TTL_CONFIG[kind]


def get_cache_key(kind: FeedKind) -> str:
    """
    Cache key for a feed kind.

    Shared by every caller: it never includes favorites or any other
    per-request data, so one upstream fetch serves all requests.
    """
    return FEED_TTL_CONFIG[kind]["cache_key"]


def cache_control_header(kind: FeedKind, cacheable: bool = True) -> str:
    """
    Build the CDN Cache-Control header for a feed kind.

    Empty results served because a source failed or is not configured
    are not cacheable, so the CDN asks again on the next request.

    Returns:
        "public, s-maxage=N, stale-while-revalidate=2N", or "no-store"
    """
    if not cacheable:
        return NO_STORE
    config = FEED_TTL_CONFIG[kind]
    max_age = min(config["cdn_max_age"], config["ttl"])
    return f"public, s-maxage={max_age}, stale-while-revalidate={max_age * 2}"
