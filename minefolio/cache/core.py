"""
Core cache data structures.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class FeedKind(Enum):
    """Feed types served by /api/home-feed, keyed by the `type` query value."""
    LIVE_RUNS = "live-runs"            # PaceMan live runs, registered players only
    RECENT_PACES = "recent-paces"      # PaceMan weekly pace history
    TWITCH_STREAMS = "twitch-streams"  # Twitch channels live now
    YOUTUBE_VIDEOS = "youtube-videos"  # Recent uploads
    YOUTUBE_LIVE = "youtube-live"      # Live and upcoming broadcasts

    @property
    def data_key(self) -> str:
        """Envelope key the feed's records are returned under."""
        return {
            FeedKind.LIVE_RUNS: "liveRuns",
            FeedKind.RECENT_PACES: "recentPaces",
            FeedKind.TWITCH_STREAMS: "liveStreams",
            FeedKind.YOUTUBE_VIDEOS: "recentVideos",
            FeedKind.YOUTUBE_LIVE: "liveStreams",
        }[self]

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["FeedKind"]:
        """Map a query value to a FeedKind, None when unknown."""
        try:
            return cls(value)
        except ValueError:
            return None


class CacheTier(Enum):
    """Which backend holds a cache key."""
    MEMORY = "memory"      # Process-local, lost on restart
    DATABASE = "database"  # api_cache table, survives restarts


class CacheSource(Enum):
    """Where a served value came from."""
    FRESH = "fresh"        # Read from a cache tier within TTL
    UPSTREAM = "upstream"  # Fetched from the source on this request
    DEGRADED = "degraded"  # Upstream failed, served an empty result
    UNCONFIGURED = "unconfigured"  # No credentials for the source, served empty

    @property
    def cacheable(self) -> bool:
        """Whether a response built from this source may be kept by a CDN."""
        return self in (CacheSource.FRESH, CacheSource.UPSTREAM)


@dataclass
class CacheEntry:
    """
    A cached value with its absolute expiry.

    Times are epoch seconds from the owning store's clock.
    """
    key: str
    value: Any
    stored_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        """A read at or after expires_at is a miss."""
        return now >= self.expires_at

    def age(self, now: float) -> float:
        return max(0.0, now - self.stored_at)


@dataclass
class CacheMeta:
    """
    Metadata about a cache access, exposed as response headers.
    """
    cache_source: str  # "fresh", "upstream" or "degraded"
    tier: Optional[str] = None
    ttl_seconds: Optional[int] = None
    age_seconds: Optional[float] = None
    last_updated: str = field(default_factory=_utc_timestamp)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        result = {
            "cacheSource": self.cache_source,
            "lastUpdated": self.last_updated,
        }
        if self.tier:
            result["_debug"] = {
                "tier": self.tier,
                "ttl": self.ttl_seconds,
                "age": round(self.age_seconds, 1) if self.age_seconds else None,
            }
        return result
