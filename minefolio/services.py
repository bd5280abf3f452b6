"""
Process-wide service instances, built lazily from settings.

Everything the HTTP layer and the scheduler share (the cache above all)
is constructed here once; tests replace these through FastAPI dependency
overrides instead of touching module state.
"""
import logging
from typing import Optional

from config.settings import settings
from minefolio.cache import CacheManager, DatabaseCacheStore, MemoryCacheStore
from minefolio.db import SessionLocal
from minefolio.feed import ChannelDirectory, FeedAggregator
from minefolio.refresh.paceman_cache import PacemanCacheRefresher
from minefolio.refresh.youtube_cache import YouTubeCacheRefresher
from minefolio.sources import PaceManClient, TwitchClient, YouTubeClient

logger = logging.getLogger("services")

_cache_manager: Optional[CacheManager] = None
_database_store: Optional[DatabaseCacheStore] = None
_channels: Optional[ChannelDirectory] = None
_aggregator: Optional[FeedAggregator] = None
_youtube_refresher: Optional[YouTubeCacheRefresher] = None
_paceman_refresher: Optional[PacemanCacheRefresher] = None


def get_database_store() -> DatabaseCacheStore:
    global _database_store
    if _database_store is None:
        _database_store = DatabaseCacheStore(SessionLocal)
    return _database_store


def get_cache_manager() -> CacheManager:
    """Get or create the global cache manager."""
    global _cache_manager
    if _cache_manager is None:
        _cache_manager = CacheManager(
            memory_store=MemoryCacheStore(
                max_entries=settings.memory_cache_max_entries,
                cleanup_interval=settings.memory_cache_cleanup_interval,
            ),
            database_store=get_database_store(),
            max_background_workers=settings.revalidation_workers,
            coalesce_timeout=settings.coalesce_timeout,
        )
    return _cache_manager


def get_youtube_client() -> Optional[YouTubeClient]:
    if not settings.youtube_api_key:
        return None
    return YouTubeClient(settings.youtube_api_key)


def get_twitch_client() -> Optional[TwitchClient]:
    if not (settings.twitch_client_id and settings.twitch_client_secret):
        return None
    return TwitchClient(settings.twitch_client_id, settings.twitch_client_secret)


def get_channel_directory() -> ChannelDirectory:
    global _channels
    if _channels is None:
        _channels = ChannelDirectory(get_cache_manager(), SessionLocal, get_youtube_client())
    return _channels


def get_youtube_refresher() -> Optional[YouTubeCacheRefresher]:
    """None when no YouTube API key is configured."""
    global _youtube_refresher
    if _youtube_refresher is None:
        client = get_youtube_client()
        if client is None:
            return None
        _youtube_refresher = YouTubeCacheRefresher(
            SessionLocal,
            client,
            get_channel_directory(),
            cache=get_cache_manager(),
        )
    return _youtube_refresher


def get_paceman_refresher() -> PacemanCacheRefresher:
    global _paceman_refresher
    if _paceman_refresher is None:
        _paceman_refresher = PacemanCacheRefresher(
            SessionLocal,
            PaceManClient(),
            cache=get_cache_manager(),
        )
    return _paceman_refresher


def get_aggregator() -> FeedAggregator:
    """Get or create the global feed aggregator."""
    global _aggregator
    if _aggregator is None:
        twitch = get_twitch_client()
        youtube = get_youtube_client()
        logger.info(
            f"Feed sources: twitch={'on' if twitch else 'off'}, "
            f"youtube={'on' if youtube else 'off'}"
        )
        _aggregator = FeedAggregator(
            cache=get_cache_manager(),
            session_factory=SessionLocal,
            paceman=PaceManClient(),
            channels=get_channel_directory(),
            twitch=twitch,
            youtube=youtube,
            youtube_refresher=get_youtube_refresher(),
        )
    return _aggregator
