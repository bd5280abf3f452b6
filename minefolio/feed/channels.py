"""
Correlation between registered players and their external channels.

Link lists and resolved channel ids change far less often than the live
data fetched for them, so each lookup is cached on its own with a longer
TTL than the feeds that use it.
"""
import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import sessionmaker

from minefolio import crud
from minefolio.cache import CacheManager, CacheTTL
from minefolio.errors import UpstreamError
from minefolio.sources import YouTubeClient

logger = logging.getLogger("feed.channels")

# YouTube quota: search costs 100 units per channel
MAX_YOUTUBE_CHANNELS = 10


class ChannelDirectory:
    """Cached (identifier, mcid) link lists and YouTube channel resolution."""

    def __init__(
        self,
        cache: CacheManager,
        session_factory: sessionmaker,
        youtube: Optional[YouTubeClient] = None,
    ):
        self._cache = cache
        self._session_factory = session_factory
        self._youtube = youtube

    def links(self, platform: str) -> List[Tuple[str, str]]:
        """(identifier, mcid) for every public profile linking platform."""
        def fetch():
            with self._session_factory() as db:
                return crud.get_public_social_links(db, platform)

        links, _ = self._cache.get_or_fetch(f"{platform}:links", fetch, CacheTTL.MEDIUM)
        return links

    def resolve_youtube_channel(self, identifier: str) -> Optional[str]:
        """Channel id for a stored identifier; unresolvable handles are not cached."""
        if self._youtube is None:
            return None
        channel_id, _ = self._cache.get_or_fetch(
            f"youtube:channel:{identifier}",
            lambda: self._youtube.resolve_channel_id(identifier),
            CacheTTL.LONG,
            should_store=lambda value: value is not None,
        )
        return channel_id

    def youtube_channels(self, limit: int = MAX_YOUTUBE_CHANNELS) -> List[Tuple[str, str]]:
        """Resolved (channel_id, mcid) pairs, at most limit of them."""
        channels = []
        for identifier, mcid in self.links("youtube")[:limit]:
            try:
                channel_id = self.resolve_youtube_channel(identifier)
            except UpstreamError as e:
                logger.warning(f"Resolving YouTube channel {identifier} failed: {e}")
                continue
            if channel_id is None:
                logger.warning(f"Could not resolve YouTube channel for {mcid}: {identifier}")
                continue
            channels.append((channel_id, mcid))
        return channels
