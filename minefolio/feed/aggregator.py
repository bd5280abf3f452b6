"""
Home feed aggregation.

One handler per FeedKind. Every handler reads through the shared cache
key of its kind, so a single upstream fetch serves every caller until the
TTL runs out; per-caller favorites are applied only after the cache.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from minefolio.cache import (
    CacheManager,
    CacheMeta,
    CacheSource,
    CacheTTL,
    FeedKind,
    PayloadCodec,
    cache_control_header,
    get_feed_policy,
    list_codec,
)
from minefolio.errors import UpstreamError
from minefolio.favorites import is_favorite, sort_by_favorite
from minefolio.records import LiveRun, RecentPace
from minefolio.sources import (
    PaceManClient,
    TwitchClient,
    YouTubeClient,
    filter_registered,
    latest_split,
    split_label,
)
from .channels import ChannelDirectory
from .user_index import RegisteredUserIndex, build_registered_user_index

logger = logging.getLogger("feed.aggregator")

USER_INDEX_KEY = "users:registered"
TWITCH_TOKEN_KEY = "twitch:app_token"

MAX_LIVE_RUNS = 20

# getRecentRuns parameters for the recent-paces feed
RECENT_PACES_HOURS = 168
RECENT_PACES_PER_USER = 5
RECENT_PACES_LIMIT = 20

# Failures that degrade a feed to empty instead of failing the request
RECOVERABLE_ERRORS = (UpstreamError, TimeoutError, SQLAlchemyError)


@dataclass
class FeedResult:
    """A feed ready to serve: envelope, CDN header and cache metadata."""
    kind: FeedKind
    payload: Dict[str, Any]
    cache_control: str
    meta: CacheMeta

    def to_dict(self) -> Dict[str, Any]:
        return {**self.payload, "_meta": self.meta.to_dict()}


class FeedAggregator:
    """
    Serves the five home feeds.

    Twitch and YouTube collaborators are optional; a feed whose source is
    not configured is served empty.
    """

    def __init__(
        self,
        cache: CacheManager,
        session_factory: sessionmaker,
        paceman: PaceManClient,
        channels: ChannelDirectory,
        twitch: Optional[TwitchClient] = None,
        youtube: Optional[YouTubeClient] = None,
        youtube_refresher=None,
    ):
        self._cache = cache
        self._session_factory = session_factory
        self._paceman = paceman
        self._channels = channels
        self._twitch = twitch
        self._youtube = youtube
        self._youtube_refresher = youtube_refresher

        self._handlers: Dict[FeedKind, Callable[[], Tuple[list, CacheMeta]]] = {
            FeedKind.LIVE_RUNS: self._live_runs,
            FeedKind.RECENT_PACES: self._recent_paces,
            FeedKind.TWITCH_STREAMS: self._twitch_streams,
            FeedKind.YOUTUBE_VIDEOS: self._youtube_videos,
            FeedKind.YOUTUBE_LIVE: self._youtube_live,
        }

    def get_feed(self, kind: FeedKind, favorites: Iterable[str] = ()) -> FeedResult:
        """
        Build the envelope for one feed kind.

        Never raises for upstream trouble: a failed source yields an empty
        list with cache_source "degraded", or "unconfigured" when the
        source has no credentials. Neither is cacheable by the CDN.
        """
        favorites = list(favorites)
        items, meta = self._handlers[kind]()
        items = sort_by_favorite(items, favorites)
        if kind == FeedKind.LIVE_RUNS:
            items = items[:MAX_LIVE_RUNS]

        index = self._user_index_or_empty()
        payload: Dict[str, Any] = {
            kind.data_key: [self._enrich(item, index, favorites) for item in items],
        }
        if kind in (FeedKind.LIVE_RUNS, FeedKind.RECENT_PACES):
            payload["mcidToUuid"] = index.mcid_to_uuid()
            payload["mcidToDisplayName"] = index.mcid_to_display_name()

        return FeedResult(
            kind=kind,
            payload=payload,
            cache_control=cache_control_header(kind, CacheSource(meta.cache_source).cacheable),
            meta=meta,
        )

    def get_user_index(self) -> RegisteredUserIndex:
        """Registered players, rebuilt from the users table on each cache miss."""
        def build():
            with self._session_factory() as db:
                return build_registered_user_index(db)

        index, _ = self._cache.get_or_fetch(USER_INDEX_KEY, build, CacheTTL.SHORT)
        return index

    # =========================================================================
    # FEED HANDLERS
    # =========================================================================

    def _live_runs(self):
        def fetch() -> List[LiveRun]:
            with ThreadPoolExecutor(max_workers=2) as executor:
                index_future = executor.submit(self.get_user_index)
                runs_future = executor.submit(self._paceman.fetch_live_runs)
                index = index_future.result()
                runs = runs_future.result()
            return filter_registered(runs, index.identifiers)

        return self._cached(FeedKind.LIVE_RUNS, fetch)

    def _recent_paces(self):
        def fetch() -> List[RecentPace]:
            index = self.get_user_index()
            return self._paceman.fetch_recent_runs_for_users(
                index.mcids,
                hours=RECENT_PACES_HOURS,
                limit_per_user=RECENT_PACES_PER_USER,
                total_limit=RECENT_PACES_LIMIT,
            )

        return self._cached(FeedKind.RECENT_PACES, fetch, codec=list_codec(RecentPace))

    def _twitch_streams(self):
        if self._twitch is None:
            return self._unconfigured(FeedKind.TWITCH_STREAMS)

        def fetch():
            links = self._channels.links("twitch")
            if not links:
                return []
            streams = self._twitch.get_live_streams(
                self._twitch_token(),
                [login for login, _ in links],
            )
            mcid_by_login = {login.lower(): mcid for login, mcid in links}
            for stream in streams:
                stream.mcid = mcid_by_login.get(stream.channel_login.lower(), "")
            return streams

        return self._cached(FeedKind.TWITCH_STREAMS, fetch)

    def _youtube_videos(self):
        refresher = self._youtube_refresher
        if self._youtube is None and refresher is None:
            return self._unconfigured(FeedKind.YOUTUBE_VIDEOS)

        def fetch():
            if refresher is not None:
                if refresher.needs_update():
                    self._cache.run_in_background("youtube:new-videos", refresher.refresh_new_videos)
                videos = refresher.get_cached_videos()
                if videos:
                    return videos
            if self._youtube is None:
                return []
            # Table is still empty; read the API directly this once
            return self._youtube.get_recent_videos(self._channels.youtube_channels())

        return self._cached(FeedKind.YOUTUBE_VIDEOS, fetch)

    def _youtube_live(self):
        refresher = self._youtube_refresher
        if refresher is None:
            return self._unconfigured(FeedKind.YOUTUBE_LIVE)

        def fetch():
            if refresher.needs_live_update():
                self._cache.run_in_background("youtube:live", refresher.refresh_live_streams)
            return refresher.get_cached_live_streams()

        return self._cached(FeedKind.YOUTUBE_LIVE, fetch)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _cached(
        self,
        kind: FeedKind,
        fetch_fn: Callable[[], list],
        codec: Optional[PayloadCodec] = None,
    ) -> Tuple[list, CacheMeta]:
        policy = get_feed_policy(kind)
        try:
            return self._cache.get_or_fetch(
                policy["cache_key"],
                fetch_fn,
                policy["ttl"],
                tier=policy["tier"],
                codec=codec,
            )
        except RECOVERABLE_ERRORS as e:
            logger.warning(f"Feed {kind.value} degraded to empty: {e}")
            return [], CacheMeta(cache_source=CacheSource.DEGRADED.value)

    def _unconfigured(self, kind: FeedKind) -> Tuple[list, CacheMeta]:
        logger.debug(f"Feed {kind.value} has no configured source")
        return [], CacheMeta(cache_source=CacheSource.UNCONFIGURED.value)

    def _twitch_token(self) -> str:
        token, _ = self._cache.get_or_fetch(
            TWITCH_TOKEN_KEY,
            lambda: self._twitch.get_app_token().access_token,
            CacheTTL.MEDIUM,
        )
        return token

    def _user_index_or_empty(self) -> RegisteredUserIndex:
        try:
            return self.get_user_index()
        except (SQLAlchemyError, TimeoutError) as e:
            logger.warning(f"User index unavailable, serving without enrichment: {e}")
            return RegisteredUserIndex()

    @staticmethod
    def _enrich(item, index: RegisteredUserIndex, favorites: List[str]) -> Dict[str, Any]:
        """
        Record as JSON, with the local profile attached for registered
        players and the caller's favorite flag. Live runs also carry their
        furthest split.
        """
        data = item.to_dict()
        data["isFavorite"] = bool(item.identifier) and is_favorite(favorites, item.identifier)
        if isinstance(item, LiveRun):
            split = latest_split(item)
            data["latestSplit"] = None if split is None else {
                "eventId": split.event_id,
                "label": split_label(split.event_id),
                "igt": split.igt,
            }
        profile = index.get(item.identifier) if item.identifier else None
        if profile is not None:
            data["profile"] = profile.to_dict()
        return data
