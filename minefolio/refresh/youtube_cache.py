"""
YouTube tables kept current by scheduled refreshes.

Reading feeds from these tables instead of the API keeps the request path
off the YouTube quota: only the refresh actions spend quota, at cadences
matched to how quickly each kind of data changes.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import sessionmaker

from minefolio.cache import CacheManager, FeedKind, get_cache_key
from minefolio.db import upsert
from minefolio.errors import UpstreamError
from minefolio.feed.channels import ChannelDirectory
from minefolio.models import YoutubeLiveCache, YoutubeVideoCache
from minefolio.records import YouTubeLive, YouTubeVideo
from minefolio.sources import YouTubeClient
from minefolio.utils.helpers import parse_iso, to_iso, utcnow

logger = logging.getLogger("refresh.youtube")

# Refresh cadence
NEW_VIDEO_CHECK_INTERVAL = timedelta(hours=2)
VERIFICATION_INTERVAL = timedelta(hours=12)
LIVE_CHECK_INTERVAL = timedelta(minutes=30)

# Feed shape
MAX_AGE_HOURS = 72
MAX_VIDEOS = 10
VIDEOS_PER_CHANNEL = 3

# Videos checked per verify run (one videos?id= call)
VERIFY_BATCH_SIZE = 50

# Ended broadcasts are kept this long before deletion
ENDED_RETENTION = timedelta(hours=24)


def _video_record(row: YoutubeVideoCache) -> YouTubeVideo:
    return YouTubeVideo(
        video_id=row.video_id,
        channel_id=row.channel_id,
        title=row.title,
        published_at=to_iso(row.published_at),
        description=row.description or "",
        thumbnail_url=row.thumbnail_url or "",
        channel_title=row.channel_title or "",
        mcid=row.mcid or "",
    )


def _live_record(row: YoutubeLiveCache) -> YouTubeLive:
    return YouTubeLive(
        video_id=row.video_id,
        channel_id=row.channel_id,
        title=row.title,
        broadcast=row.live_broadcast_content,
        description=row.description or "",
        thumbnail_url=row.thumbnail_url or "",
        channel_title=row.channel_title or "",
        scheduled_start=to_iso(row.scheduled_start_time),
        actual_start=to_iso(row.actual_start_time),
        concurrent_viewers=row.concurrent_viewers,
        mcid=row.mcid or "",
    )


class YouTubeCacheRefresher:
    """
    Maintains youtube_video_cache and youtube_live_cache.

    Every action is idempotent: rows are keyed by video_id and written
    with upserts, so a repeated or overlapping run only updates rows.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        client: YouTubeClient,
        channels: ChannelDirectory,
        cache: Optional[CacheManager] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._client = client
        self._channels = channels
        self._cache = cache
        self._clock = clock
        # Last attempted runs in this process, so an empty result does not
        # make every request look overdue
        self._last_video_check: Optional[datetime] = None
        self._last_live_check: Optional[datetime] = None

    # =========================================================================
    # RECENT VIDEOS
    # =========================================================================

    def registered_channels(self) -> List[Tuple[str, str]]:
        """Resolved (channel_id, mcid) pairs this refresher polls."""
        return self._channels.youtube_channels()

    def refresh_new_videos(self) -> Dict[str, int]:
        """Fetch the newest uploads of every registered channel and upsert them."""
        now = self._clock()
        self._last_video_check = now
        channels = self.registered_channels()
        added = updated = 0

        with self._session_factory() as db:
            for channel_id, mcid in channels:
                try:
                    videos = self._client.get_channel_videos(channel_id, VIDEOS_PER_CHANNEL)
                except UpstreamError as e:
                    logger.warning(f"Fetching videos for {mcid} ({channel_id}) failed: {e}")
                    continue

                for video in videos:
                    exists = db.query(YoutubeVideoCache.id).filter(
                        YoutubeVideoCache.video_id == video.video_id
                    ).first() is not None
                    upsert(
                        db,
                        YoutubeVideoCache,
                        {
                            "video_id": video.video_id,
                            "channel_id": channel_id,
                            "mcid": mcid,
                            "title": video.title,
                            "description": video.description,
                            "thumbnail_url": video.thumbnail_url,
                            "channel_title": video.channel_title,
                            "published_at": parse_iso(video.published_at) or now,
                            "last_verified_at": now,
                            "is_available": True,
                            "created_at": now,
                            "updated_at": now,
                        },
                        index_elements=["video_id"],
                        update_columns=[
                            "title", "description", "thumbnail_url", "channel_title",
                            "is_available", "last_verified_at", "updated_at",
                        ],
                    )
                    if exists:
                        updated += 1
                    else:
                        added += 1
            db.commit()

        logger.info(f"YouTube videos refreshed: {added} added, {updated} updated")
        self._invalidate(FeedKind.YOUTUBE_VIDEOS)
        return {"channels": len(channels), "added": added, "updated": updated}

    def verify_videos(self) -> Dict[str, int]:
        """
        Re-check videos not verified for VERIFICATION_INTERVAL.

        Videos that are gone or no longer public are marked unavailable.
        """
        now = self._clock()
        cutoff = now - VERIFICATION_INTERVAL

        with self._session_factory() as db:
            rows = (
                db.query(YoutubeVideoCache)
                .filter(
                    YoutubeVideoCache.is_available.is_(True),
                    YoutubeVideoCache.last_verified_at < cutoff,
                )
                .order_by(YoutubeVideoCache.last_verified_at)
                .limit(VERIFY_BATCH_SIZE)
                .all()
            )
            if not rows:
                return {"verified": 0, "removed": 0}

            public = set(self._client.check_videos_exist([row.video_id for row in rows]))
            verified = removed = 0
            for row in rows:
                row.last_verified_at = now
                row.updated_at = now
                if row.video_id in public:
                    verified += 1
                else:
                    row.is_available = False
                    removed += 1
            db.commit()

        logger.info(f"YouTube videos verified: {verified} ok, {removed} removed")
        if removed:
            self._invalidate(FeedKind.YOUTUBE_VIDEOS)
        return {"verified": verified, "removed": removed}

    def get_cached_videos(self) -> List[YouTubeVideo]:
        """Available videos published within MAX_AGE_HOURS, newest first."""
        cutoff = self._clock() - timedelta(hours=MAX_AGE_HOURS)
        with self._session_factory() as db:
            rows = (
                db.query(YoutubeVideoCache)
                .filter(
                    YoutubeVideoCache.is_available.is_(True),
                    YoutubeVideoCache.published_at >= cutoff,
                )
                .order_by(YoutubeVideoCache.published_at.desc())
                .limit(MAX_VIDEOS)
                .all()
            )
            return [_video_record(row) for row in rows]

    def needs_update(self) -> bool:
        with self._session_factory() as db:
            last = db.query(func.max(YoutubeVideoCache.updated_at)).scalar()
        return self._overdue(last, self._last_video_check, NEW_VIDEO_CHECK_INTERVAL)

    # =========================================================================
    # LIVE BROADCASTS
    # =========================================================================

    def refresh_live_streams(self) -> Dict[str, int]:
        """
        Poll live and upcoming broadcasts of every registered channel.

        Broadcasts found are upserted; tracked broadcasts that were not
        found again are marked ended ("none").
        """
        now = self._clock()
        self._last_live_check = now
        channels = self.registered_channels()

        found: Dict[str, Tuple[str, str]] = {}
        searches = failures = 0
        for channel_id, mcid in channels:
            for event_type in ("live", "upcoming"):
                searches += 1
                try:
                    video_ids = self._client.search_broadcasts(channel_id, event_type)
                except UpstreamError as e:
                    failures += 1
                    logger.warning(f"Broadcast search ({event_type}) for {mcid} failed: {e}")
                    continue
                for video_id in video_ids:
                    found.setdefault(video_id, (channel_id, mcid))

        # Without a single answer we cannot tell ended broadcasts from an outage
        if searches and failures == searches:
            raise UpstreamError("youtube", f"all {searches} broadcast searches failed")

        details = self._client.get_broadcast_details(list(found)) if found else []

        live = upcoming = ended = 0
        current = set()
        with self._session_factory() as db:
            for broadcast in details:
                if broadcast.video_id not in found or broadcast.broadcast == "none":
                    continue
                channel_id, mcid = found[broadcast.video_id]
                current.add(broadcast.video_id)
                upsert(
                    db,
                    YoutubeLiveCache,
                    {
                        "video_id": broadcast.video_id,
                        "channel_id": channel_id,
                        "mcid": mcid,
                        "title": broadcast.title,
                        "description": broadcast.description,
                        "thumbnail_url": broadcast.thumbnail_url,
                        "channel_title": broadcast.channel_title,
                        "live_broadcast_content": broadcast.broadcast,
                        "scheduled_start_time": parse_iso(broadcast.scheduled_start),
                        "actual_start_time": parse_iso(broadcast.actual_start),
                        "concurrent_viewers": broadcast.concurrent_viewers,
                        "last_checked_at": now,
                        "created_at": now,
                        "updated_at": now,
                    },
                    index_elements=["video_id"],
                    update_columns=[
                        "title", "description", "thumbnail_url", "channel_title",
                        "live_broadcast_content", "scheduled_start_time", "actual_start_time",
                        "concurrent_viewers", "last_checked_at", "updated_at",
                    ],
                )
                if broadcast.broadcast == "live":
                    live += 1
                else:
                    upcoming += 1

            tracked = db.query(YoutubeLiveCache).filter(
                YoutubeLiveCache.live_broadcast_content != "none"
            ).all()
            for row in tracked:
                if row.video_id not in current:
                    row.live_broadcast_content = "none"
                    row.last_checked_at = now
                    row.updated_at = now
                    ended += 1
            db.commit()

        cleaned = self.cleanup_old_live_cache()
        logger.info(f"YouTube live refreshed: {live} live, {upcoming} upcoming, {ended} ended")
        self._invalidate(FeedKind.YOUTUBE_LIVE)
        return {
            "channels": len(channels),
            "live": live,
            "upcoming": upcoming,
            "ended": ended,
            "cleaned": cleaned,
        }

    def cleanup_old_live_cache(self) -> int:
        """Delete broadcasts that ended more than ENDED_RETENTION ago."""
        cutoff = self._clock() - ENDED_RETENTION
        with self._session_factory() as db:
            deleted = (
                db.query(YoutubeLiveCache)
                .filter(
                    YoutubeLiveCache.live_broadcast_content == "none",
                    YoutubeLiveCache.updated_at < cutoff,
                )
                .delete(synchronize_session=False)
            )
            db.commit()
        return deleted

    def get_cached_live_streams(self) -> List[YouTubeLive]:
        """Live and upcoming broadcasts, most viewers first."""
        with self._session_factory() as db:
            rows = (
                db.query(YoutubeLiveCache)
                .filter(YoutubeLiveCache.live_broadcast_content != "none")
                .order_by(YoutubeLiveCache.concurrent_viewers.desc())
                .all()
            )
            return [_live_record(row) for row in rows]

    def needs_live_update(self) -> bool:
        with self._session_factory() as db:
            last = db.query(func.max(YoutubeLiveCache.last_checked_at)).scalar()
        return self._overdue(last, self._last_live_check, LIVE_CHECK_INTERVAL)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _overdue(
        self,
        last_stored: Optional[datetime],
        last_attempt: Optional[datetime],
        interval: timedelta,
    ) -> bool:
        candidates = [t for t in (last_stored, last_attempt) if t is not None]
        if not candidates:
            return True
        return self._clock() - max(candidates) > interval

    def _invalidate(self, kind: FeedKind) -> None:
        if self._cache is not None:
            self._cache.invalidate(get_cache_key(kind))
