"""
YouTube Data API v3 adapter.

Quota costs differ wildly per endpoint (search is 100 units, channels and
videos are 1), so callers batch video lookups and limit channel counts.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import requests

from config.settings import settings
from minefolio.errors import UpstreamError
from minefolio.records import YouTubeLive, YouTubeVideo
from minefolio.utils.helpers import parse_iso, utcnow
from .http import UpstreamClient

logger = logging.getLogger("sources.youtube")

# videos?id= accepts at most 50 ids
VIDEOS_BATCH_SIZE = 50

# Broadcast search depth per event type
BROADCAST_SEARCH_LIMITS = {"live": 5, "upcoming": 3}


def is_channel_id(identifier: str) -> bool:
    return identifier.startswith("UC") and len(identifier) == 24


class YouTubeClient:
    """Client for the YouTube Data API v3, authenticated by API key."""

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self._api_key = api_key
        self._http = UpstreamClient(
            "youtube",
            base_url or settings.youtube_api_base_url,
            session=session,
        )

    def resolve_channel_id(self, identifier: str) -> Optional[str]:
        """
        Channel id for a channel id or @handle.

        Returns None when the handle does not exist.
        """
        identifier = identifier.strip()
        if is_channel_id(identifier):
            return identifier

        handle = identifier[1:] if identifier.startswith("@") else identifier
        data = self._get("channels", {"forHandle": handle, "part": "id"})
        items = data.get("items") or []
        if not items:
            logger.info(f"No YouTube channel for handle {identifier}")
            return None
        return items[0].get("id") or None

    def get_channel_videos(self, channel_id: str, max_results: int = 3) -> List[YouTubeVideo]:
        """Newest uploads of a channel."""
        data = self._get("search", {
            "channelId": channel_id,
            "part": "snippet",
            "type": "video",
            "order": "date",
            "maxResults": max_results,
        })
        videos = [YouTubeVideo.from_search_item(item) for item in data.get("items") or []]
        return [v for v in videos if v.video_id]

    def get_recent_videos(
        self,
        channels: List[Tuple[str, str]],
        max_per_channel: int = 3,
        max_age_hours: int = 72,
        limit: int = 10,
        now: Optional[datetime] = None,
    ) -> List[YouTubeVideo]:
        """
        Newest videos across resolved (channel_id, mcid) pairs.

        Only videos published within max_age_hours are kept, newest first.
        """
        cutoff = (now or utcnow()) - timedelta(hours=max_age_hours)
        videos: List[YouTubeVideo] = []
        for channel_id, mcid in channels:
            for video in self.get_channel_videos(channel_id, max_per_channel):
                video.mcid = mcid
                published = parse_iso(video.published_at)
                if published is not None and published > cutoff:
                    videos.append(video)

        videos.sort(key=lambda v: parse_iso(v.published_at), reverse=True)
        return videos[:limit]

    def check_videos_exist(self, video_ids: List[str]) -> List[str]:
        """Subset of video_ids that still exist and are public."""
        public: List[str] = []
        for start in range(0, len(video_ids), VIDEOS_BATCH_SIZE):
            batch = video_ids[start:start + VIDEOS_BATCH_SIZE]
            data = self._get("videos", {"id": ",".join(batch), "part": "id,status"})
            for item in data.get("items") or []:
                if (item.get("status") or {}).get("privacyStatus") == "public":
                    public.append(item.get("id"))
        return public

    def search_broadcasts(
        self,
        channel_id: str,
        event_type: str,
        max_results: Optional[int] = None,
    ) -> List[str]:
        """Video ids of a channel's broadcasts in state event_type ("live" or "upcoming")."""
        data = self._get("search", {
            "channelId": channel_id,
            "part": "id",
            "type": "video",
            "eventType": event_type,
            "maxResults": max_results or BROADCAST_SEARCH_LIMITS.get(event_type, 5),
        })
        ids = []
        for item in data.get("items") or []:
            video_id = (item.get("id") or {}).get("videoId")
            if video_id:
                ids.append(video_id)
        return ids

    def get_broadcast_details(self, video_ids: List[str]) -> List[YouTubeLive]:
        """Snippet and live streaming details for broadcasts."""
        broadcasts: List[YouTubeLive] = []
        for start in range(0, len(video_ids), VIDEOS_BATCH_SIZE):
            batch = video_ids[start:start + VIDEOS_BATCH_SIZE]
            data = self._get("videos", {
                "id": ",".join(batch),
                "part": "snippet,liveStreamingDetails",
            })
            broadcasts.extend(YouTubeLive.from_video_item(item) for item in data.get("items") or [])
        return broadcasts

    def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        data = self._http.get_json(path, params={**params, "key": self._api_key})
        if not isinstance(data, dict):
            raise UpstreamError("youtube", f"{path} response was not an object")
        if data.get("error"):
            error = data["error"]
            raise UpstreamError("youtube", error.get("message", "API error"), error.get("code"))
        return data
