"""
Normalized records produced by the source adapters.

These dataclasses are the canonical shape of feed data regardless of
which upstream produced it. `from_api` maps a raw upstream payload
(substituting defaults for missing optional fields), `to_dict` is the
JSON shape served to the UI, and `from_dict` reverses `to_dict` for
values read back from the persistent cache tier.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from minefolio.utils.helpers import optional_int, safe_int, safe_str


# =============================================================================
# PACEMAN
# =============================================================================

@dataclass
class SplitEvent:
    """One split reached during a live run."""
    event_id: str  # e.g. "rsg.enter_nether"
    igt: int  # in-game time, ms
    rta: int  # real time, ms

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> "SplitEvent":
        return cls(
            event_id=safe_str(raw.get("eventId")),
            igt=safe_int(raw.get("igt")),
            rta=safe_int(raw.get("rta")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"eventId": self.event_id, "igt": self.igt, "rta": self.rta}


@dataclass
class LiveRun:
    """A run currently in progress, as reported by PaceMan."""
    world_id: str
    nickname: str
    uuid: str
    game_version: str
    splits: List[SplitEvent] = field(default_factory=list)
    last_updated: int = 0  # epoch ms
    live_account: Optional[str] = None  # twitch login when streaming
    is_hidden: bool = False
    is_cheated: bool = False
    num_leaves: int = 0

    @property
    def identifier(self) -> str:
        return self.nickname.lower()

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> "LiveRun":
        user = raw.get("user") or {}
        return cls(
            world_id=safe_str(raw.get("worldId")),
            nickname=safe_str(raw.get("nickname")),
            uuid=safe_str(user.get("uuid")),
            game_version=safe_str(raw.get("gameVersion"), "unknown"),
            splits=[SplitEvent.from_api(e) for e in raw.get("eventList") or []],
            last_updated=safe_int(raw.get("lastUpdated")),
            live_account=user.get("liveAccount") or None,
            is_hidden=bool(raw.get("isHidden", False)),
            is_cheated=bool(raw.get("isCheated", False)),
            num_leaves=safe_int(raw.get("numLeaves")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "worldId": self.world_id,
            "nickname": self.nickname,
            "uuid": self.uuid,
            "gameVersion": self.game_version,
            "eventList": [s.to_dict() for s in self.splits],
            "lastUpdated": self.last_updated,
            "liveAccount": self.live_account,
            "numLeaves": self.num_leaves,
        }


# Split columns of PaceMan's getRecentRuns, furthest first
RECENT_RUN_SPLITS = [
    ("finish", "rsg.credits"),
    ("end", "rsg.enter_end"),
    ("stronghold", "rsg.enter_stronghold"),
    ("first_portal", "rsg.first_portal"),
    ("fortress", "rsg.enter_fortress"),
    ("bastion", "rsg.enter_bastion"),
    ("nether", "rsg.enter_nether"),
]


@dataclass
class RecentPace:
    """A recently played run from PaceMan's stats API."""
    run_id: int
    nickname: str
    time: int  # epoch seconds the run was recorded
    nether: Optional[int] = None
    bastion: Optional[int] = None
    fortress: Optional[int] = None
    first_portal: Optional[int] = None
    stronghold: Optional[int] = None
    end: Optional[int] = None
    finish: Optional[int] = None

    @property
    def identifier(self) -> str:
        return self.nickname.lower()

    def final_split(self) -> Optional[Dict[str, Any]]:
        """Furthest split reached, or None when the run never entered the nether."""
        for attr, split_id in RECENT_RUN_SPLITS:
            igt = getattr(self, attr)
            if igt is not None and igt > 0:
                return {"splitId": split_id, "igt": igt}
        return None

    @classmethod
    def from_api(cls, raw: Dict[str, Any], nickname: str) -> "RecentPace":
        return cls(
            run_id=safe_int(raw.get("id")),
            nickname=nickname,
            time=safe_int(raw.get("time")),
            nether=optional_int(raw.get("nether")),
            bastion=optional_int(raw.get("bastion")),
            fortress=optional_int(raw.get("fortress")),
            first_portal=optional_int(raw.get("first_portal")),
            stronghold=optional_int(raw.get("stronghold")),
            end=optional_int(raw.get("end")),
            finish=optional_int(raw.get("finish")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.run_id,
            "nickname": self.nickname,
            "time": self.time,
            "nether": self.nether,
            "bastion": self.bastion,
            "fortress": self.fortress,
            "first_portal": self.first_portal,
            "stronghold": self.stronghold,
            "end": self.end,
            "finish": self.finish,
            "finalSplit": self.final_split(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecentPace":
        return cls(
            run_id=data["id"],
            nickname=data["nickname"],
            time=data["time"],
            nether=data.get("nether"),
            bastion=data.get("bastion"),
            fortress=data.get("fortress"),
            first_portal=data.get("first_portal"),
            stronghold=data.get("stronghold"),
            end=data.get("end"),
            finish=data.get("finish"),
        )


# =============================================================================
# STREAMS
# =============================================================================

@dataclass
class StreamRecord:
    """
    A channel that is live right now.

    Existence means "live now"; an offline channel simply has no record.
    """
    platform: str
    stream_id: str
    channel_login: str
    channel_name: str
    title: str
    game_name: str = ""
    viewer_count: int = 0
    started_at: str = ""
    thumbnail_url: str = ""
    language: str = ""
    mcid: str = ""  # local player the channel belongs to

    @property
    def identifier(self) -> str:
        return self.mcid.lower()

    @classmethod
    def from_twitch(cls, raw: Dict[str, Any]) -> "StreamRecord":
        return cls(
            platform="twitch",
            stream_id=safe_str(raw.get("id")),
            channel_login=safe_str(raw.get("user_login")),
            channel_name=safe_str(raw.get("user_name") or raw.get("user_login")),
            title=safe_str(raw.get("title")),
            game_name=safe_str(raw.get("game_name")),
            viewer_count=safe_int(raw.get("viewer_count")),
            started_at=safe_str(raw.get("started_at")),
            thumbnail_url=safe_str(raw.get("thumbnail_url")),
            language=safe_str(raw.get("language")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform,
            "id": self.stream_id,
            "userLogin": self.channel_login,
            "userName": self.channel_name,
            "title": self.title,
            "gameName": self.game_name,
            "viewerCount": self.viewer_count,
            "startedAt": self.started_at,
            "thumbnailUrl": self.thumbnail_url,
            "language": self.language,
            "mcid": self.mcid,
        }


# =============================================================================
# YOUTUBE
# =============================================================================

def _best_thumbnail(snippet: Dict[str, Any]) -> str:
    thumbnails = snippet.get("thumbnails") or {}
    for size in ("medium", "high", "default"):
        url = (thumbnails.get(size) or {}).get("url")
        if url:
            return url
    return ""


@dataclass
class YouTubeVideo:
    """A recent upload from a registered player's channel."""
    video_id: str
    channel_id: str
    title: str
    published_at: str  # ISO-8601
    description: str = ""
    thumbnail_url: str = ""
    channel_title: str = ""
    mcid: str = ""

    @property
    def identifier(self) -> str:
        return self.mcid.lower()

    @classmethod
    def from_search_item(cls, item: Dict[str, Any], mcid: str = "") -> "YouTubeVideo":
        snippet = item.get("snippet") or {}
        return cls(
            video_id=safe_str((item.get("id") or {}).get("videoId")),
            channel_id=safe_str(snippet.get("channelId")),
            title=safe_str(snippet.get("title")),
            published_at=safe_str(snippet.get("publishedAt")),
            description=safe_str(snippet.get("description")),
            thumbnail_url=_best_thumbnail(snippet),
            channel_title=safe_str(snippet.get("channelTitle")),
            mcid=mcid,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "videoId": self.video_id,
            "channelId": self.channel_id,
            "title": self.title,
            "description": self.description,
            "thumbnailUrl": self.thumbnail_url,
            "channelTitle": self.channel_title,
            "publishedAt": self.published_at,
            "mcid": self.mcid,
        }


@dataclass
class YouTubeLive:
    """A live or scheduled broadcast on a registered player's channel."""
    video_id: str
    channel_id: str
    title: str
    broadcast: str  # "live" | "upcoming" | "none"
    description: str = ""
    thumbnail_url: str = ""
    channel_title: str = ""
    scheduled_start: Optional[str] = None
    actual_start: Optional[str] = None
    concurrent_viewers: Optional[int] = None
    mcid: str = ""

    @property
    def identifier(self) -> str:
        return self.mcid.lower()

    @classmethod
    def from_video_item(cls, item: Dict[str, Any]) -> "YouTubeLive":
        snippet = item.get("snippet") or {}
        details = item.get("liveStreamingDetails") or {}
        broadcast = safe_str(snippet.get("liveBroadcastContent"), "none")
        if broadcast not in ("live", "upcoming"):
            broadcast = "none"
        return cls(
            video_id=safe_str(item.get("id")),
            channel_id=safe_str(snippet.get("channelId")),
            title=safe_str(snippet.get("title")),
            broadcast=broadcast,
            description=safe_str(snippet.get("description")),
            thumbnail_url=_best_thumbnail(snippet),
            channel_title=safe_str(snippet.get("channelTitle")),
            scheduled_start=details.get("scheduledStartTime"),
            actual_start=details.get("actualStartTime"),
            concurrent_viewers=optional_int(details.get("concurrentViewers")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "videoId": self.video_id,
            "channelId": self.channel_id,
            "title": self.title,
            "description": self.description,
            "thumbnailUrl": self.thumbnail_url,
            "channelTitle": self.channel_title,
            "liveBroadcastContent": self.broadcast,
            "scheduledStartTime": self.scheduled_start,
            "actualStartTime": self.actual_start,
            "concurrentViewers": self.concurrent_viewers,
            "mcid": self.mcid,
        }


# =============================================================================
# LOCAL PROFILES
# =============================================================================

@dataclass
class PlayerProfile:
    """Display identity of a registered player."""
    mcid: str
    uuid: Optional[str]
    slug: str
    display_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mcid": self.mcid,
            "uuid": self.uuid,
            "slug": self.slug,
            "displayName": self.display_name or self.mcid,
        }
