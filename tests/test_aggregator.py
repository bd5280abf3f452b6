"""
Feed aggregation: shared cache keys, degradation, enrichment, favorites
"""
from unittest.mock import Mock, patch

import pytest

from minefolio.cache import CacheSource, FeedKind
from minefolio.errors import UpstreamError
from minefolio.feed import ChannelDirectory, FeedAggregator
from minefolio.records import LiveRun, RecentPace, SplitEvent, StreamRecord, YouTubeLive, YouTubeVideo
from minefolio.refresh import YouTubeCacheRefresher
from minefolio.sources import PaceManClient, TwitchClient, YouTubeClient
from minefolio.sources.twitch import AppToken
from tests.conftest import ALEX_CHANNEL, STEVE_CHANNEL


def live_run(nickname):
    return LiveRun(world_id=f"w-{nickname}", nickname=nickname, uuid=f"uuid-{nickname}", game_version="1.16.1")


def stream(login, viewers=10):
    return StreamRecord(
        platform="twitch", stream_id=f"s-{login}", channel_login=login,
        channel_name=login, title="Any% RSG", viewer_count=viewers,
    )


@pytest.fixture
def paceman():
    client = Mock(spec=PaceManClient)
    client.fetch_live_runs.return_value = []
    client.fetch_recent_runs_for_users.return_value = []
    return client


@pytest.fixture
def twitch():
    client = Mock(spec=TwitchClient)
    client.get_app_token.return_value = AppToken(access_token="tok", expires_in=5000)
    client.get_live_streams.return_value = []
    return client


@pytest.fixture
def make_aggregator(cache, seeded_session_factory, paceman):
    def build(twitch=None, youtube=None, youtube_refresher=None):
        return FeedAggregator(
            cache=cache,
            session_factory=seeded_session_factory,
            paceman=paceman,
            channels=ChannelDirectory(cache, seeded_session_factory, youtube),
            twitch=twitch,
            youtube=youtube,
            youtube_refresher=youtube_refresher,
        )
    return build


# ===== LIVE RUNS =====

def test_live_runs_enrich_registered_players(make_aggregator, paceman):
    """Steve is registered: his run carries the local profile"""
    paceman.fetch_live_runs.return_value = [live_run("Steve")]

    result = make_aggregator().get_feed(FeedKind.LIVE_RUNS)

    runs = result.payload["liveRuns"]
    assert len(runs) == 1
    assert runs[0]["nickname"] == "Steve"
    assert runs[0]["profile"] == {
        "mcid": "Steve",
        "uuid": "uuid-steve",
        "slug": "steve",
        "displayName": "Steve the Runner",
    }
    assert result.payload["mcidToUuid"]["steve"] == "uuid-steve"
    assert result.payload["mcidToDisplayName"]["alex"] == "Alex"


def test_live_runs_exclude_unregistered_players(make_aggregator, paceman):
    paceman.fetch_live_runs.return_value = [live_run("Stranger"), live_run("steve")]

    runs = make_aggregator().get_feed(FeedKind.LIVE_RUNS).payload["liveRuns"]

    assert [r["nickname"] for r in runs] == ["steve"]


def test_cache_hit_skips_upstream(make_aggregator, paceman):
    paceman.fetch_live_runs.return_value = [live_run("Steve")]
    aggregator = make_aggregator()

    aggregator.get_feed(FeedKind.LIVE_RUNS)
    second = aggregator.get_feed(FeedKind.LIVE_RUNS)

    assert paceman.fetch_live_runs.call_count == 1
    assert second.meta.cache_source == CacheSource.FRESH.value


@pytest.mark.parametrize("kind", list(FeedKind))
def test_every_feed_is_served_from_cache_on_second_call(make_aggregator, paceman, twitch, kind):
    paceman.fetch_live_runs.return_value = [live_run("Steve")]
    paceman.fetch_recent_runs_for_users.return_value = [
        RecentPace(run_id=1, nickname="Steve", time=200, nether=90000),
    ]
    twitch.get_live_streams.return_value = [stream("steve_tv")]
    refresher = Mock(spec=YouTubeCacheRefresher)
    refresher.needs_update.return_value = False
    refresher.needs_live_update.return_value = False
    refresher.get_cached_videos.return_value = [
        YouTubeVideo(video_id="v1", channel_id=STEVE_CHANNEL, title="PB!", published_at="2024-05-01T10:00:00Z"),
    ]
    refresher.get_cached_live_streams.return_value = [
        YouTubeLive(video_id="l1", channel_id=STEVE_CHANNEL, title="Live", broadcast="live"),
    ]
    upstream = {
        FeedKind.LIVE_RUNS: paceman.fetch_live_runs,
        FeedKind.RECENT_PACES: paceman.fetch_recent_runs_for_users,
        FeedKind.TWITCH_STREAMS: twitch.get_live_streams,
        FeedKind.YOUTUBE_VIDEOS: refresher.get_cached_videos,
        FeedKind.YOUTUBE_LIVE: refresher.get_cached_live_streams,
    }[kind]
    aggregator = make_aggregator(twitch=twitch, youtube_refresher=refresher)

    first = aggregator.get_feed(kind)
    second = aggregator.get_feed(kind)

    assert upstream.call_count == 1
    assert len(first.payload[kind.data_key]) == 1
    assert second.payload == first.payload
    assert second.meta.cache_source == CacheSource.FRESH.value


def test_live_runs_carry_favorite_flag_and_latest_split(make_aggregator, paceman):
    steve = live_run("Steve")
    steve.splits = [
        SplitEvent("rsg.enter_bastion", 150000, 160000),
        SplitEvent("rsg.enter_nether", 90000, 95000),
    ]
    paceman.fetch_live_runs.return_value = [steve, live_run("Alex")]

    runs = make_aggregator().get_feed(FeedKind.LIVE_RUNS, favorites=["alex"]).payload["liveRuns"]

    assert [(r["nickname"], r["isFavorite"]) for r in runs] == [("Alex", True), ("Steve", False)]
    assert runs[0]["latestSplit"] is None
    assert runs[1]["latestSplit"] == {"eventId": "rsg.enter_bastion", "label": "Bastion", "igt": 150000}


def test_expired_feed_is_refetched(make_aggregator, paceman, clock):
    aggregator = make_aggregator()
    aggregator.get_feed(FeedKind.LIVE_RUNS)
    clock.advance(60)
    aggregator.get_feed(FeedKind.LIVE_RUNS)

    assert paceman.fetch_live_runs.call_count == 2


def test_favorites_reorder_without_changing_cache_key(make_aggregator, paceman):
    paceman.fetch_live_runs.return_value = [live_run("Steve"), live_run("Alex")]
    aggregator = make_aggregator()

    plain = aggregator.get_feed(FeedKind.LIVE_RUNS).payload["liveRuns"]
    favored = aggregator.get_feed(FeedKind.LIVE_RUNS, favorites=["ALEX"]).payload["liveRuns"]

    assert [r["nickname"] for r in plain] == ["Steve", "Alex"]
    assert [r["nickname"] for r in favored] == ["Alex", "Steve"]
    assert paceman.fetch_live_runs.call_count == 1


def test_live_runs_capped_at_twenty(make_aggregator, paceman):
    paceman.fetch_live_runs.return_value = [live_run("Steve") for _ in range(25)]
    runs = make_aggregator().get_feed(FeedKind.LIVE_RUNS).payload["liveRuns"]
    assert len(runs) == 20


def test_live_runs_upstream_failure_degrades(make_aggregator, paceman):
    paceman.fetch_live_runs.side_effect = UpstreamError("paceman", "down", 502)

    result = make_aggregator().get_feed(FeedKind.LIVE_RUNS)

    assert result.payload["liveRuns"] == []
    assert result.meta.cache_source == CacheSource.DEGRADED.value
    assert result.cache_control == "no-store"


# ===== RECENT PACES =====

def test_recent_paces_persist_across_processes(make_aggregator, paceman, cache, memory_store):
    paceman.fetch_recent_runs_for_users.return_value = [
        RecentPace(run_id=1, nickname="Steve", time=200, nether=90000, bastion=150000),
    ]

    first = make_aggregator().get_feed(FeedKind.RECENT_PACES).payload
    memory_store.clear()  # only the database tier survives a restart
    second = make_aggregator().get_feed(FeedKind.RECENT_PACES).payload

    assert paceman.fetch_recent_runs_for_users.call_count == 1
    assert first == second
    assert second["recentPaces"][0]["finalSplit"] == {"splitId": "rsg.enter_bastion", "igt": 150000}
    assert second["recentPaces"][0]["profile"]["slug"] == "steve"
    names = sorted(paceman.fetch_recent_runs_for_users.call_args[0][0])
    assert names == ["Alex", "Herobrine", "Steve"]


# ===== TWITCH =====

def test_twitch_unconfigured_is_empty(make_aggregator):
    result = make_aggregator(twitch=None).get_feed(FeedKind.TWITCH_STREAMS)
    assert result.payload == {"liveStreams": []}
    assert result.meta.cache_source == CacheSource.UNCONFIGURED.value
    assert result.cache_control == "no-store"


def test_twitch_streams_map_to_public_players(make_aggregator, twitch):
    twitch.get_live_streams.return_value = [stream("alexlive"), stream("unknown_login")]

    streams = make_aggregator(twitch=twitch).get_feed(FeedKind.TWITCH_STREAMS).payload["liveStreams"]

    token, logins = twitch.get_live_streams.call_args[0]
    assert token == "tok"
    assert sorted(logins) == ["AlexLive", "steve_tv"]  # private profiles excluded
    assert streams[0]["mcid"] == "Alex"
    assert streams[0]["profile"]["slug"] == "alex"
    assert "profile" not in streams[1]


def test_twitch_network_error_returns_empty_and_is_not_cached(make_aggregator, twitch):
    twitch.get_live_streams.side_effect = UpstreamError("twitch", "connection reset")
    aggregator = make_aggregator(twitch=twitch)

    first = aggregator.get_feed(FeedKind.TWITCH_STREAMS)
    aggregator.get_feed(FeedKind.TWITCH_STREAMS)

    assert first.payload == {"liveStreams": []}
    assert first.meta.cache_source == CacheSource.DEGRADED.value
    assert twitch.get_live_streams.call_count == 2


def test_twitch_token_outlives_stream_cache(make_aggregator, twitch, clock):
    aggregator = make_aggregator(twitch=twitch)
    aggregator.get_feed(FeedKind.TWITCH_STREAMS)
    clock.advance(300)
    aggregator.get_feed(FeedKind.TWITCH_STREAMS)

    assert twitch.get_live_streams.call_count == 2
    assert twitch.get_app_token.call_count == 1


# ===== YOUTUBE =====

def test_youtube_videos_from_table(make_aggregator):
    refresher = Mock(spec=YouTubeCacheRefresher)
    refresher.needs_update.return_value = False
    refresher.get_cached_videos.return_value = [
        YouTubeVideo(video_id="v1", channel_id=STEVE_CHANNEL, title="PB!", published_at="2024-05-01T10:00:00Z", mcid="Steve"),
    ]

    videos = make_aggregator(youtube_refresher=refresher).get_feed(FeedKind.YOUTUBE_VIDEOS).payload["recentVideos"]

    assert videos[0]["videoId"] == "v1"
    assert videos[0]["profile"]["displayName"] == "Steve the Runner"
    refresher.refresh_new_videos.assert_not_called()


def test_youtube_videos_stale_table_starts_background_refresh(make_aggregator, cache):
    refresher = Mock(spec=YouTubeCacheRefresher)
    refresher.needs_update.return_value = True
    refresher.get_cached_videos.return_value = [
        YouTubeVideo(video_id="v1", channel_id=STEVE_CHANNEL, title="PB!", published_at="2024-05-01T10:00:00Z"),
    ]

    with patch.object(cache, "run_in_background") as background:
        result = make_aggregator(youtube_refresher=refresher).get_feed(FeedKind.YOUTUBE_VIDEOS)

    background.assert_called_once_with("youtube:new-videos", refresher.refresh_new_videos)
    assert len(result.payload["recentVideos"]) == 1


def test_youtube_videos_fall_back_to_api_when_table_empty(make_aggregator):
    youtube = Mock(spec=YouTubeClient)
    youtube.resolve_channel_id.side_effect = lambda identifier: (
        identifier if identifier.startswith("UC") else ALEX_CHANNEL
    )
    youtube.get_recent_videos.return_value = [
        YouTubeVideo(video_id="v2", channel_id=ALEX_CHANNEL, title="Sub 10", published_at="2024-05-01T10:00:00Z", mcid="Alex"),
    ]
    refresher = Mock(spec=YouTubeCacheRefresher)
    refresher.needs_update.return_value = False
    refresher.get_cached_videos.return_value = []

    videos = make_aggregator(youtube=youtube, youtube_refresher=refresher).get_feed(
        FeedKind.YOUTUBE_VIDEOS
    ).payload["recentVideos"]

    assert [v["videoId"] for v in videos] == ["v2"]
    channels = youtube.get_recent_videos.call_args[0][0]
    assert sorted(channels) == sorted([(STEVE_CHANNEL, "Steve"), (ALEX_CHANNEL, "Alex")])


def test_youtube_channel_resolution_is_cached(make_aggregator, clock):
    youtube = Mock(spec=YouTubeClient)
    youtube.resolve_channel_id.return_value = ALEX_CHANNEL
    youtube.get_recent_videos.return_value = []
    aggregator = make_aggregator(youtube=youtube)

    aggregator.get_feed(FeedKind.YOUTUBE_VIDEOS)
    clock.advance(900)  # feed and link list expire, channel ids do not
    aggregator.get_feed(FeedKind.YOUTUBE_VIDEOS)

    assert youtube.get_recent_videos.call_count == 2
    resolved = [c[0][0] for c in youtube.resolve_channel_id.call_args_list]
    assert resolved.count("@alexruns") == 1


def test_youtube_live_from_table(make_aggregator):
    refresher = Mock(spec=YouTubeCacheRefresher)
    refresher.needs_live_update.return_value = False
    refresher.get_cached_live_streams.return_value = [
        YouTubeLive(video_id="l1", channel_id=STEVE_CHANNEL, title="Live", broadcast="live", mcid="Steve"),
        YouTubeLive(video_id="l2", channel_id=ALEX_CHANNEL, title="Soon", broadcast="upcoming", mcid="Alex"),
    ]

    result = make_aggregator(youtube_refresher=refresher).get_feed(FeedKind.YOUTUBE_LIVE, favorites=["alex"])

    assert [s["videoId"] for s in result.payload["liveStreams"]] == ["l2", "l1"]
    assert result.cache_control == "public, s-maxage=60, stale-while-revalidate=120"


def test_youtube_live_unconfigured_is_empty(make_aggregator):
    result = make_aggregator().get_feed(FeedKind.YOUTUBE_LIVE)
    assert result.payload == {"liveStreams": []}
    assert result.meta.cache_source == CacheSource.UNCONFIGURED.value
    assert result.cache_control == "no-store"
