"""
Upstream adapters against a mocked requests session
"""
from datetime import datetime
from unittest.mock import Mock

import pytest
import requests

from minefolio.errors import UpstreamError
from minefolio.records import LiveRun, SplitEvent
from minefolio.sources import (
    PaceManClient,
    TwitchClient,
    YouTubeClient,
    filter_registered,
    latest_split,
    split_label,
    split_order,
)
from minefolio.sources.twitch import thumbnail_url
from tests.conftest import STEVE_CHANNEL, make_response


def live_run_payload(nickname, **overrides):
    payload = {
        "worldId": f"world-{nickname}",
        "gameVersion": "1.16.1",
        "eventList": [
            {"eventId": "rsg.enter_nether", "igt": 90000, "rta": 95000},
            {"eventId": "rsg.enter_bastion", "igt": 150000, "rta": 160000},
        ],
        "user": {"uuid": f"uuid-{nickname.lower()}", "liveAccount": None},
        "nickname": nickname,
        "lastUpdated": 1700000000000,
        "isCheated": False,
        "isHidden": False,
        "numLeaves": 0,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def session():
    return Mock(spec=requests.Session)


# ===== HTTP / PACEMAN =====

def test_live_runs_drop_hidden_and_cheated(session):
    session.request.return_value = make_response([
        live_run_payload("Steve"),
        live_run_payload("Sneaky", isHidden=True),
        live_run_payload("Cheater", isCheated=True),
    ])
    runs = PaceManClient(session=session).fetch_live_runs()

    assert [r.nickname for r in runs] == ["Steve"]
    assert runs[0].uuid == "uuid-steve"
    assert runs[0].splits[1] == SplitEvent("rsg.enter_bastion", 150000, 160000)
    method, url = session.request.call_args[0]
    assert method == "GET"
    assert url == "https://paceman.gg/api/ars/liveruns"


def test_live_run_missing_fields_take_defaults(session):
    session.request.return_value = make_response([{"nickname": "Steve"}])
    run = PaceManClient(session=session).fetch_live_runs()[0]

    assert run.uuid == ""
    assert run.game_version == "unknown"
    assert run.splits == []
    assert run.live_account is None


def test_empty_live_runs_is_success(session):
    session.request.return_value = make_response([])
    assert PaceManClient(session=session).fetch_live_runs() == []


def test_non_success_status_raises_upstream_error(session):
    session.request.return_value = make_response({"error": "down"}, status=503)
    with pytest.raises(UpstreamError) as excinfo:
        PaceManClient(session=session).fetch_live_runs()
    assert excinfo.value.status_code == 503
    assert excinfo.value.source == "paceman"


def test_unexpected_shape_raises_upstream_error(session):
    session.request.return_value = make_response({"message": "maintenance"})
    with pytest.raises(UpstreamError):
        PaceManClient(session=session).fetch_live_runs()


def test_invalid_json_raises_upstream_error(session):
    response = make_response()
    response.json.side_effect = ValueError("no json")
    session.request.return_value = response
    with pytest.raises(UpstreamError):
        PaceManClient(session=session).fetch_live_runs()


def test_connection_errors_are_retried(session):
    session.request.side_effect = [requests.ConnectionError("reset"), make_response([])]
    assert PaceManClient(session=session).fetch_live_runs() == []
    assert session.request.call_count == 2


def test_recent_runs_request_and_parsing(session):
    session.request.return_value = make_response([
        {"id": 11, "nether": 95000, "bastion": None, "fortress": 180000, "time": 1700000100},
    ])
    runs = PaceManClient(session=session).fetch_recent_runs("Steve", hours=168, limit=5)

    assert runs[0].run_id == 11
    assert runs[0].nickname == "Steve"
    assert runs[0].bastion is None
    assert runs[0].final_split() == {"splitId": "rsg.enter_fortress", "igt": 180000}
    _, url = session.request.call_args[0]
    assert url.endswith("/stats/api/getRecentRuns/")
    assert session.request.call_args[1]["params"] == {"name": "Steve", "hours": 168, "limit": 5}


def test_recent_runs_error_object_means_no_runs(session):
    session.request.return_value = make_response({"error": "User not found"})
    assert PaceManClient(session=session).fetch_recent_runs("Nobody") == []


def test_recent_runs_for_users_merges_newest_first(session):
    by_name = {
        "Steve": [{"id": 1, "nether": 1, "time": 100}, {"id": 2, "nether": 1, "time": 300}],
        "Alex": [{"id": 3, "nether": 1, "time": 200}],
    }

    def respond(method, url, params=None, **kwargs):
        return make_response(by_name[params["name"]])

    session.request.side_effect = respond
    runs = PaceManClient(session=session).fetch_recent_runs_for_users(
        ["Steve", "Alex"], total_limit=2
    )
    assert [r.run_id for r in runs] == [2, 3]


def test_recent_runs_for_users_skips_failing_player(session):
    def respond(method, url, params=None, **kwargs):
        if params["name"] == "Alex":
            return make_response(None, status=500)
        return make_response([{"id": 1, "nether": 1, "time": 100}])

    session.request.side_effect = respond
    runs = PaceManClient(session=session).fetch_recent_runs_for_users(["Steve", "Alex"])
    assert [r.nickname for r in runs] == ["Steve"]


def test_recent_runs_for_users_all_failing_raises(session):
    session.request.return_value = make_response(None, status=500)
    with pytest.raises(UpstreamError):
        PaceManClient(session=session).fetch_recent_runs_for_users(["Steve", "Alex"])


def test_filter_registered_is_case_insensitive():
    runs = [LiveRun.from_api(live_run_payload("Steve")), LiveRun.from_api(live_run_payload("Stranger"))]
    assert [r.nickname for r in filter_registered(runs, ["STEVE"])] == ["Steve"]


def test_split_helpers():
    run = LiveRun.from_api(live_run_payload("Steve"))
    assert latest_split(run).event_id == "rsg.enter_bastion"
    assert split_label("rsg.enter_end") == "End"
    assert split_label("rsg.obtain_blaze_rods") == "obtain blaze rods"
    assert split_order("rsg.credits") > split_order("rsg.enter_nether")
    assert split_order("rsg.unknown") == 0


# ===== TWITCH =====

def test_twitch_app_token(session):
    session.request.return_value = make_response({"access_token": "tok", "expires_in": 5000})
    token = TwitchClient("cid", "secret", session=session).get_app_token()

    assert token.access_token == "tok"
    method, url = session.request.call_args[0]
    assert method == "POST"
    assert url == "https://id.twitch.tv/oauth2/token"
    assert session.request.call_args[1]["params"]["grant_type"] == "client_credentials"


def test_twitch_token_without_access_token_raises(session):
    session.request.return_value = make_response({"status": 400})
    with pytest.raises(UpstreamError):
        TwitchClient("cid", "secret", session=session).get_app_token()


def test_twitch_live_streams_batches_and_filters(session):
    session.request.side_effect = [
        make_response({"data": [
            {"id": "1", "user_login": "steve_tv", "user_name": "Steve_TV", "type": "live", "viewer_count": 12},
            {"id": "2", "user_login": "rerun_tv", "type": ""},
        ]}),
        make_response({"data": []}),
    ]
    logins = [f"user{i}" for i in range(150)]
    streams = TwitchClient("cid", "secret", session=session).get_live_streams("tok", logins)

    assert [s.channel_login for s in streams] == ["steve_tv"]
    assert streams[0].viewer_count == 12
    assert session.request.call_count == 2
    first_call = session.request.call_args_list[0][1]
    assert len(first_call["params"]["user_login"]) == 100
    assert first_call["headers"] == {"Client-ID": "cid", "Authorization": "Bearer tok"}


def test_twitch_no_logins_makes_no_request(session):
    assert TwitchClient("cid", "secret", session=session).get_live_streams("tok", []) == []
    session.request.assert_not_called()


def test_twitch_stream_thumbnail_is_sized(session):
    template = "https://static-cdn.jtvnw.net/previews-ttv/live_user_steve_tv-{width}x{height}.jpg"
    session.request.return_value = make_response({"data": [
        {"id": "1", "user_login": "steve_tv", "type": "live", "thumbnail_url": template},
    ]})

    streams = TwitchClient("cid", "secret", session=session).get_live_streams("tok", ["steve_tv"])

    assert streams[0].thumbnail_url.endswith("live_user_steve_tv-440x248.jpg")
    assert thumbnail_url(template, 320, 180).endswith("-320x180.jpg")


# ===== YOUTUBE =====

def test_resolve_channel_id_passes_through_channel_ids(session):
    assert YouTubeClient("key", session=session).resolve_channel_id(STEVE_CHANNEL) == STEVE_CHANNEL
    session.request.assert_not_called()


def test_resolve_channel_id_for_handle(session):
    session.request.return_value = make_response({"items": [{"id": "UCresolved"}]})
    assert YouTubeClient("key", session=session).resolve_channel_id("@alexruns") == "UCresolved"
    params = session.request.call_args[1]["params"]
    assert params["forHandle"] == "alexruns"
    assert params["key"] == "key"


def test_resolve_unknown_handle_is_none(session):
    session.request.return_value = make_response({"items": []})
    assert YouTubeClient("key", session=session).resolve_channel_id("@ghost") is None


def test_youtube_error_body_raises(session):
    session.request.return_value = make_response({"error": {"code": 403, "message": "quotaExceeded"}})
    with pytest.raises(UpstreamError) as excinfo:
        YouTubeClient("key", session=session).get_channel_videos(STEVE_CHANNEL)
    assert excinfo.value.status_code == 403


def search_item(video_id, published_at, channel_id=STEVE_CHANNEL):
    return {
        "id": {"kind": "youtube#video", "videoId": video_id},
        "snippet": {
            "publishedAt": published_at,
            "channelId": channel_id,
            "title": f"Run {video_id}",
            "channelTitle": "Steve",
            "thumbnails": {"default": {"url": f"https://i.ytimg.com/{video_id}/default.jpg"}},
        },
    }


def test_recent_videos_filters_by_age_and_sorts(session):
    session.request.return_value = make_response({"items": [
        search_item("old", "2024-04-20T00:00:00Z"),
        search_item("mid", "2024-04-30T10:00:00Z"),
        search_item("new", "2024-05-01T09:00:00Z"),
    ]})
    videos = YouTubeClient("key", session=session).get_recent_videos(
        [(STEVE_CHANNEL, "Steve")], now=datetime(2024, 5, 1, 12, 0, 0),
    )

    assert [v.video_id for v in videos] == ["new", "mid"]
    assert videos[0].mcid == "Steve"
    assert videos[0].thumbnail_url == "https://i.ytimg.com/new/default.jpg"


def test_check_videos_exist_keeps_public(session):
    session.request.return_value = make_response({"items": [
        {"id": "a", "status": {"privacyStatus": "public"}},
        {"id": "b", "status": {"privacyStatus": "private"}},
    ]})
    assert YouTubeClient("key", session=session).check_videos_exist(["a", "b", "c"]) == ["a"]


def test_broadcast_search_and_details(session):
    session.request.side_effect = [
        make_response({"items": [{"id": {"videoId": "live1"}}, {"id": {}}]}),
        make_response({"items": [{
            "id": "live1",
            "snippet": {"channelId": STEVE_CHANNEL, "title": "Live!", "liveBroadcastContent": "live"},
            "liveStreamingDetails": {"actualStartTime": "2024-05-01T11:00:00Z", "concurrentViewers": "42"},
        }]}),
    ]
    client = YouTubeClient("key", session=session)

    ids = client.search_broadcasts(STEVE_CHANNEL, "live")
    assert ids == ["live1"]
    assert session.request.call_args[1]["params"]["maxResults"] == 5

    details = client.get_broadcast_details(ids)
    assert details[0].broadcast == "live"
    assert details[0].concurrent_viewers == 42
