"""
Shared fixtures: in-memory database with seeded players, fake clocks, cache.
"""
from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest
from sqlalchemy.pool import StaticPool

from minefolio.cache import CacheManager, DatabaseCacheStore, MemoryCacheStore
from minefolio.db import create_session_factory, init_db
from minefolio.models import SocialLink, User

STEVE_CHANNEL = "UCsteveSteveSteveSteve00"  # 24 chars, already a channel id
ALEX_CHANNEL = "UCalexAlexAlexAlexAlex00"


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDateClock:
    """Naive-UTC datetime clock for the refresh jobs."""

    def __init__(self, start: datetime = datetime(2024, 5, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def session_factory():
    factory = create_session_factory("sqlite://", poolclass=StaticPool)
    init_db(factory)
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def seeded_session_factory(session_factory):
    with session_factory() as db:
        db.add_all([
            User(id="u1", mcid="Steve", uuid="uuid-steve", slug="steve",
                 display_name="Steve the Runner", profile_visibility="public"),
            User(id="u2", mcid="Alex", uuid="uuid-alex", slug="alex",
                 display_name=None, profile_visibility="public"),
            User(id="u3", mcid="Herobrine", uuid="uuid-hero", slug="herobrine",
                 profile_visibility="private"),
            User(id="u4", mcid=None, uuid=None, slug="no-minecraft"),
        ])
        db.add_all([
            SocialLink(user_id="u1", platform="twitch", identifier="steve_tv", display_order=0),
            SocialLink(user_id="u1", platform="youtube", identifier=STEVE_CHANNEL, display_order=1),
            SocialLink(user_id="u2", platform="twitch", identifier="AlexLive", display_order=0),
            SocialLink(user_id="u2", platform="youtube", identifier="@alexruns", display_order=1),
            SocialLink(user_id="u3", platform="twitch", identifier="hero_tv", display_order=0),
        ])
        db.commit()
    return session_factory


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def date_clock():
    return FakeDateClock()


@pytest.fixture
def memory_store(clock):
    return MemoryCacheStore(max_entries=100, cleanup_interval=300, clock=clock)


@pytest.fixture
def database_store(session_factory, clock):
    return DatabaseCacheStore(session_factory, clock=clock)


@pytest.fixture
def cache(memory_store, database_store, clock):
    return CacheManager(memory_store, database_store, max_background_workers=2, clock=clock)


def make_response(payload=None, status: int = 200):
    """Stand-in for requests.Response."""
    response = Mock()
    response.ok = 200 <= status < 300
    response.status_code = status
    response.json.return_value = payload
    return response
