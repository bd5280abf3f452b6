"""
Weekly PaceMan pace history in the paceman_paces table.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from minefolio import crud
from minefolio.cache import CacheManager, FeedKind, get_feed_policy, list_codec
from minefolio.db import insert_ignore
from minefolio.models import PacemanPace
from minefolio.records import RecentPace
from minefolio.sources import PaceManClient
from minefolio.utils.helpers import from_epoch, utcnow

logger = logging.getLogger("refresh.paceman")

HISTORY_WINDOW = timedelta(days=7)

# getRecentRuns parameters for the hourly refresh
FETCH_HOURS = 168
FETCH_LIMIT_PER_USER = 5
FETCH_TOTAL_LIMIT = 100

# Runs served by the recent-paces feed
FEED_LIMIT = 20

# Splits at or past the second structure of a run
LATE_SPLITS = {"rsg.first_portal", "rsg.enter_stronghold", "rsg.enter_end", "rsg.credits"}


def is_nether_enter(pace: RecentPace) -> bool:
    """The run ended right after entering the nether."""
    final = pace.final_split()
    return final is not None and final["splitId"] == "rsg.enter_nether"


def is_2nd_structure_or_later(pace: RecentPace) -> bool:
    final = pace.final_split()
    if final is None:
        return False
    if final["splitId"] in LATE_SPLITS:
        return True
    return bool(pace.bastion) and bool(pace.fortress)


def cache_paceman_paces(
    db: Session,
    paces: List[RecentPace],
    now: Optional[datetime] = None,
) -> int:
    """
    Store paces (insert-or-ignore on run_id + mcid) and drop week-old rows.

    Runs that never reached the nether are not stored. Returns the
    number of rows offered for insert.
    """
    now = now or utcnow()
    user_ids = crud.get_user_ids_by_mcid(db, [p.nickname for p in paces])

    rows = {}
    for pace in paces:
        final = pace.final_split()
        if final is None:
            continue
        rows[(pace.run_id, pace.nickname)] = {
            "run_id": pace.run_id,
            "mcid": pace.nickname,
            "user_id": user_ids.get(pace.identifier),
            "timeline": final["splitId"],
            "igt": final["igt"],
            "date": from_epoch(pace.time),
            "is_nether_enter": is_nether_enter(pace),
            "is_2nd_structure_or_later": is_2nd_structure_or_later(pace),
            "created_at": now,
        }

    insert_ignore(db, PacemanPace, list(rows.values()), index_elements=["run_id", "mcid"])
    purged = (
        db.query(PacemanPace)
        .filter(PacemanPace.date < now - HISTORY_WINDOW)
        .delete(synchronize_session=False)
    )
    db.commit()
    if purged:
        logger.info(f"Purged {purged} paces older than a week")
    return len(rows)


def _pace_dict(row: PacemanPace) -> Dict:
    return {
        "runId": row.run_id,
        "mcid": row.mcid,
        "timeline": row.timeline,
        "igt": row.igt,
        "date": row.date.isoformat() + "Z",
    }


def get_recent_paces_from_cache(db: Session, limit: int = 20) -> List[Dict]:
    """Newest stored paces across all players."""
    rows = db.query(PacemanPace).order_by(PacemanPace.date.desc()).limit(limit).all()
    return [_pace_dict(row) for row in rows]


def get_nether_enter_count(db: Session, mcid: str, now: Optional[datetime] = None) -> int:
    """Runs of one player this week that ended at nether entry."""
    since = (now or utcnow()) - HISTORY_WINDOW
    return (
        db.query(func.count(PacemanPace.id))
        .filter(
            func.lower(PacemanPace.mcid) == mcid.lower(),
            PacemanPace.is_nether_enter.is_(True),
            PacemanPace.date >= since,
        )
        .scalar()
    )


def get_main_paces(
    db: Session,
    mcid: str,
    limit: int = 10,
    now: Optional[datetime] = None,
) -> List[Dict]:
    """A player's runs this week that reached the second structure or later."""
    since = (now or utcnow()) - HISTORY_WINDOW
    rows = (
        db.query(PacemanPace)
        .filter(
            func.lower(PacemanPace.mcid) == mcid.lower(),
            PacemanPace.is_2nd_structure_or_later.is_(True),
            PacemanPace.date >= since,
        )
        .order_by(PacemanPace.date.desc())
        .limit(limit)
        .all()
    )
    return [_pace_dict(row) for row in rows]


class PacemanCacheRefresher:
    """Hourly pull of every registered player's weekly runs."""

    def __init__(
        self,
        session_factory: sessionmaker,
        client: PaceManClient,
        cache: Optional[CacheManager] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._client = client
        self._cache = cache
        self._clock = clock

    def refresh(self) -> Dict[str, int]:
        with self._session_factory() as db:
            mcids = [user.mcid for user in crud.get_users_with_mcid(db)]

        if not mcids:
            return {"usersCount": 0, "cachedPaces": 0}

        logger.info(f"Fetching weekly paces for {len(mcids)} players")
        paces = self._client.fetch_recent_runs_for_users(
            mcids,
            hours=FETCH_HOURS,
            limit_per_user=FETCH_LIMIT_PER_USER,
            total_limit=FETCH_TOTAL_LIMIT,
        )

        with self._session_factory() as db:
            stored = cache_paceman_paces(db, paces, now=self._clock())

        if self._cache is not None:
            policy = get_feed_policy(FeedKind.RECENT_PACES)
            self._cache.put(
                policy["cache_key"],
                paces[:FEED_LIMIT],
                policy["ttl"],
                tier=policy["tier"],
                codec=list_codec(RecentPace),
            )

        logger.info(f"Cached {stored} of {len(paces)} paces")
        return {"usersCount": len(mcids), "cachedPaces": len(paces)}
