"""
PaceMan adapter: live runs and recent pace history.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional

import requests

from config.settings import settings
from minefolio.errors import UpstreamError
from minefolio.records import LiveRun, RecentPace, SplitEvent
from .http import UpstreamClient

logger = logging.getLogger("sources.paceman")

LIVE_RUNS_PATH = "api/ars/liveruns"
RECENT_RUNS_PATH = "stats/api/getRecentRuns/"  # trailing slash is required

# Concurrent getRecentRuns calls per batch
RECENT_RUNS_BATCH_SIZE = 10

SPLIT_LABELS = {
    "rsg.enter_nether": "Nether",
    "rsg.enter_bastion": "Bastion",
    "rsg.enter_fortress": "Fortress",
    "rsg.first_portal": "Blind",
    "rsg.second_portal": "2nd Portal",
    "rsg.enter_stronghold": "Stronghold",
    "rsg.enter_end": "End",
    "rsg.credits": "Finish",
}

SPLIT_ORDER = {
    "rsg.enter_nether": 1,
    "rsg.enter_bastion": 2,
    "rsg.enter_fortress": 3,
    "rsg.first_portal": 4,
    "rsg.second_portal": 5,
    "rsg.enter_stronghold": 6,
    "rsg.enter_end": 7,
    "rsg.credits": 8,
}


def split_label(event_id: str) -> str:
    """Human label for a split id; unknown ids are prettified."""
    return SPLIT_LABELS.get(event_id) or event_id.replace("rsg.", "").replace("_", " ")


def split_order(event_id: str) -> int:
    """Progress rank of a split, 0 for splits outside the main route."""
    return SPLIT_ORDER.get(event_id, 0)


def latest_split(run: LiveRun) -> Optional[SplitEvent]:
    """Furthest split reached in a live run."""
    if not run.splits:
        return None
    return max(run.splits, key=lambda s: split_order(s.event_id))


def filter_registered(runs: Iterable[LiveRun], identifiers: Iterable[str]) -> List[LiveRun]:
    """Keep only runs whose nickname belongs to a registered player (case-insensitive)."""
    registered = {i.lower() for i in identifiers}
    return [run for run in runs if run.identifier in registered]


class PaceManClient:
    """
    Client for paceman.gg.

    Hidden and cheated runs are dropped here so no caller ever sees them.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self._http = UpstreamClient(
            "paceman",
            base_url or settings.paceman_base_url,
            session=session,
        )

    def fetch_live_runs(self) -> List[LiveRun]:
        """All runs currently in progress."""
        data = self._http.get_json(LIVE_RUNS_PATH)
        if not isinstance(data, list):
            raise UpstreamError("paceman", "liveruns did not return a list")

        runs = [LiveRun.from_api(raw) for raw in data if isinstance(raw, dict)]
        visible = [run for run in runs if not run.is_hidden and not run.is_cheated]
        logger.debug(f"PaceMan live runs: {len(visible)} visible of {len(runs)}")
        return visible

    def fetch_recent_runs(
        self,
        nickname: str,
        hours: int = 24,
        limit: int = 10,
    ) -> List[RecentPace]:
        """
        Recent runs for one player.

        PaceMan answers with an error object instead of a list for unknown
        players; that is treated as having no runs.
        """
        data = self._http.get_json(
            RECENT_RUNS_PATH,
            params={"name": nickname, "hours": hours, "limit": limit},
        )
        if not isinstance(data, list):
            return []
        return [RecentPace.from_api(raw, nickname) for raw in data if isinstance(raw, dict)]

    def fetch_recent_runs_for_users(
        self,
        nicknames: List[str],
        hours: int = 24,
        limit_per_user: int = 5,
        total_limit: int = 20,
    ) -> List[RecentPace]:
        """
        Recent runs for many players, newest first.

        Players are queried in parallel batches. A player whose request
        fails is skipped; if every request fails the error is raised.
        """
        if not nicknames:
            return []

        runs: List[RecentPace] = []
        failures = 0

        def fetch_one(name: str):
            try:
                return self.fetch_recent_runs(name, hours, limit_per_user)
            except UpstreamError as e:
                logger.warning(f"Recent runs for {name} failed: {e}")
                return None

        with ThreadPoolExecutor(max_workers=RECENT_RUNS_BATCH_SIZE) as executor:
            for start in range(0, len(nicknames), RECENT_RUNS_BATCH_SIZE):
                batch = nicknames[start:start + RECENT_RUNS_BATCH_SIZE]
                for result in executor.map(fetch_one, batch):
                    if result is None:
                        failures += 1
                    else:
                        runs.extend(result)

        if failures == len(nicknames):
            raise UpstreamError("paceman", f"recent runs failed for all {failures} players")

        runs.sort(key=lambda run: run.time, reverse=True)
        return runs[:total_limit]
