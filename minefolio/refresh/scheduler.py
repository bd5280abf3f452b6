"""
In-process scheduler for the refresh actions.

An alternative to external cron calls: APScheduler runs each action on its
own interval trigger. A failing action is logged and retried at its next
slot; it never stops the scheduler or the other actions.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from apscheduler.schedulers.base import BaseScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger("refresh.scheduler")

# Cadence per action (seconds)
REFRESH_INTERVALS = {
    "youtube-update": 2 * 60 * 60,
    "youtube-verify": 12 * 60 * 60,
    "youtube-live": 5 * 60,
    "paceman": 60 * 60,
    "cache-cleanup": 24 * 60 * 60,
}


@dataclass
class RefreshJob:
    name: str
    action: Callable[[], Any]

    @property
    def interval(self) -> int:
        return REFRESH_INTERVALS[self.name]


def run_job(job: RefreshJob) -> Any:
    """Run one action; failures are logged and returned as {"error": message}."""
    logger.info(f"Refresh {job.name} started")
    try:
        result = job.action()
    except Exception as e:
        logger.exception(f"Refresh {job.name} failed")
        return {"error": str(e)}
    logger.info(f"Refresh {job.name} finished: {result}")
    return result


def run_once(jobs: List[RefreshJob]) -> Dict[str, Any]:
    """Run every job once, in order. Returns job name -> result."""
    return {job.name: run_job(job) for job in jobs}


def build_scheduler(
    jobs: List[RefreshJob],
    scheduler: Optional[BaseScheduler] = None,
) -> BaseScheduler:
    """
    Register one interval job per action.

    max_instances=1 keeps a slow run of an action from overlapping its
    next slot; missed slots are coalesced into a single run.
    """
    scheduler = scheduler or BlockingScheduler()
    for job in jobs:
        scheduler.add_job(
            run_job,
            trigger=IntervalTrigger(seconds=job.interval),
            args=[job],
            id=job.name,
            name=f"Refresh {job.name}",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
    return scheduler


def build_default_jobs(youtube_refresher, paceman_refresher, database_store) -> List[RefreshJob]:
    """Jobs for every refresh action whose source is configured."""
    jobs = []
    if youtube_refresher is not None:
        jobs.extend([
            RefreshJob("youtube-update", youtube_refresher.refresh_new_videos),
            RefreshJob("youtube-verify", youtube_refresher.verify_videos),
            RefreshJob("youtube-live", youtube_refresher.refresh_live_streams),
        ])
    jobs.append(RefreshJob("paceman", paceman_refresher.refresh))
    jobs.append(RefreshJob("cache-cleanup", lambda: {"deleted": database_store.cleanup_expired()}))
    return jobs
