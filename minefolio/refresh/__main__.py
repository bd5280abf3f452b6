"""
Run the refresh scheduler: python -m minefolio.refresh
"""
import argparse
import logging
import sys

from config.settings import settings
from minefolio import services
from minefolio.db import init_db
from .scheduler import REFRESH_INTERVALS, build_default_jobs, build_scheduler, run_once

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger("refresh")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Minefolio cache refresh scheduler")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run every job once and exit instead of looping.",
    )
    parser.add_argument(
        "--job",
        choices=sorted(REFRESH_INTERVALS),
        action="append",
        help="Only run this job (repeatable).",
    )
    args = parser.parse_args(argv)

    init_db()
    jobs = build_default_jobs(
        services.get_youtube_refresher(),
        services.get_paceman_refresher(),
        services.get_database_store(),
    )
    if args.job:
        jobs = [job for job in jobs if job.name in args.job]
        if not jobs:
            logger.error(f"None of {args.job} is configured")
            return 1

    # Every action runs once at startup, then on its own interval
    results = run_once(jobs)
    failed = [name for name, result in results.items() if isinstance(result, dict) and "error" in result]
    if args.once:
        return 1 if failed else 0

    scheduler = build_scheduler(jobs)
    logger.info(f"Scheduler running {len(jobs)} jobs: {[job.name for job in jobs]}")
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
