"""Periodic forage runs using APScheduler."""

import asyncio
import logging
from datetime import datetime
from typing import NoReturn

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from forager.config import Settings
from forager.pipeline import catch_up

logger = logging.getLogger(__name__)


def forage_job(settings: Settings) -> None:
    """Catch up as far as the CDS allows. Failures are logged; the next run retries."""
    try:
        outcomes = asyncio.run(
            catch_up(settings, settings.scheduler.max_cycles_per_run)
        )
        if outcomes:
            last = outcomes[-1]
            logger.info(
                f"Forage run finished after {len(outcomes)} cycle(s): "
                f"status={last.status.value} cursor={last.cursor}"
            )
    except Exception as e:
        logger.error(f"Forage run failed: {e}", exc_info=True)


def start_scheduler(settings: Settings) -> NoReturn:
    """Start the APScheduler with the forage job."""
    scheduler = BlockingScheduler()

    scheduler.add_job(
        forage_job,
        IntervalTrigger(minutes=settings.scheduler.interval_minutes),
        args=[settings],
        id="era5-forage",
        name="Forage: ERA5 monthly",
        next_run_time=datetime.now(),
        max_instances=1,
        coalesce=True,
    )
    logger.info(
        f"Registered job: ERA5 monthly forage (every {settings.scheduler.interval_minutes} min)"
    )

    try:
        logger.info("✓ Scheduler starting...")
        logger.info(f"✓ {len(scheduler.get_jobs())} jobs registered")
        logger.info("Press Ctrl+C to stop\n")

        scheduler.start()

    except (KeyboardInterrupt, SystemExit):
        logger.info("\nReceived interrupt signal")
        scheduler.shutdown()
        logger.info("✓ Scheduler stopped cleanly")
