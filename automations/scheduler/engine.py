"""SchedulerEngine — APScheduler lifecycle for the periodic automation tick."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from automations.config import settings

if TYPE_CHECKING:
    from datetime import datetime

    from automations.scheduler.driver import SchedulerDriver, TickSummary

logger = logging.getLogger(__name__)

TICK_JOB_ID = "automation-tick"


class SchedulerEngine:
    """Runs ``SchedulerDriver.tick`` on a fixed interval.

    Args:
        driver: SchedulerDriver that does the actual work.
        interval_minutes: Minutes between ticks (default from settings).
        timezone: IANA timezone string (default from settings).
    """

    def __init__(
        self,
        driver: SchedulerDriver,
        interval_minutes: int | None = None,
        timezone: str | None = None,
    ) -> None:
        self._driver = driver
        self._interval_minutes = interval_minutes or settings.tick_interval_minutes
        self._timezone = timezone or settings.scheduler_timezone
        self._scheduler = AsyncIOScheduler(timezone=self._timezone)
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def next_tick_at(self) -> datetime | None:
        job = self._scheduler.get_job(TICK_JOB_ID)
        return job.next_run_time if job else None

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Register the tick job and start the scheduler."""
        self._scheduler.add_job(
            self._tick,
            trigger=IntervalTrigger(minutes=self._interval_minutes, timezone=self._timezone),
            id=TICK_JOB_ID,
            name="Automation tick",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
            replace_existing=True,
        )
        self._scheduler.start()
        self._running = True
        logger.info(
            "Scheduler started: ticking every %d minute(s) (tz=%s)",
            self._interval_minutes,
            self._timezone,
        )

    async def stop(self) -> None:
        """Shut down the scheduler."""
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")

    # -- Ticks -----------------------------------------------------------------

    async def run_now(self) -> TickSummary:
        """Run one tick immediately, outside the interval."""
        logger.info("Manual tick triggered")
        return await self._driver.tick()

    async def _tick(self) -> None:
        """Callback invoked by APScheduler."""
        try:
            await self._driver.tick()
        except Exception:
            logger.exception("Automation tick failed")
