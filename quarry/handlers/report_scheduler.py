"""Report Scheduler -- fires the daily report on a cron schedule.

A single background task sleeps until the next cron match (computed in the
configured timezone), posts the report, then computes the next fire time.
A failed report is logged and the schedule carries on.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable
from zoneinfo import ZoneInfo

from croniter import croniter

from quarry.config import Settings
from quarry.handlers.daily_report import DailyReport

logger = logging.getLogger(__name__)


class ReportScheduler:
    """Background scheduler for the daily report."""

    def __init__(
        self,
        report: DailyReport,
        settings: Settings,
        now: Callable[[ZoneInfo], datetime] = datetime.now,
    ) -> None:
        if not croniter.is_valid(settings.report_cron):
            raise ValueError(f"Invalid report cron expression: {settings.report_cron!r}")
        self._report = report
        self._settings = settings
        self._tz = ZoneInfo(settings.timezone)
        self._now = now
        self._task: asyncio.Task | None = None
        self._running = False

    def next_fire_at(self, after: datetime | None = None) -> datetime:
        """Next cron match strictly after ``after`` (default: now)."""
        base = after or self._now(self._tz)
        return croniter(self._settings.report_cron, base).get_next(datetime)

    async def start(self) -> None:
        """Start the scheduler loop."""
        self._running = True
        self._task = asyncio.create_task(self._schedule_loop(), name="report-scheduler")
        logger.info(
            "Report scheduler started (cron=%r, tz=%s, next=%s)",
            self._settings.report_cron,
            self._settings.timezone,
            self.next_fire_at().isoformat(),
        )

    async def stop(self) -> None:
        """Stop the scheduler."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Report scheduler stopped")

    # ------------------------------------------------------------------
    # Schedule loop
    # ------------------------------------------------------------------

    async def _schedule_loop(self) -> None:
        """Loop: sleep until next fire -> post report -> repeat."""
        fire_at = self.next_fire_at()
        while self._running:
            try:
                delay = (fire_at - self._now(self._tz)).total_seconds()
                await asyncio.sleep(max(0.0, delay))
                await self.fire()
                # Advance from the slot just fired so an early wakeup can't repeat it
                fire_at = self.next_fire_at(max(fire_at, self._now(self._tz)))
            except asyncio.CancelledError:
                break

    async def fire(self) -> bool:
        """Post the report now. Returns False if it failed."""
        try:
            await self._report.post()
        except Exception:
            logger.exception("Scheduled daily report failed")
            return False
        logger.info("Scheduled daily report posted")
        return True
