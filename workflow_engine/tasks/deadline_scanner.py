"""Deadline Scanner for workflow approvals.

APScheduler-based async job that periodically runs
WorkflowEngine.process_scheduled_transitions: overdue approvals are
escalated and scheduled edges of waiting instances are followed.
"""

import asyncio
import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-not-found]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-not-found]
from pytz import timezone

from workflow_engine.config import Settings, get_settings

if TYPE_CHECKING:
    from workflow_engine.services.engine import ScheduledRunResult, WorkflowEngine

logger = logging.getLogger(__name__)

JOB_ID = "workflow_deadline_scan"


class DeadlineScanner:
    """Escáner periódico de deadlines y transiciones programadas.

    Only one scan runs at a time: the scheduler job uses max_instances=1 and
    an asyncio.Lock skips a manual scan while another one is in flight.
    """

    def __init__(
        self,
        engine: "WorkflowEngine",
        interval_seconds: int | None = None,
        timezone_name: str | None = None,
        enabled: bool | None = None,
        settings: Settings | None = None,
    ):
        """Initialize scanner.

        Args:
            engine: Workflow engine that performs the escalations.
            interval_seconds: Seconds between scans (WORKFLOW_SCANNER_INTERVAL_SECONDS).
            timezone_name: Scheduler timezone (WORKFLOW_TIMEZONE).
            enabled: Whether the scanner starts at all (WORKFLOW_SCANNER_ENABLED).
        """
        settings = settings or get_settings()
        self.engine = engine
        self.interval_seconds = interval_seconds or settings.WORKFLOW_SCANNER_INTERVAL_SECONDS
        self.tz = timezone(timezone_name or settings.WORKFLOW_TIMEZONE)
        self.enabled = settings.WORKFLOW_SCANNER_ENABLED if enabled is None else enabled

        self._scheduler: AsyncIOScheduler | None = None
        self._is_running = False
        self._scan_lock = asyncio.Lock()
        self.last_result: "ScheduledRunResult | None" = None

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def start(self) -> None:
        """Start the scheduler."""
        if not self.enabled:
            logger.info("DeadlineScanner is disabled, skipping start")
            return

        if self._is_running:
            logger.warning("DeadlineScanner already running")
            return

        scheduler = AsyncIOScheduler(timezone=self.tz)
        self._scheduler = scheduler

        scheduler.add_job(
            self.scan,
            IntervalTrigger(seconds=self.interval_seconds, timezone=self.tz),
            id=JOB_ID,
            replace_existing=True,
            name="Workflow Deadline Scan",
            max_instances=1,
            coalesce=True,
        )

        scheduler.start()
        self._is_running = True
        logger.info(f"DeadlineScanner started (every {self.interval_seconds}s, timezone {self.tz})")

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if self._scheduler and self._is_running:
            self._scheduler.shutdown(wait=False)
            self._is_running = False
            logger.info("DeadlineScanner stopped")

    async def scan(self) -> "ScheduledRunResult | None":
        """Run one scan; returns None when another scan is already running."""
        if self._scan_lock.locked():
            logger.info("Deadline scan already in progress, skipping")
            return None

        async with self._scan_lock:
            logger.info("Starting deadline scan")
            try:
                result = await self.engine.process_scheduled_transitions()
            except Exception as e:
                logger.error(f"Error running deadline scan: {e}", exc_info=True)
                return None

            self.last_result = result
            if result.errors:
                logger.warning(f"Deadline scan finished with {len(result.errors)} errors")
            return result
