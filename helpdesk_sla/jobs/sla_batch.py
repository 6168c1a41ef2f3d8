"""
SLA Batch Job Module

Runs the SLA monitor periodically on an asyncio background task.
"""

import asyncio
from datetime import datetime
from typing import Optional, Callable, Awaitable
import logging

from helpdesk_sla.core.config import settings
from helpdesk_sla.core.exceptions import SchedulerBusyError
from helpdesk_sla.core.sse import connection_manager
from helpdesk_sla.services.metrics_service import metrics_collector
from helpdesk_sla.services.sla_monitor import SlaMonitor


logger = logging.getLogger(__name__)


class SlaJobScheduler:
    """
    Scheduler for SLA monitor cycles.

    A cycle never overlaps another one: scheduled ticks that find a cycle
    still running are skipped, manual runs are refused.
    """

    def __init__(
        self,
        interval_seconds: Optional[int] = None,
        monitor: Optional[SlaMonitor] = None,
        on_complete: Optional[Callable[[dict], Awaitable[None]]] = None
    ):
        """
        Initialize the SLA job scheduler.

        Args:
            interval_seconds: Time between cycles (defaults to SLA_CHECK_INTERVAL_SECONDS)
            monitor: Monitor that runs the cycles
            on_complete: Optional async callback executed with each cycle summary
        """
        self.interval_seconds = interval_seconds or settings.SLA_CHECK_INTERVAL_SECONDS
        self.monitor = monitor or SlaMonitor()
        self.on_complete = on_complete
        self._lock = asyncio.Lock()
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._started_at: Optional[datetime] = None
        self._last_run: Optional[datetime] = None
        self._last_success: Optional[datetime] = None
        self._last_summary: Optional[dict] = None
        self._run_count = 0
        self._error_count = 0
        self._skipped_count = 0

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    async def run_sla_check(self) -> dict:
        """
        Execute a single SLA cycle now.

        Returns:
            Cycle summary

        Raises:
            SchedulerBusyError: If a cycle is already running
        """
        if self.is_busy:
            raise SchedulerBusyError("An SLA check is already running")

        async with self._lock:
            return await self._run_locked()

    async def _run_locked(self) -> dict:
        logger.info("Starting SLA check...")
        self._last_run = datetime.utcnow()

        try:
            summary = await self.monitor.run_cycle()
        except Exception as e:
            self._error_count += 1
            logger.error(f"SLA check failed: {e}")
            raise

        self._run_count += 1
        self._last_success = datetime.utcnow()
        self._last_summary = summary

        if self.on_complete:
            try:
                await self.on_complete(summary)
            except Exception as e:
                logger.error(f"Error in on_complete callback: {e}")

        return summary

    async def _tick(self):
        if self.is_busy:
            self._skipped_count += 1
            metrics_collector.record_sla_skip()
            logger.warning("Previous SLA check still running, skipping this tick")
            return

        async with self._lock:
            await self._run_locked()

    async def _scheduler_loop(self):
        logger.info(f"SLA scheduler started with interval {self.interval_seconds} seconds")

        while self._running:
            try:
                await self._tick()
            except Exception as e:
                logger.error(f"SLA scheduler error: {e}")

            await asyncio.sleep(self.interval_seconds)

    def start(self):
        """Start the scheduler loop on a background task."""
        if self._running:
            logger.warning("SLA scheduler is already running")
            return

        self._running = True
        self._started_at = datetime.utcnow()
        self._task = asyncio.create_task(self._scheduler_loop())
        logger.info("SLA scheduler task created")

    async def stop(self):
        """Cancel the scheduler loop and wait for it to finish."""
        if not self._running:
            logger.warning("SLA scheduler is not running")
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("SLA scheduler stopped")

    def is_stale(self, now: Optional[datetime] = None) -> bool:
        """
        True when the scheduler runs but has not completed a cycle within
        SLA_STALE_AFTER_INTERVALS intervals.
        """
        if not self._running:
            return False
        reference = self._last_success or self._started_at
        if reference is None:
            return False
        now = now or datetime.utcnow()
        limit = self.interval_seconds * settings.SLA_STALE_AFTER_INTERVALS
        return (now - reference).total_seconds() > limit

    def get_status(self) -> dict:
        return {
            "running": self._running,
            "busy": self.is_busy,
            "interval_seconds": self.interval_seconds,
            "last_run": self._last_run,
            "last_success": self._last_success,
            "last_summary": self._last_summary,
            "run_count": self._run_count,
            "error_count": self._error_count,
            "skipped_count": self._skipped_count,
            "next_run_in_seconds": self._calculate_next_run_seconds(),
            "stale": self.is_stale(),
        }

    def _calculate_next_run_seconds(self) -> Optional[int]:
        if not self._running or not self._last_run:
            return None

        elapsed = (datetime.utcnow() - self._last_run).total_seconds()
        return int(max(0, self.interval_seconds - elapsed))


async def publish_breach_summary(summary: dict):
    """Announce a cycle that found breaches to every connected client."""
    if not summary.get("breaches_found"):
        return

    logger.warning(
        f"SLA cycle found {summary['breaches_found']} breached tickets "
        f"({summary['escalations_performed']} escalated)"
    )
    await connection_manager.broadcast_global("sla_breach_summary", {
        "breaches_found": summary["breaches_found"],
        "escalations_performed": summary["escalations_performed"],
        "warnings_sent": summary["warnings_sent"],
        "finished_at": summary.get("finished_at"),
    })


# Global scheduler instance
_sla_scheduler: Optional[SlaJobScheduler] = None


def get_sla_scheduler() -> SlaJobScheduler:
    """
    Get the global SLA scheduler instance, creating it on first use.

    Also used as a FastAPI dependency.
    """
    global _sla_scheduler
    if _sla_scheduler is None:
        _sla_scheduler = SlaJobScheduler(on_complete=publish_breach_summary)
    return _sla_scheduler


async def start_sla_scheduler():
    """Start the global SLA scheduler. Called during application startup."""
    get_sla_scheduler().start()
    logger.info("Global SLA scheduler started")


async def stop_sla_scheduler():
    """Stop the global SLA scheduler. Called during application shutdown."""
    global _sla_scheduler
    if _sla_scheduler:
        if _sla_scheduler._running:
            await _sla_scheduler.stop()
        _sla_scheduler = None
    logger.info("Global SLA scheduler stopped")
