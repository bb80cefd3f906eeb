"""
Auto-refresh scheduler.

APScheduler-based periodic refresh of each dataset kind plus hourly
cache maintenance, running on the orchestrator's event loop.
"""

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from netatlas.config import CacheConfig, OrchestratorConfig
from netatlas.normalizer.schemas import DatasetKind

logger = logging.getLogger(__name__)

CLEANUP_JOB_ID = "cleanup_cache"


def refresh_job_id(kind: DatasetKind) -> str:
    return f"refresh_{kind.value}"


class RefreshScheduler:
    """
    Recurring refresh jobs, one per dataset kind.

    Scheduled Tasks:
        - Every refresh interval: invalidate and re-fetch each dataset kind
        - Every cleanup interval: remove expired cache entries

    Job failures are logged and counted; they never reach the event loop.
    Must be started from within a running event loop.

    Example:
        >>> scheduler = RefreshScheduler(orchestrator.refresh_data, list(DatasetKind))
        >>> scheduler.start()
        >>> scheduler.cancel(DatasetKind.ATTACKS)
        >>> scheduler.stop()
    """

    def __init__(
        self,
        refresh: Callable[[DatasetKind], Awaitable[Any]],
        kinds: Iterable[DatasetKind],
        interval_seconds: Optional[float] = None,
        cleanup: Optional[Callable[[], Awaitable[int]]] = None,
        cleanup_interval_minutes: Optional[float] = None,
    ):
        """
        Initialize refresh scheduler.

        Args:
            refresh: Coroutine function refreshing one dataset kind
            kinds: Dataset kinds to refresh
            interval_seconds: Refresh interval (default: REFRESH_INTERVAL_SECONDS)
            cleanup: Coroutine function removing expired cache entries
            cleanup_interval_minutes: Cleanup interval (default: CACHE_CLEANUP_INTERVAL_MINUTES)
        """
        self._refresh = refresh
        self.kinds = list(kinds)
        self.interval_seconds = interval_seconds or OrchestratorConfig.REFRESH_INTERVAL_SECONDS
        self._cleanup = cleanup
        self.cleanup_interval_minutes = cleanup_interval_minutes or CacheConfig.CLEANUP_INTERVAL_MINUTES

        self.scheduler: Optional[AsyncIOScheduler] = None
        self._is_running = False
        self._last_refresh: dict[str, datetime] = {}
        self._last_cache_cleanup: Optional[datetime] = None

        self._stats = {
            "total_refreshes": 0,
            "failed_refreshes": 0,
            "cache_cleanups": 0,
            "failed_cleanups": 0,
        }

        logger.info(
            f"RefreshScheduler initialized with {len(self.kinds)} kinds, "
            f"{self.interval_seconds}s interval"
        )

    def start(self) -> None:
        """Schedule one refresh job per kind plus cache cleanup, then start."""
        if self._is_running:
            logger.warning("Refresh scheduler is already running")
            return

        self.scheduler = AsyncIOScheduler()

        for kind in self.kinds:
            self.scheduler.add_job(
                func=self._run_refresh,
                trigger=IntervalTrigger(seconds=self.interval_seconds),
                args=[kind],
                id=refresh_job_id(kind),
                name=f"Refresh {kind.value}",
                replace_existing=True,
                max_instances=1,  # Prevent overlapping executions
            )

        if self._cleanup is not None:
            self.scheduler.add_job(
                func=self._run_cleanup,
                trigger=IntervalTrigger(minutes=self.cleanup_interval_minutes),
                id=CLEANUP_JOB_ID,
                name="Cache Cleanup",
                replace_existing=True,
                max_instances=1,
            )

        self.scheduler.start()
        self._is_running = True

        logger.info(
            "RefreshScheduler started",
            extra={
                "interval_seconds": self.interval_seconds,
                "jobs": [job.id for job in self.scheduler.get_jobs()],
            },
        )

    def stop(self) -> None:
        """Remove all jobs and shut the scheduler down."""
        if not self._is_running:
            logger.debug("Refresh scheduler is not running")
            return

        self.scheduler.remove_all_jobs()
        self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("RefreshScheduler stopped")

    def cancel(self, kind: DatasetKind) -> bool:
        """
        Cancel the refresh job of one dataset kind.

        Returns:
            True if a job was removed
        """
        if not self._is_running:
            return False
        try:
            self.scheduler.remove_job(refresh_job_id(kind))
        except JobLookupError:
            logger.debug(f"No refresh job for {kind.value}")
            return False
        logger.info(f"Cancelled auto-refresh for {kind.value}")
        return True

    async def _run_refresh(self, kind: DatasetKind) -> None:
        self._stats["total_refreshes"] += 1
        try:
            await self._refresh(kind)
            self._last_refresh[kind.value] = datetime.now()
            logger.debug(f"Auto-refresh completed for {kind.value}")
        except Exception as e:
            self._stats["failed_refreshes"] += 1
            logger.error(
                f"Auto-refresh failed for {kind.value}: {e}",
                extra={"kind": kind.value, "error": str(e)},
                exc_info=True,
            )

    async def _run_cleanup(self) -> None:
        try:
            deleted_count = await self._cleanup()
            self._last_cache_cleanup = datetime.now()
            self._stats["cache_cleanups"] += 1
            logger.info(
                f"Cache cleanup completed: {deleted_count} entries removed",
                extra={"deleted_entries": deleted_count},
            )
        except Exception as e:
            self._stats["failed_cleanups"] += 1
            logger.error(f"Error during cache cleanup: {e}", exc_info=True)

    def get_statistics(self) -> dict[str, Any]:
        """
        Get scheduler statistics.

        Returns:
            Dictionary with scheduler state, job info and refresh counters
        """
        return {
            "scheduler_state": {
                "is_running": self._is_running,
                "interval_seconds": self.interval_seconds,
                "kinds": [kind.value for kind in self.kinds],
            },
            "last_activity": {
                "last_refresh": {kind: ts.isoformat() for kind, ts in self._last_refresh.items()},
                "last_cache_cleanup": (
                    self._last_cache_cleanup.isoformat() if self._last_cache_cleanup else None
                ),
            },
            "refresh_metrics": dict(self._stats),
            "scheduled_jobs": [
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                }
                for job in self.scheduler.get_jobs()
            ]
            if self._is_running
            else [],
        }

    def is_running(self) -> bool:
        return self._is_running

    def __repr__(self) -> str:
        return (
            f"RefreshScheduler(kinds={len(self.kinds)}, "
            f"interval={self.interval_seconds}s, "
            f"running={self._is_running})"
        )
