# backend/modelfolio/services/market_data/scheduler.py
"""
Price Ingestion Scheduler - cooperative, timer-driven background jobs.

Every job is an asyncio task that sleeps until the job's next occurrence
(UTC wall clock), runs, and goes back to sleep. There are no worker threads
of the scheduler's own; blocking database work happens in the services via
asyncio.to_thread. Stopping the scheduler cancels the sleeping tasks.

Default jobs (times from settings, UTC):
    morning_update     02:30   regular price update
    closing_update     10:15   closing price update (after NSE close)
    afternoon_update   10:30   regular price update
    daily_snapshot     10:45   closing-price valuation + price log of every portfolio

One asyncio.Lock serializes every run, scheduled or triggered, so two
ingestion runs never write the registry at the same time.

Usage:
    scheduler = PriceIngestionScheduler(ingestion_service, snapshot=run_daily_snapshot)
    scheduler.start()
    ...
    summary = await scheduler.trigger(UpdateType.MANUAL)
    ...
    await scheduler.stop()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Any

from modelfolio.config import settings
from modelfolio.services.market_data.ingestion import (
    IngestionRunSummary,
    PriceIngestionService,
    UpdateType,
)

logger = logging.getLogger(__name__)


def parse_schedule_time(value: str) -> time:
    """Parse "HH:MM" into a UTC time of day."""
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes), tzinfo=timezone.utc)


@dataclass
class ScheduledJob:
    """
    A job that runs once a day at a fixed UTC time.

    The bookkeeping fields (next_run_at, last_*) are updated by the scheduler
    and reported by status().
    """

    name: str
    at: time
    action: Callable[[], Awaitable[Any]]
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    last_status: str | None = None
    last_message: str | None = None

    def next_occurrence(self, now: datetime) -> datetime:
        """First occurrence of ``at`` strictly after ``now``."""
        now = now.astimezone(timezone.utc)
        candidate = datetime.combine(now.date(), self.at.replace(tzinfo=None), tzinfo=timezone.utc)
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate


class PriceIngestionScheduler:
    """
    Runs the ingestion service (and the daily snapshot) on a daily schedule.

    Args:
        ingestion: Ingestion service to run
        snapshot: Blocking callable recording the daily snapshot; run in a
                  worker thread. The snapshot job is skipped when None.
        clock: Returns the current UTC time
        sleep: Awaitable sleep, replaced in tests
    """

    def __init__(
            self,
            ingestion: PriceIngestionService,
            snapshot: Callable[[], Any] | None = None,
            clock: Callable[[], datetime] | None = None,
            sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.ingestion = ingestion
        self._snapshot = snapshot
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._tasks: dict[str, asyncio.Task] = {}
        self.jobs = self._build_jobs()

    def _build_jobs(self) -> list[ScheduledJob]:
        jobs = [
            ScheduledJob(
                "morning_update",
                parse_schedule_time(settings.schedule_morning_update),
                lambda: self._run_ingestion(UpdateType.REGULAR),
            ),
            ScheduledJob(
                "closing_update",
                parse_schedule_time(settings.schedule_closing_update),
                lambda: self._run_ingestion(UpdateType.CLOSING),
            ),
            ScheduledJob(
                "afternoon_update",
                parse_schedule_time(settings.schedule_afternoon_update),
                lambda: self._run_ingestion(UpdateType.REGULAR),
            ),
        ]
        if self._snapshot is not None:
            jobs.append(ScheduledJob(
                "daily_snapshot",
                parse_schedule_time(settings.schedule_daily_snapshot),
                self._run_snapshot,
            ))
        return jobs

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks.values())

    def start(self) -> None:
        """Start one task per job. Must be called from a running event loop."""
        if self.is_running:
            logger.warning("Scheduler already running")
            return

        for job in self.jobs:
            self._tasks[job.name] = asyncio.create_task(self._job_loop(job), name=f"scheduler:{job.name}")

        logger.info(
            "Scheduler started: "
            + ", ".join(f"{job.name}@{job.at.strftime('%H:%M')}Z" for job in self.jobs)
        )

    async def stop(self) -> None:
        """Cancel every job task and wait for them to finish."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        for job in self.jobs:
            job.next_run_at = None
        logger.info("Scheduler stopped")

    def status(self) -> dict:
        """Scheduler state for the API."""
        return {
            "running": self.is_running,
            "busy": self._lock.locked(),
            "jobs": [
                {
                    "name": job.name,
                    "at": job.at.strftime("%H:%M"),
                    "next_run_at": job.next_run_at,
                    "last_run_at": job.last_run_at,
                    "last_status": job.last_status,
                    "last_message": job.last_message,
                }
                for job in self.jobs
            ],
        }

    # =========================================================================
    # RUNS
    # =========================================================================

    async def trigger(self, update_type: UpdateType | str = UpdateType.MANUAL) -> IngestionRunSummary:
        """
        Run an ingestion now, waiting for any run in progress to finish first.

        Raises:
            ProviderUnavailableError: If the provider is unreachable
        """
        return await self._run_ingestion(UpdateType(update_type))

    async def _run_ingestion(self, update_type: UpdateType) -> IngestionRunSummary:
        async with self._lock:
            return await self.ingestion.run(update_type)

    async def _run_snapshot(self) -> Any:
        async with self._lock:
            return await asyncio.to_thread(self._snapshot)

    async def _job_loop(self, job: ScheduledJob) -> None:
        last_target: datetime | None = None
        while True:
            now = self._clock()
            # Timers can wake early; never reschedule the occurrence just run
            reference = max(now, last_target) if last_target else now
            job.next_run_at = job.next_occurrence(reference)
            delay = max((job.next_run_at - now).total_seconds(), 0.0)
            logger.debug(f"Job {job.name} sleeping {delay:.0f}s until {job.next_run_at.isoformat()}")
            await self._sleep(delay)
            last_target = job.next_run_at
            await self._run_job(job)

    async def _run_job(self, job: ScheduledJob) -> None:
        logger.info(f"Running scheduled job {job.name}")
        job.last_run_at = self._clock()
        try:
            result = await job.action()
        except Exception as e:
            # The job runs again at its next occurrence
            logger.error(f"Scheduled job {job.name} failed: {e}", exc_info=True)
            job.last_status = "error"
            job.last_message = str(e)
            return

        job.last_status = "ok"
        job.last_message = getattr(result, "message", None)
