"""Background job scheduler (APScheduler)."""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger("meterpay.scheduler")

JobCallable = Callable[[], Awaitable[object] | object]


class MeterpayScheduler:
    """Thin wrapper over AsyncIOScheduler with coalescing interval jobs."""

    def __init__(self, timezone: str = "UTC"):
        self._started = False
        self._scheduler = AsyncIOScheduler(
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 60,
            },
            timezone=timezone,
        )

    def add_interval_job(
        self,
        func: JobCallable,
        job_id: str,
        *,
        seconds: int = 60,
        **kwargs: Any,
    ) -> None:
        """Register an interval job."""
        self._scheduler.add_job(
            func,
            "interval",
            id=job_id,
            seconds=seconds,
            replace_existing=True,
            **kwargs,
        )
        logger.info("Registered interval job: %s (every %ss)", job_id, seconds)

    def job_ids(self) -> list[str]:
        return [job.id for job in self._scheduler.get_jobs()]

    async def start(self) -> None:
        """Start the scheduler."""
        if self._started:
            return
        self._scheduler.start()
        self._started = True
        logger.info("Scheduler started")

    async def shutdown(self, wait: bool = True) -> None:
        """Stop the scheduler gracefully."""
        if not self._started:
            return
        self._scheduler.shutdown(wait=wait)
        self._started = False
        logger.info("Scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._started and bool(self._scheduler.running)
