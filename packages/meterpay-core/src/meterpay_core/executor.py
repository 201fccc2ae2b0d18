"""Job executor: runs a registered handler once per job."""
from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from .exceptions import StorageError
from .models import Job, JobStatus, new_id, utc_now
from .registry import EndpointRegistry
from .store import SettlementStore

logger = logging.getLogger("meterpay.executor")

DEFAULT_JOB_TIMEOUT_SECONDS = 30.0


@dataclass
class JobOutcome:
    job_id: str
    status: JobStatus
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.COMPLETED

    @classmethod
    def from_job(cls, job: Job) -> "JobOutcome":
        return cls(job_id=job.job_id, status=job.status, result=job.result, error=job.error)


class JobExecutor:
    """Creates jobs and executes them at most once.

    Handler failures never escape: they are recorded on the job as ``failed``
    with the exception text. Only store errors propagate.
    """

    def __init__(
        self,
        store: SettlementStore,
        registry: EndpointRegistry,
        *,
        timeout_seconds: float = DEFAULT_JOB_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._registry = registry
        self._timeout = timeout_seconds
        self._clock = clock

    async def create_job(self, payment_id: str, endpoint: str, args: Mapping[str, Any]) -> Job:
        job = Job(
            job_id=new_id("job"),
            payment_id=payment_id,
            endpoint=endpoint,
            args=dict(args),
            status=JobStatus.QUEUED,
            created_at=self._clock(),
        )
        return await self._store.create_job(job)

    async def get_job(self, job_id: str) -> Optional[Job]:
        return await self._store.get_job(job_id)

    async def execute(self, job_id: str) -> JobOutcome:
        claimed = await self._store.claim_job(job_id)
        if claimed is None:
            existing = await self._store.get_job(job_id)
            if existing is None:
                raise StorageError(f"job not found: {job_id}")
            logger.info("Job %s not re-run (status=%s)", job_id, existing.status.value)
            return JobOutcome.from_job(existing)

        try:
            result = await self._run_handler(claimed)
        except Exception as e:
            return await self._finish(claimed, JobStatus.FAILED, error=self._describe(e))
        return await self._finish(claimed, JobStatus.COMPLETED, result=result)

    async def _run_handler(self, job: Job) -> dict[str, Any]:
        handler = self._registry.handler_for(job.endpoint)
        if handler is None:
            raise LookupError(f"no handler registered for endpoint: {job.endpoint}")

        if inspect.iscoroutinefunction(handler):
            result = await asyncio.wait_for(handler(job.args), timeout=self._timeout)
        else:
            # Sync handlers run off the event loop so the timeout can fire.
            result = await asyncio.wait_for(asyncio.to_thread(handler, job.args), timeout=self._timeout)
            if inspect.isawaitable(result):
                result = await asyncio.wait_for(result, timeout=self._timeout)

        if not isinstance(result, Mapping):
            raise TypeError(f"handler returned {type(result).__name__}, expected a mapping")
        result = dict(result)
        try:
            json.dumps(result, allow_nan=False, default=str)
        except ValueError as e:
            raise ValueError(f"handler result is not valid JSON: {e}") from e
        return result

    def _describe(self, exc: Exception) -> str:
        if isinstance(exc, asyncio.TimeoutError):
            return f"job timed out after {self._timeout:g}s"
        return str(exc) or type(exc).__name__

    async def _finish(
        self,
        job: Job,
        status: JobStatus,
        *,
        result: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> JobOutcome:
        finished = await self._store.finish_job(
            job.job_id,
            status=status,
            completed_at=self._clock(),
            result=result,
            error=error,
        )
        if finished is None:
            # Another writer already finished it; report what is stored.
            stored = await self._store.get_job(job.job_id)
            if stored is None:
                raise StorageError(f"job vanished: {job.job_id}")
            return JobOutcome.from_job(stored)

        if status == JobStatus.COMPLETED:
            logger.info("Job completed", extra={"job_id": job.job_id, "endpoint": job.endpoint})
        else:
            logger.warning(
                "Job failed",
                extra={"job_id": job.job_id, "endpoint": job.endpoint, "error": error},
            )
        return JobOutcome.from_job(finished)
