"""Job inspection routes."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from meterpay_core.exceptions import NotFoundError
from meterpay_core.executor import JobExecutor
from meterpay_core.models import Job

router = APIRouter(tags=["jobs"])


class JobResponse(BaseModel):
    job_id: str
    payment_id: str
    endpoint: str
    status: str
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_job(cls, job: Job) -> "JobResponse":
        return cls(
            job_id=job.job_id,
            payment_id=job.payment_id,
            endpoint=job.endpoint,
            status=job.status.value,
            result=job.result,
            error=job.error,
            created_at=job.created_at,
            completed_at=job.completed_at,
        )


class JobsDependencies:
    def __init__(self, executor: JobExecutor):
        self.executor = executor


def get_deps() -> JobsDependencies:
    """Dependency injection placeholder."""
    raise NotImplementedError("Must be overridden")


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: str,
    deps: JobsDependencies = Depends(get_deps),
):
    """Status and outcome of a paid job."""
    job = await deps.executor.get_job(job_id)
    if job is None:
        raise NotFoundError("job", job_id)
    return JobResponse.from_job(job)
