"""Settlement state store contract.

The store is the single source of truth for quotes, payments, jobs and
idempotency entries. Every status transition is a conditional write, so
concurrent callers never need an in-process lock held across I/O.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol

from .models import IdempotencyEntry, Job, JobStatus, Payment, Quote


class SettlementStore(Protocol):
    backend: str

    # Quotes
    async def create_quote(self, quote: Quote) -> Quote: ...
    async def get_quote(self, quote_id: str) -> Optional[Quote]: ...
    async def expire_quote(self, quote_id: str) -> bool: ...

    # Payment recording + quote consumption, one transaction.
    # Returns False (and writes nothing) unless the quote was still active
    # and unexpired at ``now``.
    async def consume_quote_and_record_payment(self, payment: Payment, *, now: datetime) -> bool: ...
    async def get_payment(self, payment_id: str) -> Optional[Payment]: ...
    async def get_payment_for_quote(self, quote_id: str) -> Optional[Payment]: ...

    # Jobs
    async def create_job(self, job: Job) -> Job: ...
    async def get_job(self, job_id: str) -> Optional[Job]: ...
    async def claim_job(self, job_id: str) -> Optional[Job]: ...
    async def finish_job(
        self,
        job_id: str,
        *,
        status: JobStatus,
        completed_at: datetime,
        result: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> Optional[Job]: ...

    # Idempotency entries
    async def get_idempotency_entry(self, key: str) -> Optional[IdempotencyEntry]: ...
    async def reserve_idempotency_key(self, key: str, *, now: datetime, expires_at: datetime) -> bool: ...
    async def put_idempotency_entry(
        self, key: str, response_json: str, *, now: datetime, expires_at: datetime
    ) -> None: ...
    async def release_idempotency_key(self, key: str) -> bool: ...

    # Maintenance
    async def expire_stale_quotes(self, *, now: datetime) -> int: ...
    async def purge_expired_idempotency(self, *, now: datetime) -> int: ...

    async def close(self) -> None: ...


def create_store(database_url: str) -> SettlementStore:
    """Pick the backend from the DSN: PostgreSQL, else in-memory."""
    if database_url.startswith(("postgresql://", "postgres://")):
        from .store_postgres import PostgresSettlementStore
        return PostgresSettlementStore(database_url)
    from .store_memory import InMemorySettlementStore
    return InMemorySettlementStore()
