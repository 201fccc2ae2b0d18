"""In-memory settlement store (dev/test).

Process-local only. Each conditional transition runs under a single
asyncio.Lock for the duration of one read-modify-write, never across an
await on another component.
"""
from __future__ import annotations

import asyncio
import copy
from dataclasses import replace
from datetime import datetime
from typing import Any, Optional

from .exceptions import StorageError
from .models import (
    IdempotencyEntry,
    IdempotencyStatus,
    Job,
    JobStatus,
    Payment,
    Quote,
    QuoteStatus,
)
from .store import SettlementStore


def _snapshot(record):
    return copy.deepcopy(record)


class InMemorySettlementStore(SettlementStore):
    """In-memory store (swap for PostgresSettlementStore in production)."""

    backend = "memory"

    def __init__(self) -> None:
        self._quotes: dict[str, Quote] = {}
        self._nonces: set[str] = set()
        self._payments: dict[str, Payment] = {}
        self._payments_by_quote: dict[str, str] = {}
        self._jobs: dict[str, Job] = {}
        self._idempotency: dict[str, IdempotencyEntry] = {}
        self._lock = asyncio.Lock()

    # Quotes

    async def create_quote(self, quote: Quote) -> Quote:
        async with self._lock:
            if quote.quote_id in self._quotes:
                raise StorageError(f"duplicate quote id: {quote.quote_id}")
            if quote.nonce in self._nonces:
                raise StorageError("duplicate quote nonce")
            self._quotes[quote.quote_id] = _snapshot(quote)
            self._nonces.add(quote.nonce)
            return _snapshot(quote)

    async def get_quote(self, quote_id: str) -> Optional[Quote]:
        quote = self._quotes.get(quote_id)
        return _snapshot(quote) if quote else None

    async def expire_quote(self, quote_id: str) -> bool:
        async with self._lock:
            quote = self._quotes.get(quote_id)
            if quote is None or quote.status != QuoteStatus.ACTIVE:
                return False
            quote.status = QuoteStatus.EXPIRED
            return True

    # Payments

    async def consume_quote_and_record_payment(self, payment: Payment, *, now: datetime) -> bool:
        async with self._lock:
            quote = self._quotes.get(payment.quote_id)
            if quote is None or not quote.is_usable(now):
                return False
            if payment.payment_id in self._payments:
                raise StorageError(f"duplicate payment id: {payment.payment_id}")
            quote.status = QuoteStatus.USED
            self._payments[payment.payment_id] = _snapshot(payment)
            self._payments_by_quote[payment.quote_id] = payment.payment_id
            return True

    async def get_payment(self, payment_id: str) -> Optional[Payment]:
        payment = self._payments.get(payment_id)
        return _snapshot(payment) if payment else None

    async def get_payment_for_quote(self, quote_id: str) -> Optional[Payment]:
        payment_id = self._payments_by_quote.get(quote_id)
        return await self.get_payment(payment_id) if payment_id else None

    # Jobs

    async def create_job(self, job: Job) -> Job:
        async with self._lock:
            if job.job_id in self._jobs:
                raise StorageError(f"duplicate job id: {job.job_id}")
            if job.payment_id not in self._payments:
                raise StorageError(f"unknown payment: {job.payment_id}")
            self._jobs[job.job_id] = _snapshot(job)
            return _snapshot(job)

    async def get_job(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return _snapshot(job) if job else None

    async def claim_job(self, job_id: str) -> Optional[Job]:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.QUEUED:
                return None
            job.status = JobStatus.PROCESSING
            return _snapshot(job)

    async def finish_job(
        self,
        job_id: str,
        *,
        status: JobStatus,
        completed_at: datetime,
        result: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> Optional[Job]:
        if not status.is_terminal:
            raise ValueError(f"not a terminal job status: {status}")
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PROCESSING:
                return None
            job.status = status
            job.result = copy.deepcopy(result)
            job.error = error
            job.completed_at = completed_at
            return _snapshot(job)

    # Idempotency

    async def get_idempotency_entry(self, key: str) -> Optional[IdempotencyEntry]:
        entry = self._idempotency.get(key)
        return replace(entry) if entry else None

    async def reserve_idempotency_key(self, key: str, *, now: datetime, expires_at: datetime) -> bool:
        async with self._lock:
            existing = self._idempotency.get(key)
            if existing is not None and existing.is_live(now):
                return False
            self._idempotency[key] = IdempotencyEntry(
                key=key,
                status=IdempotencyStatus.PENDING,
                expires_at=expires_at,
                created_at=now,
            )
            return True

    async def put_idempotency_entry(
        self, key: str, response_json: str, *, now: datetime, expires_at: datetime
    ) -> None:
        async with self._lock:
            self._idempotency[key] = IdempotencyEntry(
                key=key,
                status=IdempotencyStatus.COMPLETED,
                response_json=response_json,
                expires_at=expires_at,
                created_at=now,
            )

    async def release_idempotency_key(self, key: str) -> bool:
        async with self._lock:
            entry = self._idempotency.get(key)
            if entry is None or entry.status != IdempotencyStatus.PENDING:
                return False
            del self._idempotency[key]
            return True

    # Maintenance

    async def expire_stale_quotes(self, *, now: datetime) -> int:
        async with self._lock:
            count = 0
            for quote in self._quotes.values():
                if quote.status == QuoteStatus.ACTIVE and quote.is_expired(now):
                    quote.status = QuoteStatus.EXPIRED
                    count += 1
            return count

    async def purge_expired_idempotency(self, *, now: datetime) -> int:
        async with self._lock:
            expired = [k for k, entry in self._idempotency.items() if not entry.is_live(now)]
            for key in expired:
                del self._idempotency[key]
            return len(expired)

    async def close(self) -> None:
        return None
