"""PostgreSQL-backed settlement store (asyncpg).

Quote consumption and payment recording share one transaction guarded by a
conditional ``UPDATE ... WHERE status = 'active'``, so at most one payment can
ever be recorded per quote no matter how many workers race for it.
"""
from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional

import asyncpg

from .exceptions import StorageError
from .models import (
    IdempotencyEntry,
    IdempotencyStatus,
    Job,
    JobStatus,
    Payment,
    PaymentStatus,
    Quote,
    QuoteStatus,
)
from .store import SettlementStore

logger = logging.getLogger("meterpay.store")


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS quotes (
    quote_id VARCHAR(64) PRIMARY KEY,
    endpoint VARCHAR(128) NOT NULL,
    units JSONB NOT NULL DEFAULT '{}'::jsonb,
    price_sats BIGINT NOT NULL,
    expires_at TIMESTAMPTZ NOT NULL,
    nonce VARCHAR(64) UNIQUE NOT NULL,
    receiver TEXT NOT NULL,
    network_locator TEXT NOT NULL,
    status VARCHAR(16) NOT NULL DEFAULT 'active',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_quotes_expires ON quotes(expires_at);
CREATE INDEX IF NOT EXISTS idx_quotes_status ON quotes(status);

CREATE TABLE IF NOT EXISTS payments (
    payment_id VARCHAR(64) PRIMARY KEY,
    quote_id VARCHAR(64) NOT NULL REFERENCES quotes(quote_id),
    sender TEXT NOT NULL,
    amount_sats BIGINT NOT NULL,
    settlement_ref TEXT NOT NULL,
    spend_blob TEXT NOT NULL,
    proof TEXT NOT NULL,
    status VARCHAR(16) NOT NULL DEFAULT 'pending',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_payments_quote ON payments(quote_id);
CREATE INDEX IF NOT EXISTS idx_payments_status ON payments(status);

CREATE TABLE IF NOT EXISTS jobs (
    job_id VARCHAR(64) PRIMARY KEY,
    payment_id VARCHAR(64) NOT NULL REFERENCES payments(payment_id),
    endpoint VARCHAR(128) NOT NULL,
    args JSONB NOT NULL DEFAULT '{}'::jsonb,
    status VARCHAR(16) NOT NULL DEFAULT 'queued',
    result JSONB,
    error TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    completed_at TIMESTAMPTZ
);

CREATE INDEX IF NOT EXISTS idx_jobs_payment ON jobs(payment_id);
CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);

CREATE TABLE IF NOT EXISTS idempotency_entries (
    key TEXT PRIMARY KEY,
    status VARCHAR(16) NOT NULL,
    response_json TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    expires_at TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_idempotency_expires ON idempotency_entries(expires_at);
"""


def _json_field(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


def _affected_rows(status: str) -> int:
    # asyncpg returns command tags such as "UPDATE 3" or "DELETE 0".
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0


class PostgresSettlementStore(SettlementStore):
    backend = "postgresql"

    def __init__(self, dsn: str, pool: Optional[asyncpg.Pool] = None):
        if dsn.startswith("postgres://"):
            dsn = dsn.replace("postgres://", "postgresql://", 1)
        self._dsn = dsn
        self._pool = pool
        self._schema_ready = False

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(self._dsn, min_size=1, max_size=10, command_timeout=30)
            except (OSError, asyncpg.PostgresError) as e:
                raise StorageError(f"Database unavailable: {e}") from e
        if not self._schema_ready:
            try:
                async with self._pool.acquire() as conn:
                    await conn.execute(SCHEMA_SQL)
            except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
                raise StorageError(f"Schema setup failed: {e}") from e
            self._schema_ready = True
            logger.info("Settlement schema ensured")
        return self._pool

    async def init_schema(self) -> None:
        await self._get_pool()

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                yield conn
        except asyncpg.UniqueViolationError as e:
            raise StorageError(f"Duplicate record: {e.constraint_name}") from e
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise StorageError(f"Database error: {e}") from e

    # Row mapping

    @staticmethod
    def _row_to_quote(row) -> Quote:
        return Quote(
            quote_id=row["quote_id"],
            endpoint=row["endpoint"],
            units=_json_field(row["units"]) or {},
            price_sats=int(row["price_sats"]),
            expires_at=row["expires_at"],
            nonce=row["nonce"],
            receiver=row["receiver"],
            network_locator=row["network_locator"],
            status=QuoteStatus(row["status"]),
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_payment(row) -> Payment:
        return Payment(
            payment_id=row["payment_id"],
            quote_id=row["quote_id"],
            sender=row["sender"],
            amount_sats=int(row["amount_sats"]),
            settlement_ref=row["settlement_ref"],
            spend_blob=row["spend_blob"],
            proof=row["proof"],
            status=PaymentStatus(row["status"]),
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_job(row) -> Job:
        return Job(
            job_id=row["job_id"],
            payment_id=row["payment_id"],
            endpoint=row["endpoint"],
            args=_json_field(row["args"]) or {},
            status=JobStatus(row["status"]),
            result=_json_field(row["result"]),
            error=row["error"],
            created_at=row["created_at"],
            completed_at=row["completed_at"],
        )

    @staticmethod
    def _row_to_entry(row) -> IdempotencyEntry:
        return IdempotencyEntry(
            key=row["key"],
            status=IdempotencyStatus(row["status"]),
            response_json=row["response_json"],
            created_at=row["created_at"],
            expires_at=row["expires_at"],
        )

    # Quotes

    async def create_quote(self, quote: Quote) -> Quote:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO quotes (
                    quote_id, endpoint, units, price_sats, expires_at, nonce,
                    receiver, network_locator, status, created_at
                ) VALUES ($1, $2, $3::jsonb, $4, $5, $6, $7, $8, $9, $10)
                RETURNING *
                """,
                quote.quote_id,
                quote.endpoint,
                json.dumps(quote.units),
                quote.price_sats,
                quote.expires_at,
                quote.nonce,
                quote.receiver,
                quote.network_locator,
                quote.status.value,
                quote.created_at,
            )
            return self._row_to_quote(row)

    async def get_quote(self, quote_id: str) -> Optional[Quote]:
        async with self._connection() as conn:
            row = await conn.fetchrow("SELECT * FROM quotes WHERE quote_id = $1", quote_id)
            return self._row_to_quote(row) if row else None

    async def expire_quote(self, quote_id: str) -> bool:
        async with self._connection() as conn:
            result = await conn.execute(
                "UPDATE quotes SET status = 'expired' WHERE quote_id = $1 AND status = 'active'",
                quote_id,
            )
            return _affected_rows(result) == 1

    # Payments

    async def consume_quote_and_record_payment(self, payment: Payment, *, now: datetime) -> bool:
        async with self._connection() as conn:
            async with conn.transaction():
                consumed = await conn.fetchval(
                    """
                    UPDATE quotes SET status = 'used'
                    WHERE quote_id = $1 AND status = 'active' AND expires_at > $2
                    RETURNING quote_id
                    """,
                    payment.quote_id,
                    now,
                )
                if consumed is None:
                    return False
                await conn.execute(
                    """
                    INSERT INTO payments (
                        payment_id, quote_id, sender, amount_sats, settlement_ref,
                        spend_blob, proof, status, created_at
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                    """,
                    payment.payment_id,
                    payment.quote_id,
                    payment.sender,
                    payment.amount_sats,
                    payment.settlement_ref,
                    payment.spend_blob,
                    payment.proof,
                    payment.status.value,
                    payment.created_at,
                )
                return True

    async def get_payment(self, payment_id: str) -> Optional[Payment]:
        async with self._connection() as conn:
            row = await conn.fetchrow("SELECT * FROM payments WHERE payment_id = $1", payment_id)
            return self._row_to_payment(row) if row else None

    async def get_payment_for_quote(self, quote_id: str) -> Optional[Payment]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM payments WHERE quote_id = $1 ORDER BY created_at LIMIT 1",
                quote_id,
            )
            return self._row_to_payment(row) if row else None

    # Jobs

    async def create_job(self, job: Job) -> Job:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO jobs (job_id, payment_id, endpoint, args, status, created_at)
                VALUES ($1, $2, $3, $4::jsonb, $5, $6)
                RETURNING *
                """,
                job.job_id,
                job.payment_id,
                job.endpoint,
                json.dumps(job.args),
                job.status.value,
                job.created_at,
            )
            return self._row_to_job(row)

    async def get_job(self, job_id: str) -> Optional[Job]:
        async with self._connection() as conn:
            row = await conn.fetchrow("SELECT * FROM jobs WHERE job_id = $1", job_id)
            return self._row_to_job(row) if row else None

    async def claim_job(self, job_id: str) -> Optional[Job]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "UPDATE jobs SET status = 'processing' WHERE job_id = $1 AND status = 'queued' RETURNING *",
                job_id,
            )
            return self._row_to_job(row) if row else None

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
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                UPDATE jobs SET status = $2, result = $3::jsonb, error = $4, completed_at = $5
                WHERE job_id = $1 AND status = 'processing'
                RETURNING *
                """,
                job_id,
                status.value,
                json.dumps(result) if result is not None else None,
                error,
                completed_at,
            )
            return self._row_to_job(row) if row else None

    # Idempotency

    async def get_idempotency_entry(self, key: str) -> Optional[IdempotencyEntry]:
        async with self._connection() as conn:
            row = await conn.fetchrow("SELECT * FROM idempotency_entries WHERE key = $1", key)
            return self._row_to_entry(row) if row else None

    async def reserve_idempotency_key(self, key: str, *, now: datetime, expires_at: datetime) -> bool:
        async with self._connection() as conn:
            reserved = await conn.fetchval(
                """
                INSERT INTO idempotency_entries (key, status, response_json, created_at, expires_at)
                VALUES ($1, 'pending', NULL, $2, $3)
                ON CONFLICT (key) DO UPDATE
                    SET status = 'pending', response_json = NULL,
                        created_at = EXCLUDED.created_at, expires_at = EXCLUDED.expires_at
                    WHERE idempotency_entries.expires_at <= $2
                RETURNING key
                """,
                key,
                now,
                expires_at,
            )
            return reserved is not None

    async def put_idempotency_entry(
        self, key: str, response_json: str, *, now: datetime, expires_at: datetime
    ) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                INSERT INTO idempotency_entries (key, status, response_json, created_at, expires_at)
                VALUES ($1, 'completed', $2, $3, $4)
                ON CONFLICT (key) DO UPDATE
                    SET status = 'completed', response_json = EXCLUDED.response_json,
                        created_at = EXCLUDED.created_at, expires_at = EXCLUDED.expires_at
                """,
                key,
                response_json,
                now,
                expires_at,
            )

    async def release_idempotency_key(self, key: str) -> bool:
        async with self._connection() as conn:
            result = await conn.execute(
                "DELETE FROM idempotency_entries WHERE key = $1 AND status = 'pending'",
                key,
            )
            return _affected_rows(result) == 1

    # Maintenance

    async def expire_stale_quotes(self, *, now: datetime) -> int:
        async with self._connection() as conn:
            result = await conn.execute(
                "UPDATE quotes SET status = 'expired' WHERE status = 'active' AND expires_at <= $1",
                now,
            )
            return _affected_rows(result)

    async def purge_expired_idempotency(self, *, now: datetime) -> int:
        async with self._connection() as conn:
            result = await conn.execute(
                "DELETE FROM idempotency_entries WHERE expires_at <= $1",
                now,
            )
            return _affected_rows(result)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            self._schema_ready = False
