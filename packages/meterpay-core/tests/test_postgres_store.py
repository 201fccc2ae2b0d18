"""Tests for the PostgreSQL store against a scripted asyncpg connection."""
from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest

from meterpay_core.exceptions import StorageError
from meterpay_core.models import IdempotencyStatus, JobStatus, Payment, PaymentStatus, QuoteStatus
from meterpay_core.store_postgres import SCHEMA_SQL, PostgresSettlementStore

NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class ScriptedConnection:
    """Records statements and answers with canned results."""

    def __init__(self) -> None:
        self.statements: list[tuple[str, tuple]] = []
        self.fetchval_result = None
        self.fetchrow_result = None
        self.execute_status = "UPDATE 0"
        self.execute_error: Exception | None = None
        self.transactions = 0

    async def execute(self, sql, *args):
        self.statements.append((sql, args))
        if self.execute_error is not None:
            raise self.execute_error
        return self.execute_status

    async def fetchval(self, sql, *args):
        self.statements.append((sql, args))
        return self.fetchval_result

    async def fetchrow(self, sql, *args):
        self.statements.append((sql, args))
        return self.fetchrow_result

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        yield

    def ran(self, fragment: str) -> list[tuple]:
        return [args for sql, args in self.statements if fragment in sql]


class ScriptedPool:
    def __init__(self, conn: ScriptedConnection) -> None:
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


@pytest.fixture
def conn():
    return ScriptedConnection()


@pytest.fixture
def pg_store(conn):
    return PostgresSettlementStore("postgresql://meterpay@localhost/meterpay", pool=ScriptedPool(conn))


def _payment() -> Payment:
    return Payment(
        payment_id="pay_1",
        quote_id="q_1",
        sender="ark1qsender",
        amount_sats=50,
        settlement_ref="ark:round:r_1/tx:abc",
        spend_blob="c3BlbmRibG9iMTIz",
        proof="cHJvb2ZkYXRhMTIz",
        status=PaymentStatus.VERIFIED,
        created_at=NOW,
    )


class TestRowMapping:
    def test_quote_from_row_decodes_json_units(self):
        row = {
            "quote_id": "q_1",
            "endpoint": "summarize",
            "units": '{"tokens": 1000}',
            "price_sats": 50,
            "expires_at": NOW + timedelta(seconds=30),
            "nonce": "n_1",
            "receiver": "ark1qreceiver",
            "network_locator": "https://asp.test.example",
            "status": "used",
            "created_at": NOW,
        }

        quote = PostgresSettlementStore._row_to_quote(row)

        assert quote.units == {"tokens": 1000}
        assert quote.status == QuoteStatus.USED
        assert quote.expires_at == NOW + timedelta(seconds=30)

    def test_job_from_row(self):
        row = {
            "job_id": "job_1",
            "payment_id": "pay_1",
            "endpoint": "compute",
            "args": {"operation": "square", "value": 3},
            "status": "completed",
            "result": '{"output": 9}',
            "error": None,
            "created_at": NOW,
            "completed_at": NOW,
        }

        job = PostgresSettlementStore._row_to_job(row)

        assert job.args == {"operation": "square", "value": 3}
        assert job.result == {"output": 9}
        assert job.status == JobStatus.COMPLETED

    def test_failed_job_from_row_keeps_null_result(self):
        row = {
            "job_id": "job_2",
            "payment_id": "pay_1",
            "endpoint": "summarize",
            "args": None,
            "status": "failed",
            "result": None,
            "error": "text is required",
            "created_at": NOW,
            "completed_at": NOW,
        }

        job = PostgresSettlementStore._row_to_job(row)

        assert job.args == {}
        assert job.result is None
        assert job.error == "text is required"

    def test_idempotency_entry_from_row(self):
        row = {
            "key": "order-1",
            "status": "pending",
            "response_json": None,
            "created_at": NOW,
            "expires_at": NOW + timedelta(seconds=30),
        }

        entry = PostgresSettlementStore._row_to_entry(row)

        assert entry.status == IdempotencyStatus.PENDING
        assert entry.response_json is None
        assert entry.is_live(NOW)


class TestConsumeQuote:
    async def test_lost_update_records_nothing(self, pg_store, conn):
        conn.fetchval_result = None

        assert await pg_store.consume_quote_and_record_payment(_payment(), now=NOW) is False

        assert conn.ran("UPDATE quotes SET status = 'used'") == [("q_1", NOW)]
        assert conn.ran("INSERT INTO payments") == []
        assert conn.transactions == 1

    async def test_winner_records_payment(self, pg_store, conn):
        conn.fetchval_result = "q_1"

        assert await pg_store.consume_quote_and_record_payment(_payment(), now=NOW) is True

        (args,) = conn.ran("INSERT INTO payments")
        assert args[:4] == ("pay_1", "q_1", "ark1qsender", 50)
        assert args[7] == "verified"


class TestIdempotencyKeys:
    async def test_reserve_taken_key(self, pg_store, conn):
        conn.fetchval_result = None
        expires = NOW + timedelta(seconds=30)

        assert await pg_store.reserve_idempotency_key("order-1", now=NOW, expires_at=expires) is False
        assert conn.ran("INSERT INTO idempotency_entries") == [("order-1", NOW, expires)]

    async def test_reserve_free_key(self, pg_store, conn):
        conn.fetchval_result = "order-1"
        assert await pg_store.reserve_idempotency_key("order-1", now=NOW, expires_at=NOW + timedelta(seconds=30))

    @pytest.mark.parametrize(("status", "released"), [("DELETE 1", True), ("DELETE 0", False)])
    async def test_release(self, pg_store, conn, status, released):
        conn.execute_status = status
        assert await pg_store.release_idempotency_key("order-1") is released


class TestSchema:
    async def test_schema_applied_once(self, pg_store, conn):
        await pg_store.init_schema()
        await pg_store.get_quote("q_1")

        assert [sql for sql, _ in conn.statements].count(SCHEMA_SQL) == 1

    async def test_schema_failure_is_a_storage_error(self, pg_store, conn):
        conn.execute_error = OSError("connection reset")

        with pytest.raises(StorageError, match="Schema setup failed"):
            await pg_store.init_schema()

    async def test_finish_job_serializes_result(self, pg_store, conn):
        await pg_store.finish_job("job_1", status=JobStatus.COMPLETED, completed_at=NOW, result={"output": 9})

        (args,) = conn.ran("UPDATE jobs SET status = $2")
        assert args[1] == "completed"
        assert json.loads(args[2]) == {"output": 9}
