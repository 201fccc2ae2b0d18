"""Tests for the job executor."""
from __future__ import annotations

import asyncio
import time
from datetime import timedelta

import pytest

from meterpay_core.executor import JobExecutor
from meterpay_core.models import JobStatus, Payment, Quote, new_id, new_nonce
from meterpay_core.pricing import FALLBACK_PRICING
from meterpay_core.registry import Endpoint, EndpointRegistry


async def _paid(store, clock, endpoint="summarize") -> Payment:
    quote = await store.create_quote(
        Quote(
            quote_id=new_id("q"),
            endpoint=endpoint,
            units={},
            price_sats=10,
            expires_at=clock.now + timedelta(seconds=30),
            nonce=new_nonce(),
            receiver="ark1qreceiver",
            network_locator="https://asp.test.example",
        )
    )
    payment = Payment(
        payment_id=new_id("pay"),
        quote_id=quote.quote_id,
        sender="",
        amount_sats=10,
        settlement_ref="ref",
        spend_blob="c3BlbmRibG9iMTIz",
        proof="cHJvb2ZkYXRhMTIz",
    )
    assert await store.consume_quote_and_record_payment(payment, now=clock.now)
    return payment


class TestExecute:
    async def test_successful_job(self, store, executor, clock):
        payment = await _paid(store, clock, "compute")
        job = await executor.create_job(payment.payment_id, "compute", {"operation": "square", "value": 10})
        assert job.status == JobStatus.QUEUED
        assert job.job_id.startswith("job_")

        outcome = await executor.execute(job.job_id)
        assert outcome.succeeded
        assert outcome.result["output"] == 100

        stored = await executor.get_job(job.job_id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.completed_at == clock.now
        assert stored.error is None

    async def test_handler_error_is_recorded(self, store, executor, clock):
        payment = await _paid(store, clock)
        job = await executor.create_job(payment.payment_id, "summarize", {})

        outcome = await executor.execute(job.job_id)
        assert outcome.status == JobStatus.FAILED
        assert outcome.error == "text is required"
        assert (await executor.get_job(job.job_id)).result is None

    async def test_missing_handler_fails_job(self, store, executor, clock):
        payment = await _paid(store, clock, "transcribe")
        job = await executor.create_job(payment.payment_id, "transcribe", {})

        outcome = await executor.execute(job.job_id)
        assert outcome.status == JobStatus.FAILED
        assert "no handler registered" in outcome.error

    async def test_completed_job_is_not_rerun(self, store, clock):
        calls = []

        def counting(args):
            calls.append(args)
            return {"n": len(calls)}

        registry = EndpointRegistry([Endpoint("count", FALLBACK_PRICING, counting)])
        executor = JobExecutor(store, registry, clock=clock)
        payment = await _paid(store, clock, "count")
        job = await executor.create_job(payment.payment_id, "count", {})

        first = await executor.execute(job.job_id)
        second = await executor.execute(job.job_id)

        assert len(calls) == 1
        assert second.result == first.result == {"n": 1}

    async def test_async_handler_timeout(self, store, clock):
        async def slow(args):
            await asyncio.sleep(5)
            return {}

        registry = EndpointRegistry([Endpoint("slow", FALLBACK_PRICING, slow)])
        executor = JobExecutor(store, registry, timeout_seconds=0.05, clock=clock)
        payment = await _paid(store, clock, "slow")
        job = await executor.create_job(payment.payment_id, "slow", {})

        outcome = await executor.execute(job.job_id)
        assert outcome.status == JobStatus.FAILED
        assert "timed out" in outcome.error

    async def test_sync_handler_timeout(self, store, clock):
        def blocking(args):
            time.sleep(0.5)
            return {}

        registry = EndpointRegistry([Endpoint("blocking", FALLBACK_PRICING, blocking)])
        executor = JobExecutor(store, registry, timeout_seconds=0.05, clock=clock)
        payment = await _paid(store, clock, "blocking")
        job = await executor.create_job(payment.payment_id, "blocking", {})

        started = time.monotonic()
        outcome = await executor.execute(job.job_id)

        assert time.monotonic() - started < 0.4
        assert outcome.status == JobStatus.FAILED
        assert outcome.error == "job timed out after 0.05s"

    async def test_sync_handler_does_not_block_the_loop(self, store, clock):
        def blocking(args):
            time.sleep(0.2)
            return {"done": True}

        registry = EndpointRegistry([Endpoint("blocking", FALLBACK_PRICING, blocking)])
        executor = JobExecutor(store, registry, clock=clock)
        payment = await _paid(store, clock, "blocking")
        job = await executor.create_job(payment.payment_id, "blocking", {})

        ticks = 0

        async def ticker():
            nonlocal ticks
            while True:
                ticks += 1
                await asyncio.sleep(0.01)

        ticking = asyncio.create_task(ticker())
        try:
            outcome = await executor.execute(job.job_id)
        finally:
            ticking.cancel()

        assert outcome.succeeded
        assert ticks > 3

    @pytest.mark.parametrize("value", [1e200, float("inf"), float("nan")])
    async def test_non_finite_compute_fails_job(self, store, executor, clock, value):
        payment = await _paid(store, clock, "compute")
        job = await executor.create_job(payment.payment_id, "compute", {"operation": "square", "value": value})

        outcome = await executor.execute(job.job_id)

        assert outcome.status == JobStatus.FAILED
        assert outcome.result is None
        assert (await executor.get_job(job.job_id)).status == JobStatus.FAILED

    async def test_non_json_result_fails(self, store, clock):
        registry = EndpointRegistry([Endpoint("nan", FALLBACK_PRICING, lambda args: {"score": float("nan")})])
        executor = JobExecutor(store, registry, clock=clock)
        payment = await _paid(store, clock, "nan")
        job = await executor.create_job(payment.payment_id, "nan", {})

        outcome = await executor.execute(job.job_id)
        assert outcome.status == JobStatus.FAILED
        assert outcome.error.startswith("handler result is not valid JSON")

    async def test_non_mapping_result_fails(self, store, clock):
        registry = EndpointRegistry([Endpoint("bad", FALLBACK_PRICING, lambda args: ["not", "a", "dict"])])
        executor = JobExecutor(store, registry, clock=clock)
        payment = await _paid(store, clock, "bad")
        job = await executor.create_job(payment.payment_id, "bad", {})

        outcome = await executor.execute(job.job_id)
        assert outcome.status == JobStatus.FAILED

    async def test_unknown_job(self, executor):
        from meterpay_core.exceptions import StorageError

        with pytest.raises(StorageError):
            await executor.execute("job_missing")
