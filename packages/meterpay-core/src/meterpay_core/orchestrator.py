"""Settlement orchestrator.

Drives one paid request through the pipeline:

    idempotency check -> quote validation -> endpoint match ->
    payment verification -> payment recording + quote consumption ->
    job execution -> response assembly -> idempotency write

Collaborators are injected so the orchestrator never knows which store,
verifier or handlers it is talking to.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from .exceptions import (
    EndpointMismatchError,
    IdempotencyInProgressError,
    JobExecutionFailedError,
    PaymentInvalidError,
    QuoteExpiredError,
    QuoteNotActiveError,
    QuoteNotFoundError,
)
from .executor import JobExecutor, JobOutcome
from .idempotency import IdempotencyGate
from .models import Payment, PaymentClaim, PaymentStatus, Quote, QuoteStatus, new_id, utc_now
from .store import SettlementStore
from .verifier import PaymentVerifier, VerificationResult

logger = logging.getLogger("meterpay.orchestrator")


def canonical_json(body: Mapping[str, Any]) -> str:
    return json.dumps(body, sort_keys=True, separators=(",", ":"), allow_nan=False, default=str)


@dataclass
class SettlementResult:
    http_status: int
    body: dict[str, Any]
    response_json: str = ""
    replayed: bool = False
    job_id: Optional[str] = None
    payment_id: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.response_json:
            self.response_json = canonical_json(self.body)

    @property
    def ok(self) -> bool:
        return self.http_status == 200

    @classmethod
    def replay(cls, response_json: str) -> "SettlementResult":
        # Only successful settlements are ever cached.
        return cls(http_status=200, body=json.loads(response_json), response_json=response_json, replayed=True)


@dataclass
class _Receipt:
    settlement_ref: str
    paid_amount: int
    job_id: str
    payment_id: str


class SettlementOrchestrator:
    def __init__(
        self,
        store: SettlementStore,
        verifier: PaymentVerifier,
        executor: JobExecutor,
        idempotency: IdempotencyGate,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._verifier = verifier
        self._executor = executor
        self._idempotency = idempotency
        self._clock = clock

    async def settle(
        self,
        quote_id: str,
        claim: PaymentClaim,
        request_endpoint: str,
        args: Optional[Mapping[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> SettlementResult:
        """Settle a payment claim against a quote and run the paid job.

        A completed entry for ``idempotency_key`` short-circuits everything
        else, including quote validation.

        Raises:
            IdempotencyInProgressError: another request holds the key.
            QuoteError: the quote is missing, expired or already used.
            EndpointMismatchError: the request targets another endpoint.
            PaymentInvalidError: the verifier rejected the claim.
            StorageError: the state store failed.
        """
        args = dict(args or {})
        if not idempotency_key:
            return await self._settle(quote_id, claim, request_endpoint, args)

        cached = await self._idempotency.lookup(idempotency_key)
        if cached is not None:
            logger.info("Idempotent replay", extra={"idempotency_key": idempotency_key})
            return SettlementResult.replay(cached)

        if not await self._idempotency.reserve(idempotency_key):
            cached = await self._idempotency.lookup(idempotency_key)
            if cached is not None:
                logger.info("Idempotent replay", extra={"idempotency_key": idempotency_key})
                return SettlementResult.replay(cached)
            raise IdempotencyInProgressError(idempotency_key)

        try:
            result = await self._settle(quote_id, claim, request_endpoint, args)
        except BaseException:
            await self._idempotency.release(idempotency_key)
            raise

        if result.ok:
            await self._idempotency.store(idempotency_key, result.response_json)
        else:
            await self._idempotency.release(idempotency_key)
        return result

    async def _settle(
        self,
        quote_id: str,
        claim: PaymentClaim,
        request_endpoint: str,
        args: dict[str, Any],
    ) -> SettlementResult:
        quote = await self._load_usable_quote(quote_id)

        if request_endpoint != quote.endpoint:
            raise EndpointMismatchError(quote.endpoint, request_endpoint)

        verification = await self._verify(quote, claim)
        # Verifiers that do not report an amount settled the quoted price.
        paid_amount = verification.actual_amount
        if paid_amount is None:
            paid_amount = quote.price_sats

        payment = Payment(
            payment_id=new_id("pay"),
            quote_id=quote.quote_id,
            sender=claim.sender,
            amount_sats=paid_amount,
            settlement_ref=verification.settlement_ref or "",
            spend_blob=claim.spend_blob,
            proof=claim.proof,
            status=PaymentStatus.VERIFIED,
            created_at=self._clock(),
        )
        recorded = await self._store.consume_quote_and_record_payment(payment, now=self._clock())
        if not recorded:
            raise QuoteNotActiveError(quote.quote_id, "Quote was used by another request or has expired")

        logger.info(
            "Payment verified",
            extra={
                "payment_id": payment.payment_id,
                "quote_id": quote.quote_id,
                "amount_sats": payment.amount_sats,
                "settlement_ref": payment.settlement_ref,
            },
        )

        job = await self._executor.create_job(payment.payment_id, quote.endpoint, args)
        outcome = await self._executor.execute(job.job_id)
        receipt = _Receipt(
            settlement_ref=payment.settlement_ref,
            paid_amount=payment.amount_sats,
            job_id=job.job_id,
            payment_id=payment.payment_id,
        )
        return self._assemble(outcome, receipt)

    async def _load_usable_quote(self, quote_id: str) -> Quote:
        quote = await self._store.get_quote(quote_id)
        if quote is None:
            raise QuoteNotFoundError(quote_id)
        if quote.is_expired(self._clock()):
            if quote.status == QuoteStatus.ACTIVE:
                await self._store.expire_quote(quote_id)
            raise QuoteExpiredError(quote_id)
        if quote.status != QuoteStatus.ACTIVE:
            raise QuoteNotActiveError(quote_id)
        return quote

    async def _verify(self, quote: Quote, claim: PaymentClaim) -> VerificationResult:
        try:
            verification = await self._verifier.verify(
                quote.price_sats,
                quote.receiver,
                quote.network_locator,
                claim,
            )
        except Exception as e:
            logger.warning("Verifier raised for quote %s: %s", quote.quote_id, e)
            raise PaymentInvalidError(f"verification_error: {e}") from e

        if not verification.accepted:
            raise PaymentInvalidError(verification.rejection_reason or "payment_rejected")
        return verification

    @staticmethod
    def _assemble(outcome: JobOutcome, receipt: _Receipt) -> SettlementResult:
        if outcome.succeeded:
            body = {
                "status": "ok",
                "result": outcome.result,
                "receipt": {
                    "settlement_ref": receipt.settlement_ref,
                    "paid_amount": receipt.paid_amount,
                    "job_id": receipt.job_id,
                    "payment_id": receipt.payment_id,
                },
            }
            return SettlementResult(200, body, job_id=receipt.job_id, payment_id=receipt.payment_id)

        error = JobExecutionFailedError(
            f"Job execution failed: {outcome.error}",
            details={
                "job_id": receipt.job_id,
                "payment_id": receipt.payment_id,
                "settlement_ref": receipt.settlement_ref,
            },
        )
        return SettlementResult(
            error.http_status,
            error.to_dict(),
            job_id=receipt.job_id,
            payment_id=receipt.payment_id,
        )
