"""
Pytest configuration for meterpay-core tests.
"""
from __future__ import annotations

import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add package source to path
package_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(package_src))

# Set test environment
os.environ.setdefault("METERPAY_ENVIRONMENT", "dev")
os.environ.setdefault("METERPAY_DATABASE_URL", "memory://")

from meterpay_core.config import ArkConfig
from meterpay_core.executor import JobExecutor
from meterpay_core.idempotency import IdempotencyGate
from meterpay_core.models import PaymentClaim
from meterpay_core.orchestrator import SettlementOrchestrator
from meterpay_core.quotes import QuoteIssuer
from meterpay_core.registry import default_registry
from meterpay_core.settlement_network import ASPClient
from meterpay_core.store_memory import InMemorySettlementStore
from meterpay_core.verifier import PaymentVerifier, VerificationResult


class FakeClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class RecordingVerifier(PaymentVerifier):
    """Accepts (or rejects) every claim and remembers what it was asked."""

    def __init__(self, accept: bool = True, reason: str = "invalid_payment_format", yield_first: bool = False):
        self.accept = accept
        self.reason = reason
        self.yield_first = yield_first
        self.calls: list[dict] = []

    async def verify(self, expected_amount, receiver, network_locator, claim):
        if self.yield_first:
            # Let concurrent settlements interleave like a network round-trip.
            await asyncio.sleep(0)
        self.calls.append(
            {
                "expected_amount": expected_amount,
                "receiver": receiver,
                "network_locator": network_locator,
                "claim": claim,
            }
        )
        if not self.accept:
            return VerificationResult.reject(self.reason)
        return VerificationResult(
            accepted=True,
            settlement_ref=f"ark:round:r_test/tx:{len(self.calls):016x}",
            actual_amount=expected_amount,
            round_id="r_test",
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemorySettlementStore()


@pytest.fixture
def registry():
    return default_registry()


@pytest.fixture
def asp_client(clock):
    return ASPClient(
        ArkConfig(asp_url="https://asp.test.example", receiver_pubkey="ark1qreceiver"),
        clock=clock,
    )


@pytest.fixture
def verifier():
    return RecordingVerifier()


@pytest.fixture
def issuer(store, registry, asp_client, clock):
    return QuoteIssuer(store, registry, asp_client, ttl_seconds=30, clock=clock)


@pytest.fixture
def gate(store, clock):
    return IdempotencyGate(store, ttl_seconds=120, lock_ttl_seconds=30, clock=clock)


@pytest.fixture
def executor(store, registry, clock):
    return JobExecutor(store, registry, timeout_seconds=1.0, clock=clock)


@pytest.fixture
def orchestrator(store, verifier, executor, gate, clock):
    return SettlementOrchestrator(store, verifier, executor, gate, clock=clock)


@pytest.fixture
def claim():
    return PaymentClaim(spend_blob="c3BlbmRibG9iMTIz", proof="cHJvb2ZkYXRhMTIz", sender="ark1qsender")


@pytest.fixture
def make_verifier():
    """Factory for verifiers with a chosen verdict."""
    return RecordingVerifier
