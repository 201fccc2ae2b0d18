"""Pytest configuration and fixtures for Meterpay API tests."""
from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

# Ensure local packages are importable when running pytest directly.
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
packages_dir = Path(__file__).parent.parent.parent
for pkg in ["meterpay-core"]:
    pkg_path = packages_dir / pkg / "src"
    if pkg_path.exists():
        sys.path.insert(0, str(pkg_path))

# Set test environment before importing app
os.environ["METERPAY_ENVIRONMENT"] = "dev"
os.environ["METERPAY_DATABASE_URL"] = "memory://"
os.environ["METERPAY_ENABLE_SWEEPER"] = "false"

from meterpay_api.main import create_app
from meterpay_core.config import ArkConfig, MeterpaySettings
from meterpay_core.store_memory import InMemorySettlementStore

VALID_CLAIM = {
    "spend_blob": "c3BlbmRibG9iMTIz",
    "proof": "cHJvb2ZkYXRhMTIz",
    "sender": "ark1qsender",
}


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return MeterpaySettings(
        _env_file=None,
        environment="dev",
        payments_mode="free",
        database_url="memory://",
        enable_sweeper=False,
        ark=ArkConfig(asp_url="https://asp.test.example", receiver_pubkey="ark1qreceiver"),
    )


@pytest.fixture
def store():
    return InMemorySettlementStore()


@pytest.fixture
def app(settings, store, clock):
    """Create a test application instance."""
    return create_app(settings, store=store, clock=clock)


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def paycall_body():
    """Build a paycall request body for a quote."""

    def _build(quote_id: str, endpoint: str, args: dict | None = None, claim: dict | None = None) -> dict:
        return {
            "quote_id": quote_id,
            "payment_claim": dict(VALID_CLAIM if claim is None else claim),
            "request": {"endpoint": endpoint, "args": args or {}},
        }

    return _build
