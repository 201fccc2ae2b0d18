"""Settlement pipeline records: quotes, payments, jobs, idempotency entries."""
from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Unpredictable identifier such as ``q_3f9a0c1b2d4e5f60``."""
    return f"{prefix}_{secrets.token_hex(8)}"


def new_nonce() -> str:
    return secrets.token_urlsafe(24)


class QuoteStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    USED = "used"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class IdempotencyStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


@dataclass
class Quote:
    """A priced, time-bound, single-use authorization for one unit of work."""
    quote_id: str
    endpoint: str
    units: dict[str, float]
    price_sats: int
    expires_at: datetime
    nonce: str
    receiver: str
    network_locator: str
    status: QuoteStatus = QuoteStatus.ACTIVE
    created_at: datetime = field(default_factory=utc_now)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) >= self.expires_at

    def is_usable(self, now: Optional[datetime] = None) -> bool:
        return self.status == QuoteStatus.ACTIVE and not self.is_expired(now)


@dataclass(frozen=True)
class PaymentClaim:
    """Caller-supplied evidence of payment against a quote."""
    spend_blob: str
    proof: str
    sender: str = ""


@dataclass
class Payment:
    """A verified claim recorded against exactly one quote."""
    payment_id: str
    quote_id: str
    sender: str
    amount_sats: int
    settlement_ref: str
    spend_blob: str
    proof: str
    status: PaymentStatus = PaymentStatus.VERIFIED
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class Job:
    """One execution of metered work paid for by a payment."""
    job_id: str
    payment_id: str
    endpoint: str
    args: dict[str, Any]
    status: JobStatus = JobStatus.QUEUED
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None


@dataclass
class IdempotencyEntry:
    key: str
    status: IdempotencyStatus
    expires_at: datetime
    response_json: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    def is_live(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) < self.expires_at
