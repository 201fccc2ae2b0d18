"""Meterpay core: quote, payment and job settlement pipeline."""

from .config import ArkConfig, MeterpaySettings, load_settings
from .exceptions import (
    EndpointMismatchError,
    IdempotencyInProgressError,
    InvalidRequestError,
    JobExecutionFailedError,
    MeterpayException,
    NotFoundError,
    PaymentInvalidError,
    QuoteError,
    QuoteExpiredError,
    QuoteNotActiveError,
    QuoteNotFoundError,
    StorageError,
)
from .executor import JobExecutor, JobOutcome
from .idempotency import IdempotencyGate
from .models import (
    IdempotencyEntry,
    IdempotencyStatus,
    Job,
    JobStatus,
    Payment,
    PaymentClaim,
    PaymentStatus,
    Quote,
    QuoteStatus,
)
from .orchestrator import SettlementOrchestrator, SettlementResult
from .pricing import PricingRule
from .quotes import IssuedQuote, QuoteIssuer
from .registry import Endpoint, EndpointRegistry, default_registry
from .settlement_network import ASPClient, ASPHealth
from .store import SettlementStore, create_store
from .store_memory import InMemorySettlementStore
from .verifier import ArkPaymentVerifier, PaymentVerifier, VerificationResult

__all__ = [
    # Config
    "ArkConfig",
    "MeterpaySettings",
    "load_settings",
    # Exceptions
    "MeterpayException",
    "InvalidRequestError",
    "NotFoundError",
    "QuoteError",
    "QuoteNotFoundError",
    "QuoteExpiredError",
    "QuoteNotActiveError",
    "EndpointMismatchError",
    "PaymentInvalidError",
    "JobExecutionFailedError",
    "StorageError",
    "IdempotencyInProgressError",
    # Models
    "Quote",
    "QuoteStatus",
    "PaymentClaim",
    "Payment",
    "PaymentStatus",
    "Job",
    "JobStatus",
    "IdempotencyEntry",
    "IdempotencyStatus",
    # Pipeline
    "PricingRule",
    "Endpoint",
    "EndpointRegistry",
    "default_registry",
    "ASPClient",
    "ASPHealth",
    "PaymentVerifier",
    "ArkPaymentVerifier",
    "VerificationResult",
    "QuoteIssuer",
    "IssuedQuote",
    "IdempotencyGate",
    "JobExecutor",
    "JobOutcome",
    "SettlementOrchestrator",
    "SettlementResult",
    # Storage
    "SettlementStore",
    "InMemorySettlementStore",
    "create_store",
]

__version__ = "0.1.0"
