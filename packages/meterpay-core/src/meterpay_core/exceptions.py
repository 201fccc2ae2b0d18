"""Unified exception hierarchy for Meterpay.

All Meterpay-specific exceptions inherit from MeterpayException, enabling:
- Consistent error handling across the core and API packages
- HTTP status code mapping in the API layer
- Machine-parseable error responses with short error codes

Usage:
    from meterpay_core.exceptions import MeterpayException, QuoteExpiredError

    try:
        result = await orchestrator.settle(...)
    except MeterpayException as e:
        return JSONResponse(status_code=e.http_status, content=e.to_dict())

All exceptions have:
- error_code: Machine-readable error code (e.g., "payment_invalid")
- http_status: Appropriate HTTP status code for API responses
- message: Human-readable error message
- details: Optional additional context
- to_dict(): Convert to API response format
"""
from __future__ import annotations

from typing import Any, Optional


class MeterpayException(Exception):
    """Base exception for all Meterpay errors."""

    error_code: str = "internal_error"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Request errors
# =============================================================================

class InvalidRequestError(MeterpayException):
    """Malformed input."""

    error_code = "invalid_request"
    http_status = 400

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message, details={"field": field} if field else None)


class NotFoundError(MeterpayException):
    """Requested resource not found."""

    error_code = "not_found"
    http_status = 404

    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__(
            f"{resource_type} '{resource_id}' not found",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


# =============================================================================
# Quote errors (collapsed to a single code at the HTTP boundary)
# =============================================================================

class QuoteError(MeterpayException):
    """Base class for quote lookup/state failures."""

    error_code = "expired_or_missing_quote"
    http_status = 409
    reason = "unusable"

    def __init__(self, quote_id: str, message: Optional[str] = None) -> None:
        self.quote_id = quote_id
        super().__init__(
            message or "Quote has expired, been used, or does not exist",
            details={"quote_id": quote_id, "reason": self.reason},
        )


class QuoteNotFoundError(QuoteError):
    reason = "not_found"


class QuoteExpiredError(QuoteError):
    reason = "expired"


class QuoteNotActiveError(QuoteError):
    reason = "not_active"


# =============================================================================
# Settlement errors
# =============================================================================

class EndpointMismatchError(MeterpayException):
    """The request endpoint differs from the endpoint the quote was priced for."""

    error_code = "endpoint_mismatch"
    http_status = 400

    def __init__(self, quoted: str, requested: str) -> None:
        super().__init__(
            "Request endpoint does not match quote",
            details={"quoted_endpoint": quoted, "requested_endpoint": requested},
        )


class PaymentInvalidError(MeterpayException):
    """The payment verifier rejected the claim."""

    error_code = "payment_invalid"
    http_status = 402

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__("Payment claim was rejected", details=reason)


class JobExecutionFailedError(MeterpayException):
    """The unit of work failed after payment was recorded."""

    error_code = "job_execution_failed"
    http_status = 500


class StorageError(MeterpayException):
    """State store failure. Fatal for the request, never retried silently."""

    error_code = "storage_error"
    http_status = 500


class IdempotencyInProgressError(MeterpayException):
    """Another request holding the same idempotency key is still running."""

    error_code = "idempotency_in_progress"
    http_status = 409

    def __init__(self, key: str) -> None:
        super().__init__(
            "A request with this idempotency key is already in progress",
        )
        self.key = key
