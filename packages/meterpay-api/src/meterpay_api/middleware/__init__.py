"""Middleware for the Meterpay API."""
from .exceptions import create_error_response, get_request_id, register_exception_handlers
from .logging import (
    SENSITIVE_HEADERS,
    CorrelationIdFilter,
    JSONFormatter,
    StructuredLoggingMiddleware,
    get_correlation_id,
    request_id_var,
    setup_logging,
)

API_VERSION = "0.1.0"

__all__ = [
    "API_VERSION",
    # Logging
    "StructuredLoggingMiddleware",
    "JSONFormatter",
    "CorrelationIdFilter",
    "setup_logging",
    "get_correlation_id",
    "request_id_var",
    "SENSITIVE_HEADERS",
    # Exceptions
    "register_exception_handlers",
    "create_error_response",
    "get_request_id",
]
