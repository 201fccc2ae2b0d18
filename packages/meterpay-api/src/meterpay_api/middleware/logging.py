"""Structured logging middleware with correlation IDs for request tracing.

Provides:
- Request/response correlation IDs (``X-Request-ID``)
- Request timing
- Structured JSON logging outside dev
- Masking of credential and idempotency headers
"""
from __future__ import annotations

import json
import logging
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

# Context variable for request correlation ID
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

logger = logging.getLogger("meterpay.api")

# Headers that should never be logged verbatim
SENSITIVE_HEADERS = frozenset({
    "authorization",
    "x-api-key",
    "cookie",
    "set-cookie",
    "idempotency-key",
    "x-idempotency-key",
})

# LogRecord attributes that are not caller-supplied ``extra`` fields
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "correlation_id",
}

DEFAULT_EXCLUDE_PATHS = ("/health", "/")


class CorrelationIdFilter(logging.Filter):
    """Logging filter that adds the correlation ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = request_id_var.get() or "-"
        return True


def mask_sensitive_value(value: str) -> str:
    """Mask a sensitive value, showing only first/last characters."""
    if len(value) <= 8:
        return "***"
    return f"{value[:4]}...{value[-4:]}"


def filter_headers(headers: Dict[str, str]) -> Dict[str, str]:
    return {
        k: (mask_sensitive_value(v) if k.lower() in SENSITIVE_HEADERS else v)
        for k, v in headers.items()
    }


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for structured request logging.

    Accepts an inbound ``X-Request-ID`` for distributed tracing or mints one,
    logs start/completion with timing and echoes the ID on the response.
    """

    def __init__(
        self,
        app,
        exclude_paths: tuple[str, ...] | list[str] | None = None,
        slow_request_threshold_ms: float = 1000.0,
    ):
        super().__init__(app)
        self.exclude_paths = set(exclude_paths if exclude_paths is not None else DEFAULT_EXCLUDE_PATHS)
        self.slow_request_threshold_ms = slow_request_threshold_ms

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get("X-Request-ID") or f"req_{uuid.uuid4().hex[:16]}"
        request_id_var.set(correlation_id)
        request.state.request_id = correlation_id

        if request.url.path in self.exclude_paths:
            response = await call_next(request)
            response.headers["X-Request-ID"] = correlation_id
            return response

        method = request.method
        path = request.url.path
        logger.info(
            "Request started",
            extra={
                "event": "request_start",
                "method": method,
                "path": path,
                "headers": filter_headers(dict(request.headers)),
            },
        )

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                "Request failed",
                extra={
                    "event": "request_error",
                    "method": method,
                    "path": path,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "duration_ms": round(duration_ms, 2),
                },
                exc_info=True,
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        context = {
            "event": "request_complete",
            "method": method,
            "path": path,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 2),
        }
        if response.status_code >= 500:
            logger.error("Request completed with server error", extra=context)
        elif response.status_code >= 400:
            logger.warning("Request completed with client error", extra=context)
        elif duration_ms > self.slow_request_threshold_ms:
            context["slow_request"] = True
            logger.warning("Slow request completed", extra=context)
        else:
            logger.info("Request completed", extra=context)

        response.headers["X-Request-ID"] = correlation_id
        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
        return response


class JSONFormatter(logging.Formatter):
    """JSON log formatter; every ``extra=`` field becomes a top-level key."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", "-"),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(json_format: bool = True, level: str = "INFO") -> None:
    """
    Configure root logging for the service.

    Args:
        json_format: JSON lines (non-dev) or human-readable (dev)
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    # Replace only our own handler; capture handlers installed by test
    # runners stay attached.
    for handler in root_logger.handlers[:]:
        if getattr(handler, "_meterpay", False):
            root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler._meterpay = True  # type: ignore[attr-defined]
    console_handler.setLevel(getattr(logging, level.upper()))
    console_handler.addFilter(CorrelationIdFilter())

    if json_format:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] [%(correlation_id)s] %(name)s: %(message)s"
            )
        )

    root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def get_correlation_id() -> Optional[str]:
    """Get the current request's correlation ID."""
    return request_id_var.get()
