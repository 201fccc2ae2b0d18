"""Exception handlers for the Meterpay API.

Every error leaves the service in one shape:

    {"error": "<code>", "message": "<text>", "details": <optional>}

with the request correlation ID echoed in ``X-Request-ID``.
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from meterpay_core.exceptions import MeterpayException

logger = logging.getLogger("meterpay.api.errors")

STATUS_TO_CODE = {
    400: "bad_request",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    413: "request_entity_too_large",
    415: "unsupported_media_type",
    422: "validation_error",
    500: "internal_error",
    503: "service_unavailable",
}


def get_request_id(request: Request) -> str:
    """Extract request ID from request state or headers."""
    if hasattr(request.state, "request_id"):
        return request.state.request_id
    return request.headers.get("X-Request-ID", "unknown")


def is_production(request: Request) -> bool:
    """Only dev shows internal error details."""
    settings = getattr(request.app.state, "settings", None)
    environment = getattr(settings, "environment", "dev")
    return environment != "dev"


def create_error_response(
    error_code: str,
    message: str,
    status_code: int,
    request_id: str,
    details: Any = None,
) -> JSONResponse:
    content: dict[str, Any] = {"error": error_code, "message": message}
    if details:
        content["details"] = details
    return JSONResponse(
        status_code=status_code,
        content=content,
        headers={"X-Request-ID": request_id},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application."""

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        request_id = get_request_id(request)
        errors = [
            {
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]
        logger.warning(
            f"Validation error: {len(errors)} field(s) failed",
            extra={"path": request.url.path, "errors": errors},
        )
        return create_error_response(
            error_code="validation_error",
            message="One or more fields failed validation",
            status_code=400,
            request_id=request_id,
            details=errors,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        request_id = get_request_id(request)
        error_code = STATUS_TO_CODE.get(exc.status_code, "internal_error")
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(f"HTTP error {exc.status_code}: {exc.detail}", extra={"path": request.url.path})
        return create_error_response(
            error_code=error_code,
            message=str(exc.detail) if exc.detail else "An error occurred",
            status_code=exc.status_code,
            request_id=request_id,
        )

    @app.exception_handler(MeterpayException)
    async def meterpay_exception_handler(
        request: Request, exc: MeterpayException
    ) -> JSONResponse:
        request_id = get_request_id(request)
        if exc.http_status >= 500:
            logger.error(
                f"Server error: {exc.error_code} - {exc.message}",
                extra={"error_code": exc.error_code, "details": exc.details},
                exc_info=exc,
            )
        else:
            logger.warning(
                f"Client error: {exc.error_code} - {exc.message}",
                extra={"error_code": exc.error_code},
            )

        body = exc.to_dict()
        return create_error_response(
            error_code=body["error"],
            message=body["message"],
            status_code=exc.http_status,
            request_id=request_id,
            details=body.get("details"),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all: the message is hidden outside dev."""
        request_id = get_request_id(request)
        logger.error(
            f"Unhandled exception: {type(exc).__name__}: {exc}",
            extra={
                "exception_type": type(exc).__name__,
                "path": request.url.path,
                "method": request.method,
            },
            exc_info=exc,
        )
        if is_production(request):
            message = "An internal error occurred"
        else:
            message = f"{type(exc).__name__}: {exc}"
        return create_error_response(
            error_code="internal_error",
            message=message,
            status_code=500,
            request_id=request_id,
        )
