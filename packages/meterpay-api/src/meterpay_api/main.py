"""API composition root."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from meterpay_core import MeterpaySettings, load_settings
from meterpay_core.executor import JobExecutor
from meterpay_core.idempotency import IdempotencyGate
from meterpay_core.models import utc_now
from meterpay_core.orchestrator import SettlementOrchestrator
from meterpay_core.quotes import QuoteIssuer
from meterpay_core.registry import EndpointRegistry, default_registry
from meterpay_core.settlement_network import ASPClient
from meterpay_core.store import SettlementStore, create_store
from meterpay_core.verifier import ArkPaymentVerifier, PaymentVerifier

from .health import create_health_router
from .lifespan import GracefulShutdownState, lifespan
from .middleware import API_VERSION, StructuredLoggingMiddleware, register_exception_handlers, setup_logging
from .routers import jobs as jobs_router
from .routers import paycall as paycall_router

logger = logging.getLogger("meterpay.api")


def create_app(
    settings: MeterpaySettings | None = None,
    *,
    store: Optional[SettlementStore] = None,
    verifier: Optional[PaymentVerifier] = None,
    registry: Optional[EndpointRegistry] = None,
    clock: Callable[[], datetime] = utc_now,
) -> FastAPI:
    settings = settings or load_settings()
    setup_logging(json_format=settings.environment != "dev", level=settings.log_level)

    app = FastAPI(
        title="Meterpay API",
        version=API_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(StructuredLoggingMiddleware, exclude_paths=["/", "/health", "/live", "/ready"])
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID", "Idempotency-Key", "X-Idempotency-Key"],
        expose_headers=["X-Request-ID", paycall_router.REPLAY_HEADER],
    )
    register_exception_handlers(app)

    store = store or create_store(settings.database_url)
    registry = registry or default_registry()
    asp_client = ASPClient(settings.ark, clock=clock)
    verifier = verifier or ArkPaymentVerifier(asp_client, settings.payments_mode)

    issuer = QuoteIssuer(
        store,
        registry,
        asp_client,
        ttl_seconds=settings.quote_ttl_seconds,
        clock=clock,
    )
    idempotency = IdempotencyGate(
        store,
        ttl_seconds=settings.idempotency_ttl_seconds,
        lock_ttl_seconds=settings.idempotency_lock_ttl_seconds,
        clock=clock,
    )
    executor = JobExecutor(store, registry, timeout_seconds=settings.job_timeout_seconds, clock=clock)
    orchestrator = SettlementOrchestrator(store, verifier, executor, idempotency, clock=clock)

    shutdown_state = GracefulShutdownState()
    app.state.settings = settings
    app.state.store = store
    app.state.shutdown_state = shutdown_state

    logger.info(
        f"API initialized with storage backend: {store.backend}"
    )

    app.dependency_overrides[paycall_router.get_deps] = lambda: paycall_router.Dependencies(  # type: ignore[arg-type]
        issuer=issuer,
        orchestrator=orchestrator,
        idempotency=idempotency,
    )
    app.include_router(paycall_router.router, prefix="/v1")

    app.dependency_overrides[jobs_router.get_deps] = lambda: jobs_router.JobsDependencies(  # type: ignore[arg-type]
        executor=executor,
    )
    app.include_router(jobs_router.router, prefix="/v1/jobs")

    app.include_router(
        create_health_router(
            settings=settings,
            asp_client=asp_client,
            registry=registry,
            store=store,
            shutdown_state=shutdown_state,
        )
    )

    return app
