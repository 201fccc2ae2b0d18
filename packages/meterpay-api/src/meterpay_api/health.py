"""Health-check endpoints: service info, liveness, readiness and status."""
from __future__ import annotations

import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from meterpay_core.config import MeterpaySettings
from meterpay_core.models import utc_now
from meterpay_core.registry import EndpointRegistry
from meterpay_core.settlement_network import ASPClient
from meterpay_core.store import SettlementStore

from .lifespan import GracefulShutdownState
from .middleware import API_VERSION


def create_health_router(
    *,
    settings: MeterpaySettings,
    asp_client: ASPClient,
    registry: EndpointRegistry,
    store: SettlementStore,
    shutdown_state: GracefulShutdownState,
) -> APIRouter:
    """Build a health-check router closed over runtime dependencies."""

    health_router = APIRouter(tags=["health"])
    started_at = time.time()

    @health_router.get("/")
    def root():
        """Service information and the metered endpoint listing."""
        endpoints = {}
        for name in registry.names():
            endpoint = registry.get(name)
            endpoints[name] = {
                "unit": endpoint.pricing.unit_kind,
                "default_units": endpoint.pricing.default_quantity,
                "pricing": endpoint.description,
            }
        return {
            "service": "Meterpay API",
            "version": API_VERSION,
            "payments_mode": settings.payments_mode,
            "endpoints": endpoints,
            "routes": {
                "quote": "GET /v1/quote?endpoint=<name>&<unit>=<n>",
                "paycall": "POST /v1/paycall",
                "job": "GET /v1/jobs/{job_id}",
                "health": "GET /health",
            },
        }

    @health_router.get("/live")
    def liveness():
        return {"status": "alive"}

    @health_router.get("/ready")
    def readiness():
        if shutdown_state.is_shutting_down:
            return JSONResponse(
                status_code=503,
                content={"status": "shutting_down", "message": "Service is shutting down"},
            )
        return {"status": "ready"}

    @health_router.get("/health")
    async def health_check():
        """Service status with the settlement network snapshot."""
        asp = await asp_client.check_health()
        status = "healthy" if asp.healthy else "degraded"
        if shutdown_state.is_shutting_down:
            status = "shutting_down"
        return {
            "status": status,
            "version": API_VERSION,
            "environment": settings.environment,
            "payments_mode": settings.payments_mode,
            "uptime_seconds": int(time.time() - started_at),
            "asp": asp.to_dict(),
            "database": {"type": store.backend},
            "timestamp": utc_now().isoformat(),
        }

    return health_router
