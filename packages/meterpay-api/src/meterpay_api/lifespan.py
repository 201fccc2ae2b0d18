"""Application lifespan management: startup, shutdown and graceful drain."""
from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from meterpay_core.jobs.expiry_sweep import sweep_expired
from meterpay_core.scheduler import MeterpayScheduler

from .middleware import API_VERSION

logger = logging.getLogger("meterpay.api")

SWEEP_JOB_ID = "quote_expiry_sweep"


class GracefulShutdownState:
    """Track state for graceful shutdown."""

    def __init__(self) -> None:
        self.is_shutting_down = False
        self.shutdown_started_at: Optional[float] = None

    def start_shutdown(self) -> None:
        if self.is_shutting_down:
            return
        self.is_shutting_down = True
        self.shutdown_started_at = time.time()
        logger.info("Graceful shutdown initiated")


def _install_signal_handlers(state: GracefulShutdownState) -> list[signal.Signals]:
    """Mark shutdown on SIGTERM/SIGINT, then defer to the server's own handler."""
    if sys.platform == "win32":
        return []
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGTERM, signal.SIGINT):
        previous = signal.getsignal(sig)

        def _handler(sig=sig, previous=previous) -> None:
            logger.info(f"Received signal {sig.name}")
            state.start_shutdown()
            if callable(previous):
                previous(sig, None)

        loop.add_signal_handler(sig, _handler)
        installed.append(sig)
    return installed


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the expiry sweep and prepare the store; tear both down on exit."""
    settings = app.state.settings
    store = app.state.store
    shutdown_state: GracefulShutdownState = app.state.shutdown_state

    logger.info(
        "Starting Meterpay API...",
        extra={
            "version": API_VERSION,
            "environment": settings.environment,
            "payments_mode": settings.payments_mode,
            "python_version": sys.version.split()[0],
        },
    )

    if hasattr(store, "init_schema"):
        await store.init_schema()
        logger.info("Database schema initialized")

    installed_signals = _install_signal_handlers(shutdown_state)

    scheduler: Optional[MeterpayScheduler] = None
    if settings.enable_sweeper:
        scheduler = MeterpayScheduler()

        async def _sweep() -> None:
            await sweep_expired(store)

        scheduler.add_interval_job(_sweep, job_id=SWEEP_JOB_ID, seconds=settings.sweep_interval_seconds)
        await scheduler.start()
        app.state.scheduler = scheduler

    app.state.startup_time = time.time()
    app.state.ready = True
    logger.info("Meterpay API started successfully")

    yield

    # --- Shutdown ---
    logger.info("Shutting down Meterpay API...")
    shutdown_state.start_shutdown()
    app.state.ready = False

    if scheduler is not None:
        try:
            await scheduler.shutdown(wait=True)
        except (RuntimeError, OSError) as e:
            logger.warning(f"Error shutting down scheduler: {e}")

    loop = asyncio.get_running_loop()
    for sig in installed_signals:
        loop.remove_signal_handler(sig)

    await store.close()
    logger.info("Meterpay API shutdown complete")
