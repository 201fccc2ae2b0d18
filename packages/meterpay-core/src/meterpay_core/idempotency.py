"""Idempotency gate for settlement requests.

A key maps to the serialized response of the first successful settlement made
under it. While that request is running the key holds a short-lived
``pending`` reservation, so two concurrent submissions with the same key
never both reach the settlement path.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from .models import IdempotencyStatus, utc_now
from .store import SettlementStore

logger = logging.getLogger("meterpay.idempotency")

DEFAULT_TTL_SECONDS = 120
DEFAULT_LOCK_TTL_SECONDS = 60


class IdempotencyGate:
    def __init__(
        self,
        store: SettlementStore,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        lock_ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self.ttl_seconds = ttl_seconds
        self.lock_ttl_seconds = lock_ttl_seconds
        self._clock = clock

    async def lookup(self, key: str) -> Optional[str]:
        """Cached response for ``key``; None if absent, reserved or expired."""
        entry = await self._store.get_idempotency_entry(key)
        if entry is None or entry.status != IdempotencyStatus.COMPLETED:
            return None
        if not entry.is_live(self._clock()):
            return None
        return entry.response_json

    async def store(self, key: str, response_json: str, ttl_seconds: Optional[int] = None) -> None:
        now = self._clock()
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        await self._store.put_idempotency_entry(
            key,
            response_json,
            now=now,
            expires_at=now + timedelta(seconds=ttl),
        )

    async def reserve(self, key: str, ttl_seconds: Optional[int] = None) -> bool:
        """Take ownership of ``key``. False if a live entry already holds it."""
        now = self._clock()
        ttl = self.lock_ttl_seconds if ttl_seconds is None else ttl_seconds
        return await self._store.reserve_idempotency_key(
            key,
            now=now,
            expires_at=now + timedelta(seconds=ttl),
        )

    async def release(self, key: str) -> None:
        released = await self._store.release_idempotency_key(key)
        if released:
            logger.debug("Released idempotency reservation %s", key)

    async def purge_expired(self) -> int:
        return await self._store.purge_expired_idempotency(now=self._clock())
