"""Quote and idempotency expiry sweep."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..models import utc_now
from ..store import SettlementStore

logger = logging.getLogger("meterpay.jobs.expiry_sweep")


@dataclass
class SweepReport:
    quotes_expired: int = 0
    idempotency_purged: int = 0


async def sweep_expired(store: SettlementStore, now: Optional[datetime] = None) -> SweepReport:
    """
    Move stale quotes to 'expired' and drop expired idempotency entries.

    Runs on an interval (every minute by default). Quotes that were already
    used are never touched:

    UPDATE quotes SET status = 'expired'
    WHERE status = 'active' AND expires_at <= NOW()
    """
    now = now or utc_now()
    try:
        report = SweepReport(
            quotes_expired=await store.expire_stale_quotes(now=now),
            idempotency_purged=await store.purge_expired_idempotency(now=now),
        )
    except Exception as e:
        logger.error(f"Expiry sweep failed: {e}", exc_info=True)
        raise

    if report.quotes_expired or report.idempotency_purged:
        logger.info(
            "Expiry sweep completed",
            extra={
                "quotes_expired": report.quotes_expired,
                "idempotency_purged": report.idempotency_purged,
            },
        )
    else:
        logger.debug("Expiry sweep completed: nothing expired")
    return report
