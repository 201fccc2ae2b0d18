"""Client for the Ark Service Provider (ASP).

The reference client is simulated: it never dials the network. Round ids are
derived from the wall clock and the health snapshot reports a fixed healthy
state, which is enough for quote hints and the ``/health`` passthrough.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from .config import ArkConfig
from .models import utc_now

logger = logging.getLogger("meterpay.settlement_network")


@dataclass
class ASPHealth:
    healthy: bool
    asp_url: str
    current_round: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "asp_url": self.asp_url,
            "current_round": self.current_round,
            "error": self.error,
        }


class ASPClient:
    """Settlement network client: round hints and a health snapshot."""

    def __init__(
        self,
        config: Optional[ArkConfig] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config or ArkConfig()
        self._clock = clock

    @property
    def asp_url(self) -> str:
        return self._config.asp_url

    @property
    def receiver_pubkey(self) -> str:
        return self._config.receiver_pubkey

    def now(self) -> datetime:
        return self._clock()

    async def get_current_round(self) -> str:
        return f"r_{self.now().isoformat()}"

    async def check_health(self) -> ASPHealth:
        try:
            current_round = await self.get_current_round()
        except Exception as e:
            logger.warning("ASP health check failed: %s", e)
            return ASPHealth(healthy=False, asp_url=self.asp_url, error=str(e))
        return ASPHealth(healthy=True, asp_url=self.asp_url, current_round=current_round)
