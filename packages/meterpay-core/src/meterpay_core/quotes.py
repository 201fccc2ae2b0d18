"""Quote issuance."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Mapping, Optional

from .exceptions import InvalidRequestError
from .models import Quote, QuoteStatus, new_id, new_nonce, utc_now
from .pricing import normalize_units
from .registry import EndpointRegistry
from .settlement_network import ASPClient
from .store import SettlementStore

logger = logging.getLogger("meterpay.quotes")

DEFAULT_QUOTE_TTL_SECONDS = 30


@dataclass
class IssuedQuote:
    quote: Quote
    round_hint: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "endpoint": self.quote.endpoint,
            "units": self.quote.units,
            "price_sats": self.quote.price_sats,
            "expires_at": self.quote.expires_at.isoformat(),
            "quote_id": self.quote.quote_id,
            "settlement": {
                "locator": self.quote.network_locator,
                "receiver": self.quote.receiver,
                "round_hint": self.round_hint,
            },
        }


class QuoteIssuer:
    """Prices a unit of work and persists a single-use quote for it."""

    def __init__(
        self,
        store: SettlementStore,
        registry: EndpointRegistry,
        asp_client: ASPClient,
        *,
        ttl_seconds: int = DEFAULT_QUOTE_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._registry = registry
        self._asp = asp_client
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    async def issue_quote(
        self,
        endpoint: str,
        unit_counts: Optional[Mapping[str, object]] = None,
    ) -> IssuedQuote:
        """Create and persist an ``active`` quote.

        The price is fixed here and never recomputed. The round hint is
        best-effort: a settlement network failure leaves it as None.

        Raises:
            InvalidRequestError: blank endpoint or invalid unit counts.
            StorageError: the quote could not be persisted.
        """
        endpoint = (endpoint or "").strip()
        if not endpoint:
            raise InvalidRequestError("endpoint is required", field="endpoint")

        pricing = self._registry.pricing_for(endpoint)
        units = normalize_units(unit_counts)
        units.setdefault(pricing.unit_kind, pricing.default_quantity)
        price_sats = pricing.price(units)

        now = self._clock()
        quote = Quote(
            quote_id=new_id("q"),
            endpoint=endpoint,
            units=units,
            price_sats=price_sats,
            expires_at=now + self._ttl,
            nonce=new_nonce(),
            receiver=self._asp.receiver_pubkey,
            network_locator=self._asp.asp_url,
            status=QuoteStatus.ACTIVE,
            created_at=now,
        )
        quote = await self._store.create_quote(quote)

        round_hint: Optional[str] = None
        try:
            round_hint = await self._asp.get_current_round()
        except Exception as e:
            logger.warning("Round hint unavailable for quote %s: %s", quote.quote_id, e)

        logger.info(
            "Quote created",
            extra={
                "quote_id": quote.quote_id,
                "endpoint": endpoint,
                "price_sats": price_sats,
            },
        )
        return IssuedQuote(quote=quote, round_hint=round_hint)
