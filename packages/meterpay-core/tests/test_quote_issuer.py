"""Tests for quote issuance."""
from __future__ import annotations

from datetime import timedelta

import pytest

from meterpay_core.exceptions import InvalidRequestError, StorageError
from meterpay_core.models import QuoteStatus
from meterpay_core.quotes import QuoteIssuer


class TestIssueQuote:
    async def test_summarize_default_quote(self, issuer, store, clock):
        issued = await issuer.issue_quote("summarize")
        quote = issued.quote

        assert quote.quote_id.startswith("q_")
        assert len(quote.quote_id) == 2 + 16
        assert quote.price_sats == 50
        assert quote.units == {"tokens": 1000}
        assert quote.status == QuoteStatus.ACTIVE
        assert quote.expires_at == clock.now + timedelta(seconds=30)
        assert quote.receiver == "ark1qreceiver"
        assert quote.network_locator == "https://asp.test.example"

        stored = await store.get_quote(quote.quote_id)
        assert stored is not None
        assert stored.price_sats == 50

    async def test_images_price(self, issuer):
        issued = await issuer.issue_quote("generate_image", {"images": 3})
        assert issued.quote.price_sats == 150
        assert issued.quote.units == {"images": 3}

    async def test_unknown_endpoint_uses_fallback(self, issuer):
        issued = await issuer.issue_quote("transcribe")
        assert issued.quote.price_sats == 10
        assert issued.quote.units == {"amount": 1}

    async def test_extra_units_are_kept(self, issuer):
        issued = await issuer.issue_quote("summarize", {"tokens": 200, "priority": 1})
        assert issued.quote.price_sats == 10
        assert issued.quote.units == {"tokens": 200, "priority": 1}

    async def test_nonces_and_ids_are_unique(self, issuer):
        quotes = [(await issuer.issue_quote("compute")).quote for _ in range(25)]
        assert len({q.nonce for q in quotes}) == 25
        assert len({q.quote_id for q in quotes}) == 25

    async def test_round_hint_from_network(self, issuer, clock):
        issued = await issuer.issue_quote("compute")
        assert issued.round_hint == f"r_{clock.now.isoformat()}"

    async def test_to_dict_shape(self, issuer):
        body = (await issuer.issue_quote("translate", {"characters": 1000})).to_dict()
        assert body["price_sats"] == 30
        assert body["settlement"]["locator"] == "https://asp.test.example"
        assert body["settlement"]["receiver"] == "ark1qreceiver"
        assert set(body) == {"endpoint", "units", "price_sats", "expires_at", "quote_id", "settlement"}


class TestIssueQuoteErrors:
    @pytest.mark.parametrize("endpoint", ["", "   ", None])
    async def test_blank_endpoint(self, issuer, store, endpoint):
        with pytest.raises(InvalidRequestError):
            await issuer.issue_quote(endpoint)

    async def test_negative_units(self, issuer):
        with pytest.raises(InvalidRequestError):
            await issuer.issue_quote("summarize", {"tokens": -5})

    async def test_round_hint_failure_does_not_block(self, store, registry, asp_client, clock):
        async def broken_round():
            raise ConnectionError("asp down")

        asp_client.get_current_round = broken_round
        issuer = QuoteIssuer(store, registry, asp_client, clock=clock)

        issued = await issuer.issue_quote("summarize")
        assert issued.round_hint is None
        assert await store.get_quote(issued.quote.quote_id) is not None

    async def test_storage_failure_propagates(self, registry, asp_client, clock, store):
        async def failing_create(quote):
            raise StorageError("disk full")

        store.create_quote = failing_create
        issuer = QuoteIssuer(store, registry, asp_client, clock=clock)
        with pytest.raises(StorageError):
            await issuer.issue_quote("summarize")
