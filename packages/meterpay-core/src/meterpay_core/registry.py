"""Endpoint registry: the enumerable set of metered endpoints.

Built once at startup and handed by reference to the quote issuer (pricing)
and the job executor (handlers).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Union

from . import handlers
from .pricing import (
    COMPUTE_PRICING,
    FALLBACK_PRICING,
    GENERATE_IMAGE_PRICING,
    SUMMARIZE_PRICING,
    TRANSLATE_PRICING,
    PricingRule,
)

HandlerResult = Union[dict[str, Any], Awaitable[dict[str, Any]]]
Handler = Callable[[Mapping[str, Any]], HandlerResult]


@dataclass(frozen=True)
class Endpoint:
    name: str
    pricing: PricingRule
    handler: Handler
    description: str = ""


class EndpointRegistry:
    """Maps endpoint names to pricing rules and handlers."""

    def __init__(
        self,
        endpoints: Iterable[Endpoint] = (),
        *,
        fallback_pricing: PricingRule = FALLBACK_PRICING,
    ) -> None:
        self._endpoints: dict[str, Endpoint] = {}
        self.fallback_pricing = fallback_pricing
        for endpoint in endpoints:
            self.register(endpoint)

    def register(self, endpoint: Endpoint) -> None:
        if not endpoint.name:
            raise ValueError("endpoint name must be non-empty")
        if endpoint.name in self._endpoints:
            raise ValueError(f"endpoint already registered: {endpoint.name}")
        self._endpoints[endpoint.name] = endpoint

    def get(self, name: str) -> Optional[Endpoint]:
        return self._endpoints.get(name)

    def pricing_for(self, name: str) -> PricingRule:
        endpoint = self._endpoints.get(name)
        return endpoint.pricing if endpoint else self.fallback_pricing

    def handler_for(self, name: str) -> Optional[Handler]:
        endpoint = self._endpoints.get(name)
        return endpoint.handler if endpoint else None

    def names(self) -> list[str]:
        return sorted(self._endpoints)

    def __contains__(self, name: object) -> bool:
        return name in self._endpoints

    def __len__(self) -> int:
        return len(self._endpoints)


def default_registry() -> EndpointRegistry:
    """The reference endpoints: summarize, generate_image, translate, compute."""
    return EndpointRegistry(
        [
            Endpoint("summarize", SUMMARIZE_PRICING, handlers.summarize, "5 sats per 100 tokens"),
            Endpoint("generate_image", GENERATE_IMAGE_PRICING, handlers.generate_image, "50 sats per image"),
            Endpoint("translate", TRANSLATE_PRICING, handlers.translate, "3 sats per 100 characters"),
            Endpoint("compute", COMPUTE_PRICING, handlers.compute, "10 sats per second"),
        ]
    )
