"""Deterministic per-endpoint pricing rules.

Every rule prices a single unit kind linearly and rounds fractional sats up,
so a quote never undercharges. Arithmetic runs on Decimal to keep prices
identical across platforms for identical inputs.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from typing import Mapping, Optional, Union

from .exceptions import InvalidRequestError

Number = Union[int, float]


@dataclass(frozen=True)
class PricingRule:
    """``ceil(quantity * sats_per_block / block_size)`` over one unit kind."""
    unit_kind: str
    default_quantity: Number
    sats_per_block: int
    block_size: int = 1

    def default_units(self) -> dict[str, Number]:
        return {self.unit_kind: self.default_quantity}

    def quantity(self, units: Mapping[str, Number]) -> Number:
        # A missing kind takes the default; an explicit 0 prices as 0.
        return units.get(self.unit_kind, self.default_quantity)

    def price(self, units: Mapping[str, Number]) -> int:
        quantity = Decimal(str(self.quantity(units)))
        sats = quantity * self.sats_per_block / self.block_size
        return int(sats.to_integral_value(rounding=ROUND_CEILING))


SUMMARIZE_PRICING = PricingRule(unit_kind="tokens", default_quantity=1000, sats_per_block=5, block_size=100)
GENERATE_IMAGE_PRICING = PricingRule(unit_kind="images", default_quantity=1, sats_per_block=50)
TRANSLATE_PRICING = PricingRule(unit_kind="characters", default_quantity=500, sats_per_block=3, block_size=100)
COMPUTE_PRICING = PricingRule(unit_kind="seconds", default_quantity=1, sats_per_block=10)
FALLBACK_PRICING = PricingRule(unit_kind="amount", default_quantity=1, sats_per_block=10)


def normalize_units(unit_counts: Optional[Mapping[str, object]]) -> dict[str, Number]:
    """Validate caller-supplied unit counts.

    Integral floats collapse to ints so ``tokens=1000.0`` echoes as ``1000``.

    Raises:
        InvalidRequestError: a kind is blank or a quantity is not a finite,
            non-negative number.
    """
    if not unit_counts:
        return {}
    normalized: dict[str, Number] = {}
    for kind, raw in unit_counts.items():
        if not isinstance(kind, str) or not kind.strip():
            raise InvalidRequestError("unit kind must be a non-empty string")
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise InvalidRequestError(f"{kind} must be a number", field=kind)
        if not math.isfinite(raw) or raw < 0:
            raise InvalidRequestError(f"{kind} must be a non-negative number", field=kind)
        if isinstance(raw, float) and raw.is_integer():
            raw = int(raw)
        normalized[kind.strip()] = raw
    return normalized
