"""USD to RUB price conversion with the marketplace commission."""
from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from ..errors import ValidationError

Number = Union[int, float, str, Decimal]

_USD_PATTERN = re.compile(r"\$(\d+(?:\.\d+)?)")
_WHOLE_ROUBLE = Decimal("1")


@dataclass(frozen=True)
class PricingConfig:
    """Exchange rate and commission applied to advertised USD prices."""

    usd_rub_rate: Decimal = Decimal("95")
    commission_rate: Decimal = Decimal("0.05")

    @property
    def effective_rate(self) -> Decimal:
        return self.usd_rub_rate * (1 + self.commission_rate)


DEFAULT_PRICING = PricingConfig()


def _as_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # 19.99 -> Decimal("19.99"), not its binary expansion.
        return Decimal(str(value))
    return Decimal(value)


def usd_to_rub(usd_amount: Number, config: PricingConfig = DEFAULT_PRICING) -> int:
    """Convert a USD amount to whole roubles including the commission."""

    amount = _as_decimal(usd_amount)
    if amount < 0:
        raise ValidationError("USD amount must be non-negative", field="usd_amount")
    converted = amount * config.effective_rate
    return int(converted.quantize(_WHOLE_ROUBLE, rounding=ROUND_HALF_UP))


def extract_usd_amount(price_label: str) -> Optional[Decimal]:
    """Return the dollar amount from labels like ``"$49/mo"``, or ``None``."""

    if not price_label:
        return None
    match = _USD_PATTERN.search(price_label)
    return Decimal(match.group(1)) if match else None


def price_label_to_rub(price_label: str, config: PricingConfig = DEFAULT_PRICING) -> int:
    """Convert a price label to roubles, treating non-numeric labels as zero."""

    usd_amount = extract_usd_amount(price_label)
    return usd_to_rub(usd_amount, config) if usd_amount is not None else 0
