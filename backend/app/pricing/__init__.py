"""Currency conversion for catalog prices."""

from .conversion import (
    DEFAULT_PRICING,
    PricingConfig,
    extract_usd_amount,
    price_label_to_rub,
    usd_to_rub,
)

__all__ = [
    "DEFAULT_PRICING",
    "PricingConfig",
    "extract_usd_amount",
    "price_label_to_rub",
    "usd_to_rub",
]
