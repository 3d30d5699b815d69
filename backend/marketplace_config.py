"""Configuration helpers for the marketplace backend."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional
import os

STORAGE_POSTGRES = "postgres"
STORAGE_MEMORY = "memory"
_STORAGE_BACKENDS = {STORAGE_POSTGRES, STORAGE_MEMORY}


@dataclass(frozen=True)
class MarketplaceConfig:
    """Runtime settings for pricing, storage, and invoicing."""

    usd_rub_rate: Decimal
    commission_rate: Decimal
    storage_backend: str
    cart_cookie_name: str
    invoice_seller_name: str
    invoice_seller_tax_id: Optional[str]
    invoice_payment_terms_days: int


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_decimal(value: Optional[str], *, default: str) -> Decimal:
    if value is None or value.strip() == "":
        return Decimal(default)
    try:
        return Decimal(value.strip())
    except InvalidOperation as exc:
        raise ValueError(f"Expected decimal value, got {value!r}") from exc


def load_marketplace_config(env: Optional[Mapping[str, str]] = None) -> MarketplaceConfig:
    """Load :class:`MarketplaceConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    usd_rub_rate = _to_decimal(env_mapping.get("USD_RUB_RATE"), default="95")
    if usd_rub_rate <= 0:
        raise ValueError("USD_RUB_RATE must be positive")
    commission_rate = _to_decimal(env_mapping.get("USD_COMMISSION_RATE"), default="0.05")
    if commission_rate < 0:
        raise ValueError("USD_COMMISSION_RATE must be non-negative")

    storage_backend = (env_mapping.get("MARKETPLACE_STORAGE") or STORAGE_POSTGRES).strip().lower()
    if storage_backend not in _STORAGE_BACKENDS:
        raise ValueError(f"MARKETPLACE_STORAGE must be one of {sorted(_STORAGE_BACKENDS)}")

    cart_cookie_name = env_mapping.get("CART_COOKIE_NAME") or "cart_session"
    seller_name = env_mapping.get("INVOICE_SELLER_NAME") or "AI Tools Marketplace"
    seller_tax_id = env_mapping.get("INVOICE_SELLER_TAX_ID") or None
    terms_days = max(0, _to_int(env_mapping.get("INVOICE_PAYMENT_TERMS_DAYS"), default=5))

    return MarketplaceConfig(
        usd_rub_rate=usd_rub_rate,
        commission_rate=commission_rate,
        storage_backend=storage_backend,
        cart_cookie_name=cart_cookie_name,
        invoice_seller_name=seller_name,
        invoice_seller_tax_id=seller_tax_id,
        invoice_payment_terms_days=terms_days,
    )


__all__ = ["MarketplaceConfig", "STORAGE_MEMORY", "STORAGE_POSTGRES", "load_marketplace_config"]
