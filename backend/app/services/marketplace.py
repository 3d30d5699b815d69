"""Application wiring for the ledger, cart, and purchase services."""
from __future__ import annotations

import logging
from functools import lru_cache

from ..audit import AuditEvent, AuditLogger
from ..cart import CartService, InMemoryCartStore
from ..catalog import CatalogProvider, StaticCatalogProvider
from ..invoicing import InvoiceSeller
from ..ledger import LedgerService
from ..ledger.repository import InMemoryLedgerRepository, PostgresLedgerRepository
from ..pricing import PricingConfig
from ..purchases import InMemoryPurchaseRepository, PostgresPurchaseRepository, PurchaseService

try:  # pragma: no cover - resolve helpers when imported from FastAPI app
    from backend import app_context
    from backend.marketplace_config import STORAGE_MEMORY, MarketplaceConfig, load_marketplace_config
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    import app_context  # type: ignore[no-redef]
    from marketplace_config import (  # type: ignore[no-redef]
        STORAGE_MEMORY,
        MarketplaceConfig,
        load_marketplace_config,
    )


logger = logging.getLogger("marketplace")


class LoggingAuditLogger(AuditLogger):
    """Audit logger forwarding marketplace events to logging."""

    def log(self, event: AuditEvent) -> None:
        logger.info(
            "Marketplace event %s payer=%s purchase=%s amount=%s metadata=%s",
            event.event_type.value,
            event.payer_id,
            event.purchase_id,
            event.amount,
            event.metadata,
        )


@lru_cache(maxsize=1)
def get_marketplace_config() -> MarketplaceConfig:
    return load_marketplace_config()


def get_pricing_config() -> PricingConfig:
    config = get_marketplace_config()
    return PricingConfig(usd_rub_rate=config.usd_rub_rate, commission_rate=config.commission_rate)


@lru_cache(maxsize=1)
def get_catalog_provider() -> CatalogProvider:
    if app_context.is_configured():
        return app_context.get_catalog_provider()
    return StaticCatalogProvider()


@lru_cache(maxsize=1)
def get_ledger_service() -> LedgerService:
    config = get_marketplace_config()
    if config.storage_backend == STORAGE_MEMORY:
        repository = InMemoryLedgerRepository()
    else:
        repository = PostgresLedgerRepository()
    return LedgerService(repository=repository, audit_logger=LoggingAuditLogger())


@lru_cache(maxsize=1)
def get_cart_service() -> CartService:
    return CartService(store=InMemoryCartStore(), pricing=get_pricing_config())


@lru_cache(maxsize=1)
def get_purchase_service() -> PurchaseService:
    config = get_marketplace_config()
    if config.storage_backend == STORAGE_MEMORY:
        repository = InMemoryPurchaseRepository()
    else:
        repository = PostgresPurchaseRepository()
    logger.info("Purchase service using %s storage", config.storage_backend)
    return PurchaseService(
        repository=repository,
        ledger=get_ledger_service(),
        audit_logger=LoggingAuditLogger(),
        pricing=get_pricing_config(),
        seller=InvoiceSeller(name=config.invoice_seller_name, tax_id=config.invoice_seller_tax_id),
        payment_terms_days=config.invoice_payment_terms_days,
    )


__all__ = [
    "LoggingAuditLogger",
    "get_cart_service",
    "get_catalog_provider",
    "get_ledger_service",
    "get_marketplace_config",
    "get_pricing_config",
    "get_purchase_service",
]
