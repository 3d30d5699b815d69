"""AI service catalog consumed read-only by the cart and purchase flows."""

from .models import AiService, BillingCycle, PricingTier
from .provider import BUILTIN_SERVICES, CatalogProvider, StaticCatalogProvider

__all__ = [
    "AiService",
    "BUILTIN_SERVICES",
    "BillingCycle",
    "CatalogProvider",
    "PricingTier",
    "StaticCatalogProvider",
]
