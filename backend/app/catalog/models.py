"""Read-only AI service records supplied by the catalog provider."""
from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..pricing import extract_usd_amount


class BillingCycle(str, Enum):
    """Recurrence basis attached to a plan selection."""

    MONTHLY = "monthly"
    YEARLY = "yearly"


class PricingTier(BaseModel):
    """A named plan of an AI service with its advertised price label."""

    name: str
    price_label: str = Field(alias="price", description='Free-form label such as "$49/mo" or "Custom"')
    features: Tuple[str, ...] = Field(default_factory=tuple)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def usd_amount(self) -> Optional[Decimal]:
        return extract_usd_amount(self.price_label)

    @property
    def is_purchasable(self) -> bool:
        return self.usd_amount is not None


class AiService(BaseModel):
    """Immutable AI tool description as exposed by the catalog."""

    id: str
    name: str
    category: str
    color: str = "#000000"
    logo_url: Optional[str] = None
    rating: Optional[float] = None
    pricing_tiers: Tuple[PricingTier, ...] = Field(default_factory=tuple)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def tier(self, index: int) -> Optional[PricingTier]:
        if 0 <= index < len(self.pricing_tiers):
            return self.pricing_tiers[index]
        return None
