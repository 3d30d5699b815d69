"""API schemas for catalog endpoints."""
from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..catalog import AiService, PricingTier
from ..pricing import PricingConfig, price_label_to_rub


class PricingTierResponse(BaseModel):
    index: int
    name: str
    price: str
    price_usd: Optional[Decimal] = Field(alias="priceUsd", default=None)
    price_rub: int = Field(alias="priceRub")
    purchasable: bool
    features: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_tier(cls, index: int, tier: PricingTier, pricing: PricingConfig) -> "PricingTierResponse":
        return cls(
            index=index,
            name=tier.name,
            price=tier.price_label,
            price_usd=tier.usd_amount,
            price_rub=price_label_to_rub(tier.price_label, pricing),
            purchasable=tier.is_purchasable,
            features=list(tier.features),
        )


class AiServiceResponse(BaseModel):
    id: str
    name: str
    category: str
    color: str
    logo_url: Optional[str] = Field(alias="logoUrl", default=None)
    rating: Optional[float] = None
    pricing_tiers: List[PricingTierResponse] = Field(alias="pricingTiers", default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_service(cls, service: AiService, pricing: PricingConfig) -> "AiServiceResponse":
        return cls(
            id=service.id,
            name=service.name,
            category=service.category,
            color=service.color,
            logo_url=service.logo_url,
            rating=service.rating,
            pricing_tiers=[
                PricingTierResponse.from_tier(index, tier, pricing)
                for index, tier in enumerate(service.pricing_tiers)
            ],
        )


class CatalogResponse(BaseModel):
    services: List[AiServiceResponse]

    model_config = ConfigDict(populate_by_name=True)
