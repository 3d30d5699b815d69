"""API schemas for cart endpoints."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..cart import CartItem, CartSummary, CredentialsUpdate
from ..catalog import BillingCycle


class AddCartItemRequest(BaseModel):
    service_id: str = Field(alias="serviceId", min_length=1)
    tier_index: int = Field(alias="tierIndex", ge=0)
    billing_cycle: BillingCycle = Field(alias="billingCycle", default=BillingCycle.MONTHLY)

    model_config = ConfigDict(populate_by_name=True)


class CredentialsRequest(BaseModel):
    login: Optional[str] = None
    password: Optional[str] = None
    payment_url: Optional[str] = Field(alias="paymentUrl", default=None)
    create_new_account: Optional[bool] = Field(alias="createNewAccount", default=None)

    model_config = ConfigDict(populate_by_name=True)

    def to_domain(self) -> CredentialsUpdate:
        return CredentialsUpdate(**self.model_dump(exclude_unset=True))


class CartItemResponse(BaseModel):
    id: str
    service_id: str = Field(alias="serviceId")
    service_name: str = Field(alias="serviceName")
    service_color: str = Field(alias="serviceColor")
    service_logo_url: Optional[str] = Field(alias="serviceLogoUrl", default=None)
    tier_index: int = Field(alias="tierIndex")
    plan_name: str = Field(alias="planName")
    price_usd: Decimal = Field(alias="priceUsd")
    price_rub: int = Field(alias="priceRub")
    billing_cycle: BillingCycle = Field(alias="billingCycle")
    login: Optional[str] = None
    has_password: bool = Field(alias="hasPassword", default=False)
    payment_url: Optional[str] = Field(alias="paymentUrl", default=None)
    create_new_account: bool = Field(alias="createNewAccount", default=False)
    added_at: datetime = Field(alias="addedAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_item(cls, item: CartItem, price_rub: int) -> "CartItemResponse":
        return cls(
            id=item.id,
            service_id=item.service_id,
            service_name=item.service_name,
            service_color=item.service_color,
            service_logo_url=item.service_logo_url,
            tier_index=item.tier_index,
            plan_name=item.plan_name,
            price_usd=item.price_usd,
            price_rub=price_rub,
            billing_cycle=item.billing_cycle,
            login=item.login,
            has_password=bool(item.password),
            payment_url=item.payment_url,
            create_new_account=item.create_new_account,
            added_at=item.added_at,
        )


class CartResponse(BaseModel):
    items: List[CartItemResponse]
    total_items: int = Field(alias="totalItems")
    total_usd: Decimal = Field(alias="totalUsd")
    total_rub: int = Field(alias="totalRub")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_summary(cls, summary: CartSummary, prices: List[int]) -> "CartResponse":
        return cls(
            items=[CartItemResponse.from_item(item, price) for item, price in zip(summary.items, prices)],
            total_items=summary.total_items,
            total_usd=summary.total_usd,
            total_rub=summary.total_rub,
        )


__all__ = [
    "AddCartItemRequest",
    "CartItemResponse",
    "CartResponse",
    "CredentialsRequest",
]
