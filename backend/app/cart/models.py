"""Domain models for the pre-checkout cart."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..catalog import BillingCycle


class CartItem(BaseModel):
    """A planned purchase staged before checkout."""

    id: str
    service_id: str
    service_name: str
    service_color: str = "#000000"
    service_logo_url: Optional[str] = None
    tier_index: int = Field(ge=0)
    plan_name: str
    price_usd: Decimal = Field(ge=0, description="Tier list price captured when the item was staged")
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    login: Optional[str] = None
    password: Optional[str] = None
    payment_url: Optional[str] = None
    create_new_account: bool = False
    added_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class CredentialsUpdate(BaseModel):
    """Partial update for the service access details of a cart item."""

    login: Optional[str] = None
    password: Optional[str] = None
    payment_url: Optional[str] = None
    create_new_account: Optional[bool] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class CartSummary(BaseModel):
    """Snapshot of a cart with its totals."""

    items: Tuple[CartItem, ...]
    total_items: int
    total_usd: Decimal
    total_rub: int

    model_config = ConfigDict(frozen=True)
