"""Cart manager staging tiered plans ahead of checkout."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional, Sequence
from uuid import uuid4

from ..catalog import AiService, BillingCycle
from ..errors import NotFoundError, ValidationError
from ..pricing import DEFAULT_PRICING, PricingConfig, usd_to_rub
from .models import CartItem, CartSummary, CredentialsUpdate
from .store import CartStore


@dataclass
class CartService:
    """Adds, edits, and totals cart items for a session."""

    store: CartStore
    pricing: PricingConfig = DEFAULT_PRICING
    clock: Optional[Callable[[], datetime]] = None

    def _now(self) -> datetime:
        return self.clock() if self.clock else datetime.now(timezone.utc)

    def add_item(
        self,
        session_id: str,
        service: AiService,
        tier_index: int,
        billing_cycle: BillingCycle = BillingCycle.MONTHLY,
    ) -> CartItem:
        """Stage a tier of ``service``; the same tier may be staged more than once."""

        tier = service.tier(tier_index)
        if tier is None:
            raise ValidationError(
                f"{service.name} has no pricing tier #{tier_index}",
                field="tier_index",
            )
        price_usd = tier.usd_amount
        if price_usd is None:
            raise ValidationError(
                f"{service.name} {tier.name} has no fixed price and cannot be purchased online",
                field="tier_index",
            )

        item = CartItem(
            id=f"ci_{uuid4().hex}",
            service_id=service.id,
            service_name=service.name,
            service_color=service.color,
            service_logo_url=service.logo_url,
            tier_index=tier_index,
            plan_name=tier.name,
            price_usd=price_usd,
            billing_cycle=billing_cycle,
            added_at=self._now(),
        )
        self.store.append(session_id, item)
        return item

    def get_item(self, session_id: str, item_id: str) -> CartItem:
        for item in self.store.list(session_id):
            if item.id == item_id:
                return item
        raise NotFoundError("Cart item", item_id)

    def list_items(self, session_id: str) -> Sequence[CartItem]:
        return self.store.list(session_id)

    def remove_item(self, session_id: str, item_id: str) -> None:
        if not self.store.remove(session_id, item_id):
            raise NotFoundError("Cart item", item_id)

    def clear(self, session_id: str) -> None:
        self.store.clear(session_id)

    def claim(self, session_id: str) -> Sequence[CartItem]:
        """Empty the cart and hand its items to a single checkout.

        A concurrent checkout of the same session sees an empty cart. Call
        :meth:`release` to put the items back if the checkout fails.
        """

        return self.store.take(session_id)

    def release(self, session_id: str, items: Sequence[CartItem]) -> None:
        self.store.restore(session_id, items)

    def update_credentials(self, session_id: str, item_id: str, update: CredentialsUpdate) -> CartItem:
        item = self.get_item(session_id, item_id)
        changes = update.changes()
        if not changes:
            return item
        updated = item.model_copy(update=changes)
        if not self.store.replace(session_id, updated):
            raise NotFoundError("Cart item", item_id)
        return updated

    def item_price_rub(self, item: CartItem) -> int:
        return usd_to_rub(item.price_usd, self.pricing)

    def total_rub(self, session_id: str) -> int:
        return sum(self.item_price_rub(item) for item in self.store.list(session_id))

    def summary(self, session_id: str) -> CartSummary:
        items = tuple(self.store.list(session_id))
        return CartSummary(
            items=items,
            total_items=len(items),
            total_usd=sum((item.price_usd for item in items), Decimal("0")),
            total_rub=sum(self.item_price_rub(item) for item in items),
        )
