"""Domain models for purchases, checkout drafts, and checkout results."""
from __future__ import annotations

import calendar
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..catalog import AiService, BillingCycle
from ..invoicing import InvoiceDocument
from ..ledger.models import Payer, Transaction


class PurchaseStatus(str, Enum):
    """Durable lifecycle state of a purchase."""

    ACTIVE = "active"
    PENDING_PAYMENT = "pending_payment"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    """How a checkout is settled."""

    BALANCE = "balance"
    CARD = "card"
    INVOICE = "invoice"
    YUMONEY = "yumoney"
    SBP = "sbp"
    SBERPAY = "sberpay"

    @property
    def debits_balance(self) -> bool:
        """Only the internal balance is settled through the ledger."""
        return self == PaymentMethod.BALANCE

    @property
    def is_deferred(self) -> bool:
        return self == PaymentMethod.INVOICE


class CheckoutStage(str, Enum):
    """Transient stages of the single-plan purchase flow."""

    SELECTING = "selecting"
    CONFIRMING = "confirming"
    AWAITING_PAYMENT = "awaiting_payment"


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


class Purchase(BaseModel):
    """Durable record of a plan bought by a payer; the price is frozen at purchase time."""

    id: str
    service_id: str
    service_name: str
    plan_name: str
    price_rub: int = Field(ge=0)
    price_usd: Decimal = Field(ge=0)
    billing_cycle: BillingCycle
    status: PurchaseStatus
    payer_id: str
    payment_method: PaymentMethod
    invoice_number: Optional[str] = None
    transaction_id: Optional[str] = None
    login: Optional[str] = None
    password: Optional[str] = None
    payment_url: Optional[str] = None
    create_new_account: bool = False
    purchased_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_live(self) -> bool:
        return self.status in {PurchaseStatus.ACTIVE, PurchaseStatus.PENDING_PAYMENT}

    def next_payment_date(self, now: datetime) -> Optional[datetime]:
        """Roll the purchase date forward by whole billing cycles until it is after ``now``."""

        if not self.is_live:
            return None
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        step = 1 if self.billing_cycle == BillingCycle.MONTHLY else 12
        cycles = 0
        candidate = self.purchased_at
        while candidate <= now:
            cycles += step
            candidate = _add_months(self.purchased_at, cycles)
        return candidate


class PurchaseDraft(BaseModel):
    """In-memory state of a single-plan purchase before it is paid."""

    service: AiService
    stage: CheckoutStage = CheckoutStage.SELECTING
    tier_index: Optional[int] = None
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    payer_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class CheckoutResult(BaseModel):
    """Outcome of a successful checkout."""

    purchases: Tuple[Purchase, ...]
    transactions: Tuple[Transaction, ...] = Field(default_factory=tuple)
    invoice: Optional[InvoiceDocument] = None
    payer: Payer
    total_rub: int

    model_config = ConfigDict(frozen=True)
