"""Structured audit events emitted by the ledger and purchase services."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field


class AuditEventType(str, Enum):
    """Audit event categories emitted by the marketplace core."""

    PAYER_CREATED = "payer_created"
    FUNDS_DEPOSITED = "funds_deposited"
    FUNDS_WITHDRAWN = "funds_withdrawn"
    PURCHASE_DEBITED = "purchase_debited"
    PURCHASE_ACTIVATED = "purchase_activated"
    PURCHASE_PENDING_PAYMENT = "purchase_pending_payment"
    PURCHASE_CANCELLED = "purchase_cancelled"
    PURCHASE_PAID = "purchase_paid"
    INVOICE_ISSUED = "invoice_issued"
    CHECKOUT_REJECTED = "checkout_rejected"


class AuditEvent(BaseModel):
    """Structured audit event for analytics and reconciliation."""

    event_type: AuditEventType
    payer_id: Optional[str] = None
    purchase_id: Optional[str] = None
    amount: Optional[Decimal] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class AuditLogger(Protocol):
    """Captures structured audit events."""

    def log(self, event: AuditEvent) -> None:
        ...


__all__ = ["AuditEvent", "AuditEventType", "AuditLogger"]
