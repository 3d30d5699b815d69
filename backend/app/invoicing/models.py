"""Invoice document models."""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..catalog import BillingCycle


class InvoiceLine(BaseModel):
    """One purchased plan on an invoice."""

    service_id: str
    service_name: str
    plan_name: str
    billing_cycle: BillingCycle
    amount_rub: int = Field(ge=0)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class InvoiceSeller(BaseModel):
    """Issuer details printed in the invoice header."""

    name: str
    tax_id: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class InvoiceDocument(BaseModel):
    """Rendered invoice for deferred settlement by a company payer."""

    number: str
    issued_at: datetime
    due_date: date
    payer_id: str
    payer_name: str
    payer_inn: Optional[str] = None
    payer_kpp: Optional[str] = None
    lines: Tuple[InvoiceLine, ...]
    total_rub: int = Field(ge=0)
    text: str

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def filename(self) -> str:
        return f"{self.number}.txt"
