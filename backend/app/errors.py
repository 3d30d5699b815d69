"""Typed errors raised by the ledger, cart, and purchase services."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass
class MarketplaceError(Exception):
    """Base class for actionable failures surfaced to API callers."""

    code: str
    message: str
    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


class ValidationError(MarketplaceError):
    """Malformed input: blank identity fields, non-positive amounts, bad tiers."""

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        self.field = field
        super().__init__(
            code="validation_error",
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"field": field} if field else None,
        )


class NotFoundError(MarketplaceError):
    """Reference to a payer, cart item, purchase, or invoice that does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            code="not_found",
            message=f"{entity} {entity_id!r} not found",
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"entity": entity, "id": entity_id},
        )


class InsufficientFundsError(MarketplaceError):
    """The payer balance does not cover a withdrawal or purchase."""

    def __init__(self, payer_id: str, *, required: Decimal, available: Decimal) -> None:
        self.payer_id = payer_id
        self.required = required
        self.available = available
        self.shortfall = required - available
        super().__init__(
            code="insufficient_funds",
            message=f"Payer {payer_id} is short of {self.shortfall} RUB",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "payerId": payer_id,
                "required": str(required),
                "available": str(available),
                "shortfall": str(self.shortfall),
            },
        )


class NoPayerSelectedError(MarketplaceError):
    """Checkout was attempted without choosing a payer."""

    def __init__(self) -> None:
        super().__init__(
            code="no_payer_selected",
            message="A payer must be selected before payment",
            status_code=status.HTTP_400_BAD_REQUEST,
        )


class InvoiceNotApplicableError(MarketplaceError):
    """Invoice settlement was requested for a payer that is not a company."""

    def __init__(self, payer_id: str) -> None:
        self.payer_id = payer_id
        super().__init__(
            code="invoice_not_applicable",
            message="Invoices can only be issued to company payers",
            status_code=status.HTTP_409_CONFLICT,
            detail={"payerId": payer_id},
        )


__all__ = [
    "InsufficientFundsError",
    "InvoiceNotApplicableError",
    "MarketplaceError",
    "NoPayerSelectedError",
    "NotFoundError",
    "ValidationError",
]
