"""API schemas for checkout, purchase, and invoice endpoints."""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..catalog import BillingCycle
from ..invoicing import InvoiceDocument
from ..purchases import CheckoutResult, PaymentMethod, Purchase, PurchaseStatus
from .ledger import PayerResponse, TransactionResponse


class CheckoutRequest(BaseModel):
    payer_id: Optional[str] = Field(alias="payerId", default=None)
    payment_method: str = Field(alias="paymentMethod", default=PaymentMethod.BALANCE.value)

    model_config = ConfigDict(populate_by_name=True)


class PurchaseResponse(BaseModel):
    id: str
    service_id: str = Field(alias="serviceId")
    service_name: str = Field(alias="serviceName")
    plan_name: str = Field(alias="planName")
    price_rub: int = Field(alias="price")
    price_usd: Decimal = Field(alias="priceUsd")
    billing_cycle: BillingCycle = Field(alias="billingCycle")
    status: PurchaseStatus
    payer_id: str = Field(alias="payerId")
    payment_method: PaymentMethod = Field(alias="paymentMethod")
    invoice_number: Optional[str] = Field(alias="invoiceNumber", default=None)
    transaction_id: Optional[str] = Field(alias="transactionId", default=None)
    login: Optional[str] = None
    payment_url: Optional[str] = Field(alias="paymentUrl", default=None)
    create_new_account: bool = Field(alias="createNewAccount", default=False)
    purchased_at: datetime = Field(alias="purchaseDate")
    paid_at: Optional[datetime] = Field(alias="paidAt", default=None)
    cancelled_at: Optional[datetime] = Field(alias="cancelledAt", default=None)
    next_payment_date: Optional[datetime] = Field(alias="nextPaymentDate", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_purchase(cls, purchase: Purchase, *, now: Optional[datetime] = None) -> "PurchaseResponse":
        return cls(
            id=purchase.id,
            service_id=purchase.service_id,
            service_name=purchase.service_name,
            plan_name=purchase.plan_name,
            price_rub=purchase.price_rub,
            price_usd=purchase.price_usd,
            billing_cycle=purchase.billing_cycle,
            status=purchase.status,
            payer_id=purchase.payer_id,
            payment_method=purchase.payment_method,
            invoice_number=purchase.invoice_number,
            transaction_id=purchase.transaction_id,
            login=purchase.login,
            payment_url=purchase.payment_url,
            create_new_account=purchase.create_new_account,
            purchased_at=purchase.purchased_at,
            paid_at=purchase.paid_at,
            cancelled_at=purchase.cancelled_at,
            next_payment_date=purchase.next_payment_date(now) if now else None,
        )


class PurchaseListResponse(BaseModel):
    purchases: List[PurchaseResponse]

    model_config = ConfigDict(populate_by_name=True)


class InvoiceSummary(BaseModel):
    number: str
    issued_at: datetime = Field(alias="issuedAt")
    due_date: date = Field(alias="dueDate")
    payer_id: str = Field(alias="payerId")
    total_rub: int = Field(alias="totalRub")
    filename: str

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_invoice(cls, invoice: InvoiceDocument) -> "InvoiceSummary":
        return cls(
            number=invoice.number,
            issued_at=invoice.issued_at,
            due_date=invoice.due_date,
            payer_id=invoice.payer_id,
            total_rub=invoice.total_rub,
            filename=invoice.filename,
        )


class CheckoutResponse(BaseModel):
    purchases: List[PurchaseResponse]
    transactions: List[TransactionResponse] = Field(default_factory=list)
    invoice: Optional[InvoiceSummary] = None
    payer: PayerResponse
    total_rub: int = Field(alias="totalRub")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: CheckoutResult) -> "CheckoutResponse":
        return cls(
            purchases=[PurchaseResponse.from_purchase(purchase) for purchase in result.purchases],
            transactions=[TransactionResponse.from_transaction(txn) for txn in result.transactions],
            invoice=InvoiceSummary.from_invoice(result.invoice) if result.invoice else None,
            payer=PayerResponse.from_payer(result.payer),
            total_rub=result.total_rub,
        )


__all__ = [
    "CheckoutRequest",
    "CheckoutResponse",
    "InvoiceSummary",
    "PurchaseListResponse",
    "PurchaseResponse",
]
