"""API schemas for payer and ledger endpoints."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..ledger import (
    CompanyDetails,
    IndividualDetails,
    LedgerEntry,
    LedgerStatement,
    Payer,
    PayerCreate,
    PayerType,
    PaymentMethodDescriptor,
    Transaction,
    TransactionKind,
)


class CompanyDetailsPayload(BaseModel):
    name: str = ""
    inn: Optional[str] = None
    kpp: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class IndividualDetailsPayload(BaseModel):
    first_name: str = Field(alias="firstName", default="")
    last_name: str = Field(alias="lastName", default="")
    document_number: Optional[str] = Field(alias="documentNumber", default=None)

    model_config = ConfigDict(populate_by_name=True)


class PaymentMethodPayload(BaseModel):
    name: str
    description: str = ""
    is_default: bool = Field(alias="isDefault", default=False)

    model_config = ConfigDict(populate_by_name=True)


class PayerCreateRequest(BaseModel):
    payer_type: PayerType = Field(alias="type")
    company: Optional[CompanyDetailsPayload] = None
    individual: Optional[IndividualDetailsPayload] = None
    initial_balance: Decimal = Field(alias="initialBalance", default=Decimal("0"))
    payment_methods: List[PaymentMethodPayload] = Field(alias="paymentMethods", default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    def to_domain(self) -> PayerCreate:
        company = (
            CompanyDetails(name=self.company.name, inn=self.company.inn, kpp=self.company.kpp)
            if self.company
            else None
        )
        individual = (
            IndividualDetails(
                first_name=self.individual.first_name,
                last_name=self.individual.last_name,
                document_number=self.individual.document_number,
            )
            if self.individual
            else None
        )
        return PayerCreate(
            payer_type=self.payer_type,
            company=company,
            individual=individual,
            initial_balance=self.initial_balance,
            payment_methods=tuple(
                PaymentMethodDescriptor(
                    name=method.name,
                    description=method.description,
                    is_default=method.is_default,
                )
                for method in self.payment_methods
            ),
        )


class PayerResponse(BaseModel):
    id: str
    payer_type: PayerType = Field(alias="type")
    display_name: str = Field(alias="displayName")
    company: Optional[CompanyDetailsPayload] = None
    individual: Optional[IndividualDetailsPayload] = None
    balance: Decimal
    initial_balance: Decimal = Field(alias="initialBalance")
    payment_methods: List[PaymentMethodPayload] = Field(alias="paymentMethods", default_factory=list)
    services: List[str] = Field(default_factory=list)
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_payer(cls, payer: Payer) -> "PayerResponse":
        return cls(
            id=payer.id,
            payer_type=payer.payer_type,
            display_name=payer.display_name,
            company=CompanyDetailsPayload(**payer.company.model_dump()) if payer.company else None,
            individual=IndividualDetailsPayload(**payer.individual.model_dump()) if payer.individual else None,
            balance=payer.balance,
            initial_balance=payer.initial_balance,
            payment_methods=[PaymentMethodPayload(**method.model_dump()) for method in payer.payment_methods],
            services=list(payer.services),
            created_at=payer.created_at,
            updated_at=payer.updated_at,
        )


class PayerListResponse(BaseModel):
    payers: List[PayerResponse]

    model_config = ConfigDict(populate_by_name=True)


class FundsRequest(BaseModel):
    amount: Decimal
    method: str = Field(default="card", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class TransactionResponse(BaseModel):
    id: str
    payer_id: str = Field(alias="payerId")
    kind: TransactionKind = Field(alias="type")
    amount: Decimal
    comment: str = ""
    service_id: Optional[str] = Field(alias="serviceId", default=None)
    service_name: Optional[str] = Field(alias="serviceName", default=None)
    balance_after: Optional[Decimal] = Field(alias="balanceAfter", default=None)
    created_at: datetime = Field(alias="date")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> "TransactionResponse":
        return cls(
            id=transaction.id,
            payer_id=transaction.payer_id,
            kind=transaction.kind,
            amount=transaction.amount,
            comment=transaction.comment,
            service_id=transaction.service_id,
            service_name=transaction.service_name,
            balance_after=transaction.balance_after,
            created_at=transaction.created_at,
        )


class TransactionListResponse(BaseModel):
    transactions: List[TransactionResponse]

    model_config = ConfigDict(populate_by_name=True)


class LedgerEntryResponse(BaseModel):
    transaction: TransactionResponse
    payer: PayerResponse

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_entry(cls, entry: LedgerEntry) -> "LedgerEntryResponse":
        return cls(
            transaction=TransactionResponse.from_transaction(entry.transaction),
            payer=PayerResponse.from_payer(entry.payer),
        )


class StatementResponse(BaseModel):
    payer_id: str = Field(alias="payerId")
    initial_balance: Decimal = Field(alias="initialBalance")
    balance: Decimal
    totals: Dict[str, Decimal]
    transaction_count: int = Field(alias="transactionCount")
    consistent: bool

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_statement(cls, statement: LedgerStatement) -> "StatementResponse":
        return cls(
            payer_id=statement.payer_id,
            initial_balance=statement.initial_balance,
            balance=statement.balance,
            totals={kind.value: amount for kind, amount in statement.totals.items()},
            transaction_count=statement.transaction_count,
            consistent=statement.is_consistent,
        )


__all__ = [
    "FundsRequest",
    "LedgerEntryResponse",
    "PayerCreateRequest",
    "PayerListResponse",
    "PayerResponse",
    "StatementResponse",
    "TransactionListResponse",
    "TransactionResponse",
]
