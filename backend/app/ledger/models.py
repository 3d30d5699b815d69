"""Domain models for payers and their transaction log."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

KOPECK = Decimal("0.01")


def to_money(value: object) -> Decimal:
    """Normalize an amount to a two-place RUB decimal."""

    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(KOPECK)


class PayerType(str, Enum):
    """Billing identity variants."""

    COMPANY = "company"
    INDIVIDUAL = "individual"


class TransactionKind(str, Enum):
    """Direction of a ledger entry; amounts are always positive."""

    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    PURCHASE = "purchase"

    @property
    def is_credit(self) -> bool:
        return self == TransactionKind.DEPOSIT


class CompanyDetails(BaseModel):
    """Legal identity of a company payer."""

    name: str
    inn: Optional[str] = Field(default=None, description="Taxpayer identification number")
    kpp: Optional[str] = Field(default=None, description="Tax registration reason code")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class IndividualDetails(BaseModel):
    """Personal identity of an individual payer."""

    first_name: str = ""
    last_name: str
    document_number: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PaymentMethodDescriptor(BaseModel):
    """Named payment method shown to the payer."""

    name: str
    description: str = ""
    is_default: bool = False

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PayerCreate(BaseModel):
    """Input for creating a payer; identity fields are validated by the service."""

    payer_type: PayerType
    company: Optional[CompanyDetails] = None
    individual: Optional[IndividualDetails] = None
    initial_balance: Decimal = Decimal("0")
    payment_methods: Tuple[PaymentMethodDescriptor, ...] = Field(default_factory=tuple)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Payer(BaseModel):
    """A billing identity holding a RUB balance."""

    id: str
    payer_type: PayerType
    company: Optional[CompanyDetails] = None
    individual: Optional[IndividualDetails] = None
    balance: Decimal
    initial_balance: Decimal
    payment_methods: Tuple[PaymentMethodDescriptor, ...] = Field(default_factory=tuple)
    services: Tuple[str, ...] = Field(default_factory=tuple)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("balance", "initial_balance")
    @classmethod
    def _quantize(cls, value: Decimal) -> Decimal:
        return to_money(value)

    @model_validator(mode="after")
    def _check_variant(self) -> "Payer":
        if self.payer_type == PayerType.COMPANY and self.company is None:
            raise ValueError("company payers require company details")
        if self.payer_type == PayerType.INDIVIDUAL and self.individual is None:
            raise ValueError("individual payers require individual details")
        return self

    @property
    def is_company(self) -> bool:
        return self.payer_type == PayerType.COMPANY

    @property
    def display_name(self) -> str:
        if self.is_company and self.company is not None:
            return self.company.name
        if self.individual is None:
            return self.id
        return " ".join(part for part in (self.individual.last_name, self.individual.first_name) if part)

    @property
    def default_payment_method(self) -> Optional[PaymentMethodDescriptor]:
        for method in self.payment_methods:
            if method.is_default:
                return method
        return self.payment_methods[0] if self.payment_methods else None


class Transaction(BaseModel):
    """Immutable ledger entry owned by a payer."""

    id: str
    payer_id: str
    kind: TransactionKind
    amount: Decimal = Field(gt=0)
    comment: str = ""
    service_id: Optional[str] = None
    service_name: Optional[str] = None
    balance_after: Optional[Decimal] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("amount")
    @classmethod
    def _quantize_amount(cls, value: Decimal) -> Decimal:
        return to_money(value)

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.kind.is_credit else -self.amount


class LedgerEntry(BaseModel):
    """Result of a balance mutation: the appended transaction and the updated payer."""

    transaction: Transaction
    payer: Payer

    model_config = ConfigDict(frozen=True)

    @property
    def balance(self) -> Decimal:
        return self.payer.balance


class LedgerStatement(BaseModel):
    """Totals per transaction kind for a payer."""

    payer_id: str
    initial_balance: Decimal
    balance: Decimal
    totals: Dict[TransactionKind, Decimal]
    transaction_count: int

    model_config = ConfigDict(frozen=True)

    @property
    def replayed_balance(self) -> Decimal:
        return (
            self.initial_balance
            + self.totals.get(TransactionKind.DEPOSIT, Decimal("0"))
            - self.totals.get(TransactionKind.WITHDRAWAL, Decimal("0"))
            - self.totals.get(TransactionKind.PURCHASE, Decimal("0"))
        )

    @property
    def is_consistent(self) -> bool:
        return self.replayed_balance == self.balance
