"""Payer ledger: balances and the append-only transaction log."""

from .models import (
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
from .service import LedgerRepository, LedgerService, PayerLockRegistry

__all__ = [
    "CompanyDetails",
    "IndividualDetails",
    "LedgerEntry",
    "LedgerRepository",
    "LedgerService",
    "LedgerStatement",
    "Payer",
    "PayerCreate",
    "PayerLockRegistry",
    "PayerType",
    "PaymentMethodDescriptor",
    "Transaction",
    "TransactionKind",
]
