"""Ledger service: the single authority for payer balances and the transaction log."""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, ContextManager, Dict, Iterator, Optional, Protocol, Sequence
from uuid import uuid4

from ..audit import AuditEvent, AuditEventType, AuditLogger
from ..errors import InsufficientFundsError, NotFoundError, ValidationError
from .models import (
    LedgerEntry,
    LedgerStatement,
    Payer,
    PayerCreate,
    PayerType,
    Transaction,
    TransactionKind,
    to_money,
)

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")


class LedgerRepository(Protocol):
    """Persistence operations required by the ledger service."""

    def create_payer(self, payer: Payer) -> Payer:
        ...

    def get_payer(self, payer_id: str) -> Optional[Payer]:
        ...

    def list_payers(self) -> Sequence[Payer]:
        ...

    def apply_transaction(self, transaction: Transaction) -> Optional[LedgerEntry]:
        ...

    def list_transactions(
        self,
        payer_id: str,
        *,
        kind: Optional[TransactionKind] = None,
    ) -> Sequence[Transaction]:
        ...

    def add_services(self, payer_id: str, service_ids: Sequence[str]) -> Optional[Payer]:
        ...

    def atomic(self, payer_id: str) -> ContextManager[None]:
        ...


class PayerLockRegistry:
    """Hands out one re-entrant lock per payer id."""

    def __init__(self) -> None:
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def get(self, payer_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(payer_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[payer_id] = lock
            return lock


def _current_time(clock: Optional[Callable[[], datetime]]) -> datetime:
    if clock is None:
        return datetime.now(timezone.utc)
    value = clock()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_amount(amount: object, *, field_name: str = "amount") -> Decimal:
    try:
        value = to_money(amount)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationError(f"{field_name} must be a number", field=field_name) from exc
    if not value.is_finite():
        raise ValidationError(f"{field_name} must be a finite number", field=field_name)
    return value


@dataclass
class LedgerService:
    """Coordinates payer creation and serialized balance mutations."""

    repository: LedgerRepository
    audit_logger: AuditLogger
    clock: Optional[Callable[[], datetime]] = None
    locks: PayerLockRegistry = field(default_factory=PayerLockRegistry)

    @contextmanager
    def payer_lock(self, payer_id: str) -> Iterator[None]:
        """Serialize balance-mutating work for a single payer.

        Everything written inside the block commits together or not at all.
        """

        with self.locks.get(payer_id):
            with self.repository.atomic(payer_id):
                yield

    def create_payer(self, request: PayerCreate) -> Payer:
        if request.payer_type == PayerType.COMPANY:
            if request.company is None or not request.company.name.strip():
                raise ValidationError("Company name is required", field="company.name")
        elif request.individual is None or not request.individual.last_name.strip():
            raise ValidationError("Last name is required", field="individual.last_name")

        initial_balance = _parse_amount(request.initial_balance, field_name="initial_balance")
        if initial_balance < _ZERO:
            raise ValidationError("Initial balance cannot be negative", field="initial_balance")

        now = _current_time(self.clock)
        payer = Payer(
            id=f"payer_{uuid4().hex}",
            payer_type=request.payer_type,
            company=request.company if request.payer_type == PayerType.COMPANY else None,
            individual=request.individual if request.payer_type == PayerType.INDIVIDUAL else None,
            balance=initial_balance,
            initial_balance=initial_balance,
            payment_methods=request.payment_methods,
            created_at=now,
            updated_at=now,
        )
        stored = self.repository.create_payer(payer)
        self.audit_logger.log(
            AuditEvent(
                event_type=AuditEventType.PAYER_CREATED,
                payer_id=stored.id,
                amount=stored.balance,
                metadata={"payer_type": stored.payer_type.value},
                occurred_at=now,
            )
        )
        return stored

    def get_payer(self, payer_id: str) -> Payer:
        payer = self.repository.get_payer(payer_id)
        if payer is None:
            raise NotFoundError("Payer", payer_id)
        return payer

    def list_payers(self) -> Sequence[Payer]:
        return self.repository.list_payers()

    def deposit(self, payer_id: str, amount: object, method_label: str) -> LedgerEntry:
        value = self._require_positive(amount)
        with self.payer_lock(payer_id):
            self.get_payer(payer_id)
            entry = self._append(
                payer_id,
                TransactionKind.DEPOSIT,
                value,
                comment=f"Deposit via {method_label}",
            )
        self._log(AuditEventType.FUNDS_DEPOSITED, entry, method=method_label)
        return entry

    def withdraw(self, payer_id: str, amount: object, method_label: str) -> LedgerEntry:
        value = self._require_positive(amount)
        with self.payer_lock(payer_id):
            self._ensure_funds(self.get_payer(payer_id), value)
            entry = self._append(
                payer_id,
                TransactionKind.WITHDRAWAL,
                value,
                comment=f"Withdrawal via {method_label}",
            )
        self._log(AuditEventType.FUNDS_WITHDRAWN, entry, method=method_label)
        return entry

    def debit_for_purchase(
        self,
        payer_id: str,
        amount: object,
        *,
        service_id: Optional[str],
        service_name: Optional[str],
        comment: str,
    ) -> LedgerEntry:
        """Debit the balance for a purchase settled from the internal balance."""

        value = self._require_positive(amount)
        with self.payer_lock(payer_id):
            self._ensure_funds(self.get_payer(payer_id), value)
            entry = self._append(
                payer_id,
                TransactionKind.PURCHASE,
                value,
                comment=comment,
                service_id=service_id,
                service_name=service_name,
            )
        self._log(AuditEventType.PURCHASE_DEBITED, entry, service_id=service_id or "")
        return entry

    def ensure_funds(self, payer_id: str, amount: object) -> Payer:
        """Raise :class:`InsufficientFundsError` unless the payer can cover ``amount``.

        Callers that act on the answer must hold :meth:`payer_lock`.
        """

        payer = self.get_payer(payer_id)
        self._ensure_funds(payer, _parse_amount(amount))
        return payer

    def record_services(self, payer_id: str, service_ids: Sequence[str]) -> Payer:
        if not service_ids:
            return self.get_payer(payer_id)
        updated = self.repository.add_services(payer_id, service_ids)
        if updated is None:
            raise NotFoundError("Payer", payer_id)
        return updated

    def list_transactions(
        self,
        payer_id: str,
        *,
        kind: Optional[TransactionKind] = None,
    ) -> Sequence[Transaction]:
        self.get_payer(payer_id)
        return self.repository.list_transactions(payer_id, kind=kind)

    def statement(self, payer_id: str) -> LedgerStatement:
        payer = self.get_payer(payer_id)
        transactions = self.repository.list_transactions(payer_id)
        totals: Dict[TransactionKind, Decimal] = {kind: _ZERO for kind in TransactionKind}
        for transaction in transactions:
            totals[transaction.kind] += transaction.amount
        return LedgerStatement(
            payer_id=payer.id,
            initial_balance=payer.initial_balance,
            balance=payer.balance,
            totals=totals,
            transaction_count=len(transactions),
        )

    def replay_balance(self, payer_id: str) -> Decimal:
        """Recompute the balance from the initial balance and the transaction log."""

        return self.statement(payer_id).replayed_balance

    def _require_positive(self, amount: object) -> Decimal:
        value = _parse_amount(amount)
        if value <= _ZERO:
            raise ValidationError("Amount must be greater than zero", field="amount")
        return value

    def _ensure_funds(self, payer: Payer, amount: Decimal) -> None:
        if amount > payer.balance:
            logger.info(
                "Insufficient funds payer=%s balance=%s required=%s",
                payer.id,
                payer.balance,
                amount,
            )
            raise InsufficientFundsError(payer.id, required=amount, available=payer.balance)

    def _append(
        self,
        payer_id: str,
        kind: TransactionKind,
        amount: Decimal,
        *,
        comment: str,
        service_id: Optional[str] = None,
        service_name: Optional[str] = None,
    ) -> LedgerEntry:
        transaction = Transaction(
            id=f"txn_{uuid4().hex}",
            payer_id=payer_id,
            kind=kind,
            amount=amount,
            comment=comment,
            service_id=service_id,
            service_name=service_name,
            created_at=_current_time(self.clock),
        )
        entry = self.repository.apply_transaction(transaction)
        if entry is None:
            # Another writer outside this process changed the balance first.
            payer = self.get_payer(payer_id)
            raise InsufficientFundsError(payer.id, required=amount, available=payer.balance)
        return entry

    def _log(self, event_type: AuditEventType, entry: LedgerEntry, **metadata: str) -> None:
        self.audit_logger.log(
            AuditEvent(
                event_type=event_type,
                payer_id=entry.payer.id,
                amount=entry.transaction.amount,
                metadata={"transaction_id": entry.transaction.id, **metadata},
                occurred_at=entry.transaction.created_at,
            )
        )


__all__ = ["LedgerRepository", "LedgerService", "PayerLockRegistry"]
