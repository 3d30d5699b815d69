"""Persistence layer for payers and the transaction log."""
from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from .models import (
    CompanyDetails,
    IndividualDetails,
    LedgerEntry,
    Payer,
    PayerType,
    PaymentMethodDescriptor,
    Transaction,
    TransactionKind,
)

try:  # pragma: no cover - resolve connection helper when imported from FastAPI app
    from backend.app_context import get_conn
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ...app_context import get_conn  # type: ignore[no-redef]


_scope = threading.local()


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections.

    Inside :func:`transaction_scope` the scope's connection is reused and left
    uncommitted so every repository call joins the same database transaction.
    """

    if conn is None:
        conn = getattr(_scope, "connection", None)
    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


@contextmanager
def transaction_scope(conn: Optional[PgConnection] = None) -> Iterator[PgConnection]:
    """Bind one connection to the current thread for the duration of the block.

    Nested scopes join the outer one. The outermost scope commits on success and
    rolls back if the block raises.
    """

    with managed_connection(conn) as (connection, managed):
        if not managed:
            yield connection
            return
        _scope.connection = connection
        try:
            yield connection
        finally:
            _scope.connection = None


def _row_to_payer(row: dict) -> Payer:
    company = row.get("company")
    individual = row.get("individual")
    return Payer(
        id=row["id"],
        payer_type=PayerType(row["payer_type"]),
        company=CompanyDetails(**company) if company else None,
        individual=IndividualDetails(**individual) if individual else None,
        balance=row["balance"],
        initial_balance=row["initial_balance"],
        payment_methods=tuple(PaymentMethodDescriptor(**item) for item in row.get("payment_methods") or []),
        services=tuple(row.get("services") or ()),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_transaction(row: dict) -> Transaction:
    return Transaction(
        id=row["id"],
        payer_id=row["payer_id"],
        kind=TransactionKind(row["kind"]),
        amount=row["amount"],
        comment=row.get("comment") or "",
        service_id=row.get("service_id"),
        service_name=row.get("service_name"),
        balance_after=row.get("balance_after"),
        created_at=row["created_at"],
    )


class PostgresLedgerRepository:
    """Concrete repository persisting payers and transactions in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()

    @contextmanager
    def atomic(self, payer_id: str) -> Iterator[None]:
        """Run the block in one database transaction holding the payer row lock."""

        with transaction_scope(self._conn):
            with self._cursor() as cursor:
                cursor.execute(
                    """
                    SELECT id
                    FROM marketplace_payers
                    WHERE id = %s
                    FOR UPDATE
                    """,
                    (payer_id,),
                )
            yield

    def create_payer(self, payer: Payer) -> Payer:
        """Insert a new payer record."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO marketplace_payers (
                    id,
                    payer_type,
                    company,
                    individual,
                    balance,
                    initial_balance,
                    payment_methods,
                    services,
                    created_at,
                    updated_at
                )
                VALUES (%(id)s, %(payer_type)s, %(company)s, %(individual)s, %(balance)s,
                        %(initial_balance)s, %(payment_methods)s, %(services)s,
                        %(created_at)s, %(updated_at)s)
                RETURNING *
                """,
                {
                    "id": payer.id,
                    "payer_type": payer.payer_type.value,
                    "company": psycopg2.extras.Json(payer.company.model_dump()) if payer.company else None,
                    "individual": psycopg2.extras.Json(payer.individual.model_dump()) if payer.individual else None,
                    "balance": payer.balance,
                    "initial_balance": payer.initial_balance,
                    "payment_methods": psycopg2.extras.Json([method.model_dump() for method in payer.payment_methods]),
                    "services": psycopg2.extras.Json(list(payer.services)),
                    "created_at": payer.created_at,
                    "updated_at": payer.updated_at,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist payer")
            return _row_to_payer(row)

    def get_payer(self, payer_id: str) -> Optional[Payer]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM marketplace_payers
                WHERE id = %s
                LIMIT 1
                """,
                (payer_id,),
            )
            row = cursor.fetchone()
            return _row_to_payer(row) if row else None

    def list_payers(self) -> List[Payer]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM marketplace_payers
                ORDER BY created_at ASC
                """
            )
            rows = cursor.fetchall() or []
            return [_row_to_payer(row) for row in rows]

    def apply_transaction(self, transaction: Transaction) -> Optional[LedgerEntry]:
        """Adjust the payer balance and append the transaction in one database transaction.

        Returns ``None`` when the payer does not exist or the adjustment would
        leave a negative balance; nothing is written in that case.
        """

        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE marketplace_payers
                SET balance = balance + %(delta)s,
                    updated_at = NOW()
                WHERE id = %(payer_id)s AND balance + %(delta)s >= 0
                RETURNING *
                """,
                {"delta": transaction.signed_amount, "payer_id": transaction.payer_id},
            )
            payer_row = cursor.fetchone()
            if not payer_row:
                return None
            payer = _row_to_payer(payer_row)
            cursor.execute(
                """
                INSERT INTO marketplace_transactions (
                    id,
                    payer_id,
                    kind,
                    amount,
                    comment,
                    service_id,
                    service_name,
                    balance_after,
                    created_at
                )
                VALUES (%(id)s, %(payer_id)s, %(kind)s, %(amount)s, %(comment)s,
                        %(service_id)s, %(service_name)s, %(balance_after)s, %(created_at)s)
                RETURNING *
                """,
                {
                    "id": transaction.id,
                    "payer_id": transaction.payer_id,
                    "kind": transaction.kind.value,
                    "amount": transaction.amount,
                    "comment": transaction.comment,
                    "service_id": transaction.service_id,
                    "service_name": transaction.service_name,
                    "balance_after": payer.balance,
                    "created_at": transaction.created_at,
                },
            )
            transaction_row = cursor.fetchone()
            if not transaction_row:
                raise RuntimeError("Failed to persist transaction")
            return LedgerEntry(transaction=_row_to_transaction(transaction_row), payer=payer)

    def list_transactions(
        self,
        payer_id: str,
        *,
        kind: Optional[TransactionKind] = None,
    ) -> List[Transaction]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM marketplace_transactions
                WHERE payer_id = %s AND (%s::text IS NULL OR kind = %s)
                ORDER BY created_at ASC, id ASC
                """,
                (payer_id, kind.value if kind else None, kind.value if kind else None),
            )
            rows = cursor.fetchall() or []
            return [_row_to_transaction(row) for row in rows]

    def add_services(self, payer_id: str, service_ids: Sequence[str]) -> Optional[Payer]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE marketplace_payers
                SET services = (
                        SELECT COALESCE(jsonb_agg(DISTINCT value ORDER BY value), '[]'::jsonb)
                        FROM jsonb_array_elements_text(services || %s::jsonb) AS value
                    ),
                    updated_at = NOW()
                WHERE id = %s
                RETURNING *
                """,
                (psycopg2.extras.Json(list(service_ids)), payer_id),
            )
            row = cursor.fetchone()
            return _row_to_payer(row) if row else None


class InMemoryLedgerRepository:
    """Dictionary backed repository suitable for tests and local development."""

    def __init__(self) -> None:
        self.payers: Dict[str, Payer] = {}
        self.transactions: List[Transaction] = []
        self._lock = threading.RLock()

    @contextmanager
    def atomic(self, payer_id: str) -> Iterator[None]:
        """Hold the store lock and undo every write made in the block if it raises."""

        with self._lock:
            payers = dict(self.payers)
            logged = len(self.transactions)
            try:
                yield
            except Exception:
                self.payers.clear()
                self.payers.update(payers)
                del self.transactions[logged:]
                raise

    def create_payer(self, payer: Payer) -> Payer:
        with self._lock:
            if payer.id in self.payers:
                raise RuntimeError(f"Payer {payer.id} already exists")
            self.payers[payer.id] = payer
        return payer

    def get_payer(self, payer_id: str) -> Optional[Payer]:
        return self.payers.get(payer_id)

    def list_payers(self) -> List[Payer]:
        return sorted(self.payers.values(), key=lambda payer: payer.created_at)

    def apply_transaction(self, transaction: Transaction) -> Optional[LedgerEntry]:
        with self._lock:
            payer = self.payers.get(transaction.payer_id)
            if payer is None:
                return None
            new_balance = payer.balance + transaction.signed_amount
            if new_balance < Decimal("0"):
                return None
            updated = payer.model_copy(
                update={"balance": new_balance, "updated_at": datetime.now(timezone.utc)}
            )
            stored = transaction.model_copy(update={"balance_after": updated.balance})
            self.payers[updated.id] = updated
            self.transactions.append(stored)
            return LedgerEntry(transaction=stored, payer=updated)

    def list_transactions(
        self,
        payer_id: str,
        *,
        kind: Optional[TransactionKind] = None,
    ) -> List[Transaction]:
        return [
            transaction
            for transaction in list(self.transactions)
            if transaction.payer_id == payer_id and (kind is None or transaction.kind == kind)
        ]

    def add_services(self, payer_id: str, service_ids: Sequence[str]) -> Optional[Payer]:
        with self._lock:
            payer = self.payers.get(payer_id)
            if payer is None:
                return None
            services = tuple(sorted(set(payer.services).union(service_ids)))
            updated = payer.model_copy(update={"services": services, "updated_at": datetime.now(timezone.utc)})
            self.payers[payer_id] = updated
            return updated


__all__ = ["InMemoryLedgerRepository", "PostgresLedgerRepository"]
