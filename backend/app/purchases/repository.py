"""Persistence layer for purchases and issued invoices."""
from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Collection, Dict, Iterable, List, Optional, Sequence

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..catalog import BillingCycle
from ..invoicing import InvoiceDocument, InvoiceLine
from ..ledger.repository import managed_connection
from .models import PaymentMethod, Purchase, PurchaseStatus


def _row_to_purchase(row: dict) -> Purchase:
    return Purchase(
        id=row["id"],
        service_id=row["service_id"],
        service_name=row["service_name"],
        plan_name=row["plan_name"],
        price_rub=int(row["price_rub"]),
        price_usd=row["price_usd"],
        billing_cycle=BillingCycle(row["billing_cycle"]),
        status=PurchaseStatus(row["status"]),
        payer_id=row["payer_id"],
        payment_method=PaymentMethod(row["payment_method"]),
        invoice_number=row.get("invoice_number"),
        transaction_id=row.get("transaction_id"),
        login=row.get("login"),
        password=row.get("password"),
        payment_url=row.get("payment_url"),
        create_new_account=bool(row.get("create_new_account")),
        purchased_at=row["purchased_at"],
        paid_at=row.get("paid_at"),
        cancelled_at=row.get("cancelled_at"),
    )


def _row_to_invoice(row: dict) -> InvoiceDocument:
    return InvoiceDocument(
        number=row["number"],
        issued_at=row["issued_at"],
        due_date=row["due_date"],
        payer_id=row["payer_id"],
        payer_name=row["payer_name"],
        payer_inn=row.get("payer_inn"),
        payer_kpp=row.get("payer_kpp"),
        lines=tuple(InvoiceLine(**line) for line in row.get("lines") or []),
        total_rub=int(row["total_rub"]),
        text=row["text"],
    )


def _purchase_params(purchase: Purchase) -> dict:
    return {
        "id": purchase.id,
        "service_id": purchase.service_id,
        "service_name": purchase.service_name,
        "plan_name": purchase.plan_name,
        "price_rub": purchase.price_rub,
        "price_usd": purchase.price_usd,
        "billing_cycle": purchase.billing_cycle.value,
        "status": purchase.status.value,
        "payer_id": purchase.payer_id,
        "payment_method": purchase.payment_method.value,
        "invoice_number": purchase.invoice_number,
        "transaction_id": purchase.transaction_id,
        "login": purchase.login,
        "password": purchase.password,
        "payment_url": purchase.payment_url,
        "create_new_account": purchase.create_new_account,
        "purchased_at": purchase.purchased_at,
        "paid_at": purchase.paid_at,
        "cancelled_at": purchase.cancelled_at,
    }


class PostgresPurchaseRepository:
    """Concrete repository persisting purchases and invoices in PostgreSQL."""

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

    def save_purchases(self, purchases: Sequence[Purchase]) -> List[Purchase]:
        """Insert a checkout batch in a single database transaction."""

        stored: List[Purchase] = []
        with self._cursor() as cursor:
            for purchase in purchases:
                cursor.execute(
                    """
                    INSERT INTO marketplace_purchases (
                        id,
                        service_id,
                        service_name,
                        plan_name,
                        price_rub,
                        price_usd,
                        billing_cycle,
                        status,
                        payer_id,
                        payment_method,
                        invoice_number,
                        transaction_id,
                        login,
                        password,
                        payment_url,
                        create_new_account,
                        purchased_at,
                        paid_at,
                        cancelled_at
                    )
                    VALUES (%(id)s, %(service_id)s, %(service_name)s, %(plan_name)s,
                            %(price_rub)s, %(price_usd)s, %(billing_cycle)s, %(status)s,
                            %(payer_id)s, %(payment_method)s, %(invoice_number)s,
                            %(transaction_id)s, %(login)s, %(password)s, %(payment_url)s,
                            %(create_new_account)s, %(purchased_at)s, %(paid_at)s,
                            %(cancelled_at)s)
                    RETURNING *
                    """,
                    _purchase_params(purchase),
                )
                row = cursor.fetchone()
                if not row:
                    raise RuntimeError("Failed to persist purchase")
                stored.append(_row_to_purchase(row))
        return stored

    def get_purchase(self, purchase_id: str) -> Optional[Purchase]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM marketplace_purchases
                WHERE id = %s
                LIMIT 1
                """,
                (purchase_id,),
            )
            row = cursor.fetchone()
            return _row_to_purchase(row) if row else None

    def list_purchases(
        self,
        *,
        payer_id: Optional[str] = None,
        status: Optional[PurchaseStatus] = None,
    ) -> List[Purchase]:
        status_value = status.value if status else None
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM marketplace_purchases
                WHERE (%(payer_id)s::text IS NULL OR payer_id = %(payer_id)s)
                  AND (%(status)s::text IS NULL OR status = %(status)s)
                ORDER BY purchased_at DESC, id ASC
                """,
                {"payer_id": payer_id, "status": status_value},
            )
            rows = cursor.fetchall() or []
            return [_row_to_purchase(row) for row in rows]

    def transition_status(
        self,
        purchase_id: str,
        *,
        from_statuses: Collection[PurchaseStatus],
        to_status: PurchaseStatus,
        at: datetime,
    ) -> Optional[Purchase]:
        """Move a purchase to ``to_status`` only if it is currently in ``from_statuses``."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE marketplace_purchases
                SET status = %(to_status)s,
                    paid_at = CASE WHEN %(to_status)s = 'active' THEN %(at)s ELSE paid_at END,
                    cancelled_at = CASE WHEN %(to_status)s = 'cancelled' THEN %(at)s ELSE cancelled_at END
                WHERE id = %(purchase_id)s AND status = ANY(%(from_statuses)s)
                RETURNING *
                """,
                {
                    "to_status": to_status.value,
                    "at": at,
                    "purchase_id": purchase_id,
                    "from_statuses": [status.value for status in from_statuses],
                },
            )
            row = cursor.fetchone()
            return _row_to_purchase(row) if row else None

    def save_invoice(self, invoice: InvoiceDocument) -> InvoiceDocument:
        """Store a newly issued invoice; an existing number is never overwritten."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO marketplace_invoices (
                    number,
                    issued_at,
                    due_date,
                    payer_id,
                    payer_name,
                    payer_inn,
                    payer_kpp,
                    lines,
                    total_rub,
                    text
                )
                VALUES (%(number)s, %(issued_at)s, %(due_date)s, %(payer_id)s, %(payer_name)s,
                        %(payer_inn)s, %(payer_kpp)s, %(lines)s, %(total_rub)s, %(text)s)
                ON CONFLICT (number) DO NOTHING
                RETURNING *
                """,
                {
                    "number": invoice.number,
                    "issued_at": invoice.issued_at,
                    "due_date": invoice.due_date,
                    "payer_id": invoice.payer_id,
                    "payer_name": invoice.payer_name,
                    "payer_inn": invoice.payer_inn,
                    "payer_kpp": invoice.payer_kpp,
                    "lines": psycopg2.extras.Json([line.model_dump(mode="json") for line in invoice.lines]),
                    "total_rub": invoice.total_rub,
                    "text": invoice.text,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError(f"Invoice {invoice.number} already exists")
            return _row_to_invoice(row)

    def get_invoice(self, number: str) -> Optional[InvoiceDocument]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM marketplace_invoices
                WHERE number = %s
                LIMIT 1
                """,
                (number,),
            )
            row = cursor.fetchone()
            return _row_to_invoice(row) if row else None


class InMemoryPurchaseRepository:
    """Dictionary backed repository suitable for tests and local development."""

    def __init__(self) -> None:
        self.purchases: Dict[str, Purchase] = {}
        self.invoices: Dict[str, InvoiceDocument] = {}
        self._lock = threading.Lock()

    def save_purchases(self, purchases: Sequence[Purchase]) -> List[Purchase]:
        with self._lock:
            for purchase in purchases:
                self.purchases[purchase.id] = purchase
        return list(purchases)

    def get_purchase(self, purchase_id: str) -> Optional[Purchase]:
        return self.purchases.get(purchase_id)

    def list_purchases(
        self,
        *,
        payer_id: Optional[str] = None,
        status: Optional[PurchaseStatus] = None,
    ) -> List[Purchase]:
        matching = [
            purchase
            for purchase in list(self.purchases.values())
            if (payer_id is None or purchase.payer_id == payer_id)
            and (status is None or purchase.status == status)
        ]
        return sorted(matching, key=lambda purchase: purchase.purchased_at, reverse=True)

    def transition_status(
        self,
        purchase_id: str,
        *,
        from_statuses: Collection[PurchaseStatus],
        to_status: PurchaseStatus,
        at: datetime,
    ) -> Optional[Purchase]:
        with self._lock:
            purchase = self.purchases.get(purchase_id)
            if purchase is None or purchase.status not in from_statuses:
                return None
            update: Dict[str, object] = {"status": to_status}
            if to_status == PurchaseStatus.ACTIVE:
                update["paid_at"] = at
            elif to_status == PurchaseStatus.CANCELLED:
                update["cancelled_at"] = at
            updated = purchase.model_copy(update=update)
            self.purchases[purchase_id] = updated
            return updated

    def save_invoice(self, invoice: InvoiceDocument) -> InvoiceDocument:
        with self._lock:
            if invoice.number in self.invoices:
                raise RuntimeError(f"Invoice {invoice.number} already exists")
            self.invoices[invoice.number] = invoice
        return invoice

    def get_invoice(self, number: str) -> Optional[InvoiceDocument]:
        return self.invoices.get(number)


__all__ = ["InMemoryPurchaseRepository", "PostgresPurchaseRepository"]
