"""Purchase lifecycle: the single-plan flow, batch checkout, and status changes."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Collection, List, Optional, Protocol, Sequence, Tuple
from uuid import uuid4

from ..audit import AuditEvent, AuditEventType, AuditLogger
from ..cart import CartItem, CredentialsUpdate
from ..catalog import AiService, BillingCycle
from ..errors import (
    InsufficientFundsError,
    InvoiceNotApplicableError,
    NoPayerSelectedError,
    NotFoundError,
    ValidationError,
)
from ..invoicing import InvoiceDocument, InvoiceLine, InvoiceSeller, generate_invoice, invoice_number
from ..ledger import LedgerService, Payer, Transaction
from ..pricing import DEFAULT_PRICING, PricingConfig, usd_to_rub
from .models import (
    CheckoutResult,
    CheckoutStage,
    PaymentMethod,
    Purchase,
    PurchaseDraft,
    PurchaseStatus,
)

logger = logging.getLogger(__name__)


class PurchaseRepository(Protocol):
    """Persistence operations required by the purchase service."""

    def save_purchases(self, purchases: Sequence[Purchase]) -> List[Purchase]:
        ...

    def get_purchase(self, purchase_id: str) -> Optional[Purchase]:
        ...

    def list_purchases(
        self,
        *,
        payer_id: Optional[str] = None,
        status: Optional[PurchaseStatus] = None,
    ) -> Sequence[Purchase]:
        ...

    def transition_status(
        self,
        purchase_id: str,
        *,
        from_statuses: Collection[PurchaseStatus],
        to_status: PurchaseStatus,
        at: datetime,
    ) -> Optional[Purchase]:
        ...

    def save_invoice(self, invoice: InvoiceDocument) -> InvoiceDocument:
        ...

    def get_invoice(self, number: str) -> Optional[InvoiceDocument]:
        ...


_CANCELLABLE = frozenset({PurchaseStatus.ACTIVE, PurchaseStatus.PENDING_PAYMENT})


def _parse_method(value: object) -> PaymentMethod:
    if isinstance(value, PaymentMethod):
        return value
    try:
        return PaymentMethod(str(value).strip().lower())
    except ValueError as exc:
        raise ValidationError(f"Unsupported payment method {value!r}", field="payment_method") from exc


@dataclass
class PurchaseService:
    """Turns staged plans into purchases and drives their status afterwards."""

    repository: PurchaseRepository
    ledger: LedgerService
    audit_logger: AuditLogger
    pricing: PricingConfig = DEFAULT_PRICING
    seller: Optional[InvoiceSeller] = None
    payment_terms_days: int = 5
    clock: Optional[Callable[[], datetime]] = None

    def _now(self) -> datetime:
        if self.clock is None:
            return datetime.now(timezone.utc)
        value = self.clock()
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    # Single-plan flow -------------------------------------------------

    def begin(self, service: AiService) -> PurchaseDraft:
        return PurchaseDraft(service=service)

    def confirm_plan(
        self,
        draft: PurchaseDraft,
        tier_index: Optional[int],
        billing_cycle: BillingCycle = BillingCycle.MONTHLY,
    ) -> PurchaseDraft:
        self._require_stage(draft, CheckoutStage.SELECTING, CheckoutStage.CONFIRMING)
        if tier_index is None:
            raise ValidationError("Choose a plan first", field="tier_index")
        tier = draft.service.tier(tier_index)
        if tier is None:
            raise ValidationError(
                f"{draft.service.name} has no pricing tier #{tier_index}",
                field="tier_index",
            )
        if not tier.is_purchasable:
            raise ValidationError(
                f"{draft.service.name} {tier.name} has no fixed price and cannot be purchased online",
                field="tier_index",
            )
        return draft.model_copy(
            update={
                "stage": CheckoutStage.CONFIRMING,
                "tier_index": tier_index,
                "billing_cycle": billing_cycle,
            }
        )

    def select_payer(self, draft: PurchaseDraft, payer_id: Optional[str]) -> PurchaseDraft:
        self._require_stage(draft, CheckoutStage.CONFIRMING, CheckoutStage.AWAITING_PAYMENT)
        if not payer_id or not payer_id.strip():
            raise NoPayerSelectedError()
        payer = self.ledger.get_payer(payer_id.strip())
        return draft.model_copy(update={"stage": CheckoutStage.AWAITING_PAYMENT, "payer_id": payer.id})

    def pay(
        self,
        draft: PurchaseDraft,
        payment_method: object,
        credentials: Optional[CredentialsUpdate] = None,
    ) -> CheckoutResult:
        """Settle the drafted plan exactly like a one-item checkout."""

        self._require_stage(draft, CheckoutStage.AWAITING_PAYMENT)
        tier_index = draft.tier_index if draft.tier_index is not None else 0
        tier = draft.service.tier(tier_index)
        if tier is None or tier.usd_amount is None:
            raise ValidationError("The drafted plan is no longer available", field="tier_index")
        item = CartItem(
            id=f"ci_{uuid4().hex}",
            service_id=draft.service.id,
            service_name=draft.service.name,
            service_color=draft.service.color,
            service_logo_url=draft.service.logo_url,
            tier_index=tier_index,
            plan_name=tier.name,
            price_usd=tier.usd_amount,
            billing_cycle=draft.billing_cycle,
            added_at=self._now(),
        )
        if credentials is not None:
            item = item.model_copy(update=credentials.changes())
        return self.checkout([item], draft.payer_id, payment_method)

    def _require_stage(self, draft: PurchaseDraft, *allowed: CheckoutStage) -> None:
        if draft.stage not in allowed:
            raise ValidationError(
                f"Step is not available while the purchase is {draft.stage.value}",
                field="stage",
            )

    # Batch checkout ---------------------------------------------------

    def checkout(
        self,
        items: Sequence[CartItem],
        payer_id: Optional[str],
        payment_method: object,
    ) -> CheckoutResult:
        if not items:
            raise ValidationError("Nothing to check out", field="items")
        if not payer_id or not payer_id.strip():
            raise NoPayerSelectedError()
        method = _parse_method(payment_method)
        payer_id = payer_id.strip()

        priced: List[Tuple[CartItem, int]] = [
            (item, usd_to_rub(item.price_usd, self.pricing)) for item in items
        ]
        total = sum(price for _, price in priced)

        with self.ledger.payer_lock(payer_id):
            payer = self.ledger.get_payer(payer_id)
            now = self._now()
            if method.is_deferred:
                result = self._checkout_by_invoice(payer, priced, total, now)
            else:
                result = self._checkout_immediately(payer, priced, total, method, now)

        payer = self.ledger.record_services(payer.id, sorted({item.service_id for item in items}))
        logger.info(
            "Checkout completed payer=%s method=%s items=%s total=%s",
            payer.id,
            method.value,
            len(items),
            total,
        )
        return result.model_copy(update={"payer": payer})

    def _checkout_immediately(
        self,
        payer: Payer,
        priced: Sequence[Tuple[CartItem, int]],
        total: int,
        method: PaymentMethod,
        now: datetime,
    ) -> CheckoutResult:
        transactions: List[Transaction] = []
        debits: List[Optional[str]] = [None] * len(priced)
        if method.debits_balance:
            try:
                payer = self.ledger.ensure_funds(payer.id, total)
            except InsufficientFundsError as exc:
                self.audit_logger.log(
                    AuditEvent(
                        event_type=AuditEventType.CHECKOUT_REJECTED,
                        payer_id=payer.id,
                        amount=exc.required,
                        metadata={"shortfall": str(exc.shortfall), "items": str(len(priced))},
                        occurred_at=now,
                    )
                )
                raise
            for position, (item, price) in enumerate(priced):
                if price <= 0:
                    continue
                entry = self.ledger.debit_for_purchase(
                    payer.id,
                    price,
                    service_id=item.service_id,
                    service_name=item.service_name,
                    comment=f"Purchase: {item.service_name} {item.plan_name}",
                )
                transactions.append(entry.transaction)
                debits[position] = entry.transaction.id
                payer = entry.payer

        purchases = [
            self._build_purchase(item, price, payer.id, method, now, PurchaseStatus.ACTIVE, transaction_id=debit)
            for (item, price), debit in zip(priced, debits)
        ]
        stored = self.repository.save_purchases(purchases)
        for purchase in stored:
            self._log(AuditEventType.PURCHASE_ACTIVATED, purchase, now, method=method.value)
        return CheckoutResult(
            purchases=tuple(stored),
            transactions=tuple(transactions),
            payer=payer,
            total_rub=total,
        )

    def _checkout_by_invoice(
        self,
        payer: Payer,
        priced: Sequence[Tuple[CartItem, int]],
        total: int,
        now: datetime,
    ) -> CheckoutResult:
        if not payer.is_company:
            logger.info("Invoice checkout refused for non-company payer=%s", payer.id)
            raise InvoiceNotApplicableError(payer.id)

        lines = [
            InvoiceLine(
                service_id=item.service_id,
                service_name=item.service_name,
                plan_name=item.plan_name,
                billing_cycle=item.billing_cycle,
                amount_rub=price,
            )
            for item, price in priced
        ]
        invoice = generate_invoice(
            payer,
            lines,
            total,
            issued_at=now,
            seller=self.seller,
            payment_terms_days=self.payment_terms_days,
            sequence=self._next_invoice_sequence(payer.id, now),
        )
        invoice = self.repository.save_invoice(invoice)
        self.audit_logger.log(
            AuditEvent(
                event_type=AuditEventType.INVOICE_ISSUED,
                payer_id=payer.id,
                amount=None,
                metadata={"invoice_number": invoice.number, "total_rub": str(total)},
                occurred_at=now,
            )
        )

        purchases = [
            self._build_purchase(
                item,
                price,
                payer.id,
                PaymentMethod.INVOICE,
                now,
                PurchaseStatus.PENDING_PAYMENT,
                invoice_number=invoice.number,
            )
            for item, price in priced
        ]
        stored = self.repository.save_purchases(purchases)
        for purchase in stored:
            self._log(
                AuditEventType.PURCHASE_PENDING_PAYMENT,
                purchase,
                now,
                invoice_number=invoice.number,
            )
        return CheckoutResult(
            purchases=tuple(stored),
            invoice=invoice,
            payer=payer,
            total_rub=total,
        )

    def _next_invoice_sequence(self, payer_id: str, issued_at: datetime) -> int:
        # Caller holds the payer lock.
        sequence = 1
        while self.repository.get_invoice(invoice_number(payer_id, issued_at, sequence)) is not None:
            sequence += 1
        return sequence

    def _build_purchase(
        self,
        item: CartItem,
        price: int,
        payer_id: str,
        method: PaymentMethod,
        now: datetime,
        status: PurchaseStatus,
        *,
        transaction_id: Optional[str] = None,
        invoice_number: Optional[str] = None,
    ) -> Purchase:
        return Purchase(
            id=f"pur_{uuid4().hex}",
            service_id=item.service_id,
            service_name=item.service_name,
            plan_name=item.plan_name,
            price_rub=price,
            price_usd=item.price_usd,
            billing_cycle=item.billing_cycle,
            status=status,
            payer_id=payer_id,
            payment_method=method,
            invoice_number=invoice_number,
            transaction_id=transaction_id,
            login=item.login,
            password=item.password,
            payment_url=item.payment_url,
            create_new_account=item.create_new_account,
            purchased_at=now,
            paid_at=now if status == PurchaseStatus.ACTIVE else None,
        )

    # Queries and status changes ---------------------------------------

    def get_purchase(self, purchase_id: str) -> Purchase:
        purchase = self.repository.get_purchase(purchase_id)
        if purchase is None:
            raise NotFoundError("Purchase", purchase_id)
        return purchase

    def list_purchases(
        self,
        *,
        payer_id: Optional[str] = None,
        status: Optional[PurchaseStatus] = None,
    ) -> Sequence[Purchase]:
        return self.repository.list_purchases(payer_id=payer_id, status=status)

    def get_invoice(self, number: str) -> InvoiceDocument:
        invoice = self.repository.get_invoice(number)
        if invoice is None:
            raise NotFoundError("Invoice", number)
        return invoice

    def cancel(self, purchase_id: str) -> Purchase:
        """Cancel a live purchase. Money already debited is not returned."""

        updated = self._transition(purchase_id, _CANCELLABLE, PurchaseStatus.CANCELLED)
        self._log(AuditEventType.PURCHASE_CANCELLED, updated, updated.cancelled_at)
        return updated

    def mark_paid(self, purchase_id: str) -> Purchase:
        """Record the external settlement of an invoice-backed purchase."""

        updated = self._transition(
            purchase_id,
            frozenset({PurchaseStatus.PENDING_PAYMENT}),
            PurchaseStatus.ACTIVE,
        )
        self.ledger.record_services(updated.payer_id, [updated.service_id])
        self._log(
            AuditEventType.PURCHASE_PAID,
            updated,
            updated.paid_at,
            invoice_number=updated.invoice_number or "",
        )
        return updated

    def _transition(
        self,
        purchase_id: str,
        from_statuses: Collection[PurchaseStatus],
        to_status: PurchaseStatus,
    ) -> Purchase:
        current = self.get_purchase(purchase_id)
        updated = self.repository.transition_status(
            purchase_id,
            from_statuses=from_statuses,
            to_status=to_status,
            at=self._now(),
        )
        if updated is None:
            latest = self.repository.get_purchase(purchase_id) or current
            logger.warning(
                "Rejected purchase transition purchase=%s status=%s target=%s",
                purchase_id,
                latest.status.value,
                to_status.value,
            )
            raise ValidationError(
                f"Purchase {purchase_id} is {latest.status.value} and cannot become {to_status.value}",
                field="status",
            )
        return updated

    def _log(
        self,
        event_type: AuditEventType,
        purchase: Purchase,
        occurred_at: Optional[datetime],
        **metadata: str,
    ) -> None:
        self.audit_logger.log(
            AuditEvent(
                event_type=event_type,
                payer_id=purchase.payer_id,
                purchase_id=purchase.id,
                amount=purchase.price_rub,
                metadata={"service_id": purchase.service_id, **metadata},
                occurred_at=occurred_at or self._now(),
            )
        )


__all__ = ["PurchaseRepository", "PurchaseService"]
