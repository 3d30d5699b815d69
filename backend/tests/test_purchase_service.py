"""Unit tests for checkout and the purchase lifecycle."""
from __future__ import annotations

import threading
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from backend.app.audit import AuditEvent, AuditEventType
from backend.app.cart import CartService, CredentialsUpdate, InMemoryCartStore
from backend.app.catalog import AiService, BillingCycle, PricingTier
from backend.app.errors import (
    InsufficientFundsError,
    InvoiceNotApplicableError,
    NoPayerSelectedError,
    NotFoundError,
    ValidationError,
)
from backend.app.ledger import (
    CompanyDetails,
    IndividualDetails,
    LedgerService,
    PayerCreate,
    PayerType,
    TransactionKind,
)
from backend.app.ledger.repository import InMemoryLedgerRepository
from backend.app.pricing import PricingConfig
from backend.app.purchases import (
    CheckoutStage,
    InMemoryPurchaseRepository,
    PaymentMethod,
    Purchase,
    PurchaseService,
    PurchaseStatus,
)

FIXED_NOW = datetime(2024, 5, 20, 12, 0, 0, tzinfo=timezone.utc)

STUDIO = AiService(
    id="studio",
    name="Studio",
    category="Video",
    pricing_tiers=(
        PricingTier(name="Free", price_label="Free"),
        PricingTier(name="Creator", price_label="$40/mo"),
        PricingTier(name="Pro", price_label="$60/mo"),
        PricingTier(name="Enterprise", price_label="Contact sales"),
        PricingTier(name="Trial", price_label="$0 for 7 days"),
    ),
)


class RecordingAuditLogger:
    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    def log(self, event: AuditEvent) -> None:
        self.events.append(event)

    def types(self) -> list[AuditEventType]:
        return [event.event_type for event in self.events]


@pytest.fixture
def purchase_components():
    ledger_repository = InMemoryLedgerRepository()
    purchase_repository = InMemoryPurchaseRepository()
    audit_logger = RecordingAuditLogger()
    ledger = LedgerService(repository=ledger_repository, audit_logger=audit_logger)
    cart = CartService(store=InMemoryCartStore(), clock=lambda: FIXED_NOW)
    service = PurchaseService(
        repository=purchase_repository,
        ledger=ledger,
        audit_logger=audit_logger,
        clock=lambda: FIXED_NOW,
    )
    return ledger_repository, purchase_repository, audit_logger, ledger, cart, service


def _company(ledger: LedgerService, balance: object = "0"):
    return ledger.create_payer(
        PayerCreate(
            payer_type=PayerType.COMPANY,
            company=CompanyDetails(name="Acme LLC", inn="7701234567", kpp="770101001"),
            initial_balance=Decimal(str(balance)),
        )
    )


def _individual(ledger: LedgerService, balance: object = "0"):
    return ledger.create_payer(
        PayerCreate(
            payer_type=PayerType.INDIVIDUAL,
            individual=IndividualDetails(first_name="Anna", last_name="Smirnova"),
            initial_balance=Decimal(str(balance)),
        )
    )


def _stage_batch(cart: CartService, session_id: str = "session-1"):
    cart.add_item(session_id, STUDIO, 2, BillingCycle.MONTHLY)
    cart.add_item(session_id, STUDIO, 1, BillingCycle.YEARLY)
    return cart.list_items(session_id)


def test_balance_checkout_debits_each_item(purchase_components):
    ledger_repository, purchase_repository, audit_logger, ledger, cart, service = purchase_components
    payer = _individual(ledger, 10000)
    items = _stage_batch(cart)
    assert cart.total_rub("session-1") == 9975

    result = service.checkout(items, payer.id, "balance")

    assert result.total_rub == 9975
    assert [purchase.status for purchase in result.purchases] == [PurchaseStatus.ACTIVE] * 2
    assert [purchase.price_rub for purchase in result.purchases] == [5985, 3990]
    assert sum(txn.amount for txn in result.transactions) == Decimal("9975.00")
    assert all(txn.kind == TransactionKind.PURCHASE for txn in result.transactions)
    assert [purchase.transaction_id for purchase in result.purchases] == [txn.id for txn in result.transactions]
    assert result.payer.balance == Decimal("25.00")
    assert result.payer.services == ("studio",)
    assert ledger.replay_balance(payer.id) == Decimal("25.00")
    assert len(purchase_repository.purchases) == 2
    assert audit_logger.types().count(AuditEventType.PURCHASE_ACTIVATED) == 2


def test_balance_checkout_short_of_funds_writes_nothing(purchase_components):
    ledger_repository, purchase_repository, audit_logger, ledger, cart, service = purchase_components
    payer = _individual(ledger, 9000)
    items = _stage_batch(cart)

    with pytest.raises(InsufficientFundsError) as exc_info:
        service.checkout(items, payer.id, PaymentMethod.BALANCE)

    assert exc_info.value.shortfall == Decimal("975.00")
    assert ledger.get_payer(payer.id).balance == Decimal("9000.00")
    assert ledger_repository.transactions == []
    assert purchase_repository.purchases == {}
    assert audit_logger.events[-1].event_type == AuditEventType.CHECKOUT_REJECTED


def test_invoice_checkout_leaves_balance_untouched(purchase_components):
    ledger_repository, purchase_repository, audit_logger, ledger, cart, service = purchase_components
    payer = _company(ledger, 500)
    items = _stage_batch(cart)

    result = service.checkout(items, payer.id, "invoice")

    assert [purchase.status for purchase in result.purchases] == [PurchaseStatus.PENDING_PAYMENT] * 2
    assert result.invoice is not None
    assert result.invoice.total_rub == 9975
    assert [line.plan_name for line in result.invoice.lines] == ["Pro", "Creator"]
    assert all(purchase.invoice_number == result.invoice.number for purchase in result.purchases)
    assert result.transactions == ()
    assert ledger.get_payer(payer.id).balance == Decimal("500.00")
    assert ledger.list_transactions(payer.id, kind=TransactionKind.PURCHASE) == []
    assert service.get_invoice(result.invoice.number) == result.invoice
    assert AuditEventType.INVOICE_ISSUED in audit_logger.types()


def test_invoice_checkout_rejected_for_individuals(purchase_components):
    _, purchase_repository, _, ledger, cart, service = purchase_components
    payer = _individual(ledger, 50000)

    with pytest.raises(InvoiceNotApplicableError):
        service.checkout(_stage_batch(cart), payer.id, PaymentMethod.INVOICE)
    assert purchase_repository.purchases == {}
    assert purchase_repository.invoices == {}


@pytest.mark.parametrize("method", ["card", "yumoney", "sbp", "sberpay"])
def test_external_methods_never_touch_the_ledger(purchase_components, method):
    ledger_repository, _, _, ledger, cart, service = purchase_components
    payer = _individual(ledger, 0)

    result = service.checkout(_stage_batch(cart), payer.id, method)

    assert all(purchase.status == PurchaseStatus.ACTIVE for purchase in result.purchases)
    assert all(purchase.transaction_id is None for purchase in result.purchases)
    assert ledger_repository.transactions == []
    assert ledger.get_payer(payer.id).balance == Decimal("0.00")


def test_checkout_input_errors(purchase_components):
    _, _, _, ledger, cart, service = purchase_components
    payer = _individual(ledger, 100)
    items = _stage_batch(cart)

    with pytest.raises(ValidationError):
        service.checkout([], payer.id, "balance")
    with pytest.raises(NoPayerSelectedError):
        service.checkout(items, None, "balance")
    with pytest.raises(NoPayerSelectedError):
        service.checkout(items, "  ", "balance")
    with pytest.raises(ValidationError):
        service.checkout(items, payer.id, "bitcoin")
    with pytest.raises(NotFoundError):
        service.checkout(items, "payer_missing", "balance")


def test_zero_priced_items_produce_no_transaction(purchase_components):
    _, _, _, ledger, cart, service = purchase_components
    payer = _individual(ledger, 100)
    cart.add_item("session-1", STUDIO, 4)

    result = service.checkout(cart.list_items("session-1"), payer.id, "balance")

    assert result.total_rub == 0
    assert result.transactions == ()
    assert result.purchases[0].status == PurchaseStatus.ACTIVE
    assert ledger.get_payer(payer.id).balance == Decimal("100.00")


def test_purchase_price_is_a_snapshot(purchase_components):
    _, _, _, ledger, cart, service = purchase_components
    payer = _individual(ledger, 10000)
    result = service.checkout(_stage_batch(cart), payer.id, "balance")
    purchase_id = result.purchases[0].id

    repriced = PurchaseService(
        repository=service.repository,
        ledger=ledger,
        audit_logger=service.audit_logger,
        pricing=PricingConfig(usd_rub_rate=Decimal("120")),
    )

    assert repriced.get_purchase(purchase_id).price_rub == 5985
    assert repriced.get_purchase(purchase_id).price_usd == Decimal("60")


def test_mark_paid_activates_pending_purchase_once(purchase_components):
    _, _, audit_logger, ledger, cart, service = purchase_components
    payer = _company(ledger)
    result = service.checkout(_stage_batch(cart), payer.id, "invoice")
    purchase_id = result.purchases[0].id

    paid = service.mark_paid(purchase_id)

    assert paid.status == PurchaseStatus.ACTIVE
    assert paid.paid_at == FIXED_NOW
    assert audit_logger.events[-1].event_type == AuditEventType.PURCHASE_PAID
    with pytest.raises(ValidationError):
        service.mark_paid(purchase_id)
    assert service.get_purchase(purchase_id).status == PurchaseStatus.ACTIVE


def test_cancel_is_terminal_and_does_not_refund(purchase_components):
    ledger_repository, _, _, ledger, cart, service = purchase_components
    payer = _individual(ledger, 10000)
    result = service.checkout(_stage_batch(cart), payer.id, "balance")
    purchase_id = result.purchases[0].id

    cancelled = service.cancel(purchase_id)

    assert cancelled.status == PurchaseStatus.CANCELLED
    assert cancelled.cancelled_at == FIXED_NOW
    assert ledger.get_payer(payer.id).balance == Decimal("25.00")
    assert len(ledger_repository.transactions) == 2
    with pytest.raises(ValidationError):
        service.cancel(purchase_id)
    with pytest.raises(ValidationError):
        service.mark_paid(purchase_id)


def test_pending_purchase_can_be_cancelled(purchase_components):
    _, _, _, ledger, cart, service = purchase_components
    payer = _company(ledger)
    result = service.checkout(_stage_batch(cart), payer.id, "invoice")

    cancelled = service.cancel(result.purchases[1].id)

    assert cancelled.status == PurchaseStatus.CANCELLED
    with pytest.raises(NotFoundError):
        service.cancel("pur_missing")


def test_list_purchases_filters_by_payer_and_status(purchase_components):
    _, _, _, ledger, cart, service = purchase_components
    company = _company(ledger)
    person = _individual(ledger, 10000)
    service.checkout(_stage_batch(cart, "a"), company.id, "invoice")
    service.checkout(_stage_batch(cart, "b"), person.id, "balance")

    assert len(service.list_purchases()) == 4
    assert len(service.list_purchases(payer_id=company.id)) == 2
    pending = service.list_purchases(status=PurchaseStatus.PENDING_PAYMENT)
    assert {purchase.payer_id for purchase in pending} == {company.id}


def test_single_plan_flow_walks_through_stages(purchase_components):
    _, _, _, ledger, _, service = purchase_components
    payer = _individual(ledger, 10000)

    draft = service.begin(STUDIO)
    assert draft.stage == CheckoutStage.SELECTING

    draft = service.confirm_plan(draft, 2, BillingCycle.YEARLY)
    assert draft.stage == CheckoutStage.CONFIRMING

    draft = service.select_payer(draft, payer.id)
    assert draft.stage == CheckoutStage.AWAITING_PAYMENT

    result = service.pay(draft, "balance", CredentialsUpdate(login="anna@example.test"))

    purchase = result.purchases[0]
    assert purchase.plan_name == "Pro"
    assert purchase.billing_cycle == BillingCycle.YEARLY
    assert purchase.price_rub == 5985
    assert purchase.login == "anna@example.test"
    assert result.payer.balance == Decimal("4015.00")


def test_single_plan_flow_rejects_bad_steps(purchase_components):
    _, _, _, ledger, _, service = purchase_components
    draft = service.begin(STUDIO)

    with pytest.raises(ValidationError):
        service.confirm_plan(draft, None)
    with pytest.raises(ValidationError):
        service.confirm_plan(draft, 9)
    with pytest.raises(ValidationError):
        service.confirm_plan(draft, 3)
    with pytest.raises(ValidationError):
        service.select_payer(draft, "payer_any")
    with pytest.raises(ValidationError):
        service.pay(draft, "balance")

    confirmed = service.confirm_plan(draft, 1)
    with pytest.raises(NoPayerSelectedError):
        service.select_payer(confirmed, "")
    with pytest.raises(NotFoundError):
        service.select_payer(confirmed, "payer_missing")


def test_single_plan_flow_surfaces_insufficient_funds(purchase_components):
    ledger_repository, _, _, ledger, _, service = purchase_components
    payer = _individual(ledger, 100)
    draft = service.select_payer(service.confirm_plan(service.begin(STUDIO), 1), payer.id)

    with pytest.raises(InsufficientFundsError) as exc_info:
        service.pay(draft, "balance")

    assert exc_info.value.shortfall == Decimal("3890.00")
    assert ledger_repository.transactions == []


def test_next_payment_date_rolls_forward_by_billing_cycle():
    purchase = Purchase(
        id="pur_1",
        service_id="studio",
        service_name="Studio",
        plan_name="Pro",
        price_rub=5985,
        price_usd=Decimal("60"),
        billing_cycle=BillingCycle.MONTHLY,
        status=PurchaseStatus.ACTIVE,
        payer_id="payer_1",
        payment_method=PaymentMethod.BALANCE,
        purchased_at=datetime(2024, 1, 31, tzinfo=timezone.utc),
    )

    assert purchase.next_payment_date(datetime(2024, 2, 10, tzinfo=timezone.utc)) == datetime(
        2024, 2, 29, tzinfo=timezone.utc
    )
    yearly = purchase.model_copy(update={"billing_cycle": BillingCycle.YEARLY})
    assert yearly.next_payment_date(datetime(2024, 6, 1, tzinfo=timezone.utc)) == datetime(
        2025, 1, 31, tzinfo=timezone.utc
    )
    cancelled = purchase.model_copy(update={"status": PurchaseStatus.CANCELLED})
    assert cancelled.next_payment_date(FIXED_NOW) is None
    assert purchase.next_payment_date(datetime(2024, 2, 10)) == datetime(2024, 2, 29, tzinfo=timezone.utc)


def test_invoices_issued_in_the_same_second_keep_their_own_numbers(purchase_components):
    _, purchase_repository, _, ledger, cart, service = purchase_components
    payer = _company(ledger)
    cart.add_item("first", STUDIO, 1)

    first = service.checkout(cart.list_items("first"), payer.id, "invoice")
    second = service.checkout(_stage_batch(cart, "second"), payer.id, "invoice")

    assert first.invoice.number != second.invoice.number
    assert second.invoice.number == f"{first.invoice.number}-2"
    assert service.get_invoice(first.purchases[0].invoice_number).total_rub == 3990
    assert service.get_invoice(second.purchases[0].invoice_number).total_rub == 9975
    assert len(purchase_repository.invoices) == 2


def test_invoice_store_refuses_to_overwrite_a_number(purchase_components):
    _, purchase_repository, _, ledger, cart, service = purchase_components
    payer = _company(ledger)
    issued = service.checkout(_stage_batch(cart), payer.id, "invoice").invoice

    with pytest.raises(RuntimeError):
        purchase_repository.save_invoice(issued.model_copy(update={"total_rub": 1}))
    assert service.get_invoice(issued.number).total_rub == 9975


class FailingPurchaseRepository(InMemoryPurchaseRepository):
    def save_purchases(self, purchases):
        raise RuntimeError("purchase store unavailable")


def test_failed_purchase_write_undoes_the_batch_debits(purchase_components):
    ledger_repository, _, audit_logger, ledger, cart, _ = purchase_components
    service = PurchaseService(
        repository=FailingPurchaseRepository(),
        ledger=ledger,
        audit_logger=audit_logger,
        clock=lambda: FIXED_NOW,
    )
    payer = _individual(ledger, 10000)

    with pytest.raises(RuntimeError):
        service.checkout(_stage_batch(cart), payer.id, "balance")

    assert ledger.get_payer(payer.id).balance == Decimal("10000.00")
    assert ledger_repository.transactions == []
    assert ledger.replay_balance(payer.id) == Decimal("10000.00")


def test_concurrent_checkouts_and_withdrawals_keep_batches_whole(purchase_components):
    ledger_repository, purchase_repository, _, ledger, cart, service = purchase_components
    payer = _company(ledger, 40000)
    items = _stage_batch(cart)
    checkouts: list[str] = []
    withdrawals: list[str] = []
    rejected: list[InsufficientFundsError] = []
    barrier = threading.Barrier(12)

    def buy() -> None:
        barrier.wait()
        try:
            service.checkout(items, payer.id, "balance")
            checkouts.append("ok")
        except InsufficientFundsError as exc:
            rejected.append(exc)

    def withdraw() -> None:
        barrier.wait()
        try:
            ledger.withdraw(payer.id, 3000, "card")
            withdrawals.append("ok")
        except InsufficientFundsError as exc:
            rejected.append(exc)

    threads = [threading.Thread(target=buy) for _ in range(6)]
    threads += [threading.Thread(target=withdraw) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    balance = ledger.get_payer(payer.id).balance
    assert balance >= Decimal("0")
    assert balance == Decimal("40000") - 9975 * len(checkouts) - 3000 * len(withdrawals)
    assert ledger.replay_balance(payer.id) == balance
    assert len(checkouts) + len(withdrawals) + len(rejected) == 12
    assert checkouts and rejected

    debits = ledger.list_transactions(payer.id, kind=TransactionKind.PURCHASE)
    assert len(debits) == 2 * len(checkouts)
    assert len(purchase_repository.purchases) == 2 * len(checkouts)
    linked = {purchase.transaction_id for purchase in purchase_repository.purchases.values()}
    assert linked == {txn.id for txn in debits}
    assert all(txn.balance_after >= Decimal("0") for txn in ledger_repository.transactions)
