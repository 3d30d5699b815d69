from __future__ import annotations

import threading
from decimal import Decimal

import pytest
from fastapi import HTTPException, Response

from backend.app.cart import CartService, InMemoryCartStore
from backend.app.catalog import AiService, PricingTier, StaticCatalogProvider
from backend.app.ledger import LedgerService
from backend.app.ledger.repository import InMemoryLedgerRepository
from backend.app.pricing import DEFAULT_PRICING
from backend.app.purchases import InMemoryPurchaseRepository, PurchaseService
from backend.app.routes import cart as cart_routes
from backend.app.routes import catalog as catalog_routes
from backend.app.routes import payers as payer_routes
from backend.app.routes import purchases as purchase_routes
from backend.app.schemas.cart import AddCartItemRequest, CredentialsRequest
from backend.app.schemas.ledger import FundsRequest, PayerCreateRequest
from backend.app.schemas.purchases import CheckoutRequest

STUDIO = AiService(
    id="studio",
    name="Studio",
    category="Video",
    pricing_tiers=(
        PricingTier(name="Creator", price_label="$40/mo"),
        PricingTier(name="Pro", price_label="$60/mo"),
        PricingTier(name="Enterprise", price_label="Custom"),
    ),
)


class NullAuditLogger:
    def log(self, event) -> None:
        return None


@pytest.fixture
def wired(monkeypatch):
    ledger = LedgerService(repository=InMemoryLedgerRepository(), audit_logger=NullAuditLogger())
    cart = CartService(store=InMemoryCartStore())
    purchases = PurchaseService(
        repository=InMemoryPurchaseRepository(),
        ledger=ledger,
        audit_logger=NullAuditLogger(),
    )
    catalog = StaticCatalogProvider([STUDIO])

    monkeypatch.setattr(catalog_routes, "get_catalog_provider", lambda: catalog)
    monkeypatch.setattr(catalog_routes, "get_pricing_config", lambda: DEFAULT_PRICING)
    monkeypatch.setattr(payer_routes, "get_ledger_service", lambda: ledger)
    monkeypatch.setattr(cart_routes, "get_cart_service", lambda: cart)
    monkeypatch.setattr(cart_routes, "get_catalog_provider", lambda: catalog)
    monkeypatch.setattr(purchase_routes, "get_cart_service", lambda: cart)
    monkeypatch.setattr(purchase_routes, "get_purchase_service", lambda: purchases)
    return ledger, cart, purchases


def _create_company(balance: str = "0"):
    payload = PayerCreateRequest.model_validate(
        {
            "type": "company",
            "company": {"name": "Acme LLC", "inn": "7701234567", "kpp": "770101001"},
            "initialBalance": balance,
        }
    )
    return payer_routes.create_payer(payload)


def test_catalog_lists_tiers_with_rouble_prices(wired):
    response = catalog_routes.list_catalog()

    tiers = response.services[0].pricing_tiers
    assert [tier.price_rub for tier in tiers] == [3990, 5985, 0]
    assert [tier.purchasable for tier in tiers] == [True, True, False]

    with pytest.raises(HTTPException) as exc_info:
        catalog_routes.get_catalog_service("missing")
    assert exc_info.value.status_code == 404


def test_payer_routes_create_and_move_funds(wired):
    created = _create_company("150000")
    assert created.display_name == "Acme LLC"

    entry = payer_routes.withdraw(created.id, FundsRequest(amount=Decimal("5000"), method="card"))
    assert entry.payer.balance == Decimal("145000.00")

    history = payer_routes.list_transactions(created.id, kind=None)
    assert [txn.amount for txn in history.transactions] == [Decimal("5000.00")]

    statement = payer_routes.get_statement(created.id)
    assert statement.consistent is True
    assert statement.totals["withdrawal"] == Decimal("5000.00")


def test_payer_routes_map_errors_to_status_codes(wired):
    created = _create_company("100")

    with pytest.raises(HTTPException) as exc_info:
        payer_routes.withdraw(created.id, FundsRequest(amount=Decimal("250"), method="card"))
    assert exc_info.value.status_code == 402
    assert exc_info.value.detail["shortfall"] == "150.00"

    with pytest.raises(HTTPException) as exc_info:
        payer_routes.deposit(created.id, FundsRequest(amount=Decimal("0"), method="card"))
    assert exc_info.value.status_code == 400

    with pytest.raises(HTTPException) as exc_info:
        payer_routes.get_payer("payer_missing")
    assert exc_info.value.status_code == 404

    blank = PayerCreateRequest.model_validate({"type": "individual", "individual": {"firstName": "Ivan"}})
    with pytest.raises(HTTPException) as exc_info:
        payer_routes.create_payer(blank)
    assert exc_info.value.status_code == 400


def test_cart_routes_issue_a_session_cookie(wired):
    response = Response()

    item = cart_routes.add_cart_item(
        AddCartItemRequest(serviceId="studio", tierIndex=1),
        response,
        cart_session=None,
    )

    assert item.price_rub == 5985
    assert cart_routes.CART_COOKIE_NAME in response.headers["set-cookie"]


def test_cart_routes_manage_items(wired):
    session = "cart_test"
    first = cart_routes.add_cart_item(AddCartItemRequest(serviceId="studio", tierIndex=0), Response(), session)
    cart_routes.add_cart_item(AddCartItemRequest(serviceId="studio", tierIndex=1), Response(), session)

    updated = cart_routes.update_cart_item_credentials(
        first.id,
        CredentialsRequest(login="ops@acme.test", password="pw"),
        session,
    )
    assert updated.login == "ops@acme.test"
    assert updated.has_password is True

    summary = cart_routes.get_cart(Response(), session)
    assert summary.total_items == 2
    assert summary.total_rub == 9975

    cart_routes.remove_cart_item(first.id, session)
    assert cart_routes.get_cart(Response(), session).total_items == 1

    with pytest.raises(HTTPException) as exc_info:
        cart_routes.update_cart_item_credentials("ci_missing", CredentialsRequest(login="x"), session)
    assert exc_info.value.status_code == 404

    with pytest.raises(HTTPException) as exc_info:
        cart_routes.add_cart_item(AddCartItemRequest(serviceId="studio", tierIndex=2), Response(), session)
    assert exc_info.value.status_code == 400

    cart_routes.clear_cart(session)
    assert cart_routes.get_cart(Response(), session).total_items == 0


def test_checkout_route_clears_cart_on_success(wired):
    ledger, cart, purchases = wired
    payer = _create_company("10000")
    session = "cart_checkout"
    cart_routes.add_cart_item(AddCartItemRequest(serviceId="studio", tierIndex=1), Response(), session)
    cart_routes.add_cart_item(AddCartItemRequest(serviceId="studio", tierIndex=0), Response(), session)

    response = purchase_routes.checkout(
        CheckoutRequest(payerId=payer.id, paymentMethod="balance"),
        cart_session=session,
    )

    assert response.total_rub == 9975
    assert response.payer.balance == Decimal("25.00")
    assert cart.list_items(session) == ()

    listed = purchase_routes.list_purchases(payer_id=payer.id, status_filter="active")
    assert len(listed.purchases) == 2
    assert all(purchase.next_payment_date is not None for purchase in listed.purchases)


def test_checkout_route_keeps_cart_on_failure(wired):
    ledger, cart, _ = wired
    payer = _create_company("10")
    session = "cart_short"
    cart_routes.add_cart_item(AddCartItemRequest(serviceId="studio", tierIndex=1), Response(), session)

    with pytest.raises(HTTPException) as exc_info:
        purchase_routes.checkout(CheckoutRequest(payerId=payer.id, paymentMethod="balance"), cart_session=session)
    assert exc_info.value.status_code == 402
    assert len(cart.list_items(session)) == 1

    with pytest.raises(HTTPException) as exc_info:
        purchase_routes.checkout(CheckoutRequest(paymentMethod="balance"), cart_session=session)
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail["error"] == "no_payer_selected"


def test_invoice_flow_through_routes(wired):
    payer = _create_company()
    session = "cart_invoice"
    cart_routes.add_cart_item(AddCartItemRequest(serviceId="studio", tierIndex=1), Response(), session)

    response = purchase_routes.checkout(
        CheckoutRequest(payerId=payer.id, paymentMethod="invoice"),
        cart_session=session,
    )
    assert response.invoice is not None
    purchase_id = response.purchases[0].id

    document = purchase_routes.download_invoice(response.invoice.number)
    assert b"TOTAL: 5 985 RUB" in document.body
    assert response.invoice.filename in document.headers["content-disposition"]

    paid = purchase_routes.mark_purchase_paid(purchase_id)
    assert paid.status.value == "active"
    with pytest.raises(HTTPException) as exc_info:
        purchase_routes.mark_purchase_paid(purchase_id)
    assert exc_info.value.status_code == 400

    cancelled = purchase_routes.cancel_purchase(purchase_id)
    assert cancelled.status.value == "cancelled"

    with pytest.raises(HTTPException) as exc_info:
        purchase_routes.download_invoice("INV-missing")
    assert exc_info.value.status_code == 404

    with pytest.raises(HTTPException) as exc_info:
        purchase_routes.list_purchases(payer_id=None, status_filter="bogus")
    assert exc_info.value.status_code == 400


def test_invoice_route_rejects_individual_payers(wired):
    individual = payer_routes.create_payer(
        PayerCreateRequest.model_validate(
            {"type": "individual", "individual": {"firstName": "Ivan", "lastName": "Petrov"}}
        )
    )
    session = "cart_individual"
    cart_routes.add_cart_item(AddCartItemRequest(serviceId="studio", tierIndex=0), Response(), session)

    with pytest.raises(HTTPException) as exc_info:
        purchase_routes.checkout(
            CheckoutRequest(payerId=individual.id, paymentMethod="invoice"),
            cart_session=session,
        )
    assert exc_info.value.status_code == 409


def test_checkout_route_charges_a_cart_once_under_double_submit(wired):
    ledger, cart, _ = wired
    payer = _create_company("20000")
    session = "cart_double"
    cart_routes.add_cart_item(AddCartItemRequest(serviceId="studio", tierIndex=1), Response(), session)
    outcomes: list[int] = []
    barrier = threading.Barrier(2)

    def submit() -> None:
        barrier.wait()
        try:
            purchase_routes.checkout(CheckoutRequest(payerId=payer.id, paymentMethod="balance"), cart_session=session)
            outcomes.append(200)
        except HTTPException as exc:
            outcomes.append(exc.status_code)

    threads = [threading.Thread(target=submit) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == [200, 400]
    assert ledger.get_payer(payer.id).balance == Decimal("14015.00")
    assert cart.list_items(session) == ()
