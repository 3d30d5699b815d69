"""API routes for checkout, purchase management, and invoice downloads."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

from fastapi import APIRouter, Cookie, Query
from fastapi.responses import PlainTextResponse

from ..cart import CartItem, CartService
from ..errors import MarketplaceError, ValidationError
from ..purchases import PurchaseStatus
from ..schemas.purchases import (
    CheckoutRequest,
    CheckoutResponse,
    PurchaseListResponse,
    PurchaseResponse,
)
from ..services.marketplace import get_cart_service, get_purchase_service
from .cart import CART_COOKIE_NAME

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["purchases"])


@router.post("/checkout", response_model=CheckoutResponse)
def checkout(
    payload: CheckoutRequest,
    cart_session: Optional[str] = Cookie(None, alias=CART_COOKIE_NAME),
) -> CheckoutResponse:
    cart = get_cart_service()
    service = get_purchase_service()
    items = cart.claim(cart_session) if cart_session else ()
    try:
        result = service.checkout(items, payload.payer_id, payload.payment_method)
    except MarketplaceError as exc:
        _release_cart(cart, cart_session, items)
        raise exc.to_http_exception() from exc
    except Exception:
        _release_cart(cart, cart_session, items)
        raise
    return CheckoutResponse.from_result(result)


@router.get("/purchases", response_model=PurchaseListResponse)
def list_purchases(
    payer_id: Optional[str] = Query(default=None, alias="payerId"),
    status_filter: Optional[str] = Query(default=None, alias="status"),
) -> PurchaseListResponse:
    try:
        purchase_status = _parse_status(status_filter)
    except MarketplaceError as exc:
        raise exc.to_http_exception() from exc
    purchases = get_purchase_service().list_purchases(payer_id=payer_id, status=purchase_status)
    now = datetime.now(timezone.utc)
    return PurchaseListResponse(
        purchases=[PurchaseResponse.from_purchase(purchase, now=now) for purchase in purchases]
    )


@router.get("/purchases/{purchase_id}", response_model=PurchaseResponse)
def get_purchase(purchase_id: str) -> PurchaseResponse:
    try:
        purchase = get_purchase_service().get_purchase(purchase_id)
    except MarketplaceError as exc:
        raise exc.to_http_exception() from exc
    return PurchaseResponse.from_purchase(purchase, now=datetime.now(timezone.utc))


@router.post("/purchases/{purchase_id}/cancel", response_model=PurchaseResponse)
def cancel_purchase(purchase_id: str) -> PurchaseResponse:
    try:
        purchase = get_purchase_service().cancel(purchase_id)
    except MarketplaceError as exc:
        raise exc.to_http_exception() from exc
    return PurchaseResponse.from_purchase(purchase)


@router.post("/purchases/{purchase_id}/mark-paid", response_model=PurchaseResponse)
def mark_purchase_paid(purchase_id: str) -> PurchaseResponse:
    try:
        purchase = get_purchase_service().mark_paid(purchase_id)
    except MarketplaceError as exc:
        raise exc.to_http_exception() from exc
    return PurchaseResponse.from_purchase(purchase, now=datetime.now(timezone.utc))


@router.get("/invoices/{number}", response_class=PlainTextResponse)
def download_invoice(number: str) -> PlainTextResponse:
    try:
        invoice = get_purchase_service().get_invoice(number)
    except MarketplaceError as exc:
        raise exc.to_http_exception() from exc
    logger.debug("Serving invoice %s", invoice.number)
    return PlainTextResponse(
        invoice.text,
        headers={"Content-Disposition": f'attachment; filename="{invoice.filename}"'},
    )


def _release_cart(cart: CartService, cart_session: Optional[str], items: Sequence[CartItem]) -> None:
    if cart_session:
        cart.release(cart_session, items)


def _parse_status(value: Optional[str]) -> Optional[PurchaseStatus]:
    if not value:
        return None
    try:
        return PurchaseStatus(value.strip().lower())
    except ValueError as exc:
        raise ValidationError(f"Unknown purchase status {value!r}", field="status") from exc


__all__ = ["router"]
