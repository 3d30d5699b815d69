"""API routes for the session-scoped cart."""
from __future__ import annotations

from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Cookie, Response, status

from ..cart import CartService
from ..errors import MarketplaceError, NotFoundError
from ..schemas.cart import AddCartItemRequest, CartItemResponse, CartResponse, CredentialsRequest
from ..services.marketplace import get_cart_service, get_catalog_provider, get_marketplace_config

CART_COOKIE_NAME = get_marketplace_config().cart_cookie_name
_CART_COOKIE_MAX_AGE = 60 * 60 * 24 * 30

router = APIRouter(prefix="/api/cart", tags=["cart"])


def resolve_cart_session(session_id: Optional[str], response: Optional[Response]) -> str:
    """Return the cart session id, issuing a new cookie when the client has none."""

    if session_id:
        return session_id
    session_id = f"cart_{uuid4().hex}"
    if response is not None:
        response.set_cookie(
            CART_COOKIE_NAME,
            session_id,
            max_age=_CART_COOKIE_MAX_AGE,
            httponly=True,
            samesite="lax",
        )
    return session_id


def cart_response(service: CartService, session_id: str) -> CartResponse:
    summary = service.summary(session_id)
    prices = [service.item_price_rub(item) for item in summary.items]
    return CartResponse.from_summary(summary, prices)


@router.get("", response_model=CartResponse)
def get_cart(
    response: Response,
    cart_session: Optional[str] = Cookie(None, alias=CART_COOKIE_NAME),
) -> CartResponse:
    session_id = resolve_cart_session(cart_session, response)
    return cart_response(get_cart_service(), session_id)


@router.post("/items", response_model=CartItemResponse, status_code=status.HTTP_201_CREATED)
def add_cart_item(
    payload: AddCartItemRequest,
    response: Response,
    cart_session: Optional[str] = Cookie(None, alias=CART_COOKIE_NAME),
) -> CartItemResponse:
    session_id = resolve_cart_session(cart_session, response)
    service = get_cart_service()
    catalog_entry = get_catalog_provider().get_service(payload.service_id)
    try:
        if catalog_entry is None:
            raise NotFoundError("Service", payload.service_id)
        item = service.add_item(session_id, catalog_entry, payload.tier_index, payload.billing_cycle)
    except MarketplaceError as exc:
        raise exc.to_http_exception() from exc
    return CartItemResponse.from_item(item, service.item_price_rub(item))


@router.delete("/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_cart_item(
    item_id: str,
    cart_session: Optional[str] = Cookie(None, alias=CART_COOKIE_NAME),
) -> Response:
    try:
        if not cart_session:
            raise NotFoundError("Cart item", item_id)
        get_cart_service().remove_item(cart_session, item_id)
    except MarketplaceError as exc:
        raise exc.to_http_exception() from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/items/{item_id}/credentials", response_model=CartItemResponse)
def update_cart_item_credentials(
    item_id: str,
    payload: CredentialsRequest,
    cart_session: Optional[str] = Cookie(None, alias=CART_COOKIE_NAME),
) -> CartItemResponse:
    service = get_cart_service()
    try:
        if not cart_session:
            raise NotFoundError("Cart item", item_id)
        item = service.update_credentials(cart_session, item_id, payload.to_domain())
    except MarketplaceError as exc:
        raise exc.to_http_exception() from exc
    return CartItemResponse.from_item(item, service.item_price_rub(item))


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
def clear_cart(
    cart_session: Optional[str] = Cookie(None, alias=CART_COOKIE_NAME),
) -> Response:
    if cart_session:
        get_cart_service().clear(cart_session)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["CART_COOKIE_NAME", "cart_response", "resolve_cart_session", "router"]
