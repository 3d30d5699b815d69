"""API routes for payers, balance movements, and transaction history."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query, status

from ..errors import MarketplaceError
from ..ledger import TransactionKind
from ..schemas.ledger import (
    FundsRequest,
    LedgerEntryResponse,
    PayerCreateRequest,
    PayerListResponse,
    PayerResponse,
    StatementResponse,
    TransactionListResponse,
    TransactionResponse,
)
from ..services.marketplace import get_ledger_service

router = APIRouter(prefix="/api/payers", tags=["payers"])


@router.post("", response_model=PayerResponse, status_code=status.HTTP_201_CREATED)
def create_payer(payload: PayerCreateRequest) -> PayerResponse:
    service = get_ledger_service()
    try:
        payer = service.create_payer(payload.to_domain())
    except MarketplaceError as exc:
        raise exc.to_http_exception() from exc
    return PayerResponse.from_payer(payer)


@router.get("", response_model=PayerListResponse)
def list_payers() -> PayerListResponse:
    payers = get_ledger_service().list_payers()
    return PayerListResponse(payers=[PayerResponse.from_payer(payer) for payer in payers])


@router.get("/{payer_id}", response_model=PayerResponse)
def get_payer(payer_id: str) -> PayerResponse:
    try:
        payer = get_ledger_service().get_payer(payer_id)
    except MarketplaceError as exc:
        raise exc.to_http_exception() from exc
    return PayerResponse.from_payer(payer)


@router.post("/{payer_id}/deposit", response_model=LedgerEntryResponse)
def deposit(payer_id: str, payload: FundsRequest) -> LedgerEntryResponse:
    try:
        entry = get_ledger_service().deposit(payer_id, payload.amount, payload.method)
    except MarketplaceError as exc:
        raise exc.to_http_exception() from exc
    return LedgerEntryResponse.from_entry(entry)


@router.post("/{payer_id}/withdraw", response_model=LedgerEntryResponse)
def withdraw(payer_id: str, payload: FundsRequest) -> LedgerEntryResponse:
    try:
        entry = get_ledger_service().withdraw(payer_id, payload.amount, payload.method)
    except MarketplaceError as exc:
        raise exc.to_http_exception() from exc
    return LedgerEntryResponse.from_entry(entry)


@router.get("/{payer_id}/transactions", response_model=TransactionListResponse)
def list_transactions(
    payer_id: str,
    kind: Optional[TransactionKind] = Query(default=None),
) -> TransactionListResponse:
    try:
        transactions = get_ledger_service().list_transactions(payer_id, kind=kind)
    except MarketplaceError as exc:
        raise exc.to_http_exception() from exc
    return TransactionListResponse(
        transactions=[TransactionResponse.from_transaction(txn) for txn in transactions]
    )


@router.get("/{payer_id}/statement", response_model=StatementResponse)
def get_statement(payer_id: str) -> StatementResponse:
    try:
        statement = get_ledger_service().statement(payer_id)
    except MarketplaceError as exc:
        raise exc.to_http_exception() from exc
    return StatementResponse.from_statement(statement)
