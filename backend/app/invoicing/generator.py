"""Plain-text invoice rendering for company payers."""
from __future__ import annotations

import re
from datetime import datetime, timedelta
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from ..errors import InvoiceNotApplicableError, ValidationError
from ..ledger.models import Payer
from .models import InvoiceDocument, InvoiceLine, InvoiceSeller

_TEMPLATE_PATH = Path(__file__).resolve().parent / "templates"
_PLACEHOLDER_PATTERN = re.compile(r"{{\s*(\w+)\s*}}")

DEFAULT_SELLER = InvoiceSeller(name="AI Tools Marketplace")


@lru_cache(maxsize=4)
def _load_template(template: str) -> str:
    path = _TEMPLATE_PATH / template
    return path.read_text(encoding="utf-8")


def _render_template(template: str, context: Dict[str, Any]) -> str:
    source = _load_template(template)

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        value = context.get(key, "")
        return "" if value is None else str(value)

    return _PLACEHOLDER_PATTERN.sub(_replace, source)


def format_rub(amount: int) -> str:
    return f"{amount:,}".replace(",", " ") + " RUB"


def invoice_number(payer_id: str, issued_at: datetime, sequence: int = 1) -> str:
    """Number an invoice; ``sequence`` separates invoices issued to one payer in the same second."""

    suffix = re.sub(r"[^0-9A-Za-z]", "", payer_id)[-4:].upper() or "0000"
    number = f"INV-{issued_at:%Y%m%d-%H%M%S}-{suffix}"
    if sequence > 1:
        number = f"{number}-{sequence}"
    return number


def _render_lines(lines: Sequence[InvoiceLine]) -> str:
    rendered = []
    for position, line in enumerate(lines, start=1):
        rendered.append(
            f"{position}. {line.service_name} / {line.plan_name} ({line.billing_cycle.value})"
            f" - {format_rub(line.amount_rub)}"
        )
    return "\n".join(rendered)


def generate_invoice(
    payer: Payer,
    lines: Sequence[InvoiceLine],
    total_rub: int,
    *,
    issued_at: datetime,
    seller: Optional[InvoiceSeller] = None,
    payment_terms_days: int = 5,
    sequence: int = 1,
) -> InvoiceDocument:
    """Render an invoice for ``lines``; the same inputs always produce the same document."""

    if not payer.is_company or payer.company is None:
        raise InvoiceNotApplicableError(payer.id)
    if not lines:
        raise ValidationError("An invoice needs at least one line item", field="lines")
    if sum(line.amount_rub for line in lines) != total_rub:
        raise ValidationError("Invoice total does not match its line items", field="total_rub")

    issuer = seller or DEFAULT_SELLER
    number = invoice_number(payer.id, issued_at, sequence)
    due_date = issued_at.date() + timedelta(days=max(payment_terms_days, 0))
    text = _render_template(
        "invoice.txt",
        {
            "number": number,
            "issued_on": issued_at.date().isoformat(),
            "due_on": due_date.isoformat(),
            "seller_name": issuer.name,
            "seller_tax_id": issuer.tax_id or "-",
            "payer_name": payer.company.name,
            "payer_inn": payer.company.inn or "-",
            "payer_kpp": payer.company.kpp or "-",
            "lines": _render_lines(lines),
            "total": format_rub(total_rub),
        },
    )
    return InvoiceDocument(
        number=number,
        issued_at=issued_at,
        due_date=due_date,
        payer_id=payer.id,
        payer_name=payer.company.name,
        payer_inn=payer.company.inn,
        payer_kpp=payer.company.kpp,
        lines=tuple(lines),
        total_rub=total_rub,
        text=text,
    )
