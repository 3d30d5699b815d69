"""Invoice generation for deferred (pay-by-invoice) settlement."""

from .generator import DEFAULT_SELLER, format_rub, generate_invoice, invoice_number
from .models import InvoiceDocument, InvoiceLine, InvoiceSeller

__all__ = [
    "DEFAULT_SELLER",
    "InvoiceDocument",
    "InvoiceLine",
    "InvoiceSeller",
    "format_rub",
    "generate_invoice",
    "invoice_number",
]
