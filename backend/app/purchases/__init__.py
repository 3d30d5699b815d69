"""Purchase and subscription lifecycle."""

from .models import (
    CheckoutResult,
    CheckoutStage,
    PaymentMethod,
    Purchase,
    PurchaseDraft,
    PurchaseStatus,
)
from .repository import InMemoryPurchaseRepository, PostgresPurchaseRepository
from .service import PurchaseRepository, PurchaseService

__all__ = [
    "CheckoutResult",
    "CheckoutStage",
    "InMemoryPurchaseRepository",
    "PaymentMethod",
    "PostgresPurchaseRepository",
    "Purchase",
    "PurchaseDraft",
    "PurchaseRepository",
    "PurchaseService",
    "PurchaseStatus",
]
