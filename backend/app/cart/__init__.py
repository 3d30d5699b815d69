"""Ephemeral cart of planned purchases."""

from .models import CartItem, CartSummary, CredentialsUpdate
from .service import CartService
from .store import CartStore, InMemoryCartStore

__all__ = [
    "CartItem",
    "CartService",
    "CartStore",
    "CartSummary",
    "CredentialsUpdate",
    "InMemoryCartStore",
]
