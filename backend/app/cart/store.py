"""Session scoped storage for cart items."""
from __future__ import annotations

import threading
from typing import Dict, List, Optional, Protocol, Sequence

from .models import CartItem


class CartStore(Protocol):
    """Protocol describing cart storage operations used by the cart service."""

    def list(self, session_id: str) -> Sequence[CartItem]:
        ...

    def append(self, session_id: str, item: CartItem) -> None:
        ...

    def replace(self, session_id: str, item: CartItem) -> bool:
        ...

    def remove(self, session_id: str, item_id: str) -> bool:
        ...

    def clear(self, session_id: str) -> None:
        ...

    def take(self, session_id: str) -> Sequence[CartItem]:
        ...

    def restore(self, session_id: str, items: Sequence[CartItem]) -> None:
        ...


class InMemoryCartStore:
    """Simple in-memory cart storage suitable for tests and local development."""

    def __init__(self) -> None:
        self._carts: Dict[str, List[CartItem]] = {}
        self._lock = threading.Lock()

    def list(self, session_id: str) -> Sequence[CartItem]:
        with self._lock:
            return tuple(self._carts.get(session_id, ()))

    def append(self, session_id: str, item: CartItem) -> None:
        with self._lock:
            self._carts.setdefault(session_id, []).append(item)

    def replace(self, session_id: str, item: CartItem) -> bool:
        with self._lock:
            items = self._carts.get(session_id)
            index = self._index_of(items, item.id)
            if items is None or index is None:
                return False
            items[index] = item
            return True

    def remove(self, session_id: str, item_id: str) -> bool:
        with self._lock:
            items = self._carts.get(session_id)
            index = self._index_of(items, item_id)
            if items is None or index is None:
                return False
            del items[index]
            if not items:
                self._carts.pop(session_id, None)
            return True

    def clear(self, session_id: str) -> None:
        with self._lock:
            self._carts.pop(session_id, None)

    def take(self, session_id: str) -> Sequence[CartItem]:
        with self._lock:
            return tuple(self._carts.pop(session_id, ()))

    def restore(self, session_id: str, items: Sequence[CartItem]) -> None:
        if not items:
            return
        with self._lock:
            self._carts[session_id] = list(items) + self._carts.get(session_id, [])

    @staticmethod
    def _index_of(items: Optional[List[CartItem]], item_id: str) -> Optional[int]:
        for index, item in enumerate(items or ()):
            if item.id == item_id:
                return index
        return None
