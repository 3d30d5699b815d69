"""Shared application context for reusable dependencies."""
from __future__ import annotations

from typing import Any, Callable, Optional

_get_conn: Optional[Callable[[], Any]] = None
_catalog_provider: Optional[Any] = None


def configure(
    *,
    get_conn: Callable[[], Any],
    catalog_provider: Any,
) -> None:
    """Register application-wide dependencies required by modular routers."""

    global _get_conn
    global _catalog_provider

    _get_conn = get_conn
    _catalog_provider = catalog_provider


def _require(value: Optional[Any], name: str) -> Any:
    if value is None:
        raise RuntimeError(f"Application context has not been configured yet: {name}")
    return value


def get_conn() -> Any:
    conn_factory = _require(_get_conn, "get_conn")
    return conn_factory()


def get_catalog_provider() -> Any:
    return _require(_catalog_provider, "catalog_provider")


def is_configured() -> bool:
    return _get_conn is not None and _catalog_provider is not None
