"""Catalog provider interface and the built-in static catalog."""
from __future__ import annotations

from typing import Dict, Iterable, Optional, Protocol, Sequence

from .models import AiService, PricingTier


class CatalogProvider(Protocol):
    """Read-only access to AI service records."""

    def get_service(self, service_id: str) -> Optional[AiService]:
        ...

    def list_services(self) -> Sequence[AiService]:
        ...


BUILTIN_SERVICES: tuple[AiService, ...] = (
    AiService(
        id="chatgpt",
        name="ChatGPT",
        category="Text",
        color="#10A37F",
        rating=4.8,
        pricing_tiers=(
            PricingTier(name="Free", price_label="Free", features=("GPT-4o mini", "Standard response speed")),
            PricingTier(name="Plus", price_label="$20/mo", features=("GPT-4o", "Image generation", "Advanced data analysis")),
            PricingTier(name="Team", price_label="$30/mo", features=("Workspace admin", "Higher message limits")),
        ),
    ),
    AiService(
        id="midjourney",
        name="Midjourney",
        category="Images",
        color="#1E1E1E",
        rating=4.7,
        pricing_tiers=(
            PricingTier(name="Basic", price_label="$10/mo", features=("3.3 fast GPU hours",)),
            PricingTier(name="Standard", price_label="$30/mo", features=("15 fast GPU hours", "Unlimited relaxed")),
            PricingTier(name="Pro", price_label="$60/mo", features=("30 fast GPU hours", "Stealth mode")),
        ),
    ),
    AiService(
        id="claude",
        name="Claude",
        category="Text",
        color="#D97757",
        rating=4.8,
        pricing_tiers=(
            PricingTier(name="Free", price_label="Free", features=("Web and mobile access",)),
            PricingTier(name="Pro", price_label="$20/mo", features=("More usage", "Projects")),
            PricingTier(name="Enterprise", price_label="Custom", features=("SSO", "Audit logs")),
        ),
    ),
)


class StaticCatalogProvider:
    """In-process catalog suitable for tests and local development."""

    def __init__(self, services: Optional[Iterable[AiService]] = None) -> None:
        source = BUILTIN_SERVICES if services is None else services
        self._services: Dict[str, AiService] = {service.id: service for service in source}

    def get_service(self, service_id: str) -> Optional[AiService]:
        return self._services.get(service_id)

    def list_services(self) -> Sequence[AiService]:
        return sorted(self._services.values(), key=lambda service: service.name)

    def upsert(self, service: AiService) -> AiService:
        self._services[service.id] = service
        return service
