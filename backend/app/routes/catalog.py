"""API routes exposing the AI service catalog."""
from __future__ import annotations

from fastapi import APIRouter

from ..errors import NotFoundError
from ..schemas.catalog import AiServiceResponse, CatalogResponse
from ..services.marketplace import get_catalog_provider, get_pricing_config

router = APIRouter(prefix="/api/catalog", tags=["catalog"])


@router.get("", response_model=CatalogResponse)
def list_catalog() -> CatalogResponse:
    provider = get_catalog_provider()
    pricing = get_pricing_config()
    return CatalogResponse(
        services=[AiServiceResponse.from_service(service, pricing) for service in provider.list_services()]
    )


@router.get("/{service_id}", response_model=AiServiceResponse)
def get_catalog_service(service_id: str) -> AiServiceResponse:
    service = get_catalog_provider().get_service(service_id)
    if service is None:
        raise NotFoundError("Service", service_id).to_http_exception()
    return AiServiceResponse.from_service(service, get_pricing_config())
