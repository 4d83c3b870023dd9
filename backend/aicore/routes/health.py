"""
Health check endpoints.
"""
from fastapi import APIRouter, Depends

from aicore.core.logging import get_logger
from aicore.services.providers.registry import ProviderRegistry

from .deps import get_registry

logger = get_logger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    """
    Basic health check endpoint.
    """
    return {
        "status": "ok",
        "message": "API is running"
    }


@router.get("/providers")
async def providers_health(registry: ProviderRegistry = Depends(get_registry)):
    """
    Configured providers in fallback order.

    `status` is "unavailable" when no provider family is configured; every
    generation request would then fail with 503.
    """
    providers = registry.describe()
    return {
        "status": "ok" if providers else "unavailable",
        "count": len(providers),
        "providers": providers,
    }
