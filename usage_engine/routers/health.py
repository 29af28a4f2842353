"""Health check endpoint."""

import structlog
from fastapi import APIRouter

from usage_engine import __version__
from usage_engine.routers import usage as usage_router
from usage_engine.schemas import CacheStats, HealthResponse

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Report service status, configured products and cache statistics.

    No upstream call is made; Amplitude availability shows up in the
    upstream query metrics instead.
    """
    registry = usage_router._registry
    if registry is None:
        logger.warning("health_check_registry_missing")
        return HealthResponse(
            status="degraded",
            version=__version__,
            products=[],
            cache=CacheStats(entries=0, hits=0, misses=0),
        )

    return HealthResponse(
        status="ok" if len(registry) else "degraded",
        version=__version__,
        products=registry.slugs(),
        cache=CacheStats(**registry.cache.stats()),
    )
