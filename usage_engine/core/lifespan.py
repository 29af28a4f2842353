"""Application lifespan management - startup and shutdown logic."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI

from usage_engine import __version__
from usage_engine.config import get_settings
from usage_engine.routers import usage
from usage_engine.services.usage.cache import UsageCache
from usage_engine.services.usage.registry import ProductRegistry

logger = structlog.get_logger(__name__)


async def sweep_cache_periodically(cache: UsageCache, interval_s: float) -> None:
    """Remove expired cache entries every ``interval_s`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval_s)
        cache.sweep()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(
        "usage_engine_starting",
        version=__version__,
        host=settings.service_host,
        port=settings.service_port,
        products=len(settings.amplitude_products),
        project_query_concurrency=settings.project_query_concurrency,
    )

    if not settings.amplitude_products:
        logger.warning("no_amplitude_products_configured")

    registry = ProductRegistry.from_settings(settings)
    usage.set_registry(registry)

    sweep_task: Optional[asyncio.Task] = None
    if settings.cache_sweep_interval_s > 0:
        sweep_task = asyncio.create_task(
            sweep_cache_periodically(registry.cache, settings.cache_sweep_interval_s)
        )

    yield

    logger.info("usage_engine_shutting_down")

    if sweep_task is not None:
        sweep_task.cancel()
        try:
            await sweep_task
        except asyncio.CancelledError:
            pass

    usage.set_registry(None)
    await registry.close()
    logger.info("amplitude_client_closed")
