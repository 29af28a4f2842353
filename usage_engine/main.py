"""Usage Analytics Engine - FastAPI Application."""

import logging

import structlog
from fastapi import FastAPI

from usage_engine import __version__
from usage_engine.config import get_settings
from usage_engine.core.lifespan import lifespan
from usage_engine.core.middleware import setup_middleware
from usage_engine.routers import health, metrics, usage


def configure_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging."""
    logging.basicConfig(format="%(message)s", level=level.upper())
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Usage Analytics Engine",
        description="Quarterly and rolling usage metrics over Amplitude",
        version=__version__,
        lifespan=lifespan,
    )

    setup_middleware(app)

    app.include_router(health.router, tags=["Health"])
    app.include_router(usage.router)
    app.include_router(metrics.router)  # Metrics endpoint (excluded from OpenAPI)

    @app.get("/")
    async def root():
        """Root endpoint with service info."""
        return {
            "service": "Usage Analytics Engine",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "usage_engine.main:app",
        host=settings.service_host,
        port=settings.service_port,
    )
