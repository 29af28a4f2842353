"""Middleware and exception handlers for the FastAPI application."""

import os
import time
import uuid

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from usage_engine import __version__
from usage_engine.routers import metrics
from usage_engine.services.usage.errors import UsageEngineError
from usage_engine.services.usage.registry import ProductNotFoundError

logger = structlog.get_logger(__name__)


def setup_cors(app: FastAPI) -> None:
    """Configure CORS middleware."""
    cors_origins_str = os.environ.get("CORS_ORIGINS", "*")
    if cors_origins_str == "*":
        # Development mode - allow all (will log warning)
        cors_origins = ["*"]
        logger.warning("cors_allow_all_origins")
    else:
        cors_origins = [origin.strip() for origin in cors_origins_str.split(",")]
        logger.info("cors_origins_configured", origins=cors_origins)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )


async def request_middleware(request: Request, call_next):
    """Add request ID and timing to all requests, and record request metrics."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

    # Bind request context to logger
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    start_time = time.perf_counter()

    try:
        response = await call_next(request)
    except Exception as e:
        logger.exception("request_failed", error=str(e))
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "retryable": True},
            headers={
                "X-Request-ID": request_id,
                "X-API-Version": __version__,
            },
        )

    duration_ms = (time.perf_counter() - start_time) * 1000

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Response-Time-Ms"] = f"{duration_ms:.2f}"
    response.headers["X-API-Version"] = __version__

    # Label by route template so organization names don't become label values
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)

    # Skip /metrics endpoint to avoid recursion
    if endpoint != "/metrics":
        metrics.record_request(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
            duration=duration_ms / 1000,
        )

    logger.info(
        "request_completed",
        status_code=response.status_code,
        duration_ms=round(duration_ms, 2),
    )

    return response


# =============================================================================
# Exception handlers
# =============================================================================


async def usage_engine_error_handler(request: Request, exc: UsageEngineError):
    """Upstream failures surface as 502 with the failure kind."""
    logger.warning(
        "upstream_query_failed",
        error=str(exc),
        error_code=exc.kind,
        retryable=exc.retryable,
    )
    return JSONResponse(
        status_code=502,
        content={
            "detail": str(exc),
            "error_code": exc.kind,
            "retryable": exc.retryable,
        },
    )


async def product_not_found_handler(request: Request, exc: ProductNotFoundError):
    return JSONResponse(
        status_code=404,
        content={
            "detail": str(exc),
            "error_code": "product_not_found",
            "retryable": False,
            "available": exc.available,
        },
    )


async def value_error_handler(request: Request, exc: ValueError):
    """Invalid query shapes (bad group-by prefix, metric mode, dates)."""
    return JSONResponse(
        status_code=422,
        content={
            "detail": str(exc),
            "error_code": "invalid_request",
            "retryable": False,
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Map engine exceptions to JSON error responses."""
    app.add_exception_handler(UsageEngineError, usage_engine_error_handler)
    app.add_exception_handler(ProductNotFoundError, product_not_found_handler)
    app.add_exception_handler(ValueError, value_error_handler)


def setup_middleware(app: FastAPI) -> None:
    """Set up all middleware for the application."""
    setup_cors(app)

    # Request middleware (request ID, timing, metrics)
    app.middleware("http")(request_middleware)

    setup_exception_handlers(app)
