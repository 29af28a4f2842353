"""Prometheus metrics endpoint for the Usage Analytics Engine."""

from fastapi import APIRouter, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

router = APIRouter()

# Request metrics
REQUEST_COUNT = Counter(
    "usage_engine_requests_total",
    "Total number of requests",
    ["method", "endpoint", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "usage_engine_request_latency_seconds",
    "Request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

# Cache metrics
CACHE_LOOKUPS = Counter(
    "usage_engine_cache_lookups_total",
    "Usage cache lookups",
    ["family", "result"],  # result: hit, miss
)

CACHE_ENTRIES = Gauge(
    "usage_engine_cache_entries",
    "Entries currently held in the usage cache",
)

# Upstream (Amplitude) metrics
UPSTREAM_QUERIES = Counter(
    "usage_engine_upstream_queries_total",
    "Amplitude API calls by outcome",
    ["endpoint", "outcome"],  # outcome: ok, rate_limited, network_error, api_error
)

UPSTREAM_RETRIES = Counter(
    "usage_engine_upstream_retries_total",
    "Amplitude API retries scheduled",
    ["reason"],  # reason: rate_limited, network_error
)

UPSTREAM_LATENCY = Histogram(
    "usage_engine_upstream_latency_seconds",
    "Amplitude API call latency in seconds (including backoff)",
    ["endpoint"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)


def record_request(method: str, endpoint: str, status_code: int, duration: float):
    """Record request metrics."""
    REQUEST_COUNT.labels(
        method=method, endpoint=endpoint, status_code=status_code
    ).inc()
    REQUEST_LATENCY.labels(method=method, endpoint=endpoint).observe(duration)


def record_cache_lookup(family: str, hit: bool):
    """Record a usage cache hit or miss."""
    CACHE_LOOKUPS.labels(family=family, result="hit" if hit else "miss").inc()


def set_cache_entries(count: int):
    """Set the current usage cache size."""
    CACHE_ENTRIES.set(count)


def record_upstream_query(endpoint: str, outcome: str, duration: float):
    """Record a completed Amplitude API call."""
    UPSTREAM_QUERIES.labels(endpoint=endpoint, outcome=outcome).inc()
    UPSTREAM_LATENCY.labels(endpoint=endpoint).observe(duration)


def record_upstream_retry(reason: str):
    """Record a scheduled retry."""
    UPSTREAM_RETRIES.labels(reason=reason).inc()


@router.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus metrics endpoint.

    Returns metrics in Prometheus text format for scraping.
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
