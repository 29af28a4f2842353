"""
Usage analytics over the Amplitude Dashboard REST API.

Provides:
- RequestGateway: authenticated calls with 429/network backoff
- quarter_range / trailing_quarters: calendar-quarter windows
- UsageCache: in-memory TTL cache with versioned keys
- Aggregation helpers: series totals, label merge, max-of-counts
- UsageEngine: metric operations for one product
- ProductRegistry: engines for every configured product
"""

from usage_engine.services.usage.aggregation import (
    AggregatedMetric,
    SeriesRow,
    combine_max_across_queries,
    filter_and_sort,
    merge_by_label,
    sum_series,
    sum_totals,
)
from usage_engine.services.usage.cache import CacheKey, UsageCache
from usage_engine.services.usage.engine import CacheTTLs, UsageEngine
from usage_engine.services.usage.errors import (
    ApiError,
    NetworkError,
    RateLimitExceeded,
    UsageEngineError,
)
from usage_engine.services.usage.gateway import RequestGateway
from usage_engine.services.usage.limiter import ProjectQueryQueue
from usage_engine.services.usage.presets import (
    PRESETS,
    QuarterlyPreset,
    generic_preset,
    get_preset,
)
from usage_engine.services.usage.quarters import QuarterRange, quarter_range, trailing_quarters
from usage_engine.services.usage.queries import DEFAULT_ORG_PROPERTY, MetricMode
from usage_engine.services.usage.registry import ProductNotFoundError, ProductRegistry

__all__ = [
    "AggregatedMetric",
    "ApiError",
    "CacheKey",
    "CacheTTLs",
    "DEFAULT_ORG_PROPERTY",
    "MetricMode",
    "NetworkError",
    "PRESETS",
    "ProductNotFoundError",
    "ProductRegistry",
    "ProjectQueryQueue",
    "QuarterRange",
    "QuarterlyPreset",
    "RateLimitExceeded",
    "RequestGateway",
    "SeriesRow",
    "UsageCache",
    "UsageEngine",
    "UsageEngineError",
    "combine_max_across_queries",
    "filter_and_sort",
    "generic_preset",
    "get_preset",
    "merge_by_label",
    "quarter_range",
    "sum_series",
    "sum_totals",
    "trailing_quarters",
]
