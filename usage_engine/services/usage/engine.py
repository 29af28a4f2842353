"""
Usage metric retrieval for one Amplitude project.

Every operation follows the same flow: cache lookup, then on a miss compute
the date windows, run the upstream queries through the project's query
queue, aggregate, store, return. Cached values are plain JSON-ready dicts.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

import structlog

from usage_engine.config import ProductCredentials
from usage_engine.services.usage.aggregation import (
    AggregatedMetric,
    daily_points,
    filter_and_sort,
    first_series,
    first_series_total,
    merge_by_label,
    series_rows_from_response,
    sort_by_field,
    sum_series,
    sum_totals,
    x_values_from_response,
)
from usage_engine.services.usage.cache import CacheKey, UsageCache
from usage_engine.services.usage.errors import UsageEngineError
from usage_engine.services.usage.gateway import RequestGateway
from usage_engine.services.usage.limiter import ProjectQueryQueue
from usage_engine.services.usage.presets import (
    QuarterlyPreset,
    page_views_preset,
)
from usage_engine.services.usage.quarters import (
    QuarterRange,
    format_api_date,
    lookback_window,
    quarter_range,
    trailing_quarters,
)
from usage_engine.services.usage.queries import (
    DEFAULT_GROUP_LIMIT,
    DEFAULT_ORG_PROPERTY,
    EVENT_LIST_ENDPOINT,
    SEGMENTATION_ENDPOINT,
    USER_PROPERTY_TAXONOMY_ENDPOINT,
    USERS_ENDPOINT,
    EventFilter,
    MetricMode,
    PropertyType,
    SegmentationQuery,
    UserCountKind,
    filters_with_org,
    organization_filter,
    user_count_params,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

QUARTERS_REPORTED = 3
TOP_EVENTS_LIMIT = 10

DEFAULT_PRIMARY_FEATURE_EVENT = "analysis:complete"
DEFAULT_SECONDARY_FEATURE_EVENTS = ("user_paid_feature", "igt:scan:complete")
DEFAULT_FEATURE_GROUP_BY = "gp:initial_referring_domain"


@dataclass(frozen=True)
class CacheTTLs:
    """TTL in minutes per group of cached results."""

    usage: float = 15
    quarterly: float = 30
    taxonomy: float = 60


def _quarter_header(offset: int, window: QuarterRange) -> dict[str, Any]:
    return {
        "quarter": window.display_label(offset),
        "offset": offset,
        "start_date": format_api_date(window.start_date),
        "end_date": format_api_date(window.end_date),
    }


def _first_value(body: Any) -> float:
    """First bucket of an interval-aggregated /users response."""
    values = first_series(body)
    return values[0] if values else 0


class UsageEngine:
    """
    Usage metric operations for one product's Amplitude project.

    The engine owns no connections: the gateway, cache and query queue are
    injected so that one cache and one queue can be shared by every product.

    Usage:
        engine = UsageEngine(product, gateway, cache, queue)
        report = await engine.quarterly_metrics("Acme", DEVTOOLS_LOGINS)
    """

    def __init__(
        self,
        product: ProductCredentials,
        gateway: RequestGateway,
        cache: UsageCache,
        queue: ProjectQueryQueue,
        ttls: Optional[CacheTTLs] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        """
        Initialize the engine.

        Args:
            product: Credentials and display name of the product
            gateway: Authenticated gateway for the product's project
            cache: Shared result cache
            queue: Shared per-project query queue
            ttls: Cache TTLs per result group
            today: Returns the reference date (defaults to the current UTC date)
        """
        self.product = product
        self.gateway = gateway
        self.cache = cache
        self.queue = queue
        self.ttls = ttls or CacheTTLs()
        self._today = today
        self._log = logger.bind(product=product.slug, project_id=product.project_id)

    @property
    def project_id(self) -> str:
        return self.product.project_id

    def _now(self) -> Optional[date]:
        return self._today() if self._today is not None else None

    # =========================================================================
    # Query plumbing
    # =========================================================================

    def _fetch(
        self, endpoint: str, params: Optional[dict[str, str]] = None
    ) -> Callable[[], Awaitable[Any]]:
        """Deferred gateway call, for submission to the query queue."""
        return lambda: self.gateway.fetch(endpoint, params)

    def _segmentation(self, query: SegmentationQuery) -> Callable[[], Awaitable[Any]]:
        return self._fetch(SEGMENTATION_ENDPOINT, query.to_params())

    def _optional(
        self,
        query: Callable[[], Awaitable[T]],
        default: T,
        description: str,
    ) -> Callable[[], Awaitable[T]]:
        """Wrap a secondary query so an engine failure yields ``default``."""

        async def run() -> T:
            try:
                return await query()
            except UsageEngineError as e:
                self._log.warning(
                    "optional_query_failed",
                    query=description,
                    error=str(e),
                    error_code=e.kind,
                )
                return default

        return run

    async def _run(self, query: Callable[[], Awaitable[T]]) -> T:
        return await self.queue.run(self.project_id, query)

    async def _map(self, queries: Sequence[Callable[[], Awaitable[T]]]) -> list[T]:
        return await self.queue.map(self.project_id, queries)

    def _key(self, family: str, **kwargs: Any) -> CacheKey:
        return CacheKey.for_family(self.project_id, family, **kwargs)

    # =========================================================================
    # User counts
    # =========================================================================

    async def user_counts(
        self,
        kind: "str | UserCountKind",
        start: date,
        end: date,
        interval: int = 1,
        organization: Optional[str] = None,
    ) -> Any:
        """
        Active or new users over a date range.

        Returns the /users response body; ``data.series[0]`` holds one value
        per interval bucket aligned to ``data.xValues``.
        """
        params = user_count_params(kind, start, end, interval, organization)
        return await self._run(self._fetch(USERS_ENDPOINT, params))

    async def product_usage(
        self, days: int = 30, organization: Optional[str] = None
    ) -> dict[str, Any]:
        """Daily active/new users over the last ``days`` days, with totals."""
        start, end = lookback_window(days, self._now())
        active_body, new_body = await self._map(
            [
                self._fetch(
                    USERS_ENDPOINT,
                    user_count_params(UserCountKind.ACTIVE, start, end, 1, organization),
                ),
                self._fetch(
                    USERS_ENDPOINT,
                    user_count_params(UserCountKind.NEW, start, end, 1, organization),
                ),
            ]
        )

        points = daily_points(
            x_values_from_response(active_body),
            first_series(active_body),
            first_series(new_body),
        )

        # The event list only describes the whole project
        top_events: list[dict[str, Any]] = []
        if organization is None:
            top_events = await self._top_events()

        result = {
            "product": self.product.name,
            "project_id": self.project_id,
            "period": f"{days} days",
            "start_date": format_api_date(start),
            "end_date": format_api_date(end),
            "daily_usage": [p.to_dict() for p in points],
            "total_active_users": sum(p.active_users for p in points),
            "total_new_users": sum(p.new_users for p in points),
            "top_events": top_events,
        }
        if organization is not None:
            result["organization"] = organization
        return result

    async def _top_events(self) -> list[dict[str, Any]]:
        body = await self._run(
            self._optional(self._fetch(EVENT_LIST_ENDPOINT), None, "event_list")
        )
        if not isinstance(body, dict):
            return []
        events = body.get("data") or []
        # The event list carries names only, no counts
        return [
            {"event_type": event.get("name"), "count": 0}
            for event in events[:TOP_EVENTS_LIMIT]
            if isinstance(event, dict)
        ]

    async def usage_summary(self, organization: Optional[str] = None) -> dict[str, Any]:
        """
        Unique active and new users over the last 7 and 30 days.

        Uses 7- and 30-day intervals so each user is counted once per window
        rather than once per day.
        """
        key = self._key("summary", organization=organization)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        self._log.info("usage_summary_fetch", organization=organization)
        now = self._now()
        start_7, end_7 = lookback_window(7, now)
        start_30, end_30 = lookback_window(30, now)
        active_7, new_7, active_30, new_30 = await self._map(
            [
                self._fetch(
                    USERS_ENDPOINT,
                    user_count_params(UserCountKind.ACTIVE, start_7, end_7, 7, organization),
                ),
                self._fetch(
                    USERS_ENDPOINT,
                    user_count_params(UserCountKind.NEW, start_7, end_7, 7, organization),
                ),
                self._fetch(
                    USERS_ENDPOINT,
                    user_count_params(
                        UserCountKind.ACTIVE, start_30, end_30, 30, organization
                    ),
                ),
                self._fetch(
                    USERS_ENDPOINT,
                    user_count_params(UserCountKind.NEW, start_30, end_30, 30, organization),
                ),
            ]
        )

        result: dict[str, Any] = {
            "product": self.product.name,
            "last_7_days": {
                "active_users": _first_value(active_7),
                "new_users": _first_value(new_7),
            },
            "last_30_days": {
                "active_users": _first_value(active_30),
                "new_users": _first_value(new_30),
            },
        }
        if organization is not None:
            result["organization"] = organization

        self.cache.set(key, result, self.ttls.usage)
        return result

    # =========================================================================
    # Event segmentation
    # =========================================================================

    async def event_segmentation(
        self,
        event_type: str,
        group_by: str,
        start: date,
        end: date,
        metric: "str | MetricMode" = MetricMode.UNIQUES,
        limit: int = DEFAULT_GROUP_LIMIT,
        filters: Sequence[EventFilter] = (),
    ) -> list[AggregatedMetric]:
        """
        Per-label totals of ``event_type`` grouped by ``group_by``.

        Placeholder labels and zero rows are dropped; the result is sorted by
        total, descending.
        """
        query = SegmentationQuery(
            event_type=event_type,
            start=start,
            end=end,
            metric=metric,
            group_by=group_by,
            filters=tuple(filters),
            limit=limit,
        )
        body = await self._run(self._segmentation(query))
        return filter_and_sort(sum_series(series_rows_from_response(body)))

    async def event_usage_by_label_quarterly(
        self, event_type: str, group_by: str = DEFAULT_ORG_PROPERTY
    ) -> dict[str, Any]:
        """Unique users of ``event_type`` per label for the last three quarters."""
        key = self._key("event_quarterly", event_type=event_type, variant=(group_by,))
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        self._log.info("event_quarterly_fetch", event_type=event_type, group_by=group_by)
        windows = trailing_quarters(QUARTERS_REPORTED, self._now())
        bodies = await self._map(
            [
                self._segmentation(
                    SegmentationQuery(
                        event_type=event_type,
                        start=window.start_date,
                        end=window.end_date,
                        metric=MetricMode.UNIQUES,
                        group_by=group_by,
                        limit=DEFAULT_GROUP_LIMIT,
                    )
                )
                for _, window in windows
            ]
        )

        quarters = []
        for (offset, window), body in zip(windows, bodies):
            labels = filter_and_sort(sum_series(series_rows_from_response(body)))
            quarters.append(
                {
                    **_quarter_header(offset, window),
                    "labels": [m.to_dict() for m in labels],
                    "total": sum_totals(labels),
                }
            )

        result = {"event_type": event_type, "group_by": group_by, "quarters": quarters}
        self.cache.set(key, result, self.ttls.quarterly)
        return result

    async def feature_usage_by_label(
        self,
        group_by: str = DEFAULT_FEATURE_GROUP_BY,
        days: int = 30,
        primary_event: str = DEFAULT_PRIMARY_FEATURE_EVENT,
        secondary_events: Sequence[str] = DEFAULT_SECONDARY_FEATURE_EVENTS,
    ) -> dict[str, Any]:
        """
        Visitors and paid-feature users per label over the last ``days`` days.

        Visitors are unique users of ``primary_event``; a failure there
        propagates. Paid-feature users come from the first of
        ``secondary_events`` that can be queried; if none can, the field is
        zero for every label. Rows are ordered by visitors, descending.
        """
        key = self._key(
            "feature_usage",
            event_type=primary_event,
            variant=(group_by, str(days), *secondary_events),
        )
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        start, end = lookback_window(days, self._now())
        visitors = await self.event_segmentation(primary_event, group_by, start, end)

        paid: list[AggregatedMetric] = []
        paid_event: Optional[str] = None
        for event_type in secondary_events:
            try:
                paid = await self.event_segmentation(event_type, group_by, start, end)
            except UsageEngineError as e:
                self._log.warning(
                    "secondary_feature_event_failed",
                    event_type=event_type,
                    error=str(e),
                    error_code=e.kind,
                )
                continue
            paid_event = event_type
            break

        # Ranked by visitors; the cross-field sum double counts paying visitors
        merged = sort_by_field(
            merge_by_label(("visitors", visitors), ("paid_feature_users", paid)),
            "visitors",
        )
        result = {
            "period": f"Last {days} days",
            "group_by": group_by,
            "primary_event": primary_event,
            "secondary_event": paid_event,
            "labels": [{"label": m.label, **m.secondary_totals} for m in merged],
        }
        self.cache.set(key, result, self.ttls.usage)
        return result

    # =========================================================================
    # Quarterly organization reports
    # =========================================================================

    async def _preset_quarters(
        self, preset: QuarterlyPreset, organization: Optional[str]
    ) -> list[dict[str, Any]]:
        """Run every query of ``preset`` for the trailing quarters."""
        windows = trailing_quarters(QUARTERS_REPORTED, self._now())

        # One flat submission keeps per-project ordering: quarter, metric, query
        plan: list[tuple[int, str]] = []
        queries: list[Callable[[], Awaitable[float]]] = []
        for index, (_, window) in enumerate(windows):
            for metric in preset.metrics:
                for metric_query in metric.queries:
                    query = SegmentationQuery(
                        event_type=metric_query.event_type,
                        start=window.start_date,
                        end=window.end_date,
                        metric=metric_query.metric,
                        filters=filters_with_org(
                            organization,
                            metric_query.filters,
                            property_key=preset.org_property,
                            property_type=preset.property_type,
                            compact=preset.compact_org_match,
                        ),
                        prop_sum_property=metric_query.prop_sum_property,
                    )
                    count = self._series_total(query)
                    if not metric.required:
                        count = self._optional(
                            count, 0, f"{preset.slug}:{metric.name}:{metric_query.event_type}"
                        )
                    plan.append((index, metric.name))
                    queries.append(count)

        counts = await self._map(queries)

        per_quarter: list[dict[str, list[float]]] = [{} for _ in windows]
        for (index, name), count in zip(plan, counts):
            per_quarter[index].setdefault(name, []).append(count)

        quarters = []
        for (offset, window), collected in zip(windows, per_quarter):
            entry = _quarter_header(offset, window)
            for metric in preset.metrics:
                entry[metric.name] = metric.reduce(collected.get(metric.name, []))
            quarters.append(entry)
        return quarters

    def _series_total(self, query: SegmentationQuery) -> Callable[[], Awaitable[float]]:
        fetch = self._segmentation(query)

        async def run() -> float:
            return first_series_total(await fetch())

        return run

    async def quarterly_metrics(
        self, organization: str, preset: QuarterlyPreset
    ) -> dict[str, Any]:
        """
        Quarterly report of ``preset`` for one organization.

        The organization is matched with a case-insensitive "contains" filter
        on the preset's organization property.
        """
        key = self._key(
            "quarterly_metrics",
            organization=organization,
            variant=preset.cache_variant(),
        )
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        self._log.info(
            "quarterly_metrics_fetch", organization=organization, preset=preset.slug
        )
        result = {
            "organization": organization,
            "preset": preset.slug,
            "fields": preset.field_names,
            "quarters": await self._preset_quarters(preset, organization),
        }
        self.cache.set(key, result, self.ttls.quarterly)
        return result

    async def quarterly_product_metrics(
        self, page_view_event: str = "page_view"
    ) -> dict[str, Any]:
        """Page views and time spent across all organizations, per quarter."""
        key = self._key("quarterly_product", event_type=page_view_event)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        self._log.info("quarterly_product_fetch", page_view_event=page_view_event)
        preset = page_views_preset(page_view_event)
        result = {
            "preset": preset.slug,
            "fields": preset.field_names,
            "quarters": await self._preset_quarters(preset, None),
        }
        self.cache.set(key, result, self.ttls.quarterly)
        return result

    # =========================================================================
    # Discovery
    # =========================================================================

    async def probe_property(
        self,
        organization: str,
        event_type: str,
        property_key: str,
        property_type: PropertyType = "user",
    ) -> float:
        """
        Current-quarter event count with ``property_key`` matched to the org.

        Used to discover which property identifies organizations in a
        project. Upstream failures count as no data.
        """
        window = quarter_range(0, self._now())
        query = SegmentationQuery(
            event_type=event_type,
            start=window.start_date,
            end=window.end_date,
            metric=MetricMode.TOTALS,
            filters=(
                organization_filter(
                    organization, property_key=property_key, property_type=property_type
                ),
            ),
        )
        return await self._run(
            self._optional(
                self._series_total(query), 0, f"probe:{property_type}:{property_key}"
            )
        )

    async def user_properties(self) -> list[str]:
        """User property names defined in the project's taxonomy."""
        key = self._key("user_properties")
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        try:
            body = await self._run(self._fetch(USER_PROPERTY_TAXONOMY_ENDPOINT))
        except UsageEngineError as e:
            self._log.warning("user_properties_failed", error=str(e), error_code=e.kind)
            return []

        entries = body.get("data") if isinstance(body, dict) else None
        properties = [
            entry["user_property"]
            for entry in entries or []
            if isinstance(entry, dict) and entry.get("user_property")
        ]
        self._log.info("user_properties_loaded", count=len(properties))
        self.cache.set(key, properties, self.ttls.taxonomy)
        return properties
