"""Quarterly metric preset definitions.

A preset describes, per product, which events make up its quarterly
organization report: the organization property to filter on and, for each
reported field, the segmentation queries behind it and how their counts
combine. The engine runs a preset for the trailing three quarters.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Literal

from usage_engine.services.usage.aggregation import combine_max_across_queries
from usage_engine.services.usage.queries import (
    DEFAULT_ORG_PROPERTY,
    EventFilter,
    MetricMode,
    PropertyType,
)

Combine = Literal["sum", "max"]


@dataclass(frozen=True)
class MetricQuery:
    """One segmentation query feeding a preset field."""

    event_type: str
    metric: MetricMode = MetricMode.TOTALS
    filters: tuple[EventFilter, ...] = ()  # applied after the organization filter
    prop_sum_property: str | None = None


@dataclass(frozen=True)
class QuarterlyMetric:
    """A reported field and the queries it is computed from."""

    name: str
    queries: tuple[MetricQuery, ...]
    combine: Combine = "sum"
    required: bool = True  # optional fields degrade to 0 on failure
    divisor: float = 1.0  # e.g. 60 for seconds -> minutes

    def reduce(self, counts: Iterable[float]) -> float:
        """Combine per-query counts into the field value."""
        counts = list(counts)
        if self.combine == "max":
            value = combine_max_across_queries(counts)
        else:
            value = sum(counts)
        if self.divisor != 1.0:
            return round(value / self.divisor)
        return value


@dataclass(frozen=True)
class QuarterlyPreset:
    """Immutable quarterly report template for one product."""

    slug: str
    name: str
    description: str
    metrics: tuple[QuarterlyMetric, ...]
    org_property: str = DEFAULT_ORG_PROPERTY
    property_type: PropertyType = "user"
    compact_org_match: bool = False
    version: int = 1

    def __post_init__(self) -> None:
        names = [m.name for m in self.metrics]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate metric names in preset {self.slug}: {names}")

    @property
    def field_names(self) -> list[str]:
        return [m.name for m in self.metrics]

    def cache_variant(self) -> tuple[str, ...]:
        """Cache key discriminators: slug, version and the queried events."""
        events = sorted({q.event_type for m in self.metrics for q in m.queries})
        return (self.slug, f"p{self.version}", self.org_property, ",".join(events))

    def to_dict(self) -> dict[str, Any]:
        return {
            "slug": self.slug,
            "name": self.name,
            "description": self.description,
            "org_property": self.org_property,
            "property_type": self.property_type,
            "fields": self.field_names,
            "version": self.version,
        }


def _uniques(event_type: str, *filters: EventFilter) -> MetricQuery:
    return MetricQuery(event_type=event_type, metric=MetricMode.UNIQUES, filters=filters)


def _totals(event_type: str, *filters: EventFilter) -> MetricQuery:
    return MetricQuery(event_type=event_type, metric=MetricMode.TOTALS, filters=filters)


# =============================================================================
# Presets
# =============================================================================


def page_views_preset(page_view_event: str = "page_view") -> QuarterlyPreset:
    """Page views of ``page_view_event`` plus time spent from session_end."""
    return QuarterlyPreset(
        slug="page-views",
        name="Page Views",
        description="Page views and time spent (session duration, minutes)",
        metrics=(
            QuarterlyMetric("page_views", (_totals(page_view_event),)),
            QuarterlyMetric(
                "time_spent_minutes",
                (
                    MetricQuery(
                        event_type="session_end",
                        metric=MetricMode.PROP_SUM,
                        prop_sum_property="session_duration",
                    ),
                ),
                required=False,
                divisor=60.0,
            ),
        ),
    )


PAGE_VIEWS = page_views_preset()

# Users of any paid feature. Each event is queried separately and the largest
# count is reported; see combine_max_across_queries.
_PAID_FEATURE_QUERIES = (
    _uniques("issues:export"),
    _uniques(
        "analysis:analyze",
        EventFilter("scoped", (True, "true", "True"), subprop_type="event"),
    ),
    _uniques("analysis:startGuide"),
    _uniques("issue:share"),
    _uniques("analysis:autoColorContrast:start"),
    _uniques("record:share"),
    _uniques(
        "analysis:analyze",
        EventFilter(
            "gp:axeSettings.axeVersion",
            ("latest", "(none)"),
            subprop_op="is not",
            subprop_type="event",
        ),
    ),
    _uniques(
        "analysis:analyze",
        EventFilter(
            "gp:axeSettings.ruleset",
            ("(none)", "wcag21aa"),
            subprop_op="is not",
            subprop_type="event",
        ),
    ),
    _uniques("analysis:whatsleft"),
    _uniques("analysis:startUFA"),
)

DEVTOOLS_LOGINS = QuarterlyPreset(
    slug="devtools-logins",
    name="axe DevTools Logins",
    description="Unique and total logins plus paid feature users",
    metrics=(
        QuarterlyMetric("unique_logins", (_uniques("user:login"),)),
        QuarterlyMetric("total_logins", (_totals("user:login"),)),
        QuarterlyMetric(
            "paid_feature_users",
            _PAID_FEATURE_QUERIES,
            combine="max",
            required=False,
        ),
    ),
    version=6,
)

ACCOUNT_PORTAL = QuarterlyPreset(
    slug="account-portal",
    name="Account Portal",
    description="Jira integration sends and unique logins",
    metrics=(
        QuarterlyMetric(
            "jira_integration_sends",
            (
                _totals("integration:test:send:success"),
                _totals("integration:issue:send:success"),
            ),
        ),
        QuarterlyMetric("unique_logins", (_uniques("login"),)),
    ),
    version=2,
)

AXE_MONITOR = QuarterlyPreset(
    slug="axe-monitor",
    name="axe Monitor",
    description="Scan and dashboard activity matched on the initial domain",
    metrics=(
        QuarterlyMetric("scans_started", (_uniques("Scan Started"),)),
        QuarterlyMetric(
            "scan_overview_views", (_uniques("Scans:listView:ScanOverview:click"),)
        ),
        QuarterlyMetric("issues_page_loads", (_uniques("Issues Page Loaded"),)),
        QuarterlyMetric(
            "project_summary_views", (_totals("Project Summary Dashboard Loaded"),)
        ),
    ),
    org_property="initial_domain",
    property_type="event",
    compact_org_match=True,
    version=2,
)

DEVTOOLS_MOBILE = QuarterlyPreset(
    slug="devtools-mobile",
    name="axe DevTools Mobile",
    description="Scans, dashboard views, shared and locally saved results",
    metrics=(
        QuarterlyMetric("scans_created", (_totals("Scan:create"),)),
        QuarterlyMetric("dashboard_views", (_totals("dashboard_view"),)),
        QuarterlyMetric(
            "results_shared", (_totals("share_copy"), _totals("share_email"))
        ),
        QuarterlyMetric("total_issues", (_totals("scan:total_issues"),)),
        QuarterlyMetric("local_results_users", (_uniques("get_results_locally"),)),
    ),
    version=2,
)

AXE_ASSISTANT = QuarterlyPreset(
    slug="axe-assistant",
    name="Axe Assistant",
    description="Messages sent",
    metrics=(QuarterlyMetric("messages_sent", (_totals("user:message_sent"),)),),
    org_property="org_name",
)

AXE_REPORTS = QuarterlyPreset(
    slug="axe-reports",
    name="Axe Reports",
    description="Usage and outcomes chart loads",
    metrics=(
        QuarterlyMetric("usage_chart_views", (_totals("usage:chart:load"),)),
        QuarterlyMetric("outcomes_chart_views", (_totals("outcomes:chart:load"),)),
    ),
    org_property="orgName",
)

DEQUE_UNIVERSITY = QuarterlyPreset(
    slug="deque-university",
    name="Deque University",
    description="Page views, organization matched within the user's email",
    metrics=(QuarterlyMetric("page_views", (_totals("Page Viewed"),)),),
    org_property="email",
)

DEVELOPER_HUB = QuarterlyPreset(
    slug="developer-hub",
    name="Developer Hub",
    description="Commits, scans and unique API keys run",
    metrics=(
        QuarterlyMetric("commits", (_totals("page.commit"),)),
        QuarterlyMetric("scans", (_totals("Number of Scans"),)),
        QuarterlyMetric("unique_api_keys_run", (_uniques("Unique API Keys Run"),)),
    ),
)


def generic_preset(
    event_type: str, org_property: str = DEFAULT_ORG_PROPERTY
) -> QuarterlyPreset:
    """Event count and unique users of a single arbitrary event."""
    return QuarterlyPreset(
        slug="generic",
        name="Generic",
        description=f"Event count and unique users for {event_type}",
        metrics=(
            QuarterlyMetric("event_count", (_totals(event_type),)),
            QuarterlyMetric("unique_users", (_uniques(event_type),)),
        ),
        org_property=org_property,
    )


# All available presets keyed by slug
PRESETS: dict[str, QuarterlyPreset] = {
    preset.slug: preset
    for preset in (
        PAGE_VIEWS,
        DEVTOOLS_LOGINS,
        ACCOUNT_PORTAL,
        AXE_MONITOR,
        DEVTOOLS_MOBILE,
        AXE_ASSISTANT,
        AXE_REPORTS,
        DEQUE_UNIVERSITY,
        DEVELOPER_HUB,
    )
}


def get_preset(slug: str) -> QuarterlyPreset:
    """Look up a preset by slug, raising ValueError when unknown."""
    try:
        return PRESETS[slug]
    except KeyError:
        raise ValueError(
            f"Unknown quarterly preset '{slug}' (available: {', '.join(sorted(PRESETS))})"
        ) from None
