"""
Aggregation of segmentation responses into per-label totals.

Handles:
- Parsing the {data: {series, seriesLabels, xValues}} response shape
- Summing each series into a single total
- Dropping placeholder labels and zero rows
- Merging independent query results by label
- The max-of-counts approximation for cross-event unique users
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Sequence

import structlog

logger = structlog.get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

# Labels Amplitude uses for "property not set"
NOISE_LABELS = frozenset({"", "(none)", "unknown"})

UNKNOWN_LABEL = "unknown"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class SeriesRow:
    """One labelled series from a segmentation response."""

    label: str
    values: tuple[Optional[float], ...]  # aligned to the response xValues


@dataclass(frozen=True)
class AggregatedMetric:
    """Per-label total, with any merged per-query totals."""

    label: str
    total: float
    secondary_totals: Mapping[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "total": self.total,
            **dict(self.secondary_totals),
        }


# =============================================================================
# Response Parsing
# =============================================================================


def _response_data(body: Any) -> Mapping[str, Any]:
    if not isinstance(body, Mapping):
        return {}
    data = body.get("data")
    return data if isinstance(data, Mapping) else {}


def series_rows_from_response(body: Any) -> list[SeriesRow]:
    """
    Pair each series with its label.

    Missing labels become "unknown"; a label without a series gets an empty
    series. Only ``series`` and ``seriesLabels`` are read.
    """
    data = _response_data(body)
    labels = data.get("seriesLabels") or []
    series = data.get("series") or []

    rows: list[SeriesRow] = []
    for i, raw_label in enumerate(labels):
        label = str(raw_label) if raw_label not in (None, "") else UNKNOWN_LABEL
        values = series[i] if i < len(series) and series[i] else []
        rows.append(SeriesRow(label=label, values=tuple(values)))
    return rows


def x_values_from_response(body: Any) -> list[str]:
    """Shared x-axis of a response (dates for time series)."""
    return list(_response_data(body).get("xValues") or [])


def first_series(body: Any) -> list[float]:
    """First series of an ungrouped response, with gaps as zero."""
    series = _response_data(body).get("series") or []
    if not series or not series[0]:
        return []
    return [value or 0 for value in series[0]]


def first_series_total(body: Any) -> float:
    """Sum of the first series of an ungrouped response."""
    return sum(first_series(body))


# =============================================================================
# Reductions
# =============================================================================


def sum_series(rows: Iterable[SeriesRow]) -> list[AggregatedMetric]:
    """Collapse each row to one total; absent positions count as zero."""
    return [
        AggregatedMetric(label=row.label, total=sum(value or 0 for value in row.values))
        for row in rows
    ]


def filter_and_sort(metrics: Iterable[AggregatedMetric]) -> list[AggregatedMetric]:
    """
    Drop placeholder labels and zero totals, then sort by total descending.

    Ties are ordered by label so results are deterministic.
    """
    kept = [m for m in metrics if m.label not in NOISE_LABELS and m.total != 0]
    return sorted(kept, key=lambda m: (-m.total, m.label))


def merge_by_label(
    *metric_sets: tuple[str, Sequence[AggregatedMetric]],
) -> list[AggregatedMetric]:
    """
    Union named metric sets into one row per label.

    Each argument is ``(field_name, metrics)``. Every output row carries a
    ``secondary_totals`` entry for every field (zero when the label was absent
    from that set) and ``total`` is the sum across fields, so the result does
    not depend on argument order.

    Example:
        merge_by_label(("visitors", visitors), ("paid_feature_users", paid))
    """
    field_names = [name for name, _ in metric_sets]
    if len(set(field_names)) != len(field_names):
        raise ValueError(f"Duplicate field names in merge: {field_names}")

    per_label: dict[str, dict[str, float]] = {}
    for name, metrics in metric_sets:
        for metric in metrics:
            fields = per_label.setdefault(metric.label, {})
            fields[name] = fields.get(name, 0) + metric.total

    merged = []
    for label, fields in per_label.items():
        secondary = {name: fields.get(name, 0) for name in sorted(field_names)}
        merged.append(
            AggregatedMetric(
                label=label,
                total=sum(secondary.values()),
                secondary_totals=secondary,
            )
        )
    return sorted(merged, key=lambda m: (-m.total, m.label))


def sort_by_field(
    metrics: Iterable[AggregatedMetric], field_name: str
) -> list[AggregatedMetric]:
    """Order merged rows by one field, descending, ties by label."""
    return sorted(
        metrics,
        key=lambda m: (-m.secondary_totals.get(field_name, 0), m.label),
    )


def combine_max_across_queries(counts: Iterable[float]) -> float:
    """
    Approximate unique users across several events as the largest count.

    The segmentation API cannot union user sets across independent event
    queries, so the true de-duplicated count is unavailable. Users of the
    most-used event are a lower bound on the union and the max is what the
    dashboard reports; treat it as an approximation, not an exact count.
    """
    return max([0, *counts])


def sum_totals(metrics: Iterable[AggregatedMetric]) -> float:
    """Total across all labels."""
    return sum(m.total for m in metrics)


@dataclass(frozen=True)
class DailyPoint:
    """Active and new users on one day of a rolling window."""

    date: str
    active_users: float
    new_users: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "active_users": self.active_users,
            "new_users": self.new_users,
        }


def daily_points(
    x_values: Sequence[str],
    active: Sequence[Optional[float]],
    new: Sequence[Optional[float]],
) -> list[DailyPoint]:
    """
    Zip the shared x-axis with the active and new user series.

    The active response's x-axis drives the output; positions missing from
    either series count as zero.
    """
    points = []
    for i, day in enumerate(x_values):
        active_users = active[i] if i < len(active) and active[i] else 0
        new_users = new[i] if i < len(new) and new[i] else 0
        points.append(DailyPoint(date=day, active_users=active_users, new_users=new_users))
    return points
