"""Builders for Amplitude segmentation and user-count query parameters."""

import json
import re
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Literal, Optional, Sequence

from usage_engine.services.usage.quarters import format_api_date

SEGMENTATION_ENDPOINT = "/events/segmentation"
USERS_ENDPOINT = "/users"
EVENT_LIST_ENDPOINT = "/events/list"
USER_PROPERTY_TAXONOMY_ENDPOINT = "/taxonomy/user-property"

DEFAULT_ORG_PROPERTY = "gp:organization"
DEFAULT_GROUP_LIMIT = 100

# Group-by properties must name their scope: group, user or event property
GROUP_BY_PREFIXES = ("gp:", "up:", "ep:")

PropertyType = Literal["user", "event"]


class MetricMode(str, Enum):
    """Segmentation metric modes accepted by the ``m`` parameter."""

    UNIQUES = "uniques"
    TOTALS = "totals"
    AVG = "avg"
    PROP_SUM = "propSum"


class UserCountKind(str, Enum):
    """Metric modes of the /users endpoint."""

    ACTIVE = "active"
    NEW = "new"


def parse_metric_mode(value: "str | MetricMode") -> MetricMode:
    """Validate a metric mode, raising ValueError on anything else."""
    try:
        return MetricMode(value)
    except ValueError:
        allowed = ", ".join(m.value for m in MetricMode)
        raise ValueError(
            f"Unsupported metric mode '{value}' (expected one of: {allowed})"
        ) from None


def validate_group_by(group_by: str) -> str:
    """Require a gp:/up:/ep: prefix on group-by properties."""
    if not group_by.startswith(GROUP_BY_PREFIXES) or len(group_by) <= 3:
        raise ValueError(
            f"group_by '{group_by}' must start with one of {', '.join(GROUP_BY_PREFIXES)}"
        )
    return group_by


# =============================================================================
# Filters
# =============================================================================


@dataclass(frozen=True)
class EventFilter:
    """One entry of the ``filters`` list inside the ``e`` parameter."""

    subprop_key: str
    subprop_value: tuple[Any, ...]
    subprop_op: str = "is"
    subprop_type: PropertyType = "user"

    def to_dict(self) -> dict[str, Any]:
        return {
            "subprop_type": self.subprop_type,
            "subprop_key": self.subprop_key,
            "subprop_op": self.subprop_op,
            "subprop_value": list(self.subprop_value),
        }


def organization_variants(organization: str, compact: bool = False) -> tuple[str, ...]:
    """
    Case variants of an organization name for "contains" matching.

    "ADP" -> ("ADP", "adp", "Adp"); Amplitude's contains operator is
    case sensitive, so each spelling is sent. ``compact`` adds the name with
    non-alphanumerics stripped ("Proctor & Gamble" -> "proctorgamble") for
    matching against domain prefixes.
    """
    variants = [
        organization,
        organization.lower(),
        organization.upper(),
        organization[:1].upper() + organization[1:].lower(),
    ]
    if compact:
        variants.append(re.sub(r"[^a-zA-Z0-9]", "", organization).lower())

    # Preserve order, drop duplicates and empties
    seen: dict[str, None] = {}
    for variant in variants:
        if variant:
            seen.setdefault(variant, None)
    return tuple(seen)


def organization_filter(
    organization: str,
    property_key: str = DEFAULT_ORG_PROPERTY,
    property_type: PropertyType = "user",
    compact: bool = False,
) -> EventFilter:
    """Case-insensitive "contains" filter matching an organization."""
    return EventFilter(
        subprop_type=property_type,
        subprop_key=property_key,
        subprop_op="contains",
        subprop_value=organization_variants(organization, compact=compact),
    )


def organization_segment(organization: str, prop: str = DEFAULT_ORG_PROPERTY) -> str:
    """JSON segment filter (``s`` parameter) for an exact organization match."""
    return json.dumps([{"prop": prop, "op": "is", "values": [organization]}])


# =============================================================================
# Queries
# =============================================================================


@dataclass(frozen=True)
class SegmentationQuery:
    """Parameters of one /events/segmentation call."""

    event_type: str
    start: date
    end: date
    metric: MetricMode = MetricMode.UNIQUES
    group_by: Optional[str] = None
    filters: tuple[EventFilter, ...] = ()
    segments: Optional[str] = None  # JSON-encoded segment filter array
    limit: Optional[int] = None
    prop_sum_property: Optional[str] = None  # ``p`` for propSum / avg

    def __post_init__(self) -> None:
        object.__setattr__(self, "metric", parse_metric_mode(self.metric))
        if self.group_by is not None:
            validate_group_by(self.group_by)
        if self.end < self.start:
            raise ValueError(f"end {self.end} is before start {self.start}")

    def event_param(self) -> str:
        """JSON for the ``e`` parameter."""
        event: dict[str, Any] = {"event_type": self.event_type}
        if self.filters:
            event["filters"] = [f.to_dict() for f in self.filters]
        return json.dumps(event)

    def to_params(self) -> dict[str, str]:
        params = {
            "e": self.event_param(),
            "start": format_api_date(self.start),
            "end": format_api_date(self.end),
            "m": self.metric.value,
        }
        if self.group_by:
            params["g"] = self.group_by
        if self.segments:
            params["s"] = self.segments
        if self.limit is not None:
            params["limit"] = str(self.limit)
        if self.prop_sum_property:
            params["p"] = self.prop_sum_property
        return params


def user_count_params(
    kind: "str | UserCountKind",
    start: date,
    end: date,
    interval: int = 1,
    organization: Optional[str] = None,
) -> dict[str, str]:
    """
    Parameters for /users.

    ``interval`` is 1 (daily), 7 (weekly) or 30 (monthly); weekly and monthly
    buckets count each user once per bucket.
    """
    if interval not in (1, 7, 30):
        raise ValueError(f"interval must be 1, 7 or 30, got {interval}")
    params = {
        "m": UserCountKind(kind).value,
        "start": format_api_date(start),
        "end": format_api_date(end),
        "i": str(interval),
    }
    if organization:
        params["s"] = organization_segment(organization)
    return params


def filters_with_org(
    organization: Optional[str],
    extra: Sequence[EventFilter] = (),
    property_key: str = DEFAULT_ORG_PROPERTY,
    property_type: PropertyType = "user",
    compact: bool = False,
) -> tuple[EventFilter, ...]:
    """Organization filter (when given) followed by any extra filters."""
    filters: list[EventFilter] = []
    if organization:
        filters.append(
            organization_filter(
                organization,
                property_key=property_key,
                property_type=property_type,
                compact=compact,
            )
        )
    filters.extend(extra)
    return tuple(filters)

