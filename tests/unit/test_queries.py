"""Tests for segmentation and user-count parameter builders."""

import json
from datetime import date

import pytest

from usage_engine.services.usage.queries import (
    EventFilter,
    MetricMode,
    SegmentationQuery,
    UserCountKind,
    filters_with_org,
    organization_filter,
    organization_segment,
    organization_variants,
    parse_metric_mode,
    user_count_params,
    validate_group_by,
)

START = date(2026, 1, 1)
END = date(2026, 2, 15)


class TestMetricMode:
    """Tests for metric mode validation."""

    @pytest.mark.parametrize("value", ["uniques", "totals", "avg", "propSum"])
    def test_accepted_modes(self, value):
        assert parse_metric_mode(value).value == value

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError, match="Unsupported metric mode"):
            parse_metric_mode("sessions")


class TestGroupBy:
    """Tests for group-by prefix validation."""

    @pytest.mark.parametrize("prop", ["gp:organization", "up:email", "ep:initial_domain"])
    def test_prefixed_properties_accepted(self, prop):
        assert validate_group_by(prop) == prop

    @pytest.mark.parametrize("prop", ["organization", "xp:thing", "gp:"])
    def test_unprefixed_properties_rejected(self, prop):
        with pytest.raises(ValueError):
            validate_group_by(prop)


class TestOrganizationMatching:
    """Tests for organization filters."""

    def test_case_variants_deduplicated(self):
        assert organization_variants("ADP") == ("ADP", "adp", "Adp")

    def test_compact_variant_strips_punctuation(self):
        variants = organization_variants("Proctor & Gamble", compact=True)
        assert variants[-1] == "proctorgamble"
        assert "PROCTOR & GAMBLE" in variants

    def test_organization_filter_uses_contains(self):
        f = organization_filter("acme", property_key="org_name")

        assert f.to_dict() == {
            "subprop_type": "user",
            "subprop_key": "org_name",
            "subprop_op": "contains",
            "subprop_value": ["acme", "ACME", "Acme"],
        }

    def test_segment_is_exact_match_json(self):
        assert json.loads(organization_segment("Acme")) == [
            {"prop": "gp:organization", "op": "is", "values": ["Acme"]}
        ]

    def test_filters_with_org_puts_org_first(self):
        extra = EventFilter("scoped", (True,), subprop_type="event")

        filters = filters_with_org("Acme", [extra])

        assert filters[0].subprop_key == "gp:organization"
        assert filters[1] is extra

    def test_filters_with_no_org(self):
        assert filters_with_org(None) == ()


class TestSegmentationQuery:
    """Tests for SegmentationQuery."""

    def test_minimal_params(self):
        params = SegmentationQuery("analysis:complete", START, END).to_params()

        assert params == {
            "e": json.dumps({"event_type": "analysis:complete"}),
            "start": "20260101",
            "end": "20260215",
            "m": "uniques",
        }

    def test_full_params(self):
        query = SegmentationQuery(
            event_type="session_end",
            start=START,
            end=END,
            metric="propSum",
            group_by="gp:organization",
            filters=(organization_filter("Acme"),),
            limit=100,
            prop_sum_property="session_duration",
        )

        params = query.to_params()

        assert params["m"] == "propSum"
        assert params["g"] == "gp:organization"
        assert params["limit"] == "100"
        assert params["p"] == "session_duration"
        event = json.loads(params["e"])
        assert event["event_type"] == "session_end"
        assert event["filters"][0]["subprop_op"] == "contains"

    def test_metric_coerced_to_enum(self):
        query = SegmentationQuery("x", START, END, metric="totals")
        assert query.metric is MetricMode.TOTALS

    def test_invalid_metric_rejected(self):
        with pytest.raises(ValueError):
            SegmentationQuery("x", START, END, metric="median")

    def test_invalid_group_by_rejected(self):
        with pytest.raises(ValueError):
            SegmentationQuery("x", START, END, group_by="organization")

    def test_reversed_dates_rejected(self):
        with pytest.raises(ValueError):
            SegmentationQuery("x", END, START)


class TestUserCountParams:
    """Tests for /users parameters."""

    def test_weekly_active_for_org(self):
        params = user_count_params(UserCountKind.ACTIVE, START, END, interval=7, organization="Acme")

        assert params["m"] == "active"
        assert params["i"] == "7"
        assert params["start"] == "20260101"
        assert json.loads(params["s"])[0]["values"] == ["Acme"]

    def test_no_segment_without_org(self):
        assert "s" not in user_count_params("new", START, END)

    def test_interval_restricted(self):
        with pytest.raises(ValueError):
            user_count_params("active", START, END, interval=14)
