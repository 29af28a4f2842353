"""Tests for segmentation response aggregation."""

import pytest

from usage_engine.services.usage.aggregation import (
    AggregatedMetric,
    SeriesRow,
    combine_max_across_queries,
    daily_points,
    filter_and_sort,
    first_series_total,
    merge_by_label,
    series_rows_from_response,
    sort_by_field,
    sum_series,
    sum_totals,
    x_values_from_response,
)


def metric(label, total):
    return AggregatedMetric(label=label, total=total)


class TestResponseParsing:
    """Tests for reading {data: {series, seriesLabels, xValues}}."""

    def test_rows_pair_labels_with_series(self):
        body = {
            "data": {
                "series": [[1, 2], [3, None]],
                "seriesLabels": ["acme.com", "globex.com"],
                "xValues": ["2026-01-01", "2026-01-02"],
            }
        }

        rows = series_rows_from_response(body)

        assert rows == [
            SeriesRow("acme.com", (1, 2)),
            SeriesRow("globex.com", (3, None)),
        ]
        assert x_values_from_response(body) == ["2026-01-01", "2026-01-02"]

    def test_missing_label_becomes_unknown(self):
        body = {"data": {"series": [[5], [6]], "seriesLabels": [None, ""]}}

        labels = [row.label for row in series_rows_from_response(body)]
        assert labels == ["unknown", "unknown"]

    def test_label_without_series_gets_empty_values(self):
        body = {"data": {"series": [[5]], "seriesLabels": ["a", "b"]}}

        rows = series_rows_from_response(body)
        assert rows[1] == SeriesRow("b", ())

    @pytest.mark.parametrize("body", [None, {}, {"data": None}, {"data": {}}, []])
    def test_malformed_bodies_yield_nothing(self, body):
        assert series_rows_from_response(body) == []
        assert first_series_total(body) == 0

    def test_first_series_total_treats_gaps_as_zero(self):
        body = {"data": {"series": [[4, None, 6]]}}
        assert first_series_total(body) == 10


class TestSumSeries:
    """Tests for sum_series."""

    def test_sums_each_row(self):
        rows = [SeriesRow("a", (1, 2, None)), SeriesRow("b", ())]

        assert sum_series(rows) == [metric("a", 3), metric("b", 0)]

    def test_does_not_mutate_input(self):
        rows = [SeriesRow("a", (1, None))]
        snapshot = list(rows)

        sum_series(rows)
        sum_series(rows)

        assert rows == snapshot


class TestFilterAndSort:
    """Tests for filter_and_sort."""

    def test_drops_noise_labels_and_zero_totals(self):
        metrics = [
            metric("(none)", 50),
            metric("", 4),
            metric("unknown", 9),
            metric("acme.com", 0),
            metric("globex.com", 7),
        ]

        assert filter_and_sort(metrics) == [metric("globex.com", 7)]

    def test_sorted_by_total_then_label(self):
        metrics = [metric("b", 5), metric("c", 9), metric("a", 5)]

        assert [m.label for m in filter_and_sort(metrics)] == ["c", "a", "b"]


class TestMergeByLabel:
    """Tests for merge_by_label."""

    def test_missing_labels_contribute_zero(self):
        merged = merge_by_label(
            ("visitors", [metric("acme", 10), metric("globex", 4)]),
            ("paid_feature_users", [metric("acme", 3), metric("initech", 2)]),
        )

        by_label = {m.label: m for m in merged}
        assert by_label["acme"].secondary_totals == {"paid_feature_users": 3, "visitors": 10}
        assert by_label["acme"].total == 13
        assert by_label["globex"].secondary_totals == {"paid_feature_users": 0, "visitors": 4}
        assert by_label["initech"].secondary_totals == {"paid_feature_users": 2, "visitors": 0}

    def test_commutative(self):
        visitors = ("visitors", [metric("acme", 10), metric("globex", 4)])
        paid = ("paid_feature_users", [metric("acme", 3), metric("initech", 4)])

        assert merge_by_label(visitors, paid) == merge_by_label(paid, visitors)

    def test_output_sorted_by_total(self):
        merged = merge_by_label(
            ("x", [metric("small", 1), metric("big", 5)]),
            ("y", [metric("small", 1)]),
        )
        assert [m.label for m in merged] == ["big", "small"]

    def test_duplicate_field_names_rejected(self):
        with pytest.raises(ValueError):
            merge_by_label(("x", []), ("x", []))

    def test_to_dict_flattens_fields(self):
        merged = merge_by_label(("visitors", [metric("acme", 2)]))
        assert merged[0].to_dict() == {"label": "acme", "total": 2, "visitors": 2}

    def test_sort_by_field_ignores_other_fields(self):
        merged = merge_by_label(
            ("visitors", [metric("a.com", 10), metric("b.com", 8)]),
            ("paid_feature_users", [metric("b.com", 5)]),
        )

        # Combined totals rank b.com first; visitors alone rank a.com first
        assert [m.label for m in merged] == ["b.com", "a.com"]
        assert [m.label for m in sort_by_field(merged, "visitors")] == ["a.com", "b.com"]


class TestCombineMax:
    """Tests for the cross-event unique user approximation."""

    def test_returns_largest_count(self):
        assert combine_max_across_queries([3, 11, 7]) == 11

    def test_empty_is_zero(self):
        assert combine_max_across_queries([]) == 0

    def test_never_exceeds_sum(self):
        counts = [4, 9, 2]
        assert combine_max_across_queries(counts) <= sum(counts)

    def test_at_least_every_single_event_count(self):
        # Every per-event user set is contained in the union
        counts = [4, 9, 2]
        assert all(combine_max_across_queries(counts) >= c for c in counts)


def test_sum_totals():
    assert sum_totals([metric("a", 2), metric("b", 3.5)]) == 5.5


def test_daily_points_zip_series():
    points = daily_points(["d1", "d2", "d3"], [5, None, 2], [1])

    assert [p.to_dict() for p in points] == [
        {"date": "d1", "active_users": 5, "new_users": 1},
        {"date": "d2", "active_users": 0, "new_users": 0},
        {"date": "d3", "active_users": 2, "new_users": 0},
    ]
