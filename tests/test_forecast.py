"""
tests/test_forecast.py

Pytest unit tests for the linear trend model and the pure dashboard
derivations in forecast.insights (metric choice, projection, anomaly
markers, leakage ranking, summary lines).

All tests are pure Python, no database.
"""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from forecast.insights import (
    AnomalyPoint,
    DailyBucket,
    ForecastPoint,
    LeakageItem,
    LeakagePair,
    build_forecast,
    build_summaries,
    choose_forecast_metric,
    detect_series_anomalies,
    rank_leakage,
)
from forecast.regression import LinearTrendForecast

START = date(2024, 3, 1)


def _series(values: list[float], metric: str = "revenue") -> list[DailyBucket]:
    return [
        DailyBucket(day=START + timedelta(days=i), rows=1, **{metric: value})
        for i, value in enumerate(values)
    ]


# ---------------------------------------------------------------------------
# LinearTrendForecast
# ---------------------------------------------------------------------------


class TestLinearTrendForecast:
    def test_perfect_line_is_extended(self) -> None:
        result = LinearTrendForecast(horizon=3).forecast([10, 20, 30, 40, 50])

        assert result["model"] == "linear_trend"
        assert result["slope"] == pytest.approx(10.0)
        assert result["intercept"] == pytest.approx(10.0)
        assert result["forecast"] == [60.0, 70.0, 80.0]

    def test_projection_is_floored_at_zero(self) -> None:
        result = LinearTrendForecast(horizon=7).forecast([50, 40, 30, 20, 10])

        assert result["forecast"] == [0.0] * 7

    def test_flat_series(self) -> None:
        result = LinearTrendForecast(horizon=2).forecast([5, 5, 5, 5, 5])

        assert result["slope"] == 0.0
        assert result["forecast"] == [5.0, 5.0]

    def test_too_few_points(self) -> None:
        result = LinearTrendForecast().forecast([1, 2, 3, 4])

        assert result["forecast"] == []
        assert result["slope"] is None
        assert "at least 5 points" in result["error"]

    @pytest.mark.parametrize("horizon, expected", [(0, 1), (-4, 1), (7, 7), (500, 90)])
    def test_horizon_is_bounded(self, horizon: int, expected: int) -> None:
        assert LinearTrendForecast(horizon=horizon).horizon == expected


# ---------------------------------------------------------------------------
# Insights derivations
# ---------------------------------------------------------------------------


class TestChooseForecastMetric:
    def test_revenue_wins_when_present(self) -> None:
        series = _series([0, 0, 3]) + _series([9], metric="traffic")
        assert choose_forecast_metric(series) == "revenue"

    def test_traffic_when_no_revenue(self) -> None:
        assert choose_forecast_metric(_series([0, 4], metric="traffic")) == "traffic"

    def test_rows_as_last_resort(self) -> None:
        assert choose_forecast_metric(_series([0, 0])) == "rows"
        assert choose_forecast_metric([]) == "rows"


class TestBuildForecast:
    def test_points_follow_the_last_observed_day(self) -> None:
        points = build_forecast(_series([10, 20, 30, 40, 50]), "revenue", 2)

        assert points == [
            ForecastPoint(day=date(2024, 3, 6), value=60.0),
            ForecastPoint(day=date(2024, 3, 7), value=70.0),
        ]

    def test_short_or_empty_series_has_no_forecast(self) -> None:
        assert build_forecast(_series([1, 2, 3]), "revenue", 7) == []
        assert build_forecast([], "revenue", 7) == []

    def test_rows_metric_uses_counts(self) -> None:
        points = build_forecast(_series([0, 0, 0, 0, 0]), "rows", 1)
        assert points == [ForecastPoint(day=date(2024, 3, 6), value=1.0)]


class TestDetectSeriesAnomalies:
    def test_single_spike_is_flagged(self) -> None:
        values = [10.0] * 9 + [100.0]

        [anomaly] = detect_series_anomalies(_series(values), "revenue")

        assert anomaly.day == date(2024, 3, 10)
        assert anomaly.value == 100.0
        assert anomaly.z_score == pytest.approx(2.85)

    def test_short_series_is_ignored(self) -> None:
        assert detect_series_anomalies(_series([1, 1, 1, 50, 1]), "revenue") == []

    def test_flat_series_has_no_anomalies(self) -> None:
        assert detect_series_anomalies(_series([4.0] * 12), "revenue") == []


class TestRankLeakage:
    def test_largest_absolute_gap_first(self) -> None:
        pairs = [
            LeakagePair("Acme", "FR", expected=100.0, actual=112.5),
            LeakagePair("Beta", "DE", expected=200.0, actual=150.0),
            LeakagePair("Cell", "IT", expected=0.0, actual=5.0),
            LeakagePair("Dial", "ES", expected=10.0, actual=10.0),
            LeakagePair("Acme", "DE", expected=100.0, actual=50.0),
        ]

        items = rank_leakage(pairs, limit=3)

        assert [(i.partner, i.country, i.diff, i.diff_pct) for i in items] == [
            ("Acme", "DE", -50.0, -50.0),
            ("Beta", "DE", -50.0, -25.0),
            ("Acme", "FR", 12.5, 12.5),
        ]

    def test_nothing_expected_has_no_percentage(self) -> None:
        [item] = rank_leakage([LeakagePair("Cell", "IT", expected=0.0, actual=5.0)])
        assert item.diff_pct is None

    def test_aligned_pairs_are_dropped(self) -> None:
        assert rank_leakage([LeakagePair("A", "B", expected=3.001, actual=3.0)]) == []


class TestBuildSummaries:
    def test_full_summary(self) -> None:
        series = _series([10, 20, 30, 40, 50])

        lines = build_summaries(
            rows_scanned=1200,
            rows_matched=1000,
            partner_rows={"Beta": 5, "Acme": 5, "Gamma": 2},
            series=series,
            metric="revenue",
            forecast=[ForecastPoint(day=date(2024, 3, 6), value=60.0)],
            anomalies=[AnomalyPoint(day=date(2024, 3, 4), value=40.0, z_score=2.85)],
            leakage=[LeakageItem("Acme", "FR", 100.0, 112.5, 12.5, 12.5)],
            has_leakage_pair=True,
        )

        assert lines == [
            "Scanned 1,200 rows; matched 1,000 after filters.",
            "Top roaming partner: Acme (5 rows).",
            "Forecast (revenue) for 2024-03-06 is 60 (up 10 vs last observed day).",
            "Detected 1 anomaly day(s); largest on 2024-03-04 (z=2.85).",
            "Potential leakage: Acme / FR diff 12.50 (12.5%).",
        ]

    def test_sparse_summary(self) -> None:
        lines = build_summaries(
            rows_scanned=0,
            rows_matched=0,
            partner_rows={},
            series=[],
            metric="rows",
            forecast=[],
            anomalies=[],
            leakage=[],
            has_leakage_pair=False,
        )

        assert lines == [
            "Scanned 0 rows; matched 0 after filters.",
            "No strong anomalies detected at current sensitivity.",
            "Leakage detection needs both expected tariff and actual charge columns.",
        ]

    def test_aligned_leakage_and_downward_forecast(self) -> None:
        lines = build_summaries(
            rows_scanned=10,
            rows_matched=10,
            partner_rows={"Acme": 10},
            series=_series([10, 20, 30, 40, 50]),
            metric="revenue",
            forecast=[ForecastPoint(day=date(2024, 3, 6), value=42.5)],
            anomalies=[],
            leakage=[],
            has_leakage_pair=True,
        )

        assert "Forecast (revenue) for 2024-03-06 is 42.50 (down 7.50 vs last observed day)." in lines
        assert lines[-1] == "Expected vs actual charges look aligned at the aggregated level."
