"""
forecast/insights.py

Pure dashboard derivations over a filtered daily series: forecast metric
choice, short-horizon projection, anomaly markers, expected-vs-actual
leakage ranking and the human-readable summary lines.

No I/O and no logging; the insights service feeds these from aggregates or
from a raw-row scan.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date, timedelta

from detection.thresholds import find_series_anomalies
from forecast.regression import LinearTrendForecast

METRIC_REVENUE = "revenue"
METRIC_TRAFFIC = "traffic"
METRIC_ROWS = "rows"

DEFAULT_LEAKAGE_LIMIT = 8
ANOMALY_Z_THRESHOLD = 2.5
ANOMALY_MIN_POINTS = 6
ANOMALY_TOP = 6


@dataclass
class DailyBucket:
    day: date
    rows: int = 0
    traffic: float = 0.0
    revenue: float = 0.0
    cost: float = 0.0
    expected: float = 0.0
    actual: float = 0.0

    def value(self, metric: str) -> float:
        if metric == METRIC_ROWS:
            return float(self.rows)
        return float(getattr(self, metric))

    def as_dict(self) -> dict:
        return {
            "day": self.day.isoformat(),
            "rows": self.rows,
            "traffic": round(self.traffic, 2),
            "revenue": round(self.revenue, 2),
            "cost": round(self.cost, 2),
            "expected": round(self.expected, 2),
            "actual": round(self.actual, 2),
        }


@dataclass(frozen=True)
class ForecastPoint:
    day: date
    value: float


@dataclass(frozen=True)
class AnomalyPoint:
    day: date
    value: float
    z_score: float


@dataclass(frozen=True)
class LeakageItem:
    partner: str
    country: str
    expected: float
    actual: float
    diff: float
    diff_pct: float | None


@dataclass(frozen=True)
class LeakagePair:
    """Expected/actual totals for one (partner, country)."""

    partner: str
    country: str
    expected: float
    actual: float


def choose_forecast_metric(series: Sequence[DailyBucket]) -> str:
    """Revenue when any day has revenue, else traffic, else row counts."""
    if any(point.revenue != 0 for point in series):
        return METRIC_REVENUE
    if any(point.traffic != 0 for point in series):
        return METRIC_TRAFFIC
    return METRIC_ROWS


def build_forecast(
    series: Sequence[DailyBucket],
    metric: str,
    horizon: int,
) -> list[ForecastPoint]:
    """
    Linear-trend projection for the ``horizon`` calendar days after the last
    observed day. Empty when the series is too short to fit.
    """
    if not series:
        return []
    model = LinearTrendForecast(horizon=horizon)
    result = model.forecast([point.value(metric) for point in series])
    last_day = series[-1].day
    return [
        ForecastPoint(day=last_day + timedelta(days=offset), value=value)
        for offset, value in enumerate(result["forecast"], start=1)
    ]


def detect_series_anomalies(series: Sequence[DailyBucket], metric: str) -> list[AnomalyPoint]:
    flagged = find_series_anomalies(
        [point.value(metric) for point in series],
        threshold=ANOMALY_Z_THRESHOLD,
        min_points=ANOMALY_MIN_POINTS,
        top=ANOMALY_TOP,
    )
    return [
        AnomalyPoint(
            day=series[item.index].day,
            value=round(item.value, 2),
            z_score=round(item.z_score, 2),
        )
        for item in flagged
    ]


def rank_leakage(
    pairs: Iterable[LeakagePair],
    *,
    limit: int = DEFAULT_LEAKAGE_LIMIT,
) -> list[LeakageItem]:
    """
    Non-zero ``actual - expected`` gaps per (partner, country), largest
    absolute gap first. ``diff_pct`` is ``None`` when nothing was expected.
    """
    items = []
    for pair in pairs:
        diff = round(pair.actual - pair.expected, 2)
        if diff == 0:
            continue
        diff_pct = round(diff / pair.expected * 100, 1) if pair.expected else None
        items.append(
            LeakageItem(
                partner=pair.partner,
                country=pair.country,
                expected=round(pair.expected, 2),
                actual=round(pair.actual, 2),
                diff=diff,
                diff_pct=diff_pct,
            )
        )
    items.sort(key=lambda item: (-abs(item.diff), item.partner, item.country))
    return items[: max(0, limit)]


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.2f}"


def build_summaries(
    *,
    rows_scanned: int,
    rows_matched: int,
    partner_rows: Mapping[str, int],
    series: Sequence[DailyBucket],
    metric: str,
    forecast: Sequence[ForecastPoint],
    anomalies: Sequence[AnomalyPoint],
    leakage: Sequence[LeakageItem],
    has_leakage_pair: bool,
) -> list[str]:
    lines = [f"Scanned {rows_scanned:,} rows; matched {rows_matched:,} after filters."]

    if partner_rows:
        partner, count = min(partner_rows.items(), key=lambda item: (-item[1], item[0]))
        lines.append(f"Top roaming partner: {partner} ({count:,} rows).")

    if forecast and series:
        last_value = series[-1].value(metric)
        first = forecast[0]
        delta = round(first.value - last_value, 2)
        direction = "up" if delta >= 0 else "down"
        lines.append(
            f"Forecast ({metric}) for {first.day.isoformat()} is {_format_number(first.value)} "
            f"({direction} {_format_number(abs(delta))} vs last observed day)."
        )

    if anomalies:
        strongest = anomalies[0]
        lines.append(
            f"Detected {len(anomalies)} anomaly day(s); largest on "
            f"{strongest.day.isoformat()} (z={strongest.z_score:.2f})."
        )
    else:
        lines.append("No strong anomalies detected at current sensitivity.")

    if not has_leakage_pair:
        lines.append("Leakage detection needs both expected tariff and actual charge columns.")
    elif leakage:
        top = leakage[0]
        pct = f"{top.diff_pct:.1f}%" if top.diff_pct is not None else "n/a"
        lines.append(
            f"Potential leakage: {top.partner} / {top.country} diff "
            f"{_format_number(top.diff)} ({pct})."
        )
    else:
        lines.append("Expected vs actual charges look aligned at the aggregated level.")

    return lines
