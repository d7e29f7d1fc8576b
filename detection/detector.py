"""
detection/detector.py

Per-partner evaluation of the revenue-drop, traffic-spike and z-score rules.

Input is one partner's daily series (oldest first); output is the list of
findings for the most recent day. The caller turns findings into alerts.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from detection.fingerprints import (
    ANOMALY_DETECTION,
    REVENUE_DROP,
    TRAFFIC_SPIKE,
    build_fingerprint,
)
from detection.thresholds import (
    evaluate_revenue_drop,
    evaluate_traffic_spike,
    evaluate_zscore,
    median,
)


@dataclass(frozen=True)
class DailyPoint:
    day: date
    rows: int = 0
    revenue: float = 0.0
    traffic: float = 0.0

    def metric(self, name: str) -> float:
        if name == "rows":
            return float(self.rows)
        return float(getattr(self, name))


@dataclass(frozen=True)
class DetectorConfig:
    """
    Knobs for :func:`evaluate_partner_series`. Defaults mirror
    :class:`app.config.DetectionSettings`.
    """

    baseline_window: int = 7
    min_history_points: int = 4
    min_daily_rows: int = 3
    revenue_drop_threshold: float = 0.5
    max_revenue_drop_threshold: float = 0.85
    traffic_spike_threshold: float = 1.0
    max_traffic_spike_threshold: float = 2.5
    volatility_multiplier: float = 0.6
    min_baseline_revenue: float = 5.0
    min_baseline_traffic: float = 50.0
    z_threshold: float = 3.0
    high_z_threshold: float = 4.0


@dataclass(frozen=True)
class Finding:
    alert_type: str
    severity: str
    partner: str
    day: date
    title: str
    message: str
    metric: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    def fingerprint(self, project_id: int | None) -> str:
        if self.alert_type == ANOMALY_DETECTION:
            return build_fingerprint(
                self.alert_type,
                project=project_id,
                partner=self.partner,
                metric=self.metric,
                day=self.day,
            )
        return build_fingerprint(
            self.alert_type,
            project=project_id,
            partner=self.partner,
            day=self.day,
        )


def anomaly_metric(*, has_traffic: bool, has_revenue: bool) -> str:
    """Representative z-score metric: traffic, else revenue, else row count."""
    if has_traffic:
        return "traffic"
    if has_revenue:
        return "revenue"
    return "rows"


def evaluate_partner_series(
    partner: str,
    points: Sequence[DailyPoint],
    *,
    has_revenue: bool,
    has_traffic: bool,
    config: DetectorConfig | None = None,
) -> list[Finding]:
    """
    Run all three rules against the last day of ``points``.

    Nothing fires when there are fewer than two days, when the current day
    or the median baseline day has fewer than ``min_daily_rows`` rows, or
    when the baseline window is shorter than ``min_history_points``.
    Revenue and traffic rules are skipped for metrics the partner's files
    never resolved.
    """

    cfg = config or DetectorConfig()
    daily = sorted(points, key=lambda point: point.day)
    if len(daily) < 2:
        return []

    current = daily[-1]
    if current.rows < cfg.min_daily_rows:
        return []

    history = daily[max(0, len(daily) - 1 - cfg.baseline_window) : -1]
    if len(history) < cfg.min_history_points:
        return []
    if median([point.rows for point in history]) < cfg.min_daily_rows:
        return []

    previous = history[-1]
    day_label = current.day.isoformat()
    findings: list[Finding] = []

    if has_revenue:
        result = evaluate_revenue_drop(
            [point.revenue for point in history],
            current.revenue,
            base_threshold=cfg.revenue_drop_threshold,
            max_threshold=cfg.max_revenue_drop_threshold,
            volatility_multiplier=cfg.volatility_multiplier,
            min_history=cfg.min_history_points,
            min_baseline=cfg.min_baseline_revenue,
        )
        if result.fired:
            findings.append(
                Finding(
                    alert_type=REVENUE_DROP,
                    severity=result.severity,
                    partner=partner,
                    day=current.day,
                    metric="revenue",
                    title=f"Revenue drop detected for {partner}",
                    message=(
                        f"Revenue dropped {result.score * 100:.1f}% "
                        f"({result.baseline:.2f} baseline -> {current.revenue:.2f}) on {day_label}."
                    ),
                    payload={
                        "partner": partner,
                        "day": day_label,
                        "previous_revenue": round(previous.revenue, 2),
                        "baseline_revenue": round(result.baseline, 2),
                        "current_revenue": round(current.revenue, 2),
                        "drop_ratio": round(result.score, 4),
                        "dynamic_threshold": round(result.threshold, 4),
                        "baseline_window_days": cfg.baseline_window,
                        "min_history_points": cfg.min_history_points,
                    },
                )
            )

    if has_traffic:
        result = evaluate_traffic_spike(
            [point.traffic for point in history],
            current.traffic,
            base_threshold=cfg.traffic_spike_threshold,
            max_threshold=cfg.max_traffic_spike_threshold,
            volatility_multiplier=cfg.volatility_multiplier,
            min_history=cfg.min_history_points,
            min_baseline=cfg.min_baseline_traffic,
        )
        if result.fired:
            findings.append(
                Finding(
                    alert_type=TRAFFIC_SPIKE,
                    severity=result.severity,
                    partner=partner,
                    day=current.day,
                    metric="traffic",
                    title=f"Traffic spike detected for {partner}",
                    message=(
                        f"Traffic increased {result.score * 100:.1f}% "
                        f"({result.baseline:.2f} baseline -> {current.traffic:.2f}) on {day_label}."
                    ),
                    payload={
                        "partner": partner,
                        "day": day_label,
                        "previous_traffic": round(previous.traffic, 2),
                        "baseline_traffic": round(result.baseline, 2),
                        "current_traffic": round(current.traffic, 2),
                        "spike_ratio": round(result.score, 4),
                        "dynamic_threshold": round(result.threshold, 4),
                        "baseline_window_days": cfg.baseline_window,
                        "min_history_points": cfg.min_history_points,
                    },
                )
            )

    metric = anomaly_metric(has_traffic=has_traffic, has_revenue=has_revenue)
    result = evaluate_zscore(
        [point.metric(metric) for point in history],
        current.metric(metric),
        z_threshold=cfg.z_threshold,
        high_z_threshold=cfg.high_z_threshold,
        min_history=cfg.min_history_points,
    )
    if result.fired:
        findings.append(
            Finding(
                alert_type=ANOMALY_DETECTION,
                severity=result.severity,
                partner=partner,
                day=current.day,
                metric=metric,
                title=f"Anomaly detected for {partner}",
                message=(
                    f"Metric {metric} is abnormal on {day_label} "
                    f"(z-score {result.score:.2f}, baseline {result.baseline:.2f})."
                ),
                payload={
                    "partner": partner,
                    "day": day_label,
                    "metric": metric,
                    "value": round(current.metric(metric), 2),
                    "baseline_mean": round(result.baseline, 2),
                    "z_score": round(result.score, 2),
                    "z_threshold": cfg.z_threshold,
                    "baseline_window_days": cfg.baseline_window,
                },
            )
        )

    return findings
