"""
detection/thresholds.py

Stateless detectors over a supplied baseline sample.

Every function takes plain numbers plus its knobs and returns a
:class:`CheckResult`; nothing here touches the database, so each rule can
be exercised in isolation.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

SEVERITY_MEDIUM = "medium"
SEVERITY_HIGH = "high"

# Revenue drops escalate to high this far above the dynamic threshold, capped.
REVENUE_HIGH_MARGIN = 0.25
REVENUE_HIGH_CAP = 0.98
TRAFFIC_HIGH_MARGIN = 0.5


@dataclass(frozen=True)
class CheckResult:
    """
    Outcome of one detector.

    ``fired`` is False both when the condition is absent and when the check
    was skipped; ``skipped`` carries the reason in the latter case.
    """

    fired: bool
    severity: str | None = None
    score: float | None = None
    baseline: float | None = None
    current: float | None = None
    threshold: float | None = None
    sample_size: int = 0
    skipped: str | None = None


def _clean(values: Sequence[float]) -> list[float]:
    return [float(v) for v in values if v is not None and math.isfinite(float(v))]


def positive_values(values: Sequence[float]) -> list[float]:
    return [v for v in _clean(values) if v > 0]


def mean(values: Sequence[float]) -> float:
    clean = _clean(values)
    if not clean:
        return 0.0
    return float(np.mean(clean))


def sample_stddev(values: Sequence[float]) -> float:
    """Sample standard deviation (n - 1); 0.0 below two points."""
    clean = _clean(values)
    if len(clean) < 2:
        return 0.0
    return float(np.std(clean, ddof=1))


def median(values: Sequence[float]) -> float:
    clean = _clean(values)
    if not clean:
        return 0.0
    return float(np.median(clean))


def coefficient_of_variation(values: Sequence[float]) -> float:
    avg = mean(values)
    if avg <= 0:
        return 0.0
    sd = sample_stddev(values)
    return sd / avg if sd > 0 else 0.0


def compute_dynamic_threshold(
    baseline_values: Sequence[float],
    *,
    base_threshold: float,
    max_threshold: float,
    volatility_multiplier: float,
) -> float:
    """
    ``base + CV(baseline) * multiplier`` clamped to ``[base, max]``.

    Only positive baseline values count. With fewer than two of them the
    base threshold is returned unchanged.
    """

    clean = positive_values(baseline_values)
    if len(clean) < 2:
        return base_threshold
    candidate = base_threshold + coefficient_of_variation(clean) * max(0.0, volatility_multiplier)
    upper = max(base_threshold, max_threshold)
    return max(base_threshold, min(upper, candidate))


def evaluate_revenue_drop(
    history: Sequence[float],
    current: float,
    *,
    base_threshold: float = 0.5,
    max_threshold: float = 0.85,
    volatility_multiplier: float = 0.6,
    min_history: int = 4,
    min_baseline: float = 5.0,
) -> CheckResult:
    """
    Fire when ``(baseline - current) / baseline`` reaches the dynamic threshold.

    A current value of zero or less is treated as a missing day, not a drop.
    """

    if current is None or current <= 0:
        return CheckResult(fired=False, current=current, skipped="no_current_value")

    sample = positive_values(history)
    if len(sample) < min_history:
        return CheckResult(fired=False, current=current, sample_size=len(sample), skipped="insufficient_history")

    baseline = mean(sample)
    if baseline < min_baseline:
        return CheckResult(
            fired=False,
            baseline=baseline,
            current=current,
            sample_size=len(sample),
            skipped="baseline_below_floor",
        )

    threshold = compute_dynamic_threshold(
        sample,
        base_threshold=base_threshold,
        max_threshold=max_threshold,
        volatility_multiplier=volatility_multiplier,
    )
    drop = (baseline - current) / baseline
    if drop < threshold:
        return CheckResult(
            fired=False,
            score=drop,
            baseline=baseline,
            current=current,
            threshold=threshold,
            sample_size=len(sample),
        )

    high_cutoff = min(REVENUE_HIGH_CAP, threshold + REVENUE_HIGH_MARGIN)
    return CheckResult(
        fired=True,
        severity=SEVERITY_HIGH if drop >= high_cutoff else SEVERITY_MEDIUM,
        score=drop,
        baseline=baseline,
        current=current,
        threshold=threshold,
        sample_size=len(sample),
    )


def evaluate_traffic_spike(
    history: Sequence[float],
    current: float,
    *,
    base_threshold: float = 1.0,
    max_threshold: float = 2.5,
    volatility_multiplier: float = 0.6,
    min_history: int = 4,
    min_baseline: float = 50.0,
) -> CheckResult:
    """
    Fire when ``(current - baseline) / baseline`` reaches the dynamic threshold.
    """

    if current is None or current <= 0:
        return CheckResult(fired=False, current=current, skipped="no_current_value")

    sample = positive_values(history)
    if len(sample) < min_history:
        return CheckResult(fired=False, current=current, sample_size=len(sample), skipped="insufficient_history")

    baseline = mean(sample)
    if baseline < min_baseline:
        return CheckResult(
            fired=False,
            baseline=baseline,
            current=current,
            sample_size=len(sample),
            skipped="baseline_below_floor",
        )

    threshold = compute_dynamic_threshold(
        sample,
        base_threshold=base_threshold,
        max_threshold=max_threshold,
        volatility_multiplier=volatility_multiplier,
    )
    spike = (current - baseline) / baseline
    if spike < threshold:
        return CheckResult(
            fired=False,
            score=spike,
            baseline=baseline,
            current=current,
            threshold=threshold,
            sample_size=len(sample),
        )

    return CheckResult(
        fired=True,
        severity=SEVERITY_HIGH if spike >= threshold + TRAFFIC_HIGH_MARGIN else SEVERITY_MEDIUM,
        score=spike,
        baseline=baseline,
        current=current,
        threshold=threshold,
        sample_size=len(sample),
    )


def evaluate_zscore(
    history: Sequence[float],
    current: float,
    *,
    z_threshold: float = 3.0,
    high_z_threshold: float = 4.0,
    min_history: int = 4,
) -> CheckResult:
    """
    Fire when ``|current - mean| / stddev`` reaches ``z_threshold``.

    Skipped when the baseline is too short or perfectly flat.
    """

    sample = _clean(history)
    if len(sample) < min_history:
        return CheckResult(fired=False, current=current, sample_size=len(sample), skipped="insufficient_history")

    avg = mean(sample)
    sd = sample_stddev(sample)
    if sd <= 0 or not math.isfinite(sd):
        return CheckResult(
            fired=False,
            baseline=avg,
            current=current,
            sample_size=len(sample),
            skipped="zero_variance",
        )

    z = (float(current or 0.0) - avg) / sd
    if abs(z) < z_threshold:
        return CheckResult(
            fired=False,
            score=z,
            baseline=avg,
            current=current,
            threshold=z_threshold,
            sample_size=len(sample),
        )

    return CheckResult(
        fired=True,
        severity=SEVERITY_HIGH if abs(z) >= max(z_threshold, high_z_threshold) else SEVERITY_MEDIUM,
        score=z,
        baseline=avg,
        current=current,
        threshold=z_threshold,
        sample_size=len(sample),
    )


@dataclass(frozen=True)
class SeriesAnomaly:
    index: int
    value: float
    z_score: float


def find_series_anomalies(
    values: Sequence[float],
    *,
    threshold: float = 2.5,
    min_points: int = 6,
    top: int = 6,
) -> list[SeriesAnomaly]:
    """
    Points whose whole-series z-score reaches ``threshold``, strongest first.

    Used for dashboard anomaly markers rather than alerting.
    """

    series = np.asarray([float(v or 0.0) for v in values], dtype=np.float64)
    if series.size < min_points:
        return []
    sd = float(np.std(series, ddof=1))
    if sd <= 0 or not math.isfinite(sd):
        return []
    avg = float(np.mean(series))
    z_scores = (series - avg) / sd

    flagged = [
        SeriesAnomaly(index=i, value=float(series[i]), z_score=float(z_scores[i]))
        for i in range(series.size)
        if abs(z_scores[i]) >= threshold
    ]
    flagged.sort(key=lambda item: abs(item.z_score), reverse=True)
    return flagged[: max(0, top)]
