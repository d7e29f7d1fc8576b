"""
forecast/regression.py

Ordinary least squares trend line over a daily series.
No sklearn, no statsmodels.
"""

from __future__ import annotations

from typing import List


class LinearTrendForecast:
    """
    Fits ``y = m * x + b`` with ``x = 0 .. n-1`` and projects ``horizon``
    days past the last observation along the fitted line:

        m = sum((x - mean_x) * (y - mean_y)) / sum((x - mean_x) ** 2)
        b = mean_y - m * mean_x
        day_k = b + m * (n - 1 + k)      (k = 1 .. horizon)

    Projections are floored at zero (volumes and money cannot go negative)
    and rounded to two decimals.
    """

    MIN_POINTS: int = 5
    MAX_HORIZON: int = 90

    def __init__(self, horizon: int = 7) -> None:
        self._horizon = max(1, min(self.MAX_HORIZON, int(horizon)))

    @property
    def horizon(self) -> int:
        return self._horizon

    def forecast(self, values: List[float]) -> dict:
        """
        Returns
        -------
        dict with keys:
            model      : ``"linear_trend"``
            slope      : regression slope per day (None when not fitted)
            intercept  : regression intercept (None when not fitted)
            forecast   : list of ``horizon`` projected values, or ``[]``
            error      : present only when the series is too short
        """
        y = [float(v) for v in values]
        n = len(y)
        if n < self.MIN_POINTS:
            return {
                "model": "linear_trend",
                "slope": None,
                "intercept": None,
                "forecast": [],
                "error": (
                    f"Insufficient data: need at least {self.MIN_POINTS} points, "
                    f"got {n}."
                ),
            }

        mean_x: float = (n - 1) / 2.0
        mean_y: float = sum(y) / n

        numerator: float = sum((i - mean_x) * (y[i] - mean_y) for i in range(n))
        denominator: float = sum((i - mean_x) ** 2 for i in range(n))

        slope: float = numerator / denominator if denominator else 0.0
        intercept: float = mean_y - slope * mean_x

        projected = [
            round(max(0.0, intercept + slope * (n - 1 + k)), 2)
            for k in range(1, self._horizon + 1)
        ]

        return {
            "model": "linear_trend",
            "slope": round(slope, 6),
            "intercept": round(intercept, 6),
            "forecast": projected,
        }
