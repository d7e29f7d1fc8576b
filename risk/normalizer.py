"""
risk/normalizer.py

Bounded scaling helpers for scorecard inputs.
"""


class RiskNormalizer:
    """Maps raw partner figures onto the [0, 1] share each score term uses."""

    def normalize_positive(self, value: float, max_expected: float) -> float:
        """Share of the population maximum, clamped to [0, 1].

        Negative or zero values score nothing. ``max_expected`` must be
        positive; callers floor their maxima at 1.
        """
        if max_expected <= 0:
            raise ValueError("max_expected must be positive.")
        if value <= 0:
            return 0.0
        return self.clamp(value / max_expected, 0.0, 1.0)

    def normalize_quality(self, score: float | None, default: float) -> float:
        """Quality score as a [0, 1] share; ``None`` falls back to *default*."""
        value = default if score is None else float(score)
        return self.clamp(value, 0.0, 100.0) / 100.0

    def clamp(self, value: float, min_value: float, max_value: float) -> float:
        return max(min_value, min(value, max_value))
