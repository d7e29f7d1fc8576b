"""
risk/scoring.py

Composite partner score (0-100) and the risk level derived from it.
"""

from __future__ import annotations

from risk.normalizer import RiskNormalizer

RISK_LOW = "low"
RISK_MEDIUM = "medium"
RISK_HIGH = "high"

# (score below, disputes at least, delay days at least) per level, most severe first.
_RISK_THRESHOLDS: list[tuple[str, float, int, float]] = [
    (RISK_HIGH, 50.0, 5, 30.0),
    (RISK_MEDIUM, 70.0, 2, 15.0),
]


class PartnerScoreModel:
    """Weighted partner health score.

    score = 25
            + 30 * revenue / max_revenue
            + 20 * usage / max_usage
            + 25 * (quality_score or 60) / 100
            - min(18, 2.5 * dispute_count)
            - min(18, 1.2 * payment_delay_days)

    clamped to [0, 100] and rounded to one decimal. A partner with no
    quality score is assumed average (60); an unknown payment delay carries
    no penalty.
    """

    BASE_POINTS: float = 25.0
    REVENUE_WEIGHT: float = 30.0
    USAGE_WEIGHT: float = 20.0
    QUALITY_WEIGHT: float = 25.0
    DEFAULT_QUALITY: float = 60.0
    DISPUTE_PENALTY_PER_ITEM: float = 2.5
    MAX_DISPUTE_PENALTY: float = 18.0
    DELAY_PENALTY_PER_DAY: float = 1.2
    MAX_DELAY_PENALTY: float = 18.0

    def __init__(self) -> None:
        self._normalizer = RiskNormalizer()

    def compute(self, inputs: dict) -> float:
        """Score one partner.

        Args:
            inputs: Dictionary with keys ``revenue``, ``max_revenue``,
                ``usage``, ``max_usage``, and optional ``quality_score``,
                ``dispute_count``, ``payment_delay_days``. Maxima below 1
                are raised to 1.

        Returns:
            A float in [0.0, 100.0] rounded to one decimal.
        """
        n = self._normalizer

        max_revenue = max(1.0, float(inputs.get("max_revenue") or 0.0))
        max_usage = max(1.0, float(inputs.get("max_usage") or 0.0))
        revenue_norm = n.normalize_positive(float(inputs.get("revenue") or 0.0), max_revenue)
        usage_norm = n.normalize_positive(float(inputs.get("usage") or 0.0), max_usage)

        quality_share = n.normalize_quality(inputs.get("quality_score"), self.DEFAULT_QUALITY)

        disputes = max(0, int(inputs.get("dispute_count") or 0))
        dispute_penalty = min(self.MAX_DISPUTE_PENALTY, disputes * self.DISPUTE_PENALTY_PER_ITEM)

        delay = inputs.get("payment_delay_days")
        delay_penalty = 0.0
        if delay is not None:
            delay_penalty = min(self.MAX_DELAY_PENALTY, max(0.0, float(delay)) * self.DELAY_PENALTY_PER_DAY)

        raw = (
            self.BASE_POINTS
            + revenue_norm * self.REVENUE_WEIGHT
            + usage_norm * self.USAGE_WEIGHT
            + quality_share * self.QUALITY_WEIGHT
            - dispute_penalty
            - delay_penalty
        )
        return round(n.clamp(raw, 0.0, 100.0), 1)


def classify_partner_risk(
    score: float,
    dispute_count: int,
    payment_delay_days: float | None = None,
) -> str:
    """Map (score, disputes, delay) to a risk level; unknown delay never escalates."""
    for level, score_below, disputes_at_least, delay_at_least in _RISK_THRESHOLDS:
        if score < score_below or dispute_count >= disputes_at_least:
            return level
        if payment_delay_days is not None and payment_delay_days >= delay_at_least:
            return level
    return RISK_LOW
