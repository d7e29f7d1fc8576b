"""
risk/ranking.py

Scorecard composition: turn per-partner accumulations into scored,
filtered and ordered scorecard items plus a summary block.

Pure functions only; the database-facing service feeds ``PartnerDraft``
objects in and serialises the result.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date

from risk.scoring import RISK_HIGH, RISK_LOW, RISK_MEDIUM, PartnerScoreModel, classify_partner_risk

SORT_KEYS = ("score", "revenue", "usage", "quality", "disputes", "delay", "partner")
DEFAULT_SORT_KEY = "score"

MIN_MONTHS, MAX_MONTHS, DEFAULT_MONTHS = 3, 24, 6
MIN_LIMIT, MAX_LIMIT, DEFAULT_LIMIT = 5, 100, 20


@dataclass(frozen=True)
class TrendPoint:
    month: str
    revenue: float = 0.0
    usage: float = 0.0


@dataclass
class PartnerDraft:
    """Mutable accumulator for one partner before scoring."""

    partner: str
    revenue: float = 0.0
    usage: float = 0.0
    rows: int = 0
    files: int = 0
    quality_score: float | None = None
    dispute_count: int = 0
    payment_delay_days: float | None = None
    trend: dict[str, TrendPoint] = field(default_factory=dict)

    def add_month(self, month: str, revenue: float, usage: float, rows: int) -> None:
        self.revenue += revenue
        self.usage += usage
        self.rows += rows
        point = self.trend.get(month, TrendPoint(month=month))
        self.trend[month] = TrendPoint(
            month=month,
            revenue=point.revenue + revenue,
            usage=point.usage + usage,
        )


@dataclass(frozen=True)
class PartnerScorecardItem:
    partner: str
    revenue: float
    usage: float
    rows: int
    files: int
    quality_score: float | None
    dispute_count: int
    payment_delay_days: float | None
    score: float
    risk_level: str
    trend: tuple[TrendPoint, ...]


@dataclass(frozen=True)
class ScorecardSummary:
    partner_count: int
    total_revenue: float
    total_usage: float
    avg_quality_score: float | None
    total_disputes: int
    avg_payment_delay_days: float | None
    risk_breakdown: dict[str, int]


@dataclass(frozen=True)
class ScorecardOptions:
    """
    Query options, already clamped to their bounds. Use :meth:`build` for
    raw user input.
    """

    months: int = DEFAULT_MONTHS
    limit: int = DEFAULT_LIMIT
    offset: int = 0
    partner_search: str | None = None
    min_score: float | None = None
    sort_by: str = DEFAULT_SORT_KEY
    sort_dir: str = "desc"
    project_id: int | None = None

    @classmethod
    def build(
        cls,
        *,
        months: int | None = None,
        limit: int | None = None,
        offset: int | None = None,
        partner_search: str | None = None,
        min_score: float | None = None,
        sort_by: str | None = None,
        sort_dir: str | None = None,
        project_id: int | None = None,
    ) -> ScorecardOptions:
        sort_key = (sort_by or "").strip().lower()
        search = (partner_search or "").strip().lower()
        return cls(
            months=_bounded(months, DEFAULT_MONTHS, MIN_MONTHS, MAX_MONTHS),
            limit=_bounded(limit, DEFAULT_LIMIT, MIN_LIMIT, MAX_LIMIT),
            offset=max(0, int(offset or 0)),
            partner_search=search or None,
            min_score=None if min_score is None else max(0.0, min(100.0, float(min_score))),
            sort_by=sort_key if sort_key in SORT_KEYS else DEFAULT_SORT_KEY,
            sort_dir="asc" if (sort_dir or "").strip().lower() == "asc" else "desc",
            project_id=project_id,
        )


def _bounded(value: int | None, default: int, low: int, high: int) -> int:
    if value is None:
        return default
    return max(low, min(high, int(value)))


def build_month_keys(months: int, today: date) -> list[str]:
    """Trailing ``months`` month keys (``YYYY-MM``), oldest first, ending with today's month."""
    keys: list[str] = []
    year, month = today.year, today.month
    for _ in range(max(1, months)):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    keys.reverse()
    return keys


def score_partners(
    drafts: Iterable[PartnerDraft],
    month_keys: Sequence[str],
    model: PartnerScoreModel | None = None,
) -> list[PartnerScorecardItem]:
    """
    Score every draft against the population maxima (floored at 1).
    """

    scorer = model or PartnerScoreModel()
    pool = list(drafts)
    max_revenue = max([max(0.0, d.revenue) for d in pool] + [1.0])
    max_usage = max([max(0.0, d.usage) for d in pool] + [1.0])

    items: list[PartnerScorecardItem] = []
    for draft in pool:
        score = scorer.compute(
            {
                "revenue": draft.revenue,
                "max_revenue": max_revenue,
                "usage": draft.usage,
                "max_usage": max_usage,
                "quality_score": draft.quality_score,
                "dispute_count": draft.dispute_count,
                "payment_delay_days": draft.payment_delay_days,
            }
        )
        trend = tuple(
            TrendPoint(
                month=month,
                revenue=round(draft.trend[month].revenue, 2) if month in draft.trend else 0.0,
                usage=round(draft.trend[month].usage, 2) if month in draft.trend else 0.0,
            )
            for month in month_keys
        )
        items.append(
            PartnerScorecardItem(
                partner=draft.partner,
                revenue=round(draft.revenue, 2),
                usage=round(draft.usage, 2),
                rows=draft.rows,
                files=draft.files,
                quality_score=None if draft.quality_score is None else round(draft.quality_score, 1),
                dispute_count=draft.dispute_count,
                payment_delay_days=(
                    None if draft.payment_delay_days is None else round(draft.payment_delay_days, 2)
                ),
                score=score,
                risk_level=classify_partner_risk(score, draft.dispute_count, draft.payment_delay_days),
                trend=trend,
            )
        )
    return items


def filter_items(
    items: Iterable[PartnerScorecardItem],
    options: ScorecardOptions,
) -> list[PartnerScorecardItem]:
    kept: list[PartnerScorecardItem] = []
    for item in items:
        if options.partner_search and options.partner_search not in item.partner.lower():
            continue
        if options.min_score is not None and item.score < options.min_score:
            continue
        kept.append(item)
    return kept


def _sort_value(item: PartnerScorecardItem, key: str) -> float:
    if key == "revenue":
        return item.revenue
    if key == "usage":
        return item.usage
    if key == "quality":
        return -1.0 if item.quality_score is None else item.quality_score
    if key == "disputes":
        return float(item.dispute_count)
    if key == "delay":
        return -1.0 if item.payment_delay_days is None else item.payment_delay_days
    return item.score


def sort_items(
    items: Iterable[PartnerScorecardItem],
    sort_by: str = DEFAULT_SORT_KEY,
    sort_dir: str = "desc",
) -> list[PartnerScorecardItem]:
    """
    Order by the requested key. Ties always fall back to score desc, then
    revenue desc, then partner name asc, whatever the direction.
    """

    # Stable sorts: apply the tie-breakers first, the primary key last.
    ordered = sorted(items, key=lambda item: item.partner)
    ordered.sort(key=lambda item: item.revenue, reverse=True)
    ordered.sort(key=lambda item: item.score, reverse=True)
    descending = sort_dir != "asc"
    if sort_by == "partner":
        ordered.sort(key=lambda item: item.partner, reverse=descending)
    else:
        ordered.sort(key=lambda item: _sort_value(item, sort_by), reverse=descending)
    return ordered


def summarize(items: Sequence[PartnerScorecardItem]) -> ScorecardSummary:
    qualities = [item.quality_score for item in items if item.quality_score is not None]
    delays = [item.payment_delay_days for item in items if item.payment_delay_days is not None]
    breakdown = {RISK_LOW: 0, RISK_MEDIUM: 0, RISK_HIGH: 0}
    for item in items:
        breakdown[item.risk_level] += 1
    return ScorecardSummary(
        partner_count=len(items),
        total_revenue=round(sum(item.revenue for item in items), 2),
        total_usage=round(sum(item.usage for item in items), 2),
        avg_quality_score=round(sum(qualities) / len(qualities), 1) if qualities else None,
        total_disputes=sum(item.dispute_count for item in items),
        avg_payment_delay_days=round(sum(delays) / len(delays), 2) if delays else None,
        risk_breakdown=breakdown,
    )
