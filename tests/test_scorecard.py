"""
tests/test_scorecard.py

Pytest unit tests for partner scoring, risk classification, scorecard
ordering/filtering and the ScorecardService read path (aggregates and
row-scan fallback).

All tests are pure Python, no database.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from app.caching import TTLCache
from app.config import ReadPathSettings
from app.services.scorecard_service import ScorecardService, payment_delay_days
from db.repositories.aggregate_repository import PartnerMonthRow
from db.repositories.file_repository import QualityRow, ScopedRow
from risk.normalizer import RiskNormalizer
from risk.ranking import (
    PartnerDraft,
    PartnerScorecardItem,
    ScorecardOptions,
    build_month_keys,
    filter_items,
    score_partners,
    sort_items,
    summarize,
)
from risk.scoring import PartnerScoreModel, classify_partner_risk

NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Scoring model
# ---------------------------------------------------------------------------


class TestPartnerScoreModel:
    @pytest.fixture()
    def model(self) -> PartnerScoreModel:
        return PartnerScoreModel()

    def test_top_partner_with_unknown_quality(self, model) -> None:
        score = model.compute({"revenue": 100, "max_revenue": 100, "usage": 50, "max_usage": 50})
        assert score == pytest.approx(90.0)

    def test_disputes_and_delay_are_penalised(self, model) -> None:
        score = model.compute(
            {
                "revenue": 50,
                "max_revenue": 100,
                "usage": 25,
                "max_usage": 50,
                "quality_score": 80,
                "dispute_count": 2,
                "payment_delay_days": 20,
            }
        )
        # 25 + 15 + 10 + 20 - 5 - min(18, 24)
        assert score == pytest.approx(47.0)

    def test_penalties_are_capped(self, model) -> None:
        score = model.compute(
            {
                "revenue": 0,
                "max_revenue": 0,
                "usage": 0,
                "max_usage": 0,
                "quality_score": 0,
                "dispute_count": 100,
                "payment_delay_days": 365,
            }
        )
        assert score == 0.0

    def test_unknown_delay_carries_no_penalty(self, model) -> None:
        base = {"revenue": 10, "max_revenue": 10, "usage": 10, "max_usage": 10, "quality_score": 100}
        assert model.compute({**base, "payment_delay_days": None}) == pytest.approx(100.0)
        assert model.compute({**base, "payment_delay_days": 0}) == pytest.approx(100.0)

    def test_score_stays_within_bounds(self, model) -> None:
        score = model.compute({"revenue": 10_000, "max_revenue": 1, "usage": 10_000, "max_usage": 1, "quality_score": 250})
        assert 0.0 <= score <= 100.0


class TestClassifyPartnerRisk:
    @pytest.mark.parametrize(
        "score, disputes, delay, expected",
        [
            (90.0, 0, None, "low"),
            (49.9, 0, None, "high"),
            (80.0, 5, None, "high"),
            (80.0, 0, 30.0, "high"),
            (69.9, 0, None, "medium"),
            (80.0, 2, None, "medium"),
            (80.0, 0, 15.0, "medium"),
            (80.0, 0, 14.9, "low"),
        ],
    )
    def test_levels(self, score, disputes, delay, expected) -> None:
        assert classify_partner_risk(score, disputes, delay) == expected


def test_normalizer_rejects_non_positive_maximum() -> None:
    with pytest.raises(ValueError):
        RiskNormalizer().normalize_positive(5.0, 0.0)


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------


def _item(partner: str, score: float, revenue: float = 0.0, **overrides) -> PartnerScorecardItem:
    values = {
        "partner": partner,
        "revenue": revenue,
        "usage": 0.0,
        "rows": 1,
        "files": 1,
        "quality_score": None,
        "dispute_count": 0,
        "payment_delay_days": None,
        "score": score,
        "risk_level": "low",
        "trend": (),
    }
    values.update(overrides)
    return PartnerScorecardItem(**values)


class TestScorecardOptions:
    def test_defaults(self) -> None:
        options = ScorecardOptions.build()
        assert (options.months, options.limit, options.offset) == (6, 20, 0)
        assert (options.sort_by, options.sort_dir) == ("score", "desc")

    def test_values_are_clamped(self) -> None:
        options = ScorecardOptions.build(months=60, limit=1, offset=-3, min_score=140)
        assert (options.months, options.limit, options.offset) == (24, 5, 0)
        assert options.min_score == 100.0

        options = ScorecardOptions.build(months=1, limit=1000)
        assert (options.months, options.limit) == (3, 100)

    def test_unknown_sort_key_falls_back_to_score(self) -> None:
        options = ScorecardOptions.build(sort_by="  Nonsense ", sort_dir="ASC", partner_search="  AcMe ")
        assert options.sort_by == "score"
        assert options.sort_dir == "asc"
        assert options.partner_search == "acme"


def test_build_month_keys_crosses_year_boundary() -> None:
    assert build_month_keys(3, date(2024, 2, 10)) == ["2023-12", "2024-01", "2024-02"]


class TestSortItems:
    def test_ties_break_on_revenue_then_name(self) -> None:
        items = [
            _item("Zeta", 80.0, revenue=10.0),
            _item("Beta", 80.0, revenue=10.0),
            _item("Alpha", 80.0, revenue=5.0),
            _item("Omega", 95.0, revenue=1.0),
        ]
        ordered = sort_items(items)
        assert [i.partner for i in ordered] == ["Omega", "Beta", "Zeta", "Alpha"]

    def test_ascending_keeps_tie_breakers(self) -> None:
        items = [_item("B", 60.0, revenue=5.0), _item("A", 60.0, revenue=5.0), _item("C", 40.0)]
        ordered = sort_items(items, "score", "asc")
        assert [i.partner for i in ordered] == ["C", "A", "B"]

    def test_missing_quality_sorts_last_descending(self) -> None:
        items = [_item("A", 50.0, quality_score=None), _item("B", 50.0, quality_score=20.0)]
        ordered = sort_items(items, "quality", "desc")
        assert [i.partner for i in ordered] == ["B", "A"]

    def test_sort_by_partner(self) -> None:
        items = [_item("b", 1.0), _item("c", 2.0), _item("a", 3.0)]
        assert [i.partner for i in sort_items(items, "partner", "asc")] == ["a", "b", "c"]


def test_filter_items_by_search_and_min_score() -> None:
    items = [_item("Acme Mobile", 80.0), _item("Acme Fixed", 40.0), _item("Beta", 90.0)]
    options = ScorecardOptions.build(partner_search="acme", min_score=50)
    assert [i.partner for i in filter_items(items, options)] == ["Acme Mobile"]


def test_score_partners_fills_missing_trend_months() -> None:
    draft = PartnerDraft(partner="Acme")
    draft.add_month("2024-05", 100.0, 10.0, 3)
    draft.add_month("2024-05", 50.0, 5.0, 2)

    [item] = score_partners([draft], ["2024-04", "2024-05"])

    assert item.rows == 5
    assert [(p.month, p.revenue, p.usage) for p in item.trend] == [
        ("2024-04", 0.0, 0.0),
        ("2024-05", 150.0, 15.0),
    ]


def test_summarize_empty() -> None:
    summary = summarize([])
    assert summary.partner_count == 0
    assert summary.avg_quality_score is None
    assert summary.risk_breakdown == {"low": 0, "medium": 0, "high": 0}


@pytest.mark.parametrize(
    "row, expected",
    [
        ({"delay": "12"}, 12.0),
        ({"delay": "", "due": "2024-05-01", "paid": "2024-05-11"}, 10.0),
        ({"due": "2024-05-10", "paid": "2024-05-01"}, 0.0),
        ({"due": "2024-05-10"}, None),
    ],
)
def test_payment_delay_days(row, expected) -> None:
    assert payment_delay_days(row, delay_key="delay", due_key="due", paid_key="paid") == expected


# ---------------------------------------------------------------------------
# ScorecardService
# ---------------------------------------------------------------------------


class FakeSession:
    def rollback(self) -> None:
        pass


class FakeAggregates:
    def __init__(self, monthly, files=None, quality=None) -> None:
        self.monthly = monthly
        self.files = files or {}
        self.quality = quality or {}
        self.calls = 0

    def partner_month_totals(self, start, end, scope):
        self.calls += 1
        return list(self.monthly)

    def partner_file_counts(self, start, end, scope):
        return dict(self.files)

    def partner_quality_scores(self, start, end, scope):
        return dict(self.quality)


class FakeAlerts:
    def __init__(self, disputes=None) -> None:
        self.disputes = disputes or {}

    def open_dispute_counts(self, since, scope):
        return dict(self.disputes)


class FakeRowStore:
    def __init__(self, rows=(), quality=()) -> None:
        self.rows = list(rows)
        self.quality = list(quality)

    def iter_scoped_rows(self, scope, *, uploaded_since=None, limit):
        return iter(self.rows[:limit])

    def list_quality_scores(self, scope):
        return list(self.quality)


def _service(aggregates, alerts=None, row_store=None, cache=None) -> ScorecardService:
    return ScorecardService(
        FakeSession(),
        aggregates=aggregates,
        alerts=alerts or FakeAlerts(),
        row_store=row_store or FakeRowStore(),
        cache=cache,
        settings=ReadPathSettings(),
        clock=lambda: NOW,
    )


class TestScorecardFromAggregates:
    @pytest.fixture()
    def aggregates(self) -> FakeAggregates:
        return FakeAggregates(
            [
                PartnerMonthRow(partner="Acme", month="2024-04", revenue=1000.0, usage=500.0, rows=10),
                PartnerMonthRow(partner="Acme", month="2024-05", revenue=1000.0, usage=500.0, rows=10),
                PartnerMonthRow(partner="Beta", month="2024-05", revenue=500.0, usage=1000.0, rows=5),
            ],
            files={"Acme": 2, "Beta": 1},
            quality={"Acme": 90.0},
        )

    def test_scores_and_risk_levels(self, aggregates) -> None:
        service = _service(aggregates, alerts=FakeAlerts({"Beta": 2, "Gamma": 1}))

        result = service.compute(ScorecardOptions.build())

        assert result.source == "aggregates"
        assert result.month_keys == ["2023-12", "2024-01", "2024-02", "2024-03", "2024-04", "2024-05"]
        assert [(p.partner, p.score, p.risk_level) for p in result.partners] == [
            ("Acme", 97.5, "low"),
            ("Beta", 62.5, "medium"),
            ("Gamma", 37.5, "high"),
        ]
        acme = result.partners[0]
        assert acme.files == 2
        assert acme.quality_score == 90.0
        assert [p.revenue for p in acme.trend] == [0.0, 0.0, 0.0, 0.0, 1000.0, 1000.0]
        assert result.summary.total_revenue == 2500.0
        assert result.summary.risk_breakdown == {"low": 1, "medium": 1, "high": 1}
        assert result.metric_keys["revenue"] == "revenue_sum"

    def test_pagination_reports_full_total(self, aggregates) -> None:
        result = _service(aggregates).compute(ScorecardOptions.build(limit=5, offset=1))

        assert result.total == 2
        assert [p.partner for p in result.partners] == ["Beta"]

    def test_results_are_cached_per_option_set(self, aggregates) -> None:
        cache = TTLCache(60, 10, clock=lambda: 0.0)
        service = _service(aggregates, cache=cache)

        first = service.compute(ScorecardOptions.build(), [1, 2])
        second = service.compute(ScorecardOptions.build(), [2, 1])
        service.compute(ScorecardOptions.build(months=3), [1, 2])

        assert first is second
        assert aggregates.calls == 2


class TestScorecardRowScan:
    def test_falls_back_to_rows_when_nothing_is_aggregated(self) -> None:
        uploaded = datetime(2024, 5, 12, tzinfo=timezone.utc)

        def row(file_id, data):
            return ScopedRow(file_id=file_id, project_id=1, project_name="P", uploaded_at=uploaded, data=data)

        rows = [
            row(7, {"Partner": "Acme", "Date": "2024-05-02", "Revenue": "100", "Usage MB": "10",
                    "Due Date": "2024-05-01", "Paid Date": "2024-05-11"}),
            row(7, {"Partner": "Acme", "Date": "2024-04-20", "Revenue": "50", "Usage MB": "5",
                    "Due Date": "2024-04-01", "Paid Date": "2024-03-25"}),
            row(8, {"Partner": "Beta", "Date": "2024-05-03", "Revenue": "30", "Usage MB": "40",
                    "Due Date": "", "Paid Date": ""}),
            row(8, {"Partner": "Beta", "Date": "2023-01-01", "Revenue": "999", "Usage MB": "999",
                    "Due Date": "", "Paid Date": ""}),
        ]
        quality = [
            QualityRow(file_id=7, file_name="a.csv", project_id=1, project_name="P", score=80.0,
                       trust_level="high", invalid_rate=0.0, schema_inconsistency_rate=0.0),
            QualityRow(file_id=8, file_name="b.csv", project_id=1, project_name="P", score=None,
                       trust_level=None, invalid_rate=None, schema_inconsistency_rate=None),
        ]
        service = _service(FakeAggregates([]), row_store=FakeRowStore(rows, quality))

        result = service.compute(ScorecardOptions.build())

        assert result.source == "row_scan"
        assert result.metric_keys == {
            "revenue": "Revenue",
            "usage": "Usage MB",
            "payment_delay": None,
            "payment_due_date": "Due Date",
            "payment_paid_date": "Paid Date",
        }
        acme, beta = result.partners
        assert (acme.partner, acme.revenue, acme.rows, acme.files) == ("Acme", 150.0, 2, 1)
        assert acme.quality_score == 80.0
        assert acme.payment_delay_days == 5.0
        assert acme.score == pytest.approx(76.5)
        assert (beta.partner, beta.revenue, beta.quality_score, beta.payment_delay_days) == (
            "Beta",
            30.0,
            None,
            None,
        )
        assert beta.score == pytest.approx(66.0)
        assert beta.risk_level == "medium"
