"""
tests/test_etl_aggregation.py

Pytest unit tests for the analytics ETL: per-file bucketing, idempotent
recomputation, id normalisation and failure isolation in batch refreshes.

All tests are pure Python, no database.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from app.config import ETLSettings
from app.services.etl_service import (
    AnalyticsETLService,
    build_file_aggregates,
    normalize_file_ids,
    upload_day,
)
from db.repositories.file_repository import FileMeta

COLUMNS = [
    "Roaming Partner",
    "Country",
    "Event Date",
    "Data Volume MB",
    "Net Revenue",
    "Wholesale Cost",
    "Expected Tariff",
    "Actual Charge",
]

# 23:30 at UTC-2 is already the next calendar day in UTC.
UPLOADED_AT = datetime(2024, 3, 5, 23, 30, tzinfo=timezone(timedelta(hours=-2)))
COMPUTED_AT = datetime(2024, 3, 7, 9, 0, tzinfo=timezone.utc)


def _row(partner, country, day, volume, revenue, cost, expected, actual) -> dict:
    return dict(zip(COLUMNS, (partner, country, day, volume, revenue, cost, expected, actual)))


def _rows() -> list[dict]:
    return [
        _row("Acme", "FR", "2024-03-01", "1,024", "55.10", "20.00", "30.00", "31.50"),
        _row("Acme", "FR", "2024-03-01", "1,000", "44.90", None, "30.00", "30.00"),
        _row("Beta", "DE", "2024-03-02", "500", "n/a", "10", "12", "11"),
        _row("", None, "", "100", "5", "1", "2", "2"),
    ]


def _meta(file_id: int = 7) -> FileMeta:
    return FileMeta(
        file_id=file_id,
        project_id=3,
        project_name="Roaming Q1",
        name="roaming.csv",
        uploaded_at=UPLOADED_AT,
    )


# ---------------------------------------------------------------------------
# build_file_aggregates
# ---------------------------------------------------------------------------


class TestBuildFileAggregates:
    def test_buckets_are_keyed_by_day_partner_country(self) -> None:
        result = build_file_aggregates(_meta(), COLUMNS, _rows(), computed_at=COMPUTED_AT)

        keys = [(b["day"], b["partner"], b["country"]) for b in result.aggregates]
        assert keys == [
            (date(2024, 3, 1), "Acme", "FR"),
            (date(2024, 3, 2), "Beta", "DE"),
            (date(2024, 3, 6), "Unknown Partner", "Unknown Country"),
        ]

    def test_bucket_sums(self) -> None:
        result = build_file_aggregates(_meta(), COLUMNS, _rows(), computed_at=COMPUTED_AT)
        acme = result.aggregates[0]

        assert acme["rows_count"] == 2
        assert acme["traffic_sum"] == pytest.approx(2024.0)
        assert acme["revenue_sum"] == pytest.approx(100.0)
        assert acme["cost_sum"] == pytest.approx(20.0)
        assert acme["expected_sum"] == pytest.approx(60.0)
        assert acme["actual_sum"] == pytest.approx(61.5)
        assert acme["file_id"] == 7
        assert acme["project_id"] == 3

    def test_unparseable_cells_are_skipped_not_zero_rows(self) -> None:
        result = build_file_aggregates(_meta(), COLUMNS, _rows(), computed_at=COMPUTED_AT)
        beta = result.aggregates[1]

        assert beta["rows_count"] == 1
        assert beta["revenue_sum"] == 0.0
        assert beta["traffic_sum"] == pytest.approx(500.0)

    def test_file_metrics(self) -> None:
        result = build_file_aggregates(_meta(), COLUMNS, _rows(), computed_at=COMPUTED_AT)
        metrics = result.metrics

        assert metrics["total_rows"] == 4
        assert metrics["net_revenue_sum"] == pytest.approx(105.0)
        assert metrics["usage_sum"] == pytest.approx(2624.0)
        assert metrics["partner_count"] == 3
        assert metrics["net_revenue_key"] == "Net Revenue"
        assert metrics["usage_key"] == "Data Volume MB"
        assert metrics["expected_key"] == "Expected Tariff"
        assert metrics["actual_key"] == "Actual Charge"
        assert metrics["computed_at"] == COMPUTED_AT

    def test_recompute_is_identical(self) -> None:
        first = build_file_aggregates(_meta(), COLUMNS, _rows(), computed_at=COMPUTED_AT)
        second = build_file_aggregates(_meta(), COLUMNS, iter(_rows()), computed_at=COMPUTED_AT)

        assert first.aggregates == second.aggregates
        assert first.metrics == second.metrics

    def test_empty_file(self) -> None:
        result = build_file_aggregates(_meta(), COLUMNS, [], computed_at=COMPUTED_AT)

        assert result.aggregates == []
        assert result.metrics["total_rows"] == 0
        assert result.metrics["partner_count"] == 0

    def test_non_mapping_rows_are_ignored(self) -> None:
        rows = _rows() + ["not a row", None]
        result = build_file_aggregates(_meta(), COLUMNS, rows, computed_at=COMPUTED_AT)

        assert result.metrics["total_rows"] == 4


def test_upload_day_uses_utc_calendar_day() -> None:
    assert upload_day(UPLOADED_AT) == date(2024, 3, 6)
    assert upload_day(datetime(2024, 3, 5, 23, 30)) == date(2024, 3, 5)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ([3, "3", 1, 2.0], [3, 1, 2]),
        ([0, -4, "x", None, True, 1.5], []),
        (["12", " 8 ", float("nan")], [12, 8]),
    ],
)
def test_normalize_file_ids(raw: list, expected: list[int]) -> None:
    assert normalize_file_ids(raw) == expected


# ---------------------------------------------------------------------------
# AnalyticsETLService
# ---------------------------------------------------------------------------


class FakeSession:
    def __init__(self) -> None:
        self.commits = 0
        self.rollbacks = 0

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1


class FakeRowStore:
    def __init__(self, files: dict[int, list[dict]], stale: list[int] | None = None) -> None:
        self._files = files
        self._stale = stale or []
        self.stale_limits: list[int] = []

    def load_file_meta(self, file_id: int) -> FileMeta:
        if file_id not in self._files:
            raise LookupError(f"file {file_id} missing")
        return _meta(file_id)

    def load_columns(self, file_id: int) -> list[str]:
        return list(COLUMNS)

    def iter_rows(self, file_id: int):
        return iter(self._files[file_id])

    def find_stale_file_ids(self, limit: int) -> list[int]:
        self.stale_limits.append(limit)
        return self._stale[:limit]


class FakeAggregates:
    def __init__(self) -> None:
        self.replaced: dict[int, tuple[dict, list[dict]]] = {}

    def replace_file_aggregates(self, metrics, aggregates, *, chunk_size) -> None:
        self.replaced[metrics["file_id"]] = (metrics, aggregates)


def _service(files, stale=None):
    session = FakeSession()
    row_store = FakeRowStore(files, stale)
    aggregates = FakeAggregates()
    service = AnalyticsETLService(
        session,
        row_store=row_store,
        aggregates=aggregates,
        settings=ETLSettings(),
        clock=lambda: COMPUTED_AT,
    )
    return service, session, row_store, aggregates


class TestAnalyticsETLService:
    def test_refresh_file_persists_and_commits(self) -> None:
        service, session, _, aggregates = _service({7: _rows()})

        result = service.refresh_file(7)

        assert result.total_rows == 4
        assert result.bucket_count == 3
        assert session.commits == 1
        metrics, buckets = aggregates.replaced[7]
        assert metrics["computed_at"] == COMPUTED_AT
        assert len(buckets) == 3

    def test_refresh_file_rolls_back_and_reraises(self) -> None:
        service, session, _, aggregates = _service({})

        with pytest.raises(LookupError):
            service.refresh_file(99)

        assert session.rollbacks == 1
        assert aggregates.replaced == {}

    def test_one_failure_does_not_stop_the_batch(self) -> None:
        service, session, _, aggregates = _service({1: _rows(), 3: _rows()})

        summary = service.refresh_files([1, 2, "3", 1, -5])

        assert summary.refreshed_ids == [1, 3]
        assert summary.failed == [2]
        assert set(aggregates.replaced) == {1, 3}
        assert session.rollbacks == 1

    def test_refresh_stale_clamps_the_limit(self) -> None:
        service, _, row_store, _ = _service({4: _rows()}, stale=[4])

        summary = service.refresh_stale(limit=500)

        assert row_store.stale_limits == [20]
        assert summary.refreshed_ids == [4]

    def test_refresh_stale_with_nothing_to_do(self) -> None:
        service, session, _, _ = _service({}, stale=[])

        summary = service.refresh_stale()

        assert summary.refreshed == []
        assert session.commits == 0
