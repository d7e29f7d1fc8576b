"""
tests/test_api.py

HTTP contract tests for the alert, scorecard and analytics routers.

The app is assembled from the routers directly with every service dependency
overridden by an in-memory fake, so no database or scheduler is involved.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api.dependencies import (
    get_alert_service,
    get_detection_runner,
    get_insights_service,
    get_refresh_queue,
    get_scorecard_service,
    parse_project_scope,
)
from app.api.routers import alerts_router, analytics_router, scorecard_router
from app.config import ReadPathSettings
from app.services.alert_service import AlertService, UpsertTally
from app.services.detection_service import DetectionSummary
from app.services.errors import AnalyticsComputationError
from app.services.etl_queue import AnalyticsRefreshQueue
from app.services.insights_service import InsightsService
from app.services.scorecard_service import ScorecardResult
from db.models.alert import Alert
from db.repositories.aggregate_repository import DayTotals
from db.repositories.errors import AlertPersistenceError
from risk.ranking import PartnerDraft, build_month_keys, score_partners, summarize

NOW = datetime(2024, 3, 20, 8, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeSession:
    def commit(self) -> None:
        pass

    def rollback(self) -> None:
        pass


class FakeAlertRepository:
    def __init__(self, alerts: list[Alert]) -> None:
        self.alerts = {alert.id: alert for alert in alerts}
        self.last_filters = None

    def get(self, alert_id: int) -> Alert | None:
        return self.alerts.get(alert_id)

    def _visible(self, project_ids) -> list[Alert]:
        return [
            a for a in self.alerts.values() if project_ids is None or a.project_id in project_ids
        ]

    def list_alerts(self, filters) -> tuple[list[Alert], int]:
        self.last_filters = filters
        items = [
            a
            for a in self._visible(filters.project_ids)
            if filters.status is None or a.status == filters.status
        ]
        return items[filters.offset : filters.offset + filters.limit], len(items)

    def count_by_status_severity(self, project_ids=None) -> list[tuple[str, str, int]]:
        return [(a.status, a.severity, 1) for a in self._visible(project_ids)]

    def distinct_projects(self, project_ids=None) -> list[tuple[int, str | None]]:
        return sorted({(a.project_id, a.project_name) for a in self._visible(project_ids)})

    def distinct_partners(self, project_ids=None) -> list[str]:
        return sorted({a.partner for a in self._visible(project_ids) if a.partner})

    def distinct_alert_types(self, project_ids=None) -> list[str]:
        return sorted({a.alert_type for a in self._visible(project_ids)})


class NullSink:
    def send(self, **kwargs: Any) -> None:
        pass


def _alert(alert_id: int, project_id: int, **overrides: Any) -> Alert:
    values: dict[str, Any] = {
        "id": alert_id,
        "fingerprint": f"revenue_drop|project:{project_id}|partner:Acme|day:2024-03-1{alert_id}",
        "alert_type": "revenue_drop",
        "severity": "high",
        "status": "open",
        "title": "Revenue drop for Acme",
        "message": "Revenue fell sharply.",
        "source": "detection",
        "project_id": project_id,
        "project_name": f"Project {project_id}" if project_id != 2 else None,
        "partner": "Acme",
        "payload": {"drop_ratio": 0.7},
        "first_detected_at": NOW - timedelta(days=1),
        "last_detected_at": NOW,
    }
    values.update(overrides)
    return Alert(**values)


class StubScorecardService:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[tuple[Any, Any]] = []

    def compute(self, options, project_ids=None) -> ScorecardResult:
        self.calls.append((options, project_ids))
        if self.error is not None:
            raise self.error
        month_keys = build_month_keys(options.months, NOW.date())
        draft = PartnerDraft(partner="Acme", files=1)
        draft.add_month(month_keys[-1], 100.0, 10.0, 4)
        items = score_partners([draft], month_keys)
        return ScorecardResult(
            options=options,
            month_keys=month_keys,
            metric_keys={"revenue": "revenue_sum", "usage": "usage_sum"},
            summary=summarize(items),
            partners=items,
            total=len(items),
            source="aggregates",
            row_limit=12000,
        )


class FakeAggregates:
    def __init__(self) -> None:
        self.filters = []

    def daily_totals(self, filters):
        self.filters.append(filters)
        start = date(2024, 3, 1)
        return [
            DayTotals(
                day=start + timedelta(days=i),
                rows=3,
                traffic=5.0,
                revenue=10.0 * (i + 1),
                cost=1.0,
                expected=10.0,
                actual=12.0,
            )
            for i in range(5)
        ]

    def resolved_key_flags(self, filters):
        return {key: True for key in ("revenue_key", "traffic_key", "expected_key", "actual_key")}

    def leakage_totals(self, filters):
        return []

    def partner_row_counts(self, filters):
        return {"Acme": 15}


class EmptyRowStore:
    def iter_scoped_rows(self, scope, *, uploaded_since=None, limit):
        return iter(())


class DeferredStarter:
    def __init__(self) -> None:
        self.started = []

    def __call__(self, target) -> None:
        self.started.append(target)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def alert_repository() -> FakeAlertRepository:
    return FakeAlertRepository(
        [
            _alert(1, 1),
            _alert(2, 2, severity="low", partner="Beta"),
            _alert(3, 1, status="resolved", resolved_at=NOW, resolved_by="ops"),
        ]
    )


@pytest.fixture()
def scorecard_service() -> StubScorecardService:
    return StubScorecardService()


@pytest.fixture()
def aggregates() -> FakeAggregates:
    return FakeAggregates()


@pytest.fixture()
def refresh_queue() -> AnalyticsRefreshQueue:
    return AnalyticsRefreshQueue(lambda batch: None, start_worker=DeferredStarter())


@pytest.fixture()
def detection_results() -> list:
    return []


@pytest.fixture()
def app(alert_repository, scorecard_service, aggregates, refresh_queue, detection_results) -> FastAPI:
    application = FastAPI()
    application.include_router(alerts_router)
    application.include_router(scorecard_router)
    application.include_router(analytics_router)

    def runner(scope):
        return detection_results.pop(0) if detection_results else None

    application.dependency_overrides[get_alert_service] = lambda: AlertService(
        FakeSession(),
        repository=alert_repository,
        notifier=NullSink(),
        clock=lambda: NOW,
    )
    application.dependency_overrides[get_detection_runner] = lambda: runner
    application.dependency_overrides[get_scorecard_service] = lambda: scorecard_service
    application.dependency_overrides[get_insights_service] = lambda: InsightsService(
        FakeSession(),
        aggregates=aggregates,
        row_store=EmptyRowStore(),
        settings=ReadPathSettings(),
        clock=lambda: NOW,
    )
    application.dependency_overrides[get_refresh_queue] = lambda: refresh_queue
    return application


@pytest.fixture()
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


# ---------------------------------------------------------------------------
# Project scope header
# ---------------------------------------------------------------------------


class TestProjectScope:
    @pytest.mark.parametrize(
        "raw, expected",
        [(None, None), ("", []), ("3, 1,3", [1, 3]), (" 7 ,", [7])],
    )
    def test_parse(self, raw, expected) -> None:
        assert parse_project_scope(raw) == expected

    @pytest.mark.parametrize("raw", ["abc", "1,-2", "0"])
    def test_invalid_tokens(self, raw) -> None:
        with pytest.raises(ValueError):
            parse_project_scope(raw)

    def test_invalid_header_is_a_bad_request(self, client: TestClient) -> None:
        response = client.get("/alerts", headers={"X-Allowed-Projects": "1,abc"})
        assert response.status_code == 400

    def test_empty_header_sees_nothing(self, client: TestClient) -> None:
        response = client.get("/alerts", headers={"X-Allowed-Projects": ""})
        assert response.status_code == 200
        assert response.json()["total"] == 0


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


class TestAlertEndpoints:
    def test_list_is_scoped(self, client: TestClient, alert_repository) -> None:
        response = client.get("/alerts", headers={"X-Allowed-Projects": "1"})

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert {item["id"] for item in body["items"]} == {1, 3}
        assert (body["limit"], body["offset"]) == (100, 0)
        assert alert_repository.last_filters.project_ids == [1]

    def test_list_filters_are_normalised(self, client: TestClient, alert_repository) -> None:
        response = client.get("/alerts", params={"status": "RESOLVED", "q": "  acme ", "severity": "bogus"})

        assert response.status_code == 200
        assert [item["id"] for item in response.json()["items"]] == [3]
        filters = alert_repository.last_filters
        assert filters.status == "resolved"
        assert filters.query == "acme"
        assert filters.severity == "medium"

    def test_list_limit_is_validated(self, client: TestClient) -> None:
        assert client.get("/alerts", params={"limit": 500}).status_code == 422

    def test_detail_outside_scope_is_not_found(self, client: TestClient) -> None:
        response = client.get("/alerts/2", headers={"X-Allowed-Projects": "1"})
        assert response.status_code == 404

        assert client.get("/alerts/2").json()["partner"] == "Beta"
        assert client.get("/alerts/99").status_code == 404

    def test_resolve_and_reopen(self, client: TestClient) -> None:
        resolved = client.post("/alerts/1/resolve", json={"resolved_by": "noc@example.com"})
        assert resolved.status_code == 200
        assert resolved.json()["status"] == "resolved"
        assert resolved.json()["resolved_by"] == "noc@example.com"

        reopened = client.post("/alerts/1/reopen")
        assert reopened.status_code == 200
        assert reopened.json()["status"] == "open"
        assert reopened.json()["resolved_at"] is None

    def test_resolve_without_body_uses_default_resolver(self, client: TestClient) -> None:
        response = client.post("/alerts/1/resolve")
        assert response.status_code == 200
        assert response.json()["resolved_by"] == "system"

    def test_summary(self, client: TestClient) -> None:
        body = client.get("/alerts/summary").json()

        assert body["open"] == {"low": 1, "medium": 0, "high": 1, "total": 2}
        assert body["resolved"]["high"] == 1

    def test_filter_options(self, client: TestClient) -> None:
        body = client.get("/alerts/filters").json()

        assert body["projects"] == [{"id": 1, "name": "Project 1"}, {"id": 2, "name": "Project 2"}]
        assert body["partners"] == ["Acme", "Beta"]
        assert body["severities"] == ["low", "medium", "high"]
        assert body["statuses"] == ["open", "resolved"]

    def test_detection_skipped_while_another_pass_runs(self, client: TestClient) -> None:
        response = client.post("/alerts/detect")

        assert response.status_code == 200
        assert response.json()["skipped"] is True
        assert response.json()["totals"] is None

    def test_detection_totals(self, client: TestClient, detection_results) -> None:
        detection_results.append(
            DetectionSummary(
                quality=UpsertTally(created=1, processed=40),
                metrics=UpsertTally(created=2, reopened=1, updated=3, processed=60),
            )
        )

        body = client.post("/alerts/detect").json()

        assert body["skipped"] is False
        assert body["source"] == "aggregates"
        assert body["totals"] == {"created": 3, "reopened": 1, "updated": 3, "processed_rows": 100}

    def test_alert_write_failure_is_a_generic_server_error(self, app: FastAPI) -> None:
        def failing_runner(scope):
            raise AlertPersistenceError("Alert 7 vanished after insert.")

        app.dependency_overrides[get_detection_runner] = lambda: failing_runner

        response = TestClient(app).post("/alerts/detect")

        assert response.status_code == 500
        assert response.json() == {"detail": "Analytics computation failed."}


# ---------------------------------------------------------------------------
# Scorecard
# ---------------------------------------------------------------------------


class TestScorecardEndpoint:
    def test_options_are_clamped(self, client: TestClient, scorecard_service) -> None:
        response = client.get(
            "/partners/scorecard",
            params={"months": 60, "limit": 1, "sort_by": "nonsense", "partner": " Ac "},
            headers={"X-Allowed-Projects": "4"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["options"]["months"] == 24
        assert body["options"]["limit"] == 5
        assert body["options"]["sort_by"] == "score"
        assert body["options"]["partner_search"] == "ac"
        assert len(body["month_keys"]) == 24
        assert body["partners"][0]["partner"] == "Acme"
        assert len(body["partners"][0]["trend"]) == 24
        assert body["summary"]["partner_count"] == 1
        assert scorecard_service.calls[0][1] == [4]

    def test_computation_failure_is_a_server_error(self, app: FastAPI) -> None:
        app.dependency_overrides[get_scorecard_service] = lambda: StubScorecardService(
            error=AnalyticsComputationError("boom")
        )

        response = TestClient(app).get("/partners/scorecard")

        assert response.status_code == 500
        assert response.json()["detail"] == "Analytics computation failed."


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


class TestAnalyticsEndpoints:
    def test_daily_series_swaps_inverted_range(self, client: TestClient, aggregates) -> None:
        response = client.get("/analytics/daily", params={"start": "2024-03-09", "end": "2024-03-01"})

        assert response.status_code == 200
        body = response.json()
        assert body["filters"]["start"] == "2024-03-01"
        assert body["filters"]["end"] == "2024-03-09"
        assert body["source"] == "aggregates"
        assert body["totals"] == {"rows_scanned": 15, "rows_matched": 15}
        assert body["daily"][0] == {
            "day": "2024-03-01",
            "rows": 3,
            "traffic": 5.0,
            "revenue": 10.0,
            "cost": 1.0,
            "expected": 10.0,
            "actual": 12.0,
        }
        assert aggregates.filters[0].since == date(2024, 3, 1)

    def test_forecast(self, client: TestClient) -> None:
        body = client.get("/analytics/forecast", params={"horizon": 3}).json()

        assert body["metric"] == "revenue"
        assert body["horizon_days"] == 3
        assert body["points"] == [
            {"day": "2024-03-06", "value": 60.0},
            {"day": "2024-03-07", "value": 70.0},
            {"day": "2024-03-08", "value": 80.0},
        ]

    @pytest.mark.parametrize(
        "path, params",
        [
            ("/analytics/forecast", {"horizon": 0}),
            ("/analytics/forecast", {"horizon": 91}),
            ("/analytics/leakage", {"limit": 51}),
            ("/analytics/daily", {"start": "not-a-date"}),
        ],
    )
    def test_invalid_query_parameters(self, client: TestClient, path: str, params: dict) -> None:
        assert client.get(path, params=params).status_code == 422

    def test_insights(self, client: TestClient) -> None:
        body = client.get("/analytics/insights").json()

        assert body["metrics"]["forecast_metric"] == "revenue"
        assert body["metrics"]["revenue_key"] == "revenue_sum"
        assert len(body["forecast"]["points"]) == 7
        assert body["summaries"][0] == "Scanned 15 rows; matched 15 after filters."
        assert "No cost column detected." in body["advisories"]

    def test_refresh_is_accepted_and_queued(self, client: TestClient, refresh_queue) -> None:
        response = client.post("/analytics/refresh", json={"file_ids": [5, 3, 5, -1]})

        assert response.status_code == 202
        assert response.json() == {"queued": [5, 3], "pending": [3, 5], "in_flight": []}
        assert refresh_queue.is_busy

    def test_refresh_without_valid_ids(self, client: TestClient) -> None:
        assert client.post("/analytics/refresh", json={"file_ids": [0, -4]}).status_code == 400
        assert client.post("/analytics/refresh", json={"file_ids": []}).status_code == 422
