"""
app/services package marker.
"""

from app.services.alert_service import AlertNotFoundError, AlertService
from app.services.detection_service import DetectionService
from app.services.errors import AnalyticsComputationError
from app.services.etl_queue import AnalyticsRefreshQueue
from app.services.etl_service import AnalyticsETLService
from app.services.insights_service import InsightFilters, InsightsService
from app.services.scorecard_service import ScorecardService

__all__ = [
    "AlertNotFoundError",
    "AlertService",
    "AnalyticsComputationError",
    "AnalyticsETLService",
    "AnalyticsRefreshQueue",
    "DetectionService",
    "InsightFilters",
    "InsightsService",
    "ScorecardService",
]
