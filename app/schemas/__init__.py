"""
app/schemas package marker.
"""

from app.schemas.alerts import (
    AlertFilterOptionsResponse,
    AlertListResponse,
    AlertResponse,
    AlertSummaryResponse,
    DetectionRunResponse,
    ResolveAlertRequest,
)
from app.schemas.analytics import (
    AnomalyResponse,
    DailySeriesResponse,
    ForecastResponse,
    InsightsResponse,
    LeakageResponse,
    RefreshAcceptedResponse,
    RefreshRequest,
)
from app.schemas.scorecard import PartnerScorecardResponse

__all__ = [
    "AlertFilterOptionsResponse",
    "AlertListResponse",
    "AlertResponse",
    "AlertSummaryResponse",
    "AnomalyResponse",
    "DailySeriesResponse",
    "DetectionRunResponse",
    "ForecastResponse",
    "InsightsResponse",
    "LeakageResponse",
    "PartnerScorecardResponse",
    "RefreshAcceptedResponse",
    "RefreshRequest",
    "ResolveAlertRequest",
]
