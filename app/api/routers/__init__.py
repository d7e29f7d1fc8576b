"""
app/api/routers package marker.
"""

from app.api.routers.alerts_router import router as alerts_router
from app.api.routers.analytics_router import router as analytics_router
from app.api.routers.scorecard_router import router as scorecard_router

__all__ = [
    "alerts_router",
    "analytics_router",
    "scorecard_router",
]
