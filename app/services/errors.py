"""
Service-layer exceptions surfaced to the HTTP layer.
"""

from __future__ import annotations


class AnalyticsComputationError(RuntimeError):
    """
    A derived read (scorecard, insights) could not be computed.

    Raised instead of returning a partial payload; the API maps it to 500.
    """
