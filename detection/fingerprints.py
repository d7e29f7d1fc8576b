"""
detection/fingerprints.py

Deterministic alert fingerprints.

A fingerprint is ``<type>|<key>:<value>|...`` with dimensions in the order
given, e.g. ``revenue_drop|project:7|partner:Acme|day:2024-05-01``. The same
condition must always yield the same string; the alert ledger deduplicates
on it.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

REVENUE_DROP = "revenue_drop"
TRAFFIC_SPIKE = "traffic_spike"
ANOMALY_DETECTION = "anomaly_detection"
DATA_QUALITY_WARNING = "data_quality_warning"
NOTIFICATION_FAILURE = "notification_failure"


def _format_value(value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if value is None:
        return ""
    return str(value).replace("|", "/")


def build_fingerprint(alert_type: str, **dimensions: Any) -> str:
    if not alert_type:
        raise ValueError("alert_type is required to build a fingerprint.")
    parts = [alert_type]
    parts.extend(f"{key}:{_format_value(value)}" for key, value in dimensions.items())
    return "|".join(parts)
