"""
app/config.py

Application-level configuration helpers.

Every knob is read from the environment (after `.env` files are loaded),
falls back to its default on malformed input, and is clamped to a safe range.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from db.config import load_env_files
from detection.detector import DetectorConfig


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading app settings.
    """

    load_env_files()


def _get_bool_env(name: str, default: bool) -> bool:
    """
    Read a boolean from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int, *, low: int | None = None, high: int | None = None) -> int:
    """
    Read an integer from environment variables with safe fallback and bounds.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    value = default
    if raw_value is not None:
        try:
            value = int(float(raw_value.strip()))
        except ValueError:
            value = default
    return int(_clamp(value, low, high))


def _get_float_env(
    name: str,
    default: float,
    *,
    low: float | None = None,
    high: float | None = None,
) -> float:
    """
    Read a float from environment variables with safe fallback and bounds.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    value = default
    if raw_value is not None:
        try:
            value = float(raw_value.strip())
        except ValueError:
            value = default
    return float(_clamp(value, low, high))


def _get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def _clamp(value: float, low: float | None, high: float | None) -> float:
    if low is not None:
        value = max(low, value)
    if high is not None:
        value = min(high, value)
    return value


@dataclass(frozen=True)
class ETLSettings:
    """
    Runtime settings for the analytics aggregation pipeline.
    """

    worker_enabled: bool = True
    interval_seconds: int = 180
    backfill_limit: int = 2
    sample_rows: int = 1200
    insert_chunk_size: int = 400


@dataclass(frozen=True)
class DetectionSettings:
    """
    Alert detection knobs. Thresholds are ratios; z thresholds are in
    standard deviations.
    """

    enabled: bool = True
    interval_seconds: int = 900
    lookback_days: int = 45
    row_limit: int = 50000
    revenue_drop_threshold: float = 0.5
    traffic_spike_threshold: float = 1.0
    baseline_window_days: int = 7
    min_history_points: int = 4
    min_daily_rows: int = 3
    min_baseline_revenue: float = 5.0
    min_baseline_traffic: float = 50.0
    volatility_multiplier: float = 0.6
    max_revenue_drop_threshold: float = 0.85
    max_traffic_spike_threshold: float = 2.5
    anomaly_z_threshold: float = 3.0
    anomaly_high_z_threshold: float = 4.0

    def detector_config(self) -> DetectorConfig:
        return DetectorConfig(
            baseline_window=self.baseline_window_days,
            min_history_points=self.min_history_points,
            min_daily_rows=self.min_daily_rows,
            revenue_drop_threshold=self.revenue_drop_threshold,
            max_revenue_drop_threshold=self.max_revenue_drop_threshold,
            traffic_spike_threshold=self.traffic_spike_threshold,
            max_traffic_spike_threshold=self.max_traffic_spike_threshold,
            volatility_multiplier=self.volatility_multiplier,
            min_baseline_revenue=self.min_baseline_revenue,
            min_baseline_traffic=self.min_baseline_traffic,
            z_threshold=self.anomaly_z_threshold,
            high_z_threshold=self.anomaly_high_z_threshold,
        )


@dataclass(frozen=True)
class CacheSettings:
    """
    TTL cache sizing for derived read paths.
    """

    ttl_seconds: int = 60
    max_entries: int = 180


@dataclass(frozen=True)
class ReadPathSettings:
    """
    Limits for the raw-row fallback scans used when aggregates are unavailable.
    """

    scorecard_row_limit: int = 12000
    insights_row_limit: int = 20000
    insights_window_days: int = 90
    forecast_horizon_days: int = 7


@lru_cache(maxsize=1)
def get_etl_settings() -> ETLSettings:
    """
    Return cached ETL settings from environment variables.
    """

    return ETLSettings(
        worker_enabled=_get_bool_env("ENABLE_ANALYTICS_ETL_WORKER", True),
        interval_seconds=_get_int_env("ANALYTICS_ETL_INTERVAL_SECONDS", 180, low=30, high=3600),
        backfill_limit=_get_int_env("ANALYTICS_ETL_BACKFILL_LIMIT", 2, low=1, high=20),
        sample_rows=_get_int_env("ANALYTICS_ETL_SAMPLE_ROWS", 1200, low=50, high=20000),
        insert_chunk_size=_get_int_env("ANALYTICS_ETL_INSERT_CHUNK", 400, low=50, high=5000),
    )


@lru_cache(maxsize=1)
def get_detection_settings() -> DetectionSettings:
    """
    Return cached detection settings. Max thresholds never fall below their base.
    """

    revenue_drop = _get_float_env("ALERT_REVENUE_DROP_THRESHOLD", 0.5, low=0.1, high=0.95)
    traffic_spike = _get_float_env("ALERT_TRAFFIC_SPIKE_THRESHOLD", 1.0, low=0.1, high=5.0)
    z_threshold = _get_float_env("ALERT_ANOMALY_Z_THRESHOLD", 3.0, low=2.0, high=8.0)

    return DetectionSettings(
        enabled=_get_bool_env("ENABLE_ALERT_DETECTION", True),
        interval_seconds=_get_int_env("ALERT_DETECTION_INTERVAL_SECONDS", 900, low=60, high=86400),
        lookback_days=_get_int_env("ALERT_LOOKBACK_DAYS", 45, low=7, high=365),
        row_limit=_get_int_env("ALERT_ROW_LIMIT", 50000, low=1000, high=500000),
        revenue_drop_threshold=revenue_drop,
        traffic_spike_threshold=traffic_spike,
        baseline_window_days=_get_int_env("ALERT_BASELINE_WINDOW_DAYS", 7, low=3, high=30),
        min_history_points=_get_int_env("ALERT_MIN_HISTORY_POINTS", 4, low=2, high=20),
        min_daily_rows=_get_int_env("ALERT_MIN_DAILY_ROWS", 3, low=1, high=1000),
        min_baseline_revenue=_get_float_env("ALERT_MIN_BASELINE_REVENUE", 5.0, low=0.0),
        min_baseline_traffic=_get_float_env("ALERT_MIN_BASELINE_TRAFFIC", 50.0, low=0.0),
        volatility_multiplier=_get_float_env(
            "ALERT_DYNAMIC_VOLATILITY_MULTIPLIER", 0.6, low=0.0, high=3.0
        ),
        max_revenue_drop_threshold=_get_float_env(
            "ALERT_MAX_REVENUE_DROP_THRESHOLD", 0.85, low=revenue_drop, high=0.98
        ),
        max_traffic_spike_threshold=_get_float_env(
            "ALERT_MAX_TRAFFIC_SPIKE_THRESHOLD", 2.5, low=traffic_spike, high=10.0
        ),
        anomaly_z_threshold=z_threshold,
        anomaly_high_z_threshold=_get_float_env(
            "ALERT_ANOMALY_HIGH_Z_THRESHOLD", 4.0, low=z_threshold, high=12.0
        ),
    )


@lru_cache(maxsize=1)
def get_cache_settings() -> CacheSettings:
    """
    Return cached read-path cache settings.
    """

    return CacheSettings(
        ttl_seconds=_get_int_env("ANALYTICS_CACHE_TTL_SECONDS", 60, low=5, high=900),
        max_entries=_get_int_env("ANALYTICS_CACHE_MAX_ENTRIES", 180, low=10, high=5000),
    )


@lru_cache(maxsize=1)
def get_read_path_settings() -> ReadPathSettings:
    """
    Return cached fallback-scan limits.
    """

    return ReadPathSettings(
        scorecard_row_limit=_get_int_env("PARTNER_SCORECARD_ROW_LIMIT", 12000, low=1000, high=120000),
        insights_row_limit=_get_int_env("INSIGHTS_ROW_LIMIT", 20000, low=1000, high=200000),
        insights_window_days=_get_int_env("INSIGHTS_WINDOW_DAYS", 90, low=7, high=730),
        forecast_horizon_days=_get_int_env("INSIGHTS_FORECAST_HORIZON_DAYS", 7, low=1, high=90),
    )


def get_log_level() -> str:
    return _get_str_env("LOG_LEVEL", "INFO").upper()
