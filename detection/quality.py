"""
detection/quality.py

Data-quality warning rule for scored files.
"""

from __future__ import annotations

from dataclasses import dataclass

from detection.fingerprints import DATA_QUALITY_WARNING, build_fingerprint

LOW_SCORE = 70.0
CRITICAL_SCORE = 50.0
INVALID_RATE_WARN = 0.15
INVALID_RATE_CRITICAL = 0.3
SCHEMA_INCONSISTENCY_WARN = 0.2


@dataclass(frozen=True)
class FileQuality:
    file_id: int
    file_name: str
    project_id: int | None
    project_name: str | None
    score: float | None
    trust_level: str | None
    invalid_rate: float | None
    schema_inconsistency_rate: float | None

    @property
    def fingerprint(self) -> str:
        return build_fingerprint(DATA_QUALITY_WARNING, file=self.file_id)


def quality_warning_severity(quality: FileQuality) -> str | None:
    """
    ``None`` when the file is healthy, otherwise ``"high"`` or ``"medium"``.
    """

    score = quality.score
    invalid = quality.invalid_rate or 0.0
    schema = quality.schema_inconsistency_rate or 0.0
    low_trust = (quality.trust_level or "").strip().lower() == "low"

    unhealthy = (
        (score is not None and score < LOW_SCORE)
        or low_trust
        or invalid >= INVALID_RATE_WARN
        or schema >= SCHEMA_INCONSISTENCY_WARN
    )
    if not unhealthy:
        return None
    if (score is not None and score < CRITICAL_SCORE) or invalid >= INVALID_RATE_CRITICAL:
        return "high"
    return "medium"


def describe_quality_issue(quality: FileQuality) -> str:
    score = "n/a" if quality.score is None else f"{quality.score:.1f}"
    return (
        f"File '{quality.file_name}' has quality score {score} "
        f"(trust {quality.trust_level or 'unknown'}, "
        f"invalid {(quality.invalid_rate or 0.0) * 100:.1f}%, "
        f"schema drift {(quality.schema_inconsistency_rate or 0.0) * 100:.1f}%)."
    )
