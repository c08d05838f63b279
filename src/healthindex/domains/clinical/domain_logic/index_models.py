"""Health index result models and scoring constants."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any


# ---------------------------------------------------------------------------
# Closed tag types
# ---------------------------------------------------------------------------

class VitalStatus(str, Enum):
    """Per-reading status tag produced by the range scorer."""

    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


class Trend(str, Enum):
    IMPROVING = "IMPROVING"
    STABLE = "STABLE"
    DETERIORATING = "DETERIORATING"
    UNKNOWN = "UNKNOWN"


class Category(str, Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"
    CRITICAL = "CRITICAL"


# Worst-of ordering used when two readings collapse into one (blood pressure)
STATUS_SEVERITY = MappingProxyType({
    VitalStatus.UNKNOWN: 0,
    VitalStatus.NORMAL: 1,
    VitalStatus.WARNING: 2,
    VitalStatus.CRITICAL: 3,
})


# ---------------------------------------------------------------------------
# Aggregation constants
# ---------------------------------------------------------------------------

# Component weights of the overall score. Must sum to exactly 1.0.
HEALTH_INDEX_WEIGHTS = MappingProxyType({
    "vitals": 0.30,
    "labs": 0.25,
    "diagnosis": 0.20,
    "hospitalization": 0.15,
    "medication": 0.10,
})

# Lower-inclusive band floors, highest first
CATEGORY_BANDS: tuple[tuple[int, Category], ...] = (
    (90, Category.EXCELLENT),
    (70, Category.GOOD),
    (50, Category.FAIR),
    (30, Category.POOR),
    (0, Category.CRITICAL),
)

TREND_THRESHOLD = 5
TREND_LOOKBACK_DAYS = 7

# ---------------------------------------------------------------------------
# Component defaults and windows
# ---------------------------------------------------------------------------

SCORE_UNKNOWN_READING = 50      # Single unparsable/missing reading
SCORE_NO_VITALS = 75            # No vital present on the latest record
SCORE_NO_LABS = 80              # No lab tests, or none with a recognised analyte
SCORE_NO_COMPLETED_LABS = 75    # Lab tests exist but none completed with results
SCORE_NO_DIAGNOSIS = 90
SCORE_DIAGNOSIS_CRITICAL = 30
SCORE_DIAGNOSIS_MODERATE = 60
SCORE_DIAGNOSIS_UNREMARKABLE = 85
SCORE_NOT_HOSPITALIZED = 100
SCORE_CURRENTLY_ADMITTED = 50
SCORE_RECENTLY_DISCHARGED = 70
SCORE_PREVIOUSLY_HOSPITALIZED = 90

MEDICATION_WINDOW_DAYS = 30
DISCHARGE_WINDOW_DAYS = 7

# (max active prescriptions, score); counts above the last bound fall through
MEDICATION_STEPS: tuple[tuple[int, int], ...] = (
    (0, 95),
    (2, 85),
    (4, 75),
    (6, 65),
)
SCORE_HEAVY_MEDICATION = 55

# Lab warning bands are synthesised from the normal range
LAB_WARNING_LOW_FACTOR = 0.8
LAB_WARNING_HIGH_FACTOR = 1.2

# Bounded reads per record kind (newest first)
EMR_HISTORY_LIMIT = 20
LAB_HISTORY_LIMIT = 20
PRESCRIPTION_HISTORY_LIMIT = 30
BED_HISTORY_LIMIT = 10


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RangeScore:
    """Output of the generic range scorer."""

    score: int
    status: VitalStatus


@dataclass(frozen=True)
class VitalScore:
    """Score for one detected vital sign on the latest record."""

    name: str
    value: str | float | None
    score: int
    status: VitalStatus
    normal_range: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "score": self.score,
            "status": self.status.value,
            "normalRange": self.normal_range,
        }


@dataclass(frozen=True)
class ScoreBreakdown:
    """The five component scores plus per-vital detail."""

    vitals: tuple[VitalScore, ...]
    vitals_score: int
    lab_score: int
    medication_score: int
    hospitalization_score: int
    diagnosis_score: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "vitals": [v.to_dict() for v in self.vitals],
            "vitalsScore": self.vitals_score,
            "labScore": self.lab_score,
            "medicationScore": self.medication_score,
            "hospitalizationScore": self.hospitalization_score,
            "diagnosisScore": self.diagnosis_score,
        }


@dataclass(frozen=True)
class HistoricalScore:
    date: datetime
    score: int


@dataclass(frozen=True)
class HealthIndexResult:
    """Composite health index for one patient at one point in time.

    Recomputed on every request and never stored.
    """

    overall_score: int
    trend: Trend
    trend_delta: int
    category: Category
    breakdown: ScoreBreakdown
    data_points: int
    last_updated: datetime
    historical_scores: tuple[HistoricalScore, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        """Render the consumer-facing JSON shape."""
        return {
            "overallScore": self.overall_score,
            "trend": self.trend.value,
            "trendDelta": self.trend_delta,
            "category": self.category.value,
            "breakdown": self.breakdown.to_dict(),
            "lastUpdated": self.last_updated.isoformat(),
            "dataPoints": self.data_points,
            "historicalScores": [
                {"date": h.date.isoformat(), "score": h.score}
                for h in self.historical_scores
            ],
        }
