"""Composite health index: weighted aggregation, banding, and trend.

Pulls four bounded record histories concurrently from a
``ClinicalRecordSource``, scores each clinical domain, and folds the five
component scores into one 0-100 index. Nothing is cached or persisted; every
call re-reads and recomputes.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Sequence

from healthindex.domains.clinical.domain_logic.clinical_records import (
    BedAssignmentRecord,
    DiagnosisRecord,
    LabSnapshot,
    PrescriptionRecord,
    as_utc,
)
from healthindex.domains.clinical.domain_logic.component_scorers import (
    score_diagnosis,
    score_hospitalization,
    score_lab_results,
    score_medications,
    score_vitals,
)
from healthindex.domains.clinical.domain_logic.index_models import (
    BED_HISTORY_LIMIT,
    CATEGORY_BANDS,
    EMR_HISTORY_LIMIT,
    HEALTH_INDEX_WEIGHTS,
    LAB_HISTORY_LIMIT,
    PRESCRIPTION_HISTORY_LIMIT,
    TREND_LOOKBACK_DAYS,
    TREND_THRESHOLD,
    Category,
    HealthIndexResult,
    HistoricalScore,
    ScoreBreakdown,
    Trend,
)

if TYPE_CHECKING:
    from healthindex.domains.clinical.connectors import ClinicalRecordSource

logger = logging.getLogger(__name__)


async def _gather_all(*reads: Awaitable[Any]) -> list[Any]:
    """Await reads concurrently; the first failure cancels the rest and propagates."""
    tasks = [asyncio.ensure_future(read) for read in reads]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        raise


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Aggregation primitives
# ---------------------------------------------------------------------------

def weighted_overall_score(
    *,
    vitals: int,
    labs: int,
    diagnosis: int,
    hospitalization: int,
    medication: int,
) -> int:
    """Weighted sum of the five component scores, rounded once at the end.

    Computed in decimal so that exact halves (91.5, 65.5) round up the way
    the bands expect rather than drifting on binary float error.
    """
    components = {
        "vitals": vitals,
        "labs": labs,
        "diagnosis": diagnosis,
        "hospitalization": hospitalization,
        "medication": medication,
    }
    total = sum(
        Decimal(str(HEALTH_INDEX_WEIGHTS[name])) * Decimal(str(score))
        for name, score in components.items()
    )
    return int(total.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def categorize(score: float) -> Category:
    """Band an overall score; bands are lower-inclusive and cover [0, 100]."""
    for floor, category in CATEGORY_BANDS:
        if score >= floor:
            return category
    return Category.CRITICAL


def classify_trend(delta: int) -> Trend:
    if delta >= TREND_THRESHOLD:
        return Trend.IMPROVING
    if delta <= -TREND_THRESHOLD:
        return Trend.DETERIORATING
    return Trend.STABLE


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------

class HealthIndexCalculator:
    """Computes the composite health index for a patient.

    Usage::

        calculator = HealthIndexCalculator(RepositoryRecordSource(repository))
        result = await calculator.compute("patient-123")
        result.overall_score, result.category, result.trend
    """

    def __init__(
        self,
        source: ClinicalRecordSource,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._source = source
        self._clock = clock or _utc_now

    async def compute(self, patient_id: str) -> HealthIndexResult:
        """Read the patient's four record histories and compute the index.

        The reads run concurrently. A failure in any read propagates to the
        caller; no partial index is ever produced.
        """
        emr_records, lab_tests, prescriptions, bed_assignments = await _gather_all(
            self._source.get_emr_history(patient_id, limit=EMR_HISTORY_LIMIT),
            self._source.get_lab_history(patient_id, limit=LAB_HISTORY_LIMIT),
            self._source.get_prescription_history(
                patient_id, limit=PRESCRIPTION_HISTORY_LIMIT
            ),
            self._source.get_bed_assignments(patient_id, limit=BED_HISTORY_LIMIT),
        )

        result = self.compute_from_records(
            emr_records=emr_records,
            lab_tests=lab_tests,
            prescriptions=prescriptions,
            bed_assignments=bed_assignments,
        )
        logger.info(
            "Health index for patient %s: %d (%s, trend=%s, delta=%+d)",
            patient_id,
            result.overall_score,
            result.category.value,
            result.trend.value,
            result.trend_delta,
        )
        return result

    def compute_from_records(
        self,
        *,
        emr_records: Sequence[DiagnosisRecord],
        lab_tests: Sequence[LabSnapshot],
        prescriptions: Sequence[PrescriptionRecord],
        bed_assignments: Sequence[BedAssignmentRecord],
    ) -> HealthIndexResult:
        """Pure scoring over already-fetched records."""
        now = as_utc(self._clock())
        emr = sorted(emr_records, key=lambda r: r.created_at, reverse=True)

        latest_vitals = emr[0].vitals if emr else None
        vitals_score, vital_scores = score_vitals(latest_vitals)
        lab_score = score_lab_results(lab_tests)
        medication_score = score_medications(prescriptions, now=now)
        hospitalization_score = score_hospitalization(bed_assignments, now=now)
        diagnosis_score = score_diagnosis(emr)

        logger.debug(
            "Component scores: vitals=%d labs=%d diagnosis=%d hospitalization=%d medication=%d",
            vitals_score,
            lab_score,
            diagnosis_score,
            hospitalization_score,
            medication_score,
        )

        overall = weighted_overall_score(
            vitals=vitals_score,
            labs=lab_score,
            diagnosis=diagnosis_score,
            hospitalization=hospitalization_score,
            medication=medication_score,
        )

        # Trend: rewind only vitals and diagnosis to the newest EMR record
        # older than the lookback; labs, hospitalization and medication
        # stay at their current values.
        # emr is newest-first, so historical_emr[0] is the newest qualifying
        # record; the baseline is deliberately not the oldest one.
        cutoff = now - timedelta(days=TREND_LOOKBACK_DAYS)
        historical_emr = [r for r in emr if r.created_at < cutoff]

        history: list[HistoricalScore] = [HistoricalScore(date=now, score=overall)]
        if historical_emr:
            old_vitals_score, _ = score_vitals(historical_emr[0].vitals)
            historical = weighted_overall_score(
                vitals=old_vitals_score,
                labs=lab_score,
                diagnosis=score_diagnosis(historical_emr),
                hospitalization=hospitalization_score,
                medication=medication_score,
            )
            history.append(HistoricalScore(date=historical_emr[0].created_at, score=historical))
            trend_delta = overall - historical
            trend = classify_trend(trend_delta)
        else:
            trend_delta = 0
            trend = Trend.UNKNOWN

        return HealthIndexResult(
            overall_score=overall,
            trend=trend,
            trend_delta=trend_delta,
            category=categorize(overall),
            breakdown=ScoreBreakdown(
                vitals=tuple(vital_scores),
                vitals_score=vitals_score,
                lab_score=lab_score,
                medication_score=medication_score,
                hospitalization_score=hospitalization_score,
                diagnosis_score=diagnosis_score,
            ),
            data_points=len(emr_records) + len(lab_tests) + len(prescriptions),
            last_updated=now,
            historical_scores=tuple(history),
        )

    async def has_sufficient_data(self, patient_id: str) -> bool:
        """Display gate: true when the patient has a diagnosis record or a lab test.

        Kept separate from :meth:`compute`, which always produces a score.
        """
        emr_records, lab_tests = await _gather_all(
            self._source.get_emr_history(patient_id, limit=1),
            self._source.get_lab_history(patient_id, limit=1),
        )
        return bool(emr_records) or bool(lab_tests)
