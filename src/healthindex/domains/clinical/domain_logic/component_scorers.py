"""Deterministic component scorers: clinical records -> 0-100 domain scores.

Each scorer is a pure function of its records (and ``now`` where a time
window applies). Scores are always integers in [0, 100]. Malformed input
degrades to neutral defaults and never raises.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping

from healthindex.domains.clinical.domain_logic.clinical_records import (
    BedAssignmentRecord,
    DiagnosisRecord,
    LabSnapshot,
    PrescriptionRecord,
)
from healthindex.domains.clinical.domain_logic.index_models import (
    DISCHARGE_WINDOW_DAYS,
    LAB_WARNING_HIGH_FACTOR,
    LAB_WARNING_LOW_FACTOR,
    MEDICATION_STEPS,
    MEDICATION_WINDOW_DAYS,
    SCORE_CURRENTLY_ADMITTED,
    SCORE_DIAGNOSIS_CRITICAL,
    SCORE_DIAGNOSIS_MODERATE,
    SCORE_DIAGNOSIS_UNREMARKABLE,
    SCORE_HEAVY_MEDICATION,
    SCORE_NO_COMPLETED_LABS,
    SCORE_NO_DIAGNOSIS,
    SCORE_NO_LABS,
    SCORE_NO_VITALS,
    SCORE_NOT_HOSPITALIZED,
    SCORE_PREVIOUSLY_HOSPITALIZED,
    SCORE_RECENTLY_DISCHARGED,
    SCORE_UNKNOWN_READING,
    STATUS_SEVERITY,
    RangeScore,
    VitalScore,
    VitalStatus,
)
from healthindex.domains.clinical.domain_logic.reference_tables import (
    REFERENCE,
    ReferenceTables,
    VitalRange,
)
from healthindex.domains.clinical.domain_logic.value_extraction import (
    extract_numeric,
    is_fahrenheit,
    normalize_lab_key,
    parse_blood_pressure,
    resolve_alias,
)


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (not banker's rounding)."""
    return int(math.floor(value + 0.5))


def _fraction(distance: float, width: float) -> float:
    """distance / width, saturating at 1 when the band has no width."""
    return distance / width if width > 0 else 1.0


# ---------------------------------------------------------------------------
# Range scorer
# ---------------------------------------------------------------------------

def score_range(value: float | None, value_range: VitalRange) -> RangeScore:
    """Map a reading onto 0-100 against a normal band nested in a warning band.

    normal:   [min, max]                       -> 100
    warning:  [warning_low, min) | (max, warning_high]
              -> 100 - 30 * depth into the warning band
    critical: beyond the warning band
              -> 70 - 70 * (overshoot / warning bound), capped at 1, floor 0
    unknown:  None                             -> 50

    Scores never increase as the reading moves away from the normal band.
    """
    if value is None:
        return RangeScore(SCORE_UNKNOWN_READING, VitalStatus.UNKNOWN)

    r = value_range
    if r.min <= value <= r.max:
        return RangeScore(100, VitalStatus.NORMAL)

    if r.warning_low <= value < r.min:
        deviation = _fraction(r.min - value, r.min - r.warning_low)
        return RangeScore(round_half_up(100 - deviation * 30), VitalStatus.WARNING)
    if r.max < value <= r.warning_high:
        deviation = _fraction(value - r.max, r.warning_high - r.max)
        return RangeScore(round_half_up(100 - deviation * 30), VitalStatus.WARNING)

    if value < r.warning_low:
        deviation = min(_fraction(r.warning_low - value, r.warning_low), 1.0)
    else:
        deviation = min(_fraction(value - r.warning_high, r.warning_high), 1.0)
    return RangeScore(max(0, round_half_up(70 - deviation * 70)), VitalStatus.CRITICAL)


def worst_status(*statuses: VitalStatus) -> VitalStatus:
    return max(statuses, key=STATUS_SEVERITY.__getitem__)


# ---------------------------------------------------------------------------
# Vitals
# ---------------------------------------------------------------------------

def _unknown_vital(raw: Any, name: str, label: str) -> VitalScore:
    return VitalScore(name, str(raw), SCORE_UNKNOWN_READING, VitalStatus.UNKNOWN, label)


def _score_blood_pressure(raw: Any, tables: ReferenceTables) -> VitalScore:
    definition = tables.vitals["blood_pressure"]
    parsed = parse_blood_pressure(raw)
    if parsed is None:
        return _unknown_vital(raw, definition.name, definition.normal_range)
    systolic, diastolic = parsed
    sys_score = score_range(systolic, tables.vital_ranges["systolic_bp"])
    dia_score = score_range(diastolic, tables.vital_ranges["diastolic_bp"])
    return VitalScore(
        name=definition.name,
        value=raw,
        score=round_half_up((sys_score.score + dia_score.score) / 2),
        status=worst_status(sys_score.status, dia_score.status),
        normal_range=definition.normal_range,
    )


def _score_temperature(raw: Any, tables: ReferenceTables) -> VitalScore:
    definition = tables.vitals["temperature"]
    value = extract_numeric(raw)
    if value is None:
        return _unknown_vital(raw, definition.name, definition.normal_range)
    # Unit heuristic: there is no unit field, so >50 means Fahrenheit
    if is_fahrenheit(value):
        value_range = tables.vital_ranges["temperature_f"]
        label = definition.fahrenheit_normal_range
    else:
        value_range = tables.vital_ranges["temperature_c"]
        label = definition.normal_range
    result = score_range(value, value_range)
    return VitalScore(definition.name, value, result.score, result.status, label)


def _score_simple_vital(kind: str, raw: Any, tables: ReferenceTables) -> VitalScore:
    definition = tables.vitals[kind]
    value = extract_numeric(raw)
    if value is None:
        return _unknown_vital(raw, definition.name, definition.normal_range)
    result = score_range(value, tables.vital_ranges[kind])
    return VitalScore(
        definition.name, value, result.score, result.status, definition.normal_range
    )


def score_vitals(
    vitals: Mapping[str, Any] | None,
    tables: ReferenceTables = REFERENCE,
) -> tuple[int, list[VitalScore]]:
    """Score every vital present on one EMR vitals blob.

    A vital whose key is present but whose value cannot be parsed is kept
    as an ``unknown`` reading worth 50.

    Returns:
        (mean of present vital scores, per-vital detail). With no vital
        present the component score is 75.
    """
    if not isinstance(vitals, Mapping) or not vitals:
        return SCORE_NO_VITALS, []

    scores: list[VitalScore] = []
    for kind, definition in tables.vitals.items():
        raw = resolve_alias(vitals, definition.aliases)
        if raw is None:
            continue
        if kind == "blood_pressure":
            scores.append(_score_blood_pressure(raw, tables))
        elif kind == "temperature":
            scores.append(_score_temperature(raw, tables))
        else:
            scores.append(_score_simple_vital(kind, raw, tables))

    if not scores:
        return SCORE_NO_VITALS, []
    return round_half_up(sum(s.score for s in scores) / len(scores)), scores


# ---------------------------------------------------------------------------
# Labs
# ---------------------------------------------------------------------------

def _lab_range(analyte_key: str, tables: ReferenceTables) -> VitalRange | None:
    for lab in tables.lab_ranges:
        if lab.analyte in analyte_key:
            return VitalRange(
                min=lab.min,
                max=lab.max,
                warning_low=lab.min * LAB_WARNING_LOW_FACTOR,
                warning_high=lab.max * LAB_WARNING_HIGH_FACTOR,
                unit=lab.unit,
            )
    return None


def score_lab_results(
    lab_tests: Iterable[LabSnapshot],
    tables: ReferenceTables = REFERENCE,
) -> int:
    """Average the range scores of every recognised analyte in completed tests.

    80 when there are no tests (or no recognised analytes), 75 when tests
    exist but none is completed with results.
    """
    lab_tests = list(lab_tests)
    if not lab_tests:
        return SCORE_NO_LABS

    completed = [t for t in lab_tests if t.is_completed]
    if not completed:
        return SCORE_NO_COMPLETED_LABS

    scores: list[int] = []
    for test in completed:
        if not isinstance(test.results, Mapping):
            continue
        for key, raw in test.results.items():
            value_range = _lab_range(normalize_lab_key(key), tables)
            if value_range is not None:
                scores.append(score_range(extract_numeric(raw), value_range).score)

    if not scores:
        return SCORE_NO_LABS
    return round_half_up(sum(scores) / len(scores))


# ---------------------------------------------------------------------------
# Medication burden
# ---------------------------------------------------------------------------

def score_medications(
    prescriptions: Iterable[PrescriptionRecord], *, now: datetime
) -> int:
    """Step function on prescriptions written in the last 30 days.

    Dispensed status is ignored; only ``created_at`` matters.
    """
    cutoff = now - timedelta(days=MEDICATION_WINDOW_DAYS)
    active = sum(1 for p in prescriptions if p.created_at >= cutoff)
    for upper_bound, score in MEDICATION_STEPS:
        if active <= upper_bound:
            return score
    return SCORE_HEAVY_MEDICATION


# ---------------------------------------------------------------------------
# Hospitalization
# ---------------------------------------------------------------------------

def score_hospitalization(
    bed_assignments: Iterable[BedAssignmentRecord], *, now: datetime
) -> int:
    bed_assignments = list(bed_assignments)
    if not bed_assignments:
        return SCORE_NOT_HOSPITALIZED

    # An open admission outranks any discharge history
    if any(ba.is_active for ba in bed_assignments):
        return SCORE_CURRENTLY_ADMITTED

    cutoff = now - timedelta(days=DISCHARGE_WINDOW_DAYS)
    if any(ba.discharged_at >= cutoff for ba in bed_assignments):
        return SCORE_RECENTLY_DISCHARGED
    return SCORE_PREVIOUSLY_HOSPITALIZED


# ---------------------------------------------------------------------------
# Diagnosis severity
# ---------------------------------------------------------------------------

def classify_diagnosis(
    diagnosis: str | None, tables: ReferenceTables = REFERENCE
) -> int:
    """Keyword classification of one diagnosis text.

    Plain substring matching, critical list first: "noncritical" matches
    "critical" and "wards" matches "ards".
    """
    text = diagnosis.lower() if isinstance(diagnosis, str) else ""
    if any(keyword in text for keyword in tables.critical_diagnoses):
        return SCORE_DIAGNOSIS_CRITICAL
    if any(keyword in text for keyword in tables.moderate_diagnoses):
        return SCORE_DIAGNOSIS_MODERATE
    return SCORE_DIAGNOSIS_UNREMARKABLE


def score_diagnosis(
    emr_records: list[DiagnosisRecord], tables: ReferenceTables = REFERENCE
) -> int:
    """Classify the most recent diagnosis; 90 when there is none on file."""
    if not emr_records:
        return SCORE_NO_DIAGNOSIS
    return classify_diagnosis(emr_records[0].diagnosis, tables)
