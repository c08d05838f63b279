"""Clinical record sources: read-only access to a patient's record histories."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from healthindex.domains.clinical.domain_logic.clinical_records import (
    BedAssignmentRecord,
    DiagnosisRecord,
    LabSnapshot,
    PrescriptionRecord,
)


class RecordSourceError(Exception):
    """Raised when a record source cannot complete a read.

    The health index never substitutes defaults for a failed read; this
    error reaches the caller.
    """


@runtime_checkable
class ClinicalRecordSource(Protocol):
    """Patient-keyed record histories, each returned newest first.

    The engine calls these without knowing whether records come from the
    encrypted SQLite store, an EHR integration, or test fixtures.
    """

    async def get_emr_history(self, patient_id: str, limit: int = 20) -> list[DiagnosisRecord]:
        """Diagnosis text plus the vitals blob, ordered by created_at."""
        ...

    async def get_lab_history(self, patient_id: str, limit: int = 20) -> list[LabSnapshot]:
        """Lab tests with status and result map, ordered by created_at."""
        ...

    async def get_prescription_history(
        self, patient_id: str, limit: int = 30
    ) -> list[PrescriptionRecord]:
        """Prescriptions, ordered by created_at."""
        ...

    async def get_bed_assignments(
        self, patient_id: str, limit: int = 10
    ) -> list[BedAssignmentRecord]:
        """Bed admissions, ordered by assigned_at."""
        ...
