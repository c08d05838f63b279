"""Concrete ClinicalRecordSource implementations."""

from __future__ import annotations

from collections import defaultdict

from healthindex.core.storage.models import (
    StoredBedAssignment,
    StoredEmrRecord,
    StoredLabTest,
    StoredPrescription,
)
from healthindex.core.storage.repository import ClinicalRepository
from healthindex.domains.clinical.connectors import RecordSourceError
from healthindex.domains.clinical.domain_logic.clinical_records import (
    BedAssignmentRecord,
    DiagnosisRecord,
    LabSnapshot,
    PrescriptionRecord,
)


def _emr_record(row: StoredEmrRecord) -> DiagnosisRecord:
    return DiagnosisRecord(
        diagnosis=row.diagnosis,
        vitals=row.vitals,
        created_at=row.created_at,
        id=row.id,
    )


def _lab_snapshot(row: StoredLabTest) -> LabSnapshot:
    return LabSnapshot(
        status=row.status,
        results=row.results,
        created_at=row.created_at,
        id=row.id,
        test_name=row.test_name,
    )


def _prescription(row: StoredPrescription) -> PrescriptionRecord:
    return PrescriptionRecord(dispensed=row.dispensed, created_at=row.created_at, id=row.id)


def _bed_assignment(row: StoredBedAssignment) -> BedAssignmentRecord:
    return BedAssignmentRecord(
        assigned_at=row.assigned_at,
        discharged_at=row.discharged_at,
        id=row.id,
    )


class RepositoryRecordSource:
    """ClinicalRecordSource backed by the encrypted clinical record store.

    Any storage or decryption failure is re-raised as
    :class:`RecordSourceError` naming the read that failed.
    """

    def __init__(self, repository: ClinicalRepository) -> None:
        self._repo = repository

    async def get_emr_history(self, patient_id: str, limit: int = 20) -> list[DiagnosisRecord]:
        try:
            rows = self._repo.get_emr_history(patient_id, limit=limit)
            return [_emr_record(r) for r in rows]
        except Exception as exc:
            raise RecordSourceError(f"EMR history read failed: {exc}") from exc

    async def get_lab_history(self, patient_id: str, limit: int = 20) -> list[LabSnapshot]:
        try:
            rows = self._repo.get_lab_history(patient_id, limit=limit)
            return [_lab_snapshot(r) for r in rows]
        except Exception as exc:
            raise RecordSourceError(f"Lab history read failed: {exc}") from exc

    async def get_prescription_history(
        self, patient_id: str, limit: int = 30
    ) -> list[PrescriptionRecord]:
        try:
            rows = self._repo.get_prescription_history(patient_id, limit=limit)
            return [_prescription(r) for r in rows]
        except Exception as exc:
            raise RecordSourceError(f"Prescription history read failed: {exc}") from exc

    async def get_bed_assignments(
        self, patient_id: str, limit: int = 10
    ) -> list[BedAssignmentRecord]:
        try:
            rows = self._repo.get_bed_assignments(patient_id, limit=limit)
            return [_bed_assignment(r) for r in rows]
        except Exception as exc:
            raise RecordSourceError(f"Bed assignment read failed: {exc}") from exc


class InMemoryRecordSource:
    """Holds per-patient record lists in memory.

    Records are returned newest first regardless of insertion order.
    """

    def __init__(self) -> None:
        self._emr: dict[str, list[DiagnosisRecord]] = defaultdict(list)
        self._labs: dict[str, list[LabSnapshot]] = defaultdict(list)
        self._prescriptions: dict[str, list[PrescriptionRecord]] = defaultdict(list)
        self._beds: dict[str, list[BedAssignmentRecord]] = defaultdict(list)

    def add_emr(self, patient_id: str, *records: DiagnosisRecord) -> None:
        self._emr[patient_id].extend(records)

    def add_labs(self, patient_id: str, *records: LabSnapshot) -> None:
        self._labs[patient_id].extend(records)

    def add_prescriptions(self, patient_id: str, *records: PrescriptionRecord) -> None:
        self._prescriptions[patient_id].extend(records)

    def add_bed_assignments(self, patient_id: str, *records: BedAssignmentRecord) -> None:
        self._beds[patient_id].extend(records)

    async def get_emr_history(self, patient_id: str, limit: int = 20) -> list[DiagnosisRecord]:
        records = self._emr.get(patient_id, [])
        return sorted(records, key=lambda r: r.created_at, reverse=True)[:limit]

    async def get_lab_history(self, patient_id: str, limit: int = 20) -> list[LabSnapshot]:
        records = self._labs.get(patient_id, [])
        return sorted(records, key=lambda r: r.created_at, reverse=True)[:limit]

    async def get_prescription_history(
        self, patient_id: str, limit: int = 30
    ) -> list[PrescriptionRecord]:
        records = self._prescriptions.get(patient_id, [])
        return sorted(records, key=lambda r: r.created_at, reverse=True)[:limit]

    async def get_bed_assignments(
        self, patient_id: str, limit: int = 10
    ) -> list[BedAssignmentRecord]:
        records = self._beds.get(patient_id, [])
        return sorted(records, key=lambda r: r.assigned_at, reverse=True)[:limit]
