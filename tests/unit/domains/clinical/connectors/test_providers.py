"""Tests for the repository-backed and in-memory record sources."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from healthindex.domains.clinical.connectors import ClinicalRecordSource, RecordSourceError
from healthindex.domains.clinical.connectors.providers import (
    InMemoryRecordSource,
    RepositoryRecordSource,
)
from healthindex.domains.clinical.domain_logic.clinical_records import (
    BedAssignmentRecord,
    DiagnosisRecord,
    LabStatus,
)

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class TestProtocol:
    def test_both_sources_satisfy_protocol(self, clinical_repository):
        assert isinstance(InMemoryRecordSource(), ClinicalRecordSource)
        assert isinstance(RepositoryRecordSource(clinical_repository), ClinicalRecordSource)


class TestRepositoryRecordSource:
    def test_converts_rows_to_domain_records(self, clinical_repository):
        clinical_repository.add_emr_record(
            "p-1", diagnosis="asthma", vitals={"rr": 22}, created_at=T0
        )
        test_id = clinical_repository.add_lab_test("p-1", test_name="CBC", created_at=T0)
        clinical_repository.complete_lab_test(test_id, {"wbc": 7.1})
        clinical_repository.add_prescription("p-1", medication="salbutamol", created_at=T0)
        clinical_repository.admit_patient("p-1", bed_label="W2-11", assigned_at=T0)

        source = RepositoryRecordSource(clinical_repository)
        [emr] = _run(source.get_emr_history("p-1"))
        [lab] = _run(source.get_lab_history("p-1"))
        [rx] = _run(source.get_prescription_history("p-1"))
        [bed] = _run(source.get_bed_assignments("p-1"))

        assert emr.diagnosis == "asthma"
        assert emr.vitals == {"rr": 22}
        assert emr.created_at == T0
        assert lab.status == LabStatus.COMPLETED
        assert lab.is_completed
        assert lab.test_name == "CBC"
        assert rx.dispensed is False
        assert bed.is_active
        assert bed.assigned_at == T0

    def test_limit_is_passed_through(self, clinical_repository):
        for day in range(5):
            clinical_repository.add_emr_record(
                "p-1", diagnosis=f"visit {day}", created_at=T0 + timedelta(days=day)
            )
        source = RepositoryRecordSource(clinical_repository)
        records = _run(source.get_emr_history("p-1", limit=2))
        assert [r.diagnosis for r in records] == ["visit 4", "visit 3"]

    def test_storage_failure_becomes_record_source_error(self, clinical_repository, clinical_db):
        source = RepositoryRecordSource(clinical_repository)
        clinical_db.close()
        with pytest.raises(RecordSourceError, match="Prescription history read failed"):
            _run(source.get_prescription_history("p-1"))


class TestInMemoryRecordSource:
    def test_unknown_patient_is_empty(self):
        source = InMemoryRecordSource()
        assert _run(source.get_emr_history("nobody")) == []
        assert _run(source.get_bed_assignments("nobody")) == []

    def test_newest_first_and_bounded(self):
        source = InMemoryRecordSource()
        source.add_emr(
            "p-1",
            *[
                DiagnosisRecord(diagnosis=f"visit {d}", vitals=None, created_at=T0 + timedelta(days=d))
                for d in (2, 0, 4, 1, 3)
            ],
        )
        records = _run(source.get_emr_history("p-1", limit=3))
        assert [r.diagnosis for r in records] == ["visit 4", "visit 3", "visit 2"]

    def test_bed_assignments_sorted_by_assignment(self):
        source = InMemoryRecordSource()
        source.add_bed_assignments(
            "p-1",
            BedAssignmentRecord(assigned_at=T0, discharged_at=T0 + timedelta(days=1), id="a"),
            BedAssignmentRecord(assigned_at=T0 + timedelta(days=5), id="b"),
        )
        assert [b.id for b in _run(source.get_bed_assignments("p-1"))] == ["b", "a"]
