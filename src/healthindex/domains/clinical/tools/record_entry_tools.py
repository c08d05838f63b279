"""MCP tools for entering clinical records into the encrypted record store.

These feed the four histories the health index reads: EMR entries
(diagnosis + vitals), lab tests, prescriptions and bed assignments.
Every call is audited, failures included; failures are then re-raised.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from healthindex.core.audit.logger import AuditAction

if TYPE_CHECKING:
    from healthindex.core.audit.logger import AuditLogger
    from healthindex.core.storage.repository import ClinicalRepository

logger = logging.getLogger(__name__)


def register_record_entry_tools(
    mcp: FastMCP,
    repository: ClinicalRepository,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register clinical record entry tools on the MCP server."""

    def _audit(
        tool_name: str,
        tool_input: dict[str, Any],
        start_time: float,
        *,
        action: AuditAction = AuditAction.RECORD_WRITE,
        exc: Exception | None = None,
    ) -> None:
        if audit_logger is None:
            return
        audit_logger.log_tool_call(
            tool_name=tool_name,
            tool_input=tool_input,
            action=action,
            duration_ms=(time.monotonic() - start_time) * 1000,
            status="success" if exc is None else "failure",
            error_type=type(exc).__name__ if exc is not None else None,
        )

    @mcp.tool
    async def record_emr_entry(
        ctx: Context,
        patient_id: str,
        diagnosis: str,
        vitals: dict[str, Any] | None = None,
        symptoms: list[str] | None = None,
        recorded_at: str = "",
    ) -> str:
        """Record a clinical encounter: diagnosis text plus the vitals taken.

        Args:
            patient_id: Patient identifier.
            diagnosis: Free-text diagnosis.
            vitals: Vital signs, e.g. {"bp": "120/80", "pulse": 72, "temp": "98.6 F"}.
            symptoms: Optional list of presenting symptoms.
            recorded_at: ISO 8601 timestamp. Defaults to now.
        """
        start_time = time.monotonic()
        try:
            record_id = repository.add_emr_record(
                patient_id,
                diagnosis=diagnosis,
                vitals=vitals,
                symptoms=symptoms,
                created_at=recorded_at or None,
            )
        except Exception as exc:
            _audit("record_emr_entry", {"patient_id": patient_id}, start_time, exc=exc)
            raise
        _audit(
            "record_emr_entry", {"patient_id": patient_id, "record_id": record_id}, start_time
        )
        return json.dumps({"status": "saved", "record_id": record_id})

    @mcp.tool
    async def order_lab_test(ctx: Context, patient_id: str, test_name: str) -> str:
        """Order a lab test. Results are attached later with record_lab_results.

        Args:
            patient_id: Patient identifier.
            test_name: Name of the panel, e.g. 'Complete Blood Count'.
        """
        start_time = time.monotonic()
        try:
            test_id = repository.add_lab_test(patient_id, test_name=test_name)
        except Exception as exc:
            _audit("order_lab_test", {"patient_id": patient_id}, start_time, exc=exc)
            raise
        _audit("order_lab_test", {"patient_id": patient_id, "test_id": test_id}, start_time)
        return json.dumps({"status": "ordered", "test_id": test_id})

    @mcp.tool
    async def record_lab_results(
        ctx: Context,
        test_id: str,
        results: dict[str, Any],
    ) -> str:
        """Attach results to an ordered lab test and mark it COMPLETED.

        Args:
            test_id: ID returned by order_lab_test.
            results: Analyte -> value, e.g. {"hemoglobin": 13.5, "wbc_count": "7.2 K/uL"}.
        """
        start_time = time.monotonic()
        try:
            completed = repository.complete_lab_test(test_id, results)
        except Exception as exc:
            _audit("record_lab_results", {"test_id": test_id}, start_time, exc=exc)
            raise
        if not completed:
            return json.dumps({"status": "not_found", "test_id": test_id})
        _audit("record_lab_results", {"test_id": test_id}, start_time)
        return json.dumps({"status": "completed", "test_id": test_id})

    @mcp.tool
    async def record_prescription(
        ctx: Context,
        patient_id: str,
        medication: str,
        dispensed: bool = False,
    ) -> str:
        """Record a prescription written for a patient.

        Args:
            patient_id: Patient identifier.
            medication: Drug name and dose.
            dispensed: Whether the pharmacy has already dispensed it.
        """
        start_time = time.monotonic()
        try:
            rx_id = repository.add_prescription(
                patient_id, medication=medication, dispensed=dispensed
            )
        except Exception as exc:
            _audit("record_prescription", {"patient_id": patient_id}, start_time, exc=exc)
            raise
        _audit(
            "record_prescription",
            {"patient_id": patient_id, "prescription_id": rx_id},
            start_time,
        )
        return json.dumps({"status": "saved", "prescription_id": rx_id})

    @mcp.tool
    async def admit_patient(ctx: Context, patient_id: str, bed_label: str = "") -> str:
        """Assign a bed to a patient (opens a hospitalization span).

        Args:
            patient_id: Patient identifier.
            bed_label: Ward/bed label, e.g. 'ICU-4'.
        """
        start_time = time.monotonic()
        try:
            assignment_id = repository.admit_patient(patient_id, bed_label=bed_label)
        except Exception as exc:
            _audit("admit_patient", {"patient_id": patient_id}, start_time, exc=exc)
            raise
        _audit(
            "admit_patient",
            {"patient_id": patient_id, "assignment_id": assignment_id},
            start_time,
        )
        return json.dumps({"status": "admitted", "assignment_id": assignment_id})

    @mcp.tool
    async def discharge_patient(ctx: Context, assignment_id: str) -> str:
        """Discharge a patient from an open bed assignment.

        Args:
            assignment_id: ID returned by admit_patient.
        """
        start_time = time.monotonic()
        try:
            discharged = repository.discharge_patient(assignment_id)
        except Exception as exc:
            _audit("discharge_patient", {"assignment_id": assignment_id}, start_time, exc=exc)
            raise
        if not discharged:
            return json.dumps({"status": "not_found", "assignment_id": assignment_id})
        _audit("discharge_patient", {"assignment_id": assignment_id}, start_time)
        return json.dumps({"status": "discharged", "assignment_id": assignment_id})

    @mcp.tool
    async def delete_patient_records(ctx: Context, patient_id: str, confirm: bool = False) -> str:
        """Delete every clinical record held for a patient. Irreversible.

        Args:
            patient_id: Patient identifier.
            confirm: Must be true to actually delete.
        """
        start_time = time.monotonic()
        try:
            if not confirm:
                counts = repository.count_records(patient_id)
                return json.dumps({
                    "status": "confirmation_required",
                    "records": counts,
                    "message": "Call again with confirm=true to delete these records.",
                })
            deleted = repository.delete_patient_records(patient_id)
        except Exception as exc:
            _audit(
                "delete_patient_records",
                {"patient_id": patient_id},
                start_time,
                action=AuditAction.DATA_DELETE,
                exc=exc,
            )
            raise
        if audit_logger is not None:
            audit_logger.log_data_delete(
                tool_name="delete_patient_records",
                tool_input={"patient_id": patient_id},
                count=deleted,
            )
        return json.dumps({"status": "deleted", "records_deleted": deleted})
