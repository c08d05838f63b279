"""MCP tools for the patient health index.

Each call re-reads the patient's records and recomputes the index; nothing
is cached between calls.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from healthindex.core.audit.logger import AuditLogger
    from healthindex.domains.clinical.domain_logic.health_index import HealthIndexCalculator

logger = logging.getLogger(__name__)


def _require_patient_id(patient_id: str) -> str:
    patient_id = (patient_id or "").strip()
    if not patient_id:
        raise ValueError("Invalid patient ID")
    return patient_id


def register_health_index_tools(
    mcp: FastMCP,
    calculator: HealthIndexCalculator,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register health index tools on the MCP server."""

    @mcp.tool
    async def patient_health_index(ctx: Context, patient_id: str) -> str:
        """Compute the composite health index (0-100) for a patient.

        Returns the overall score, category (EXCELLENT..CRITICAL), trend
        versus the newest record older than 7 days, and a breakdown of the
        vitals, labs, diagnosis, hospitalization and medication scores.

        Args:
            patient_id: Patient identifier.
        """
        start_time = time.monotonic()
        try:
            patient_id = _require_patient_id(patient_id)
            result = await calculator.compute(patient_id)
        except Exception as exc:
            if audit_logger is not None:
                audit_logger.log_tool_call(
                    tool_name="patient_health_index",
                    tool_input={"patient_id": patient_id},
                    duration_ms=(time.monotonic() - start_time) * 1000,
                    status="failure",
                    error_type=type(exc).__name__,
                )
            raise

        if audit_logger is not None:
            audit_logger.log_tool_call(
                tool_name="patient_health_index",
                tool_input={"patient_id": patient_id},
                duration_ms=(time.monotonic() - start_time) * 1000,
                metadata={
                    "score": result.overall_score,
                    "category": result.category.value,
                    "trend": result.trend.value,
                },
            )

        return json.dumps(result.to_dict(), indent=2)

    @mcp.tool
    async def health_index_data_status(ctx: Context, patient_id: str) -> str:
        """Report whether a patient has enough data for the index to be shown.

        The index is always computable; this is the display gate used by
        dashboards (a diagnosis record or a lab test must exist).

        Args:
            patient_id: Patient identifier.
        """
        start_time = time.monotonic()
        try:
            patient_id = _require_patient_id(patient_id)
            sufficient = await calculator.has_sufficient_data(patient_id)
        except Exception as exc:
            if audit_logger is not None:
                audit_logger.log_tool_call(
                    tool_name="health_index_data_status",
                    tool_input={"patient_id": patient_id},
                    duration_ms=(time.monotonic() - start_time) * 1000,
                    status="failure",
                    error_type=type(exc).__name__,
                )
            raise

        if audit_logger is not None:
            audit_logger.log_tool_call(
                tool_name="health_index_data_status",
                tool_input={"patient_id": patient_id},
                duration_ms=(time.monotonic() - start_time) * 1000,
                metadata={"has_sufficient_data": sufficient},
            )
        payload = {"patient_id": patient_id, "has_sufficient_data": sufficient}
        if not sufficient:
            payload["message"] = (
                "Not enough data yet. Record a diagnosis or order a lab test "
                "to enable the health index."
            )
        return json.dumps(payload)
