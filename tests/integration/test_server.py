"""Integration tests for the Clinical Health Index MCP server."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
from fastmcp import Client
from fastmcp.exceptions import ToolError

from healthindex.core.server.app import create_app
from healthindex.domains.clinical.domain_logic.clinical_records import (
    BedAssignmentRecord,
    DiagnosisRecord,
)


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _payload(result) -> dict:
    """Decode the JSON text body of a tool result."""
    return json.loads(result.content[0].text)


READ_TOOLS = ["health_check", "patient_health_index", "health_index_data_status"]
ENTRY_TOOLS = [
    "record_emr_entry",
    "order_lab_test",
    "record_lab_results",
    "record_prescription",
    "admit_patient",
    "discharge_patient",
    "delete_patient_records",
    "audit_summary",
]


@pytest.fixture
def client(record_source):
    """MCP client over a server reading from an in-memory record source."""
    return Client(create_app(record_source_override=record_source))


@pytest.fixture
def storage_client(clinical_repository, audit_logger):
    """MCP client over a server backed by the encrypted record store."""
    mcp = create_app(
        repository_override=clinical_repository,
        audit_logger_override=audit_logger,
    )
    return Client(mcp)


# ---------------------------------------------------------------------------
# Without storage
# ---------------------------------------------------------------------------

def test_server_lists_read_tools_only_without_storage(client):
    async def _check():
        async with client:
            names = {t.name for t in await client.list_tools()}
            assert set(READ_TOOLS) <= names
            assert not names & set(ENTRY_TOOLS)
    _run(_check())


def test_health_check_returns_ok(client):
    async def _check():
        async with client:
            body = _payload(await client.call_tool("health_check", {}))
            assert body["status"] == "ok"
            assert body["storage_enabled"] is False
            assert body["reference_tables_version"] == 1
    _run(_check())


def test_patient_health_index_scores_in_memory_records(client, record_source):
    now = datetime.now(timezone.utc)
    record_source.add_emr(
        "p-1",
        DiagnosisRecord(
            diagnosis="annual checkup",
            vitals={"bp": "120/80", "heartRate": 72, "temperature": "98.6", "spo2": 98},
            created_at=now - timedelta(minutes=5),
        ),
    )

    async def _check():
        async with client:
            body = _payload(
                await client.call_tool("patient_health_index", {"patient_id": "p-1"})
            )
            assert body["overallScore"] == 92
            assert body["category"] == "EXCELLENT"
            assert body["trend"] == "UNKNOWN"
            assert body["dataPoints"] == 1
            assert len(body["breakdown"]["vitals"]) == 4
    _run(_check())


def test_admitted_patient_scores_fair(client, record_source):
    now = datetime.now(timezone.utc)
    record_source.add_emr(
        "p-2", DiagnosisRecord(diagnosis="sepsis", vitals=None, created_at=now - timedelta(hours=1))
    )
    record_source.add_bed_assignments(
        "p-2", BedAssignmentRecord(assigned_at=now - timedelta(days=1))
    )

    async def _check():
        async with client:
            body = _payload(
                await client.call_tool("patient_health_index", {"patient_id": "p-2"})
            )
            assert body["overallScore"] == 66
            assert body["category"] == "FAIR"
    _run(_check())


def test_blank_patient_id_is_rejected(client):
    async def _check():
        async with client:
            with pytest.raises(ToolError, match="Invalid patient ID"):
                await client.call_tool("patient_health_index", {"patient_id": "  "})
    _run(_check())


def test_data_status_gate(client, record_source):
    now = datetime.now(timezone.utc)
    record_source.add_emr("p-3", DiagnosisRecord(diagnosis="asthma", vitals=None, created_at=now))

    async def _check():
        async with client:
            empty = _payload(
                await client.call_tool("health_index_data_status", {"patient_id": "nobody"})
            )
            assert empty["has_sufficient_data"] is False
            assert "message" in empty

            known = _payload(
                await client.call_tool("health_index_data_status", {"patient_id": "p-3"})
            )
            assert known == {"patient_id": "p-3", "has_sufficient_data": True}
    _run(_check())


# ---------------------------------------------------------------------------
# With storage
# ---------------------------------------------------------------------------

def test_entry_tools_registered_with_storage(storage_client):
    async def _check():
        async with storage_client:
            names = {t.name for t in await storage_client.list_tools()}
            assert set(READ_TOOLS + ENTRY_TOOLS) <= names
            body = _payload(await storage_client.call_tool("health_check", {}))
            assert body["storage_enabled"] is True
            assert body["audit_enabled"] is True
    _run(_check())


def test_entered_records_feed_the_index(storage_client, audit_logger):
    async def _check():
        async with storage_client:
            await storage_client.call_tool(
                "record_emr_entry",
                {
                    "patient_id": "p-9",
                    "diagnosis": "Type 2 diabetes",
                    "vitals": {"bp": "120/80", "pulse": 72},
                },
            )
            ordered = _payload(
                await storage_client.call_tool(
                    "order_lab_test", {"patient_id": "p-9", "test_name": "Metabolic panel"}
                )
            )
            completed = _payload(
                await storage_client.call_tool(
                    "record_lab_results",
                    {"test_id": ordered["test_id"], "results": {"glucose": 90}},
                )
            )
            assert completed["status"] == "completed"
            await storage_client.call_tool(
                "record_prescription", {"patient_id": "p-9", "medication": "metformin"}
            )

            body = _payload(
                await storage_client.call_tool("patient_health_index", {"patient_id": "p-9"})
            )
            # 30 + 25 + 12 + 15 + 8.5 = 90.5
            assert body["breakdown"]["labScore"] == 100
            assert body["breakdown"]["diagnosisScore"] == 60
            assert body["breakdown"]["medicationScore"] == 85
            assert body["overallScore"] == 91
            assert body["dataPoints"] == 3
    _run(_check())

    writes = audit_logger.get_events(action="record_write")
    assert {e["tool_name"] for e in writes} == {
        "record_emr_entry",
        "order_lab_test",
        "record_lab_results",
        "record_prescription",
    }
    [read] = audit_logger.get_events(action="health_index_read")
    assert json.loads(read["metadata_json"])["score"] == 91


def test_admit_and_discharge(storage_client):
    async def _check():
        async with storage_client:
            admitted = _payload(
                await storage_client.call_tool(
                    "admit_patient", {"patient_id": "p-4", "bed_label": "ICU-2"}
                )
            )
            body = _payload(
                await storage_client.call_tool("patient_health_index", {"patient_id": "p-4"})
            )
            assert body["breakdown"]["hospitalizationScore"] == 50

            discharged = _payload(
                await storage_client.call_tool(
                    "discharge_patient", {"assignment_id": admitted["assignment_id"]}
                )
            )
            assert discharged["status"] == "discharged"
            body = _payload(
                await storage_client.call_tool("patient_health_index", {"patient_id": "p-4"})
            )
            assert body["breakdown"]["hospitalizationScore"] == 70

            again = _payload(
                await storage_client.call_tool(
                    "discharge_patient", {"assignment_id": admitted["assignment_id"]}
                )
            )
            assert again["status"] == "not_found"
    _run(_check())


def test_delete_requires_confirmation(storage_client, clinical_repository, audit_logger):
    clinical_repository.add_emr_record("p-5", diagnosis="asthma")
    clinical_repository.add_prescription("p-5", medication="salbutamol")

    async def _check():
        async with storage_client:
            preview = _payload(
                await storage_client.call_tool("delete_patient_records", {"patient_id": "p-5"})
            )
            assert preview["status"] == "confirmation_required"
            assert preview["records"]["emr_records"] == 1

            done = _payload(
                await storage_client.call_tool(
                    "delete_patient_records", {"patient_id": "p-5", "confirm": True}
                )
            )
            assert done == {"status": "deleted", "records_deleted": 2}
    _run(_check())

    assert clinical_repository.count_records("p-5")["emr_records"] == 0
    assert audit_logger.count_events(action="data_delete") == 1


def test_failed_read_is_audited_and_raised(storage_client, clinical_db, audit_logger):
    # Closing the store makes every read fail; the audit write then fails too
    # and is swallowed, so only the tool error is observable.
    clinical_db.close()

    async def _check():
        async with storage_client:
            with pytest.raises(ToolError):
                await storage_client.call_tool("patient_health_index", {"patient_id": "p-6"})
    _run(_check())


def test_failed_write_is_audited_and_raised(storage_client, audit_logger):
    async def _check():
        async with storage_client:
            await storage_client.call_tool("admit_patient", {"patient_id": "p-8"})
            with pytest.raises(ToolError, match="already admitted"):
                await storage_client.call_tool("admit_patient", {"patient_id": "p-8"})
            with pytest.raises(ToolError):
                await storage_client.call_tool(
                    "record_emr_entry",
                    {"patient_id": "p-8", "diagnosis": "asthma", "recorded_at": "yesterday"},
                )
    _run(_check())

    events = audit_logger.get_events(action="record_write")
    outcomes = sorted((e["tool_name"], e["status"], e["error_type"]) for e in events)
    assert outcomes == [
        ("admit_patient", "failure", "RepositoryError"),
        ("admit_patient", "success", None),
        ("record_emr_entry", "failure", "RepositoryError"),
    ]


def test_failed_data_status_is_audited(storage_client, audit_logger):
    async def _check():
        async with storage_client:
            with pytest.raises(ToolError, match="Invalid patient ID"):
                await storage_client.call_tool("health_index_data_status", {"patient_id": ""})
    _run(_check())

    [event] = audit_logger.get_events(action="health_index_read")
    assert event["tool_name"] == "health_index_data_status"
    assert event["status"] == "failure"
    assert event["error_type"] == "ValueError"


def test_audit_summary_counts_reads_and_writes(storage_client):
    async def _check():
        async with storage_client:
            await storage_client.call_tool("admit_patient", {"patient_id": "p-7"})
            await storage_client.call_tool("patient_health_index", {"patient_id": "p-7"})
            body = _payload(await storage_client.call_tool("audit_summary", {"days": 1}))
            assert body["total"] == 2
            assert body["by_action"]["record_write"]["total"] == 1
            assert body["by_action"]["health_index_read"]["total"] == 1
            assert "p-7" not in json.dumps(body)
    _run(_check())


# ---------------------------------------------------------------------------
# Storage from environment
# ---------------------------------------------------------------------------

def test_encryption_key_enables_store_and_audit(monkeypatch):
    from healthindex.core.storage.encryption import FieldEncryptor

    monkeypatch.setenv("ENCRYPTION_KEY", FieldEncryptor.generate_key())

    async def _check():
        async with Client(create_app()) as client:
            body = _payload(await client.call_tool("health_check", {}))
            assert body["storage_enabled"] is True
            assert body["audit_enabled"] is True
            names = {t.name for t in await client.list_tools()}
            assert "record_emr_entry" in names
    _run(_check())


def test_invalid_encryption_key_falls_back_to_no_store(monkeypatch):
    monkeypatch.setenv("ENCRYPTION_KEY", "not-a-fernet-key")

    async def _check():
        async with Client(create_app()) as client:
            body = _payload(await client.call_tool("health_check", {}))
            assert body["storage_enabled"] is False
            assert body["audit_enabled"] is False
    _run(_check())
