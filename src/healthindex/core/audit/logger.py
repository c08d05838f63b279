"""Audit trail for health index reads and clinical record writes.

Rows land in the ``audit_log`` table and never carry PHI: tool arguments
are reduced to a SHA-256 digest of their canonical JSON, and metadata is
limited to derived values such as the computed score and category.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from healthindex.core.storage.database import ClinicalDatabase

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    HEALTH_INDEX_READ = "health_index_read"
    RECORD_WRITE = "record_write"
    DATA_DELETE = "data_delete"


def _hash_input(data: Any) -> str:
    """SHA-256 hash of canonical JSON, or empty string if not serializable."""
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError):
        return ""
    return hashlib.sha256(canonical.encode()).hexdigest()


@dataclass
class AuditEvent:
    action: AuditAction | str
    tool_name: str = ""
    tool_input_hash: str = ""
    duration_ms: float | None = None
    status: str = "success"
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def as_row(self, event_id: str, timestamp: str) -> tuple[Any, ...]:
        return (
            event_id,
            timestamp,
            AuditAction(self.action).value,
            self.tool_name or None,
            self.tool_input_hash or None,
            self.duration_ms,
            self.status,
            self.error_type,
            json.dumps(self.metadata, separators=(",", ":"), default=str)
            if self.metadata
            else None,
        )


class AuditLogger:
    """Writes :class:`AuditEvent` rows and answers simple queries over them.

    A write that fails is logged and dropped: an audit outage must never
    turn a successful clinical read into an error.

    Usage::

        audit = AuditLogger(clinical_db)
        audit.log_tool_call(
            "patient_health_index",
            {"patient_id": "p-1"},
            metadata={"score": 92, "category": "EXCELLENT"},
        )
        audit.summarize(since="2026-03-01T00:00:00+00:00")
    """

    def __init__(self, database: ClinicalDatabase) -> None:
        self._db = database

    def log_event(self, event: AuditEvent) -> str:
        """Insert an event and return its UUID, or ``""`` if the write failed."""
        event_id = str(uuid.uuid4())
        try:
            row = event.as_row(event_id, datetime.now(timezone.utc).isoformat())
            conn = self._db.connection
            conn.execute(
                """INSERT INTO audit_log
                   (id, timestamp, action, tool_name, tool_input_hash,
                    duration_ms, status, error_type, metadata_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                row,
            )
            conn.commit()
        except Exception:
            logger.exception("Audit write for %s dropped", event.tool_name or event.action)
            return ""
        return event_id

    def log_tool_call(
        self,
        tool_name: str,
        tool_input: Any = None,
        *,
        action: AuditAction | str = AuditAction.HEALTH_INDEX_READ,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Record one MCP tool invocation.

        Args:
            tool_name: Name of the MCP tool.
            tool_input: Tool arguments; only their hash is stored.
            action: Audit action category.
            duration_ms: Wall time of the call.
            status: 'success' or 'failure'.
            error_type: Exception class name on failure.
            metadata: Derived, non-PHI values.
        """
        return self.log_event(AuditEvent(
            action=action,
            tool_name=tool_name,
            tool_input_hash=_hash_input(tool_input) if tool_input else "",
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata=metadata or {},
        ))

    def log_data_delete(
        self,
        *,
        tool_name: str = "",
        tool_input: Any = None,
        count: int = 0,
    ) -> str:
        return self.log_tool_call(
            tool_name,
            tool_input,
            action=AuditAction.DATA_DELETE,
            metadata={"records_deleted": count},
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_events(
        self,
        *,
        action: AuditAction | str | None = None,
        tool_name: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Audit rows matching the filters, newest first."""
        where, params = self._filters(action=action, tool_name=tool_name, since=since)
        rows = self._db.connection.execute(
            f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC LIMIT ?",
            [*params, limit],
        ).fetchall()
        return [dict(row) for row in rows]

    def count_events(
        self,
        *,
        action: AuditAction | str | None = None,
        since: str | None = None,
    ) -> int:
        where, params = self._filters(action=action, since=since)
        row = self._db.connection.execute(
            f"SELECT COUNT(*) FROM audit_log{where}", params
        ).fetchone()
        return row[0]

    def summarize(self, *, since: str | None = None) -> dict[str, Any]:
        """Per-action totals and failure counts since ``since`` (ISO 8601)."""
        where, params = self._filters(since=since)
        rows = self._db.connection.execute(
            f"""SELECT action,
                       COUNT(*) AS total,
                       SUM(CASE WHEN status = 'failure' THEN 1 ELSE 0 END) AS failures
                FROM audit_log{where}
                GROUP BY action""",
            params,
        ).fetchall()
        by_action = {a.value: {"total": 0, "failures": 0} for a in AuditAction}
        for row in rows:
            by_action[row["action"]] = {"total": row["total"], "failures": row["failures"]}
        return {
            "total": sum(v["total"] for v in by_action.values()),
            "by_action": by_action,
        }

    @staticmethod
    def _filters(
        *,
        action: AuditAction | str | None = None,
        tool_name: str | None = None,
        since: str | None = None,
    ) -> tuple[str, list[Any]]:
        conditions: list[str] = []
        params: list[Any] = []
        if action:
            conditions.append("action = ?")
            params.append(AuditAction(action).value)
        if tool_name:
            conditions.append("tool_name = ?")
            params.append(tool_name)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)
        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        return where, params
