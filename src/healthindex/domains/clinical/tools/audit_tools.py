"""MCP tool for reviewing the audit trail.

The trail holds hashed tool inputs and derived values only, so this tool
can be exposed to operators who are not cleared to see patient records.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from healthindex.core.audit.logger import AuditLogger


def register_audit_tools(mcp: FastMCP, audit_logger: AuditLogger) -> None:
    """Register audit trail tools on the MCP server."""

    @mcp.tool
    async def audit_summary(ctx: Context, days: int = 7, recent: int = 20) -> str:
        """Summarize health index reads, record writes and deletions.

        Args:
            days: Number of days to look back (default: 7).
            recent: How many of the latest events to list (default: 20).
        """
        if days < 1:
            raise ValueError("days must be at least 1")
        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()

        summary = audit_logger.summarize(since=since)
        events = [
            {
                "timestamp": e["timestamp"],
                "action": e["action"],
                "tool_name": e["tool_name"],
                "status": e["status"],
                "error_type": e["error_type"],
                "duration_ms": e["duration_ms"],
            }
            for e in audit_logger.get_events(since=since, limit=recent)
        ]
        return json.dumps({
            "status": "ok",
            "period_days": days,
            **summary,
            "recent_events": events,
        }, indent=2)
