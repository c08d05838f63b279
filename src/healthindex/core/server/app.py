"""Clinical Health Index MCP server: application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from healthindex.core.audit.logger import AuditLogger
from healthindex.core.config.settings import get_settings
from healthindex.core.storage.database import ClinicalDatabase, DatabaseError
from healthindex.core.storage.encryption import EncryptionError, FieldEncryptor
from healthindex.core.storage.repository import ClinicalRepository
from healthindex.domains.clinical.connectors import ClinicalRecordSource
from healthindex.domains.clinical.connectors.providers import (
    InMemoryRecordSource,
    RepositoryRecordSource,
)
from healthindex.domains.clinical.domain_logic.health_index import HealthIndexCalculator
from healthindex.domains.clinical.domain_logic.reference_tables import REFERENCE
from healthindex.domains.clinical.tools.health_index_tools import (
    register_health_index_tools,
)

logger = logging.getLogger(__name__)

SERVER_NAME = "Clinical Health Index"
SERVER_VERSION = "0.1.0"


def create_app(
    *,
    record_source_override: ClinicalRecordSource | None = None,
    repository_override: ClinicalRepository | None = None,
    audit_logger_override: AuditLogger | None = None,
) -> FastMCP:
    """Create and configure the Clinical Health Index MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Initializes the encrypted clinical record store (if a key is configured)
    3. Chooses the record source the health index reads from
    4. Registers the health index tools, plus record entry tools when
       storage is available
    """
    settings = get_settings()

    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "Computes a composite 0-100 health index per patient from vitals, "
            "lab results, diagnoses, medications and hospitalization status, "
            "with a trend against the patient's prior state."
        ),
    )

    # --- Initialize encrypted storage (clinical record store) ---
    repository: ClinicalRepository | None = None
    database: ClinicalDatabase | None = None
    if repository_override is not None:
        repository = repository_override
    elif settings.encryption_key:
        try:
            encryptor = FieldEncryptor(
                settings.encryption_key,
                previous_keys=settings.previous_encryption_keys,
            )
            database = ClinicalDatabase(settings.db_path)
            database.initialize()
            repository = ClinicalRepository(database, encryptor)
            logger.info(
                "Clinical record store initialized: %s (schema v%d)",
                settings.db_path,
                database.get_schema_version(),
            )
        except (EncryptionError, DatabaseError) as exc:
            logger.error("Failed to initialize storage: %s", exc)
            database = None
            logger.warning("Continuing without persistence; records will not be stored")
    else:
        logger.info(
            "No ENCRYPTION_KEY configured; running without persistence. "
            "Set ENCRYPTION_KEY to enable the clinical record store."
        )

    # --- Audit trail ---
    audit_logger: AuditLogger | None = audit_logger_override
    if audit_logger is None and settings.audit_enabled and database is not None:
        audit_logger = AuditLogger(database)

    # --- Record source for the health index ---
    if record_source_override is not None:
        source: ClinicalRecordSource = record_source_override
    elif repository is not None:
        source = RepositoryRecordSource(repository)
    else:
        source = InMemoryRecordSource()
        logger.warning("No record store available; health index will see empty histories")

    calculator = HealthIndexCalculator(source)

    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "reference_tables_version": REFERENCE.version,
            "storage_enabled": repository is not None,
            "audit_enabled": audit_logger is not None,
        }

    register_health_index_tools(server, calculator, audit_logger)
    logger.info("Health index tools registered")

    if audit_logger is not None:
        from healthindex.domains.clinical.tools.audit_tools import register_audit_tools

        register_audit_tools(server, audit_logger)

    if repository is not None:
        from healthindex.domains.clinical.tools.record_entry_tools import (
            register_record_entry_tools,
        )

        register_record_entry_tools(server, repository, audit_logger)
        logger.info("Record entry tools registered")

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
