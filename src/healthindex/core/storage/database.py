"""SQLite storage for the clinical record store.

Schema changes are an ordered list of DDL scripts; opening a database
applies every script newer than the recorded version.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_V1 = """
-- One row per clinical encounter (diagnosis + vitals taken at the visit)
CREATE TABLE IF NOT EXISTS emr_records (
    id            TEXT PRIMARY KEY,
    patient_id    TEXT NOT NULL,
    diagnosis_enc TEXT,
    vitals_enc    TEXT,
    symptoms_enc  TEXT,
    created_at    TEXT NOT NULL
);

-- Lab orders; results blob is filled in on completion
CREATE TABLE IF NOT EXISTS lab_tests (
    id           TEXT PRIMARY KEY,
    patient_id   TEXT NOT NULL,
    test_name    TEXT NOT NULL,
    status       TEXT NOT NULL DEFAULT 'ORDERED',
    results_enc  TEXT,
    created_at   TEXT NOT NULL,
    completed_at TEXT
);

CREATE TABLE IF NOT EXISTS prescriptions (
    id             TEXT PRIMARY KEY,
    patient_id     TEXT NOT NULL,
    medication_enc TEXT,
    dispensed      INTEGER NOT NULL DEFAULT 0,
    created_at     TEXT NOT NULL,
    dispensed_at   TEXT
);

CREATE TABLE IF NOT EXISTS bed_assignments (
    id            TEXT PRIMARY KEY,
    patient_id    TEXT NOT NULL,
    bed_label     TEXT NOT NULL DEFAULT '',
    assigned_at   TEXT NOT NULL,
    discharged_at TEXT
);

-- Every read is patient-keyed and newest first
CREATE INDEX IF NOT EXISTS idx_emr_patient_ts    ON emr_records(patient_id, created_at);
CREATE INDEX IF NOT EXISTS idx_labs_patient_ts   ON lab_tests(patient_id, created_at);
CREATE INDEX IF NOT EXISTS idx_rx_patient_ts     ON prescriptions(patient_id, created_at);
CREATE INDEX IF NOT EXISTS idx_beds_patient_ts   ON bed_assignments(patient_id, assigned_at);
"""

# ---------------------------------------------------------------------------
# V2: Audit log table (PHI-free access logging)
# ---------------------------------------------------------------------------

_SCHEMA_V2 = """
CREATE TABLE IF NOT EXISTS audit_log (
    id              TEXT PRIMARY KEY,
    timestamp       TEXT NOT NULL DEFAULT (datetime('now')),
    action          TEXT NOT NULL,
    tool_name       TEXT,
    tool_input_hash TEXT,
    duration_ms     REAL,
    status          TEXT NOT NULL DEFAULT 'success',
    error_type      TEXT,
    metadata_json   TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_action    ON audit_log(action);
CREATE INDEX IF NOT EXISTS idx_audit_tool      ON audit_log(tool_name);
"""


_MIGRATIONS: tuple[tuple[int, str, str], ...] = (
    (1, _SCHEMA_V1, "clinical record tables"),
    (2, _SCHEMA_V2, "audit_log table"),
)

SCHEMA_VERSION = _MIGRATIONS[-1][0]


class DatabaseError(Exception):
    """Raised when the store is used before initialize() or a migration fails."""


class ClinicalDatabase:
    """Owns the SQLite connection for the clinical record store.

    ``db_path`` may be a file path (``~`` is expanded, parent directories are
    created) or ``":memory:"``.

    Usage::

        with ClinicalDatabase("~/.healthindex/records.db") as db:
            repo = ClinicalRepository(db, encryptor)
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise DatabaseError("Database not initialized. Call initialize() first.")
        return self._conn

    def initialize(self) -> None:
        """Open the connection and migrate to SCHEMA_VERSION. Idempotent."""
        if self._conn is not None:
            return

        target = self._db_path
        if target != ":memory:":
            db_file = Path(target).expanduser()
            db_file.parent.mkdir(parents=True, exist_ok=True)
            target = str(db_file)

        # The MCP server may run tool handlers on worker threads
        conn = sqlite3.connect(target, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        self._conn = conn

        self._migrate()
        logger.info("Clinical database ready: %s (schema v%d)", self._db_path, SCHEMA_VERSION)

    def _migrate(self) -> None:
        conn = self.connection
        conn.execute(
            """CREATE TABLE IF NOT EXISTS schema_version (
                   version    INTEGER NOT NULL,
                   applied_at TEXT NOT NULL DEFAULT (datetime('now'))
               )"""
        )
        current = self.get_schema_version()
        for version, ddl, description in _MIGRATIONS:
            if version <= current:
                continue
            try:
                conn.executescript(ddl)
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise DatabaseError(f"Schema migration V{version} failed: {exc}") from exc
            logger.info("Applied schema migration V%d: %s", version, description)

    def get_schema_version(self) -> int:
        row = self.connection.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] if row[0] is not None else 0

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back if the block raises."""
        conn = self.connection
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        conn.commit()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Clinical database closed")

    def __enter__(self) -> ClinicalDatabase:
        self.initialize()
        return self

    def __exit__(self, *args) -> None:
        self.close()
