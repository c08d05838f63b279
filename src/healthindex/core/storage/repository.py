"""Clinical record repository: writes and bounded reads over the encrypted store.

The repository mediates between row models (StoredEmrRecord, etc.) and the
SQLite database, using FieldEncryptor to encrypt/decrypt PHI columns.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from healthindex.core.storage.database import ClinicalDatabase
from healthindex.core.storage.encryption import FieldEncryptor
from healthindex.core.storage.models import (
    StoredBedAssignment,
    StoredEmrRecord,
    StoredLabTest,
    StoredPrescription,
)

logger = logging.getLogger(__name__)

LAB_STATUSES = ("ORDERED", "IN_PROGRESS", "COMPLETED", "CANCELLED")

# Fixed table names; safe to interpolate into SQL
_PATIENT_TABLES = ("emr_records", "lab_tests", "prescriptions", "bed_assignments")


class RepositoryError(Exception):
    """Raised when repository operations fail."""


class ClinicalRepository:
    """Record store for EMR entries, lab tests, prescriptions and bed assignments.

    Usage::

        db = ClinicalDatabase(":memory:")
        db.initialize()
        repo = ClinicalRepository(db, FieldEncryptor(key="..."))

        repo.add_emr_record("p-1", diagnosis="annual checkup", vitals={"bp": "120/80"})
        history = repo.get_emr_history("p-1", limit=20)
    """

    def __init__(self, database: ClinicalDatabase, encryptor: FieldEncryptor) -> None:
        self._db = database
        self._enc = encryptor

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _iso(value: datetime | str | None) -> str | None:
        """Normalise a timestamp argument to a UTC ISO 8601 string.

        Raises:
            RepositoryError: If a string argument is not ISO 8601.
        """
        if value is None:
            return None
        if isinstance(value, str):
            try:
                value = datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError as exc:
                raise RepositoryError(f"Invalid ISO 8601 timestamp: {value!r}") from exc
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()

    # ------------------------------------------------------------------
    # EMR records
    # ------------------------------------------------------------------

    def add_emr_record(
        self,
        patient_id: str,
        *,
        diagnosis: str | None,
        vitals: dict[str, Any] | None = None,
        symptoms: list[str] | None = None,
        created_at: datetime | str | None = None,
    ) -> str:
        """Persist one clinical encounter and return its ID."""
        record_id = self._new_id()
        conn = self._db.connection
        conn.execute(
            """INSERT INTO emr_records
               (id, patient_id, diagnosis_enc, vitals_enc, symptoms_enc, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                record_id,
                patient_id,
                self._enc.encrypt(diagnosis),
                self._enc.encrypt(vitals),
                self._enc.encrypt(symptoms or None),
                self._iso(created_at) or self._now_iso(),
            ),
        )
        conn.commit()
        logger.info("Saved EMR record %s", record_id)
        return record_id

    def get_emr_history(self, patient_id: str, *, limit: int = 20) -> list[StoredEmrRecord]:
        """Return the patient's EMR records, newest first."""
        rows = self._db.connection.execute(
            """SELECT * FROM emr_records WHERE patient_id = ?
               ORDER BY created_at DESC LIMIT ?""",
            (patient_id, limit),
        ).fetchall()
        return [
            StoredEmrRecord(
                id=row["id"],
                patient_id=row["patient_id"],
                diagnosis=self._enc.decrypt(row["diagnosis_enc"]),
                vitals=self._enc.decrypt(row["vitals_enc"]),
                symptoms=self._enc.decrypt(row["symptoms_enc"]) or [],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Lab tests
    # ------------------------------------------------------------------

    def add_lab_test(
        self,
        patient_id: str,
        *,
        test_name: str,
        status: str = "ORDERED",
        results: dict[str, Any] | None = None,
        created_at: datetime | str | None = None,
    ) -> str:
        """Persist a lab order (optionally already resulted) and return its ID.

        Raises:
            RepositoryError: If ``status`` is not a known lab status.
        """
        status = status.upper()
        if status not in LAB_STATUSES:
            raise RepositoryError(f"Invalid lab status: {status!r}. Valid: {LAB_STATUSES}")

        test_id = self._new_id()
        created = self._iso(created_at) or self._now_iso()
        conn = self._db.connection
        conn.execute(
            """INSERT INTO lab_tests
               (id, patient_id, test_name, status, results_enc, created_at, completed_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                test_id,
                patient_id,
                test_name,
                status,
                self._enc.encrypt(results),
                created,
                created if status == "COMPLETED" else None,
            ),
        )
        conn.commit()
        logger.info("Saved lab test %s (%s, status=%s)", test_id, test_name, status)
        return test_id

    def complete_lab_test(self, test_id: str, results: dict[str, Any]) -> bool:
        """Attach results to a lab test and mark it COMPLETED.

        Returns:
            True if the test existed and was updated.
        """
        conn = self._db.connection
        cursor = conn.execute(
            """UPDATE lab_tests SET status = 'COMPLETED', results_enc = ?, completed_at = ?
               WHERE id = ?""",
            (self._enc.encrypt(results), self._now_iso(), test_id),
        )
        conn.commit()
        if cursor.rowcount:
            logger.info("Completed lab test %s", test_id)
        return cursor.rowcount > 0

    def get_lab_history(self, patient_id: str, *, limit: int = 20) -> list[StoredLabTest]:
        """Return the patient's lab tests, newest first."""
        rows = self._db.connection.execute(
            """SELECT * FROM lab_tests WHERE patient_id = ?
               ORDER BY created_at DESC LIMIT ?""",
            (patient_id, limit),
        ).fetchall()
        return [
            StoredLabTest(
                id=row["id"],
                patient_id=row["patient_id"],
                test_name=row["test_name"],
                status=row["status"],
                results=self._enc.decrypt(row["results_enc"]),
                created_at=row["created_at"],
                completed_at=row["completed_at"],
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Prescriptions
    # ------------------------------------------------------------------

    def add_prescription(
        self,
        patient_id: str,
        *,
        medication: str | None = None,
        dispensed: bool = False,
        created_at: datetime | str | None = None,
    ) -> str:
        rx_id = self._new_id()
        created = self._iso(created_at) or self._now_iso()
        conn = self._db.connection
        conn.execute(
            """INSERT INTO prescriptions
               (id, patient_id, medication_enc, dispensed, created_at, dispensed_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                rx_id,
                patient_id,
                self._enc.encrypt(medication),
                int(dispensed),
                created,
                created if dispensed else None,
            ),
        )
        conn.commit()
        logger.info("Saved prescription %s (dispensed=%s)", rx_id, dispensed)
        return rx_id

    def mark_dispensed(self, prescription_id: str) -> bool:
        conn = self._db.connection
        cursor = conn.execute(
            "UPDATE prescriptions SET dispensed = 1, dispensed_at = ? WHERE id = ? AND dispensed = 0",
            (self._now_iso(), prescription_id),
        )
        conn.commit()
        return cursor.rowcount > 0

    def get_prescription_history(
        self, patient_id: str, *, limit: int = 30
    ) -> list[StoredPrescription]:
        """Return the patient's prescriptions, newest first."""
        rows = self._db.connection.execute(
            """SELECT * FROM prescriptions WHERE patient_id = ?
               ORDER BY created_at DESC LIMIT ?""",
            (patient_id, limit),
        ).fetchall()
        return [
            StoredPrescription(
                id=row["id"],
                patient_id=row["patient_id"],
                medication=self._enc.decrypt(row["medication_enc"]),
                dispensed=bool(row["dispensed"]),
                created_at=row["created_at"],
                dispensed_at=row["dispensed_at"],
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Bed assignments
    # ------------------------------------------------------------------

    def admit_patient(
        self,
        patient_id: str,
        *,
        bed_label: str = "",
        assigned_at: datetime | str | None = None,
    ) -> str:
        """Open a bed assignment for the patient.

        Raises:
            RepositoryError: If the patient already has an open assignment.
        """
        assigned = self._iso(assigned_at) or self._now_iso()
        assignment_id = self._new_id()
        with self._db.transaction() as conn:
            open_row = conn.execute(
                "SELECT id FROM bed_assignments WHERE patient_id = ? AND discharged_at IS NULL",
                (patient_id,),
            ).fetchone()
            if open_row is not None:
                raise RepositoryError(
                    f"Patient already admitted (assignment {open_row['id']})"
                )
            conn.execute(
                """INSERT INTO bed_assignments (id, patient_id, bed_label, assigned_at)
                   VALUES (?, ?, ?, ?)""",
                (assignment_id, patient_id, bed_label, assigned),
            )
        logger.info("Opened bed assignment %s", assignment_id)
        return assignment_id

    def discharge_patient(
        self,
        assignment_id: str,
        *,
        discharged_at: datetime | str | None = None,
    ) -> bool:
        """Close an open bed assignment.

        Returns:
            True if an open assignment was found and closed.
        """
        conn = self._db.connection
        cursor = conn.execute(
            """UPDATE bed_assignments SET discharged_at = ?
               WHERE id = ? AND discharged_at IS NULL""",
            (self._iso(discharged_at) or self._now_iso(), assignment_id),
        )
        conn.commit()
        if cursor.rowcount:
            logger.info("Closed bed assignment %s", assignment_id)
        return cursor.rowcount > 0

    def get_bed_assignments(
        self, patient_id: str, *, limit: int = 10
    ) -> list[StoredBedAssignment]:
        """Return the patient's bed assignments, most recently assigned first."""
        rows = self._db.connection.execute(
            """SELECT * FROM bed_assignments WHERE patient_id = ?
               ORDER BY assigned_at DESC LIMIT ?""",
            (patient_id, limit),
        ).fetchall()
        return [
            StoredBedAssignment(
                id=row["id"],
                patient_id=row["patient_id"],
                bed_label=row["bed_label"],
                assigned_at=row["assigned_at"],
                discharged_at=row["discharged_at"],
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Counts / deletion
    # ------------------------------------------------------------------

    def count_records(self, patient_id: str) -> dict[str, int]:
        """Per-table record counts for one patient."""
        conn = self._db.connection
        counts: dict[str, int] = {}
        for table in _PATIENT_TABLES:
            row = conn.execute(
                f"SELECT COUNT(*) FROM {table} WHERE patient_id = ?", (patient_id,)
            ).fetchone()
            counts[table] = row[0]
        return counts

    def delete_patient_records(self, patient_id: str) -> int:
        """Delete every record held for a patient.

        Returns:
            Total number of rows deleted.
        """
        total = 0
        with self._db.transaction() as conn:
            for table in _PATIENT_TABLES:
                cursor = conn.execute(f"DELETE FROM {table} WHERE patient_id = ?", (patient_id,))
                total += cursor.rowcount
        logger.warning("Deleted %d records for one patient", total)
        return total
