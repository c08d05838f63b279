"""Row models for the clinical record store.

Timestamps are ISO 8601 strings in UTC, as written by the repository.
Encrypted columns are already decrypted on these objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class StoredEmrRecord:
    id: str
    patient_id: str
    diagnosis: str | None
    vitals: dict[str, Any] | None
    created_at: str
    symptoms: list[str] = field(default_factory=list)


@dataclass
class StoredLabTest:
    id: str
    patient_id: str
    test_name: str
    status: str  # 'ORDERED' | 'IN_PROGRESS' | 'COMPLETED' | 'CANCELLED'
    results: dict[str, Any] | None
    created_at: str
    completed_at: str | None = None


@dataclass
class StoredPrescription:
    id: str
    patient_id: str
    medication: str | None
    dispensed: bool
    created_at: str
    dispensed_at: str | None = None


@dataclass
class StoredBedAssignment:
    id: str
    patient_id: str
    bed_label: str
    assigned_at: str
    discharged_at: str | None = None
