"""Clinical record types consumed by the health index engine.

Record sources hand these to the engine newest-first. Timestamps are
normalised to timezone-aware UTC on construction so that records coming
from different stores compare safely.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class LabStatus(str, Enum):
    ORDERED = "ORDERED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


def as_utc(value: datetime | str) -> datetime:
    """Coerce an ISO 8601 string or datetime to an aware UTC datetime.

    Naive values are taken to be UTC already.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _as_utc_or_none(value: datetime | str | None) -> datetime | None:
    return None if value is None else as_utc(value)


@dataclass(frozen=True)
class DiagnosisRecord:
    """One EMR entry: free-text diagnosis plus the vitals blob taken with it."""

    diagnosis: str | None
    vitals: dict[str, Any] | None
    created_at: datetime
    id: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "created_at", as_utc(self.created_at))


@dataclass(frozen=True)
class LabSnapshot:
    """A lab test order and, once completed, its analyte -> value map."""

    status: LabStatus | str
    results: dict[str, Any] | None
    created_at: datetime
    id: str = ""
    test_name: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "created_at", as_utc(self.created_at))

    @property
    def is_completed(self) -> bool:
        return self.status == LabStatus.COMPLETED and self.results is not None


@dataclass(frozen=True)
class PrescriptionRecord:
    dispensed: bool
    created_at: datetime
    id: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "created_at", as_utc(self.created_at))


@dataclass(frozen=True)
class BedAssignmentRecord:
    """A hospitalization span; ``discharged_at is None`` means still admitted."""

    assigned_at: datetime
    discharged_at: datetime | None = None
    id: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "assigned_at", as_utc(self.assigned_at))
        object.__setattr__(self, "discharged_at", _as_utc_or_none(self.discharged_at))

    @property
    def is_active(self) -> bool:
        return self.discharged_at is None
