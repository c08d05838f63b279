"""Reference table loader: vital ranges, lab ranges, diagnosis keywords.

The tables ship as YAML next to the package and are read exactly once, at
import, into frozen structures. Nothing in the engine mutates them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

logger = logging.getLogger(__name__)

_REFERENCE_FILE = (
    Path(__file__).resolve().parent.parent / "reference" / "clinical_reference.v1.yaml"
)


class ReferenceDataError(Exception):
    """Raised when the packaged reference tables are missing or malformed."""


@dataclass(frozen=True)
class VitalRange:
    """Normal band [min, max] inside a warning band [warning_low, warning_high]."""

    min: float
    max: float
    warning_low: float
    warning_high: float
    unit: str = ""


@dataclass(frozen=True)
class VitalDefinition:
    kind: str
    name: str
    aliases: tuple[str, ...]
    normal_range: str
    fahrenheit_normal_range: str = ""


@dataclass(frozen=True)
class LabRange:
    analyte: str
    min: float
    max: float
    unit: str = ""


@dataclass(frozen=True)
class ReferenceTables:
    version: int
    vital_ranges: Mapping[str, VitalRange]
    vitals: Mapping[str, VitalDefinition]
    lab_ranges: tuple[LabRange, ...]
    critical_diagnoses: tuple[str, ...]
    moderate_diagnoses: tuple[str, ...]


def load_reference_tables(path: str | Path = _REFERENCE_FILE) -> ReferenceTables:
    """Parse a reference YAML file into frozen tables.

    Raises:
        ReferenceDataError: If the file is unreadable or a table is malformed.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data: dict[str, Any] = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise ReferenceDataError(f"Cannot read reference tables from {path}: {exc}") from exc

    try:
        vital_ranges = {
            name: VitalRange(
                min=float(r["min"]),
                max=float(r["max"]),
                warning_low=float(r["warning_low"]),
                warning_high=float(r["warning_high"]),
                unit=str(r.get("unit", "")),
            )
            for name, r in data["vital_ranges"].items()
        }
        vitals = {
            v["kind"]: VitalDefinition(
                kind=v["kind"],
                name=v["name"],
                aliases=tuple(v["aliases"]),
                normal_range=v.get("normal_range", ""),
                fahrenheit_normal_range=v.get("fahrenheit_normal_range", ""),
            )
            for v in data["vitals"]
        }
        lab_ranges = tuple(
            LabRange(
                analyte=str(r["analyte"]).lower(),
                min=float(r["min"]),
                max=float(r["max"]),
                unit=str(r.get("unit", "")),
            )
            for r in data["lab_ranges"]
        )
        tables = ReferenceTables(
            version=int(data.get("version", 1)),
            vital_ranges=MappingProxyType(vital_ranges),
            vitals=MappingProxyType(vitals),
            lab_ranges=lab_ranges,
            critical_diagnoses=tuple(str(k).lower() for k in data["critical_diagnoses"]),
            moderate_diagnoses=tuple(str(k).lower() for k in data["moderate_diagnoses"]),
        )
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise ReferenceDataError(f"Malformed reference tables in {path}: {exc}") from exc

    for name, r in tables.vital_ranges.items():
        if not (r.warning_low <= r.min <= r.max <= r.warning_high):
            raise ReferenceDataError(f"Vital range {name!r} is not nested: {r}")

    logger.debug(
        "Loaded reference tables v%d: %d vital ranges, %d lab ranges",
        tables.version,
        len(tables.vital_ranges),
        len(tables.lab_ranges),
    )
    return tables


REFERENCE = load_reference_tables()
