"""Lenient parsing of loosely-typed vitals and lab values.

Every function here returns ``None`` for "unknown" instead of raising.
Downstream scorers treat ``None`` as a neutral reading.
"""

from __future__ import annotations

import math
import re
from typing import Any, Mapping

_NUMERIC_TOKEN = re.compile(r"\d*\.?\d+")
_BLOOD_PRESSURE = re.compile(r"(\d+)\s*/\s*(\d+)")

# Temperatures above this are read as Fahrenheit, otherwise Celsius
FAHRENHEIT_THRESHOLD = 50.0


def _finite(value: Any) -> float | None:
    """float(value), or None when it overflows or is not finite."""
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def extract_numeric(value: Any) -> float | None:
    """Return the leading numeric token of ``value``.

    Numbers pass through; strings like ``"98.6 °F"`` or ``"72 bpm"`` yield
    their first number. Anything else (dicts, booleans, NaN) is unknown.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _finite(value)
    if not isinstance(value, str):
        return None
    match = _NUMERIC_TOKEN.search(value)
    return _finite(match.group()) if match else None


def parse_blood_pressure(value: Any) -> tuple[float, float] | None:
    """Parse ``"120/80"`` (or ``"120 / 80 mmHg"``) into (systolic, diastolic)."""
    if not isinstance(value, str):
        return None
    match = _BLOOD_PRESSURE.search(value)
    if match is None:
        return None
    systolic, diastolic = _finite(match.group(1)), _finite(match.group(2))
    if systolic is None or diastolic is None:
        return None
    return systolic, diastolic


def resolve_alias(blob: Mapping[str, Any], aliases: tuple[str, ...]) -> Any:
    """Return the value under the first alias present in ``blob``.

    Empty strings count as absent; a literal ``0`` is a reading.
    """
    for key in aliases:
        value = blob.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        return value
    return None


def is_fahrenheit(temperature: float) -> bool:
    return temperature > FAHRENHEIT_THRESHOLD


def normalize_lab_key(key: Any) -> str:
    """Lowercase a lab result key and strip spaces and underscores."""
    return re.sub(r"[_\s]", "", str(key).lower())
