"""Shared test fixtures for the Clinical Health Index tests."""

from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("DB_PATH", ":memory:")
    monkeypatch.setenv("AUDIT_ENABLED", "true")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))


# Fixed "now" for every time-windowed rule in the engine
NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


# ---------------------------------------------------------------------------
# Record sources
# ---------------------------------------------------------------------------

@pytest.fixture
def record_source():
    """Empty in-memory record source."""
    from healthindex.domains.clinical.connectors.providers import InMemoryRecordSource

    return InMemoryRecordSource()


@pytest.fixture
def calculator(record_source, clock):
    """HealthIndexCalculator over the in-memory source with a fixed clock."""
    from healthindex.domains.clinical.domain_logic.health_index import HealthIndexCalculator

    return HealthIndexCalculator(record_source, clock=clock)


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clinical_db():
    """Create an in-memory ClinicalDatabase for testing."""
    from healthindex.core.storage.database import ClinicalDatabase

    db = ClinicalDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def field_encryptor():
    """Create a FieldEncryptor with a fresh test key."""
    from cryptography.fernet import Fernet

    from healthindex.core.storage.encryption import FieldEncryptor

    return FieldEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def clinical_repository(clinical_db, field_encryptor):
    """Create a ClinicalRepository backed by in-memory SQLite."""
    from healthindex.core.storage.repository import ClinicalRepository

    return ClinicalRepository(clinical_db, field_encryptor)


@pytest.fixture
def audit_logger(clinical_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from healthindex.core.audit.logger import AuditLogger

    return AuditLogger(clinical_db)
