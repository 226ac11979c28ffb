"""Shared fixtures for the ransom-cti test suite."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ransom_cti.core.db import get_connection, init_db  # noqa: E402
from ransom_cti.core.models import RawClaim  # noqa: E402


@pytest.fixture
def conn(tmp_path):
    """Fresh SQLite store in a temporary directory."""
    connection = get_connection(tmp_path / "test.db")
    init_db(connection)
    yield connection
    connection.close()


@pytest.fixture
def make_claim():
    """Build RawClaims with sensible defaults."""

    def _make(**overrides) -> RawClaim:
        fields = {
            "group_name": "LockBit",
            "victim_name": "Foo Inc",
            "discovered_raw": "2024-03-01",
        }
        fields.update(overrides)
        return RawClaim(**fields)

    return _make
