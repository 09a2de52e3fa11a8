"""Shared pytest fixtures for the test suite."""

import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

import pytest

from vitals.lib.config import Settings
from vitals.lib.config.testing import set_settings
from vitals.lib.db import SqliteStore, close_db
from vitals.lib.db.connection import SCHEMA_TEMPLATES
from vitals.lib.models import DeviceInsert
from vitals.lib.store import MemoryStore


@pytest.fixture(autouse=True)
def configure_caplog(caplog):
    """Ensure caplog captures logs from the vitals namespace."""
    caplog.set_level(logging.DEBUG, logger="vitals")


@pytest.fixture(autouse=True)
def reset_settings():
    """Reset global settings after each test to avoid cross-test pollution."""
    yield
    set_settings(None)


@pytest.fixture(autouse=True)
def test_db(tmp_path):
    """Use a temporary SQLite database for tests.

    This creates a fresh database with the full schema for each test,
    providing isolation while allowing real database operations.
    """
    db_file = tmp_path / "test.sqlite3"

    set_settings(Settings(db_path=str(db_file)))

    # Initialize the schema using sync sqlite3 (simpler for setup)
    sql_dir = Path(__file__).parent.parent / "vitals" / "lib" / "sql"
    conn = sqlite3.connect(str(db_file))
    for name in SCHEMA_TEMPLATES:
        conn.executescript((sql_dir / name).read_text())
    conn.close()

    yield db_file


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture(params=["memory", "sqlite"])
async def store(request):
    """Run a test against both store implementations."""
    if request.param == "memory":
        yield MemoryStore()
    else:
        yield SqliteStore()
        await close_db()


@pytest.fixture
def frozen_time():
    """Return a fixed datetime for deterministic tests."""
    return datetime(2024, 6, 15, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def bed_12():
    """Registration data for a typical bedside device."""
    return DeviceInsert(
        device_id="bed-12",
        name="Bed 12 mattress",
        patient="J. Doe",
        room="ICU-3",
    )
