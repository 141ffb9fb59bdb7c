"""
Shared test fixtures for EventReel tests.

Provides:
- Test environment (in-memory SQLite, temporary storage/assets/work dirs)
- Job stores (in-memory and SQL) and a supervisor with a controllable clock
- Local object storage rooted in a temporary directory
"""

import os
import tempfile
from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker

# Set test environment variables before importing eventreel modules
_test_root = Path(tempfile.mkdtemp(prefix="eventreel_test_"))
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-purposes-only-32chars"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["REDIS_URL"] = "redis://localhost:6379/0"
os.environ["STORAGE_PATH"] = str(_test_root / "storage")
os.environ["ASSETS_DIR"] = str(_test_root / "assets")
os.environ["WORK_ROOT"] = str(_test_root / "work")

from eventreel.core.storage import LocalObjectStorage
from eventreel.db import create_all_tables, create_db_engine
from eventreel.jobs.store import InMemoryJobStore, SqlJobStore
from eventreel.jobs.supervisor import JobSupervisor

from .helpers import FakeClock

TEST_SECRET = "unit-test-secret"


# =============================================================================
# Job Store / Supervisor
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def db_engine():
    """Fresh in-memory SQLite database with all tables."""
    engine = create_db_engine("sqlite://")
    create_all_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def sql_store(session_factory) -> SqlJobStore:
    return SqlJobStore(session_factory)


@pytest.fixture
def supervisor(memory_store, clock) -> JobSupervisor:
    return JobSupervisor(memory_store, deadline_seconds=720, clock=clock)


# =============================================================================
# Storage
# =============================================================================


@pytest.fixture
def storage(tmp_path) -> LocalObjectStorage:
    return LocalObjectStorage(
        root=str(tmp_path / "storage"),
        public_base_url="http://testserver",
        secret_key=TEST_SECRET,
        public_buckets=["videos"],
    )
