"""
Tests for the database persistence layer.

Tests cover:
- Connection URL resolution
- SQLite foreign key enforcement
- Table initialization and verification
- Transaction scope commit / rollback
"""

import pytest
from sqlalchemy import func, select, text

from database import engine as db
from database.engine import (
    DEFAULT_DATABASE_URL,
    DatabasePersistenceError,
    REQUIRED_TABLES,
    build_engine,
    create_all_tables,
    dispose_engine,
    get_database_url,
    initialize_database,
    transaction_scope,
    verify_required_tables,
)
from exposure_engine.models import AirMonitoringJob

from conftest import ORG_ID


@pytest.fixture
def global_engine(monkeypatch):
    """Process-wide engine pointed at an in-memory database."""
    monkeypatch.setenv("EXPOSURE_DATABASE_URL", "sqlite://")
    dispose_engine()
    create_all_tables()
    yield db.get_engine()
    dispose_engine()


# =============================================================
# TEST: Configuration
# =============================================================

class TestDatabaseUrl:
    """Test connection URL resolution."""

    def test_exposure_url_preferred(self, monkeypatch):
        monkeypatch.setenv("EXPOSURE_DATABASE_URL", "sqlite:///a.db")
        monkeypatch.setenv("DATABASE_URL", "sqlite:///b.db")
        assert get_database_url() == "sqlite:///a.db"

    def test_fallback_url(self, monkeypatch):
        monkeypatch.delenv("EXPOSURE_DATABASE_URL", raising=False)
        monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://u:p@db/exposure")
        assert get_database_url() == "postgresql://u:p@db/exposure"

    def test_default_url(self, monkeypatch):
        monkeypatch.delenv("EXPOSURE_DATABASE_URL", raising=False)
        monkeypatch.delenv("DATABASE_URL", raising=False)
        assert get_database_url() == DEFAULT_DATABASE_URL


# =============================================================
# TEST: Initialization
# =============================================================

class TestInitialization:
    """Test engine setup and table creation."""

    def test_sqlite_foreign_keys_enabled(self):
        engine = build_engine("sqlite://")
        with engine.connect() as conn:
            assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1
        engine.dispose()

    def test_missing_tables_reported(self):
        engine = build_engine("sqlite://")
        assert verify_required_tables(engine) == REQUIRED_TABLES
        engine.dispose()

    def test_initialize_creates_all_tables(self):
        engine = build_engine("sqlite://")
        initialize_database(engine)
        assert verify_required_tables(engine) == []
        engine.dispose()


# =============================================================
# TEST: Transaction Scope
# =============================================================

class TestTransactionScope:
    """Test explicit transaction boundaries."""

    def count_jobs(self):
        with transaction_scope() as session:
            return session.execute(select(func.count()).select_from(AirMonitoringJob)).scalar_one()

    def test_commits_on_success(self, global_engine):
        with transaction_scope() as session:
            session.add(AirMonitoringJob(organization_id=ORG_ID, job_number="J-1"))

        assert self.count_jobs() == 1

    def test_rolls_back_on_error(self, global_engine):
        with pytest.raises(ValueError):
            with transaction_scope() as session:
                session.add(AirMonitoringJob(organization_id=ORG_ID, job_number="J-1"))
                session.flush()
                raise ValueError("abort")

        assert self.count_jobs() == 0

    def test_storage_errors_wrapped(self, global_engine):
        with pytest.raises(DatabasePersistenceError):
            with transaction_scope() as session:
                session.execute(text("SELECT * FROM no_such_table"))
