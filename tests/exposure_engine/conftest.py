"""
Shared fixtures for the exposure engine tests.

Every test gets a fresh in-memory SQLite database with foreign
keys enforced, plus small factories for upstream rows.
"""

from datetime import datetime

import pytest
from sqlalchemy.orm import Session

from database.engine import build_engine
from storage.models.base import Base
from exposure_engine.models import AirMonitoringJob, AirSample, Personnel


ORG_ID = "org-1"
OTHER_ORG_ID = "org-2"
USER_ID = "user-1"


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with all tables created."""
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(db_engine):
    """Session bound to the in-memory database."""
    session = Session(db_engine)
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def make_job(session):
    """Factory for air monitoring jobs."""
    def _make(organization_id=ORG_ID, job_number="J-100", start_date=None):
        job = AirMonitoringJob(
            organization_id=organization_id,
            job_number=job_number,
            job_name=f"Job {job_number}",
            start_date=start_date or datetime(2024, 3, 1),
        )
        session.add(job)
        session.flush()
        return job
    return _make


@pytest.fixture
def make_person(session):
    """Factory for personnel."""
    def _make(first_name="Ana", last_name="Silva", organization_id=ORG_ID, active=True):
        person = Personnel(
            organization_id=organization_id,
            first_name=first_name,
            last_name=last_name,
            active=active,
        )
        session.add(person)
        session.flush()
        return person
    return _make


@pytest.fixture
def make_sample(session):
    """Factory for air samples."""
    def _make(
        job,
        person_id=None,
        monitor_worn_by=None,
        sample_type="personal",
        analyte="Manganese",
        start_time=None,
        duration_minutes=240,
        concentration=0.2,
        units="mg/m3",
        sample_number=None,
    ):
        sample = AirSample(
            job_id=job.id,
            person_id=person_id,
            monitor_worn_by=monitor_worn_by,
            sample_type=sample_type,
            analyte=analyte,
            start_time=start_time or datetime(2024, 3, 1, 7, 0),
            duration_minutes=duration_minutes,
            concentration=concentration,
            units=units,
            method="NIOSH 7300",
            sample_number=sample_number,
        )
        session.add(sample)
        session.flush()
        return sample
    return _make
