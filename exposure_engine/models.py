"""
Exposure Compliance Engine - Persistence Models.

============================================================
PURPOSE
============================================================
ORM models for everything the engine reads or writes.

============================================================
MODELS
============================================================
Upstream (owned by the air-monitoring module, read-only here):
1. AirMonitoringJob: Job container; carries the organization
2. Personnel: Workers that can be linked to samples
3. AirSample: Raw air-monitoring sample readings

Owned by the engine:
4. ExposureLimit: Per-org PEL / REL / action level per (profile, analyte)
5. ExposureRecord: One classified exposure per sample and person
6. ExposureClassificationChange: Append-only classification history

============================================================
KEYS
============================================================
- exposure_limits:  UNIQUE (organization_id, profile_key, analyte)
- exposure_records: UNIQUE (organization_id, air_sample_id)
Both are the conflict targets of the atomic upserts.

============================================================
"""

from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storage.models.base import AuditUserMixin, Base, TimestampMixin, utc_now


def new_id() -> str:
    """Generate a text primary key."""
    return str(uuid4())


# ============================================================
# UPSTREAM MODELS
# ============================================================


class AirMonitoringJob(Base, TimestampMixin):
    """
    Air monitoring job.

    Samples reach their organization through the job.
    """

    __tablename__ = "air_monitoring_jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)

    organization_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Owning organization",
    )

    job_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    job_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    samples: Mapped[List["AirSample"]] = relationship(
        "AirSample",
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_air_monitoring_jobs_org", "organization_id"),
    )

    def __repr__(self) -> str:
        return f"AirMonitoringJob(id={self.id}, org={self.organization_id})"


class Personnel(Base, TimestampMixin, AuditUserMixin):
    """
    Worker profile within an organization.

    The name columns are what monitor-worn-by text is matched against.
    """

    __tablename__ = "personnel"

    person_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    company: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    employee_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_personnel_org_active", "organization_id", "active"),
        Index("ix_personnel_org_name", "organization_id", "last_name", "first_name"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"Personnel(person_id={self.person_id}, name={self.full_name!r})"


class AirSample(Base, TimestampMixin):
    """
    Raw air-monitoring sample.

    ============================================================
    IDENTITY FIELDS
    ============================================================
    - person_id: explicit link to a worker; technicians may leave
      it blank, so it is free text without a foreign key
    - monitor_worn_by: free-text name of whoever carried the pump

    ============================================================
    """

    __tablename__ = "air_samples"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)

    job_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("air_monitoring_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )

    person_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    monitor_worn_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    sample_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    sample_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="personal, excursion, area, blank, clearance, other",
    )

    analyte: Mapped[str] = mapped_column(String(100), nullable=False)

    start_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    duration_minutes: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    concentration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    units: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    job: Mapped["AirMonitoringJob"] = relationship("AirMonitoringJob", back_populates="samples")

    __table_args__ = (
        Index("ix_air_samples_job", "job_id"),
        Index("ix_air_samples_person", "person_id"),
    )

    def __repr__(self) -> str:
        return (
            f"AirSample(id={self.id}, job={self.job_id}, "
            f"type={self.sample_type}, analyte={self.analyte})"
        )


# ============================================================
# EXPOSURE LIMIT MODEL
# ============================================================


class ExposureLimit(Base, TimestampMixin):
    """
    Occupational exposure limits for one (organization, profile, analyte).

    Mutable, last write wins; no history is kept for limits.
    """

    __tablename__ = "exposure_limits"

    limit_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)

    profile_key: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Regulatory profile, e.g. osha, cal_osha, niosh",
    )

    analyte: Mapped[str] = mapped_column(String(100), nullable=False)
    units: Mapped[str] = mapped_column(String(30), nullable=False)

    action_level: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    pel: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    rel: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "profile_key", "analyte",
            name="uq_exposure_limits_org_profile_analyte",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"ExposureLimit(org={self.organization_id}, profile={self.profile_key}, "
            f"analyte={self.analyte}, pel={self.pel}, al={self.action_level}, rel={self.rel})"
        )


# ============================================================
# EXPOSURE RECORD MODEL
# ============================================================


class ExposureRecord(Base, TimestampMixin, AuditUserMixin):
    """
    Personnel exposure derived from one air sample.

    ============================================================
    LIFECYCLE
    ============================================================
    - Created and recomputed in place only by the engine
    - At most one row per (organization_id, air_sample_id)
    - Deleted by cascade with its sample, person or job

    ============================================================
    """

    __tablename__ = "exposure_records"

    exposure_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)

    person_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("personnel.person_id", ondelete="CASCADE"),
        nullable=False,
    )

    job_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("air_monitoring_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )

    air_sample_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        ForeignKey("air_samples.id", ondelete="CASCADE"),
        nullable=True,
    )

    sample_run_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    analyte: Mapped[str] = mapped_column(String(100), nullable=False)
    duration_minutes: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    concentration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    units: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    sample_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    task_activity: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ppe_level: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Computation
    twa_8hr: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    profile_key: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    limit_type: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        comment="PEL, REL or ActionLevel",
    )
    limit_value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    percent_of_limit: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    exceedance_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    near_miss_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    computed_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    identity_confidence: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        comment="direct or name_fallback",
    )

    source_refs: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    classification_changes: Mapped[List["ExposureClassificationChange"]] = relationship(
        "ExposureClassificationChange",
        back_populates="record",
        order_by="ExposureClassificationChange.revision",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_exposure_records_person", "organization_id", "person_id", "date"),
        Index("ix_exposure_records_job", "organization_id", "job_id", "date"),
        Index(
            "ux_exposure_records_org_air_sample",
            "organization_id", "air_sample_id",
            unique=True,
        ),
        CheckConstraint(
            "NOT (exceedance_flag AND near_miss_flag)",
            name="ck_exposure_records_single_flag",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"ExposureRecord(id={self.exposure_id}, person={self.person_id}, "
            f"analyte={self.analyte}, twa={self.twa_8hr}, pct={self.percent_of_limit})"
        )


# ============================================================
# CLASSIFICATION HISTORY MODEL
# ============================================================


class ExposureClassificationChange(Base):
    """
    Append-only log of exposure classifications.

    A row is written when a record is first classified and every
    time a recompute changes its TWA, limit, percent or flags. The
    mutable ExposureRecord holds the current state; this table holds
    the evidence of what it used to be.
    """

    __tablename__ = "exposure_classification_changes"

    change_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)

    exposure_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("exposure_records.exposure_id", ondelete="CASCADE"),
        nullable=False,
    )

    air_sample_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    revision: Mapped[int] = mapped_column(Integer, nullable=False)
    computed_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    previous_twa_8hr: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    previous_limit_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    previous_limit_value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    previous_percent_of_limit: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    previous_exceedance_flag: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    previous_near_miss_flag: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    twa_8hr: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    limit_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    limit_value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    percent_of_limit: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    exceedance_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    near_miss_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    changed_by_user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    changed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)

    record: Mapped["ExposureRecord"] = relationship(
        "ExposureRecord",
        back_populates="classification_changes",
    )

    __table_args__ = (
        UniqueConstraint("exposure_id", "revision", name="uq_exposure_changes_exposure_revision"),
        Index("ix_exposure_changes_org_sample", "organization_id", "air_sample_id"),
    )

    def __repr__(self) -> str:
        return (
            f"ExposureClassificationChange(exposure={self.exposure_id}, "
            f"rev={self.revision}, pct={self.previous_percent_of_limit} -> {self.percent_of_limit})"
        )
