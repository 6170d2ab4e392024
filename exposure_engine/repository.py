"""
Exposure Compliance Engine - Repositories.

============================================================
PURPOSE
============================================================
Data access for the exposure engine.

============================================================
REPOSITORIES
============================================================
- ExposureLimitRepository: Limit registry (resolve / upsert / list)
- ExposureRecordRepository: Exposure record store and the
  append-only classification history
- AirSampleRepository: Read-only queries over upstream samples
  and personnel used by the identity resolver

============================================================
CONCURRENCY
============================================================
Keyed writes run as one INSERT ... ON CONFLICT DO UPDATE
statement against the table's unique key, so concurrent
upserts of the same key end with exactly one row and the last
writer's values.

============================================================
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, desc, distinct, func, or_, select
from sqlalchemy.orm import Session

from storage.models.base import utc_now
from storage.repositories.base import BaseRepository

from .models import (
    AirMonitoringJob,
    AirSample,
    ExposureClassificationChange,
    ExposureLimit,
    ExposureRecord,
    Personnel,
    new_id,
)
from .schemas import ExposureLimitPayload
from .types import NO_NAME_SENTINELS, PERSONAL_SAMPLE_TYPES, SampleStats


# ============================================================
# LIMIT REGISTRY
# ============================================================


class ExposureLimitRepository(BaseRepository[ExposureLimit]):
    """
    Per-organization exposure limits keyed by (profile, analyte).

    Lookup is exact-match; there is no fallback to a default
    profile. A missing row means "unclassified", not "compliant".
    """

    LIMIT_KEY = ("organization_id", "profile_key", "analyte")
    LIMIT_VALUES = ("units", "action_level", "pel", "rel", "updated_at")

    def __init__(self, session: Session) -> None:
        super().__init__(session, ExposureLimit, "ExposureLimitRepository")

    def resolve_limit(
        self,
        organization_id: str,
        profile_key: Optional[str],
        analyte: Optional[str]
    ) -> Optional[ExposureLimit]:
        """
        Resolve the limit row for one (organization, profile, analyte).

        Returns:
            ExposureLimit, or None when not configured (or when the
            profile or analyte is missing)
        """
        if not profile_key or not analyte:
            return None

        stmt = (
            select(ExposureLimit)
            .where(
                and_(
                    ExposureLimit.organization_id == organization_id,
                    ExposureLimit.profile_key == profile_key,
                    ExposureLimit.analyte == analyte,
                )
            )
            .execution_options(populate_existing=True)
        )
        return self._execute_scalar(stmt, "resolve_limit")

    def upsert_limit(
        self,
        organization_id: str,
        payload: ExposureLimitPayload
    ) -> ExposureLimit:
        """
        Create or replace the limit for the payload's (profile, analyte).

        Last write wins. No history is kept.

        Args:
            organization_id: Owning organization
            payload: Validated limit payload

        Returns:
            The stored ExposureLimit
        """
        now = utc_now()
        values: Dict[str, Any] = {
            "limit_id": new_id(),
            "organization_id": organization_id,
            "profile_key": payload.profile_key,
            "analyte": payload.analyte,
            "units": payload.units,
            "action_level": payload.action_level,
            "pel": payload.pel,
            "rel": payload.rel,
            "created_at": now,
            "updated_at": now,
        }
        self._upsert(values, self.LIMIT_KEY, self.LIMIT_VALUES, "upsert_limit")

        limit = self.resolve_limit(organization_id, payload.profile_key, payload.analyte)
        self._logger.info(
            f"Upserted exposure limit org={organization_id} "
            f"profile={payload.profile_key} analyte={payload.analyte}"
        )
        return limit

    def list_limits(
        self,
        organization_id: str,
        profile_key: Optional[str] = None
    ) -> List[ExposureLimit]:
        """List an organization's limits, optionally for one profile."""
        conditions = [ExposureLimit.organization_id == organization_id]
        if profile_key:
            conditions.append(ExposureLimit.profile_key == profile_key)

        stmt = (
            select(ExposureLimit)
            .where(and_(*conditions))
            .order_by(ExposureLimit.profile_key, ExposureLimit.analyte)
        )
        return self._execute_query(stmt, "list_limits")


# ============================================================
# EXPOSURE RECORD STORE
# ============================================================


class ExposureRecordRepository(BaseRepository[ExposureRecord]):
    """
    Exposure records and their classification history.

    ============================================================
    METHODS
    ============================================================
    - get_record: Lookup by id
    - get_by_air_sample: Idempotence-key lookup
    - upsert_record: Atomic insert-or-recompute by air sample
    - get_records_for_person: Filtered listing, most recent first
    - append_classification_change: History row for a record
    - list_classification_changes: History of one record

    ============================================================
    """

    RECORD_KEY = ("organization_id", "air_sample_id")

    # Never overwritten on the conflict branch
    INSERT_ONLY_COLUMNS = frozenset({
        "exposure_id",
        "organization_id",
        "air_sample_id",
        "created_by_user_id",
        "created_at",
    })

    def __init__(self, session: Session) -> None:
        super().__init__(session, ExposureRecord, "ExposureRecordRepository")

    def get_record(self, exposure_id: str) -> ExposureRecord:
        """
        Get a record by id.

        Raises:
            RecordNotFoundError: If the record does not exist
        """
        return self._get_by_id_or_raise(exposure_id, id_field="exposure_id")

    def get_by_air_sample(
        self,
        organization_id: str,
        air_sample_id: str
    ) -> Optional[ExposureRecord]:
        """Get the record for one sample within an organization."""
        stmt = (
            select(ExposureRecord)
            .where(
                and_(
                    ExposureRecord.organization_id == organization_id,
                    ExposureRecord.air_sample_id == air_sample_id,
                )
            )
            .execution_options(populate_existing=True)
        )
        return self._execute_scalar(stmt, "get_by_air_sample")

    def upsert_record(self, values: Dict[str, Any], user_id: str) -> ExposureRecord:
        """
        Insert a record, or recompute the existing one in place.

        With an air_sample_id the write is one atomic statement keyed
        on (organization_id, air_sample_id). Without one there is no
        idempotence key and a new row is always inserted.

        Args:
            values: Record column values (no audit columns)
            user_id: Acting user, stamped as creator and/or updater

        Returns:
            The stored ExposureRecord
        """
        now = utc_now()
        row = dict(values)
        row.setdefault("exposure_id", new_id())
        row["created_by_user_id"] = user_id
        row["updated_by_user_id"] = user_id
        row["created_at"] = now
        row["updated_at"] = now

        if not row.get("air_sample_id"):
            row["air_sample_id"] = None
            record = self._add(ExposureRecord(**row), "insert_record")
            self._logger.info(f"Inserted exposure record {record.exposure_id} without sample link")
            return record

        update_columns = [column for column in row if column not in self.INSERT_ONLY_COLUMNS]
        self._upsert(row, self.RECORD_KEY, update_columns, "upsert_record")

        record = self.get_by_air_sample(row["organization_id"], row["air_sample_id"])
        self._logger.info(
            f"Upserted exposure record {record.exposure_id} "
            f"for sample {row['air_sample_id']}"
        )
        return record

    def get_records_for_person(
        self,
        organization_id: str,
        person_id: str,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        analyte: Optional[str] = None
    ) -> List[ExposureRecord]:
        """
        List a person's exposure records, most recent first.

        Date bounds are inclusive. Records without a date are only
        returned when no bound is given.
        """
        conditions = [
            ExposureRecord.organization_id == organization_id,
            ExposureRecord.person_id == person_id,
        ]
        if date_from is not None:
            conditions.append(ExposureRecord.date >= date_from)
        if date_to is not None:
            conditions.append(ExposureRecord.date <= date_to)
        if analyte:
            conditions.append(ExposureRecord.analyte == analyte)

        stmt = (
            select(ExposureRecord)
            .where(and_(*conditions))
            .order_by(
                ExposureRecord.date.desc().nulls_last(),
                desc(ExposureRecord.created_at),
            )
        )
        return self._execute_query(stmt, "get_records_for_person")

    def get_records_for_job(self, organization_id: str, job_id: str) -> List[ExposureRecord]:
        """List the exposure records produced from one job."""
        stmt = (
            select(ExposureRecord)
            .where(
                and_(
                    ExposureRecord.organization_id == organization_id,
                    ExposureRecord.job_id == job_id,
                )
            )
            .order_by(ExposureRecord.person_id, ExposureRecord.date)
        )
        return self._execute_query(stmt, "get_records_for_job")

    # --------------------------------------------------------
    # CLASSIFICATION HISTORY
    # --------------------------------------------------------

    def append_classification_change(
        self,
        record: ExposureRecord,
        previous: Optional[Dict[str, Any]],
        user_id: str
    ) -> ExposureClassificationChange:
        """
        Append a history row describing the record's current classification.

        Args:
            record: The record after the upsert
            previous: Classification fields before the upsert, or None
                      for a record classified for the first time
            user_id: Acting user

        Returns:
            Created ExposureClassificationChange
        """
        previous = previous or {}
        stmt = select(func.max(ExposureClassificationChange.revision)).where(
            ExposureClassificationChange.exposure_id == record.exposure_id
        )
        last_revision = self._execute_scalar(stmt, "next_revision") or 0

        change = ExposureClassificationChange(
            organization_id=record.organization_id,
            exposure_id=record.exposure_id,
            air_sample_id=record.air_sample_id,
            revision=last_revision + 1,
            computed_version=record.computed_version,
            previous_twa_8hr=previous.get("twa_8hr"),
            previous_limit_type=previous.get("limit_type"),
            previous_limit_value=previous.get("limit_value"),
            previous_percent_of_limit=previous.get("percent_of_limit"),
            previous_exceedance_flag=previous.get("exceedance_flag"),
            previous_near_miss_flag=previous.get("near_miss_flag"),
            twa_8hr=record.twa_8hr,
            limit_type=record.limit_type,
            limit_value=record.limit_value,
            percent_of_limit=record.percent_of_limit,
            exceedance_flag=record.exceedance_flag,
            near_miss_flag=record.near_miss_flag,
            changed_by_user_id=user_id,
            changed_at=utc_now(),
        )
        return self._add(change, "append_classification_change")

    def list_classification_changes(self, exposure_id: str) -> List[ExposureClassificationChange]:
        """History of one record, oldest revision first."""
        stmt = (
            select(ExposureClassificationChange)
            .where(ExposureClassificationChange.exposure_id == exposure_id)
            .order_by(ExposureClassificationChange.revision)
        )
        return self._execute_query(stmt, "list_classification_changes")


# ============================================================
# UPSTREAM SAMPLE QUERIES
# ============================================================


def _trimmed_person_id():
    return func.trim(AirSample.person_id)


def _is_unlinked():
    """Sample has no usable person reference (NULL or blank)."""
    return or_(AirSample.person_id.is_(None), func.trim(AirSample.person_id) == "")


def _normalized_monitor_name():
    return func.lower(func.trim(AirSample.monitor_worn_by))


def _is_personal_sample():
    return func.lower(func.trim(AirSample.sample_type)).in_(PERSONAL_SAMPLE_TYPES)


class AirSampleRepository(BaseRepository[AirSample]):
    """
    Read-only queries over upstream air samples and personnel.

    The linked / unlinked split is part of every query: a sample
    with a person reference is never returned by a monitor-name
    query, so no sample is counted twice.
    """

    def __init__(self, session: Session) -> None:
        super().__init__(session, AirSample, "AirSampleRepository")

    def _in_org(self, organization_id: str):
        return (
            select(AirSample)
            .join(AirMonitoringJob, AirSample.job_id == AirMonitoringJob.id)
            .where(AirMonitoringJob.organization_id == organization_id)
        )

    def get_sample(self, organization_id: str, air_sample_id: str) -> Optional[AirSample]:
        stmt = self._in_org(organization_id).where(AirSample.id == air_sample_id)
        return self._execute_scalar(stmt, "get_sample")

    def get_samples_for_job(self, organization_id: str, job_id: str) -> List[AirSample]:
        stmt = (
            self._in_org(organization_id)
            .where(AirSample.job_id == job_id)
            .order_by(AirSample.start_time, AirSample.id)
        )
        return self._execute_query(stmt, "get_samples_for_job")

    def get_organization_for_job(self, job_id: str) -> Optional[str]:
        stmt = select(AirMonitoringJob.organization_id).where(AirMonitoringJob.id == job_id)
        return self._execute_scalar(stmt, "get_organization_for_job")

    def get_samples_for_person(self, organization_id: str, person_id: str) -> List[AirSample]:
        """Samples explicitly linked to a person, newest first."""
        person_id = (person_id or "").strip()
        if not person_id:
            return []

        stmt = (
            self._in_org(organization_id)
            .where(_trimmed_person_id() == person_id)
            .order_by(desc(AirSample.start_time))
        )
        return self._execute_query(stmt, "get_samples_for_person")

    def get_samples_for_monitor_name(self, organization_id: str, name: str) -> List[AirSample]:
        """
        Unlinked personal/excursion samples whose monitor name matches.

        Matching is lower(trim(monitor_worn_by)) == lower(trim(name)).
        """
        normalized = (name or "").strip().lower()
        if not normalized or normalized in NO_NAME_SENTINELS:
            return []

        stmt = (
            self._in_org(organization_id)
            .where(
                and_(
                    _is_unlinked(),
                    _normalized_monitor_name() == normalized,
                    _is_personal_sample(),
                )
            )
            .order_by(desc(AirSample.start_time))
        )
        return self._execute_query(stmt, "get_samples_for_monitor_name")

    def get_stats_by_person(self, organization_id: str) -> List[SampleStats]:
        """Sample count, distinct jobs and last sample time per linked person."""
        key = _trimmed_person_id()
        stmt = (
            select(
                key.label("key"),
                func.count(AirSample.id),
                func.count(distinct(AirSample.job_id)),
                func.max(AirSample.start_time),
            )
            .join(AirMonitoringJob, AirSample.job_id == AirMonitoringJob.id)
            .where(
                and_(
                    AirMonitoringJob.organization_id == organization_id,
                    AirSample.person_id.is_not(None),
                    key != "",
                )
            )
            .group_by(key)
            .order_by(key)
        )
        rows = self._execute_rows(stmt, "get_stats_by_person")
        return [
            SampleStats(
                key=row[0],
                sample_count=row[1],
                job_count=row[2],
                last_job_date=row[3],
            )
            for row in rows
        ]

    def get_stats_by_monitor_name(self, organization_id: str) -> List[SampleStats]:
        """
        Same statistics per monitor name over unlinked personal samples.

        Blank names and "n/a" are excluded.
        """
        key = _normalized_monitor_name()
        stmt = (
            select(
                key.label("key"),
                func.count(AirSample.id),
                func.count(distinct(AirSample.job_id)),
                func.max(AirSample.start_time),
                func.min(func.trim(AirSample.monitor_worn_by)),
            )
            .join(AirMonitoringJob, AirSample.job_id == AirMonitoringJob.id)
            .where(
                and_(
                    AirMonitoringJob.organization_id == organization_id,
                    _is_unlinked(),
                    AirSample.monitor_worn_by.is_not(None),
                    key != "",
                    key.not_in(NO_NAME_SENTINELS),
                    _is_personal_sample(),
                )
            )
            .group_by(key)
            .order_by(key)
        )
        rows = self._execute_rows(stmt, "get_stats_by_monitor_name")
        return [
            SampleStats(
                key=row[0],
                sample_count=row[1],
                job_count=row[2],
                last_job_date=row[3],
                display_name=row[4],
            )
            for row in rows
        ]

    # --------------------------------------------------------
    # PERSONNEL
    # --------------------------------------------------------

    def get_person(self, organization_id: str, person_id: str) -> Optional[Personnel]:
        stmt = select(Personnel).where(
            and_(
                Personnel.organization_id == organization_id,
                Personnel.person_id == person_id,
            )
        )
        return self._execute_scalar(stmt, "get_person")

    def list_active_personnel(self, organization_id: str) -> List[Personnel]:
        stmt = (
            select(Personnel)
            .where(
                and_(
                    Personnel.organization_id == organization_id,
                    Personnel.active.is_(True),
                )
            )
            .order_by(Personnel.last_name, Personnel.first_name)
        )
        return self._execute_query(stmt, "list_active_personnel")
