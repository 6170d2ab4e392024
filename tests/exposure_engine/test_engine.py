"""
Tests for the Exposure Compliance Engine orchestrator.

Tests cover:
- Limit payload validation
- Record upsert: classification, idempotence, recompute in place
- Unresolved limits and incomplete lab data
- Classification history
- Job ingestion through the identity resolver
- Person exposure summaries
"""

import json
from datetime import date, datetime

import pytest
from sqlalchemy import func, select

from exposure_engine.config import ExposureEngineConfig, get_most_protective_config
from exposure_engine.engine import ExposureComplianceEngine, ingest_job
from exposure_engine.models import ExposureClassificationChange, ExposureRecord
from exposure_engine.schemas import ExposureLimitResponse
from exposure_engine.types import (
    ExposureEngineError,
    ExposureUpsertParams,
    LimitConfigurationError,
)
from storage.repositories.exceptions import RecordNotFoundError

from conftest import ORG_ID, OTHER_ORG_ID, USER_ID


RECORD_FIELDS = (
    "person_id", "job_id", "air_sample_id", "date", "analyte",
    "duration_minutes", "concentration", "units", "twa_8hr", "profile_key",
    "limit_type", "limit_value", "percent_of_limit", "exceedance_flag",
    "near_miss_flag", "computed_version", "source_refs", "identity_confidence",
)


def count_rows(session, model):
    return session.execute(select(func.count()).select_from(model)).scalar_one()


def snapshot(record):
    return {name: getattr(record, name) for name in RECORD_FIELDS}


@pytest.fixture
def engine(session):
    return ExposureComplianceEngine(session)


@pytest.fixture
def manganese_limit(engine):
    return engine.upsert_limit(ORG_ID, {
        "profile_key": "welder",
        "analyte": "Manganese",
        "units": "mg/m3",
        "pel": 0.1,
    })


@pytest.fixture
def upsert_params(make_job, make_person, make_sample):
    """Params for one linked sample; overrides via keyword arguments."""
    job = make_job()
    person = make_person()
    sample = make_sample(job, person_id=person.person_id)

    def _params(**overrides):
        values = dict(
            organization_id=ORG_ID,
            user_id=USER_ID,
            person_id=person.person_id,
            job_id=job.id,
            analyte="Manganese",
            air_sample_id=sample.id,
            date=datetime(2024, 3, 1, 7, 0),
            duration_minutes=240,
            concentration=0.2,
            units="mg/m3",
            sample_type="personal",
            profile_key="welder",
        )
        values.update(overrides)
        return ExposureUpsertParams(**values)
    return _params


# =============================================================
# TEST: Limit Registry
# =============================================================

class TestLimits:
    """Test limit management through the engine."""

    def test_upsert_from_mapping(self, engine, manganese_limit):
        assert manganese_limit.pel == 0.1
        assert engine.resolve_limit(ORG_ID, "welder", "Manganese").limit_id == manganese_limit.limit_id
        assert len(engine.list_limits(ORG_ID)) == 1

        payload = ExposureLimitResponse.model_validate(manganese_limit).model_dump()
        assert payload["pel"] == 0.1
        assert payload["action_level"] is None

    def test_payload_strings_trimmed(self, engine):
        limit = engine.upsert_limit(ORG_ID, {
            "profile_key": " welder ", "analyte": "Lead ", "units": "ug/m3", "pel": 50,
        })
        assert limit.profile_key == "welder"
        assert limit.analyte == "Lead"

    @pytest.mark.parametrize("payload", [
        {"profile_key": "welder", "analyte": "Lead", "units": "ug/m3", "pel": -1},
        {"profile_key": "welder", "analyte": "Lead"},
        {"profile_key": "", "analyte": "Lead", "units": "ug/m3"},
    ])
    def test_invalid_payload(self, engine, payload):
        with pytest.raises(LimitConfigurationError):
            engine.upsert_limit(ORG_ID, payload)


# =============================================================
# TEST: Exposure Record Store
# =============================================================

class TestUpsertExposure:
    """Test computing and storing one exposure record."""

    def test_classified_record(self, engine, manganese_limit, upsert_params):
        record = engine.upsert_exposure_from_air_sample(upsert_params())

        assert record.twa_8hr == pytest.approx(0.1)
        assert record.limit_type == "PEL"
        assert record.limit_value == 0.1
        assert record.percent_of_limit == pytest.approx(100)
        assert record.exceedance_flag is True
        assert record.near_miss_flag is False
        assert record.computed_version == 1
        assert record.created_by_user_id == USER_ID

    def test_unresolved_limit_still_stored(self, engine, session, upsert_params):
        record = engine.upsert_exposure_from_air_sample(upsert_params())

        assert count_rows(session, ExposureRecord) == 1
        assert record.twa_8hr == pytest.approx(0.1)
        assert record.percent_of_limit is None
        assert record.exceedance_flag is False
        assert record.near_miss_flag is False
        assert record.limit_type is None

    def test_incomplete_lab_data_degrades(self, engine, manganese_limit, upsert_params):
        record = engine.upsert_exposure_from_air_sample(
            upsert_params(date="not a date", duration_minutes="", concentration="ND")
        )

        assert record.date is None
        assert record.duration_minutes is None
        assert record.concentration is None
        assert record.twa_8hr is None
        assert record.percent_of_limit is None
        assert record.exceedance_flag is False
        assert record.near_miss_flag is False

    def test_epoch_millisecond_date(self, engine, upsert_params):
        record = engine.upsert_exposure_from_air_sample(upsert_params(date=1714521600000))
        assert record.date == datetime(2024, 5, 1)

    def test_idempotent(self, engine, session, manganese_limit, upsert_params):
        first = snapshot(engine.upsert_exposure_from_air_sample(upsert_params()))
        second = engine.upsert_exposure_from_air_sample(upsert_params())

        assert count_rows(session, ExposureRecord) == 1
        assert snapshot(second) == first
        assert len(engine.get_classification_history(second.exposure_id)) == 1

    def test_recompute_on_change(self, engine, session, manganese_limit, upsert_params):
        first = engine.upsert_exposure_from_air_sample(upsert_params())
        exposure_id = first.exposure_id

        second = engine.upsert_exposure_from_air_sample(upsert_params(concentration=0.164))

        assert count_rows(session, ExposureRecord) == 1
        assert second.exposure_id == exposure_id
        assert second.twa_8hr == pytest.approx(0.082)
        assert second.percent_of_limit == pytest.approx(82)
        assert second.exceedance_flag is False
        assert second.near_miss_flag is True

        history = engine.get_classification_history(exposure_id)
        assert [change.revision for change in history] == [1, 2]
        assert history[1].previous_exceedance_flag is True
        assert history[1].near_miss_flag is True

    def test_new_limit_reclassifies(self, engine, upsert_params):
        unclassified = engine.upsert_exposure_from_air_sample(upsert_params())
        assert unclassified.percent_of_limit is None

        engine.upsert_limit(ORG_ID, {
            "profile_key": "welder", "analyte": "Manganese", "units": "mg/m3", "pel": 0.2,
        })
        record = engine.upsert_exposure_from_air_sample(upsert_params())

        assert record.percent_of_limit == pytest.approx(50)
        history = engine.get_classification_history(record.exposure_id)
        assert history[-1].previous_percent_of_limit is None

    def test_history_can_be_disabled(self, session, manganese_limit, upsert_params):
        engine = ExposureComplianceEngine(
            session, ExposureEngineConfig(keep_classification_history=False)
        )
        engine.upsert_exposure_from_air_sample(upsert_params())

        assert count_rows(session, ExposureClassificationChange) == 0

    def test_most_protective_config(self, session, upsert_params):
        engine = ExposureComplianceEngine(session, get_most_protective_config())
        engine.upsert_limit(ORG_ID, {
            "profile_key": "welder", "analyte": "Manganese", "units": "mg/m3",
            "pel": 5.0, "rel": 0.2,
        })

        record = engine.upsert_exposure_from_air_sample(upsert_params())

        assert record.limit_type == "REL"
        assert record.percent_of_limit == pytest.approx(50)

    def test_source_refs_serialized(self, engine, upsert_params):
        record = engine.upsert_exposure_from_air_sample(
            upsert_params(source_refs={"lab_report": "LR-7", "page": 2})
        )
        assert json.loads(record.source_refs) == {"lab_report": "LR-7", "page": 2}

        text = engine.upsert_exposure_from_air_sample(upsert_params(source_refs="LR-8"))
        assert text.source_refs == "LR-8"

    def test_get_exposure_record(self, engine, upsert_params):
        record = engine.upsert_exposure_from_air_sample(upsert_params())
        assert engine.get_exposure_record(record.exposure_id) is record

        with pytest.raises(RecordNotFoundError):
            engine.get_exposure_record("missing")

    def test_task_activity_and_ppe_stored(self, engine, upsert_params):
        record = engine.upsert_exposure_from_air_sample(
            upsert_params(task_activity="Stick welding, booth 3", ppe_level="Half-face APR")
        )
        assert record.task_activity == "Stick welding, booth 3"
        assert record.ppe_level == "Half-face APR"

        plain = engine.upsert_exposure_from_air_sample(upsert_params())
        assert plain.task_activity is None
        assert plain.ppe_level is None


# =============================================================
# TEST: Ingestion
# =============================================================

class TestIngestion:
    """Test ingesting samples through identity resolution."""

    def test_ingest_job(self, engine, session, manganese_limit, make_job, make_person, make_sample):
        job = make_job()
        ana = make_person()
        ben = make_person("Ben", "Okafor")

        direct = make_sample(job, person_id=ana.person_id, concentration=0.164)
        by_name = make_sample(job, monitor_worn_by="Okafor, Ben")
        untimed = make_sample(job, person_id=ana.person_id, duration_minutes=0)
        unknown_name = make_sample(job, monitor_worn_by="Carla Reyes")
        area = make_sample(job, monitor_worn_by="Ana Silva", sample_type="area")
        unknown_person = make_sample(job, person_id="ghost")

        report = engine.ingest_job(ORG_ID, job.id, USER_ID, profile_key="welder")

        assert set(report.ingested_sample_ids) == {direct.id, by_name.id, untimed.id}
        assert set(report.skipped_sample_ids) == {unknown_name.id, area.id, unknown_person.id}
        assert report.unclassified_sample_ids == [untimed.id]
        assert report.total == 6

        records = {r.air_sample_id: r for r in engine.get_exposure_records_for_person(ORG_ID, ana.person_id)}
        assert records[direct.id].near_miss_flag is True
        assert records[direct.id].identity_confidence == "direct"

        ben_records = engine.get_exposure_records_for_person(ORG_ID, ben.person_id)
        assert len(ben_records) == 1
        assert ben_records[0].identity_confidence == "name_fallback"
        assert json.loads(ben_records[0].source_refs)["monitor_worn_by"] == "Okafor, Ben"

    def test_reingest_job_is_idempotent(self, session, manganese_limit, make_job, make_person, make_sample):
        job = make_job()
        person = make_person()
        make_sample(job, person_id=person.person_id)
        make_sample(job, monitor_worn_by="Ana Silva")

        ingest_job(session, ORG_ID, job.id, USER_ID, profile_key="welder")
        ingest_job(session, ORG_ID, job.id, USER_ID, profile_key="welder")

        assert count_rows(session, ExposureRecord) == 2
        assert count_rows(session, ExposureClassificationChange) == 2

    def test_records_for_job(self, engine, manganese_limit, make_job, make_person, make_sample):
        job = make_job(job_number="J-1")
        other_job = make_job(job_number="J-2")
        ana = make_person()
        ben = make_person("Ben", "Okafor")
        make_sample(job, person_id=ben.person_id)
        make_sample(job, person_id=ana.person_id)
        make_sample(other_job, person_id=ana.person_id)
        engine.ingest_job(ORG_ID, job.id, USER_ID, profile_key="welder")
        engine.ingest_job(ORG_ID, other_job.id, USER_ID, profile_key="welder")

        records = engine.get_exposure_records_for_job(ORG_ID, job.id)

        assert len(records) == 2
        assert {r.job_id for r in records} == {job.id}
        assert [r.person_id for r in records] == sorted([ana.person_id, ben.person_id])
        assert engine.get_exposure_records_for_job(OTHER_ORG_ID, job.id) == []

    def test_sample_from_other_organization_rejected(self, engine, make_job, make_person, make_sample):
        job = make_job(organization_id=OTHER_ORG_ID)
        person = make_person(organization_id=OTHER_ORG_ID)
        sample = make_sample(job, person_id=person.person_id)

        with pytest.raises(ExposureEngineError):
            engine.ingest_air_sample(sample, ORG_ID, USER_ID, "welder")


# =============================================================
# TEST: Summaries
# =============================================================

class TestPersonExposureSummary:
    """Test the per-person summary response."""

    def test_summary_response(self, engine, manganese_limit, make_job, make_person, make_sample):
        job = make_job()
        person = make_person()
        make_sample(job, person_id=person.person_id, concentration=0.1, start_time=datetime(2024, 3, 1))
        make_sample(job, person_id=person.person_id, concentration=0.3, start_time=datetime(2024, 3, 2))
        make_sample(job, person_id=person.person_id, concentration=None, start_time=datetime(2024, 3, 3))
        engine.ingest_job(ORG_ID, job.id, USER_ID, profile_key="welder")

        response = engine.get_person_exposure_summary(ORG_ID, person.person_id, window="all")

        assert response.window == "all"
        assert [r.date for r in response.records] == [
            datetime(2024, 3, 3),
            datetime(2024, 3, 2),
            datetime(2024, 3, 1),
        ]
        assert len(response.summary) == 1
        row = response.summary[0]
        assert row.analyte == "Manganese"
        assert row.count == 3
        assert row.max_twa == pytest.approx(0.15)
        assert row.avg_twa == pytest.approx(0.1)
        assert row.exceedances == 1
        assert row.near_misses == 0

        payload = response.model_dump()
        assert payload["records"][0]["person_id"] == person.person_id

    def test_window_excludes_old_records(self, engine, make_job, make_person, make_sample):
        job = make_job()
        person = make_person()
        make_sample(job, person_id=person.person_id, start_time=datetime(2001, 1, 1))
        engine.ingest_job(ORG_ID, job.id, USER_ID)

        assert engine.get_person_exposure_summary(ORG_ID, person.person_id, window="12mo").records == []
        assert len(engine.get_person_exposure_summary(ORG_ID, person.person_id, window="all").records) == 1

    def test_date_bounds_accept_strings(self, engine, make_job, make_person, make_sample):
        job = make_job()
        person = make_person()
        make_sample(job, person_id=person.person_id, start_time=datetime(2024, 3, 1, 7, 0))
        make_sample(job, person_id=person.person_id, start_time=datetime(2024, 5, 1, 7, 0))
        engine.ingest_job(ORG_ID, job.id, USER_ID)

        records = engine.get_exposure_records_for_person(
            ORG_ID, person.person_id, date_from="2024-04-01", date_to="2024-06-01"
        )
        assert [r.date for r in records] == [datetime(2024, 5, 1, 7, 0)]

    @pytest.mark.parametrize("day", ["2024-05-01", date(2024, 5, 1)])
    def test_calendar_day_bounds_include_whole_day(self, engine, make_job, make_person, make_sample, day):
        job = make_job()
        person = make_person()
        make_sample(job, person_id=person.person_id, start_time=datetime(2024, 5, 1, 7, 0))
        make_sample(job, person_id=person.person_id, start_time=datetime(2024, 5, 2, 0, 0))
        engine.ingest_job(ORG_ID, job.id, USER_ID)

        records = engine.get_exposure_records_for_person(
            ORG_ID, person.person_id, date_from=day, date_to=day
        )
        assert [r.date for r in records] == [datetime(2024, 5, 1, 7, 0)]
