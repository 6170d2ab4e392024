"""
Exposure Compliance Engine - Main Orchestrator.

============================================================
PURPOSE
============================================================
The ExposureComplianceEngine is the main entry point for turning
air samples into classified exposure records.

It orchestrates:
1. Identity resolution (sample -> person)
2. 8-hour TWA computation
3. Limit registry lookup
4. Classification against the resolved limit
5. Atomic upsert of the exposure record
6. Classification history
7. Per-person summaries on read

============================================================
DESIGN PRINCIPLES
============================================================
- Orchestration only; computation lives in twa / classifier
- Incomplete lab data degrades to "unclassified", never raises
- Storage failures propagate to the caller, no retries
- The session is injected; the caller owns the transaction

============================================================
USAGE
============================================================
    from database import transaction_scope
    from exposure_engine import ExposureComplianceEngine

    with transaction_scope() as session:
        engine = ExposureComplianceEngine(session)

        engine.upsert_limit("org-1", {
            "profile_key": "welder",
            "analyte": "Manganese",
            "units": "mg/m3",
            "pel": 0.1,
        })

        report = engine.ingest_job("org-1", job_id, user_id, profile_key="welder")
        print(f"Ingested {len(report.ingested_sample_ids)} samples")

============================================================
"""

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError
from sqlalchemy.orm import Session

from .classifier import ExposureClassifier
from .config import ExposureEngineConfig, get_default_config
from .identity import IdentityResolver
from .models import AirSample, ExposureLimit, ExposureRecord
from .normalization import coerce_float, normalize_date
from .repository import (
    AirSampleRepository,
    ExposureLimitRepository,
    ExposureRecordRepository,
)
from .schemas import ExposureLimitPayload, PersonExposureResponse
from .summary import SummaryAggregator, summarize
from .twa import compute_twa_8hr
from .types import (
    CandidateMatch,
    ClassificationResult,
    ExposureEngineError,
    ExposureUpsertParams,
    ExposureWindow,
    IngestionReport,
    LimitConfigurationError,
    MatchConfidence,
    PersonExposureSummaryRow,
    PersonLinkSuggestion,
    SampleStats,
)

logger = logging.getLogger(__name__)


# Record fields that make up a classification; a change to any of
# them is written to the history table
CLASSIFICATION_FIELDS = (
    "twa_8hr",
    "limit_type",
    "limit_value",
    "percent_of_limit",
    "exceedance_flag",
    "near_miss_flag",
)


def classification_snapshot(record: Optional[ExposureRecord]) -> Optional[Dict[str, Any]]:
    """Classification fields of a record, or None for no record."""
    if record is None:
        return None
    return {name: getattr(record, name) for name in CLASSIFICATION_FIELDS}


def serialize_source_refs(source_refs: Any) -> Optional[str]:
    """Store free-form source references as text."""
    if source_refs is None:
        return None
    if isinstance(source_refs, str):
        return source_refs
    return json.dumps(source_refs, default=str, sort_keys=True)


class ExposureComplianceEngine:
    """
    Main orchestrator for the Exposure Compliance Engine.

    ============================================================
    RESPONSIBILITIES
    ============================================================
    1. Manage exposure limits (upsert / resolve / list)
    2. Compute and classify exposures from air samples
    3. Upsert exposure records idempotently per air sample
    4. Resolve samples to people and ingest whole jobs
    5. Serve per-person records and summaries

    ============================================================
    """

    def __init__(
        self,
        session: Session,
        config: Optional[ExposureEngineConfig] = None
    ):
        """
        Initialize the engine.

        Args:
            session: SQLAlchemy session; the caller commits
            config: Engine configuration (uses defaults if not provided)
        """
        self._session = session
        self._config = config or get_default_config()
        self._classifier = ExposureClassifier(self._config.classifier)

        self._limits = ExposureLimitRepository(session)
        self._records = ExposureRecordRepository(session)
        self._samples = AirSampleRepository(session)
        self._resolver = IdentityResolver(session)
        self._aggregator = SummaryAggregator(session)

    # --------------------------------------------------------
    # LIMIT REGISTRY
    # --------------------------------------------------------

    def upsert_limit(
        self,
        organization_id: str,
        payload: Union[ExposureLimitPayload, Mapping[str, Any]]
    ) -> ExposureLimit:
        """
        Create or replace an exposure limit.

        Args:
            organization_id: Owning organization
            payload: ExposureLimitPayload or a mapping with the same keys

        Returns:
            The stored ExposureLimit

        Raises:
            LimitConfigurationError: If the payload is invalid
        """
        if not isinstance(payload, ExposureLimitPayload):
            try:
                payload = ExposureLimitPayload.model_validate(payload)
            except ValidationError as e:
                raise LimitConfigurationError(f"Invalid exposure limit payload: {e}") from e

        return self._limits.upsert_limit(organization_id, payload)

    def resolve_limit(
        self,
        organization_id: str,
        profile_key: Optional[str],
        analyte: Optional[str]
    ) -> Optional[ExposureLimit]:
        return self._limits.resolve_limit(organization_id, profile_key, analyte)

    def list_limits(
        self,
        organization_id: str,
        profile_key: Optional[str] = None
    ) -> List[ExposureLimit]:
        return self._limits.list_limits(organization_id, profile_key)

    # --------------------------------------------------------
    # COMPUTATION
    # --------------------------------------------------------

    def compute_twa_8hr(self, concentration: Any, duration_minutes: Any) -> Optional[float]:
        return compute_twa_8hr(concentration, duration_minutes, self._config.shift_minutes)

    def classify(
        self,
        twa: Any,
        limit: Any,
        profile_key: Optional[str] = None
    ) -> ClassificationResult:
        return self._classifier.classify(twa, limit, profile_key=profile_key)

    # --------------------------------------------------------
    # EXPOSURE RECORD STORE
    # --------------------------------------------------------

    def upsert_exposure_from_air_sample(self, params: ExposureUpsertParams) -> ExposureRecord:
        """
        Compute, classify and store the exposure record for one sample.

        Re-running with the same air_sample_id updates the same row;
        changed inputs recompute TWA and classification in place.

        Args:
            params: Sample-derived values plus organization/user ids

        Returns:
            The stored ExposureRecord

        Raises:
            RepositoryException: On storage failures
        """
        previous = None
        if params.air_sample_id:
            previous = classification_snapshot(
                self._records.get_by_air_sample(params.organization_id, params.air_sample_id)
            )

        duration = coerce_float(params.duration_minutes)
        concentration = coerce_float(params.concentration)
        twa = self.compute_twa_8hr(concentration, duration)

        limit = self._limits.resolve_limit(
            params.organization_id, params.profile_key, params.analyte
        )
        result = self._classifier.classify(twa, limit, profile_key=params.profile_key)

        if limit is None:
            logger.debug(
                f"No limit for org={params.organization_id} profile={params.profile_key} "
                f"analyte={params.analyte}, storing unclassified"
            )

        confidence = params.identity_confidence
        if isinstance(confidence, MatchConfidence):
            confidence = confidence.value

        values = {
            "organization_id": params.organization_id,
            "person_id": params.person_id,
            "job_id": params.job_id,
            "air_sample_id": params.air_sample_id or None,
            "sample_run_id": params.sample_run_id,
            "date": normalize_date(params.date),
            "analyte": params.analyte,
            "duration_minutes": duration,
            "concentration": concentration,
            "units": params.units,
            "method": params.method,
            "sample_type": params.sample_type,
            "task_activity": params.task_activity,
            "ppe_level": params.ppe_level,
            "twa_8hr": twa,
            "profile_key": params.profile_key,
            "limit_type": result.limit_type.value if result.limit_type else None,
            "limit_value": result.limit_value,
            "percent_of_limit": result.percent_of_limit,
            "exceedance_flag": result.exceedance_flag,
            "near_miss_flag": result.near_miss_flag,
            "computed_version": params.computed_version or 1,
            "identity_confidence": confidence,
            "source_refs": serialize_source_refs(params.source_refs),
        }

        record = self._records.upsert_record(values, params.user_id)

        if self._config.keep_classification_history:
            current = classification_snapshot(record)
            if previous is None or previous != current:
                self._records.append_classification_change(record, previous, params.user_id)
                if previous is not None:
                    logger.info(
                        f"Exposure record {record.exposure_id} reclassified: "
                        f"{previous['percent_of_limit']} -> {current['percent_of_limit']} % of limit"
                    )

        return record

    def get_exposure_record(self, exposure_id: str) -> ExposureRecord:
        """
        Get one exposure record.

        Raises:
            RecordNotFoundError: If the record does not exist
        """
        return self._records.get_record(exposure_id)

    def get_classification_history(self, exposure_id: str):
        """Classification changes of one record, oldest first."""
        return self._records.list_classification_changes(exposure_id)

    def get_exposure_records_for_job(self, organization_id: str, job_id: str) -> List[ExposureRecord]:
        """Exposure records produced from one monitoring job, grouped by person."""
        return self._records.get_records_for_job(organization_id, job_id)

    # --------------------------------------------------------
    # INGESTION
    # --------------------------------------------------------

    def ingest_air_sample(
        self,
        sample: AirSample,
        organization_id: str,
        user_id: str,
        profile_key: Optional[str] = None,
        name_index: Optional[Dict[str, List[str]]] = None
    ) -> Optional[ExposureRecord]:
        """
        Resolve, compute, classify and store one air sample.

        Args:
            sample: Upstream air sample
            organization_id: Organization the sample's job belongs to
            user_id: Acting user
            profile_key: Exposure profile whose limits apply
            name_index: Prebuilt personnel name index (see ingest_job)

        Returns:
            The stored ExposureRecord, or None when the sample cannot be
            attributed to a person of the organization

        Raises:
            ExposureEngineError: If the sample belongs to another organization
        """
        sample_org = self._samples.get_organization_for_job(sample.job_id)
        if sample_org != organization_id:
            raise ExposureEngineError(
                f"Air sample {sample.id} does not belong to organization {organization_id}"
            )

        match = self._resolver.resolve_sample(sample, organization_id, name_index=name_index)
        if match is None:
            logger.warning(f"Air sample {sample.id} could not be attributed to a person, skipping")
            return None

        if self._samples.get_person(organization_id, match.person_id) is None:
            logger.warning(
                f"Air sample {sample.id} references person {match.person_id} "
                f"unknown to organization {organization_id}, skipping"
            )
            return None

        params = self._params_for_sample(sample, match, organization_id, user_id, profile_key)
        return self.upsert_exposure_from_air_sample(params)

    def ingest_job(
        self,
        organization_id: str,
        job_id: str,
        user_id: str,
        profile_key: Optional[str] = None
    ) -> IngestionReport:
        """
        Ingest every sample of one air monitoring job.

        Unattributable samples are skipped and reported. Storage
        failures abort the job and propagate.

        Returns:
            IngestionReport
        """
        report = IngestionReport(job_id=job_id)
        name_index = self._resolver.name_index_for(organization_id)

        for sample in self._samples.get_samples_for_job(organization_id, job_id):
            record = self.ingest_air_sample(
                sample, organization_id, user_id, profile_key, name_index=name_index
            )
            if record is None:
                report.skipped_sample_ids.append(sample.id)
                continue
            report.ingested_sample_ids.append(sample.id)
            if record.percent_of_limit is None:
                report.unclassified_sample_ids.append(sample.id)

        logger.info(
            f"Ingested job {job_id}: {len(report.ingested_sample_ids)} records, "
            f"{len(report.skipped_sample_ids)} skipped, "
            f"{len(report.unclassified_sample_ids)} unclassified"
        )
        return report

    def _params_for_sample(
        self,
        sample: AirSample,
        match: CandidateMatch,
        organization_id: str,
        user_id: str,
        profile_key: Optional[str]
    ) -> ExposureUpsertParams:
        source_refs = {"air_sample_id": sample.id, "job_id": sample.job_id}
        if sample.sample_number:
            source_refs["sample_number"] = sample.sample_number
        if match.matched_name:
            source_refs["monitor_worn_by"] = match.matched_name

        return ExposureUpsertParams(
            organization_id=organization_id,
            user_id=user_id,
            person_id=match.person_id,
            job_id=sample.job_id,
            analyte=sample.analyte,
            air_sample_id=sample.id,
            date=sample.start_time,
            duration_minutes=sample.duration_minutes,
            concentration=sample.concentration,
            units=sample.units,
            method=sample.method,
            sample_type=sample.sample_type,
            profile_key=profile_key,
            computed_version=self._config.computed_version,
            source_refs=source_refs,
            identity_confidence=match.confidence,
        )

    # --------------------------------------------------------
    # IDENTITY
    # --------------------------------------------------------

    def resolve_sample(self, sample: AirSample, organization_id: Optional[str] = None) -> Optional[CandidateMatch]:
        return self._resolver.resolve_sample(sample, organization_id)

    def get_air_samples_for_person_in_org(self, organization_id: str, person_id: str) -> List[AirSample]:
        return self._resolver.get_air_samples_for_person_in_org(organization_id, person_id)

    def get_air_samples_for_monitor_name_in_org(self, organization_id: str, name: str) -> List[AirSample]:
        return self._resolver.get_air_samples_for_monitor_name_in_org(organization_id, name)

    def get_air_sample_stats_by_person(self, organization_id: str) -> List[SampleStats]:
        return self._resolver.get_air_sample_stats_by_person(organization_id)

    def get_air_sample_stats_by_monitor_name(self, organization_id: str) -> List[SampleStats]:
        return self._resolver.get_air_sample_stats_by_monitor_name(organization_id)

    def suggest_person_links(self, organization_id: str) -> List[PersonLinkSuggestion]:
        return self._resolver.suggest_person_links(organization_id)

    # --------------------------------------------------------
    # SUMMARIES
    # --------------------------------------------------------

    def get_exposure_records_for_person(
        self,
        organization_id: str,
        person_id: str,
        date_from: Any = None,
        date_to: Any = None,
        analyte: Optional[str] = None
    ) -> List[ExposureRecord]:
        return self._aggregator.get_exposure_records_for_person(
            organization_id, person_id, date_from, date_to, analyte
        )

    def summarize(self, records: List[Any]) -> List[PersonExposureSummaryRow]:
        return summarize(records)

    def get_person_exposure_summary(
        self,
        organization_id: str,
        person_id: str,
        window: Union[ExposureWindow, str] = ExposureWindow.LAST_12_MONTHS,
        analyte: Optional[str] = None
    ) -> PersonExposureResponse:
        return self._aggregator.get_person_exposure_summary(
            organization_id, person_id, window, analyte
        )

    def get_config(self) -> ExposureEngineConfig:
        return self._config


# ============================================================
# CONVENIENCE FUNCTIONS
# ============================================================


def upsert_exposure_from_air_sample(
    session: Session,
    params: ExposureUpsertParams,
    config: Optional[ExposureEngineConfig] = None
) -> ExposureRecord:
    """
    Upsert one exposure record in a single call.

    For batches prefer a shared ExposureComplianceEngine.
    """
    return ExposureComplianceEngine(session, config).upsert_exposure_from_air_sample(params)


def ingest_job(
    session: Session,
    organization_id: str,
    job_id: str,
    user_id: str,
    profile_key: Optional[str] = None,
    config: Optional[ExposureEngineConfig] = None
) -> IngestionReport:
    """Ingest every sample of a job in a single call."""
    return ExposureComplianceEngine(session, config).ingest_job(
        organization_id, job_id, user_id, profile_key
    )
