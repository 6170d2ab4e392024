"""
Exposure Compliance Engine - Package.

============================================================
PURPOSE
============================================================
Turns air-monitoring samples into per-person occupational
exposure records and classifies each one against the
organization's configured exposure limits.

============================================================
WHAT IT IS
============================================================
- A library invoked synchronously by request handlers and jobs
- Deterministic: same sample and limits, same record
- Idempotent per air sample (one record per sample, recomputed
  in place)
- Tolerant of partially populated lab data

============================================================
WHAT IT IS NOT
============================================================
- NOT an HTTP API (callers own the endpoints)
- NOT a scheduler or background worker
- NOT a regulatory ranking of PEL / REL / Action Level

============================================================
COMPONENTS
============================================================
1. Limit Registry: limits per (organization, profile, analyte)
2. TWA Calculator: concentration * duration / 480
3. Classifier: percent of limit, exceedance, near miss
4. Identity Resolver: sample -> person (direct or by name)
5. Exposure Record Store: atomic upsert + classification history
6. Summary Aggregator: per-analyte rollups for one person

============================================================
CLASSIFICATION
============================================================
- EXCEEDANCE:   percent_of_limit >= 100
- NEAR MISS:    80 <= percent_of_limit < 100
- NORMAL:       below 80
- UNCLASSIFIED: no TWA or no usable limit (never "compliant")

============================================================
USAGE
============================================================
    from exposure_engine import compute_twa_8hr, classify, LimitValues

    twa = compute_twa_8hr(concentration=0.2, duration_minutes=240)
    result = classify(twa, LimitValues(pel=0.1))

    print(f"{result.percent_of_limit:.0f}% of {result.limit_type.value}")

With a database session:

    from exposure_engine import ExposureComplianceEngine

    engine = ExposureComplianceEngine(session)
    summary = engine.get_person_exposure_summary("org-1", person_id, window="ytd")

============================================================
"""

from .types import (
    # Constants
    SHIFT_MINUTES,
    PERSONAL_SAMPLE_TYPES,
    # Enums
    LimitType,
    LimitSelection,
    ClassificationStatus,
    MatchConfidence,
    ExposureWindow,
    # Data classes
    LimitValues,
    ClassificationResult,
    CandidateMatch,
    SampleStats,
    PersonLinkSuggestion,
    ExposureUpsertParams,
    PersonExposureSummaryRow,
    IngestionReport,
    # Exceptions
    ExposureEngineError,
    LimitConfigurationError,
)

from .config import (
    DEFAULT_LIMIT_PRIORITY,
    ClassifierConfig,
    ExposureEngineConfig,
    get_default_config,
    get_most_protective_config,
    load_config_from_env,
)

from .normalization import (
    coerce_float,
    normalize_date,
    normalize_end_date,
    normalize_name,
)

from .twa import compute_twa_8hr

from .classifier import (
    ExposureClassifier,
    classify,
)

from .models import (
    AirMonitoringJob,
    Personnel,
    AirSample,
    ExposureLimit,
    ExposureRecord,
    ExposureClassificationChange,
)

from .schemas import (
    ExposureLimitPayload,
    ExposureLimitResponse,
    ExposureRecordResponse,
    PersonExposureSummaryRowSchema,
    PersonExposureResponse,
    SampleStatsResponse,
)

from .repository import (
    ExposureLimitRepository,
    ExposureRecordRepository,
    AirSampleRepository,
)

from .identity import (
    IdentityResolver,
    build_name_index,
)

from .summary import (
    SummaryAggregator,
    summarize,
    resolve_window,
)

from .engine import (
    ExposureComplianceEngine,
    upsert_exposure_from_air_sample,
    ingest_job,
)


__all__ = [
    # Constants
    "SHIFT_MINUTES",
    "PERSONAL_SAMPLE_TYPES",
    "DEFAULT_LIMIT_PRIORITY",
    # Enums
    "LimitType",
    "LimitSelection",
    "ClassificationStatus",
    "MatchConfidence",
    "ExposureWindow",
    # Data classes
    "LimitValues",
    "ClassificationResult",
    "CandidateMatch",
    "SampleStats",
    "PersonLinkSuggestion",
    "ExposureUpsertParams",
    "PersonExposureSummaryRow",
    "IngestionReport",
    # Exceptions
    "ExposureEngineError",
    "LimitConfigurationError",
    # Config
    "ClassifierConfig",
    "ExposureEngineConfig",
    "get_default_config",
    "get_most_protective_config",
    "load_config_from_env",
    # Computation
    "coerce_float",
    "normalize_date",
    "normalize_end_date",
    "normalize_name",
    "compute_twa_8hr",
    "ExposureClassifier",
    "classify",
    # Models
    "AirMonitoringJob",
    "Personnel",
    "AirSample",
    "ExposureLimit",
    "ExposureRecord",
    "ExposureClassificationChange",
    # Schemas
    "ExposureLimitPayload",
    "ExposureLimitResponse",
    "ExposureRecordResponse",
    "PersonExposureSummaryRowSchema",
    "PersonExposureResponse",
    "SampleStatsResponse",
    # Repositories
    "ExposureLimitRepository",
    "ExposureRecordRepository",
    "AirSampleRepository",
    # Identity
    "IdentityResolver",
    "build_name_index",
    # Summary
    "SummaryAggregator",
    "summarize",
    "resolve_window",
    # Engine
    "ExposureComplianceEngine",
    "upsert_exposure_from_air_sample",
    "ingest_job",
]

__version__ = "1.0.0"
