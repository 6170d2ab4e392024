"""
Exposure Compliance Engine - Type Definitions.

============================================================
PURPOSE
============================================================
Data contracts for the Occupational Exposure Compliance Engine.

This module defines the enums, dataclasses and exceptions that
flow between the TWA calculator, classifier, identity resolver,
record store and summary aggregator.

============================================================
DESIGN PRINCIPLES
============================================================
- Computation results are immutable (frozen dataclasses)
- "Unclassified" is an explicit state, never a silent pass
- Inferred identities are distinguishable from confirmed ones
- No field is rounded here; rounding is a display concern

============================================================
CLASSIFICATION STATES
============================================================
EXCEEDANCE    percent_of_limit >= 100
NEAR_MISS     near-miss threshold (80 by default) <= percent < 100
NORMAL        below the near-miss threshold
UNCLASSIFIED  no TWA, no limit, or a non-positive limit value

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union


# ============================================================
# CONSTANTS
# ============================================================

# Minutes in the standard shift a TWA is normalized to
SHIFT_MINUTES = 480

# Sample types eligible for monitor-worn-by name matching
PERSONAL_SAMPLE_TYPES = ("personal", "excursion")

# Monitor names that mean "nobody recorded"
NO_NAME_SENTINELS = ("n/a",)


# ============================================================
# ENUMS
# ============================================================


class LimitType(str, Enum):
    """
    Regulatory ceiling types an ExposureLimit row may carry.

    The value is the label stored on exposure records.
    """

    PEL = "PEL"
    REL = "REL"
    ACTION_LEVEL = "ActionLevel"

    @property
    def field_name(self) -> str:
        """Attribute holding this ceiling on an ExposureLimit row."""
        return {
            LimitType.PEL: "pel",
            LimitType.REL: "rel",
            LimitType.ACTION_LEVEL: "action_level",
        }[self]

    @classmethod
    def parse(cls, value: Union[str, "LimitType"]) -> "LimitType":
        """
        Parse a limit type from its label or attribute name.

        Accepts "PEL", "pel", "ActionLevel", "action_level", "REL", ...

        Raises:
            ValueError: If the value names no known limit type
        """
        if isinstance(value, LimitType):
            return value
        normalized = str(value).strip().lower().replace("_", "").replace(" ", "")
        for member in cls:
            if member.value.lower() == normalized:
                return member
        raise ValueError(f"Unknown limit type: {value!r}")


class LimitSelection(str, Enum):
    """
    How the classifier picks one ceiling when several are configured.

    - PRIORITY: first configured value in the priority list
    - MOST_PROTECTIVE: lowest configured positive value
    """

    PRIORITY = "priority"
    MOST_PROTECTIVE = "most_protective"


class ClassificationStatus(str, Enum):
    """Outcome of comparing a TWA against a resolved limit."""

    EXCEEDANCE = "exceedance"
    NEAR_MISS = "near_miss"
    NORMAL = "normal"
    UNCLASSIFIED = "unclassified"


class MatchConfidence(str, Enum):
    """
    How a sample was attributed to a person.

    - DIRECT: the sample carries an explicit person reference
    - NAME_FALLBACK: inferred from the free-text monitor-worn-by field
    """

    DIRECT = "direct"
    NAME_FALLBACK = "name_fallback"


class ExposureWindow(str, Enum):
    """Reporting windows offered by the personnel exposure summary."""

    LAST_12_MONTHS = "12mo"
    YEAR_TO_DATE = "ytd"
    ALL_TIME = "all"


# ============================================================
# LIMIT AND CLASSIFICATION CONTRACTS
# ============================================================


@dataclass(frozen=True)
class LimitValues:
    """
    Ceiling values for one (profile, analyte).

    ExposureLimit ORM rows expose the same attributes and can be
    passed to the classifier directly.
    """

    pel: Optional[float] = None
    rel: Optional[float] = None
    action_level: Optional[float] = None
    units: Optional[str] = None
    profile_key: Optional[str] = None


@dataclass(frozen=True)
class ClassificationResult:
    """
    Result of classifying one TWA against one limit.

    exceedance_flag and near_miss_flag are never both True.
    """

    percent_of_limit: Optional[float] = None
    exceedance_flag: bool = False
    near_miss_flag: bool = False
    limit_type: Optional[LimitType] = None
    limit_value: Optional[float] = None

    @classmethod
    def unclassified(
        cls,
        limit_type: Optional[LimitType] = None,
        limit_value: Optional[float] = None
    ) -> "ClassificationResult":
        """Build a result with no percent and no flags."""
        return cls(limit_type=limit_type, limit_value=limit_value)

    @property
    def is_classified(self) -> bool:
        return self.percent_of_limit is not None

    @property
    def status(self) -> ClassificationStatus:
        if self.percent_of_limit is None:
            return ClassificationStatus.UNCLASSIFIED
        if self.exceedance_flag:
            return ClassificationStatus.EXCEEDANCE
        if self.near_miss_flag:
            return ClassificationStatus.NEAR_MISS
        return ClassificationStatus.NORMAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "percent_of_limit": self.percent_of_limit,
            "exceedance_flag": self.exceedance_flag,
            "near_miss_flag": self.near_miss_flag,
            "limit_type": self.limit_type.value if self.limit_type else None,
            "limit_value": self.limit_value,
            "status": self.status.value,
        }


# ============================================================
# IDENTITY CONTRACTS
# ============================================================


@dataclass(frozen=True)
class CandidateMatch:
    """
    Attribution of one air sample to one person.

    Consumers use `confidence` to tell confirmed exposure records
    (DIRECT) from inferred ones (NAME_FALLBACK).
    """

    air_sample_id: str
    person_id: str
    confidence: MatchConfidence
    matched_name: Optional[str] = None

    @property
    def is_confirmed(self) -> bool:
        return self.confidence == MatchConfidence.DIRECT


@dataclass(frozen=True)
class SampleStats:
    """
    Aggregate sample statistics for one person or one monitor name.

    key is the person id, or the normalized (trimmed, lower-cased)
    monitor name; display_name keeps one original spelling.
    """

    key: str
    sample_count: int
    job_count: int
    last_job_date: Optional[datetime] = None
    display_name: Optional[str] = None


@dataclass(frozen=True)
class PersonLinkSuggestion:
    """
    Candidate people for a group of unlinked samples sharing a monitor name.

    Produced for review only; nothing is written back to the samples.
    """

    monitor_name: str
    stats: SampleStats
    candidate_person_ids: List[str] = field(default_factory=list)

    @property
    def is_unambiguous(self) -> bool:
        return len(self.candidate_person_ids) == 1


# ============================================================
# RECORD STORE AND SUMMARY CONTRACTS
# ============================================================


@dataclass
class ExposureUpsertParams:
    """
    Inputs for one exposure record upsert.

    Sample-derived values are accepted as-is; malformed dates,
    durations and concentrations degrade to an unclassified record.
    """

    organization_id: str
    user_id: str
    person_id: str
    job_id: str
    analyte: str
    air_sample_id: Optional[str] = None
    sample_run_id: Optional[str] = None
    date: Any = None
    duration_minutes: Any = None
    concentration: Any = None
    units: Optional[str] = None
    method: Optional[str] = None
    sample_type: Optional[str] = None
    task_activity: Optional[str] = None
    ppe_level: Optional[str] = None
    profile_key: Optional[str] = None
    computed_version: int = 1
    source_refs: Any = None
    identity_confidence: Optional[MatchConfidence] = None


@dataclass(frozen=True)
class PersonExposureSummaryRow:
    """Per-analyte rollup over one person's exposure records."""

    analyte: str
    count: int
    max_twa: Optional[float]
    avg_twa: Optional[float]
    exceedances: int
    near_misses: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "analyte": self.analyte,
            "count": self.count,
            "max_twa": self.max_twa,
            "avg_twa": self.avg_twa,
            "exceedances": self.exceedances,
            "near_misses": self.near_misses,
        }


@dataclass
class IngestionReport:
    """Outcome of ingesting every sample of one air monitoring job."""

    job_id: str
    ingested_sample_ids: List[str] = field(default_factory=list)
    skipped_sample_ids: List[str] = field(default_factory=list)
    unclassified_sample_ids: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.ingested_sample_ids) + len(self.skipped_sample_ids)


# ============================================================
# EXCEPTIONS
# ============================================================


class ExposureEngineError(Exception):
    """Base exception for the exposure compliance engine."""
    pass


class LimitConfigurationError(ExposureEngineError):
    """Raised when an exposure limit payload or limit config is invalid."""
    pass
