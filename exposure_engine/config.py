"""
Exposure Compliance Engine - Configuration.

============================================================
PURPOSE
============================================================
Defines the configuration dataclasses for the classifier and
the engine, with factory functions for the common setups.

============================================================
LIMIT PRECEDENCE
============================================================
Several ceilings (PEL, ActionLevel, REL) may be configured for
the same profile and analyte. Which one an exposure is measured
against is an explicit, ordered priority list:

    default:          PEL, ActionLevel, REL (first configured wins)
    most protective:  lowest configured positive value wins

The priority list can be changed through the environment (see
load_config_from_env) without code changes.

============================================================
NEAR-MISS BAND
============================================================
near_miss_threshold_pct <= percent_of_limit < 100  -> near miss
The threshold defaults to 80 and can be overridden per profile.

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from .types import (
    LimitConfigurationError,
    LimitSelection,
    LimitType,
    SHIFT_MINUTES,
)


DEFAULT_LIMIT_PRIORITY: Tuple[LimitType, ...] = (
    LimitType.PEL,
    LimitType.ACTION_LEVEL,
    LimitType.REL,
)


# ============================================================
# CLASSIFIER CONFIGURATION
# ============================================================


@dataclass(frozen=True)
class ClassifierConfig:
    """
    Configuration for classifying a TWA against a limit.

    ============================================================
    THRESHOLDS
    ============================================================
    exceedance_threshold_pct: 100 (at or above the ceiling)
    near_miss_threshold_pct:  80  (early-warning band)
    profile_near_miss_pct:    per-profile overrides of the above

    ============================================================
    """

    limit_priority: Tuple[LimitType, ...] = DEFAULT_LIMIT_PRIORITY
    selection: LimitSelection = LimitSelection.PRIORITY

    exceedance_threshold_pct: float = 100.0
    near_miss_threshold_pct: float = 80.0

    # profile_key -> near-miss threshold percent
    profile_near_miss_pct: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.limit_priority:
            raise LimitConfigurationError("limit_priority must name at least one limit type")
        if len(set(self.limit_priority)) != len(self.limit_priority):
            raise LimitConfigurationError("limit_priority contains duplicates")
        thresholds = [self.near_miss_threshold_pct, *self.profile_near_miss_pct.values()]
        for threshold in thresholds:
            if not 0 < threshold < self.exceedance_threshold_pct:
                raise LimitConfigurationError(
                    f"Near-miss threshold {threshold} must be between 0 and "
                    f"{self.exceedance_threshold_pct}"
                )

    def near_miss_pct_for(self, profile_key: Optional[str]) -> float:
        """Near-miss threshold for a profile, falling back to the default."""
        if profile_key is not None and profile_key in self.profile_near_miss_pct:
            return self.profile_near_miss_pct[profile_key]
        return self.near_miss_threshold_pct

    def to_dict(self) -> Dict[str, Any]:
        return {
            "limit_priority": [t.value for t in self.limit_priority],
            "selection": self.selection.value,
            "exceedance_threshold_pct": self.exceedance_threshold_pct,
            "near_miss_threshold_pct": self.near_miss_threshold_pct,
            "profile_near_miss_pct": dict(self.profile_near_miss_pct),
        }


# ============================================================
# ENGINE CONFIGURATION
# ============================================================


@dataclass(frozen=True)
class ExposureEngineConfig:
    """
    Master configuration for the exposure compliance engine.
    """

    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)

    # Shift length the TWA is normalized to
    shift_minutes: int = SHIFT_MINUTES

    # Append classification changes to the history table
    keep_classification_history: bool = True

    # Default computed_version stamped on records
    computed_version: int = 1

    engine_version: str = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "classifier": self.classifier.to_dict(),
            "shift_minutes": self.shift_minutes,
            "keep_classification_history": self.keep_classification_history,
            "computed_version": self.computed_version,
            "engine_version": self.engine_version,
        }


# ============================================================
# FACTORY FUNCTIONS
# ============================================================


def get_default_config() -> ExposureEngineConfig:
    """PEL first, then ActionLevel, then REL; near miss at 80 %."""
    return ExposureEngineConfig()


def get_most_protective_config() -> ExposureEngineConfig:
    """Measure against the lowest configured ceiling."""
    return ExposureEngineConfig(
        classifier=ClassifierConfig(selection=LimitSelection.MOST_PROTECTIVE),
    )


def parse_limit_priority(value: str) -> Tuple[LimitType, ...]:
    """
    Parse a comma-separated priority list such as "PEL,ActionLevel,REL".

    Raises:
        LimitConfigurationError: On unknown limit types
    """
    try:
        return tuple(LimitType.parse(part) for part in value.split(",") if part.strip())
    except ValueError as e:
        raise LimitConfigurationError(str(e)) from e


def load_config_from_env(environ: Optional[Mapping[str, str]] = None) -> ExposureEngineConfig:
    """
    Build an engine config from environment variables.

    EXPOSURE_LIMIT_PRIORITY   e.g. "PEL,ActionLevel,REL"
    EXPOSURE_LIMIT_SELECTION  "priority" or "most_protective"
    EXPOSURE_NEAR_MISS_PCT    e.g. "80"

    Unset variables keep their defaults.

    Raises:
        LimitConfigurationError: On unparseable values
    """
    env = os.environ if environ is None else environ
    classifier_kwargs: Dict[str, Any] = {}

    priority = env.get("EXPOSURE_LIMIT_PRIORITY")
    if priority:
        classifier_kwargs["limit_priority"] = parse_limit_priority(priority)

    selection = env.get("EXPOSURE_LIMIT_SELECTION")
    if selection:
        try:
            classifier_kwargs["selection"] = LimitSelection(selection.strip().lower())
        except ValueError as e:
            raise LimitConfigurationError(f"Unknown limit selection: {selection!r}") from e

    near_miss = env.get("EXPOSURE_NEAR_MISS_PCT")
    if near_miss:
        try:
            classifier_kwargs["near_miss_threshold_pct"] = float(near_miss)
        except ValueError as e:
            raise LimitConfigurationError(f"Invalid near-miss percent: {near_miss!r}") from e

    return ExposureEngineConfig(classifier=ClassifierConfig(**classifier_kwargs))
