"""
Exposure Compliance Engine - Classifier.

============================================================
PURPOSE
============================================================
Compares an 8-hour TWA against the applicable exposure limit
and produces percent-of-limit plus exceedance / near-miss flags.

============================================================
RULES
============================================================
1. No TWA                         -> unclassified
2. No limit row                   -> unclassified
3. Limit selected by the configured priority list
4. Selected value missing or <= 0 -> unclassified (type/value kept)
5. percent = twa / limit * 100
6. exceedance = percent >= 100
7. near miss  = not exceedance and percent >= near-miss threshold

Unclassified never means compliant: both flags are False and
percent_of_limit is None so callers can tell "not evaluated"
apart from "below the limit".

============================================================
"""

import logging
from typing import Any, Optional, Tuple

from .config import ClassifierConfig
from .normalization import coerce_float
from .types import ClassificationResult, LimitSelection, LimitType

logger = logging.getLogger(__name__)


class ExposureClassifier:
    """
    Classifies TWAs against exposure limits.

    Stateless apart from its configuration; one instance can be
    shared across requests.
    """

    def __init__(self, config: Optional[ClassifierConfig] = None):
        self.config = config or ClassifierConfig()

    def select_limit(self, limit: Any) -> Tuple[Optional[LimitType], Optional[float]]:
        """
        Pick the ceiling a TWA is measured against.

        Args:
            limit: ExposureLimit row or LimitValues (pel/rel/action_level)

        Returns:
            (limit_type, limit_value), or (None, None) when nothing
            is configured
        """
        if limit is None:
            return None, None

        configured = []
        for limit_type in self.config.limit_priority:
            value = coerce_float(getattr(limit, limit_type.field_name, None))
            if value is not None:
                configured.append((limit_type, value))

        if not configured:
            return None, None

        if self.config.selection == LimitSelection.MOST_PROTECTIVE:
            positive = [item for item in configured if item[1] > 0]
            if positive:
                # min() keeps the earliest entry on ties, preserving priority order
                return min(positive, key=lambda item: item[1])

        return configured[0]

    def classify(
        self,
        twa: Any,
        limit: Any,
        profile_key: Optional[str] = None
    ) -> ClassificationResult:
        """
        Classify one TWA against one limit.

        Args:
            twa: 8-hour TWA (None when it could not be computed)
            limit: ExposureLimit row, LimitValues, or None
            profile_key: Profile used to pick a near-miss override;
                         defaults to the limit's own profile_key

        Returns:
            ClassificationResult
        """
        twa_value = coerce_float(twa)
        if twa_value is None:
            return ClassificationResult.unclassified()

        limit_type, limit_value = self.select_limit(limit)
        if limit_type is None:
            return ClassificationResult.unclassified()

        if limit_value is None or limit_value <= 0:
            logger.debug(f"Limit {limit_type.value}={limit_value} is not positive, leaving unclassified")
            return ClassificationResult.unclassified(limit_type, limit_value)

        if profile_key is None:
            profile_key = getattr(limit, "profile_key", None)

        percent = (twa_value / limit_value) * 100
        exceedance = percent >= self.config.exceedance_threshold_pct
        near_miss = not exceedance and percent >= self.config.near_miss_pct_for(profile_key)

        return ClassificationResult(
            percent_of_limit=percent,
            exceedance_flag=exceedance,
            near_miss_flag=near_miss,
            limit_type=limit_type,
            limit_value=limit_value,
        )


# ============================================================
# CONVENIENCE FUNCTIONS
# ============================================================


def classify(
    twa: Any,
    limit: Any,
    config: Optional[ClassifierConfig] = None,
    profile_key: Optional[str] = None
) -> ClassificationResult:
    """
    Classify a TWA in one call.

    For repeated classification prefer a shared ExposureClassifier.
    """
    return ExposureClassifier(config).classify(twa, limit, profile_key=profile_key)
