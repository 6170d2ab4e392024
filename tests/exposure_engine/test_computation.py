"""
Tests for exposure computation.

Tests cover:
- Input normalization (numbers, dates, names)
- 8-hour TWA formula and its undefined cases
- Limit selection by priority and most-protective mode
- Exceedance / near-miss thresholds
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from exposure_engine.classifier import ExposureClassifier, classify
from exposure_engine.config import ClassifierConfig
from exposure_engine.normalization import (
    coerce_float,
    normalize_date,
    normalize_end_date,
    normalize_name,
    normalize_person_id,
)
from exposure_engine.twa import compute_twa_8hr
from exposure_engine.types import (
    ClassificationStatus,
    LimitSelection,
    LimitType,
    LimitValues,
)


# =============================================================
# TEST: Normalization
# =============================================================

class TestCoerceFloat:
    """Test numeric coercion."""

    @pytest.mark.parametrize("value,expected", [
        (0.2, 0.2),
        (3, 3.0),
        (Decimal("0.05"), 0.05),
        (" 1.5 ", 1.5),
    ])
    def test_numeric_values(self, value, expected):
        assert coerce_float(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", [None, "", "  ", "abc", True, float("nan"), float("inf"), [1]])
    def test_unusable_values(self, value):
        assert coerce_float(value) is None


class TestNormalizeDate:
    """Test tolerant date normalization."""

    def test_datetime_passes_through(self):
        value = datetime(2024, 5, 1, 8, 30)
        assert normalize_date(value) == value

    def test_aware_datetime_converted_to_utc(self):
        value = datetime(2024, 5, 1, 10, 0, tzinfo=timezone(timedelta(hours=2)))
        assert normalize_date(value) == datetime(2024, 5, 1, 8, 0)

    def test_date_becomes_midnight(self):
        assert normalize_date(date(2024, 5, 1)) == datetime(2024, 5, 1)

    def test_epoch_milliseconds(self):
        assert normalize_date(1714521600000) == datetime(2024, 5, 1)

    def test_iso_string_with_z(self):
        assert normalize_date("2024-05-01T08:00:00Z") == datetime(2024, 5, 1, 8, 0)

    @pytest.mark.parametrize("value", [None, "", "not a date", "2024-13-45", object()])
    def test_unparseable_values_yield_none(self, value):
        assert normalize_date(value) is None


class TestNormalizeEndDate:
    """Test inclusive upper date bounds."""

    @pytest.mark.parametrize("value", [date(2024, 5, 1), "2024-05-01", " 2024-05-01 "])
    def test_calendar_day_covers_whole_day(self, value):
        bound = normalize_end_date(value)
        assert bound.date() == date(2024, 5, 1)
        assert bound >= datetime(2024, 5, 1, 23, 59, 59)

    def test_explicit_time_kept(self):
        assert normalize_end_date("2024-05-01T08:00:00") == datetime(2024, 5, 1, 8, 0)
        assert normalize_end_date(datetime(2024, 5, 1)) == datetime(2024, 5, 1)

    def test_unparseable_yields_none(self):
        assert normalize_end_date("someday") is None


class TestNormalizeName:
    """Test monitor name normalization."""

    def test_trims_lowercases_and_collapses(self):
        assert normalize_name("  Ana   SILVA ") == "ana silva"

    @pytest.mark.parametrize("value", [None, "", "   ", "N/A", "n/a "])
    def test_no_name_values(self, value):
        assert normalize_name(value) is None

    def test_person_id_blank_is_none(self):
        assert normalize_person_id("  ") is None
        assert normalize_person_id(" p-1 ") == "p-1"


# =============================================================
# TEST: TWA Calculator
# =============================================================

class TestComputeTwa:
    """Test the 8-hour TWA formula."""

    def test_half_shift(self):
        """240 minutes at 0.2 normalizes to 0.1."""
        assert compute_twa_8hr(0.2, 240) == pytest.approx(0.1)

    def test_full_shift_equals_concentration(self):
        assert compute_twa_8hr(0.5, 480) == pytest.approx(0.5)

    def test_overtime_is_not_capped(self):
        assert compute_twa_8hr(0.1, 600) == pytest.approx(0.125)

    def test_zero_duration_is_undefined(self):
        """A sample that could not be timed is not zero exposure."""
        assert compute_twa_8hr(0.2, 0) is None

    def test_negative_duration_is_undefined(self):
        assert compute_twa_8hr(0.2, -30) is None

    @pytest.mark.parametrize("concentration", [None, "", "ND", float("nan")])
    def test_missing_concentration_is_undefined(self, concentration):
        assert compute_twa_8hr(concentration, 240) is None

    def test_string_inputs_are_coerced(self):
        assert compute_twa_8hr("0.2", "240") == pytest.approx(0.1)

    def test_zero_concentration_is_zero(self):
        assert compute_twa_8hr(0.0, 240) == 0.0

    def test_custom_shift(self):
        assert compute_twa_8hr(0.2, 300, shift_minutes=600) == pytest.approx(0.1)


# =============================================================
# TEST: Limit Selection
# =============================================================

class TestSelectLimit:
    """Test which ceiling a TWA is measured against."""

    def test_pel_preferred_by_default(self):
        classifier = ExposureClassifier()
        limit = LimitValues(pel=0.1, action_level=0.05, rel=0.02)
        assert classifier.select_limit(limit) == (LimitType.PEL, 0.1)

    def test_action_level_before_rel(self):
        classifier = ExposureClassifier()
        limit = LimitValues(action_level=0.05, rel=0.02)
        assert classifier.select_limit(limit) == (LimitType.ACTION_LEVEL, 0.05)

    def test_rel_when_only_rel(self):
        classifier = ExposureClassifier()
        assert classifier.select_limit(LimitValues(rel=1.0)) == (LimitType.REL, 1.0)

    def test_no_values_configured(self):
        classifier = ExposureClassifier()
        assert classifier.select_limit(LimitValues()) == (None, None)
        assert classifier.select_limit(None) == (None, None)

    def test_custom_priority(self):
        config = ClassifierConfig(limit_priority=(LimitType.REL, LimitType.PEL))
        classifier = ExposureClassifier(config)
        limit = LimitValues(pel=0.1, rel=0.02)
        assert classifier.select_limit(limit) == (LimitType.REL, 0.02)

    def test_priority_list_excludes_unlisted_types(self):
        config = ClassifierConfig(limit_priority=(LimitType.PEL,))
        classifier = ExposureClassifier(config)
        assert classifier.select_limit(LimitValues(rel=0.02)) == (None, None)

    def test_most_protective_picks_lowest_positive(self):
        config = ClassifierConfig(selection=LimitSelection.MOST_PROTECTIVE)
        classifier = ExposureClassifier(config)
        limit = LimitValues(pel=0.1, action_level=0.0, rel=0.02)
        assert classifier.select_limit(limit) == (LimitType.REL, 0.02)


# =============================================================
# TEST: Classification
# =============================================================

class TestClassify:
    """Test exceedance and near-miss thresholds."""

    PEL = LimitValues(pel=0.1, units="mg/m3")

    def test_at_limit_is_exceedance(self):
        result = classify(0.10, self.PEL)
        assert result.percent_of_limit == pytest.approx(100)
        assert result.exceedance_flag is True
        assert result.near_miss_flag is False
        assert result.limit_type == LimitType.PEL
        assert result.limit_value == 0.1
        assert result.status == ClassificationStatus.EXCEEDANCE

    def test_82_percent_is_near_miss(self):
        result = classify(0.082, self.PEL)
        assert result.percent_of_limit == pytest.approx(82)
        assert result.exceedance_flag is False
        assert result.near_miss_flag is True
        assert result.status == ClassificationStatus.NEAR_MISS

    def test_50_percent_is_normal(self):
        result = classify(0.05, self.PEL)
        assert result.percent_of_limit == pytest.approx(50)
        assert result.exceedance_flag is False
        assert result.near_miss_flag is False
        assert result.status == ClassificationStatus.NORMAL

    def test_above_limit_is_exceedance_not_near_miss(self):
        result = classify(0.3, self.PEL)
        assert result.exceedance_flag is True
        assert result.near_miss_flag is False

    def test_missing_twa_short_circuits(self):
        result = classify(None, self.PEL)
        assert result.percent_of_limit is None
        assert result.exceedance_flag is False
        assert result.near_miss_flag is False
        assert result.limit_type is None
        assert result.status == ClassificationStatus.UNCLASSIFIED

    def test_missing_limit_is_unclassified(self):
        result = classify(0.5, None)
        assert not result.is_classified
        assert result.exceedance_flag is False
        assert result.near_miss_flag is False

    def test_zero_limit_is_unclassified_but_keeps_limit(self):
        result = classify(0.5, LimitValues(pel=0.0))
        assert result.percent_of_limit is None
        assert result.exceedance_flag is False
        assert result.limit_type == LimitType.PEL
        assert result.limit_value == 0.0

    def test_profile_near_miss_override(self):
        config = ClassifierConfig(profile_near_miss_pct={"welder": 50.0})
        classifier = ExposureClassifier(config)
        limit = LimitValues(pel=0.1, profile_key="welder")

        assert classifier.classify(0.06, limit).near_miss_flag is True
        assert classifier.classify(0.06, LimitValues(pel=0.1)).near_miss_flag is False

    def test_to_dict(self):
        data = classify(0.05, self.PEL).to_dict()
        assert data["limit_type"] == "PEL"
        assert data["status"] == "normal"
