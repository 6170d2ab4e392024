"""
Tests for the Summary Aggregator.
"""

from datetime import datetime
from types import SimpleNamespace

import pytest

from exposure_engine.summary import resolve_window, summarize
from exposure_engine.types import ExposureWindow


def rec(analyte, twa, exceedance=False, near_miss=False):
    return SimpleNamespace(
        analyte=analyte,
        twa_8hr=twa,
        exceedance_flag=exceedance,
        near_miss_flag=near_miss,
    )


# =============================================================
# TEST: summarize
# =============================================================

class TestSummarize:
    """Test per-analyte rollups."""

    def test_nulls_excluded_from_average(self):
        rows = summarize([
            rec("Manganese", 0.05),
            rec("Manganese", 0.15, exceedance=True),
            rec("Manganese", None),
        ])

        assert len(rows) == 1
        row = rows[0]
        assert row.count == 3
        assert row.max_twa == pytest.approx(0.15)
        assert row.avg_twa == pytest.approx(0.10)
        assert row.exceedances == 1
        assert row.near_misses == 0

    def test_all_null_twa(self):
        row = summarize([rec("Lead", None), rec("Lead", None)])[0]
        assert row.count == 2
        assert row.max_twa is None
        assert row.avg_twa is None

    def test_grouping_uses_raw_analyte(self):
        rows = summarize([
            rec("Manganese", 0.05),
            rec("manganese", 0.07, near_miss=True),
            rec("Chromium", 0.01),
        ])

        assert [r.analyte for r in rows] == ["Chromium", "Manganese", "manganese"]
        assert rows[2].near_misses == 1

    def test_empty(self):
        assert summarize([]) == []

    def test_to_dict(self):
        data = summarize([rec("Lead", 0.02)])[0].to_dict()
        assert data == {
            "analyte": "Lead",
            "count": 1,
            "max_twa": 0.02,
            "avg_twa": 0.02,
            "exceedances": 0,
            "near_misses": 0,
        }


# =============================================================
# TEST: resolve_window
# =============================================================

class TestResolveWindow:
    """Test reporting window bounds."""

    NOW = datetime(2024, 6, 15, 12, 0)

    def test_last_12_months(self):
        assert resolve_window("12mo", self.NOW) == (datetime(2023, 6, 15, 12, 0), self.NOW)

    def test_year_to_date(self):
        assert resolve_window(ExposureWindow.YEAR_TO_DATE, self.NOW) == (datetime(2024, 1, 1), self.NOW)

    def test_all_time(self):
        assert resolve_window("all", self.NOW) == (None, None)

    def test_leap_day(self):
        start, _ = resolve_window("12mo", datetime(2024, 2, 29))
        assert start == datetime(2023, 2, 28)

    def test_unknown_window(self):
        with pytest.raises(ValueError):
            resolve_window("5y", self.NOW)
