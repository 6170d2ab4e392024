"""
Exposure Compliance Engine - Summary Aggregator.

Per-analyte rollups over one person's exposure records, as shown
on the personnel exposure page. Grouping uses the raw analyte
string; callers keep the analyte vocabulary consistent upstream.
"""

from collections import OrderedDict
from datetime import datetime
from typing import Any, Iterable, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from storage.models.base import utc_now

from .models import ExposureRecord
from .normalization import coerce_float, normalize_date, normalize_end_date
from .repository import ExposureRecordRepository
from .schemas import (
    ExposureRecordResponse,
    PersonExposureResponse,
    PersonExposureSummaryRowSchema,
)
from .types import ExposureWindow, PersonExposureSummaryRow


def summarize(records: Iterable[Any]) -> List[PersonExposureSummaryRow]:
    """
    Group records by analyte and compute count, max/avg TWA and flag counts.

    Records without a TWA count toward `count` but not toward the
    max or average. Rows are ordered by analyte.

    Args:
        records: ExposureRecord rows (or objects with analyte, twa_8hr,
                 exceedance_flag and near_miss_flag attributes)

    Returns:
        One PersonExposureSummaryRow per analyte
    """
    groups: "OrderedDict[str, dict]" = OrderedDict()

    for record in records:
        group = groups.setdefault(record.analyte, {
            "count": 0,
            "twas": [],
            "exceedances": 0,
            "near_misses": 0,
        })
        group["count"] += 1
        twa = coerce_float(record.twa_8hr)
        if twa is not None:
            group["twas"].append(twa)
        if record.exceedance_flag:
            group["exceedances"] += 1
        if record.near_miss_flag:
            group["near_misses"] += 1

    rows = []
    for analyte in sorted(groups):
        group = groups[analyte]
        twas = group["twas"]
        rows.append(PersonExposureSummaryRow(
            analyte=analyte,
            count=group["count"],
            max_twa=max(twas) if twas else None,
            avg_twa=sum(twas) / len(twas) if twas else None,
            exceedances=group["exceedances"],
            near_misses=group["near_misses"],
        ))
    return rows


def resolve_window(
    window: Union[ExposureWindow, str],
    now: Optional[datetime] = None
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Translate a reporting window into inclusive (from, to) bounds.

    - 12mo: same calendar day one year back, through now
    - ytd:  January 1st of the current year, through now
    - all:  no bounds

    Raises:
        ValueError: On an unknown window
    """
    window = ExposureWindow(window)
    now = normalize_date(now) or utc_now()

    if window == ExposureWindow.ALL_TIME:
        return None, None

    if window == ExposureWindow.YEAR_TO_DATE:
        return datetime(now.year, 1, 1), now

    try:
        start = now.replace(year=now.year - 1)
    except ValueError:
        # February 29th
        start = now.replace(year=now.year - 1, day=28)
    return start, now


class SummaryAggregator:
    """Reads a person's exposure records and rolls them up per analyte."""

    def __init__(self, session: Session):
        self._records = ExposureRecordRepository(session)

    def get_exposure_records_for_person(
        self,
        organization_id: str,
        person_id: str,
        date_from: Any = None,
        date_to: Any = None,
        analyte: Optional[str] = None
    ) -> List[ExposureRecord]:
        """
        A person's records within inclusive date bounds, most recent first.

        Bounds accept the same date forms as sample ingestion.
        """
        return self._records.get_records_for_person(
            organization_id,
            person_id,
            date_from=normalize_date(date_from),
            date_to=normalize_end_date(date_to),
            analyte=analyte,
        )

    def summarize(self, records: Iterable[Any]) -> List[PersonExposureSummaryRow]:
        return summarize(records)

    def get_person_exposure_summary(
        self,
        organization_id: str,
        person_id: str,
        window: Union[ExposureWindow, str] = ExposureWindow.LAST_12_MONTHS,
        analyte: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> PersonExposureResponse:
        """
        Records and per-analyte summary for one person over a window.

        Returns:
            PersonExposureResponse ready for JSON serialization
        """
        window = ExposureWindow(window)
        date_from, date_to = resolve_window(window, now)
        records = self.get_exposure_records_for_person(
            organization_id, person_id, date_from, date_to, analyte
        )
        return PersonExposureResponse(
            person_id=person_id,
            window=window.value,
            records=[ExposureRecordResponse.model_validate(r) for r in records],
            summary=[
                PersonExposureSummaryRowSchema.model_validate(row)
                for row in summarize(records)
            ],
        )
