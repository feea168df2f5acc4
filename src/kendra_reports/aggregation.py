from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Sequence

from .errors import InvalidInputError
from .models import Report, TrendPoint


def round_half_up(value: float, places: int = 2) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def _average(total: int, count: int) -> float:
    if count == 0:
        return 0.0
    return round_half_up(total / count)


@dataclass
class _WeekTotals:
    yuva: int = 0
    bhavferni: int = 0
    pravachan: int = 0
    count: int = 0

    def add(self, report: Report) -> None:
        self.yuva += report.yuva_kendra_attendance or 0
        self.bhavferni += report.bhavferni_attendance or 0
        self.pravachan += report.pravachan_attendance or 0
        self.count += 1


def build_trend_series(reports: Iterable[Report], weeks: int = 5) -> List[TrendPoint]:
    """
    Sum attendance per ``week_start_date`` and keep the latest ``weeks`` groups.

    Weeks with no reports are not synthesised; fewer points come back when
    the data covers fewer weeks.
    """

    if weeks < 1:
        raise InvalidInputError("Trend window must be at least one week", kind="invalid_window")

    grouped: Dict[date, _WeekTotals] = defaultdict(_WeekTotals)
    for report in reports:
        grouped[report.week_start_date].add(report)

    ordered = sorted(grouped.items(), key=lambda item: item[0])[-weeks:]
    return [
        TrendPoint(
            week_start_date=week,
            yuva=totals.yuva,
            bhavferni=totals.bhavferni,
            pravachan=totals.pravachan,
            report_count=totals.count,
        )
        for week, totals in ordered
    ]


@dataclass(frozen=True)
class ReportSummary:
    total_reports: int
    avg_yuva_attendance: float
    avg_bhavferni_attendance: float
    avg_pravachan_attendance: float


def summarize_reports(reports: Sequence[Report]) -> ReportSummary:
    totals = _WeekTotals()
    for report in reports:
        totals.add(report)
    return ReportSummary(
        total_reports=totals.count,
        avg_yuva_attendance=_average(totals.yuva, totals.count),
        avg_bhavferni_attendance=_average(totals.bhavferni, totals.count),
        avg_pravachan_attendance=_average(totals.pravachan, totals.count),
    )


def week_total(reports: Iterable[Report], week_start_date: date) -> int:
    """Total attendance of the first report filed for exactly ``week_start_date``."""

    for report in reports:
        if report.week_start_date == week_start_date:
            return report.total_attendance
    return 0
