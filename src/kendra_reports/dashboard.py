from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import List, Optional, Sequence

from .aggregation import build_trend_series, summarize_reports, week_total
from .errors import InvalidInputError
from .filters import ReportFilterEngine, Scope
from .gateway import ReportQuery
from .models import DashboardStats, DateRange, Report, ReportFilters, TrendPoint, UserProfile
from .periods import previous_week_start

logger = logging.getLogger(__name__)

TREND_PAGE_SIZE = 50


class DashboardService:
    """
    Attendance trends and summary cards for the home dashboard.

    Both views run over the actor's scope. Admins additionally get the
    fleet-wide active Kendra count (never narrowed by filters); members get
    last week's total for their own Kendra.
    """

    def __init__(self, engine: ReportFilterEngine, page_size: int = 100) -> None:
        self.engine = engine
        self.gateway = engine.gateway
        self.page_size = page_size

    async def trends(
        self,
        actor: UserProfile,
        weeks: int = 5,
        filters: Optional[ReportFilters] = None,
        today: Optional[date] = None,
    ) -> List[TrendPoint]:
        if weeks < 1:
            raise InvalidInputError("Trend window must be at least one week", kind="invalid_window")
        scope = await self.engine.resolve_scope(actor)
        if scope is None:
            return []
        reports = await self._latest_weeks(scope, weeks, filters, today)
        return build_trend_series(reports, weeks)

    async def stats(
        self,
        actor: UserProfile,
        filters: Optional[ReportFilters] = None,
        today: Optional[date] = None,
    ) -> DashboardStats:
        scope = await self.engine.resolve_scope(actor)
        if scope is None:
            return DashboardStats(
                total_reports=0,
                avg_yuva_attendance=0.0,
                avg_bhavferni_attendance=0.0,
                avg_pravachan_attendance=0.0,
                last_week_total=0,
            )

        if scope.is_admin:
            reports, active_kendras = await asyncio.gather(
                self._collect(scope, filters, today),
                self.gateway.query_active_kendra_ids(),
            )
            summary = summarize_reports(reports)
            return DashboardStats(
                total_reports=summary.total_reports,
                avg_yuva_attendance=summary.avg_yuva_attendance,
                avg_bhavferni_attendance=summary.avg_bhavferni_attendance,
                avg_pravachan_attendance=summary.avg_pravachan_attendance,
                active_kendras=len(active_kendras),
            )

        reports, last_week_total = await asyncio.gather(
            self._collect(scope, filters, today),
            self._last_week_total(scope, today),
        )
        summary = summarize_reports(reports)
        return DashboardStats(
            total_reports=summary.total_reports,
            avg_yuva_attendance=summary.avg_yuva_attendance,
            avg_bhavferni_attendance=summary.avg_bhavferni_attendance,
            avg_pravachan_attendance=summary.avg_pravachan_attendance,
            last_week_total=last_week_total,
        )

    async def _collect(
        self,
        scope: Scope,
        filters: Optional[ReportFilters],
        today: Optional[date],
    ) -> Sequence[Report]:
        collected: List[Report] = []
        offset = 0
        while True:
            page = await self.engine.fetch_scoped_page(scope, filters, self.page_size, offset, today=today)
            collected.extend(page.rows)
            if not page.has_more:
                return collected
            offset += self.page_size

    async def _latest_weeks(
        self,
        scope: Scope,
        weeks: int,
        filters: Optional[ReportFilters],
        today: Optional[date],
    ) -> Sequence[Report]:
        # Pages arrive newest week first; once weeks + 1 distinct weeks are
        # seen, the newest ``weeks`` groups are complete.
        collected: List[Report] = []
        seen_weeks = set()
        offset = 0
        while True:
            page = await self.engine.fetch_scoped_page(scope, filters, TREND_PAGE_SIZE, offset, today=today)
            collected.extend(page.rows)
            seen_weeks.update(report.week_start_date for report in page.rows)
            if not page.has_more or len(seen_weeks) > weeks:
                return collected
            offset += TREND_PAGE_SIZE

    async def _last_week_total(self, scope: Scope, today: Optional[date]) -> int:
        # Exact match on last week's Monday; a skipped week counts as 0.
        target = previous_week_start(today)
        page = await self.gateway.query_reports(
            ReportQuery(
                scope_kendra_id=scope.kendra_id,
                date_range=DateRange(start=target, end=target),
                limit=1,
            )
        )
        total = week_total(page.rows, target)
        logger.debug("Last week (%s) total for kendra %s: %s", target, scope.kendra_id, total)
        return total
