from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .errors import InvalidInputError
from .gateway import RELATIONAL_FIELDS, GatewayCapabilities, ReportGateway, ReportQuery
from .models import DateRange, Report, ReportFilters, ReportPage, Role, UserProfile
from .periods import fiscal_year_bounds

logger = logging.getLogger(__name__)

ReportPredicate = Callable[[Report], bool]


@dataclass(frozen=True)
class Scope:
    """Role-derived visibility: admins see everything, members one Kendra."""

    role: Role
    kendra_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def split_relational_filters(
    filters: Mapping[str, Optional[str]],
    capabilities: GatewayCapabilities,
) -> Tuple[Dict[str, str], Dict[str, str]]:
    """
    Partition the active relational filters into (pushed down, in memory).

    The split is decided per field from ``capabilities`` so a backend that
    can filter through the Kendra/City join gets everything pushed down.
    """

    pushed: Dict[str, str] = {}
    residual: Dict[str, str] = {}
    for name in RELATIONAL_FIELDS:
        value = filters.get(name)
        if value is None:
            continue
        if capabilities.can_push(name):
            pushed[name] = value
        else:
            residual[name] = value
    return pushed, residual


def joined_field_value(report: Report, field_name: str) -> Optional[str]:
    if field_name == "kendra_id":
        return report.kendra_id
    kendra = report.kendra
    if kendra is None:
        return None
    if field_name == "kendra_type":
        return kendra.kendra_type
    if field_name == "city_id":
        if kendra.city is not None:
            return kendra.city.id
        return kendra.city_id or None
    raise InvalidInputError(f"Unsupported relational filter: {field_name}", kind="unknown_filter")


def residual_predicate(residual: Mapping[str, str]) -> ReportPredicate:
    def _matches(report: Report) -> bool:
        return all(joined_field_value(report, name) == value for name, value in residual.items())

    return _matches


def resolve_date_range(filters: ReportFilters, today: Optional[date] = None) -> DateRange:
    """
    Intersect explicit bounds with any fiscal-year shortcuts.

    Selecting both shortcuts yields an empty range, same as chaining both
    bound pairs on one query.
    """

    bounds = DateRange(start=filters.date_from, end=filters.date_to)
    if filters.current_year:
        bounds = bounds.intersect(fiscal_year_bounds(today))
    if filters.last_year:
        bounds = bounds.intersect(fiscal_year_bounds(today, previous=True))
    return bounds


def search_reports(reports: Iterable[Report], query: Optional[str]) -> List[Report]:
    """
    Case-insensitive substring match on Kendra name and description.

    A blank query matches everything. Only case folding is applied to the
    query text.
    """

    reports = list(reports)
    if query is None or not query.strip():
        return reports
    needle = query.casefold()

    def _matches(report: Report) -> bool:
        name = report.kendra.kendra_name if report.kendra else None
        return bool(
            (name and needle in name.casefold())
            or (report.description and needle in report.description.casefold())
        )

    return [report for report in reports if _matches(report)]


class ReportFilterEngine:
    """
    Turns a ``ReportFilters`` value plus the acting user into gateway queries.

    Per field:
      - role scope: always pushed down, applied before anything else;
      - ``kendra_id`` / ``kendra_type`` / ``city_id``: pushed down when the
        gateway's capabilities list the field, otherwise filtered in memory;
      - date bounds and fiscal-year shortcuts: always pushed down;
      - free-text search: always in memory, last.
    """

    def __init__(
        self,
        gateway: ReportGateway,
        capabilities: Optional[GatewayCapabilities] = None,
    ) -> None:
        self.gateway = gateway
        self.capabilities = capabilities or gateway.capabilities

    async def resolve_scope(self, actor: UserProfile) -> Optional[Scope]:
        """
        Scope for ``actor``; ``None`` when a member has no Kendra binding.
        """

        if actor.is_admin:
            return Scope(role="admin")
        if actor.kendra_id:
            return Scope(role="member", kendra_id=actor.kendra_id)
        kendra_id = await self.gateway.query_profile(actor.id)
        if not kendra_id:
            logger.debug("Member %s has no kendra binding; scope is empty", actor.id)
            return None
        return Scope(role="member", kendra_id=kendra_id)

    def build_query(
        self,
        scope: Scope,
        filters: Optional[ReportFilters] = None,
        limit: int = 20,
        offset: int = 0,
        today: Optional[date] = None,
    ) -> Tuple[ReportQuery, ReportPredicate]:
        if limit < 1:
            raise InvalidInputError("Page size must be at least 1", kind="invalid_page")
        if offset < 0:
            raise InvalidInputError("Offset cannot be negative", kind="invalid_page")

        filters = filters or ReportFilters()
        relational = filters.as_relational_filters()
        if not scope.is_admin:
            # the member's own kendra replaces any requested one
            relational["kendra_id"] = None
        pushed, residual = split_relational_filters(relational, self.capabilities)

        query = ReportQuery(
            scope_kendra_id=None if scope.is_admin else scope.kendra_id,
            relational_filters=pushed,
            date_range=resolve_date_range(filters, today),
            order_by=("week_start_date", "desc"),
            limit=limit,
            offset=offset,
        )
        return query, residual_predicate(residual)

    async def fetch_page(
        self,
        actor: UserProfile,
        filters: Optional[ReportFilters] = None,
        limit: int = 20,
        offset: int = 0,
        search: Optional[str] = None,
        today: Optional[date] = None,
    ) -> ReportPage:
        """
        One page of scoped, filtered reports, newest week first.

        ``has_more`` follows the raw gateway page, so a page thinned out by
        in-memory filters still reports whether the backend has more rows.
        """

        scope = await self.resolve_scope(actor)
        if scope is None:
            return ReportPage(rows=(), has_more=False)
        return await self.fetch_scoped_page(scope, filters, limit, offset, search, today)

    async def fetch_scoped_page(
        self,
        scope: Scope,
        filters: Optional[ReportFilters] = None,
        limit: int = 20,
        offset: int = 0,
        search: Optional[str] = None,
        today: Optional[date] = None,
    ) -> ReportPage:
        query, predicate = self.build_query(scope, filters, limit, offset, today)
        if query.date_range.is_empty:
            return ReportPage(rows=(), has_more=False)

        page = await self.gateway.query_reports(query)
        rows = [
            report
            for report in page.rows
            if (query.scope_kendra_id is None or report.kendra_id == query.scope_kendra_id)
            and predicate(report)
        ]
        rows = search_reports(rows, search)
        return ReportPage(rows=tuple(rows), has_more=page.has_more)

    async def fetch_all(
        self,
        actor: UserProfile,
        filters: Optional[ReportFilters] = None,
        page_size: int = 100,
        today: Optional[date] = None,
    ) -> Sequence[Report]:
        scope = await self.resolve_scope(actor)
        if scope is None:
            return ()
        collected: List[Report] = []
        offset = 0
        while True:
            page = await self.fetch_scoped_page(scope, filters, page_size, offset, today=today)
            collected.extend(page.rows)
            if not page.has_more:
                return tuple(collected)
            offset += page_size
