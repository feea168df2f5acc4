from __future__ import annotations

import logging
from enum import Enum
from typing import List, Optional, Sequence

from .filters import ReportFilterEngine, search_reports
from .models import Report, ReportFilters, ReportPage
from .session import AuthSession

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20


class PagerState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    LOADING_MORE = "loading_more"
    REFRESHING = "refreshing"


class ReportPager:
    """
    Offset-paged, accumulating report list for one screen.

    Every load is tagged with a generation. ``reset``/``refresh`` start a new
    generation, and any load that finishes under an older generation has its
    result (or error) dropped, so a slow ``load_more`` can never append rows
    after a newer reset has replaced the list.
    """

    def __init__(
        self,
        engine: ReportFilterEngine,
        session: AuthSession,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self.engine = engine
        self.session = session
        self.page_size = page_size
        self.filters = ReportFilters()
        self.state = PagerState.IDLE
        self.has_more = True
        self.pages_loaded = 0
        self._reports: List[Report] = []
        self._generation = 0
        self._in_flight: Optional[int] = None

    @property
    def reports(self) -> Sequence[Report]:
        return tuple(self._reports)

    @property
    def is_loading(self) -> bool:
        return self._in_flight is not None

    @property
    def generation(self) -> int:
        return self._generation

    def visible_reports(self, search: Optional[str] = None) -> List[Report]:
        return search_reports(self._reports, search)

    async def reset(self, filters: Optional[ReportFilters] = None) -> Sequence[Report]:
        """Initial load or filter change: fetch offset 0 and replace the list."""

        if filters is not None:
            self.filters = filters
        return await self._reload(PagerState.LOADING)

    async def refresh(self) -> Sequence[Report]:
        return await self._reload(PagerState.REFRESHING)

    async def load_more(self) -> bool:
        """
        Append the next page.

        Returns ``False`` without touching the gateway when a load is already
        in flight or the list is exhausted, or when the result arrived after a
        reset superseded it.
        """

        if self.is_loading or not self.has_more:
            return False

        generation = self._generation
        self._in_flight = generation
        self.state = PagerState.LOADING_MORE
        offset = self.pages_loaded * self.page_size
        try:
            page = await self._fetch(offset)
        except Exception:
            if generation != self._generation:
                logger.debug("Dropping failed page at offset %s from stale generation %s", offset, generation)
                return False
            self.state = self._settled_state()
            raise
        finally:
            if self._in_flight == generation:
                self._in_flight = None

        if generation != self._generation:
            logger.debug("Discarding stale page at offset %s (generation %s)", offset, generation)
            return False

        seen = {report.id for report in self._reports}
        self._reports.extend(report for report in page.rows if report.id not in seen)
        self.pages_loaded += 1
        self.has_more = page.has_more
        self.state = PagerState.LOADED
        return True

    async def _reload(self, loading_state: PagerState) -> Sequence[Report]:
        self._generation += 1
        generation = self._generation
        self._in_flight = generation
        self.state = loading_state
        try:
            page = await self._fetch(0)
        except Exception:
            if generation != self._generation:
                logger.debug("Dropping failed reset from stale generation %s", generation)
                return self.reports
            self.state = self._settled_state()
            raise
        finally:
            if self._in_flight == generation:
                self._in_flight = None

        if generation != self._generation:
            logger.debug("Discarding superseded reset (generation %s)", generation)
            return self.reports

        self._reports = list(page.rows)
        self.pages_loaded = 1
        self.has_more = page.has_more
        self.state = PagerState.LOADED
        return self.reports

    async def _fetch(self, offset: int) -> ReportPage:
        actor = self.session.require_actor()
        logger.debug("Loading reports offset=%s limit=%s", offset, self.page_size)
        return await self.engine.fetch_page(
            actor,
            self.filters,
            limit=self.page_size,
            offset=offset,
        )

    def _settled_state(self) -> PagerState:
        return PagerState.LOADED if self.pages_loaded else PagerState.IDLE
