from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta
from typing import Dict, FrozenSet, List, Optional

import pytest
from sqlalchemy import create_engine

from kendra_reports.filters import joined_field_value
from kendra_reports.gateway import GatewayCapabilities, ReportGateway, ReportQuery, SQLReportGateway
from kendra_reports.models import City, Kendra, Report, ReportPage, UserProfile
from kendra_reports.periods import period_number, week_end

PUNE = City(id="city-pune", city_name="Pune", pin_code="411001")
MUMBAI = City(id="city-mumbai", city_name="Mumbai", pin_code="400001")

KOTHRUD = Kendra(id="k-kothrud", kendra_name="Kothrud", city_id=PUNE.id, kendra_type="Yuvan", city=PUNE)
AUNDH = Kendra(id="k-aundh", kendra_name="Aundh", city_id=PUNE.id, kendra_type="Yuvti", city=PUNE)
DADAR = Kendra(id="k-dadar", kendra_name="Dadar", city_id=MUMBAI.id, kendra_type="Yuvan", city=MUMBAI)

ADMIN = UserProfile(id="u-admin", email="admin@example.org", name="Admin", role="admin")
KOTHRUD_MEMBER = UserProfile(
    id="u-kothrud", email="kothrud@example.org", name="Kothrud Lead", role="member", kendra_id=KOTHRUD.id
)
DADAR_MEMBER = UserProfile(
    id="u-dadar", email="dadar@example.org", name="Dadar Lead", role="member", kendra_id=DADAR.id
)

BASE_WEEK = date(2025, 1, 6)


def make_report(
    report_id: str,
    kendra: Kendra,
    week_start_date: date,
    yuva: int = 0,
    bhavferni: int = 0,
    pravachan: int = 0,
    description: Optional[str] = None,
    created_by: Optional[str] = None,
) -> Report:
    return Report(
        id=report_id,
        kendra_id=kendra.id,
        week_start_date=week_start_date,
        week_end_date=week_end(week_start_date),
        pushp_no=period_number(week_start_date),
        yuva_kendra_attendance=yuva,
        bhavferni_attendance=bhavferni,
        pravachan_attendance=pravachan,
        description=description,
        created_by=created_by,
        created_at=datetime(2025, 1, 1),
        kendra=kendra,
    )


def weekly_reports(count: int, kendra: Kendra = KOTHRUD, start: date = BASE_WEEK) -> List[Report]:
    return [
        make_report(f"r-{kendra.id}-{index:03d}", kendra, start + timedelta(weeks=index), yuva=index)
        for index in range(count)
    ]


class ScriptedGateway(ReportGateway):
    """
    In-memory gateway double for engine and pager tests.

    ``hold(offset)`` parks queries at that offset until ``release(offset)``;
    ``fail_next(exc)`` makes the next report query raise.
    """

    def __init__(
        self,
        reports: Optional[List[Report]] = None,
        profiles: Optional[Dict[str, Optional[str]]] = None,
        pushdown_fields: FrozenSet[str] = frozenset({"kendra_id"}),
    ) -> None:
        self.reports = list(reports or [])
        self.profiles = dict(profiles or {})
        self.capabilities = GatewayCapabilities(pushdown_fields=pushdown_fields)
        self.calls: List[ReportQuery] = []
        self._holds: Dict[int, asyncio.Event] = {}
        self._failure: Optional[Exception] = None

    def hold(self, offset: int) -> None:
        self._holds[offset] = asyncio.Event()

    def release(self, offset: int) -> None:
        self._holds.pop(offset).set()

    def fail_next(self, exc: Exception) -> None:
        self._failure = exc

    async def query_reports(self, query: ReportQuery) -> ReportPage:
        self.calls.append(query)
        event = self._holds.get(query.offset)
        if event is not None:
            await event.wait()
        if self._failure is not None:
            failure, self._failure = self._failure, None
            raise failure

        rows = [
            report
            for report in self.reports
            if (query.scope_kendra_id is None or report.kendra_id == query.scope_kendra_id)
            and all(joined_field_value(report, name) == value for name, value in query.relational_filters.items())
            and query.date_range.contains(report.week_start_date)
        ]
        rows.sort(key=lambda report: (report.week_start_date, report.created_at, report.id), reverse=True)
        page = rows[query.offset : query.offset + query.limit]
        return ReportPage(rows=tuple(page), has_more=len(page) == query.limit)

    async def query_active_kendra_ids(self) -> FrozenSet[str]:
        return frozenset(report.kendra_id for report in self.reports)

    async def query_profile(self, user_id: str) -> Optional[str]:
        return self.profiles.get(user_id)


async def settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def sql_gateway(tmp_path) -> SQLReportGateway:
    engine = create_engine(f"sqlite:///{tmp_path / 'reports.db'}", future=True)
    gateway = SQLReportGateway(engine)
    gateway.create_schema()
    yield gateway
    engine.dispose()


@pytest.fixture
async def seeded_gateway(sql_gateway: SQLReportGateway) -> SQLReportGateway:
    for city in (PUNE, MUMBAI):
        await sql_gateway.insert_city({"id": city.id, "city_name": city.city_name, "pin_code": city.pin_code})
    for kendra in (KOTHRUD, AUNDH, DADAR):
        await sql_gateway.insert_kendra(
            {
                "id": kendra.id,
                "kendra_name": kendra.kendra_name,
                "city_id": kendra.city_id,
                "kendra_type": kendra.kendra_type,
            }
        )
    for user in (ADMIN, KOTHRUD_MEMBER, DADAR_MEMBER):
        sql_gateway.insert_profile(
            {"id": user.id, "email": user.email, "name": user.name, "role": user.role, "kendra_id": user.kendra_id}
        )
    sql_gateway.insert_profile(
        {"id": "u-unbound", "email": "new@example.org", "name": "New Member", "role": "member", "kendra_id": None}
    )
    return sql_gateway


async def store_report(gateway: SQLReportGateway, report: Report) -> Report:
    return await gateway.insert_report(
        {
            "id": report.id,
            "kendra_id": report.kendra_id,
            "week_start_date": report.week_start_date,
            "week_end_date": report.week_end_date,
            "pushp_no": report.pushp_no,
            "yuva_kendra_attendance": report.yuva_kendra_attendance,
            "bhavferni_attendance": report.bhavferni_attendance,
            "pravachan_attendance": report.pravachan_attendance,
            "description": report.description,
            "created_by": report.created_by,
        }
    )
