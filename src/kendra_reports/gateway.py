from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Mapping, Optional, Sequence, Tuple

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    select,
    update,
)
from sqlalchemy.engine import URL, Engine, Row, make_url
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings
from .models import City, DateRange, Kendra, Report, ReportPage, UserProfile

logger = logging.getLogger(__name__)

RELATIONAL_FIELDS = ("kendra_id", "kendra_type", "city_id")


@dataclass(frozen=True)
class GatewayCapabilities:
    """
    Relational filter fields a gateway can evaluate on its side.

    ``kendra_id`` lives on the report row itself; ``kendra_type`` and
    ``city_id`` need the Kendra/City join. Anything not listed here is
    filtered in memory by the caller.
    """

    pushdown_fields: FrozenSet[str] = frozenset({"kendra_id"})

    def can_push(self, field_name: str) -> bool:
        return field_name in self.pushdown_fields


@dataclass(frozen=True)
class ReportQuery:
    scope_kendra_id: Optional[str] = None
    relational_filters: Mapping[str, str] = field(default_factory=dict)
    date_range: DateRange = field(default_factory=DateRange)
    order_by: Tuple[str, str] = ("week_start_date", "desc")
    limit: int = 20
    offset: int = 0


class ReportGateway:
    """
    Query/mutation boundary to the persistence backend.

    Implementations return joined rows (report -> kendra -> city) and must
    enforce ``scope_kendra_id`` when it is set. ``has_more`` on a page is true
    iff the backend returned exactly ``limit`` rows.
    """

    capabilities = GatewayCapabilities()

    async def query_reports(self, query: ReportQuery) -> ReportPage:
        raise NotImplementedError

    async def query_report_by_id(self, report_id: str) -> Optional[Report]:
        raise NotImplementedError

    async def insert_report(self, fields: Mapping[str, Any]) -> Report:
        raise NotImplementedError

    async def update_report(self, report_id: str, changes: Mapping[str, Any]) -> Optional[Report]:
        raise NotImplementedError

    async def delete_report(self, report_id: str) -> None:
        raise NotImplementedError

    async def query_active_kendra_ids(self) -> FrozenSet[str]:
        raise NotImplementedError

    async def query_cities(self) -> Sequence[City]:
        raise NotImplementedError

    async def insert_city(self, fields: Mapping[str, Any]) -> City:
        raise NotImplementedError

    async def update_city(self, city_id: str, changes: Mapping[str, Any]) -> Optional[City]:
        raise NotImplementedError

    async def delete_city(self, city_id: str) -> None:
        raise NotImplementedError

    async def query_kendras(self, city_id: Optional[str] = None) -> Sequence[Kendra]:
        raise NotImplementedError

    async def insert_kendra(self, fields: Mapping[str, Any]) -> Kendra:
        raise NotImplementedError

    async def update_kendra(self, kendra_id: str, changes: Mapping[str, Any]) -> Optional[Kendra]:
        raise NotImplementedError

    async def delete_kendra(self, kendra_id: str) -> None:
        raise NotImplementedError

    async def query_users(self, kendra_id: Optional[str] = None) -> Sequence[UserProfile]:
        raise NotImplementedError

    async def query_user(self, user_id: str) -> Optional[UserProfile]:
        raise NotImplementedError

    async def update_user(self, user_id: str, changes: Mapping[str, Any]) -> Optional[UserProfile]:
        raise NotImplementedError

    async def delete_user(self, user_id: str) -> None:
        raise NotImplementedError

    async def query_profile(self, user_id: str) -> Optional[str]:
        """Kendra id bound to ``user_id``; used when the session has none cached."""

        raise NotImplementedError


metadata = MetaData()

cities_table = Table(
    "cities",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("city_name", String(255), nullable=False),
    Column("pin_code", String(6), nullable=False),
    Column("created_at", DateTime(timezone=True)),
)

kendras_table = Table(
    "kendras",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("kendra_name", String(255), nullable=False),
    Column("city_id", String(36), ForeignKey("cities.id", ondelete="CASCADE"), nullable=False),
    Column("kendra_type", String(16), nullable=False),
    Column("created_at", DateTime(timezone=True)),
)

profiles_table = Table(
    "profiles",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, default=""),
    Column("name", String(255), nullable=False, default=""),
    Column("role", String(16), nullable=False, default="member"),
    Column("kendra_id", String(36), ForeignKey("kendras.id", ondelete="SET NULL"), nullable=True),
    Column("created_at", DateTime(timezone=True)),
)

reports_table = Table(
    "weekly_reports",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("kendra_id", String(36), ForeignKey("kendras.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("week_start_date", Date, nullable=False, index=True),
    Column("week_end_date", Date, nullable=False),
    Column("pushp_no", Integer, nullable=False),
    Column("yuva_kendra_attendance", Integer, nullable=False, default=0),
    Column("bhavferni_attendance", Integer, nullable=False, default=0),
    Column("pravachan_attendance", Integer, nullable=False, default=0),
    Column("description", Text, nullable=True),
    Column("created_by", String(36), nullable=True),
    Column("created_at", DateTime(timezone=True)),
)

_ORDERABLE_COLUMNS = {
    "week_start_date": reports_table.c.week_start_date,
    "created_at": reports_table.c.created_at,
    "pushp_no": reports_table.c.pushp_no,
}

_JOINED_FILTER_COLUMNS = {
    "kendra_id": reports_table.c.kendra_id,
    "kendra_type": kendras_table.c.kendra_type,
    "city_id": kendras_table.c.city_id,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class SQLReportGateway(ReportGateway):
    """
    Gateway over the relational schema used by the reporting backend.

    Expected tables:
      - cities(id, city_name, pin_code, created_at)
      - kendras(id, kendra_name, city_id, kendra_type, created_at)
      - profiles(id, email, name, role, kendra_id, created_at)
      - weekly_reports(id, kendra_id, week_start_date, week_end_date, pushp_no,
        yuva_kendra_attendance, bhavferni_attendance, pravachan_attendance,
        description, created_by, created_at)

    The engine is synchronous; every call is pushed to a worker thread so the
    event loop only suspends at the gateway boundary.
    """

    capabilities = GatewayCapabilities(pushdown_fields=frozenset(RELATIONAL_FIELDS))

    def __init__(self, engine: Engine):
        self.engine = engine

    def create_schema(self) -> None:
        metadata.create_all(self.engine, checkfirst=True)

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except SQLAlchemyError as exc:
            logger.warning("Gateway call %s failed: %s", func.__name__, exc)
            raise

    # Reports

    async def query_reports(self, query: ReportQuery) -> ReportPage:
        return await self._run(self._query_reports, query)

    async def query_report_by_id(self, report_id: str) -> Optional[Report]:
        return await self._run(self._query_report_by_id, report_id)

    async def insert_report(self, fields: Mapping[str, Any]) -> Report:
        return await self._run(self._insert_report, dict(fields))

    async def update_report(self, report_id: str, changes: Mapping[str, Any]) -> Optional[Report]:
        return await self._run(self._update_report, report_id, dict(changes))

    async def delete_report(self, report_id: str) -> None:
        await self._run(self._delete, reports_table, report_id)

    async def query_active_kendra_ids(self) -> FrozenSet[str]:
        return await self._run(self._query_active_kendra_ids)

    def _report_select(self):
        joined = reports_table.outerjoin(
            kendras_table, reports_table.c.kendra_id == kendras_table.c.id
        ).outerjoin(cities_table, kendras_table.c.city_id == cities_table.c.id)
        return select(
            reports_table,
            kendras_table.c.kendra_name,
            kendras_table.c.kendra_type,
            kendras_table.c.city_id.label("kendra_city_id"),
            kendras_table.c.created_at.label("kendra_created_at"),
            cities_table.c.city_name,
            cities_table.c.pin_code,
            cities_table.c.created_at.label("city_created_at"),
        ).select_from(joined)

    def _query_reports(self, query: ReportQuery) -> ReportPage:
        stmt = self._report_select()
        if query.scope_kendra_id is not None:
            stmt = stmt.where(reports_table.c.kendra_id == query.scope_kendra_id)
        for name, value in query.relational_filters.items():
            column = _JOINED_FILTER_COLUMNS.get(name)
            if column is None:
                raise ValueError(f"Unsupported relational filter: {name}")
            stmt = stmt.where(column == value)
        if query.date_range.start is not None:
            stmt = stmt.where(reports_table.c.week_start_date >= query.date_range.start)
        if query.date_range.end is not None:
            stmt = stmt.where(reports_table.c.week_start_date <= query.date_range.end)

        order_name, direction = query.order_by
        order_column = _ORDERABLE_COLUMNS.get(order_name)
        if order_column is None:
            raise ValueError(f"Unsupported order column: {order_name}")
        if direction == "desc":
            stmt = stmt.order_by(
                order_column.desc(), reports_table.c.created_at.desc(), reports_table.c.id.desc()
            )
        else:
            stmt = stmt.order_by(
                order_column.asc(), reports_table.c.created_at.asc(), reports_table.c.id.asc()
            )
        stmt = stmt.limit(query.limit).offset(query.offset)

        with self.engine.connect() as connection:
            rows = connection.execute(stmt).fetchall()
        reports = tuple(self._row_to_report(row) for row in rows)
        logger.debug(
            "Fetched %s report rows (limit=%s offset=%s)", len(reports), query.limit, query.offset
        )
        return ReportPage(rows=reports, has_more=len(reports) == query.limit)

    def _query_report_by_id(self, report_id: str) -> Optional[Report]:
        stmt = self._report_select().where(reports_table.c.id == report_id)
        with self.engine.connect() as connection:
            row = connection.execute(stmt).first()
        return None if row is None else self._row_to_report(row)

    def _insert_report(self, fields: Dict[str, Any]) -> Report:
        values = dict(fields)
        values.setdefault("id", _new_id())
        values.setdefault("created_at", _utcnow())
        with self.engine.begin() as connection:
            connection.execute(reports_table.insert().values(**values))
        created = self._query_report_by_id(values["id"])
        if created is None:
            raise RuntimeError("Failed to create report")
        return created

    def _update_report(self, report_id: str, changes: Dict[str, Any]) -> Optional[Report]:
        if changes:
            with self.engine.begin() as connection:
                connection.execute(
                    update(reports_table).where(reports_table.c.id == report_id).values(**changes)
                )
        return self._query_report_by_id(report_id)

    def _query_active_kendra_ids(self) -> FrozenSet[str]:
        stmt = select(reports_table.c.kendra_id).distinct()
        with self.engine.connect() as connection:
            rows = connection.execute(stmt).fetchall()
        return frozenset(str(row.kendra_id) for row in rows)

    def _delete(self, table: Table, row_id: str) -> None:
        with self.engine.begin() as connection:
            connection.execute(delete(table).where(table.c.id == row_id))

    # Cities

    async def query_cities(self) -> Sequence[City]:
        return await self._run(self._query_cities)

    async def insert_city(self, fields: Mapping[str, Any]) -> City:
        return await self._run(self._insert_city, dict(fields))

    async def update_city(self, city_id: str, changes: Mapping[str, Any]) -> Optional[City]:
        return await self._run(self._update_city, city_id, dict(changes))

    async def delete_city(self, city_id: str) -> None:
        await self._run(self._delete, cities_table, city_id)

    def _query_cities(self) -> Sequence[City]:
        stmt = select(cities_table).order_by(cities_table.c.city_name.asc())
        with self.engine.connect() as connection:
            rows = connection.execute(stmt).fetchall()
        return tuple(self._row_to_city(row) for row in rows)

    def _fetch_city(self, city_id: str) -> Optional[City]:
        stmt = select(cities_table).where(cities_table.c.id == city_id)
        with self.engine.connect() as connection:
            row = connection.execute(stmt).first()
        return None if row is None else self._row_to_city(row)

    def _insert_city(self, fields: Dict[str, Any]) -> City:
        values = {"id": _new_id(), "created_at": _utcnow(), **fields}
        with self.engine.begin() as connection:
            connection.execute(cities_table.insert().values(**values))
        return self._row_to_city_values(values)

    def _update_city(self, city_id: str, changes: Dict[str, Any]) -> Optional[City]:
        if changes:
            with self.engine.begin() as connection:
                connection.execute(update(cities_table).where(cities_table.c.id == city_id).values(**changes))
        return self._fetch_city(city_id)

    # Kendras

    async def query_kendras(self, city_id: Optional[str] = None) -> Sequence[Kendra]:
        return await self._run(self._query_kendras, city_id)

    async def insert_kendra(self, fields: Mapping[str, Any]) -> Kendra:
        return await self._run(self._insert_kendra, dict(fields))

    async def update_kendra(self, kendra_id: str, changes: Mapping[str, Any]) -> Optional[Kendra]:
        return await self._run(self._update_kendra, kendra_id, dict(changes))

    async def delete_kendra(self, kendra_id: str) -> None:
        await self._run(self._delete, kendras_table, kendra_id)

    def _kendra_select(self):
        joined = kendras_table.outerjoin(cities_table, kendras_table.c.city_id == cities_table.c.id)
        return select(
            kendras_table,
            cities_table.c.city_name,
            cities_table.c.pin_code,
            cities_table.c.created_at.label("city_created_at"),
        ).select_from(joined)

    def _query_kendras(self, city_id: Optional[str]) -> Sequence[Kendra]:
        stmt = self._kendra_select().order_by(kendras_table.c.kendra_name.asc())
        if city_id:
            stmt = stmt.where(kendras_table.c.city_id == city_id)
        with self.engine.connect() as connection:
            rows = connection.execute(stmt).fetchall()
        return tuple(self._row_to_kendra(row) for row in rows)

    def _fetch_kendra(self, kendra_id: str) -> Optional[Kendra]:
        stmt = self._kendra_select().where(kendras_table.c.id == kendra_id)
        with self.engine.connect() as connection:
            row = connection.execute(stmt).first()
        return None if row is None else self._row_to_kendra(row)

    def _insert_kendra(self, fields: Dict[str, Any]) -> Kendra:
        values = {"id": _new_id(), "created_at": _utcnow(), **fields}
        with self.engine.begin() as connection:
            connection.execute(kendras_table.insert().values(**values))
        created = self._fetch_kendra(values["id"])
        if created is None:
            raise RuntimeError("Failed to create kendra")
        return created

    def _update_kendra(self, kendra_id: str, changes: Dict[str, Any]) -> Optional[Kendra]:
        if changes:
            with self.engine.begin() as connection:
                connection.execute(
                    update(kendras_table).where(kendras_table.c.id == kendra_id).values(**changes)
                )
        return self._fetch_kendra(kendra_id)

    # Users

    async def query_users(self, kendra_id: Optional[str] = None) -> Sequence[UserProfile]:
        return await self._run(self._query_users, kendra_id)

    async def query_user(self, user_id: str) -> Optional[UserProfile]:
        return await self._run(self._query_user, user_id)

    async def update_user(self, user_id: str, changes: Mapping[str, Any]) -> Optional[UserProfile]:
        return await self._run(self._update_user, user_id, dict(changes))

    async def delete_user(self, user_id: str) -> None:
        await self._run(self._delete, profiles_table, user_id)

    async def query_profile(self, user_id: str) -> Optional[str]:
        profile = await self.query_user(user_id)
        if profile is None:
            return None
        return profile.kendra_id

    def _query_users(self, kendra_id: Optional[str]) -> Sequence[UserProfile]:
        stmt = select(profiles_table).order_by(profiles_table.c.name.asc())
        if kendra_id:
            stmt = stmt.where(profiles_table.c.kendra_id == kendra_id)
        with self.engine.connect() as connection:
            rows = connection.execute(stmt).fetchall()
        return tuple(self._row_to_user(row) for row in rows)

    def _query_user(self, user_id: str) -> Optional[UserProfile]:
        stmt = select(profiles_table).where(profiles_table.c.id == user_id)
        with self.engine.connect() as connection:
            row = connection.execute(stmt).first()
        return None if row is None else self._row_to_user(row)

    def _update_user(self, user_id: str, changes: Dict[str, Any]) -> Optional[UserProfile]:
        if changes:
            with self.engine.begin() as connection:
                connection.execute(
                    update(profiles_table).where(profiles_table.c.id == user_id).values(**changes)
                )
        return self._query_user(user_id)

    def insert_profile(self, fields: Mapping[str, Any]) -> UserProfile:
        """
        Write a profile row directly.

        Accounts are provisioned by the auth backend; this exists for seeding
        development and test databases.
        """

        values = {"id": _new_id(), "created_at": _utcnow(), **fields}
        with self.engine.begin() as connection:
            connection.execute(profiles_table.insert().values(**values))
        return self._row_to_user_values(values)

    # Row mapping

    @staticmethod
    def _row_to_city(row: Row) -> City:
        return City(
            id=str(row.id),
            city_name=str(row.city_name),
            pin_code=str(row.pin_code),
            created_at=row.created_at,
        )

    @staticmethod
    def _row_to_city_values(values: Mapping[str, Any]) -> City:
        return City(
            id=str(values["id"]),
            city_name=str(values["city_name"]),
            pin_code=str(values["pin_code"]),
            created_at=values.get("created_at"),
        )

    @staticmethod
    def _row_to_kendra(row: Row) -> Kendra:
        city = None
        if row.city_name is not None:
            city = City(
                id=str(row.city_id),
                city_name=str(row.city_name),
                pin_code=str(row.pin_code),
                created_at=row.city_created_at,
            )
        return Kendra(
            id=str(row.id),
            kendra_name=str(row.kendra_name),
            city_id=str(row.city_id),
            kendra_type=row.kendra_type,
            created_at=row.created_at,
            city=city,
        )

    @staticmethod
    def _row_to_user(row: Row) -> UserProfile:
        return UserProfile(
            id=str(row.id),
            email=row.email or "",
            name=row.name or "",
            role=row.role or "member",
            kendra_id=row.kendra_id,
            created_at=row.created_at,
        )

    @staticmethod
    def _row_to_user_values(values: Mapping[str, Any]) -> UserProfile:
        return UserProfile(
            id=str(values["id"]),
            email=values.get("email") or "",
            name=values.get("name") or "",
            role=values.get("role") or "member",
            kendra_id=values.get("kendra_id"),
            created_at=values.get("created_at"),
        )

    @staticmethod
    def _row_to_report(row: Row) -> Report:
        kendra = None
        if row.kendra_name is not None:
            city = None
            if row.city_name is not None:
                city = City(
                    id=str(row.kendra_city_id),
                    city_name=str(row.city_name),
                    pin_code=str(row.pin_code),
                    created_at=row.city_created_at,
                )
            kendra = Kendra(
                id=str(row.kendra_id),
                kendra_name=str(row.kendra_name),
                city_id=str(row.kendra_city_id or ""),
                kendra_type=row.kendra_type,
                created_at=row.kendra_created_at,
                city=city,
            )
        return Report(
            id=str(row.id),
            kendra_id=str(row.kendra_id),
            week_start_date=row.week_start_date,
            week_end_date=row.week_end_date,
            pushp_no=int(row.pushp_no),
            yuva_kendra_attendance=int(row.yuva_kendra_attendance or 0),
            bhavferni_attendance=int(row.bhavferni_attendance or 0),
            pravachan_attendance=int(row.pravachan_attendance or 0),
            description=row.description,
            created_by=row.created_by,
            created_at=row.created_at,
            kendra=kendra,
        )


def database_url(settings: Settings) -> URL:
    """Backend URL with the access key filled in as password when it has none."""

    url = make_url(settings.backend_url)
    if url.password is None and settings.access_key and not url.drivername.startswith("sqlite"):
        url = url.set(password=settings.access_key)
    return url


def build_engine(settings: Settings) -> Engine:
    return create_engine(database_url(settings), future=True, pool_pre_ping=True)


def build_gateway(settings: Settings) -> SQLReportGateway:
    return SQLReportGateway(build_engine(settings))
