from __future__ import annotations

import logging
from datetime import date
from typing import Any, Mapping, Optional, Sequence, Union

from .errors import InvalidInputError, NotFoundError, PermissionDeniedError
from .gateway import ReportGateway
from .models import City, Kendra, Report, UserProfile
from .payloads import (
    CityDraft,
    CityUpdate,
    KendraDraft,
    KendraUpdate,
    ReportDraft,
    ReportUpdate,
    UserUpdate,
    parse_payload,
)
from .periods import is_reportable_week, is_week_start, period_number, week_end

logger = logging.getLogger(__name__)


def _require_admin(actor: UserProfile, action: str) -> None:
    if not actor.is_admin:
        raise PermissionDeniedError(f"Only admins can {action}.")


class ReportService:
    """
    Create, edit and delete weekly reports.

    Week end and Pushp number are always derived here from the week start
    and handed to the gateway precomputed.
    """

    def __init__(self, gateway: ReportGateway) -> None:
        self.gateway = gateway

    async def get_report(self, report_id: str) -> Report:
        report = await self.gateway.query_report_by_id(report_id)
        if report is None:
            raise NotFoundError(f"Report {report_id} not found")
        return report

    async def create_report(
        self,
        actor: UserProfile,
        draft: Union[ReportDraft, Mapping[str, Any]],
        today: Optional[date] = None,
    ) -> Report:
        draft = parse_payload(ReportDraft, draft)
        week_start_date = draft.week_start_date
        if not is_week_start(week_start_date):
            raise InvalidInputError("Week start date must be a Monday", kind="not_week_start")
        if not is_reportable_week(week_start_date, today):
            raise InvalidInputError(
                "Reports can only be created for the current or previous week",
                kind="week_not_reportable",
            )

        if not actor.is_admin:
            own_kendra = actor.kendra_id or await self.gateway.query_profile(actor.id)
            if not own_kendra:
                raise InvalidInputError("Member has no kendra assignment", kind="missing_kendra")
            if draft.kendra_id != own_kendra:
                raise PermissionDeniedError("Members can only report for their own kendra.")

        fields = draft.model_dump()
        fields.update(
            week_end_date=week_end(week_start_date),
            pushp_no=period_number(week_start_date),
            created_by=actor.id,
        )
        report = await self.gateway.insert_report(fields)
        logger.info("Report %s created for kendra %s (pushp %s)", report.id, report.kendra_id, report.pushp_no)
        return report

    async def update_report(
        self,
        actor: UserProfile,
        report_id: str,
        update: Union[ReportUpdate, Mapping[str, Any]],
    ) -> Report:
        update = parse_payload(ReportUpdate, update)
        existing = await self.get_report(report_id)
        self._check_owner(actor, existing, "edit")

        changes = update.as_changes()
        if "week_start_date" in changes:
            week_start_date = changes["week_start_date"]
            if not is_week_start(week_start_date):
                raise InvalidInputError("Week start date must be a Monday", kind="not_week_start")
            changes["week_end_date"] = week_end(week_start_date)
            changes["pushp_no"] = period_number(week_start_date)

        updated = await self.gateway.update_report(report_id, changes)
        if updated is None:
            raise NotFoundError(f"Report {report_id} not found")
        return updated

    async def delete_report(self, actor: UserProfile, report_id: str) -> None:
        existing = await self.get_report(report_id)
        self._check_owner(actor, existing, "delete")
        await self.gateway.delete_report(report_id)
        logger.info("Report %s deleted by %s", report_id, actor.id)

    @staticmethod
    def _check_owner(actor: UserProfile, report: Report, action: str) -> None:
        if actor.is_admin or report.created_by == actor.id:
            return
        raise PermissionDeniedError(f"Only the creator or an admin can {action} this report.")


class ReferenceDataService:
    """Cities, Kendras and user profiles; every mutation is admin only."""

    def __init__(self, gateway: ReportGateway) -> None:
        self.gateway = gateway

    async def list_cities(self) -> Sequence[City]:
        return await self.gateway.query_cities()

    async def create_city(self, actor: UserProfile, draft: Union[CityDraft, Mapping[str, Any]]) -> City:
        _require_admin(actor, "create cities")
        draft = parse_payload(CityDraft, draft)
        return await self.gateway.insert_city(draft.model_dump())

    async def update_city(
        self,
        actor: UserProfile,
        city_id: str,
        update: Union[CityUpdate, Mapping[str, Any]],
    ) -> City:
        _require_admin(actor, "edit cities")
        update = parse_payload(CityUpdate, update)
        city = await self.gateway.update_city(city_id, update.as_changes())
        if city is None:
            raise NotFoundError(f"City {city_id} not found")
        return city

    async def delete_city(self, actor: UserProfile, city_id: str) -> None:
        _require_admin(actor, "delete cities")
        await self.gateway.delete_city(city_id)

    async def list_kendras(self, city_id: Optional[str] = None) -> Sequence[Kendra]:
        return await self.gateway.query_kendras(city_id)

    async def create_kendra(self, actor: UserProfile, draft: Union[KendraDraft, Mapping[str, Any]]) -> Kendra:
        _require_admin(actor, "create kendras")
        draft = parse_payload(KendraDraft, draft)
        return await self.gateway.insert_kendra(draft.model_dump())

    async def update_kendra(
        self,
        actor: UserProfile,
        kendra_id: str,
        update: Union[KendraUpdate, Mapping[str, Any]],
    ) -> Kendra:
        _require_admin(actor, "edit kendras")
        update = parse_payload(KendraUpdate, update)
        kendra = await self.gateway.update_kendra(kendra_id, update.as_changes())
        if kendra is None:
            raise NotFoundError(f"Kendra {kendra_id} not found")
        return kendra

    async def delete_kendra(self, actor: UserProfile, kendra_id: str) -> None:
        _require_admin(actor, "delete kendras")
        await self.gateway.delete_kendra(kendra_id)

    async def list_users(
        self,
        city_id: Optional[str] = None,
        kendra_id: Optional[str] = None,
    ) -> Sequence[UserProfile]:
        users = await self.gateway.query_users(kendra_id)
        if not city_id:
            return users
        # profiles only carry a kendra id, so the city match goes through kendras
        kendras = await self.gateway.query_kendras(city_id)
        kendra_ids = {kendra.id for kendra in kendras}
        return tuple(user for user in users if user.kendra_id in kendra_ids)

    async def update_user(
        self,
        actor: UserProfile,
        user_id: str,
        update: Union[UserUpdate, Mapping[str, Any]],
    ) -> UserProfile:
        _require_admin(actor, "edit users")
        update = parse_payload(UserUpdate, update)
        changes = update.as_changes()
        if changes.get("role") == "admin":
            changes["kendra_id"] = None
        user = await self.gateway.update_user(user_id, changes)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    async def delete_user(self, actor: UserProfile, user_id: str) -> None:
        _require_admin(actor, "delete users")
        await self.gateway.delete_user(user_id)
