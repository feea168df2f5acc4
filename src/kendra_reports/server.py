"""FastAPI app exposing the reporting core to the mobile client."""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .config import Settings
from .dashboard import DashboardService
from .errors import (
    ConfigurationError,
    InvalidInputError,
    NotAuthenticatedError,
    NotFoundError,
    PermissionDeniedError,
    ReportsError,
)
from .filters import ReportFilterEngine
from .gateway import ReportGateway, build_gateway
from .models import KendraType, ReportFilters, UserProfile, report_as_dict
from .service import ReferenceDataService, ReportService

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (InvalidInputError, 400),
    (NotAuthenticatedError, 401),
    (PermissionDeniedError, 403),
    (NotFoundError, 404),
    (ConfigurationError, 500),
)


class ReportListResponse(BaseModel):
    data: List[Dict[str, Any]]
    has_more: bool = Field(..., alias="hasMore")

    model_config = ConfigDict(populate_by_name=True)


class _Services:
    def __init__(self, gateway: ReportGateway, settings: Optional[Settings]) -> None:
        self.gateway = gateway
        self.engine = ReportFilterEngine(gateway)
        self.reports = ReportService(gateway)
        self.reference = ReferenceDataService(gateway)
        self.dashboard = DashboardService(self.engine)
        self.page_size = settings.page_size if settings else 20
        self.trend_weeks = settings.trend_weeks if settings else 5


def _status_for(exc: ReportsError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 400


def create_app(gateway: Optional[ReportGateway] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the API.

    Without an explicit gateway the settings are read from the environment;
    a missing backend URL or access key aborts startup.
    """

    if gateway is None:
        settings = settings or Settings.from_env()
        logging.basicConfig(level=settings.log_level)
        gateway = build_gateway(settings)

    app = FastAPI(title="Kendra Reports API", version="0.1.0")
    app.state.services = _Services(gateway, settings)

    @app.exception_handler(ReportsError)
    async def _reports_error_handler(request: Request, exc: ReportsError):
        status = _status_for(exc)
        logger.debug("%s %s -> %s (%s)", request.method, request.url.path, status, exc.kind)
        return JSONResponse(status_code=status, content={"detail": {"kind": exc.kind, "message": exc.message}})

    def get_services(request: Request) -> _Services:
        return request.app.state.services

    async def get_actor(
        request: Request,
        x_user_id: Optional[str] = Header(None),
    ) -> UserProfile:
        if not x_user_id:
            raise NotAuthenticatedError("Missing X-User-Id header")
        services: _Services = request.app.state.services
        actor = await services.gateway.query_user(x_user_id)
        if actor is None:
            raise NotAuthenticatedError("Unknown user")
        return actor

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/reports", response_model=ReportListResponse)
    async def list_reports(
        kendra_id: Optional[str] = None,
        city_id: Optional[str] = None,
        kendra_type: Optional[KendraType] = Query(None, alias="type"),
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        current_year: bool = False,
        last_year: bool = False,
        search: Optional[str] = None,
        limit: Optional[int] = Query(None, ge=1, le=200),
        offset: int = Query(0, ge=0),
        actor: UserProfile = Depends(get_actor),
        services: _Services = Depends(get_services),
    ) -> ReportListResponse:
        filters = ReportFilters(
            kendra_id=kendra_id,
            city_id=city_id,
            kendra_type=kendra_type,
            date_from=date_from,
            date_to=date_to,
            current_year=current_year,
            last_year=last_year,
        )
        page = await services.engine.fetch_page(
            actor,
            filters,
            limit=limit or services.page_size,
            offset=offset,
            search=search,
        )
        return ReportListResponse(data=[report_as_dict(report) for report in page.rows], has_more=page.has_more)

    @app.get("/reports/{report_id}")
    async def get_report(
        report_id: str,
        actor: UserProfile = Depends(get_actor),
        services: _Services = Depends(get_services),
    ) -> Dict[str, Any]:
        report = await services.reports.get_report(report_id)
        if not actor.is_admin:
            scope = await services.engine.resolve_scope(actor)
            if scope is None or scope.kendra_id != report.kendra_id:
                raise NotFoundError(f"Report {report_id} not found")
        return report_as_dict(report)

    @app.post("/reports", status_code=201)
    async def create_report(
        payload: Dict[str, Any],
        actor: UserProfile = Depends(get_actor),
        services: _Services = Depends(get_services),
    ) -> Dict[str, Any]:
        report = await services.reports.create_report(actor, payload)
        return report_as_dict(report)

    @app.patch("/reports/{report_id}")
    async def update_report(
        report_id: str,
        payload: Dict[str, Any],
        actor: UserProfile = Depends(get_actor),
        services: _Services = Depends(get_services),
    ) -> Dict[str, Any]:
        report = await services.reports.update_report(actor, report_id, payload)
        return report_as_dict(report)

    @app.delete("/reports/{report_id}", status_code=204)
    async def delete_report(
        report_id: str,
        actor: UserProfile = Depends(get_actor),
        services: _Services = Depends(get_services),
    ) -> None:
        await services.reports.delete_report(actor, report_id)

    @app.get("/dashboard/trends")
    async def dashboard_trends(
        weeks: Optional[int] = Query(None, ge=1, le=52),
        actor: UserProfile = Depends(get_actor),
        services: _Services = Depends(get_services),
    ) -> Dict[str, Any]:
        points = await services.dashboard.trends(actor, weeks or services.trend_weeks)
        return {"data": [point.as_dict() for point in points]}

    @app.get("/dashboard/stats")
    async def dashboard_stats(
        actor: UserProfile = Depends(get_actor),
        services: _Services = Depends(get_services),
    ) -> Dict[str, Any]:
        stats = await services.dashboard.stats(actor)
        return {"data": stats.as_dict()}

    @app.get("/cities")
    async def list_cities(
        actor: UserProfile = Depends(get_actor),
        services: _Services = Depends(get_services),
    ) -> Dict[str, Any]:
        cities = await services.reference.list_cities()
        return {
            "data": [
                {"id": city.id, "city_name": city.city_name, "pin_code": city.pin_code} for city in cities
            ]
        }

    @app.get("/kendras")
    async def list_kendras(
        city_id: Optional[str] = None,
        actor: UserProfile = Depends(get_actor),
        services: _Services = Depends(get_services),
    ) -> Dict[str, Any]:
        kendras = await services.reference.list_kendras(city_id)
        return {
            "data": [
                {
                    "id": kendra.id,
                    "kendra_name": kendra.kendra_name,
                    "kendra_type": kendra.kendra_type,
                    "city_id": kendra.city_id,
                }
                for kendra in kendras
            ]
        }

    @app.get("/users")
    async def list_users(
        city_id: Optional[str] = None,
        kendra_id: Optional[str] = None,
        actor: UserProfile = Depends(get_actor),
        services: _Services = Depends(get_services),
    ) -> Dict[str, Any]:
        if not actor.is_admin:
            raise PermissionDeniedError("Only admins can list users.")
        users = await services.reference.list_users(city_id=city_id, kendra_id=kendra_id)
        return {
            "data": [
                {
                    "id": user.id,
                    "email": user.email,
                    "name": user.name,
                    "role": user.role,
                    "kendra_id": user.kendra_id,
                }
                for user in users
            ]
        }

    return app
