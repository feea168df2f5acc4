from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Literal, Optional, Sequence

Role = Literal["admin", "member"]
KendraType = Literal["Yuvan", "Yuvti"]

KENDRA_TYPES = ("Yuvan", "Yuvti")
ROLES = ("admin", "member")


@dataclass(frozen=True)
class City:
    id: str
    city_name: str
    pin_code: str
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Kendra:
    id: str
    kendra_name: str
    city_id: str
    kendra_type: KendraType
    created_at: Optional[datetime] = None
    city: Optional[City] = None


@dataclass(frozen=True)
class UserProfile:
    """
    Account snapshot, also used as the acting user for scoped operations.

    Members are bound to one Kendra; ``kendra_id`` is only ``None`` while an
    admin is still setting the account up. Admins never carry a binding.
    """

    id: str
    email: str
    name: str
    role: Role = "member"
    kendra_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass(frozen=True)
class Report:
    """
    One weekly attendance submission for one Kendra.

    ``week_end_date`` and ``pushp_no`` are derived from ``week_start_date``
    when the report is written and stored alongside it.
    """

    id: str
    kendra_id: str
    week_start_date: date
    week_end_date: date
    pushp_no: int
    yuva_kendra_attendance: int = 0
    bhavferni_attendance: int = 0
    pravachan_attendance: int = 0
    description: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    kendra: Optional[Kendra] = None

    @property
    def total_attendance(self) -> int:
        return self.yuva_kendra_attendance + self.bhavferni_attendance + self.pravachan_attendance


@dataclass(frozen=True)
class DateRange:
    """Inclusive bounds on ``week_start_date``; ``None`` leaves a side open."""

    start: Optional[date] = None
    end: Optional[date] = None

    @property
    def is_empty(self) -> bool:
        return self.start is not None and self.end is not None and self.start > self.end

    def intersect(self, other: "DateRange") -> "DateRange":
        starts = [value for value in (self.start, other.start) if value is not None]
        ends = [value for value in (self.end, other.end) if value is not None]
        return DateRange(
            start=max(starts) if starts else None,
            end=min(ends) if ends else None,
        )

    def contains(self, value: date) -> bool:
        if self.start is not None and value < self.start:
            return False
        if self.end is not None and value > self.end:
            return False
        return True


@dataclass(frozen=True)
class ReportFilters:
    """
    Query-shaping options chosen on the reports screen.

    ``current_year`` / ``last_year`` are shortcuts for the fiscal year that
    starts on July 12. When several date bounds are set they are intersected.
    """

    kendra_id: Optional[str] = None
    city_id: Optional[str] = None
    kendra_type: Optional[KendraType] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    current_year: bool = False
    last_year: bool = False

    def as_relational_filters(self) -> Dict[str, Optional[str]]:
        return {
            "kendra_id": self.kendra_id,
            "kendra_type": self.kendra_type,
            "city_id": self.city_id,
        }


@dataclass(frozen=True)
class ReportPage:
    rows: Sequence[Report] = field(default_factory=tuple)
    has_more: bool = False


@dataclass(frozen=True)
class TrendPoint:
    week_start_date: date
    yuva: int
    bhavferni: int
    pravachan: int
    report_count: int = 0

    @property
    def total(self) -> int:
        return self.yuva + self.bhavferni + self.pravachan

    def as_dict(self) -> Dict[str, Any]:
        return {
            "week": self.week_start_date.isoformat(),
            "yuva": self.yuva,
            "bhavferni": self.bhavferni,
            "pravachan": self.pravachan,
            "reportCount": self.report_count,
        }


@dataclass(frozen=True)
class DashboardStats:
    total_reports: int
    avg_yuva_attendance: float
    avg_bhavferni_attendance: float
    avg_pravachan_attendance: float
    active_kendras: Optional[int] = None
    last_week_total: Optional[int] = None

    def as_dict(self) -> Dict[str, Any]:
        """
        JSON-ready view with the camelCase keys the dashboard screens read.

        Scope-specific metrics are omitted rather than sent as ``null``.
        """

        payload: Dict[str, Any] = {
            "totalReports": self.total_reports,
            "avgYuvaAttendance": self.avg_yuva_attendance,
            "avgBhavferniAttendance": self.avg_bhavferni_attendance,
            "avgPravachanAttendance": self.avg_pravachan_attendance,
        }
        if self.active_kendras is not None:
            payload["activeKendras"] = self.active_kendras
        if self.last_week_total is not None:
            payload["lastWeekTotal"] = self.last_week_total
        return payload


def report_as_dict(report: Report) -> Dict[str, Any]:
    kendra = report.kendra
    city = kendra.city if kendra else None
    return {
        "id": report.id,
        "kendra_id": report.kendra_id,
        "week_start_date": report.week_start_date.isoformat(),
        "week_end_date": report.week_end_date.isoformat(),
        "pushp_no": report.pushp_no,
        "yuva_kendra_attendance": report.yuva_kendra_attendance,
        "bhavferni_attendance": report.bhavferni_attendance,
        "pravachan_attendance": report.pravachan_attendance,
        "description": report.description,
        "created_by": report.created_by,
        "created_at": report.created_at.isoformat() if report.created_at else None,
        "kendra": (
            None
            if kendra is None
            else {
                "id": kendra.id,
                "kendra_name": kendra.kendra_name,
                "kendra_type": kendra.kendra_type,
                "city_id": kendra.city_id,
                "city": (
                    None
                    if city is None
                    else {"id": city.id, "city_name": city.city_name, "pin_code": city.pin_code}
                ),
            }
        ),
    }
