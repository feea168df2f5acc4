"""
Week and fiscal-year arithmetic for weekly reports.

Weeks start on Monday. Pushp numbers count weeks from ``EPOCH`` (number 1).
The fiscal year is anchored to July 12 rather than January 1.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Optional, Union

from .errors import InvalidInputError
from .models import DateRange

DateLike = Union[date, datetime, str]

# Monday following the July 12, 2024 reference date.
EPOCH = date(2024, 7, 15)
FISCAL_YEAR_MONTH = 7
FISCAL_YEAR_DAY = 12


def parse_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError as exc:
            raise InvalidInputError(f"Malformed date: {value!r}", kind="malformed_date") from exc
    raise InvalidInputError(f"Unsupported date value: {value!r}", kind="malformed_date")


def _today(today: Optional[DateLike]) -> date:
    return date.today() if today is None else parse_date(today)


def week_start(value: DateLike) -> date:
    """Monday of the ISO week containing ``value``; Sundays close the previous week."""

    day = parse_date(value)
    return day - timedelta(days=day.weekday())


def week_end(week_start_date: DateLike) -> date:
    return parse_date(week_start_date) + timedelta(days=6)


def period_number(week_start_date: DateLike) -> int:
    # floor division keeps pre-epoch weeks at zero or below
    return (parse_date(week_start_date) - EPOCH).days // 7 + 1


def current_week_start(today: Optional[DateLike] = None) -> date:
    return week_start(_today(today))


def previous_week_start(today: Optional[DateLike] = None) -> date:
    return week_start(_today(today) - timedelta(days=7))


def is_week_start(value: DateLike) -> bool:
    return parse_date(value).weekday() == 0


def is_reportable_week(week_start_date: DateLike, today: Optional[DateLike] = None) -> bool:
    """
    True for the current week's Monday and the one before it.

    Only new reports are gated by this; edits to existing reports are not.
    """

    candidate = parse_date(week_start_date)
    return candidate in (current_week_start(today), previous_week_start(today))


def _fiscal_anchor(year: int) -> date:
    return date(year, FISCAL_YEAR_MONTH, FISCAL_YEAR_DAY)


def current_fiscal_year_start(today: Optional[DateLike] = None) -> date:
    current = _today(today)
    anchor = _fiscal_anchor(current.year)
    if current < anchor:
        return _fiscal_anchor(current.year - 1)
    return anchor


def current_fiscal_year_end(today: Optional[DateLike] = None) -> date:
    start = current_fiscal_year_start(today)
    return _fiscal_anchor(start.year + 1) - timedelta(days=1)


def previous_fiscal_year_start(today: Optional[DateLike] = None) -> date:
    return _fiscal_anchor(current_fiscal_year_start(today).year - 1)


def previous_fiscal_year_end(today: Optional[DateLike] = None) -> date:
    return current_fiscal_year_start(today) - timedelta(days=1)


def fiscal_year_bounds(today: Optional[DateLike] = None, previous: bool = False) -> DateRange:
    if previous:
        return DateRange(start=previous_fiscal_year_start(today), end=previous_fiscal_year_end(today))
    return DateRange(start=current_fiscal_year_start(today), end=current_fiscal_year_end(today))
