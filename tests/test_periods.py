from datetime import date, datetime, timedelta

import pytest

from kendra_reports.errors import InvalidInputError
from kendra_reports.periods import (
    EPOCH,
    current_fiscal_year_end,
    current_fiscal_year_start,
    fiscal_year_bounds,
    is_reportable_week,
    parse_date,
    period_number,
    previous_fiscal_year_end,
    previous_fiscal_year_start,
    previous_week_start,
    week_end,
    week_start,
)


def test_week_start_is_idempotent_monday():
    day = date(2023, 12, 20)
    for offset in range(400):
        candidate = day + timedelta(days=offset)
        start = week_start(candidate)
        assert start.weekday() == 0
        assert week_start(start) == start
        assert start <= candidate < start + timedelta(days=7)


def test_sunday_closes_previous_week():
    assert week_start(date(2025, 1, 12)) == date(2025, 1, 6)
    assert week_start(date(2025, 1, 13)) == date(2025, 1, 13)


def test_week_start_accepts_strings_and_datetimes():
    assert week_start("2025-01-08") == date(2025, 1, 6)
    assert week_start(datetime(2025, 1, 8, 23, 59)) == date(2025, 1, 6)


def test_week_end_is_six_days_later():
    assert week_end(date(2024, 12, 30)) == date(2025, 1, 5)


def test_epoch_is_a_monday_with_period_one():
    assert EPOCH.weekday() == 0
    assert period_number(EPOCH) == 1


def test_period_number_increments_weekly():
    week = EPOCH - timedelta(weeks=10)
    for _ in range(60):
        assert period_number(week + timedelta(days=7)) == period_number(week) + 1
        week += timedelta(days=7)


def test_period_number_before_epoch_is_not_clamped():
    assert period_number(EPOCH - timedelta(days=7)) == 0
    assert period_number(EPOCH - timedelta(days=14)) == -1
    # a non-Monday just before the epoch still floors down
    assert period_number(EPOCH - timedelta(days=1)) == 0


def test_period_number_matches_july_reference_numbering():
    assert period_number(date(2024, 7, 22)) == 2
    assert period_number(date(2025, 7, 14)) == 53


def test_malformed_date_is_rejected():
    with pytest.raises(InvalidInputError) as excinfo:
        week_start("2025-13-40")
    assert excinfo.value.kind == "malformed_date"

    with pytest.raises(InvalidInputError):
        parse_date(20250106)


def test_fiscal_year_before_cutover():
    today = date(2025, 6, 1)
    assert current_fiscal_year_start(today) == date(2024, 7, 12)
    assert current_fiscal_year_end(today) == date(2025, 7, 11)
    assert previous_fiscal_year_start(today) == date(2023, 7, 12)
    assert previous_fiscal_year_end(today) == date(2024, 7, 11)


def test_fiscal_year_after_cutover():
    today = date(2025, 8, 1)
    assert current_fiscal_year_start(today) == date(2025, 7, 12)
    assert current_fiscal_year_end(today) == date(2026, 7, 11)
    assert previous_fiscal_year_start(today) == date(2024, 7, 12)
    assert previous_fiscal_year_end(today) == date(2025, 7, 11)


def test_fiscal_year_cutover_day_belongs_to_new_year():
    assert current_fiscal_year_start(date(2025, 7, 12)) == date(2025, 7, 12)
    assert current_fiscal_year_start(date(2025, 7, 11)) == date(2024, 7, 12)


def test_fiscal_year_bounds():
    bounds = fiscal_year_bounds(date(2025, 6, 1), previous=True)
    assert (bounds.start, bounds.end) == (date(2023, 7, 12), date(2024, 7, 11))


def test_reportable_weeks_are_current_and_previous():
    today = date(2025, 1, 15)  # Wednesday
    assert previous_week_start(today) == date(2025, 1, 6)
    assert is_reportable_week(date(2025, 1, 13), today)
    assert is_reportable_week(date(2025, 1, 6), today)
    assert not is_reportable_week(date(2024, 12, 30), today)
    assert not is_reportable_week(date(2025, 1, 20), today)


def test_reportable_week_on_a_sunday():
    today = date(2025, 1, 19)
    assert is_reportable_week(date(2025, 1, 13), today)
    assert is_reportable_week(date(2025, 1, 6), today)
    assert not is_reportable_week(date(2025, 1, 20), today)
