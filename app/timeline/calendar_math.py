from __future__ import annotations

import calendar
import datetime
from dataclasses import dataclass
from typing import List

from .errors import InvalidMonth

# Monday of the week holding 1970-01-01; that week is abs-week 0.
EPOCH_MONDAY = datetime.date(1969, 12, 29)
WEEKDAY_TOKENS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


@dataclass(frozen=True)
class CalendarDay:
    date: datetime.date
    in_month: bool

    @property
    def weekday(self) -> int:
        return self.date.weekday()


@dataclass(frozen=True)
class MonthWeek:
    """One Monday-starting row of a month view."""

    abs_week: int
    days: tuple[CalendarDay, ...]

    @property
    def start(self) -> datetime.date:
        return self.days[0].date


def _normalize_week_start(date_value: datetime.date) -> datetime.date:
    """Return the Monday for the provided date."""
    if isinstance(date_value, datetime.datetime):
        date_value = date_value.date()
    return date_value - datetime.timedelta(days=date_value.weekday())


def abs_week_of(date_value: datetime.date) -> int:
    monday = _normalize_week_start(date_value)
    return (monday - EPOCH_MONDAY).days // 7


def week_start(abs_week: int) -> datetime.date:
    return EPOCH_MONDAY + datetime.timedelta(weeks=abs_week)


def _check_month(year: int, month: int) -> None:
    if not 0 <= int(month) <= 11:
        raise InvalidMonth(f"month must be 0-11 (0 = January); got {month}.")
    if not datetime.MINYEAR <= int(year) <= datetime.MAXYEAR:
        raise InvalidMonth(f"year out of range: {year}.")


def first_day(year: int, month: int) -> datetime.date:
    _check_month(year, month)
    return datetime.date(year, month + 1, 1)


def weeks_in_month(year: int, month: int) -> int:
    """Number of Monday-starting rows needed to show the month (4, 5 or 6)."""
    _check_month(year, month)
    lead, days = calendar.monthrange(year, month + 1)
    return (lead + days + 6) // 7


def month_weeks(year: int, month: int) -> List[MonthWeek]:
    """Week rows for a month, padded with the neighbouring months' days."""
    start = first_day(year, month)
    first_abs = abs_week_of(start)
    rows: List[MonthWeek] = []
    for offset in range(weeks_in_month(year, month)):
        abs_week = first_abs + offset
        monday = week_start(abs_week)
        days = tuple(
            CalendarDay(date=day, in_month=(day.year == year and day.month == month + 1))
            for day in (monday + datetime.timedelta(days=i) for i in range(7))
        )
        rows.append(MonthWeek(abs_week=abs_week, days=days))
    return rows


def month_label(year: int, month: int) -> str:
    return first_day(year, month).strftime("%B %Y")


def week_label(abs_week: int) -> str:
    start = week_start(abs_week)
    end = start + datetime.timedelta(days=6)
    start_str = start.strftime("%b %d")
    end_str = end.strftime("%b %d")
    if start.year != end.year:
        start_str = start.strftime("%b %d %Y")
        end_str = end.strftime("%b %d %Y")
    return f"W{abs_week} ({start_str} - {end_str})"
