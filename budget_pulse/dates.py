"""Reporting-window helpers shared by the foreground and background pipelines."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Union

from .cadence import CalendarStep, add_step, last_day_of_month

DateLike = Union[date, datetime, str, None]


@dataclass(frozen=True)
class DateWindow:
    """Inclusive ``[start, end]`` day range."""

    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end

    @property
    def total_days(self) -> int:
        return (self.end - self.start).days + 1

    @property
    def start_iso(self) -> str:
        return to_iso_date(self.start)

    @property
    def end_iso(self) -> str:
        return to_iso_date(self.end)

    @property
    def is_calendar_month(self) -> bool:
        return (
            self.start.day == 1
            and self.start.year == self.end.year
            and self.start.month == self.end.month
            and self.end.day == last_day_of_month(self.end.year, self.end.month)
        )


def parse_day(value: DateLike) -> Optional[date]:
    """Parse an ISO date/datetime string (or date object) to a calendar day."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def to_iso_date(value: date) -> str:
    return value.strftime("%Y-%m-%d")


def month_window(today: Optional[date] = None) -> DateWindow:
    """Calendar month containing ``today``."""
    today = parse_day(today) or date.today()
    start = today.replace(day=1)
    end = today.replace(day=last_day_of_month(today.year, today.month))
    return DateWindow(start, end)


def window_from_iso(start: DateLike, end: DateLike) -> Optional[DateWindow]:
    start_day = parse_day(start)
    end_day = parse_day(end)
    if start_day is None or end_day is None or start_day > end_day:
        return None
    return DateWindow(start_day, end_day)


def elapsed_fraction(window: DateWindow, today: Optional[date] = None) -> float:
    """
    Fraction of the window that has passed, counting today as elapsed.

    Returns 0 before the window starts and 1 once it has ended.
    """
    today = parse_day(today) or date.today()
    elapsed_days = (today - window.start).days + 1
    return min(1.0, max(0.0, elapsed_days / window.total_days))


def derive_reference_date(window: DateWindow, today: Optional[date] = None) -> date:
    """
    Pick the "as-of" day used to decide which recurring occurrences are
    still pending: window start for future windows, the day after the
    window for past windows, otherwise today.
    """
    today = parse_day(today) or date.today()
    if today < window.start:
        return window.start
    if today > window.end:
        return window.end + timedelta(days=1)
    return today


def shift_window(window: DateWindow, direction: int) -> DateWindow:
    """Move a window backwards (-1) or forwards (+1) by its own length."""
    if window.is_calendar_month:
        start = add_step(window.start, CalendarStep(months=1), direction)
        return month_window(start)
    length = timedelta(days=window.total_days)
    start = window.start + length * direction
    return DateWindow(start, start + length - timedelta(days=1))
