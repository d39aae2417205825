"""
Cadence Resolver
Turns free-text recurrence descriptions ("monthly", "every 2 weeks",
"semi-monthly") into a calendar step and applies that step to dates.
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

_NUMBER_PATTERN = re.compile(r"(\d+)")


@dataclass(frozen=True)
class CalendarStep:
    """A calendar distance; usually exactly one field is non-zero."""

    years: int = 0
    months: int = 0
    weeks: int = 0
    days: int = 0

    def is_zero(self) -> bool:
        return not (self.years or self.months or self.weeks or self.days)

    def scaled(self, factor: int) -> "CalendarStep":
        return CalendarStep(
            years=self.years * factor,
            months=self.months * factor,
            weeks=self.weeks * factor,
            days=self.days * factor,
        )


def resolve_cadence(cadence: Optional[str]) -> Optional[CalendarStep]:
    """
    Resolve a cadence description into a calendar step.

    Args:
        cadence: Free text such as "monthly", "1 month", "bi-weekly"

    Returns:
        The step, or None when the text matches no known pattern. None is
        not an error: callers fall back to window-membership-only logic.
    """
    if not cadence:
        return None

    normalized = cadence.strip().lower()
    if not normalized:
        return None

    number_match = _NUMBER_PATTERN.search(normalized)
    explicit = number_match is not None
    magnitude = (int(number_match.group(1)) or 1) if number_match else 1

    if "quarter" in normalized:
        return CalendarStep(months=magnitude * 3)

    if "year" in normalized or "annual" in normalized:
        return CalendarStep(years=magnitude)

    if "month" in normalized:
        if not explicit:
            if "other" in normalized or "bi" in normalized:
                return CalendarStep(months=2)
            # Semi-monthly billing approximated as a fixed 15 day step
            if "semi" in normalized or "twice" in normalized:
                return CalendarStep(days=15)
        return CalendarStep(months=magnitude)

    if "week" in normalized:
        if not explicit and "bi" in normalized:
            return CalendarStep(weeks=2)
        return CalendarStep(weeks=magnitude)

    if "day" in normalized:
        if not explicit and "bi" in normalized:
            return CalendarStep(days=2)
        return CalendarStep(days=magnitude)

    return None


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _shift_months(value: date, months: int) -> date:
    month_index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(value.day, last_day_of_month(year, month))
    return value.replace(year=year, month=month, day=day)


def add_step(value: date, step: CalendarStep, times: int = 1) -> date:
    """
    Move a date forward by ``times`` steps.

    Year and month components clamp to the last valid day of the target
    month (Jan 31 + 1 month = Feb 28/29). Stepping is computed from the
    original date, so repeated clamping never drifts the day-of-month.
    """
    months = (step.years * 12 + step.months) * times
    result = _shift_months(value, months) if months else value
    extra_days = (step.weeks * 7 + step.days) * times
    if extra_days:
        result = result + timedelta(days=extra_days)
    return result


def subtract_step(value: date, step: CalendarStep, times: int = 1) -> date:
    return add_step(value, step, -times)


def align_to_month(value: date, month_start: date) -> date:
    """Re-anchor ``value``'s day-of-month onto ``month_start``'s month."""
    last_day = last_day_of_month(month_start.year, month_start.month)
    return month_start.replace(day=min(value.day, last_day))
