from datetime import date

import pytest
from freezegun import freeze_time

from budget_pulse.dates import (
    DateWindow,
    derive_reference_date,
    elapsed_fraction,
    month_window,
    parse_day,
    shift_window,
    window_from_iso,
)

OCTOBER = DateWindow(date(2025, 10, 1), date(2025, 10, 31))


class TestWindows:
    def test_month_window(self):
        assert month_window(date(2024, 2, 10)) == DateWindow(date(2024, 2, 1), date(2024, 2, 29))

    @freeze_time("2025-10-19 09:30:00")
    def test_month_window_defaults_to_today(self):
        assert month_window() == OCTOBER

    def test_window_from_iso(self):
        assert window_from_iso("2025-10-01", "2025-10-31") == OCTOBER
        assert window_from_iso("2025-10-31", "2025-10-01") is None
        assert window_from_iso("bad", "2025-10-01") is None

    def test_parse_day_accepts_timestamps(self):
        assert parse_day("2025-10-06T12:00:00Z") == date(2025, 10, 6)
        assert parse_day(None) is None

    def test_shift_calendar_month(self):
        assert shift_window(OCTOBER, -1) == DateWindow(date(2025, 9, 1), date(2025, 9, 30))
        assert shift_window(OCTOBER, 1) == DateWindow(date(2025, 11, 1), date(2025, 11, 30))

    def test_shift_custom_period_by_its_length(self):
        fortnight = DateWindow(date(2025, 10, 1), date(2025, 10, 14))
        assert shift_window(fortnight, 1) == DateWindow(date(2025, 10, 15), date(2025, 10, 28))


class TestElapsed:
    def test_counts_today(self):
        assert elapsed_fraction(OCTOBER, date(2025, 10, 1)) == pytest.approx(1 / 31)
        assert elapsed_fraction(OCTOBER, date(2025, 10, 31)) == 1.0

    def test_clamped_outside_window(self):
        assert elapsed_fraction(OCTOBER, date(2025, 9, 20)) == 0.0
        assert elapsed_fraction(OCTOBER, date(2025, 12, 1)) == 1.0

    def test_reference_date(self):
        assert derive_reference_date(OCTOBER, date(2025, 9, 20)) == date(2025, 10, 1)
        assert derive_reference_date(OCTOBER, date(2025, 10, 12)) == date(2025, 10, 12)
        assert derive_reference_date(OCTOBER, date(2025, 12, 1)) == date(2025, 11, 1)
