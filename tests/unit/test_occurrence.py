from datetime import date

import pytest

from budget_pulse.cadence import CalendarStep, resolve_cadence
from budget_pulse.dates import DateWindow
from budget_pulse.models import RecurringExpense
from budget_pulse.occurrence import (
    RecurringInstance,
    group_by_category,
    has_found_transaction,
    pending_total,
    project_expense,
    project_occurrence,
)

OCTOBER = DateWindow(date(2025, 10, 1), date(2025, 10, 31))
MONTHLY = CalendarStep(months=1)


def make_expense(expense_id=1, cadence="monthly", **overrides):
    values = dict(id=expense_id, payee=f"Payee {expense_id}", amount=50.0, cadence=cadence)
    values.update(overrides)
    return RecurringExpense(**values)


class TestProjectOccurrence:
    """Next pending occurrence inside a window"""

    def test_anchor_before_window_steps_forward(self):
        assert project_occurrence(date(2025, 9, 1), MONTHLY, OCTOBER) == date(2025, 10, 1)

    def test_anchor_after_window_is_none(self):
        assert project_occurrence(date(2025, 11, 1), MONTHLY, OCTOBER) is None

    def test_passed_occurrence_with_next_outside_window_is_none(self):
        result = project_occurrence(date(2025, 10, 6), MONTHLY, OCTOBER, reference_date=date(2025, 10, 12))
        assert result is None

    def test_no_anchor_is_none(self):
        assert project_occurrence(None, MONTHLY, OCTOBER) is None

    def test_reference_date_steps_within_window(self):
        weekly = CalendarStep(weeks=1)
        result = project_occurrence(date(2025, 10, 3), weekly, OCTOBER, reference_date=date(2025, 10, 12))
        assert result == date(2025, 10, 17)

    def test_occurrence_on_reference_date_is_pending(self):
        result = project_occurrence(date(2025, 10, 12), MONTHLY, OCTOBER, reference_date=date(2025, 10, 12))
        assert result == date(2025, 10, 12)

    def test_month_end_anchor_clamps_into_short_month(self):
        february = DateWindow(date(2025, 2, 1), date(2025, 2, 28))
        assert project_occurrence(date(2025, 1, 31), MONTHLY, february) == date(2025, 2, 28)

    def test_unknown_cadence_aligns_to_window_month(self):
        assert project_occurrence(date(2025, 8, 15), None, OCTOBER) == date(2025, 10, 15)

    def test_unknown_cadence_keeps_aligned_date_before_reference(self):
        result = project_occurrence(date(2025, 8, 15), None, OCTOBER, reference_date=date(2025, 10, 20))
        assert result == date(2025, 10, 15)

    def test_unknown_cadence_in_window_before_reference_is_none(self):
        result = project_occurrence(date(2025, 10, 5), None, OCTOBER, reference_date=date(2025, 10, 10))
        assert result is None

    def test_without_window_only_reference_applies(self):
        result = project_occurrence(date(2025, 10, 1), MONTHLY, reference_date=date(2025, 10, 15))
        assert result == date(2025, 11, 1)

    def test_far_past_anchor_is_bounded(self):
        """Stepping gives up after a bounded number of steps and re-aligns"""
        result = project_occurrence(date(1900, 1, 1), CalendarStep(days=1), OCTOBER)
        assert result == date(2025, 10, 1)

    def test_zero_step_behaves_like_unknown_cadence(self):
        assert project_occurrence(date(2025, 9, 9), CalendarStep(), OCTOBER) == date(2025, 10, 9)

    @pytest.mark.parametrize("cadence", ["every 10000 years", "every 99999999 weeks", "every 99999999999 days"])
    def test_step_past_calendar_end_is_none(self, cadence):
        result = project_occurrence(
            date(2025, 9, 1), resolve_cadence(cadence), OCTOBER, reference_date=date(2025, 10, 12)
        )
        assert result is None

    def test_step_past_calendar_end_without_window(self):
        step = resolve_cadence("every 10000 years")
        assert project_occurrence(date(2025, 10, 1), step, reference_date=date(2025, 10, 15)) is None



class TestProjectExpense:
    def test_uses_anchor_priority(self):
        expense = make_expense(
            next_occurrence=date(2025, 10, 20),
            billing_date=date(2025, 9, 5),
            start_date=date(2024, 1, 1),
        )
        instance = project_expense(expense, OCTOBER)
        assert instance.occurrence_date == date(2025, 10, 20)

    def test_ended_expense_is_skipped(self):
        expense = make_expense(billing_date=date(2025, 9, 5), end_date=date(2025, 9, 30))
        assert project_expense(expense, OCTOBER) is None

    def test_not_yet_started_expense_is_skipped(self):
        expense = make_expense(billing_date=date(2025, 9, 5), start_date=date(2025, 11, 1))
        assert project_expense(expense, OCTOBER) is None

    def test_from_dict_builds_cadence_from_granularity(self):
        expense = RecurringExpense.from_dict(
            {"id": 7, "payee": "Gym", "amount": "40.00", "granularity": "week", "quantity": 2,
             "billing_date": "2025-09-26"}
        )
        instance = project_expense(expense, OCTOBER)
        assert expense.cadence == "2 week"
        assert instance.occurrence_date == date(2025, 10, 10)


class TestFoundTransactions:
    def test_posted_recurring_id_counts(self):
        instance = RecurringInstance(make_expense(5), date(2025, 10, 10))
        assert has_found_transaction(instance, OCTOBER, {5})
        assert not has_found_transaction(instance, OCTOBER, {6})

    def test_found_date_must_be_in_window(self):
        inside = RecurringInstance(make_expense(found_transactions=(date(2025, 10, 2),)), date(2025, 10, 2))
        outside = RecurringInstance(make_expense(found_transactions=(date(2025, 9, 2),)), date(2025, 10, 2))
        assert has_found_transaction(inside, OCTOBER)
        assert not has_found_transaction(outside, OCTOBER)


class TestGrouping:
    def test_group_by_category_sorts_each_bucket(self):
        expenses = [
            make_expense(1, billing_date=date(2025, 10, 20), category_id=3),
            make_expense(2, billing_date=date(2025, 10, 5), category_id=3),
            make_expense(3, billing_date=date(2025, 10, 9)),
            make_expense(4, billing_date=date(2025, 12, 1), category_id=3),
        ]
        assigned, unassigned = group_by_category(expenses, OCTOBER)

        assert [item.expense.id for item in assigned[3]] == [2, 1]
        assert [item.expense.id for item in unassigned] == [3]

    def test_group_by_category_skips_cadence_past_calendar_end(self):
        expenses = [
            make_expense(1, cadence="every 10000 years", billing_date=date(2025, 9, 1), category_id=3),
            make_expense(2, billing_date=date(2025, 10, 20), category_id=3),
        ]
        assigned, unassigned = group_by_category(expenses, OCTOBER, reference_date=date(2025, 10, 12))

        assert [item.expense.id for item in assigned[3]] == [2]
        assert unassigned == []

    def test_pending_total_skips_found_and_uses_absolute_amounts(self):
        instances = [
            RecurringInstance(make_expense(1, amount=-30.0), date(2025, 10, 20)),
            RecurringInstance(make_expense(2, amount=45.5), date(2025, 10, 21)),
            RecurringInstance(make_expense(3, amount=100.0), date(2025, 10, 22)),
        ]
        assert pending_total(instances, OCTOBER, {3}) == pytest.approx(75.5)
