"""
Occurrence Projector
Works out the single next pending date of a recurring expense inside a
reporting window. This is a forgiving heuristic, not recurrence-rule
evaluation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .cadence import CalendarStep, add_step, align_to_month, resolve_cadence
from .dates import DateWindow
from .models import RecurringExpense

LOGGER = logging.getLogger(__name__)

# Hard bound on forward stepping so malformed dates/cadences always terminate
MAX_PROJECTION_STEPS = 60


@dataclass(frozen=True)
class RecurringInstance:
    """A recurring expense paired with one concrete occurrence date."""

    expense: RecurringExpense
    occurrence_date: date


def _advance(anchor: date, step: CalendarStep, times: int) -> Optional[date]:
    """``add_step``, or None once the result leaves the representable date range."""
    try:
        return add_step(anchor, step, times)
    except (ValueError, OverflowError):
        LOGGER.debug("Cadence %s from %s runs past the calendar after %d steps", step, anchor, times)
        return None


def _step_until(anchor: date, step: CalendarStep, floor: date) -> Optional[date]:
    projected = anchor
    steps = 0
    while projected < floor and steps < MAX_PROJECTION_STEPS:
        steps += 1
        projected = _advance(anchor, step, steps)
        if projected is None:
            return None
    return projected


def project_occurrence(
    anchor: Optional[date],
    step: Optional[CalendarStep],
    window: Optional[DateWindow] = None,
    reference_date: Optional[date] = None,
) -> Optional[date]:
    """
    Project the next occurrence of a recurring expense.

    Args:
        anchor: Last known occurrence date
        step: Resolved cadence, or None when the cadence was unrecognised
        window: Optional inclusive reporting window
        reference_date: Optional "today"; occurrences before it are history

    Returns:
        The next occurrence, or None if nothing falls where it should
    """
    if anchor is None:
        return None

    if step is not None and step.is_zero():
        step = None

    candidate = anchor
    adjusted = False

    if window is not None:
        if candidate > window.end:
            return None

        if candidate < window.start:
            if step is not None:
                projected = _step_until(anchor, step, window.start)
                if projected is not None and window.contains(projected):
                    candidate = projected
                    adjusted = True

            if not adjusted:
                aligned = align_to_month(anchor, window.start)
                if window.contains(aligned):
                    candidate = aligned
                    adjusted = True

            if not adjusted:
                return None

    if reference_date is not None and candidate < reference_date:
        if step is None:
            return candidate if adjusted else None

        base = candidate
        for steps in range(1, MAX_PROJECTION_STEPS + 1):
            projected = _advance(base, step, steps)
            if projected is None:
                return None
            if window is not None and projected > window.end:
                return None
            if projected >= reference_date:
                return projected
        LOGGER.debug("Projection for anchor %s exhausted %d steps", anchor, MAX_PROJECTION_STEPS)
        return None

    return candidate


def is_active_in_window(expense: RecurringExpense, window: DateWindow) -> bool:
    if expense.end_date is not None and expense.end_date < window.start:
        return False
    if expense.start_date is not None and expense.start_date > window.end:
        return False
    return True


def project_expense(
    expense: RecurringExpense,
    window: Optional[DateWindow] = None,
    reference_date: Optional[date] = None,
) -> Optional[RecurringInstance]:
    """Resolve an expense's cadence and project it into the window."""
    if window is not None and not is_active_in_window(expense, window):
        return None
    occurrence = project_occurrence(
        expense.anchor,
        resolve_cadence(expense.cadence),
        window=window,
        reference_date=reference_date,
    )
    if occurrence is None:
        return None
    return RecurringInstance(expense=expense, occurrence_date=occurrence)


def has_found_transaction(
    instance: RecurringInstance,
    window: Optional[DateWindow] = None,
    posted_recurring_ids: Optional[Set[int]] = None,
) -> bool:
    """True when the occurrence is already represented by a posted transaction."""
    if posted_recurring_ids and instance.expense.id in posted_recurring_ids:
        return True
    for found_date in instance.expense.found_transactions:
        if window is None or window.contains(found_date):
            return True
    return False


def group_by_category(
    expenses: Iterable[RecurringExpense],
    window: Optional[DateWindow] = None,
    reference_date: Optional[date] = None,
) -> Tuple[Dict[int, List[RecurringInstance]], List[RecurringInstance]]:
    """
    Project every expense and bucket the instances by category.

    Returns:
        (assigned, unassigned); each list is sorted by occurrence date
    """
    assigned: Dict[int, List[RecurringInstance]] = {}
    unassigned: List[RecurringInstance] = []

    for expense in expenses:
        instance = project_expense(expense, window=window, reference_date=reference_date)
        if instance is None:
            continue
        if expense.category_id is not None:
            assigned.setdefault(expense.category_id, []).append(instance)
        else:
            unassigned.append(instance)

    for instances in assigned.values():
        instances.sort(key=lambda item: item.occurrence_date)
    unassigned.sort(key=lambda item: item.occurrence_date)
    return assigned, unassigned


def pending_total(
    instances: Iterable[RecurringInstance],
    window: Optional[DateWindow] = None,
    posted_recurring_ids: Optional[Set[int]] = None,
) -> float:
    """Sum of absolute amounts of instances not yet represented by a transaction."""
    return sum(
        abs(instance.expense.normalized_amount)
        for instance in instances
        if not has_found_transaction(instance, window, posted_recurring_ids)
    )
