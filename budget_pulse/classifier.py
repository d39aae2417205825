"""
Budget Classifier
Classifies a category's spending against its budget and period pacing.

Shared by the foreground aggregator and the background worker so both
execution contexts derive identical statuses.

Sign convention: ``spent`` is positive for money leaving the account and
negative for money received. ``actual_amount`` converts it into the
positive progress magnitude the ratios are computed from.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, List, Optional, Sequence

from .models import BudgetProgress, CategorySummary, DEFAULT_WARN_AT_RATIO, Transaction

OVER = "over"
AT_RISK = "at-risk"
ON_TRACK = "on-track"
ALERT_STATUSES = (OVER, AT_RISK)

EPSILON = 0.005
PACE_MARGIN = 0.10
INCOME_LATE_TOLERANCE = 0.05


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return min(high, max(low, value))


def actual_amount(spent: float, is_income: bool) -> float:
    """Positive progress magnitude: amount spent, or amount received for income."""
    if is_income:
        return abs(spent)
    return spent


def classify(
    spent: float,
    budgeted: float,
    elapsed: float,
    warn_at: float = DEFAULT_WARN_AT_RATIO,
    is_income: bool = False,
    recurring_total: float = 0.0,
) -> str:
    """
    Classify spending against a budget.

    Args:
        spent: Signed activity (positive = spending, negative = received)
        budgeted: Budget amount; <= 0 means no budget is set
        elapsed: Fraction of the reporting period that has passed (0..1)
        warn_at: Ratio at which spending is flagged regardless of pacing
        is_income: Whether the category tracks money received
        recurring_total: Known recurring activity still expected this period

    Returns:
        One of "over", "at-risk", "on-track"
    """
    if budgeted <= 0:
        return ON_TRACK

    upcoming = max(0.0, recurring_total or 0.0)

    if is_income:
        progress = _clamp(elapsed)
        tolerance = EPSILON + (1 - progress) * INCOME_LATE_TOLERANCE
        projected_ratio = (max(0.0, actual_amount(spent, True)) + upcoming) / budgeted
        if projected_ratio >= 1 - tolerance:
            return ON_TRACK
        shortfall = max(0.0, 1 - projected_ratio)
        allowed_shortfall = max(0.0, 1 - _clamp(warn_at))
        if shortfall > allowed_shortfall + tolerance:
            return AT_RISK
        return ON_TRACK

    ratio = spent / budgeted
    if ratio > 1 + EPSILON:
        return OVER
    if abs(ratio - 1) <= EPSILON:
        return ON_TRACK
    if ratio >= warn_at or ratio >= elapsed + PACE_MARGIN:
        return AT_RISK
    if upcoming and (spent + upcoming) / budgeted > 1 + EPSILON:
        return AT_RISK
    return ON_TRACK


def progress_ratio(spent: float, budgeted: float, is_income: bool) -> float:
    if budgeted <= 0:
        return 0.0
    return _clamp(actual_amount(spent, is_income) / budgeted)


def build_budget_progress(
    summary: CategorySummary,
    period_key: str,
    elapsed: float,
    warn_at: float = DEFAULT_WARN_AT_RATIO,
) -> BudgetProgress:
    """Build a progress record straight from a summary's period totals."""
    totals = summary.totals_for(period_key)
    budgeted = totals.budgeted if totals else 0.0
    spent = totals.spent if totals else 0.0
    recurring_total = summary.recurring_total
    currency = (totals.currency if totals else None) or summary.config_currency

    return BudgetProgress(
        category_id=summary.category_id,
        category_name=summary.category_name,
        category_group_name=summary.category_group_name,
        group_id=summary.group_id,
        is_group=summary.is_group,
        is_income=summary.is_income,
        exclude_from_budget=summary.exclude_from_budget,
        budget_amount=budgeted,
        budget_currency=currency,
        spent=spent,
        remaining=budgeted - actual_amount(spent, summary.is_income),
        period_key=period_key,
        num_transactions=totals.transaction_count if totals else 0,
        is_automated=totals.is_automated if totals else False,
        recurring_total=recurring_total,
        status=classify(spent, budgeted, elapsed, warn_at, summary.is_income, recurring_total),
        progress_ratio=progress_ratio(spent, budgeted, summary.is_income),
    )


def build_split_progress(
    summary: CategorySummary,
    period_key: str,
    label: str,
    transactions: Sequence[Transaction],
    is_income: bool,
    elapsed: float,
    warn_at: float = DEFAULT_WARN_AT_RATIO,
) -> BudgetProgress:
    """Build one side of the uncategorised split from its transactions."""
    totals = summary.totals_for(period_key)
    budgeted = totals.budgeted if totals else 0.0
    spent = sum(txn.normalized_amount or 0.0 for txn in transactions)
    recurring_total = summary.recurring_total

    return BudgetProgress(
        category_id=summary.category_id,
        category_name=label,
        category_group_name=summary.category_group_name,
        group_id=summary.group_id,
        is_group=False,
        is_income=is_income,
        exclude_from_budget=summary.exclude_from_budget,
        budget_amount=budgeted,
        budget_currency=(totals.currency if totals else None) or summary.config_currency,
        spent=spent,
        remaining=budgeted - actual_amount(spent, is_income),
        period_key=period_key,
        num_transactions=len(transactions),
        is_automated=totals.is_automated if totals else False,
        recurring_total=recurring_total,
        status=classify(spent, budgeted, elapsed, warn_at, is_income, recurring_total),
        progress_ratio=progress_ratio(spent, budgeted, is_income),
        transactions=tuple(transactions),
    )


def reclassify(
    item: BudgetProgress,
    recurring_total: float,
    elapsed: float,
    warn_at: float = DEFAULT_WARN_AT_RATIO,
) -> BudgetProgress:
    """Return a copy of ``item`` re-derived with a new recurring total."""
    return replace(
        item,
        recurring_total=recurring_total,
        remaining=item.budget_amount - actual_amount(item.spent, item.is_income),
        status=classify(item.spent, item.budget_amount, elapsed, warn_at, item.is_income, recurring_total),
    )


def rank_budget_progress(
    items: Iterable[BudgetProgress],
    custom_order: Optional[Sequence[Optional[int]]] = None,
) -> List[BudgetProgress]:
    """
    Order items by a user-chosen category order.

    Items missing from ``custom_order`` keep their relative API order after
    the ordered ones.
    """
    items = list(items)
    if not custom_order:
        return items

    positions = {category_id: index for index, category_id in enumerate(custom_order)}
    unordered = len(positions)
    return sorted(items, key=lambda item: positions.get(item.category_id, unordered))
