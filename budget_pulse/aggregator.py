"""
Budget Aggregator
Combines category summaries, uncategorised transactions and projected
recurring expenses into per-category progress records.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import List, Optional, Sequence, Set, Tuple

from .api_client import BudgetApiClient, merge_summaries_with_categories
from .classifier import build_budget_progress, build_split_progress, reclassify
from .dates import DateWindow, derive_reference_date, elapsed_fraction
from .errors import AggregationError, BudgetPulseError
from .models import BudgetProgress, CategorySummary, DEFAULT_WARN_AT_RATIO, RecurringExpense, Transaction
from .occurrence import group_by_category, pending_total

LOGGER = logging.getLogger(__name__)

UNCATEGORISED_EXPENSES_LABEL = "Uncategorised Expenses"
UNCATEGORISED_INCOME_LABEL = "Uncategorised Income"
_UNCATEGORISED_NAMES = ("uncategorized", "uncategorised")


def is_uncategorised(summary: CategorySummary) -> bool:
    """Whether a summary is the catch-all row that should be split by sign."""
    name = (summary.category_name or "").strip().lower()
    has_qualifier = "income" in name or "expense" in name
    return (summary.category_id is None or name in _UNCATEGORISED_NAMES) and not has_qualifier


def split_uncategorised(
    summary: CategorySummary,
    transactions: Optional[Sequence[Transaction]],
    period_key: str,
    elapsed: float,
    warn_at: float = DEFAULT_WARN_AT_RATIO,
) -> List[BudgetProgress]:
    """
    Split the uncategorised row into an expense record and an income record.

    Falls back to a single record built from the summary totals when no
    transaction qualifies (including when the transaction fetch failed).
    """
    expenses: List[Transaction] = []
    incomes: List[Transaction] = []
    for transaction in transactions or ():
        amount = transaction.normalized_amount
        if amount is None:
            continue
        if amount > 0:
            expenses.append(transaction)
        elif amount < 0:
            incomes.append(transaction)

    records = []
    if expenses:
        records.append(
            build_split_progress(
                summary, period_key, UNCATEGORISED_EXPENSES_LABEL, expenses, False, elapsed, warn_at
            )
        )
    if incomes:
        records.append(
            build_split_progress(
                summary, period_key, UNCATEGORISED_INCOME_LABEL, incomes, True, elapsed, warn_at
            )
        )
    if not records:
        records.append(build_budget_progress(summary, period_key, elapsed, warn_at))
    return records


def prefer_leaf_categories(items: Sequence[BudgetProgress]) -> List[BudgetProgress]:
    """Drop group rollups whenever leaf-level budgets exist."""
    has_leaf_budgets = any(item.category_id is not None and not item.is_group for item in items)
    if has_leaf_budgets:
        return [item for item in items if not item.is_group]
    return list(items)


def apply_recurring(
    items: Sequence[BudgetProgress],
    expenses: Sequence[RecurringExpense],
    window: DateWindow,
    reference_date: date,
    elapsed: float,
    warn_at: float = DEFAULT_WARN_AT_RATIO,
) -> List[BudgetProgress]:
    """Re-derive records that have recurring expenses still pending in the window."""
    if not expenses:
        return list(items)

    assigned, _ = group_by_category(expenses, window=window, reference_date=reference_date)
    posted: Set[int] = {
        txn.recurring_id for item in items for txn in item.transactions if txn.recurring_id is not None
    }

    updated = []
    for item in items:
        instances = assigned.get(item.category_id) if item.category_id is not None else None
        if instances is None:
            updated.append(item)
            continue
        total = pending_total(instances, window, posted)
        # Fully posted categories keep the summary's recurring hint
        updated.append(reclassify(item, total if total > 0 else item.recurring_total, elapsed, warn_at))
    return updated


class BudgetAggregator:
    """Builds the progress list for a reporting window."""

    def __init__(
        self,
        client: BudgetApiClient,
        warn_at: float = DEFAULT_WARN_AT_RATIO,
        transaction_status: Optional[str] = None,
    ) -> None:
        self.client = client
        self.warn_at = warn_at
        self.transaction_status = transaction_status
        self.recurring_expenses: List[RecurringExpense] = []
        self.group_rollups: List[BudgetProgress] = []

    async def _fetch_inputs(
        self, window: DateWindow
    ) -> Tuple[List[CategorySummary], List[RecurringExpense]]:
        summaries, recurring, categories = await asyncio.gather(
            self.client.get_budget_summaries(window.start_iso, window.end_iso),
            self.client.get_recurring_expenses(window.start_iso),
            self.client.get_categories(),
            return_exceptions=True,
        )

        if isinstance(summaries, BaseException):
            LOGGER.error("Failed to fetch budget summaries for %s..%s: %s", window.start_iso, window.end_iso, summaries)
            raise AggregationError("Failed to load budget summaries") from summaries

        if isinstance(recurring, BaseException):
            LOGGER.warning("Failed to load recurring expenses: %s", recurring)
            recurring = []

        if isinstance(categories, BaseException):
            LOGGER.warning("Failed to load category metadata: %s", categories)
        elif categories:
            summaries = merge_summaries_with_categories(summaries, categories)

        return summaries, recurring

    async def _split_uncategorised(
        self,
        summary: CategorySummary,
        window: DateWindow,
        elapsed: float,
    ) -> List[BudgetProgress]:
        try:
            transactions = await self.client.get_transactions(
                summary.category_id,
                window.start_iso,
                window.end_iso,
                status=self.transaction_status,
            )
        except BudgetPulseError as exc:
            LOGGER.warning("Failed to fetch uncategorised transactions, using summary totals: %s", exc)
            transactions = None
        return split_uncategorised(summary, transactions, window.start_iso, elapsed, self.warn_at)

    async def aggregate(self, window: DateWindow, today: Optional[date] = None) -> List[BudgetProgress]:
        """
        Run one aggregation pass.

        Raises:
            AggregationError: when the summaries cannot be fetched
        """
        period_key = window.start_iso
        elapsed = elapsed_fraction(window, today)
        reference_date = derive_reference_date(window, today)

        summaries, recurring = await self._fetch_inputs(window)
        self.recurring_expenses = recurring

        regular: List[BudgetProgress] = []
        uncategorised: Optional[CategorySummary] = None
        for summary in summaries:
            if is_uncategorised(summary):
                if uncategorised is None:
                    uncategorised = summary
                continue
            regular.append(build_budget_progress(summary, period_key, elapsed, self.warn_at))

        derived: List[BudgetProgress] = []
        if uncategorised is not None:
            derived = await self._split_uncategorised(uncategorised, window, elapsed)

        self.group_rollups = [item for item in regular if item.is_group and not item.exclude_from_budget]
        items = prefer_leaf_categories(regular + derived)
        items = [item for item in items if not item.exclude_from_budget]
        items = apply_recurring(items, recurring, window, reference_date, elapsed, self.warn_at)

        LOGGER.info("Aggregated %d categories for %s..%s", len(items), window.start_iso, window.end_iso)
        return items

