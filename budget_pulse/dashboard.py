"""
Foreground dashboard state: the reporting window, user category preferences
and the latest successful progress list. Every input change triggers a
recompute through the aggregator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from .aggregator import BudgetAggregator
from .channel import BackgroundSyncClient
from .classifier import rank_budget_progress
from .dates import derive_reference_date, elapsed_fraction, month_window, shift_window, window_from_iso
from .errors import AggregationError, UpstreamError
from .models import DEFAULT_WARN_AT_RATIO, BudgetProgress, Preferences, normalize_currency
from .occurrence import RecurringInstance, group_by_category
from .store import JsonFileStore

LOGGER = logging.getLogger(__name__)

PREFERENCES_KEY = "category_preferences"
PREFERENCES_SCHEMA_VERSION = 1
DEFAULT_CURRENCY = "USD"

AUTH_ERROR_MESSAGE = (
    "Authentication failed. Your Budget API key may be missing, expired, or invalid. "
    "Sign in again with a different API key."
)
RATE_LIMIT_MESSAGE = "The Budget API is rate-limiting requests right now. Please wait a moment and retry."
GENERIC_ERROR_MESSAGE = "Failed to load budget data. Showing the last loaded figures."


@dataclass
class CategoryPreferences:
    custom_order: List[Optional[int]] = field(default_factory=list)
    hidden_category_ids: List[Optional[int]] = field(default_factory=list)
    collapse_groups: bool = False
    notifications_enabled: bool = False
    warn_at_ratio: float = DEFAULT_WARN_AT_RATIO
    currency: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "customOrder": list(self.custom_order),
            "hiddenCategoryIds": list(self.hidden_category_ids),
            "hideGroupedCategories": self.collapse_groups,
            "notificationsEnabled": self.notifications_enabled,
            "warnAtRatio": self.warn_at_ratio,
            "currency": self.currency,
        }

    @classmethod
    def from_dict(cls, payload: Optional[Dict[str, Any]]) -> "CategoryPreferences":
        """Accepts both the versioned envelope and a bare preferences dict."""
        payload = payload or {}
        if isinstance(payload.get("version"), int) and isinstance(payload.get("preferences"), dict):
            payload = payload["preferences"]
        defaults = cls()
        warn_at = payload.get("warnAtRatio")
        return cls(
            custom_order=list(payload.get("customOrder") or []),
            hidden_category_ids=list(payload.get("hiddenCategoryIds") or []),
            collapse_groups=bool(payload.get("hideGroupedCategories", defaults.collapse_groups)),
            notifications_enabled=bool(payload.get("notificationsEnabled", defaults.notifications_enabled)),
            warn_at_ratio=float(warn_at) if isinstance(warn_at, (int, float)) else defaults.warn_at_ratio,
            currency=normalize_currency(payload.get("currency")),
        )

    def to_background(self, currency: Optional[str]) -> Preferences:
        return Preferences(
            hidden_category_ids=list(self.hidden_category_ids),
            notifications_enabled=self.notifications_enabled,
            warn_at_ratio=self.warn_at_ratio,
            currency=currency,
        )


def to_display_error(exc: Exception) -> str:
    cause = exc.__cause__ if isinstance(exc, AggregationError) and exc.__cause__ else exc
    if isinstance(cause, UpstreamError):
        if cause.is_auth_error:
            return AUTH_ERROR_MESSAGE
        if cause.is_rate_limited:
            return RATE_LIMIT_MESSAGE
    return GENERIC_ERROR_MESSAGE


def collapse_grouped_categories(
    items: List[BudgetProgress],
    groups: List[BudgetProgress],
) -> List[BudgetProgress]:
    """
    Replace leaf categories with their group rollup, emitting each group once
    at the position of its first member.
    """
    group_by_id = {group.category_id: group for group in groups if group.category_id is not None}
    emitted = set()
    collapsed = []
    for item in items:
        if item.is_group:
            if item.category_id is not None:
                emitted.add(item.category_id)
            collapsed.append(item)
            continue
        if item.group_id is None:
            collapsed.append(item)
            continue
        if item.group_id in emitted:
            continue
        group = group_by_id.get(item.group_id)
        if group is None:
            collapsed.append(item)
            continue
        emitted.add(item.group_id)
        collapsed.append(group)
    return collapsed


class BudgetDashboard:
    """Reactive foreground pipeline around a BudgetAggregator."""

    def __init__(
        self,
        aggregator: BudgetAggregator,
        store: Optional[JsonFileStore] = None,
        sync_client: Optional[BackgroundSyncClient] = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.aggregator = aggregator
        self.store = store
        self.sync_client = sync_client
        self.today = today
        self.window = month_window(today())
        self.preferences = self._load_preferences()
        self.progress: List[BudgetProgress] = []
        self.groups: List[BudgetProgress] = []
        self.error: Optional[str] = None
        self.aggregator.warn_at = self.preferences.warn_at_ratio

    # Preferences

    def _load_preferences(self) -> CategoryPreferences:
        if self.store is None:
            return CategoryPreferences()
        return CategoryPreferences.from_dict(self.store.get(PREFERENCES_KEY))

    def _save_preferences(self) -> None:
        if self.store is None:
            return
        self.store.put(
            PREFERENCES_KEY,
            {"version": PREFERENCES_SCHEMA_VERSION, "preferences": self.preferences.to_dict()},
        )

    def sync_background_preferences(self) -> None:
        if self.sync_client is None:
            return
        self.sync_client.update_budget_preferences(self.preferences.to_background(self.currency))

    async def update_preferences(self, **changes: Any) -> List[BudgetProgress]:
        self.preferences = replace(self.preferences, **changes)
        self._save_preferences()
        self.sync_background_preferences()
        if "warn_at_ratio" in changes:
            self.aggregator.warn_at = self.preferences.warn_at_ratio
            return await self.refresh()
        return self.progress

    async def toggle_hidden(self, category_id: Optional[int]) -> List[BudgetProgress]:
        hidden = [cid for cid in self.preferences.hidden_category_ids if cid != category_id]
        if len(hidden) == len(self.preferences.hidden_category_ids):
            hidden.append(category_id)
        return await self.update_preferences(hidden_category_ids=hidden)

    # Window

    @property
    def elapsed(self) -> float:
        return elapsed_fraction(self.window, self.today())

    @property
    def reference_date(self) -> date:
        return derive_reference_date(self.window, self.today())

    @property
    def can_go_forward(self) -> bool:
        return shift_window(self.window, 1).start <= self.today()

    async def refresh(self) -> List[BudgetProgress]:
        """
        Recompute the progress list for the current window. On failure the
        previous list is kept and ``error`` holds a displayable message.
        """
        try:
            progress = await self.aggregator.aggregate(self.window, self.today())
        except AggregationError as exc:
            LOGGER.error("Failed to refresh budget data: %s", exc)
            self.error = to_display_error(exc)
            return self.progress

        self.progress = progress
        self.groups = list(self.aggregator.group_rollups)
        self.error = None
        return self.progress

    async def go_to_previous_period(self) -> List[BudgetProgress]:
        self.window = shift_window(self.window, -1)
        return await self.refresh()

    async def go_to_next_period(self) -> List[BudgetProgress]:
        if not self.can_go_forward:
            LOGGER.debug("Already at the current period")
            return self.progress
        self.window = shift_window(self.window, 1)
        return await self.refresh()

    async def go_to_current_period(self) -> List[BudgetProgress]:
        self.window = month_window(self.today())
        return await self.refresh()

    async def set_custom_period(self, start: Any, end: Any) -> List[BudgetProgress]:
        window = window_from_iso(start, end)
        if window is None:
            raise ValueError(f"Invalid period {start!r}..{end!r}")
        if window.start > self.today():
            raise ValueError("A period cannot start in the future")
        self.window = window
        return await self.refresh()

    # Views

    @property
    def currency(self) -> str:
        if self.preferences.currency:
            return self.preferences.currency
        for item in self.progress:
            if item.budget_currency:
                return item.budget_currency
        return DEFAULT_CURRENCY

    def _ordered(self, is_income: bool) -> List[BudgetProgress]:
        items = [item for item in self.progress if item.is_income == is_income]
        ranked = rank_budget_progress(items, self.preferences.custom_order)
        if not self.preferences.collapse_groups:
            return ranked
        groups = [group for group in self.groups if group.is_income == is_income]
        return collapse_grouped_categories(ranked, groups)

    def _split_hidden(self, is_income: bool) -> Tuple[List[BudgetProgress], List[BudgetProgress]]:
        hidden_ids = set(self.preferences.hidden_category_ids)
        visible, hidden = [], []
        for item in self._ordered(is_income):
            (hidden if item.category_id in hidden_ids else visible).append(item)
        return visible, hidden

    @property
    def expenses(self) -> List[BudgetProgress]:
        return self._split_hidden(False)[0]

    @property
    def incomes(self) -> List[BudgetProgress]:
        return self._split_hidden(True)[0]

    @property
    def hidden_items(self) -> List[BudgetProgress]:
        return self._split_hidden(False)[1] + self._split_hidden(True)[1]

    def recurring_by_category(self) -> Tuple[Dict[int, List[RecurringInstance]], List[RecurringInstance]]:
        return group_by_category(self.aggregator.recurring_expenses, self.window, self.reference_date)
