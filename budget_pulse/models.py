"""
Data model for Budget Pulse.

Wire payloads from the Budget API are parsed into immutable snapshots here;
anything malformed raises ParseFailure at the boundary so the rest of the
pipeline only ever sees well-typed records.
"""

from __future__ import annotations

import html
import math
import os
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from .dates import parse_day
from .errors import ParseFailure

DEFAULT_API_BASE = "https://dev.lunchmoney.app/v1"
DEFAULT_WARN_AT_RATIO = 0.85


def normalize_base_url(base_url: Optional[str]) -> str:
    url = base_url or DEFAULT_API_BASE
    while url.endswith("/"):
        url = url[:-1]
    return url


def decode_entities(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return html.unescape(value)


def normalize_currency(currency: Optional[str]) -> Optional[str]:
    if not currency:
        return None
    normalized = currency.strip().upper()
    return normalized or None


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        converted = float(value)
    except (TypeError, ValueError):
        return None
    return converted if math.isfinite(converted) else None


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ParseFailure(f"Expected an integer id, got {value!r}") from exc


def _require_mapping(payload: Any, kind: str) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise ParseFailure(f"Malformed {kind} payload: expected an object, got {type(payload).__name__}")
    return payload


@dataclass(frozen=True)
class PeriodTotals:
    """Budget and activity for one period key of a category summary."""

    budgeted: float = 0.0
    spent: float = 0.0
    transaction_count: int = 0
    is_automated: bool = False
    currency: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Any) -> "PeriodTotals":
        data = _require_mapping(payload, "period totals")
        budgeted = _to_float(data.get("budget_to_base"))
        if budgeted is None:
            budgeted = _to_float(data.get("budget_amount"))
        return cls(
            budgeted=budgeted or 0.0,
            spent=_to_float(data.get("spending_to_base")) or 0.0,
            transaction_count=int(data.get("num_transactions") or 0),
            is_automated=bool(data.get("is_automated")),
            currency=normalize_currency(data.get("budget_currency")),
        )


@dataclass(frozen=True)
class RecurringHint:
    """Recurring activity summary attached to a category by the API."""

    payee: Optional[str]
    amount: float
    currency: Optional[str]

    @classmethod
    def from_dict(cls, payload: Any) -> "RecurringHint":
        data = _require_mapping(payload, "recurring hint")
        amount = _to_float(data.get("to_base"))
        if not amount:
            amount = _to_float(data.get("amount")) or 0.0
        return cls(
            payee=data.get("payee"),
            amount=amount,
            currency=normalize_currency(data.get("currency")),
        )


@dataclass(frozen=True)
class Category:
    """Category metadata from ``GET /categories``."""

    id: int
    name: str
    is_income: bool = False
    exclude_from_budget: bool = False
    exclude_from_totals: bool = False
    is_group: bool = False
    group_id: Optional[int] = None
    order: Optional[int] = None
    archived: bool = False

    @classmethod
    def from_dict(cls, payload: Any) -> "Category":
        data = _require_mapping(payload, "category")
        category_id = _optional_int(data.get("id"))
        if category_id is None:
            raise ParseFailure("Category payload is missing 'id'")
        return cls(
            id=category_id,
            name=decode_entities(data.get("name")) or f"Category {category_id}",
            is_income=bool(data.get("is_income")),
            exclude_from_budget=bool(data.get("exclude_from_budget")),
            exclude_from_totals=bool(data.get("exclude_from_totals")),
            is_group=bool(data.get("is_group")),
            group_id=_optional_int(data.get("group_id")),
            order=data.get("order"),
            archived=bool(data.get("archived")),
        )


@dataclass(frozen=True)
class CategorySummary:
    """Per-category budget summary for a reporting window. Read-only."""

    category_id: Optional[int]
    category_name: str
    category_group_name: Optional[str] = None
    group_id: Optional[int] = None
    is_group: bool = False
    is_income: bool = False
    exclude_from_budget: bool = False
    exclude_from_totals: bool = False
    data: Dict[str, PeriodTotals] = field(default_factory=dict)
    recurring_items: Tuple[RecurringHint, ...] = ()
    config_cadence: Optional[str] = None
    config_currency: Optional[str] = None
    order: Optional[int] = None

    @property
    def recurring_total(self) -> float:
        return sum(item.amount for item in self.recurring_items)

    def totals_for(self, period_key: str) -> Optional[PeriodTotals]:
        return self.data.get(period_key)

    @classmethod
    def from_dict(cls, payload: Any) -> "CategorySummary":
        data = _require_mapping(payload, "budget summary")
        raw_periods = data.get("data") or {}
        if not isinstance(raw_periods, dict):
            raise ParseFailure("Budget summary 'data' must be an object keyed by period")
        recurring = data.get("recurring") or {}
        raw_recurring = recurring.get("data") if isinstance(recurring, dict) else recurring
        config = data.get("config") or {}
        return cls(
            category_id=_optional_int(data.get("category_id")),
            category_name=decode_entities(data.get("category_name")) or "Uncategorized",
            category_group_name=decode_entities(data.get("category_group_name")),
            group_id=_optional_int(data.get("group_id")),
            is_group=bool(data.get("is_group")),
            is_income=bool(data.get("is_income")),
            exclude_from_budget=bool(data.get("exclude_from_budget")),
            exclude_from_totals=bool(data.get("exclude_from_totals")),
            data={str(key): PeriodTotals.from_dict(value) for key, value in raw_periods.items()},
            recurring_items=tuple(RecurringHint.from_dict(item) for item in raw_recurring or []),
            config_cadence=config.get("cadence") if isinstance(config, dict) else None,
            config_currency=normalize_currency(config.get("currency")) if isinstance(config, dict) else None,
            order=data.get("order"),
        )


@dataclass(frozen=True)
class Transaction:
    """A single transaction. Positive amounts are money leaving the account."""

    id: int
    date: Optional[date]
    amount: str
    currency: Optional[str] = None
    to_base: Optional[float] = None
    payee: Optional[str] = None
    category_id: Optional[int] = None
    recurring_id: Optional[int] = None
    status: Optional[str] = None
    is_pending: bool = False

    @property
    def normalized_amount(self) -> Optional[float]:
        if self.to_base is not None:
            return self.to_base
        return _to_float(self.amount)

    @classmethod
    def from_dict(cls, payload: Any) -> "Transaction":
        data = _require_mapping(payload, "transaction")
        transaction_id = _optional_int(data.get("id"))
        if transaction_id is None:
            raise ParseFailure("Transaction payload is missing 'id'")
        return cls(
            id=transaction_id,
            date=parse_day(data.get("date")),
            amount=str(data.get("amount", "0")),
            currency=normalize_currency(data.get("currency")),
            to_base=_to_float(data.get("to_base")),
            payee=data.get("payee"),
            category_id=_optional_int(data.get("category_id")),
            recurring_id=_optional_int(data.get("recurring_id")),
            status=data.get("status"),
            is_pending=bool(data.get("is_pending")),
        )


@dataclass(frozen=True)
class RecurringExpense:
    """Snapshot of a recurring expense as returned by the API."""

    id: int
    payee: str
    amount: float
    cadence: str
    currency: Optional[str] = None
    to_base: Optional[float] = None
    description: Optional[str] = None
    next_occurrence: Optional[date] = None
    billing_date: Optional[date] = None
    anchor_date: Optional[date] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    category_id: Optional[int] = None
    status: Optional[str] = None
    found_transactions: Tuple[date, ...] = ()

    @property
    def anchor(self) -> Optional[date]:
        """Last known occurrence, by priority of the available date fields."""
        for candidate in (self.next_occurrence, self.billing_date, self.anchor_date, self.start_date):
            if candidate is not None:
                return candidate
        return None

    @property
    def normalized_amount(self) -> float:
        if self.to_base is not None:
            return self.to_base
        return self.amount

    @classmethod
    def from_dict(cls, payload: Any) -> "RecurringExpense":
        data = _require_mapping(payload, "recurring expense")
        expense_id = _optional_int(data.get("id"))
        if expense_id is None:
            raise ParseFailure("Recurring expense payload is missing 'id'")

        cadence = data.get("cadence")
        if not cadence and data.get("granularity"):
            cadence = f"{data.get('quantity') or 1} {data['granularity']}"

        payee = (data.get("payee") or "").strip() or "Unknown payee"
        found = []
        for match in data.get("found_transactions") or []:
            found_date = parse_day(match.get("date") if isinstance(match, dict) else match)
            if found_date is not None:
                found.append(found_date)

        return cls(
            id=expense_id,
            payee=payee,
            amount=_to_float(data.get("amount")) or 0.0,
            cadence=cadence or "",
            currency=normalize_currency(data.get("currency")),
            to_base=_to_float(data.get("to_base")),
            description=data.get("description"),
            next_occurrence=parse_day(data.get("next_occurrence")),
            billing_date=parse_day(data.get("billing_date")),
            anchor_date=parse_day(data.get("anchor_date")),
            start_date=parse_day(data.get("start_date")),
            end_date=parse_day(data.get("end_date")),
            category_id=_optional_int(data.get("category_id")),
            status=data.get("status"),
            found_transactions=tuple(found),
        )


@dataclass(frozen=True)
class BudgetProgress:
    """
    Per-category progress record, the primary output of an aggregation pass.

    Records are never mutated; a recompute produces replacements via
    ``dataclasses.replace``. ``status`` is always derived by the classifier.
    """

    category_id: Optional[int]
    category_name: str
    budget_amount: float
    spent: float
    remaining: float
    status: str
    progress_ratio: float
    period_key: str
    category_group_name: Optional[str] = None
    group_id: Optional[int] = None
    is_group: bool = False
    is_income: bool = False
    exclude_from_budget: bool = False
    budget_currency: Optional[str] = None
    num_transactions: int = 0
    is_automated: bool = False
    recurring_total: float = 0.0
    transactions: Tuple[Transaction, ...] = ()


@dataclass
class Preferences:
    hidden_category_ids: List[Optional[int]] = field(default_factory=list)
    notifications_enabled: bool = False
    warn_at_ratio: float = DEFAULT_WARN_AT_RATIO
    currency: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hiddenCategoryIds": list(self.hidden_category_ids),
            "notificationsEnabled": self.notifications_enabled,
            "warnAtRatio": self.warn_at_ratio,
            "currency": self.currency,
        }

    @classmethod
    def from_dict(cls, payload: Optional[Dict[str, Any]]) -> "Preferences":
        payload = payload or {}
        warn_at = _to_float(payload.get("warnAtRatio"))
        return cls(
            hidden_category_ids=list(payload.get("hiddenCategoryIds") or []),
            notifications_enabled=bool(payload.get("notificationsEnabled")),
            warn_at_ratio=DEFAULT_WARN_AT_RATIO if warn_at is None else warn_at,
            currency=normalize_currency(payload.get("currency")),
        )


@dataclass
class Config:
    """Background configuration pushed by the foreground. Last write wins."""

    api_key: Optional[str] = None
    api_base_url: str = DEFAULT_API_BASE
    preferences: Preferences = field(default_factory=Preferences)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "apiKey": self.api_key,
            "apiBaseUrl": self.api_base_url,
            "preferences": self.preferences.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: Optional[Dict[str, Any]]) -> "Config":
        payload = payload or {}
        return cls(
            api_key=payload.get("apiKey") or None,
            api_base_url=normalize_base_url(payload.get("apiBaseUrl")),
            preferences=Preferences.from_dict(payload.get("preferences")),
        )

    @classmethod
    def from_environment(cls) -> "Config":
        warn_at = _to_float(os.getenv("BUDGET_PULSE_WARN_AT"))
        return cls(
            api_key=os.getenv("BUDGET_API_KEY") or None,
            api_base_url=normalize_base_url(os.getenv("BUDGET_API_BASE_URL")),
            preferences=Preferences(
                notifications_enabled=os.getenv("BUDGET_PULSE_NOTIFICATIONS", "1") not in ("0", "false", "no"),
                warn_at_ratio=DEFAULT_WARN_AT_RATIO if warn_at is None else warn_at,
                currency=normalize_currency(os.getenv("BUDGET_PULSE_CURRENCY")),
            ),
        )


@dataclass
class SyncState:
    """Background bookkeeping persisted between wakes."""

    last_run_ms: int = 0
    last_alert_signature: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Optional[Dict[str, Any]]) -> "SyncState":
        payload = payload or {}
        return cls(
            last_run_ms=int(payload.get("last_run_ms") or 0),
            last_alert_signature=payload.get("last_alert_signature"),
        )
