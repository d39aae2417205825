"""
Notification Composer/Dedup
Turns over-budget and at-risk categories into a single alert and suppresses
repeats of the same alert set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

import requests

from .classifier import ALERT_STATUSES, OVER
from .models import BudgetProgress, normalize_currency

LOGGER = logging.getLogger(__name__)

NOTIFICATION_TAG = "budget-pulse-budget-alerts"
FALLBACK_CURRENCY = "USD"

CURRENCY_SYMBOLS = {
    "USD": "$",
    "CAD": "CA$",
    "AUD": "A$",
    "NZD": "NZ$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "INR": "₹",
    "CHF": "CHF ",
    "SEK": "SEK ",
    "PLN": "PLN ",
}


@dataclass(frozen=True)
class NotificationPayload:
    title: str
    body: str
    tag: str = NOTIFICATION_TAG
    data: Dict[str, Any] = field(default_factory=dict)


class NotificationSink(Protocol):
    def show(self, payload: NotificationPayload) -> None:
        ...


class LoggingNotificationSink:
    """
    Logs alerts and keeps the latest one per tag, so a newer alert replaces
    an undelivered older one instead of stacking.
    """

    def __init__(self) -> None:
        self.delivered: Dict[str, NotificationPayload] = {}

    def show(self, payload: NotificationPayload) -> None:
        self.delivered[payload.tag] = payload
        LOGGER.info("Budget alert: %s - %s", payload.title, payload.body)


class WebhookNotificationSink:
    """Posts alerts as JSON to a webhook (chat bots, push relays)."""

    def __init__(self, url: str, timeout: float = 10.0, session: Optional[requests.Session] = None) -> None:
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def show(self, payload: NotificationPayload) -> None:
        response = self.session.post(
            self.url,
            json={"title": payload.title, "body": payload.body, "tag": payload.tag, "data": payload.data},
            timeout=self.timeout,
        )
        response.raise_for_status()


def format_currency(amount: float, currency: Optional[str], fallback_currency: Optional[str] = None) -> str:
    """Whole-unit currency rendering, e.g. ``$1,235`` or ``XYZ 1235``."""
    code = normalize_currency(currency) or normalize_currency(fallback_currency) or FALLBACK_CURRENCY
    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol is None:
        return f"{code} {round(amount)}"
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.0f}"


def filter_alerts(
    progress: Iterable[BudgetProgress],
    hidden_category_ids: Optional[Iterable[Optional[int]]] = None,
) -> List[BudgetProgress]:
    hidden = set(hidden_category_ids or ())
    return [
        item
        for item in progress
        if item.category_id not in hidden and not item.is_income and item.status in ALERT_STATUSES
    ]


def build_signature(alerts: Sequence[BudgetProgress]) -> str:
    """Order-independent fingerprint of an alert set."""
    return "|".join(sorted(f"{alert.category_id}:{alert.status}" for alert in alerts))


def build_notification_payload(
    alerts: Sequence[BudgetProgress],
    preferred_currency: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
) -> NotificationPayload:
    if not alerts:
        raise ValueError("Cannot build a notification without alerts")

    fallback_currency = (
        preferred_currency
        or next((alert.budget_currency for alert in alerts if alert.budget_currency), None)
        or FALLBACK_CURRENCY
    )

    if len(alerts) == 1:
        alert = alerts[0]
        status_label = "over budget" if alert.status == OVER else "at risk"
        spent = format_currency(alert.spent, alert.budget_currency, fallback_currency)
        budget = format_currency(alert.budget_amount, alert.budget_currency, fallback_currency)
        return NotificationPayload(
            title=f"{alert.category_name} is {status_label}",
            body=f"{spent} spent of {budget}",
            data=dict(data or {}),
        )

    summary = ", ".join(
        f"{alert.category_name} ({'over' if alert.status == OVER else 'at risk'})" for alert in alerts
    )
    return NotificationPayload(
        title=f"Budget alerts: {len(alerts)} categories",
        body=summary,
        data=dict(data or {}),
    )
