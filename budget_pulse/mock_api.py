"""
Mock Budget API
Deterministic aiohttp server mirroring the Budget API endpoints used by the
pipeline. Figures are generated relative to the requested period so every
month has data.
"""

from __future__ import annotations

import logging
import os
from datetime import date, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from aiohttp import web

from .dates import month_window, parse_day, to_iso_date

LOGGER = logging.getLogger(__name__)

API_PREFIX = "/v1"
DEFAULT_PORT = 4600
CURRENCY = "usd"

USER = {
    "user_id": 1001,
    "user_name": "Mock User",
    "user_email": "mock.user@example.com",
    "account_id": 2001,
    "budget_name": "Household Budget",
    "primary_currency": CURRENCY,
}

CATEGORIES: List[Dict[str, Any]] = [
    {"id": 10, "name": "Household", "is_group": True, "group_id": None, "is_income": False, "order": 0},
    {"id": 101, "name": "Groceries", "is_group": False, "group_id": 10, "is_income": False, "order": 1},
    {"id": 102, "name": "Dining &amp; Take-out", "is_group": False, "group_id": 10, "is_income": False, "order": 2},
    {"id": 20, "name": "Monthly Bills", "is_group": True, "group_id": None, "is_income": False, "order": 3},
    {"id": 201, "name": "Rent", "is_group": False, "group_id": 20, "is_income": False, "order": 4},
    {"id": 202, "name": "Utilities", "is_group": False, "group_id": 20, "is_income": False, "order": 5},
    {"id": 301, "name": "Transportation", "is_group": False, "group_id": None, "is_income": False, "order": 6},
    {"id": 302, "name": "Transfers", "is_group": False, "group_id": None, "is_income": False,
     "exclude_from_budget": True, "order": 7},
    {"id": 401, "name": "Salary", "is_group": False, "group_id": None, "is_income": True, "order": 8},
    {"id": 501, "name": "Old Hobby", "is_group": False, "group_id": None, "is_income": False,
     "archived": True, "order": 9},
]

# category id -> (monthly budget, transactions as (day, amount, payee, recurring id))
CATEGORY_ACTIVITY: Dict[int, Any] = {
    101: (600.0, [(2, 142.35, "Fresh Market", None), (9, 188.10, "Fresh Market", None), (16, 209.55, "Corner Grocer", None)]),
    102: (250.0, [(5, 86.40, "Noodle Bar", None), (12, 131.20, "Bistro 21", None), (19, 92.40, "Pizza Place", None)]),
    201: (1800.0, [(1, 1800.0, "Landlord LLC", 9001)]),
    202: (260.0, [(6, 64.99, "Internet Co", 9002)]),
    301: (150.0, [(3, 45.0, "Transit Pass", None)]),
    302: (0.0, [(10, 500.0, "Savings Transfer", None)]),
    401: (5000.0, [(1, -2500.0, "Employer Inc", None)]),
}

UNCATEGORISED_ACTIVITY = [(4, 45.20, "Hardware Store", None), (11, -120.50, "Marketplace Refund", None)]

RECURRING_EXPENSES = [
    {"id": 9001, "payee": "Landlord LLC", "amount": "1800.00", "cadence": "monthly", "day": 1, "category_id": 201},
    {"id": 9002, "payee": "Internet Co", "amount": "64.99", "cadence": "monthly", "day": 6, "category_id": 202},
    {"id": 9003, "payee": "City Power", "amount": "95.00", "cadence": "monthly", "day": 27, "category_id": 202},
    {"id": 9004, "payee": "Gym Membership", "amount": "40.00", "cadence": "twice a month", "day": 14, "category_id": 301},
    {"id": 9005, "payee": "Car Insurance", "amount": "360.00", "cadence": "every 3 months", "day": 20, "category_id": None},
]


def _on_day(month_start: date, day: int) -> date:
    window = month_window(month_start)
    return min(month_start.replace(day=1) + timedelta(days=day - 1), window.end)


def _transaction_id(category_id: Optional[int], month_start: date, sequence: int) -> int:
    return int(f"{category_id or 0}{month_start.year}{month_start.month:02d}{sequence:02d}")


def build_transactions(start: date, end: date) -> List[Dict[str, Any]]:
    """Every transaction dated inside ``[start, end]`` across all months it touches."""
    activity = [(category_id, rows) for category_id, (_, rows) in CATEGORY_ACTIVITY.items()]
    activity.append((None, UNCATEGORISED_ACTIVITY))

    transactions = []
    month_start = start.replace(day=1)
    while month_start <= end:
        for category_id, rows in activity:
            for sequence, (day, amount, payee, recurring_id) in enumerate(rows, start=1):
                posted = _on_day(month_start, day)
                if not start <= posted <= end:
                    continue
                transactions.append({
                    "id": _transaction_id(category_id, month_start, sequence),
                    "date": to_iso_date(posted),
                    "payee": payee,
                    "amount": f"{amount:.2f}",
                    "currency": CURRENCY,
                    "to_base": amount,
                    "category_id": category_id,
                    "recurring_id": recurring_id,
                    "status": "cleared",
                    "is_pending": False,
                })
        month_start = month_window(month_start).end + timedelta(days=1)
    transactions.sort(key=lambda item: (item["date"], item["id"]))
    return transactions


def build_budget_summaries(start: date, end: date) -> List[Dict[str, Any]]:
    transactions = build_transactions(start, end)
    period_key = to_iso_date(start)
    names = {category["id"]: category["name"] for category in CATEGORIES}

    def totals(category_ids, budget):
        rows = [txn for txn in transactions if txn["category_id"] in category_ids]
        return {
            period_key: {
                "budget_to_base": budget,
                "budget_amount": budget,
                "budget_currency": CURRENCY,
                "spending_to_base": round(sum(txn["to_base"] for txn in rows), 2),
                "num_transactions": len(rows),
                "is_automated": False,
            }
        }

    summaries = []
    for category in CATEGORIES:
        if category.get("archived"):
            continue
        if category["is_group"]:
            members = [item["id"] for item in CATEGORIES if item.get("group_id") == category["id"]]
            budget = sum(CATEGORY_ACTIVITY[member][0] for member in members)
            data = totals(set(members), budget)
        else:
            data = totals({category["id"]}, CATEGORY_ACTIVITY[category["id"]][0])
        summaries.append({
            "category_id": category["id"],
            "category_name": category["name"],
            "category_group_name": names.get(category.get("group_id")),
            "group_id": category.get("group_id"),
            "is_group": category["is_group"],
            "is_income": category["is_income"],
            "exclude_from_budget": bool(category.get("exclude_from_budget")),
            "exclude_from_totals": False,
            "order": category["order"],
            "data": data,
            "config": {"cadence": "monthly", "currency": CURRENCY},
        })

    summaries.append({
        "category_id": None,
        "category_name": "Uncategorized",
        "is_income": False,
        "is_group": False,
        "exclude_from_budget": False,
        "data": totals({None}, 0.0),
    })
    return summaries


def build_recurring_expenses(start: date) -> List[Dict[str, Any]]:
    month_start = start.replace(day=1)
    posted = {txn["recurring_id"]: txn["date"] for txn in build_transactions(month_start, month_window(month_start).end)}
    expenses = []
    for template in RECURRING_EXPENSES:
        billing = _on_day(month_start, template["day"])
        expenses.append({
            "id": template["id"],
            "payee": template["payee"],
            "amount": template["amount"],
            "currency": CURRENCY,
            "to_base": float(template["amount"]),
            "cadence": template["cadence"],
            "billing_date": to_iso_date(billing),
            "start_date": "2023-01-01",
            "end_date": None,
            "category_id": template["category_id"],
            "status": "reviewed",
            "found_transactions": (
                [{"date": posted[template["id"]], "transaction_id": template["id"]}]
                if template["id"] in posted else []
            ),
        })
    return expenses


def _required_day(request: web.Request, name: str) -> date:
    value = parse_day(request.query.get(name))
    if value is None:
        raise web.HTTPBadRequest(
            text=f'{{"error": "Missing or invalid {name} query parameter"}}',
            content_type="application/json",
        )
    return value


@web.middleware
async def request_logging_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    LOGGER.info("[Mock Budget API] %s %s", request.method, request.path_qs)
    return await handler(request)


class MockBudgetApi:
    """Routes and fixture data. ``api_key`` enables bearer checks."""

    def __init__(self, api_key: Optional[str] = None) -> None:
        self.api_key = api_key
        self.requests: List[str] = []
        self.app = web.Application(middlewares=[request_logging_middleware])
        self.app.router.add_get("/health", self.handle_health)
        self.app.router.add_get(f"{API_PREFIX}/health", self.handle_health)
        self.app.router.add_get(f"{API_PREFIX}/me", self.handle_me)
        self.app.router.add_get(f"{API_PREFIX}/categories", self.handle_categories)
        self.app.router.add_get(f"{API_PREFIX}/budgets", self.handle_budgets)
        self.app.router.add_get(f"{API_PREFIX}/recurring_expenses", self.handle_recurring)
        self.app.router.add_get(f"{API_PREFIX}/transactions", self.handle_transactions)

    def _authorize(self, request: web.Request) -> None:
        self.requests.append(request.path_qs)
        if not self.api_key:
            return
        if request.headers.get("Authorization") != f"Bearer {self.api_key}":
            raise web.HTTPUnauthorized(
                text='{"error": "Access token does not exist."}',
                content_type="application/json",
            )

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "name": "Budget Mock API",
            "status": "ok",
            "endpoints": [
                f"{API_PREFIX}/me",
                f"{API_PREFIX}/categories",
                f"{API_PREFIX}/budgets",
                f"{API_PREFIX}/recurring_expenses",
                f"{API_PREFIX}/transactions",
            ],
        })

    async def handle_me(self, request: web.Request) -> web.Response:
        self._authorize(request)
        return web.json_response(dict(USER))

    async def handle_categories(self, request: web.Request) -> web.Response:
        self._authorize(request)
        return web.json_response({"categories": [dict(category) for category in CATEGORIES]})

    async def handle_budgets(self, request: web.Request) -> web.Response:
        self._authorize(request)
        start = _required_day(request, "start_date")
        end = _required_day(request, "end_date")
        return web.json_response(build_budget_summaries(start, end))

    async def handle_recurring(self, request: web.Request) -> web.Response:
        self._authorize(request)
        start = parse_day(request.query.get("start_date")) or date.today()
        return web.json_response({"recurring_expenses": build_recurring_expenses(start)})

    async def handle_transactions(self, request: web.Request) -> web.Response:
        self._authorize(request)
        start = _required_day(request, "start_date")
        end = _required_day(request, "end_date")
        transactions = build_transactions(start, end)

        raw_category = request.query.get("category_id")
        if raw_category:
            try:
                category_id = int(raw_category)
            except ValueError:
                raise web.HTTPBadRequest(
                    text='{"error": "Invalid category_id query parameter"}',
                    content_type="application/json",
                )
            transactions = [txn for txn in transactions if txn["category_id"] == category_id]

        offset = int(request.query.get("offset") or 0)
        limit = int(request.query.get("limit") or 1000)
        page = transactions[offset:offset + limit]
        return web.json_response({"transactions": page, "has_more": offset + limit < len(transactions)})


def create_app(api_key: Optional[str] = None) -> web.Application:
    return MockBudgetApi(api_key=api_key).app


def main() -> None:
    logging.basicConfig(
        level=os.getenv("BUDGET_PULSE_LOG_LEVEL", "INFO").upper(),
        format='%(asctime)s - %(levelname)s - %(message)s',
    )
    host = os.getenv("MOCK_API_HOST", "127.0.0.1")
    port = int(os.getenv("MOCK_API_PORT", str(DEFAULT_PORT)))
    web.run_app(create_app(os.getenv("MOCK_API_KEY") or None), host=host, port=port)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main()
