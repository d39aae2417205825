"""Budget API client. Every read goes through the Offline Cache Gateway."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlencode

from .cache_gateway import ApiRequest, OfflineCacheGateway
from .errors import NetworkFailure, ParseFailure, RequestTimeout, UpstreamError
from .models import (
    Category,
    CategorySummary,
    RecurringExpense,
    Transaction,
    normalize_base_url,
)

LOGGER = logging.getLogger(__name__)

TRANSACTIONS_PAGE_SIZE = 500
MAX_TRANSACTION_PAGES = 20


def mask_token(token: Optional[str]) -> str:
    if not token:
        return ""
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}…{token[-4:]}"


def merge_summaries_with_categories(
    summaries: Sequence[CategorySummary],
    categories: Sequence[Category],
) -> List[CategorySummary]:
    """
    Fill in category metadata the summary endpoint leaves out and append
    categories that have no summary row yet (with empty totals).
    """
    by_id = {category.id: category for category in categories}
    group_names = {category.id: category.name for category in categories if category.is_group}

    merged: List[CategorySummary] = []
    seen = set()
    for summary in summaries:
        seen.add(summary.category_id)
        metadata = by_id.get(summary.category_id) if summary.category_id is not None else None
        if metadata is None:
            merged.append(summary)
            continue
        group_id = summary.group_id if summary.group_id is not None else metadata.group_id
        merged.append(
            replace(
                summary,
                category_name=metadata.name or summary.category_name,
                group_id=group_id,
                category_group_name=summary.category_group_name or group_names.get(group_id),
                is_group=summary.is_group or metadata.is_group,
                is_income=summary.is_income or metadata.is_income,
                exclude_from_budget=summary.exclude_from_budget or metadata.exclude_from_budget,
                exclude_from_totals=summary.exclude_from_totals or metadata.exclude_from_totals,
                order=summary.order if summary.order is not None else metadata.order,
            )
        )

    for category in categories:
        if category.id in seen or category.archived:
            continue
        merged.append(
            CategorySummary(
                category_id=category.id,
                category_name=category.name,
                category_group_name=group_names.get(category.group_id),
                group_id=category.group_id,
                is_group=category.is_group,
                is_income=category.is_income,
                exclude_from_budget=category.exclude_from_budget,
                exclude_from_totals=category.exclude_from_totals,
                order=category.order,
            )
        )
    return merged


class BudgetApiClient:
    """Thin typed wrapper over the Budget API endpoints."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: Optional[str] = None,
        gateway: Optional[OfflineCacheGateway] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = normalize_base_url(base_url)
        self.gateway = gateway or OfflineCacheGateway()
        self.gateway.register_api_base(self.base_url)

    @classmethod
    def from_environment(cls, gateway: Optional[OfflineCacheGateway] = None) -> "BudgetApiClient":
        return cls(
            api_key=os.getenv("BUDGET_API_KEY"),
            base_url=os.getenv("BUDGET_API_BASE_URL"),
            gateway=gateway,
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def build_url(self, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        url = f"{self.base_url}/{path.lstrip('/')}"
        if params:
            query = {key: value for key, value in params.items() if value is not None}
            if query:
                url = f"{url}?{urlencode(query)}"
        return url

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = self.build_url(path, params)
        response = await self.gateway.fetch(ApiRequest(url=url, headers=self._headers()))

        try:
            payload = response.json() if response.body else None
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            if response.ok:
                raise ParseFailure(f"Malformed JSON from {path}") from exc
            payload = response.text

        if not response.ok:
            if response.status == 503 and isinstance(payload, dict):
                if payload.get("error") == "timeout":
                    raise RequestTimeout(f"No cached data for {path} after timeout")
                if payload.get("error") == "offline":
                    raise NetworkFailure(f"Offline and no cached data for {path}")
            raise UpstreamError(response.status, payload, url=url)

        if response.from_cache:
            LOGGER.info("Serving cached %s", path)
        return payload

    @staticmethod
    def _list_field(payload: Any, key: str) -> List[Any]:
        if isinstance(payload, list):
            return payload
        if isinstance(payload, dict) and isinstance(payload.get(key), list):
            return payload[key]
        raise ParseFailure(f"Expected a list under '{key}'")

    async def get_categories(self) -> List[Category]:
        payload = await self._get_json("categories", {"format": "flattened"})
        return [Category.from_dict(item) for item in self._list_field(payload, "categories")]

    async def get_budget_summaries(
        self,
        start_date: str,
        end_date: str,
        categories: Optional[Sequence[Category]] = None,
    ) -> List[CategorySummary]:
        payload = await self._get_json("budgets", {"start_date": start_date, "end_date": end_date})
        summaries = [CategorySummary.from_dict(item) for item in self._list_field(payload, "budgets")]
        if categories:
            summaries = merge_summaries_with_categories(summaries, categories)
        return summaries

    async def get_recurring_expenses(self, start_date: str) -> List[RecurringExpense]:
        payload = await self._get_json("recurring_expenses", {"start_date": start_date})
        return [RecurringExpense.from_dict(item) for item in self._list_field(payload, "recurring_expenses")]

    async def get_transactions(
        self,
        category_id: Optional[int],
        start_date: str,
        end_date: str,
        status: Optional[str] = None,
    ) -> List[Transaction]:
        """
        Fetch every page of transactions for a category.

        A ``None`` category fetches the window unfiltered and keeps only
        transactions without a category.
        """
        collected: List[Transaction] = []
        offset = 0
        for _ in range(MAX_TRANSACTION_PAGES):
            payload = await self._get_json(
                "transactions",
                {
                    "category_id": category_id,
                    "start_date": start_date,
                    "end_date": end_date,
                    "status": status,
                    "offset": offset or None,
                    "limit": TRANSACTIONS_PAGE_SIZE,
                },
            )
            page = [Transaction.from_dict(item) for item in self._list_field(payload, "transactions")]
            collected.extend(page)
            if not (isinstance(payload, dict) and payload.get("has_more")) or not page:
                break
            offset += len(page)
        else:
            LOGGER.warning("Stopped paging transactions after %d pages", MAX_TRANSACTION_PAGES)

        if category_id is None:
            collected = [txn for txn in collected if txn.category_id is None]
        return collected
