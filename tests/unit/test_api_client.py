from __future__ import annotations

import json
from urllib.parse import parse_qs, urlsplit

import pytest

from budget_pulse.api_client import BudgetApiClient, mask_token
from budget_pulse.cache_gateway import ApiResponse, OfflineCacheGateway, ResponseCache, offline_response
from budget_pulse.errors import NetworkFailure, ParseFailure, RequestTimeout, UpstreamError


class RoutedTransport:
    """Serves JSON bodies keyed by path; unknown paths return 404."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    async def __call__(self, request, timeout):
        self.requests.append(request)
        parts = urlsplit(request.url)
        handler = self.routes.get(parts.path)
        if handler is None:
            return ApiResponse(status=404, body=b'{"error": "not found"}')
        result = handler(parse_qs(parts.query))
        if isinstance(result, ApiResponse):
            return result
        return ApiResponse(status=200, body=json.dumps(result).encode("utf-8"))


def make_client(routes, api_key="secret-token-123") -> BudgetApiClient:
    gateway = OfflineCacheGateway(transport=RoutedTransport(routes), cache=ResponseCache("test"))
    return BudgetApiClient(api_key, "https://dev.lunchmoney.app/v1/", gateway=gateway)


class TestRequests:
    def test_base_url_and_query(self):
        client = make_client({})
        assert client.base_url == "https://dev.lunchmoney.app/v1"
        url = client.build_url("/budgets", {"start_date": "2025-10-01", "status": None})
        assert url == "https://dev.lunchmoney.app/v1/budgets?start_date=2025-10-01"

    @pytest.mark.asyncio
    async def test_bearer_header_is_sent(self):
        client = make_client({"/v1/categories": lambda query: {"categories": []}})
        await client.get_categories()
        (request,) = client.gateway.transport.requests
        assert request.headers["Authorization"] == "Bearer secret-token-123"
        assert "format=flattened" in request.url

    def test_mask_token(self):
        assert mask_token("abcd1234wxyz") == "abcd…wxyz"
        assert mask_token("short") == "***"
        assert mask_token(None) == ""


class TestErrors:
    @pytest.mark.asyncio
    async def test_upstream_status(self):
        client = make_client({})
        with pytest.raises(UpstreamError) as excinfo:
            await client.get_categories()
        assert excinfo.value.status == 404
        assert excinfo.value.body == {"error": "not found"}

    @pytest.mark.asyncio
    async def test_malformed_json(self):
        client = make_client({"/v1/categories": lambda query: ApiResponse(status=200, body=b"<html>")})
        with pytest.raises(ParseFailure):
            await client.get_categories()

    @pytest.mark.asyncio
    async def test_wrong_shape(self):
        client = make_client({"/v1/recurring_expenses": lambda query: {"unexpected": True}})
        with pytest.raises(ParseFailure):
            await client.get_recurring_expenses("2025-10-01")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reason, error", [("offline", NetworkFailure), ("timeout", RequestTimeout)])
    async def test_offline_placeholder_maps_to_network_errors(self, reason, error):
        client = make_client({"/v1/categories": lambda query: offline_response(reason)})
        with pytest.raises(error):
            await client.get_categories()


class TestEndpoints:
    @pytest.mark.asyncio
    async def test_budgets_accept_bare_list(self):
        client = make_client({
            "/v1/budgets": lambda query: [{"category_id": 1, "category_name": "Food", "data": {}}],
        })
        summaries = await client.get_budget_summaries("2025-10-01", "2025-10-31")
        assert [summary.category_name for summary in summaries] == ["Food"]

    @pytest.mark.asyncio
    async def test_transactions_are_paged(self):
        pages = {
            None: {"transactions": [{"id": 1, "amount": "1.00"}, {"id": 2, "amount": "2.00"}], "has_more": True},
            "2": {"transactions": [{"id": 3, "amount": "3.00"}], "has_more": False},
        }

        def transactions(query):
            offset = query.get("offset", [None])[0]
            return pages[offset]

        client = make_client({"/v1/transactions": transactions})
        result = await client.get_transactions(7, "2025-10-01", "2025-10-31")
        assert [txn.id for txn in result] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_uncategorised_fetch_filters_client_side(self):
        client = make_client({
            "/v1/transactions": lambda query: {
                "transactions": [
                    {"id": 1, "amount": "5.00", "category_id": 3},
                    {"id": 2, "amount": "-7.00", "category_id": None},
                ],
            },
        })
        result = await client.get_transactions(None, "2025-10-01", "2025-10-31")
        assert [txn.id for txn in result] == [2]
        request = client.gateway.transport.requests[0]
        assert "category_id" not in request.url
