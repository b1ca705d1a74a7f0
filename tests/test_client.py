"""
Tests for the Admin API client retry behavior.
"""

from typing import List

import httpx
import pytest

from storesync.shopify import (
    ShopifyAuthError,
    ShopifyClient,
    ShopifyClientError,
    ShopifyServerError,
    ShopifyUserError,
)
from storesync.shopify.client import normalize_domain, raise_for_user_errors


def scripted_client(responses: List[httpx.Response], hook=None) -> ShopifyClient:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        scripted = responses[min(len(calls), len(responses)) - 1]
        return httpx.Response(scripted.status_code, content=scripted.content, headers=scripted.headers)

    client = ShopifyClient(
        "https://test-store.myshopify.com/",
        "shpat_test",
        on_rate_limit=hook,
        transport=httpx.MockTransport(handler),
    )
    client.BASE_RETRY_DELAY = 0
    client.calls = calls
    return client


OK = httpx.Response(200, json={"data": {"shop": {"name": "Test"}}})


class TestExecute:

    @pytest.mark.asyncio
    async def test_returns_data(self):
        client = scripted_client([OK])

        assert await client.execute("{ shop { name } }") == {"shop": {"name": "Test"}}
        assert client.calls[0].headers["X-Shopify-Access-Token"] == "shpat_test"
        assert str(client.calls[0].url).startswith("https://test-store.myshopify.com/admin/api/")

    @pytest.mark.asyncio
    async def test_rate_limit_retried_and_reported(self):
        delays = []

        async def hook(delay: float) -> None:
            delays.append(delay)

        client = scripted_client([httpx.Response(429), OK], hook=hook)

        data = await client.execute("{ shop { name } }")

        assert data["shop"]["name"] == "Test"
        assert len(client.calls) == 2
        assert delays == [0]

    @pytest.mark.asyncio
    async def test_throttled_graphql_error_retried(self):
        throttled = httpx.Response(200, json={"errors": [{"message": "Throttled"}]})
        client = scripted_client([throttled, OK])

        await client.execute("{ shop { name } }")

        assert len(client.calls) == 2

    @pytest.mark.asyncio
    async def test_auth_error_not_retried(self):
        client = scripted_client([httpx.Response(401)])

        with pytest.raises(ShopifyAuthError):
            await client.execute("{ shop { name } }")

        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_graphql_error_not_retried(self):
        client = scripted_client([httpx.Response(200, json={"errors": [{"message": "Field 'nope' doesn't exist"}]})])

        with pytest.raises(ShopifyClientError, match="nope"):
            await client.execute("{ nope }")

        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_server_error_exhausts_retries(self):
        client = scripted_client([httpx.Response(503)])

        with pytest.raises(ShopifyServerError) as exc_info:
            await client.execute("{ shop { name } }")

        assert exc_info.value.status_code == 503
        assert len(client.calls) == ShopifyClient.MAX_RETRIES


class TestHelpers:

    def test_normalize_domain(self):
        assert normalize_domain("https://a.myshopify.com/") == "a.myshopify.com"
        assert normalize_domain(" b.myshopify.com ") == "b.myshopify.com"

    def test_user_errors_raise(self):
        with pytest.raises(ShopifyUserError, match="Title can't be blank"):
            raise_for_user_errors("productCreate", {"userErrors": [{"message": "Title can't be blank"}]})

    def test_clean_payload_returned(self):
        assert raise_for_user_errors("productCreate", {"product": {"id": "1"}}) == {"product": {"id": "1"}}
        assert raise_for_user_errors("productCreate", None) == {}
