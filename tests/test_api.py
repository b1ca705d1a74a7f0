"""
Tests for the HTTP routes over a wired orchestrator.
"""

import httpx
import pytest
import pytest_asyncio

from storesync import dependencies
from storesync.main import app

from conftest import make_item


@pytest_asyncio.fixture
async def api(monkeypatch, db, orchestrator):
    monkeypatch.setattr(dependencies, "_db", db)
    monkeypatch.setattr(dependencies, "_orchestrator", orchestrator)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


class TestConnectionRoutes:

    @pytest.mark.asyncio
    async def test_import_then_health(self, api, connection, supplier_store):
        supplier_store.add(make_item("p"))

        response = await api.post(f"/api/connections/{connection.id}/import", json={"item_ids": ["p"]})

        assert response.status_code == 200
        body = response.json()
        assert body["summary"]["success"] == 1
        assert body["results"][0]["retailer_item_id"].startswith("gid://shopify/Product/")

        health = await api.get(f"/api/connections/{connection.id}/health")
        assert health.status_code == 200
        assert health.json()["status"] == "HEALTHY"

    @pytest.mark.asyncio
    async def test_unknown_connection_is_404(self, api):
        response = await api.post("/api/connections/nope/sync/inventory")

        assert response.status_code == 404
        assert "nope" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_inactive_connection_is_409(self, api, orchestrator, connection):
        await orchestrator.terminate_connection(connection.id)

        response = await api.post(f"/api/connections/{connection.id}/sync/prices")

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_clear_missing_variant_is_404(self, api, orchestrator, connection, supplier_store):
        supplier_store.add(make_item("p"))
        result = await orchestrator.import_items(connection.id, ["p"], materialize=False)

        response = await api.delete(f"/api/connections/mappings/{result.results[0].mapping_id}/variants/nope")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_terminate(self, api, connection):
        response = await api.post(f"/api/connections/{connection.id}/terminate")

        assert response.status_code == 200
        assert response.json()["count"] == 0


class TestUsageRoutes:

    @pytest.mark.asyncio
    async def test_usage_report(self, api, supplier, connection):
        response = await api.get(f"/api/shops/{supplier.id}/usage")

        assert response.status_code == 200
        body = response.json()
        assert body["tier"] == "FREE"
        assert body["products"]["limit"] == 25

    @pytest.mark.asyncio
    async def test_check_usage(self, api, supplier):
        response = await api.get(f"/api/shops/{supplier.id}/usage/order_pushes")

        assert response.status_code == 200
        assert response.json()["allowed"] is True

    @pytest.mark.asyncio
    async def test_tiers(self, api, supplier):
        response = await api.get(f"/api/shops/{supplier.id}/tiers")

        rows = response.json()
        assert [row["is_current"] for row in rows][:2] == [True, False]

    @pytest.mark.asyncio
    async def test_tiers_unknown_shop(self, api):
        response = await api.get("/api/shops/nope/tiers")

        assert response.status_code == 404
