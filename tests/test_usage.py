"""
Tests for tier caps and usage enforcement.
"""

import pytest

from storesync.db import Connection, ConnectionStatus, MetafieldConfig, OrderEventKind, ProductMapping, TierLevel
from storesync.usage import (
    Feature,
    UsageLedger,
    UsageResource,
    UsageStatus,
    evaluate,
    get_suggested_tier,
    get_tier_caps,
    required_tier_for,
)
from storesync.usage.ledger import percent_of


async def add_mappings(db, connection_id: str, count: int, start: int = 0) -> None:
    for n in range(start, start + count):
        await db.upsert_mapping(ProductMapping(connection_id=connection_id, supplier_item_id=f"item-{n}"))


class TestEvaluate:

    def test_under_limit_allowed(self):
        result = evaluate(24, UsageResource.PRODUCTS, TierLevel.FREE)
        assert result.allowed is True
        assert result.reason is None
        assert result.percent_used == 96

    def test_reaching_limit_is_over(self):
        result = evaluate(25, UsageResource.PRODUCTS, TierLevel.FREE)
        assert result.allowed is False
        assert result.is_over_limit is True
        assert result.reason == "product limit reached (25/25)"
        assert result.suggested_tier == TierLevel.STARTER

    def test_above_limit_never_allowed(self):
        for current in (26, 100, 10_000):
            assert evaluate(current, UsageResource.PRODUCTS, TierLevel.FREE).allowed is False

    def test_percent_capped_at_100(self):
        assert evaluate(60, UsageResource.PRODUCTS, TierLevel.FREE).percent_used == 100

    def test_marketplace_effectively_unlimited(self):
        assert evaluate(500_000, UsageResource.CONNECTIONS, TierLevel.MARKETPLACE).allowed is True

    def test_percent_rounds_half_up(self):
        assert percent_of(1, 8) == 13
        assert percent_of(0, 0) == 0


class TestTiers:

    def test_free_caps(self):
        caps = get_tier_caps(TierLevel.FREE)
        assert (caps.connections, caps.products, caps.orders_per_month) == (3, 25, 50)
        assert not caps.features

    def test_suggested_tier_is_lowest_that_fits(self):
        assert get_suggested_tier(600, TierLevel.FREE) == TierLevel.CORE

    def test_no_tier_above_marketplace(self):
        assert get_suggested_tier(10, TierLevel.MARKETPLACE) is None

    def test_required_tier_for_feature(self):
        assert required_tier_for(Feature.PRICE_SYNC) == TierLevel.STARTER
        assert required_tier_for(Feature.MULTI_LOCATION) == TierLevel.CORE
        assert required_tier_for(Feature.ADVANCED_FIELDS) == TierLevel.PRO
        assert required_tier_for(Feature.MARKETPLACE) == TierLevel.GROWTH


class TestUsageLedger:

    @pytest.mark.asyncio
    async def test_check_products_counts_live_mappings(self, db, ledger, supplier, connection):
        await add_mappings(db, connection.id, 24)

        result = await ledger.check_usage(supplier.id, UsageResource.PRODUCTS)

        assert result.allowed is True
        assert result.current_usage == 24

    @pytest.mark.asyncio
    async def test_check_with_additional_units(self, db, ledger, supplier, connection):
        await add_mappings(db, connection.id, 24)

        result = await ledger.check_usage(supplier.id, UsageResource.PRODUCTS, additional=3)

        assert result.allowed is False
        assert result.reason == "product limit reached (26/25)"

    @pytest.mark.asyncio
    async def test_terminated_connections_not_counted(self, db, ledger, supplier, connection):
        await add_mappings(db, connection.id, 25)
        await db.update_connection_status(connection.id, ConnectionStatus.TERMINATED)

        assert await ledger.current_usage(supplier.id, UsageResource.PRODUCTS) == 0
        assert await ledger.current_usage(supplier.id, UsageResource.CONNECTIONS) == 0

    @pytest.mark.asyncio
    async def test_connection_limit(self, db, ledger, supplier, retailer, connection):
        for _ in range(2):
            await db.create_connection(Connection(
                supplier_shop_id=supplier.id, retailer_shop_id=retailer.id, status=ConnectionStatus.ACTIVE
            ))

        result = await ledger.check_usage(supplier.id, UsageResource.CONNECTIONS)

        assert result.allowed is False
        assert result.reason == "connection limit reached (3/3)"

    @pytest.mark.asyncio
    async def test_monthly_orders_counted(self, db, ledger, supplier):
        for n in range(3):
            await db.record_order_event(supplier.id, OrderEventKind.ORDER, f"#{n}")
        await db.record_order_event(supplier.id, OrderEventKind.ORDER_PUSH, "#0")

        assert await ledger.current_usage(supplier.id, UsageResource.ORDERS) == 3
        assert await ledger.current_usage(supplier.id, UsageResource.ORDER_PUSHES) == 1

    @pytest.mark.asyncio
    async def test_feature_denied_on_free(self, ledger, supplier):
        result = await ledger.check_feature(supplier.id, Feature.PRICE_SYNC)

        assert result.allowed is False
        assert result.required_tier == TierLevel.STARTER
        assert result.reason == "price_sync requires STARTER tier or higher"

    @pytest.mark.asyncio
    async def test_feature_allowed_after_upgrade(self, db, ledger, supplier):
        await db.update_shop_tier(supplier.id, TierLevel.CORE)

        result = await ledger.check_feature(supplier.id, Feature.MULTI_LOCATION)

        assert result.allowed is True
        assert result.reason is None

    @pytest.mark.asyncio
    async def test_unknown_shop_treated_as_free(self, ledger):
        assert await ledger.get_shop_tier("missing") == TierLevel.FREE

    @pytest.mark.asyncio
    async def test_report_warns_at_80_percent(self, db, ledger, supplier, connection):
        await add_mappings(db, connection.id, 20)

        report = await ledger.get_usage_report(supplier.id)

        assert report.overall_status == UsageStatus.WARNING
        assert report.products.percent_used == 80
        assert "Product usage at 80%" in report.warnings
        assert report.features[Feature.PRICE_SYNC] is False

    @pytest.mark.asyncio
    async def test_report_blocked_when_any_limit_reached(self, db, ledger, supplier, connection):
        for n in range(10):
            await db.add_metafield_config(MetafieldConfig(
                connection_id=connection.id, namespace="custom", key=f"field_{n}"
            ))

        report = await ledger.get_usage_report(supplier.id)

        assert report.overall_status == UsageStatus.BLOCKED
        assert report.metafield_definitions.is_over_limit is True

    @pytest.mark.asyncio
    async def test_report_ok(self, ledger, supplier):
        report = await ledger.get_usage_report(supplier.id)

        assert report.overall_status == UsageStatus.OK
        assert report.warnings == []

    def test_tier_comparison_marks_current(self):
        rows = UsageLedger(None).tier_comparison(TierLevel.PRO)

        assert [r.tier for r in rows][0] == TierLevel.FREE
        assert [r.tier for r in rows if r.is_current] == [TierLevel.PRO]
        pro = next(r for r in rows if r.tier == TierLevel.PRO)
        assert Feature.ADVANCED_FIELDS in pro.features
