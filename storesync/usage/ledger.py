"""
Usage enforcement against tier caps.

Checks are evaluated before a mutating operation and return values, not
exceptions: a denied check is an expected outcome carrying a reason and an
upgrade suggestion.
"""

import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel

from ..db import OrderEventKind, SQLiteDatabase, TierLevel, utcnow
from .tiers import (
    TIER_ORDER,
    Feature,
    UsageResource,
    get_suggested_tier,
    get_tier_caps,
    required_tier_for,
)

logger = logging.getLogger(__name__)

WARNING_PERCENT = 80


class UsageStatus(str, Enum):
    OK = "OK"
    WARNING = "WARNING"
    BLOCKED = "BLOCKED"


class UsageCheckResult(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    current_usage: int
    limit: int
    percent_used: int
    is_over_limit: bool
    suggested_tier: Optional[TierLevel] = None


class FeatureCheckResult(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    required_tier: Optional[TierLevel] = None


class UsageReport(BaseModel):
    shop_id: str
    tier: TierLevel
    connections: UsageCheckResult
    products: UsageCheckResult
    orders_this_month: UsageCheckResult
    order_pushes_this_month: UsageCheckResult
    metafield_definitions: UsageCheckResult
    features: Dict[Feature, bool]
    overall_status: UsageStatus
    warnings: List[str]


class TierComparisonRow(BaseModel):
    tier: TierLevel
    is_current: bool
    connections: int
    products: int
    orders_per_month: int
    order_pushes_per_month: int
    metafield_definitions: int
    features: List[Feature]


def percent_of(current: int, limit: int) -> int:
    if limit <= 0:
        return 0
    percent = (Decimal(current) * 100 / Decimal(limit)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return min(int(percent), 100)


def evaluate(current: int, resource: UsageResource, tier: TierLevel) -> UsageCheckResult:
    """
    Evaluate a usage level against the tier cap.

    Reaching the cap already counts as over the limit: with 25/25 products
    the next product is denied.
    """
    limit = get_tier_caps(tier).limit_for(resource)
    is_over_limit = current >= limit
    return UsageCheckResult(
        allowed=not is_over_limit,
        reason=f"{resource.metric_name} limit reached ({current}/{limit})" if is_over_limit else None,
        current_usage=current,
        limit=limit,
        percent_used=percent_of(current, limit),
        is_over_limit=is_over_limit,
        suggested_tier=get_suggested_tier(current + 1, tier) if is_over_limit else None,
    )


def month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class UsageLedger:
    """Computes usage snapshots for a shop from current counts."""

    def __init__(self, db: SQLiteDatabase, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self._clock = clock or utcnow

    async def get_shop_tier(self, shop_id: str) -> TierLevel:
        shop = await self.db.get_shop(shop_id)
        return shop.tier if shop else TierLevel.FREE

    async def current_usage(self, shop_id: str, resource: UsageResource) -> int:
        if resource == UsageResource.CONNECTIONS:
            return await self.db.count_connections(shop_id)
        if resource == UsageResource.PRODUCTS:
            return await self.db.count_mapped_products(shop_id)
        if resource == UsageResource.ORDERS:
            return await self.db.count_order_events(
                shop_id, OrderEventKind.ORDER, month_start(self._clock())
            )
        if resource == UsageResource.ORDER_PUSHES:
            return await self.db.count_order_events(
                shop_id, OrderEventKind.ORDER_PUSH, month_start(self._clock())
            )
        return await self.db.count_enabled_metafield_configs(shop_id)

    async def check_usage(
        self, shop_id: str, resource: UsageResource, additional: int = 1
    ) -> UsageCheckResult:
        """Can the shop add `additional` more units of the resource?"""
        tier = await self.get_shop_tier(shop_id)
        current = await self.current_usage(shop_id, resource)
        result = evaluate(current + additional - 1, resource, tier)
        if not result.allowed:
            logger.warning(f"Usage limit enforced for shop {shop_id}: {result.reason}")
        return result

    async def check_feature(self, shop_id: str, feature: Feature) -> FeatureCheckResult:
        tier = await self.get_shop_tier(shop_id)
        if get_tier_caps(tier).has(feature):
            return FeatureCheckResult(allowed=True)

        required = required_tier_for(feature)
        return FeatureCheckResult(
            allowed=False,
            reason=f"{feature.value} requires {required.value} tier or higher",
            required_tier=required,
        )

    async def get_usage_report(self, shop_id: str) -> UsageReport:
        tier = await self.get_shop_tier(shop_id)
        caps = get_tier_caps(tier)

        results = {}
        for resource in UsageResource:
            results[resource] = evaluate(await self.current_usage(shop_id, resource), resource, tier)

        labels = {
            UsageResource.CONNECTIONS: "Connection usage",
            UsageResource.PRODUCTS: "Product usage",
            UsageResource.ORDERS: "Monthly order usage",
            UsageResource.ORDER_PUSHES: "Monthly order push usage",
            UsageResource.METAFIELD_DEFINITIONS: "Metafield definition usage",
        }
        warnings = [
            f"{labels[resource]} at {result.percent_used}%"
            for resource, result in results.items()
            if result.percent_used >= WARNING_PERCENT
        ]

        if any(result.is_over_limit for result in results.values()):
            overall = UsageStatus.BLOCKED
        elif warnings:
            overall = UsageStatus.WARNING
        else:
            overall = UsageStatus.OK

        return UsageReport(
            shop_id=shop_id,
            tier=tier,
            connections=results[UsageResource.CONNECTIONS],
            products=results[UsageResource.PRODUCTS],
            orders_this_month=results[UsageResource.ORDERS],
            order_pushes_this_month=results[UsageResource.ORDER_PUSHES],
            metafield_definitions=results[UsageResource.METAFIELD_DEFINITIONS],
            features={feature: caps.has(feature) for feature in Feature},
            overall_status=overall,
            warnings=warnings,
        )

    def tier_comparison(self, current_tier: TierLevel) -> List[TierComparisonRow]:
        rows = []
        for tier in TIER_ORDER:
            caps = get_tier_caps(tier)
            rows.append(TierComparisonRow(
                tier=tier,
                is_current=tier == current_tier,
                connections=caps.connections,
                products=caps.products,
                orders_per_month=caps.orders_per_month,
                order_pushes_per_month=caps.order_pushes_per_month,
                metafield_definitions=caps.metafield_definitions,
                features=sorted(caps.features, key=lambda f: list(Feature).index(f)),
            ))
        return rows
