"""
Tier caps and feature sets.
"""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, List, Optional

from ..db.models import TierLevel

UNLIMITED = 999999

TIER_ORDER: List[TierLevel] = [
    TierLevel.FREE,
    TierLevel.STARTER,
    TierLevel.CORE,
    TierLevel.PRO,
    TierLevel.GROWTH,
    TierLevel.SCALE,
    TierLevel.MARKETPLACE,
]


class UsageResource(str, Enum):
    CONNECTIONS = "connections"
    PRODUCTS = "products"
    ORDERS = "orders"
    ORDER_PUSHES = "order_pushes"
    METAFIELD_DEFINITIONS = "metafield_definitions"

    @property
    def metric_name(self) -> str:
        """Singular name used in limit messages, e.g. 'product limit reached'."""
        return {
            UsageResource.CONNECTIONS: "connection",
            UsageResource.PRODUCTS: "product",
            UsageResource.ORDERS: "monthly order",
            UsageResource.ORDER_PUSHES: "monthly order push",
            UsageResource.METAFIELD_DEFINITIONS: "metafield definition",
        }[self]


class Feature(str, Enum):
    AUTO_ORDER_PUSH = "auto_order_push"
    PRICE_SYNC = "price_sync"
    MULTI_LOCATION = "multi_location"
    ADVANCED_FIELDS = "advanced_fields"  # SEO, cost, HS code
    PAYOUTS = "payouts"
    MARKETPLACE = "marketplace"


@dataclass(frozen=True)
class TierCaps:
    connections: int
    products: int
    orders_per_month: int
    order_pushes_per_month: int
    metafield_definitions: int
    features: FrozenSet[Feature]

    def limit_for(self, resource: UsageResource) -> int:
        return {
            UsageResource.CONNECTIONS: self.connections,
            UsageResource.PRODUCTS: self.products,
            UsageResource.ORDERS: self.orders_per_month,
            UsageResource.ORDER_PUSHES: self.order_pushes_per_month,
            UsageResource.METAFIELD_DEFINITIONS: self.metafield_definitions,
        }[resource]

    def has(self, feature: Feature) -> bool:
        return feature in self.features


_STARTER_FEATURES = frozenset({Feature.AUTO_ORDER_PUSH, Feature.PRICE_SYNC})
_CORE_FEATURES = _STARTER_FEATURES | {Feature.MULTI_LOCATION, Feature.PAYOUTS}
_PRO_FEATURES = _CORE_FEATURES | {Feature.ADVANCED_FIELDS}
_ALL_FEATURES = frozenset(Feature)

TIER_CAPS = {
    TierLevel.FREE: TierCaps(3, 25, 50, 10, 10, frozenset()),
    TierLevel.STARTER: TierCaps(5, 500, 100, 100, 25, _STARTER_FEATURES),
    TierLevel.CORE: TierCaps(10, 1500, 300, 300, 50, _CORE_FEATURES),
    TierLevel.PRO: TierCaps(20, 5000, 800, 800, 200, _PRO_FEATURES),
    TierLevel.GROWTH: TierCaps(40, 20000, 2000, 2000, 500, _ALL_FEATURES),
    TierLevel.SCALE: TierCaps(80, 100000, 5000, 5000, UNLIMITED, _ALL_FEATURES),
    TierLevel.MARKETPLACE: TierCaps(
        UNLIMITED, UNLIMITED, UNLIMITED, UNLIMITED, UNLIMITED, _ALL_FEATURES
    ),
}


def get_tier_caps(tier: TierLevel) -> TierCaps:
    return TIER_CAPS.get(tier, TIER_CAPS[TierLevel.FREE])


def get_suggested_tier(requested: int, current_tier: TierLevel) -> Optional[TierLevel]:
    """
    Lowest tier above current_tier where any usage cap reaches the requested level.
    """
    start = TIER_ORDER.index(current_tier) + 1
    for tier in TIER_ORDER[start:]:
        caps = TIER_CAPS[tier]
        if (
            caps.connections >= requested
            or caps.products >= requested
            or caps.orders_per_month >= requested
            or caps.order_pushes_per_month >= requested
        ):
            return tier
    return None


def required_tier_for(feature: Feature) -> Optional[TierLevel]:
    for tier in TIER_ORDER:
        if TIER_CAPS[tier].has(feature):
            return tier
    return None
