"""
Usage package: tier caps and usage enforcement.
"""

from .ledger import (
    FeatureCheckResult,
    TierComparisonRow,
    UsageCheckResult,
    UsageLedger,
    UsageReport,
    UsageStatus,
    evaluate,
    month_start,
)
from .tiers import (
    TIER_CAPS,
    TIER_ORDER,
    Feature,
    TierCaps,
    UsageResource,
    get_suggested_tier,
    get_tier_caps,
    required_tier_for,
)

__all__ = [
    "FeatureCheckResult",
    "TierComparisonRow",
    "UsageCheckResult",
    "UsageLedger",
    "UsageReport",
    "UsageStatus",
    "evaluate",
    "month_start",
    "TIER_CAPS",
    "TIER_ORDER",
    "Feature",
    "TierCaps",
    "UsageResource",
    "get_suggested_tier",
    "get_tier_caps",
    "required_tier_for",
]
