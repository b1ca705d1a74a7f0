"""
Mapping package: product/variant mapping state, variant matching and pricing.
"""

from .pricing import (
    DEFAULT_MARKUP,
    PriceChange,
    apply_markup,
    explain_markup,
    format_price,
    resolve_markup,
    should_update_price,
)
from .store import ALLOWED_TRANSITIONS, InvalidTransitionError, MappingStore
from .variants import (
    PARTIAL_MATCH_RATIO,
    MatchConfidence,
    VariantMatch,
    match_variant,
    match_variants,
    score_options,
)

__all__ = [
    "DEFAULT_MARKUP",
    "PriceChange",
    "apply_markup",
    "explain_markup",
    "format_price",
    "resolve_markup",
    "should_update_price",
    "ALLOWED_TRANSITIONS",
    "InvalidTransitionError",
    "MappingStore",
    "PARTIAL_MATCH_RATIO",
    "MatchConfidence",
    "VariantMatch",
    "match_variant",
    "match_variants",
    "score_options",
]
