"""
Variant auto-matching.

Compares supplier and retailer variants by their option sets (Size=M,
Color=Red, ...) and scores each candidate pair as exact, partial or none.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional

from ..db.models import CatalogVariant, VariantOption

# Share of supplier options that must match for a partial match. Heuristic,
# kept tunable.
PARTIAL_MATCH_RATIO = 0.5


class MatchConfidence(str, Enum):
    EXACT = "exact"
    PARTIAL = "partial"
    NONE = "none"


@dataclass
class VariantMatch:
    """Best retailer candidate for one supplier variant."""

    supplier_variant_id: str
    retailer_variant_id: Optional[str]
    confidence: MatchConfidence
    supplier_options: List[VariantOption] = field(default_factory=list)
    retailer_options: List[VariantOption] = field(default_factory=list)
    manually_mapped: bool = False

    @property
    def requires_manual_mapping(self) -> bool:
        if self.manually_mapped:
            return False
        return self.confidence != MatchConfidence.EXACT


def _name(option: VariantOption) -> str:
    return option.name.strip().casefold()


def _value(option: VariantOption) -> str:
    return option.value.strip().lower()


def score_options(
    supplier_options: List[VariantOption],
    retailer_options: List[VariantOption],
) -> MatchConfidence:
    """
    Score one supplier option set against one retailer option set.

    exact: same number of options and every supplier option has a same-named
    retailer option with an equal value.
    partial: at least PARTIAL_MATCH_RATIO of the supplier options find an equal
    value on the retailer side, either under the same name or under any name.
    """
    if not supplier_options:
        return MatchConfidence.EXACT if not retailer_options else MatchConfidence.NONE

    retailer_by_name = {_name(o): _value(o) for o in retailer_options}
    retailer_values = {_value(o) for o in retailer_options}

    same_shape = (
        len(supplier_options) == len(retailer_options)
        and {_name(o) for o in supplier_options} == set(retailer_by_name)
    )
    if same_shape and all(
        retailer_by_name.get(_name(o)) == _value(o) for o in supplier_options
    ):
        return MatchConfidence.EXACT

    matches = sum(
        1 for o in supplier_options
        if retailer_by_name.get(_name(o)) == _value(o) or _value(o) in retailer_values
    )
    if matches and matches >= len(supplier_options) * PARTIAL_MATCH_RATIO:
        return MatchConfidence.PARTIAL

    return MatchConfidence.NONE


def match_variant(
    supplier_variant: CatalogVariant,
    retailer_variants: Iterable[CatalogVariant],
) -> VariantMatch:
    """
    Find the retailer variant for a supplier variant.

    The first exact candidate wins immediately. Otherwise the first partial
    candidate is kept.
    """
    best: Optional[CatalogVariant] = None

    for candidate in retailer_variants:
        confidence = score_options(supplier_variant.options, candidate.options)
        if confidence == MatchConfidence.EXACT:
            return VariantMatch(
                supplier_variant_id=supplier_variant.id,
                retailer_variant_id=candidate.id,
                confidence=MatchConfidence.EXACT,
                supplier_options=list(supplier_variant.options),
                retailer_options=list(candidate.options),
            )
        if confidence == MatchConfidence.PARTIAL and best is None:
            best = candidate

    if best is not None:
        return VariantMatch(
            supplier_variant_id=supplier_variant.id,
            retailer_variant_id=best.id,
            confidence=MatchConfidence.PARTIAL,
            supplier_options=list(supplier_variant.options),
            retailer_options=list(best.options),
        )

    return VariantMatch(
        supplier_variant_id=supplier_variant.id,
        retailer_variant_id=None,
        confidence=MatchConfidence.NONE,
        supplier_options=list(supplier_variant.options),
    )


def match_variants(
    supplier_variants: Iterable[CatalogVariant],
    retailer_variants: Iterable[CatalogVariant],
) -> List[VariantMatch]:
    retailer_variants = list(retailer_variants)
    return [match_variant(v, retailer_variants) for v in supplier_variants]
