"""
Business rules for retailer pricing.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from ..db.models import ImportPreferences, MarkupRule, MarkupType, ProductMapping

CENTS = Decimal("0.01")
DEFAULT_MARKUP = MarkupRule(type=MarkupType.PERCENTAGE, value=Decimal("50"))


@dataclass
class PriceChange:
    """Represents a retailer variant price update to be applied."""

    mapping_id: str
    product_id: str
    variant_id: str
    current_price: Optional[str]
    new_price: Optional[str]

    @property
    def needs_update(self) -> bool:
        return self.new_price is not None and should_update_price(self.current_price, self.new_price)


def _to_decimal(value: Optional[str]) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def apply_markup(wholesale_price: Optional[str], rule: MarkupRule) -> Optional[str]:
    """
    Calculate the retail price for a wholesale price.

    Rules:
    1. PERCENTAGE: price × (1 + value / 100)
    2. FIXED_AMOUNT: price + value
    3. CUSTOM: the retailer prices by hand, so the wholesale price is mirrored

    Never negative, rounded half-up to cents.

    Args:
        wholesale_price: Supplier price as string (e.g., "20.00")
        rule: Markup to apply

    Returns:
        Retail price as string, or None if the input is missing or invalid
    """
    price = _to_decimal(wholesale_price)
    if price is None:
        return None

    if rule.type == MarkupType.PERCENTAGE:
        result = price * (Decimal("1") + rule.value / Decimal("100"))
    elif rule.type == MarkupType.FIXED_AMOUNT:
        result = price + rule.value
    else:
        result = price

    if result < 0:
        result = Decimal("0")

    return str(result.quantize(CENTS, rounding=ROUND_HALF_UP))


def explain_markup(rule: MarkupRule) -> str:
    """Human readable description of a markup rule."""
    if rule.type == MarkupType.PERCENTAGE:
        return f"{rule.value.normalize():f}% markup on wholesale"
    if rule.type == MarkupType.FIXED_AMOUNT:
        return f"{rule.value.quantize(CENTS, rounding=ROUND_HALF_UP)} added to wholesale"
    return "Custom pricing (wholesale price mirrored)"


def resolve_markup(
    prefs: Optional[ImportPreferences],
    existing: Optional[ProductMapping] = None,
) -> MarkupRule:
    """
    Pick the markup for an import.

    Explicit preferences win, then the mapping's current rule, then the default.
    """
    base = existing.markup if existing is not None else DEFAULT_MARKUP
    if prefs is None:
        return base

    markup_type = prefs.markup_type or base.type
    if prefs.markup_value is not None:
        value = prefs.markup_value
    elif prefs.markup_type is not None and prefs.markup_type != base.type:
        value = DEFAULT_MARKUP.value if prefs.markup_type == MarkupType.PERCENTAGE else Decimal("0")
    else:
        value = base.value

    return MarkupRule(type=markup_type, value=value)


def should_update_price(current_price: Optional[str], new_price: Optional[str]) -> bool:
    """
    Determine if a retailer price needs to change.

    Args:
        current_price: Price currently on the retailer variant
        new_price: Calculated retail price

    Returns:
        True if the values differ once normalized to cents
    """
    return format_price(current_price) != format_price(new_price)


def format_price(value: Optional[str]) -> Optional[str]:
    """
    Format a price string to standard format (2 decimal places).
    """
    price = _to_decimal(value)
    if price is None:
        return value
    return str(price.quantize(CENTS, rounding=ROUND_HALF_UP))
