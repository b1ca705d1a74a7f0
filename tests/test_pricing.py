"""
Tests for retailer pricing rules.
"""

from decimal import Decimal

from storesync.db import ImportPreferences, MarkupRule, MarkupType, ProductMapping
from storesync.mapping import (
    PriceChange,
    apply_markup,
    explain_markup,
    format_price,
    resolve_markup,
    should_update_price,
)


def rule(markup_type: MarkupType, value: str) -> MarkupRule:
    return MarkupRule(type=markup_type, value=Decimal(value))


class TestApplyMarkup:
    """Tests for apply_markup function."""

    def test_default_fifty_percent(self):
        assert apply_markup("20.00", MarkupRule()) == "30.00"

    def test_percentage_with_cents(self):
        assert apply_markup("29.99", rule(MarkupType.PERCENTAGE, "100")) == "59.98"

    def test_odd_cents_round_half_up(self):
        # 12.345 * 2 = 24.69 (rounded)
        assert apply_markup("12.345", rule(MarkupType.PERCENTAGE, "100")) == "24.69"

    def test_fixed_amount(self):
        assert apply_markup("10", rule(MarkupType.FIXED_AMOUNT, "4.5")) == "14.50"

    def test_negative_result_clamped_to_zero(self):
        assert apply_markup("3.00", rule(MarkupType.FIXED_AMOUNT, "-5")) == "0.00"

    def test_custom_mirrors_wholesale(self):
        assert apply_markup("17.5", rule(MarkupType.CUSTOM, "0")) == "17.50"

    def test_missing_price(self):
        assert apply_markup(None, MarkupRule()) is None

    def test_invalid_price(self):
        assert apply_markup("abc", MarkupRule()) is None


class TestExplainMarkup:

    def test_percentage(self):
        assert explain_markup(rule(MarkupType.PERCENTAGE, "50")) == "50% markup on wholesale"

    def test_fractional_percentage(self):
        assert explain_markup(rule(MarkupType.PERCENTAGE, "12.5")) == "12.5% markup on wholesale"

    def test_fixed(self):
        assert explain_markup(rule(MarkupType.FIXED_AMOUNT, "3")) == "3.00 added to wholesale"

    def test_custom(self):
        assert explain_markup(rule(MarkupType.CUSTOM, "0")) == "Custom pricing (wholesale price mirrored)"


class TestResolveMarkup:

    def test_no_preferences_uses_default(self):
        assert resolve_markup(None) == MarkupRule()

    def test_explicit_preferences_win(self):
        prefs = ImportPreferences(markup_type=MarkupType.FIXED_AMOUNT, markup_value=Decimal("2"))
        assert resolve_markup(prefs) == rule(MarkupType.FIXED_AMOUNT, "2")

    def test_existing_rule_kept_when_not_provided(self):
        existing = ProductMapping(
            connection_id="c", supplier_item_id="i", markup=rule(MarkupType.FIXED_AMOUNT, "7")
        )
        assert resolve_markup(ImportPreferences(), existing) == rule(MarkupType.FIXED_AMOUNT, "7")

    def test_type_change_without_value_resets_value(self):
        existing = ProductMapping(
            connection_id="c", supplier_item_id="i", markup=rule(MarkupType.PERCENTAGE, "80")
        )
        prefs = ImportPreferences(markup_type=MarkupType.FIXED_AMOUNT)
        assert resolve_markup(prefs, existing) == rule(MarkupType.FIXED_AMOUNT, "0")

    def test_value_only_keeps_type(self):
        prefs = ImportPreferences(markup_value=Decimal("25"))
        assert resolve_markup(prefs) == rule(MarkupType.PERCENTAGE, "25")


class TestShouldUpdatePrice:
    """Tests for should_update_price function."""

    def test_both_none_no_update(self):
        assert should_update_price(None, None) is False

    def test_current_none_new_value_update(self):
        assert should_update_price(None, "59.98") is True

    def test_same_values_no_update(self):
        assert should_update_price("59.98", "59.98") is False

    def test_different_values_update(self):
        assert should_update_price("29.99", "59.98") is True

    def test_equivalent_values_no_update(self):
        # "60" and "60.00" should be considered equal
        assert should_update_price("60", "60.00") is False


class TestFormatPrice:

    def test_pads_cents(self):
        assert format_price("5") == "5.00"

    def test_invalid_passes_through(self):
        assert format_price("n/a") == "n/a"

    def test_none(self):
        assert format_price(None) is None


class TestPriceChange:

    def test_needs_update(self):
        change = PriceChange("m", "p", "v", current_price="10.00", new_price="15.00")
        assert change.needs_update is True

    def test_no_new_price(self):
        change = PriceChange("m", "p", "v", current_price="10.00", new_price=None)
        assert change.needs_update is False
