"""Tests for formatting utilities."""

from decimal import Decimal

from utils.formatters import format_breakdown, format_cedis, format_momo_number


class TestFormatCedis:
    def test_thousands_separator(self):
        assert format_cedis(Decimal("1250")) == "GH₵1,250.00"

    def test_small_amount(self):
        assert format_cedis(Decimal("9.99")) == "GH₵9.99"

    def test_negative_amount(self):
        assert format_cedis(Decimal("-5.5")) == "-GH₵5.50"


class TestFormatBreakdown:
    def test_lists_sources_in_order(self):
        breakdown = {
            "referral": Decimal("30"),
            "data_order": Decimal("120"),
            "wholesale_order": Decimal("0"),
        }
        assert format_breakdown(breakdown) == "referral: 30.00, data_order: 120.00, wholesale_order: 0.00"


class TestFormatMomoNumber:
    def test_masks_all_but_last_four(self):
        assert format_momo_number("0241234567") == "******4567"

    def test_short_number_unchanged(self):
        assert format_momo_number("4567") == "4567"
