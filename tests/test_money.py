"""Tests for minor-unit conversion."""

from decimal import Decimal

from app.services.money import from_minor_units, quantize_amount, to_minor_units


class TestMinorUnits:
    def test_two_decimal_currency(self):
        assert to_minor_units(Decimal("2150.00"), "GBP") == 215000
        assert to_minor_units("19.99", "usd") == 1999

    def test_float_input_has_no_binary_noise(self):
        assert to_minor_units(0.29, "EUR") == 29

    def test_zero_decimal_currency(self):
        assert to_minor_units(500, "JPY") == 500
        assert from_minor_units(500, "JPY") == Decimal("500")

    def test_from_minor_units(self):
        assert from_minor_units(107500, "GBP") == Decimal("1075.00")

    def test_quantize_rounds_half_up(self):
        assert quantize_amount("10.005", "GBP") == Decimal("10.01")
