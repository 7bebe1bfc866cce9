"""Unit tests for basis-point helpers."""

import pytest
from decimal import Decimal

from src.core.fixed_point import (
    bps_mul,
    checked_div,
    from_bps,
    quantize_down,
    saturating_sub,
)


class TestFixedPoint:
    """Tests for fixed point helpers."""

    def test_checked_div(self):
        assert checked_div(10, 4, "ratio") == Decimal("2.5")

    def test_checked_div_names_quantity(self):
        with pytest.raises(ZeroDivisionError, match="leverage"):
            checked_div(Decimal("1"), Decimal("0"), "leverage")

    def test_saturating_sub(self):
        assert saturating_sub(Decimal("5"), Decimal("3")) == Decimal("2")
        assert saturating_sub(Decimal("3"), Decimal("5")) == Decimal("0")

    def test_bps_mul(self):
        assert bps_mul(Decimal("1000"), 7500) == Decimal("750")
        assert bps_mul(Decimal("15000"), 12000) == Decimal("18000")

    def test_bps_conversion(self):
        assert from_bps(15000) == Decimal("1.5")
        assert from_bps(Decimal("17142")) == Decimal("1.7142")

    def test_quantize_down(self):
        assert quantize_down(Decimal("1.23456789"), 4) == Decimal("1.2345")
        assert quantize_down(Decimal("0.00009"), 4) == Decimal("0")
        assert quantize_down(Decimal("-1"), 4) == Decimal("0")
