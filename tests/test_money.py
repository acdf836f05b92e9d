"""
Unit Tests for Money

Tests verify exact decimal arithmetic and invoice quantization.
"""

from decimal import Decimal

import pytest

from fee_engine.money import Money, quantize_money, to_decimal


class TestConstruction:
    """Test what Money accepts."""

    def test_from_int_str_decimal(self):
        assert Money(5).amount == Decimal('5')
        assert Money('5.25').amount == Decimal('5.25')
        assert Money(Decimal('5.25')).amount == Decimal('5.25')

    def test_from_money(self):
        assert Money(Money('1.10')) == Money('1.10')

    def test_float_rejected(self):
        """Floats never enter money arithmetic."""
        with pytest.raises(TypeError, match="float"):
            Money(0.1)

    def test_bool_rejected(self):
        with pytest.raises(TypeError):
            to_decimal(True)

    def test_invalid_string_rejected(self):
        with pytest.raises(ValueError):
            Money('abc')


class TestArithmetic:
    """Test exact arithmetic."""

    def test_no_float_drift(self):
        """0.1 + 0.2 == 0.3 exactly."""
        assert Money('0.1') + Money('0.2') == Money('0.3')

    def test_subtract_and_negate(self):
        assert Money('10') - Money('12.5') == Money('-2.5')
        assert -Money('3') == Money('-3')
        assert abs(Money('-3')) == Money('3')

    def test_sum(self):
        assert Money.sum([Money('1.005'), Decimal('2'), 3]) == Money('6.005')
        assert Money.sum([]) == Money.zero()

    def test_apply_rate(self):
        assert Money('250000').apply_rate(Decimal('0.015')) == Money('3750')

    def test_percentage(self):
        """percentage() takes a percent, not a fraction."""
        assert Money('4000').percentage(17) == Money('680')

    def test_division_keeps_precision(self):
        """Intermediate division does not round to cents."""
        third = Money('100') / 3
        assert third.amount != Decimal('33.33')
        assert third.to_invoice_amount() == Decimal('33.33')

    def test_division_by_zero(self):
        with pytest.raises(ZeroDivisionError):
            Money('1') / 0

    def test_money_times_money_rejected(self):
        with pytest.raises(TypeError):
            Money('1') * Money('2')

    def test_ratio(self):
        assert Money('50').ratio(Money('200')) == Decimal('0.25')


class TestQuantization:
    """Test the invoice boundary."""

    def test_bankers_rounding(self):
        """Half-even: 0.125 -> 0.12, 0.135 -> 0.14."""
        assert quantize_money(Decimal('0.125')) == Decimal('0.12')
        assert quantize_money(Decimal('0.135')) == Decimal('0.14')

    def test_to_fixed(self):
        assert Money('4680').to_fixed() == '4680.00'
        assert Money('1.005').to_fixed() == '1.00'

    def test_quantize_returns_money(self):
        assert Money('2.345').quantize() == Money('2.34')


class TestComparison:
    """Test comparisons and hashing."""

    def test_compare_with_numbers(self):
        assert Money('5') > 4
        assert Money('5') <= Decimal('5')
        assert Money('5') == 5

    def test_min_works(self):
        assert min(Money('300'), Money('600')) == Money('300')

    def test_hash_consistent_with_eq(self):
        assert hash(Money('1.0')) == hash(Money('1.00'))

    def test_predicates(self):
        assert Money.zero().is_zero()
        assert Money('0.01').is_positive()
        assert Money('-0.01').is_negative()
