"""
Unit Tests for Tier Engine

Tests verify stepped and threshold tier calculation and cap enforcement.
"""

from decimal import Decimal

import pytest

from fee_engine.calculators.tiers import TierEngine, format_rate
from fee_engine.errors import EntityCalculationError
from fee_engine.models import CommissionTier


def _tier(order, min_threshold, max_threshold, rate='0', fixed_amount=None):
    return CommissionTier(
        tier_order=order,
        min_threshold=Decimal(str(min_threshold)),
        max_threshold=Decimal(str(max_threshold)) if max_threshold is not None else None,
        rate=Decimal(rate),
        fixed_amount=Decimal(str(fixed_amount)) if fixed_amount is not None else None,
    )


def _standard_tiers():
    """0-100k @ 2%, 100k-200k @ 1.5%, 200k+ @ 1%"""
    return [
        _tier(1, 0, 100000, '0.02'),
        _tier(2, 100000, 200000, '0.015'),
        _tier(3, 200000, None, '0.01'),
    ]


def _threshold_tiers():
    """0-3M = 2%, 3M-6M = 2.6%, >6M = 3.1%"""
    return [
        _tier(1, 0, 3000000, '0.02'),
        _tier(2, 3000000, 6000000, '0.026'),
        _tier(3, 6000000, None, '0.031'),
    ]


class TestSteppedTiers:
    """Test stepped tiers: each band's rate applies to its slice only."""

    @pytest.fixture
    def engine(self):
        return TierEngine()

    def test_three_tier_example(self, engine):
        """250k -> 2000 + 1500 + 500 = 4000."""
        result = engine.calculate_tiered(Decimal('250000'), _standard_tiers(), stepped=True)

        assert result.fee_gross == Decimal('4000')
        assert result.calculation_method == "stepped_tiers"
        assert result.tier_applied == 3
        assert result.applied_rate == Decimal('0.01')
        assert "Tier 1: 100000.00 @ 2% = 2000.00" in result.notes

    def test_slices_conserve_amount(self, engine):
        """Sum of slice amounts equals the input exactly."""
        amount = Decimal('250000.123')
        result = engine.calculate_tiered(amount, _standard_tiers(), stepped=True)

        assert sum(s.amount for s in result.slices) == amount
        assert [s.tier_order for s in result.slices] == [1, 2, 3]

    def test_amount_within_first_tier(self, engine):
        result = engine.calculate_tiered(Decimal('50000'), _standard_tiers(), stepped=True)

        assert result.fee_gross == Decimal('1000')
        assert result.tier_applied == 1
        assert len(result.slices) == 1

    def test_amount_on_boundary(self, engine):
        """Exactly 100k fills tier 1 only."""
        result = engine.calculate_tiered(Decimal('100000'), _standard_tiers(), stepped=True)

        assert result.fee_gross == Decimal('2000')
        assert result.tier_applied == 1

    def test_fixed_amount_overrides_rate_for_slice(self, engine):
        tiers = [_tier(1, 0, 1000, '0.5', fixed_amount=25), _tier(2, 1000, None, '0.01')]
        result = engine.calculate_tiered(Decimal('3000'), tiers, stepped=True)

        # 25 fixed + 2000 * 1%
        assert result.fee_gross == Decimal('45')
        assert result.slices[0].fixed is True

    def test_unordered_input_is_sorted(self, engine):
        tiers = list(reversed(_standard_tiers()))
        result = engine.calculate_tiered(Decimal('250000'), tiers, stepped=True)

        assert result.fee_gross == Decimal('4000')

    def test_bounded_top_tier_leaves_remainder(self, engine):
        tiers = [_tier(1, 0, 100000, '0.02')]
        with pytest.raises(EntityCalculationError, match="does not cover"):
            engine.calculate_tiered(Decimal('150000'), tiers, stepped=True)

    def test_gap_between_tiers(self, engine):
        tiers = [_tier(1, 0, 100000, '0.02'), _tier(2, 150000, None, '0.01')]
        with pytest.raises(EntityCalculationError, match="Gap between tier 1 and tier 2"):
            engine.calculate_tiered(Decimal('200000'), tiers, stepped=True)

    def test_gap_rejected_even_when_amount_avoids_it(self, engine):
        """A gapped table is invalid regardless of the amount priced."""
        tiers = [_tier(1, 0, 100000, '0.02'), _tier(2, 150000, None, '0.01')]
        with pytest.raises(EntityCalculationError, match="Gap between"):
            engine.calculate_tiered(Decimal('50000'), tiers, stepped=True)

    def test_first_tier_above_zero_leaves_remainder(self, engine):
        tiers = [_tier(1, 1000, None, '0.02')]
        with pytest.raises(EntityCalculationError, match="below the first tier"):
            engine.calculate_tiered(Decimal('5000'), tiers, stepped=True)

    def test_zero_amount(self, engine):
        result = engine.calculate_tiered(Decimal('0'), _standard_tiers(), stepped=True)

        assert result.fee_gross == Decimal('0')
        assert result.tier_applied == 1


class TestThresholdTiers:
    """Test threshold tiers: one rate on the whole amount."""

    @pytest.fixture
    def engine(self):
        return TierEngine()

    def test_rate_applies_to_whole_amount(self, engine):
        """4M falls in tier 2 -> 4M * 2.6%."""
        result = engine.calculate_tiered(Decimal('4000000'), _threshold_tiers(), stepped=False)

        assert result.fee_gross == Decimal('104000')
        assert result.tier_applied == 2
        assert result.calculation_method == "threshold_tiers"

    def test_exact_boundary_selects_upper_tier(self, engine):
        """3M is the start of tier 2, not the end of tier 1."""
        result = engine.calculate_tiered(Decimal('3000000'), _threshold_tiers(), stepped=False)

        assert result.tier_applied == 2
        assert result.fee_gross == Decimal('78000')

    def test_just_below_boundary_selects_lower_tier(self, engine):
        result = engine.calculate_tiered(Decimal('2999999.99'), _threshold_tiers(), stepped=False)

        assert result.tier_applied == 1

    def test_top_tier(self, engine):
        result = engine.calculate_tiered(Decimal('10000000'), _threshold_tiers(), stepped=False)

        assert result.tier_applied == 3
        assert result.fee_gross == Decimal('310000')

    def test_below_all_minimums_uses_first_tier(self, engine):
        tiers = [_tier(1, 1000, 5000, '0.02'), _tier(2, 5000, None, '0.01')]
        result = engine.calculate_tiered(Decimal('500'), tiers, stepped=False)

        assert result.tier_applied == 1
        assert result.fee_gross == Decimal('10')
        assert "Below threshold" in result.notes

    def test_above_bounded_top_tier(self, engine):
        tiers = [_tier(1, 0, 1000, '0.02')]
        with pytest.raises(EntityCalculationError, match="outside every tier"):
            engine.calculate_tiered(Decimal('5000'), tiers, stepped=False)

    def test_gap_between_tiers(self, engine):
        """Threshold mode applies the same contiguity rule as stepped mode."""
        tiers = [_tier(1, 0, 1000, '0.02'), _tier(2, 2000, None, '0.01')]
        with pytest.raises(EntityCalculationError, match="Gap between tier 1 and tier 2"):
            engine.calculate_tiered(Decimal('1500'), tiers, stepped=False)


class TestTierValidation:
    """Test tier table validation."""

    @pytest.fixture
    def engine(self):
        return TierEngine()

    def test_no_tiers(self, engine):
        with pytest.raises(EntityCalculationError, match="No tiers"):
            engine.calculate_tiered(Decimal('100'), [], stepped=True)

    def test_overlapping_tiers(self, engine):
        tiers = [_tier(1, 0, 2000, '0.02'), _tier(2, 1000, None, '0.01')]
        with pytest.raises(EntityCalculationError, match="overlaps"):
            engine.calculate_tiered(Decimal('100'), tiers, stepped=True)

    def test_unbounded_middle_tier(self, engine):
        tiers = [_tier(1, 0, None, '0.02'), _tier(2, 1000, None, '0.01')]
        with pytest.raises(EntityCalculationError, match="Only the last tier"):
            engine.calculate_tiered(Decimal('100'), tiers, stepped=True)

    def test_rate_out_of_range(self, engine):
        tiers = [_tier(1, 0, None, '1.5')]
        with pytest.raises(EntityCalculationError, match="rate must be between 0 and 1"):
            engine.calculate_tiered(Decimal('100'), tiers, stepped=True)


class TestCaps:
    """Test min/max cap enforcement."""

    @pytest.fixture
    def engine(self):
        return TierEngine()

    def test_minimum_applied(self, engine):
        result = engine.apply_caps(Decimal('50'), min_amount=Decimal('100'))

        assert result.capped_fee == Decimal('100')
        assert result.notes == "Applied minimum cap: 100.00"

    def test_maximum_applied(self, engine):
        result = engine.apply_caps(Decimal('5000'), min_amount=Decimal('0'), max_amount=Decimal('1000'))

        assert result.capped_fee == Decimal('1000')
        assert result.notes == "Applied maximum cap: 1000.00"

    def test_within_range_unchanged(self, engine):
        result = engine.apply_caps(Decimal('500'), min_amount=Decimal('100'), max_amount=Decimal('1000'))

        assert result.capped_fee == Decimal('500')
        assert result.notes is None

    def test_no_caps(self, engine):
        result = engine.apply_caps(Decimal('500'))

        assert result.capped_fee == Decimal('500')


class TestFormatRate:

    def test_format(self):
        assert format_rate(Decimal('0.015')) == "1.5%"
        assert format_rate(Decimal('0.02')) == "2%"
