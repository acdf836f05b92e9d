"""
Tier Engine

Computes a base fee from a contribution amount using a tier table, then
applies min/max caps. Two tier semantics are supported:

- Stepped:   each band's rate applies only to the slice of the amount inside it
- Threshold: the band containing the whole amount sets one rate for all of it

Bands are half-open [min, max). An amount sitting exactly on a boundary
belongs to the upper band.
"""

from decimal import Decimal

from ..errors import EntityCalculationError
from ..models import CapResult, CommissionTier, FeeCalculation, TierSlice
from ..money import Money
from ..validators import RuleValidator


def format_rate(rate: Decimal) -> str:
    """0.015 -> '1.5%'"""
    return f"{(rate * 100).normalize():f}%"


class TierEngine:
    """Tiered fee calculation and cap enforcement."""

    def __init__(self, validator: RuleValidator | None = None):
        self.validator = validator or RuleValidator()

    def calculate_tiered(self, amount, tiers, stepped: bool = True) -> FeeCalculation:
        """
        Calculate the gross fee for `amount` over `tiers`.

        Raises EntityCalculationError when the tier table is missing or
        malformed, or when the amount is not covered by it.
        """
        if not tiers:
            raise EntityCalculationError("No tiers defined for tiered calculation")

        self.validator.validate_tiers(tiers)
        ordered = sorted(tiers, key=lambda t: t.tier_order)
        base = Money(amount)

        if stepped:
            return self._calculate_stepped(base, ordered)
        return self._calculate_threshold(base, ordered)

    def _calculate_stepped(self, amount: Money, tiers: list[CommissionTier]) -> FeeCalculation:
        """
        Stepped tiers: apply different rates to different slices of the amount.
        Example: first 100k at 2%, next 100k at 1.5%, remainder at 1%
        """
        total_fee = Money.zero()
        allocated = Money.zero()
        slices: list[TierSlice] = []
        details: list[str] = []
        top_tier = None

        for tier in tiers:
            if amount <= tier.min_threshold:
                break

            upper = amount if tier.max_threshold is None else min(amount, Money(tier.max_threshold))
            slice_amount = upper - tier.min_threshold
            if not slice_amount.is_positive():
                continue

            if tier.fixed_amount is not None:
                tier_fee = Money(tier.fixed_amount)
                details.append(f"Tier {tier.tier_order}: {slice_amount.to_fixed()} fixed = {tier_fee.to_fixed()}")
            else:
                tier_fee = slice_amount.apply_rate(tier.rate)
                details.append(
                    f"Tier {tier.tier_order}: {slice_amount.to_fixed()} @ {format_rate(tier.rate)} = {tier_fee.to_fixed()}"
                )

            slices.append(TierSlice(
                tier_order=tier.tier_order,
                amount=slice_amount.amount,
                rate=tier.rate,
                fee=tier_fee.amount,
                fixed=tier.fixed_amount is not None,
            ))
            total_fee += tier_fee
            allocated += slice_amount
            top_tier = tier

        # Every unit of the amount must land in exactly one band
        uncovered = amount - allocated
        if not uncovered.is_zero():
            raise EntityCalculationError(
                f"Tier table does not cover {uncovered.to_fixed()} of amount {amount.to_fixed()} "
                f"(below the first tier or above a bounded top tier)"
            )

        reported = top_tier or tiers[0]
        return FeeCalculation(
            base_amount=amount.amount,
            fee_gross=total_fee.amount,
            applied_rate=reported.rate,
            tier_applied=reported.tier_order,
            calculation_method="stepped_tiers",
            slices=slices,
            notes="; ".join(details) or None,
        )

    def _calculate_threshold(self, amount: Money, tiers: list[CommissionTier]) -> FeeCalculation:
        """
        Threshold tiers: one rate, chosen by the band the total falls into.
        Example: 0-3M = 2%, 3M-6M = 2.6%, >6M = 3.1%
        """
        applicable = None
        for tier in reversed(tiers):
            if tier.contains(amount.amount):
                applicable = tier
                break

        if applicable is None:
            first = tiers[0]
            if amount >= first.min_threshold:
                raise EntityCalculationError(
                    f"Amount {amount.to_fixed()} falls outside every tier band (above bounded top tier)"
                )
            fee = Money(first.fixed_amount) if first.fixed_amount is not None else amount.apply_rate(first.rate)
            return FeeCalculation(
                base_amount=amount.amount,
                fee_gross=fee.amount,
                applied_rate=first.rate,
                tier_applied=first.tier_order,
                calculation_method="threshold_tiers",
                notes=f"Below threshold - using base tier at {format_rate(first.rate)}",
            )

        fee = Money(applicable.fixed_amount) if applicable.fixed_amount is not None else amount.apply_rate(applicable.rate)
        return FeeCalculation(
            base_amount=amount.amount,
            fee_gross=fee.amount,
            applied_rate=applicable.rate,
            tier_applied=applicable.tier_order,
            calculation_method="threshold_tiers",
            notes=f"Tier {applicable.tier_order} @ {format_rate(applicable.rate)}",
        )

    def apply_caps(self, fee, min_amount=None, max_amount=None) -> CapResult:
        """
        Clamp a fee into [min_amount, max_amount].

        Minimum wins first; the maximum is only checked when the minimum
        did not apply. Caps run after tiers and before VAT.
        """
        fee = Money(fee)
        minimum = Money(min_amount) if min_amount is not None else Money.zero()

        if fee < minimum:
            return CapResult(capped_fee=minimum.amount, notes=f"Applied minimum cap: {minimum.to_fixed()}")

        if max_amount is not None:
            maximum = Money(max_amount)
            if fee > maximum:
                return CapResult(capped_fee=maximum.amount, notes=f"Applied maximum cap: {maximum.to_fixed()}")

        return CapResult(capped_fee=fee.amount)
