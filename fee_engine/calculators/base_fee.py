"""
Base Fee Calculator

Computes the gross fee of a rule for one contribution amount, before caps.
One branch per rule terms variant.
"""

from decimal import Decimal

from ..models import (
    CommissionRule,
    ConditionalTerms,
    FeeCalculation,
    FixedAmountTerms,
    HybridTerms,
    PercentageTerms,
    TieredTerms,
    TierMode,
)
from ..money import Money
from ..validators import RuleValidator
from .tiers import TierEngine, format_rate


class BaseFeeCalculator:
    """Calculates the uncapped fee for a rule."""

    def __init__(self, tier_engine: TierEngine | None = None, validator: RuleValidator | None = None):
        self.validator = validator or RuleValidator()
        self.tier_engine = tier_engine or TierEngine(self.validator)

    def calculate(self, rule: CommissionRule, amount) -> FeeCalculation:
        """
        Calculate the base fee.

        Raises EntityCalculationError if the rule cannot be priced.
        """
        self.validator.validate_for_pricing(rule)
        base = Money(amount)
        terms = rule.terms

        if isinstance(terms, PercentageTerms):
            return FeeCalculation(
                base_amount=base.amount,
                fee_gross=base.apply_rate(terms.rate).amount,
                applied_rate=terms.rate,
                calculation_method="percentage",
            )

        if isinstance(terms, FixedAmountTerms):
            return FeeCalculation(
                base_amount=base.amount,
                fee_gross=terms.amount,
                applied_rate=Decimal("0"),
                calculation_method="fixed_amount",
                notes=f"Fixed fee {Money(terms.amount).to_fixed()}",
            )

        if isinstance(terms, TieredTerms):
            return self.tier_engine.calculate_tiered(
                base,
                terms.tiers,
                stepped=terms.mode is TierMode.STEPPED,
            )

        if isinstance(terms, HybridTerms):
            variable = base.apply_rate(terms.rate)
            fee = Money(terms.fixed_amount) + variable
            return FeeCalculation(
                base_amount=base.amount,
                fee_gross=fee.amount,
                applied_rate=terms.rate,
                calculation_method="hybrid",
                notes=(
                    f"Fixed {Money(terms.fixed_amount).to_fixed()} + "
                    f"{format_rate(terms.rate)} = {fee.to_fixed()}"
                ),
            )

        if isinstance(terms, ConditionalTerms):
            return FeeCalculation(
                base_amount=base.amount,
                fee_gross=base.apply_rate(terms.rate).amount,
                applied_rate=terms.rate,
                calculation_method="conditional",
                notes="Conditions met",
            )

        raise TypeError(f"Unhandled rule terms: {type(terms).__name__}")
