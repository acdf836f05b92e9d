"""
Input Validation for the Canonical Fee Engine

Rule-level checks come in two strengths:
- ruleset checks (calculation basis) raise ConfigurationError and abort the run
- pricing checks (rates, tiers) raise EntityCalculationError for one entity only
"""

from decimal import Decimal

from .errors import ConfigurationError, DataQualityWarning, EntityCalculationError
from .models import (
    CONTRIBUTION_BASIS,
    CommissionRule,
    CommissionTier,
    ConditionalTerms,
    Contribution,
    FixedAmountTerms,
    HybridTerms,
    PercentageTerms,
    RuleSet,
    Scope,
    TieredTerms,
)


class RuleValidator:
    """Validates commission rules according to business rules."""

    def assert_contribution_basis(self, rule: CommissionRule) -> None:
        """Only contribution-based rules may be priced. Never commitment-based."""
        if rule.calculation_basis != CONTRIBUTION_BASIS:
            raise ConfigurationError(
                f"Rule {rule.id} ({rule.name}) uses {rule.calculation_basis} basis. "
                f"Only '{CONTRIBUTION_BASIS}' (contribution) basis is allowed."
            )

    def scan(self, rule_set: RuleSet) -> list[DataQualityWarning]:
        """Flag rules whose scope qualifier means they can never be selected."""
        warnings = []
        for rule in rule_set.rules:
            if rule.applies_scope is Scope.FUND and rule.deal_id:
                warnings.append(DataQualityWarning(
                    code="FUND_RULE_WITH_DEAL",
                    message=f"Rule {rule.id} is FUND-scoped but carries deal_id {rule.deal_id}; it will never apply",
                ))
            if rule.applies_scope is Scope.DEAL and not rule.deal_id:
                warnings.append(DataQualityWarning(
                    code="DEAL_RULE_WITHOUT_DEAL",
                    message=f"Rule {rule.id} is DEAL-scoped but has no deal_id; it will never apply",
                ))
        return warnings

    def validate_for_pricing(self, rule: CommissionRule) -> None:
        """Raise EntityCalculationError if the rule cannot produce a fee."""
        if rule.min_amount < 0:
            raise EntityCalculationError(f"Rule {rule.id}: min_amount cannot be negative, got: {rule.min_amount}")
        if rule.max_amount is not None and rule.max_amount < rule.min_amount:
            raise EntityCalculationError(
                f"Rule {rule.id}: max_amount {rule.max_amount} is below min_amount {rule.min_amount}"
            )

        terms = rule.terms
        if isinstance(terms, (PercentageTerms, ConditionalTerms)):
            self._validate_rate(rule, terms.rate)
        elif isinstance(terms, FixedAmountTerms):
            self._validate_amount(rule, terms.amount)
        elif isinstance(terms, HybridTerms):
            self._validate_rate(rule, terms.rate)
            self._validate_amount(rule, terms.fixed_amount)
        elif isinstance(terms, TieredTerms):
            if not terms.tiers:
                raise EntityCalculationError(f"Rule {rule.id}: tiered rule has no tiers defined")
            self.validate_tiers(terms.tiers, rule.id)
        else:
            raise TypeError(f"Unhandled rule terms: {type(terms).__name__}")

        if isinstance(terms, ConditionalTerms) and not rule.conditions:
            raise EntityCalculationError(f"Rule {rule.id}: conditional rule has no conditions")

    def validate_tiers(self, tiers, rule_id: str | None = None) -> None:
        """
        Tiers must be ordered and contiguous: each band starts where the
        previous one ends. Only the last may be unbounded.
        """
        label = f"Rule {rule_id}: " if rule_id else ""
        ordered: list[CommissionTier] = sorted(tiers, key=lambda t: t.tier_order)
        previous = None
        for i, tier in enumerate(ordered):
            if tier.min_threshold < 0:
                raise EntityCalculationError(f"{label}Tier {tier.tier_order} min_threshold cannot be negative")
            if not (0 <= tier.rate <= 1):
                raise EntityCalculationError(f"{label}Tier {tier.tier_order} rate must be between 0 and 1, got: {tier.rate}")
            if tier.fixed_amount is not None and tier.fixed_amount < 0:
                raise EntityCalculationError(f"{label}Tier {tier.tier_order} fixed_amount cannot be negative")
            if tier.max_threshold is not None and tier.max_threshold <= tier.min_threshold:
                raise EntityCalculationError(
                    f"{label}Tier {tier.tier_order} range is empty: [{tier.min_threshold}, {tier.max_threshold})"
                )
            if tier.max_threshold is None and i != len(ordered) - 1:
                raise EntityCalculationError(f"{label}Only the last tier may be unbounded (tier {tier.tier_order})")
            if previous is not None:
                if previous.tier_order == tier.tier_order:
                    raise EntityCalculationError(f"{label}Duplicate tier_order {tier.tier_order}")
                if tier.min_threshold < previous.max_threshold:
                    raise EntityCalculationError(
                        f"{label}Tier {tier.tier_order} overlaps tier {previous.tier_order}"
                    )
                if tier.min_threshold > previous.max_threshold:
                    raise EntityCalculationError(
                        f"{label}Gap between tier {previous.tier_order} and tier {tier.tier_order}: "
                        f"[{previous.max_threshold}, {tier.min_threshold}) is not covered"
                    )
            previous = tier

    def _validate_rate(self, rule: CommissionRule, rate: Decimal) -> None:
        if not (0 <= rate <= 1):
            raise EntityCalculationError(f"Rule {rule.id}: rate must be between 0 and 1, got: {rate}")

    def _validate_amount(self, rule: CommissionRule, amount: Decimal) -> None:
        if amount < 0:
            raise EntityCalculationError(f"Rule {rule.id}: fixed_amount cannot be negative, got: {amount}")


class ContributionValidator:
    """Validates a contribution before it is priced."""

    def validate(self, contribution: Contribution) -> list[DataQualityWarning]:
        """
        Raise EntityCalculationError for contributions that cannot be priced.
        Returns warnings for contributions that are valid but produce nothing.
        """
        if contribution.amount < 0:
            raise EntityCalculationError(
                f"amount cannot be negative, got: {contribution.amount}",
                contribution_id=contribution.id,
            )
        if not contribution.investor_name:
            raise EntityCalculationError("investor_name is required", contribution_id=contribution.id)
        if contribution.amount == 0:
            return [DataQualityWarning(
                code="ZERO_AMOUNT",
                message="contribution amount is zero; no fees calculated",
                contribution_id=contribution.id,
            )]
        return []


class RequestValidator:
    """Validates a raw calculation request before any model is built."""

    def validate(self, payload: dict) -> None:
        """Raises ValueError if the request is structurally unusable."""
        if not isinstance(payload, dict):
            raise ValueError("Request body must be a JSON object")

        if not (payload.get("run_id") or payload.get("calculation_run_id")):
            raise ValueError("run_id is required")

        if not payload.get("as_of_date"):
            raise ValueError("as_of_date is required")

        contributions = payload.get("contributions")
        if not isinstance(contributions, list):
            raise ValueError("contributions must be a list")

        seen = set()
        for i, contribution in enumerate(contributions):
            if not isinstance(contribution, dict):
                raise ValueError(f"contributions[{i}] must be an object")
            contribution_id = contribution.get("id")
            if contribution_id is None:
                raise ValueError(f"contributions[{i}] is missing 'id'")
            if contribution_id in seen:
                raise ValueError(f"Duplicate contribution id: {contribution_id}")
            seen.add(contribution_id)

        for key in ("rules", "vat_rates", "credits", "agreements", "tracks"):
            if key in payload and not isinstance(payload[key], list):
                raise ValueError(f"{key} must be a list")
