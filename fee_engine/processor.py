"""
Canonical Calculation Engine - Main Orchestrator

Turns contributions plus a snapshotted rule set into audited fee lines and
run totals, through discrete, testable steps.
"""

import logging
from datetime import date, datetime
from typing import Any, Callable, Dict

from .calculators import (
    BaseFeeCalculator,
    ConditionEvaluator,
    CreditLedger,
    CreditsScopingEngine,
    RateResolver,
    VatEngine,
    add_months,
    agreement_to_rule,
)
from .config import EngineConfig
from .errors import ConfigurationError, DataQualityWarning, EntityCalculationError, InvariantViolation
from .loaders import AgreementLoader, RuleLoader, _utc_now
from .models import (
    CalculationOutput,
    CommissionRule,
    Contribution,
    FeeLine,
    FeeLineContext,
    RuleSet,
    RunState,
    Scope,
    ScopeTotals,
    _date,
)
from .money import Money
from .output import OutputBuilder
from .precedence import PrecedenceEngine, SelectedRule
from .repositories import (
    AgreementRepository,
    CreditRepository,
    InMemoryRepositories,
    InMemoryTrackRepository,
    RuleRepository,
    SnapshotStore,
    TrackRepository,
    VatRateRepository,
)
from .validators import ContributionValidator, RequestValidator

logger = logging.getLogger(__name__)


# Legal run transitions. ABORTED is only reachable while loading the rule set.
ALLOWED_TRANSITIONS = {
    RunState.LOADING_RULESET: {RunState.PROCESSING_CONTRIBUTIONS, RunState.ABORTED},
    RunState.PROCESSING_CONTRIBUTIONS: {RunState.AGGREGATING},
    RunState.AGGREGATING: {RunState.COMPLETED},
    RunState.COMPLETED: set(),
    RunState.ABORTED: set(),
}


class RunStateMachine:
    """Tracks the state of one calculation run."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        self.state = RunState.LOADING_RULESET
        self.history = [self.state]

    def transition(self, new_state: RunState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvariantViolation(
                f"Run {self.run_id}: illegal transition {self.state.value} -> {new_state.value}"
            )
        logger.info(f"Run {self.run_id}: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)


class CanonicalCalculationEngine:
    """
    Main orchestrator for fee calculations.

    Run pipeline:
    1. Load rule set (rules, agreement-derived rules, VAT rates, credits)
    2. Resolve the run's VAT rate
    3. Process each contribution (ordered by date, then id)
    4. Aggregate totals and scope breakdown

    Per contribution:
    a. Validate contribution
    b. Select one rule per entity role (conditions, then precedence)
    c. Guard against double charging

    Per (contribution, entity):
    i.   Base fee
    ii.  Caps
    iii. VAT split
    iv.  Credit netting
    v.   Build fee line
    """

    def __init__(
        self,
        rule_repository: RuleRepository,
        vat_repository: VatRateRepository,
        credit_repository: CreditRepository,
        snapshot_store: SnapshotStore,
        agreement_repository: AgreementRepository | None = None,
        track_repository: TrackRepository | None = None,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.config = config or EngineConfig()
        self.contribution_validator = ContributionValidator()
        self.rule_loader = RuleLoader(
            rule_repository, vat_repository, credit_repository, snapshot_store, clock=clock
        )
        self.agreement_loader = AgreementLoader(agreement_repository) if agreement_repository else None
        self.rate_resolver = RateResolver(track_repository or InMemoryTrackRepository(), self.config)
        self.condition_evaluator = ConditionEvaluator()
        self.precedence_engine = PrecedenceEngine()
        self.base_fee_calculator = BaseFeeCalculator(validator=self.rule_loader.validator)
        self.tier_engine = self.base_fee_calculator.tier_engine
        self.vat_engine = VatEngine()
        self.credits_engine = CreditsScopingEngine()

    @classmethod
    def from_repositories(
        cls,
        repositories: InMemoryRepositories,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> "CanonicalCalculationEngine":
        return cls(
            rule_repository=repositories.rules,
            vat_repository=repositories.vat_rates,
            credit_repository=repositories.credits,
            snapshot_store=repositories.snapshots,
            agreement_repository=repositories.agreements,
            track_repository=repositories.tracks,
            config=config,
            clock=clock,
        )

    def calculate(self, contributions, run_id: str, as_of_date: date) -> CalculationOutput:
        """
        Calculate fee lines and totals for a run.

        ConfigurationError aborts the run (ABORTED output, no fee lines).
        EntityCalculationError is recorded per entity and the run continues.
        InvariantViolation propagates.
        """
        run = RunStateMachine(run_id)
        warnings: list[DataQualityWarning] = []
        errors: list[str] = []

        # Credit FIFO must not depend on input order
        ordered = sorted(contributions, key=lambda c: (c.contribution_date, c.id))
        investor_names = sorted({c.investor_name for c in ordered if c.investor_name})

        # Step 1-2: Load rule set and resolve VAT
        try:
            derived_rules = self._load_agreement_rules(ordered, as_of_date, warnings)
            rule_set = self.rule_loader.load_rule_set(
                run_id, investor_names, as_of_date, derived_rules, persist=False
            )
            vat_rate = self.vat_engine.resolve(rule_set.vat_rates, self.config.vat_country_code, as_of_date)
        except ConfigurationError as e:
            run.transition(RunState.ABORTED)
            logger.error(f"Run {run_id} aborted: {e}")
            return CalculationOutput(
                run_id=run_id,
                state=run.state,
                as_of_date=as_of_date,
                warnings=warnings,
                errors=[f"Calculation aborted due to configuration error: {e}"],
            )

        # An aborted run writes no snapshot, so the same run id can be recalculated
        self.rule_loader.persist_snapshot(run_id, rule_set)
        warnings.extend(self.rule_loader.validator.scan(rule_set))

        # Step 3: Process contributions
        run.transition(RunState.PROCESSING_CONTRIBUTIONS)
        ledger = CreditLedger(rule_set.credits)
        fee_lines: list[FeeLine] = []
        for contribution in ordered:
            fee_lines.extend(
                self.process_contribution(contribution, rule_set, vat_rate.rate, ledger, warnings, errors)
            )

        # Step 4: Aggregate
        run.transition(RunState.AGGREGATING)
        output = self._aggregate(fee_lines, run_id, as_of_date, rule_set)
        output.warnings = warnings
        output.errors = errors

        run.transition(RunState.COMPLETED)
        output.state = run.state
        logger.info(
            f"Run {run_id} completed: {len(fee_lines)} fee lines, total payable {output.total_payable}, "
            f"{len(warnings)} warnings, {len(errors)} errors"
        )
        return output

    def process_contribution(
        self,
        contribution: Contribution,
        rule_set: RuleSet,
        vat_rate,
        ledger: CreditLedger,
        warnings: list[DataQualityWarning],
        errors: list[str],
    ) -> list[FeeLine]:
        """Produce one fee line per entity role with an applicable rule."""
        # Step a: Validate
        try:
            found = self.contribution_validator.validate(contribution)
        except EntityCalculationError as e:
            logger.warning(f"Skipping contribution: {e}")
            errors.append(str(e))
            return []
        if found:
            warnings.extend(found)
            return []

        # Step b: Select one rule per entity role
        selected: list[SelectedRule] = []
        for entity_type, entity_name in contribution.entity_roles():
            entity = f"{entity_type.value} {entity_name}"
            try:
                rule = self._select_rule(contribution, rule_set.rules, entity_type, entity_name, warnings)
            except EntityCalculationError as e:
                e.contribution_id, e.entity = contribution.id, entity
                logger.warning(f"Rule selection failed: {e}")
                errors.append(str(e))
                continue
            if rule is not None:
                selected.append(SelectedRule(entity_type, entity_name, rule))

        # Step c: Double-charge guard, always
        self.precedence_engine.validate_no_duplicate_scope(selected, contribution)

        fee_lines = []
        for item in selected:
            ctx = FeeLineContext(
                contribution=contribution,
                rule=item.rule,
                entity_type=item.entity_type,
                entity_name=item.entity_name,
                vat_rate=vat_rate,
            )
            try:
                fee_lines.append(self.calculate_fee_line(ctx, ledger))
            except EntityCalculationError as e:
                e.contribution_id = contribution.id
                e.entity = f"{item.entity_type.value} {item.entity_name}"
                logger.warning(f"Fee line failed: {e}")
                errors.append(str(e))
        return fee_lines

    def calculate_fee_line(self, ctx: FeeLineContext, ledger: CreditLedger) -> FeeLine:
        """Run one (contribution, entity) pair through the stage pipeline."""
        contribution = ctx.contribution
        rule = ctx.rule

        # Step i: Base fee
        ctx.fee = self.base_fee_calculator.calculate(rule, contribution.amount)

        # Step ii: Caps
        ctx.capped = self.tier_engine.apply_caps(ctx.fee.fee_gross, rule.min_amount, rule.max_amount)

        # Step iii: VAT
        ctx.vat = self.vat_engine.calculate(ctx.capped.capped_fee, ctx.vat_rate, rule.vat_mode)

        # Step iv: Credits, serialized per investor
        with ledger.lock_for(contribution.investor_name):
            applicable = self.credits_engine.get_applicable_credits(
                ledger.for_investor(contribution.investor_name),
                contribution.investor_name,
                contribution.fund_name,
                rule.applies_scope,
                contribution.deal_id,
            )
            ctx.credit = self.credits_engine.apply_credits(ctx.vat.total_payable, applicable)

        # Step v: Build fee line
        return self._build_fee_line(ctx)

    def _select_rule(self, contribution, rules, entity_type, entity_name, warnings) -> CommissionRule | None:
        matching = [r for r in rules if r.matches_entity(entity_type, entity_name)]
        if not matching:
            warnings.append(DataQualityWarning(
                code="NO_MATCHING_RULE",
                message=f"No rule configured for {entity_type.value} {entity_name}",
                contribution_id=contribution.id,
            ))
            return None

        candidates = []
        for rule in matching:
            if rule.rule_type == "conditional" and not rule.conditions:
                raise EntityCalculationError(f"Rule {rule.id}: conditional rule has no conditions")
            if self.condition_evaluator.evaluate(rule.conditions, contribution):
                candidates.append(rule)

        return self.precedence_engine.find_applicable_rule(candidates, contribution.deal_id, contribution.fund_name)

    def _build_fee_line(self, ctx: FeeLineContext) -> FeeLine:
        contribution = ctx.contribution
        rule = ctx.rule

        deferred_fee = None
        deferred_due_date = None
        if rule.deferred is not None:
            deferred_fee = Money(contribution.amount).apply_rate(rule.deferred.rate).to_invoice_amount()
            deferred_due_date = add_months(contribution.contribution_date, rule.deferred.offset_months)

        notes = [n for n in (ctx.fee.notes, ctx.capped.notes, ctx.credit.notes) if n]
        if rule.deferred is not None:
            notes.append(
                f"Deferred {Money(deferred_fee).to_fixed()} due {deferred_due_date.isoformat()}"
            )

        return FeeLine(
            contribution_id=contribution.id,
            investor_name=contribution.investor_name,
            fund_name=contribution.fund_name,
            rule_id=rule.id,
            rule_version=rule.version,
            entity_type=ctx.entity_type,
            entity_name=ctx.entity_name,
            base_amount=ctx.fee.base_amount,
            applied_rate=ctx.fee.applied_rate,
            tier_applied=ctx.fee.tier_applied,
            fee_gross=ctx.vat.fee_gross,
            vat_rate=ctx.vat.vat_rate,
            vat_amount=ctx.vat.vat_amount,
            fee_net=ctx.vat.fee_net,
            payable_before_credits=ctx.vat.total_payable,
            total_payable=Money(ctx.credit.final_amount).to_invoice_amount(),
            credits_applied=ctx.credit.credits_applied,
            calculation_method=ctx.fee.calculation_method,
            scope=rule.applies_scope,
            deal_id=contribution.deal_id,
            deal_code=contribution.deal_code,
            deal_name=contribution.deal_name,
            notes="; ".join(notes) or None,
            source=rule.source,
            deferred_fee=deferred_fee,
            deferred_due_date=deferred_due_date,
        )

    def _load_agreement_rules(self, contributions, as_of_date, warnings) -> list[CommissionRule]:
        """Resolve active agreements into commission rules."""
        if self.agreement_loader is None:
            return []

        # Tracks are read fresh for every run
        self.rate_resolver.clear_cache()
        agreements = self.agreement_loader.load_active_agreements(as_of_date)
        rules = []
        for agreement in agreements:
            total_raised = Money.sum(
                c.amount for c in contributions
                if c.amount > 0 and (agreement.applies_scope is Scope.FUND or c.deal_id == agreement.deal_id)
            )
            rates = self.rate_resolver.resolve(agreement, total_raised.amount)
            warnings.extend(rates.warnings)
            rules.append(agreement_to_rule(agreement, rates, self.config.agreement_priority))

        for party_id in sorted({a.party_id for a in agreements}):
            if self.agreement_loader.has_multiple_scopes_for_party(agreements, party_id):
                logger.info(f"Party {party_id} has FUND and DEAL agreements; DEAL takes precedence per deal")

        return rules

    def _aggregate(self, fee_lines, run_id, as_of_date, rule_set: RuleSet) -> CalculationOutput:
        """Sum with exact Money arithmetic, quantize once."""

        def totals(lines) -> ScopeTotals:
            return ScopeTotals(
                gross=Money.sum(l.fee_gross for l in lines).to_invoice_amount(),
                vat=Money.sum(l.vat_amount for l in lines).to_invoice_amount(),
                net=Money.sum(l.fee_net for l in lines).to_invoice_amount(),
                payable=Money.sum(l.total_payable for l in lines).to_invoice_amount(),
                count=len(lines),
            )

        overall = totals(fee_lines)
        return CalculationOutput(
            run_id=run_id,
            state=RunState.AGGREGATING,
            as_of_date=as_of_date,
            fee_lines=fee_lines,
            total_gross=overall.gross,
            total_vat=overall.vat,
            total_net=overall.net,
            total_payable=overall.payable,
            scope_breakdown={scope: totals([l for l in fee_lines if l.scope is scope]) for scope in Scope},
            ruleset_version=rule_set.version,
            ruleset_checksum=rule_set.checksum,
        )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================


def calculate_from_dict(payload: Dict[str, Any], config: EngineConfig | None = None) -> Dict[str, Any]:
    """
    Run a calculation from a raw dictionary and return the serialized output.
    Convenience entry point for the HTTP surfaces.
    """
    RequestValidator().validate(payload)

    repositories = InMemoryRepositories.from_dict(payload)
    engine = CanonicalCalculationEngine.from_repositories(repositories, config or EngineConfig.from_env())
    contributions = [Contribution.from_dict(c) for c in payload["contributions"]]
    run_id = str(payload.get("run_id") or payload["calculation_run_id"])

    output = engine.calculate(contributions, run_id, _date(payload["as_of_date"]))
    return OutputBuilder().build(output)
