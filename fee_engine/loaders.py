"""
Rule Set and Agreement Loading

RuleLoader produces the immutable, checksummed RuleSet a run prices
against. AgreementLoader selects the agreements in force on a date.
"""

import logging
from datetime import date, datetime, timezone
from typing import Callable

from .checksum import checksum, to_primitive
from .errors import InvariantViolation
from .models import Agreement, CommissionRule, CreditStatus, RuleSet, Scope, in_window
from .repositories import (
    AgreementRepository,
    CreditRepository,
    RuleRepository,
    SnapshotStore,
    VatRateRepository,
)
from .validators import RuleValidator

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RuleLoader:
    """Loads rules, VAT rates and credits into a RuleSet snapshot."""

    def __init__(
        self,
        rule_repository: RuleRepository,
        vat_repository: VatRateRepository,
        credit_repository: CreditRepository,
        snapshot_store: SnapshotStore,
        validator: RuleValidator | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.rule_repository = rule_repository
        self.vat_repository = vat_repository
        self.credit_repository = credit_repository
        self.snapshot_store = snapshot_store
        self.validator = validator or RuleValidator()
        self.clock = clock

    def load_rule_set(
        self,
        run_id: str,
        investor_names,
        as_of_date: date | None = None,
        derived_rules=(),
        persist: bool = True,
    ) -> RuleSet:
        """
        Load the complete rule set for a calculation run.

        Every rule's calculation basis is checked before the snapshot is
        written; one violation raises ConfigurationError and nothing is
        stored. `derived_rules` (agreement-derived) are snapshotted and
        checksummed alongside the stored rules.

        With persist=False the snapshot is not written; the caller must call
        persist_snapshot once the rest of its loading has succeeded.
        """
        rules = [r for r in self.rule_repository.list_rules() if self._is_loadable(r, as_of_date)]
        rules.extend(derived_rules)

        # Fail fast: a single commitment-based rule aborts the whole run
        for rule in rules:
            self.validator.assert_contribution_basis(rule)

        rules.sort(key=lambda r: r.id)
        vat_rates = sorted(
            self.vat_repository.list_vat_rates(),
            key=lambda v: (v.country_code, v.effective_from, v.id or ""),
        )
        wanted = sorted(set(investor_names))
        credits = sorted(
            (
                c for c in self.credit_repository.list_credits(wanted)
                if c.investor_name in wanted and c.status is CreditStatus.ACTIVE and c.remaining_balance > 0
            ),
            key=lambda c: c.id,
        )

        version = self.clock().isoformat()
        rule_set = RuleSet(
            rules=tuple(rules),
            vat_rates=tuple(vat_rates),
            credits=tuple(credits),
            version=version,
            checksum=self.generate_checksum(rules, vat_rates, credits),
            as_of_date=as_of_date,
        )

        if persist:
            self.persist_snapshot(run_id, rule_set)

        logger.info(
            f"Loaded rule set for run {run_id}: {len(rule_set.rules)} rules, "
            f"{len(rule_set.vat_rates)} VAT rates, {len(rule_set.credits)} credits "
            f"(checksum {rule_set.checksum[:12]})"
        )
        return rule_set

    def persist_snapshot(self, run_id: str, rule_set: RuleSet) -> None:
        """Append one immutable snapshot per rule. A run id can be written once."""
        self.snapshot_store.append(run_id, [
            {
                "run_id": run_id,
                "rule_id": rule.id,
                "rule_version": rule.version,
                "rule_checksum": checksum(rule),
                "ruleset_checksum": rule_set.checksum,
                "rule_snapshot": to_primitive(rule),
            }
            for rule in rule_set.rules
        ])

    def generate_checksum(self, rules, vat_rates, credits) -> str:
        """SHA-256 over a stable serialization; input ordering does not matter."""
        return checksum({
            "rules": sorted(rules, key=lambda r: r.id),
            "vat_rates": sorted(vat_rates, key=lambda v: (v.country_code, v.effective_from, v.id or "")),
            "credits": sorted(credits, key=lambda c: c.id),
        })

    def verify_rule_set(self, rule_set: RuleSet) -> None:
        """Recompute a snapshot's checksum. Mismatch means it was altered after creation."""
        actual = self.generate_checksum(rule_set.rules, rule_set.vat_rates, rule_set.credits)
        if actual != rule_set.checksum:
            raise InvariantViolation(
                f"Rule set checksum mismatch. Expected: {rule_set.checksum}, Got: {actual}"
            )

    def validate_rule_checksum(self, rule: CommissionRule, expected_checksum: str) -> None:
        if rule.checksum != expected_checksum:
            raise InvariantViolation(
                f"Rule {rule.id} checksum mismatch. "
                f"Expected: {expected_checksum}, Got: {rule.checksum}. "
                f"Rule may have been modified since calculation started."
            )

    def _is_loadable(self, rule: CommissionRule, as_of_date: date | None) -> bool:
        if not rule.is_active or rule.archived_at:
            return False
        if as_of_date is not None and not in_window(as_of_date, rule.effective_from, rule.effective_to):
            return False
        return True


class AgreementLoader:
    """Loads agreements and applies agreement-level scope precedence."""

    def __init__(self, agreement_repository: AgreementRepository):
        self.agreement_repository = agreement_repository

    def load_active_agreements(self, as_of_date: date) -> list[Agreement]:
        """Active agreements whose effective window contains `as_of_date`, ordered by id."""
        agreements = [
            a for a in self.agreement_repository.list_agreements(as_of_date)
            if a.status == "active" and in_window(as_of_date, a.effective_from, a.effective_to)
        ]
        return sorted(agreements, key=lambda a: a.id)

    def find_applicable_agreement(
        self,
        agreements: list[Agreement],
        party_id: str,
        deal_id: str | None = None,
    ) -> Agreement | None:
        """
        DEAL-scoped agreement for the deal first, else a FUND-scoped
        agreement without a deal_id, else None.
        """
        party_agreements = [a for a in agreements if a.party_id == party_id]
        if not party_agreements:
            return None

        if deal_id:
            for agreement in party_agreements:
                if agreement.applies_scope is Scope.DEAL and agreement.deal_id == deal_id:
                    return agreement

        for agreement in party_agreements:
            if agreement.applies_scope is Scope.FUND and not agreement.deal_id:
                return agreement

        return None

    def has_multiple_scopes_for_party(self, agreements: list[Agreement], party_id: str) -> bool:
        """True if the party has both FUND and DEAL agreements (a potential double charge)."""
        scopes = {a.applies_scope for a in agreements if a.party_id == party_id}
        return Scope.FUND in scopes and Scope.DEAL in scopes
