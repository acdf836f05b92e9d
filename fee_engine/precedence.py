"""
Precedence Engine

Scope precedence: a DEAL-scoped rule for the contribution's deal beats a
FUND-scoped rule. Within a scope, higher priority wins; equal priorities
fall back to rule id so selection is deterministic.
"""

from dataclasses import dataclass

from .errors import InvariantViolation
from .models import CommissionRule, Contribution, EntityType, Scope


@dataclass(frozen=True)
class SelectedRule:
    entity_type: EntityType
    entity_name: str
    rule: CommissionRule


class PrecedenceEngine:
    """Chooses one rule per entity and guards against double charging."""

    def find_applicable_rule(
        self,
        rules: list[CommissionRule],
        deal_id: str | None,
        fund_name: str | None,
    ) -> CommissionRule | None:
        """
        Find the best applicable rule for an entity.

        `rules` are the candidates already matched to the entity. Returns
        None if no rule's scope qualifier is satisfied.
        """
        if not rules:
            return None

        # Sort by priority (higher first), then id
        ordered = sorted(rules, key=lambda r: (-r.priority, r.id))

        if deal_id:
            for rule in ordered:
                if (
                    rule.applies_scope is Scope.DEAL
                    and rule.deal_id == deal_id
                    and (not rule.fund_name or rule.fund_name == fund_name)
                ):
                    return rule

        # FUND rules must never carry a deal_id
        for rule in ordered:
            if (
                rule.applies_scope is Scope.FUND
                and not rule.deal_id
                and (not rule.fund_name or rule.fund_name == fund_name)
            ):
                return rule

        return None

    def validate_no_duplicate_scope(self, selected: list[SelectedRule], contribution: Contribution) -> None:
        """
        Raise InvariantViolation if any entity was assigned rules in more
        than one scope for this contribution.
        """
        scopes_by_entity: dict[tuple[EntityType, str], set[Scope]] = {}
        for item in selected:
            key = (item.entity_type, item.entity_name)
            scopes_by_entity.setdefault(key, set()).add(item.rule.applies_scope)

        for (entity_type, entity_name), scopes in scopes_by_entity.items():
            if len(scopes) > 1:
                raise InvariantViolation(
                    f"Double-charging detected for {entity_type.value}:{entity_name} "
                    f"on contribution {contribution.id}. Both DEAL and FUND scoped rules were selected."
                )
