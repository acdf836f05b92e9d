"""
Credits Scoping Engine

Scope-aware netting of prior credits against fee lines:
- FUND-scoped credits can net both FUND and DEAL fee lines
- DEAL-scoped credits can only net DEAL fee lines for the same deal_id

Credits are consumed FIFO (date_posted, then id). Running balances live in
a per-run CreditLedger so the RuleSet snapshot is never mutated.
"""

import logging
import threading
from dataclasses import dataclass
from decimal import Decimal

from ..errors import InvariantViolation
from ..models import Credit, CreditApplication, CreditNetting, CreditStatus, Scope
from ..money import Money

logger = logging.getLogger(__name__)


@dataclass
class CreditBalance:
    """Running balance of one credit during a run. Only ever decreases."""

    credit: Credit
    remaining_balance: Decimal
    starting_balance: Decimal
    applied_total: Decimal = Decimal("0")

    @classmethod
    def from_credit(cls, credit: Credit) -> "CreditBalance":
        return cls(
            credit=credit,
            remaining_balance=credit.remaining_balance,
            starting_balance=credit.remaining_balance,
        )

    @property
    def id(self) -> str:
        return self.credit.id

    @property
    def status(self) -> CreditStatus:
        if self.credit.status is CreditStatus.EXHAUSTED or self.remaining_balance <= 0:
            return CreditStatus.EXHAUSTED
        return self.credit.status

    def consume(self, amount: Money) -> Decimal:
        """Decrease the balance by `amount`; returns the new balance."""
        if amount.is_negative():
            raise InvariantViolation(f"Credit {self.id}: cannot apply a negative amount {amount}")
        if amount > self.remaining_balance:
            raise InvariantViolation(
                f"Credit {self.id}: over-application of {amount.to_fixed()} "
                f"against remaining balance {self.remaining_balance}"
            )
        new_balance = Money(self.remaining_balance) - amount
        new_applied = Money(self.applied_total) + amount
        if new_balance.is_negative() or new_applied > self.starting_balance:
            raise InvariantViolation(f"Credit {self.id}: balance would go negative")
        self.remaining_balance = new_balance.amount
        self.applied_total = new_applied.amount
        return self.remaining_balance


class CreditLedger:
    """
    Per-run running balances for all credits in a RuleSet.

    Callers that process contributions in parallel must hold
    lock_for(investor) around netting for that investor.
    """

    def __init__(self, credits):
        self._balances = {c.id: CreditBalance.from_credit(c) for c in credits}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def balances(self) -> list[CreditBalance]:
        return list(self._balances.values())

    def get(self, credit_id: str) -> CreditBalance:
        return self._balances[credit_id]

    def for_investor(self, investor_name: str) -> list[CreditBalance]:
        return [b for b in self._balances.values() if b.credit.investor_name == investor_name]

    def lock_for(self, investor_name: str) -> threading.Lock:
        with self._locks_guard:
            if investor_name not in self._locks:
                self._locks[investor_name] = threading.Lock()
            return self._locks[investor_name]


class CreditsScopingEngine:
    """Selects and consumes credits for a fee line."""

    def get_applicable_credits(
        self,
        all_credits: list[CreditBalance],
        investor_name: str,
        fund_name: str | None,
        fee_line_scope: Scope,
        deal_id: str | None = None,
    ) -> list[CreditBalance]:
        """Filter credits down to those allowed to net this fee line."""
        applicable = []
        for balance in all_credits:
            credit = balance.credit

            # Must match investor
            if credit.investor_name != investor_name:
                continue

            # Must be active with remaining balance
            if balance.status is not CreditStatus.ACTIVE or balance.remaining_balance <= 0:
                continue

            # A credit bound to a fund only nets fees of that fund
            if credit.fund_name and credit.fund_name != fund_name:
                continue

            if credit.scope is Scope.FUND:
                applicable.append(balance)
            elif credit.scope is Scope.DEAL:
                if fee_line_scope is not Scope.DEAL:
                    continue
                if not deal_id or not credit.deal_id or credit.deal_id != deal_id:
                    continue
                applicable.append(balance)

        return applicable

    def apply_credits(self, fee_amount, applicable_credits: list[CreditBalance]) -> CreditNetting:
        """
        Net credits against `fee_amount` in FIFO order.

        Each credit gives min(remaining fee, its balance). The final amount
        is never negative.
        """
        remaining_fee = Money(fee_amount)
        applied: list[CreditApplication] = []
        notes: list[str] = []

        ordered = sorted(applicable_credits, key=lambda b: (b.credit.date_posted, b.credit.id))

        for balance in ordered:
            if not remaining_fee.is_positive():
                break
            if balance.remaining_balance <= 0:
                continue

            amount_to_apply = min(remaining_fee, Money(balance.remaining_balance))
            new_balance = balance.consume(amount_to_apply)
            remaining_fee -= amount_to_apply

            applied.append(CreditApplication(
                credit_id=balance.id,
                amount_applied=amount_to_apply.amount,
                remaining_balance=new_balance,
            ))

            credit = balance.credit
            scope_label = f"DEAL({credit.deal_id})" if credit.scope is Scope.DEAL else "FUND"
            notes.append(
                f"Applied {scope_label} {credit.credit_type} credit {credit.id}: "
                f"{amount_to_apply.to_fixed()} (remaining: {Money(new_balance).to_fixed()})"
            )
            logger.debug(f"Credit {credit.id} applied {amount_to_apply.to_fixed()}, remaining {new_balance}")

        if remaining_fee.is_negative():
            raise InvariantViolation(f"Credit netting produced a negative amount: {remaining_fee}")

        return CreditNetting(
            final_amount=remaining_fee.amount,
            credits_applied=applied,
            notes="; ".join(notes) or None,
        )
