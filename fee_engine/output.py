"""
Output Builder

Serializes a CalculationOutput into the API response.
Money is emitted as 2-decimal strings so no float ever carries an amount.
"""

from decimal import Decimal

from .models import CalculationOutput, FeeLine, Scope, ScopeTotals
from .money import Money
from .calculators.tiers import format_rate


def to_money(value: Decimal | None) -> str | None:
    """Decimal -> '1234.50'"""
    if value is None:
        return None
    return Money(value).to_fixed()


def to_rate(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return f"{value.normalize():f}"


def _fmt(value) -> str:
    """Format an amount for descriptions."""
    return f"{Money(value).to_invoice_amount():,.2f}"


class OutputBuilder:
    """Builds the final output response."""

    def build(self, output: CalculationOutput) -> dict:
        """Construct the complete response from a run's output."""
        return {
            "run_summary": self._build_run_summary(output),
            "totals": self._build_totals(output),
            "scope_breakdown": self._build_scope_breakdown(output),
            "fee_lines": [self._build_fee_line(line) for line in output.fee_lines],
            "warnings": [self._build_warning(w) for w in output.warnings],
            "errors": list(output.errors),
        }

    def _build_run_summary(self, output: CalculationOutput) -> dict:
        return {
            "run_id": output.run_id,
            "state": output.state.value,
            "as_of_date": output.as_of_date.isoformat(),
            "ruleset_version": output.ruleset_version,
            "ruleset_checksum": output.ruleset_checksum,
            "fee_line_count": len(output.fee_lines),
            "ready_for_approval": output.ready_for_approval,
        }

    def _build_totals(self, output: CalculationOutput) -> dict:
        """Build totals section with value and description for each field."""
        lines = output.fee_lines
        credits_total = Money.sum(line.credits_total for line in lines)
        before_credits = Money.sum(line.payable_before_credits for line in lines)

        return {
            "total_gross": {
                "value": to_money(output.total_gross),
                "description": f"Sum of fee_gross over {len(lines)} fee lines = {_fmt(output.total_gross)}",
            },
            "total_vat": {
                "value": to_money(output.total_vat),
                "description": f"Sum of VAT over {len(lines)} fee lines = {_fmt(output.total_vat)}",
            },
            "total_net": {
                "value": to_money(output.total_net),
                "description": f"Fees net of VAT: gross ({_fmt(output.total_gross)}) - VAT included in gross",
            },
            "total_credits_applied": {
                "value": to_money(credits_total.to_invoice_amount()),
                "description": (
                    f"Prior credits netted against payable: "
                    f"{_fmt(before_credits.amount)} before credits - {_fmt(credits_total.amount)} credits"
                ),
            },
            "total_payable": {
                "value": to_money(output.total_payable),
                "description": (
                    f"Amount payable after credits: {_fmt(before_credits.amount)} - "
                    f"{_fmt(credits_total.amount)} = {_fmt(output.total_payable)}"
                ),
            },
        }

    def _build_scope_breakdown(self, output: CalculationOutput) -> dict:
        breakdown = {}
        for scope in Scope:
            totals = output.scope_breakdown.get(scope) or ScopeTotals()
            breakdown[scope.value] = {
                "gross": to_money(totals.gross),
                "vat": to_money(totals.vat),
                "net": to_money(totals.net),
                "payable": to_money(totals.payable),
                "count": totals.count,
            }
        return breakdown

    def _build_fee_line(self, line: FeeLine) -> dict:
        return {
            "contribution_id": line.contribution_id,
            "investor_name": line.investor_name,
            "fund_name": line.fund_name,
            "rule_id": line.rule_id,
            "rule_version": line.rule_version,
            "source": line.source,
            "entity_type": line.entity_type.value,
            "entity_name": line.entity_name,
            "scope": line.scope.value,
            "deal_id": line.deal_id,
            "deal_code": line.deal_code,
            "deal_name": line.deal_name,
            "calculation_method": line.calculation_method,
            "base_amount": to_money(line.base_amount),
            "applied_rate": to_rate(line.applied_rate),
            "applied_rate_display": format_rate(line.applied_rate),
            "tier_applied": line.tier_applied,
            "fee_gross": to_money(line.fee_gross),
            "vat_rate": to_rate(line.vat_rate),
            "vat_amount": to_money(line.vat_amount),
            "fee_net": to_money(line.fee_net),
            "payable_before_credits": to_money(line.payable_before_credits),
            "credits_applied": [
                {
                    "credit_id": c.credit_id,
                    "amount_applied": to_money(c.amount_applied),
                    "remaining_balance": to_money(c.remaining_balance),
                }
                for c in line.credits_applied
            ],
            "total_payable": to_money(line.total_payable),
            "deferred_fee": to_money(line.deferred_fee),
            "deferred_due_date": line.deferred_due_date.isoformat() if line.deferred_due_date else None,
            "notes": line.notes,
        }

    def _build_warning(self, warning) -> dict:
        return {
            "code": warning.code,
            "message": warning.message,
            "contribution_id": warning.contribution_id,
        }
