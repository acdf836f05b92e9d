"""
Rule Condition Evaluator

Decides whether a rule's conditions hold for a contribution.

Grouping:
- AND within a condition_group (every required condition must pass)
- OR across groups (one passing group is enough)
- a rule without conditions always passes
"""

from datetime import date
from decimal import Decimal, InvalidOperation

from ..errors import EntityCalculationError
from ..models import ConditionField, ConditionOperator, Contribution, RuleCondition, _date


class ConditionEvaluator:
    """Evaluates closed-vocabulary conditions against a contribution."""

    def evaluate(self, conditions, contribution: Contribution) -> bool:
        if not conditions:
            return True

        group_results: dict[int, bool] = {}
        for condition in conditions:
            group_results.setdefault(condition.condition_group, True)
            if condition.is_required and not self.evaluate_condition(condition, contribution):
                group_results[condition.condition_group] = False

        return any(group_results.values())

    def evaluate_condition(self, condition: RuleCondition, contribution: Contribution) -> bool:
        actual = self._field_value(condition.field, contribution)
        op = condition.operator

        if op in (ConditionOperator.IN, ConditionOperator.NOT_IN):
            if not isinstance(condition.value, (list, tuple)):
                raise EntityCalculationError(f"Condition {condition.id}: '{op.value}' needs a list of values")
            options = [self._coerce(condition.field, v) for v in condition.value]
            found = actual in options
            return found if op is ConditionOperator.IN else not found

        if op is ConditionOperator.BETWEEN:
            if not isinstance(condition.value, (list, tuple)) or len(condition.value) != 2:
                raise EntityCalculationError(f"Condition {condition.id}: 'between' needs exactly two values")
            low, high = (self._coerce(condition.field, v) for v in condition.value)
            return actual is not None and low <= actual <= high

        expected = self._coerce(condition.field, condition.value)

        if op is ConditionOperator.EQUALS:
            return actual == expected
        if op is ConditionOperator.NOT_EQUALS:
            return actual != expected

        # Ordering comparisons never match a missing value
        if actual is None or expected is None:
            return False
        if op is ConditionOperator.GREATER_THAN:
            return actual > expected
        if op is ConditionOperator.LESS_THAN:
            return actual < expected
        if op is ConditionOperator.GREATER_EQUAL:
            return actual >= expected
        if op is ConditionOperator.LESS_EQUAL:
            return actual <= expected

        raise TypeError(f"Unhandled condition operator: {op!r}")

    def _field_value(self, field: ConditionField, contribution: Contribution):
        if field is ConditionField.AMOUNT:
            return contribution.amount
        if field is ConditionField.FUND_NAME:
            return contribution.fund_name
        if field is ConditionField.INVESTOR_NAME:
            return contribution.investor_name
        if field is ConditionField.DEAL_ID:
            return contribution.deal_id
        if field is ConditionField.DEAL_CODE:
            return contribution.deal_code
        if field is ConditionField.CONTRIBUTION_DATE:
            return contribution.contribution_date
        raise TypeError(f"Unhandled condition field: {field!r}")

    def _coerce(self, field: ConditionField, value):
        """Bring a stored condition value to the field's type."""
        if value is None:
            return None
        try:
            if field is ConditionField.AMOUNT:
                return value if isinstance(value, Decimal) else Decimal(str(value))
            if field is ConditionField.CONTRIBUTION_DATE:
                return value if isinstance(value, date) else _date(value)
        except (InvalidOperation, ValueError) as e:
            raise EntityCalculationError(f"Invalid {field.value} condition value: {value!r}") from e
        return str(value)
