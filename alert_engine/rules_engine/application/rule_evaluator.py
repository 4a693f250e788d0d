"""Condition and rule evaluation against a fact context."""

import math
import operator
import time
from typing import Any, Callable

from loguru import logger

from alert_engine.rules_engine.domain.models import (
    Condition,
    ConditionGroup,
    ConditionOperator,
    ConditionResult,
    DerivedKind,
    DerivedRef,
    DirectRef,
    EvaluationResult,
    FactContext,
    FieldRef,
    LogicalOperator,
    Rule,
)

_COMPARATORS: dict[ConditionOperator, Callable[[float, float], bool]] = {
    ConditionOperator.GT: operator.gt,
    ConditionOperator.GTE: operator.ge,
    ConditionOperator.LT: operator.lt,
    ConditionOperator.LTE: operator.le,
    ConditionOperator.EQ: operator.eq,
}


def compare_values(actual: float, op: ConditionOperator | str, threshold: float) -> bool:
    """Apply a comparison operator. Unknown operators never match."""
    comparator = _COMPARATORS.get(op)
    if comparator is None:
        logger.warning(f"Unknown operator: {op}")
        return False
    return comparator(actual, threshold)


def to_number(value: Any) -> float | None:
    """Numeric form of a fact value, or None when it has none."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            return None
    if math.isnan(number):
        return None
    return number


class RuleEvaluator:
    """
    Evaluates conditions and rules against a :class:`FactContext`.

    Evaluation never raises for bad data: missing, null or non-numeric values
    simply fail to match.
    """

    def evaluate(self, rule: Rule, context: FactContext) -> EvaluationResult:
        """Evaluate with OR semantics: any matching condition triggers."""
        start = time.perf_counter()

        all_results = [self.evaluate_condition(c, context) for c in rule.conditions]
        matched_conditions = [r.condition for r in all_results if r.matched]

        return EvaluationResult(
            matched=bool(matched_conditions),
            matched_conditions=matched_conditions,
            all_results=all_results,
            evaluation_time_ms=(time.perf_counter() - start) * 1000,
        )

    def evaluate_with_and(self, rule: Rule, context: FactContext) -> EvaluationResult:
        """Evaluate with AND semantics, stopping at the first failing condition."""
        start = time.perf_counter()
        all_results: list[ConditionResult] = []

        for condition in rule.conditions:
            result = self.evaluate_condition(condition, context)
            all_results.append(result)

            if not result.matched:
                return EvaluationResult(
                    matched=False,
                    all_results=all_results,
                    evaluation_time_ms=(time.perf_counter() - start) * 1000,
                )

        return EvaluationResult(
            matched=bool(rule.conditions),
            matched_conditions=list(rule.conditions),
            all_results=all_results,
            evaluation_time_ms=(time.perf_counter() - start) * 1000,
        )

    def evaluate_rule(self, rule: Rule, context: FactContext) -> EvaluationResult:
        """Evaluate honoring the rule's declared logical operator."""
        if rule.logical_operator == LogicalOperator.AND:
            return self.evaluate_with_and(rule, context)
        return self.evaluate(rule, context)

    def evaluate_complex(self, node: Condition | ConditionGroup, context: FactContext) -> bool:
        """Evaluate a nested tree of condition groups. NOT negates its first child."""
        if isinstance(node, Condition):
            return self.evaluate_condition(node, context).matched

        results = [self.evaluate_complex(child, context) for child in node.children]
        if not results:
            return False

        if node.operator == LogicalOperator.AND:
            return all(results)
        if node.operator == LogicalOperator.NOT:
            return not results[0]
        return any(results)

    def evaluate_condition(self, condition: Condition, context: FactContext) -> ConditionResult:
        """Resolve the condition's field and compare it with the threshold."""
        raw_value = self.resolve(condition.field_ref, context)
        numeric_value = to_number(raw_value)

        if numeric_value is None:
            return ConditionResult(
                condition=condition,
                matched=False,
                actual_value=raw_value,
                expected_value=condition.threshold,
                operator=condition.operator,
            )

        return ConditionResult(
            condition=condition,
            matched=compare_values(numeric_value, condition.operator, condition.threshold),
            actual_value=numeric_value,
            expected_value=condition.threshold,
            operator=condition.operator,
        )

    def resolve(self, ref: FieldRef, context: FactContext) -> Any:
        """Look up the value a field reference points at."""
        match ref:
            case DirectRef(name=name):
                return self._resolve_direct(name, context)
            case DerivedRef(kind=DerivedKind.RATE_OF_CHANGE, base_name=base_name):
                return self._rate_of_change(base_name, context)
        return None

    def _resolve_direct(self, name: str, context: FactContext) -> Any:
        # values, then local variables, then global variables, then dot path
        for scope in (context.values, context.local_vars, context.global_vars):
            if scope.get(name) is not None:
                return scope[name]

        if "." in name:
            return self._resolve_path(name, context)
        return None

    def _resolve_path(self, path: str, context: FactContext) -> Any:
        parts = path.split(".")
        root = context.as_mapping()
        current: Any = root if parts[0] in root else context.values

        for part in parts:
            if current is None:
                return None
            if isinstance(current, dict):
                current = current.get(part)
            else:
                current = getattr(current, part, None)
        return current

    def _rate_of_change(self, base_name: str, context: FactContext) -> float | None:
        current = to_number(context.values.get(base_name))
        previous = to_number(context.previous_values.get(base_name))

        if current is None or previous is None:
            return None
        if previous == 0:
            # Any move away from zero is an unbounded relative change
            return None if current == 0 else math.copysign(math.inf, current)

        return (current - previous) / abs(previous) * 100
