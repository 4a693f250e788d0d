"""Application layer for rule evaluation."""

from alert_engine.rules_engine.application.rule_evaluator import RuleEvaluator, compare_values
from alert_engine.rules_engine.application.rules_engine import RulesEngine, validate_rule_conditions

__all__ = [
    "RuleEvaluator",
    "compare_values",
    "RulesEngine",
    "validate_rule_conditions",
]
