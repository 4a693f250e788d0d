"""Rules engine package: condition evaluation, rule lookup and match strategies."""

from alert_engine.rules_engine.application import RuleEvaluator, RulesEngine
from alert_engine.rules_engine.domain import (
    Condition,
    ConditionOperator,
    FactContext,
    LogicalOperator,
    MatchStrategy,
    Rule,
    RuleEvaluationRequest,
    RuleMatch,
)
from alert_engine.rules_engine.infrastructure import InMemoryRuleStore

__all__ = [
    "RuleEvaluator",
    "RulesEngine",
    "Condition",
    "ConditionOperator",
    "FactContext",
    "LogicalOperator",
    "MatchStrategy",
    "Rule",
    "RuleEvaluationRequest",
    "RuleMatch",
    "InMemoryRuleStore",
]
