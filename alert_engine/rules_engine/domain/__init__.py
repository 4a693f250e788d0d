"""Domain layer for rule evaluation."""

from alert_engine.rules_engine.domain.dtos import ConditionDTO, CreateRuleDTO, UpdateRuleDTO
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
    MatchStrategy,
    Rule,
    RuleEvaluationRequest,
    RuleFilters,
    RuleMatch,
    parse_field_ref,
)
from alert_engine.rules_engine.domain.protocols import RuleStore

__all__ = [
    "ConditionDTO",
    "CreateRuleDTO",
    "UpdateRuleDTO",
    "Condition",
    "ConditionGroup",
    "ConditionOperator",
    "ConditionResult",
    "DerivedKind",
    "DerivedRef",
    "DirectRef",
    "EvaluationResult",
    "FactContext",
    "FieldRef",
    "LogicalOperator",
    "MatchStrategy",
    "Rule",
    "RuleEvaluationRequest",
    "RuleFilters",
    "RuleMatch",
    "parse_field_ref",
    "RuleStore",
]
