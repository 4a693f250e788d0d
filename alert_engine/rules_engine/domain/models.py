"""Domain models for rule evaluation."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from alert_engine.shared.domain.models import Severity, utcnow


class ConditionOperator(StrEnum):
    """Comparison applied between a resolved value and a threshold."""

    GT = "GT"
    GTE = "GTE"
    LT = "LT"
    LTE = "LTE"
    EQ = "EQ"


class LogicalOperator(StrEnum):
    """How a rule or condition group combines its members."""

    AND = "AND"
    OR = "OR"
    NOT = "NOT"


class MatchStrategy(StrEnum):
    """How the engine reports matches across several rules."""

    FIRST_MATCH = "FIRST_MATCH"
    ALL_MATCH = "ALL_MATCH"
    BEST_MATCH = "BEST_MATCH"


class DerivedKind(StrEnum):
    """Values computed from a base fact rather than read directly."""

    RATE_OF_CHANGE = "rate_of_change"


@dataclass(frozen=True)
class DirectRef:
    """A fact read by name (values, variables, or a dot path)."""

    name: str


@dataclass(frozen=True)
class DerivedRef:
    """A fact computed from ``base_name``, e.g. its rate of change."""

    kind: DerivedKind
    base_name: str


FieldRef = DirectRef | DerivedRef


def parse_field_ref(parameter: str) -> FieldRef:
    """Parse a condition parameter name into a field reference."""
    for kind in DerivedKind:
        prefix = f"{kind.value}_"
        if parameter.startswith(prefix) and len(parameter) > len(prefix):
            return DerivedRef(kind=kind, base_name=parameter[len(prefix):])
    return DirectRef(name=parameter)


@dataclass(frozen=True)
class Condition:
    """A single threshold comparison on one parameter."""

    parameter: str
    operator: ConditionOperator
    threshold: float
    severity: Severity
    field_ref: FieldRef = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "field_ref", parse_field_ref(self.parameter))

    def to_dict(self) -> dict:
        return {
            "parameter": self.parameter,
            "operator": str(self.operator),
            "threshold": self.threshold,
            "severity": str(self.severity),
        }


@dataclass
class ConditionGroup:
    """Nested combination of conditions and groups."""

    operator: LogicalOperator
    children: list["Condition | ConditionGroup"] = field(default_factory=list)


@dataclass
class Rule:
    """Tenant-owned alert rule."""

    id: str
    tenant_id: str
    name: str
    conditions: tuple[Condition, ...]
    logical_operator: LogicalOperator = LogicalOperator.OR
    is_active: bool = True
    farm_id: str | None = None  # None matches any farm
    pond_id: str | None = None
    sensor_id: str | None = None
    description: str | None = None
    severity: Severity | None = None  # Overrides the severity derived from conditions
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def static_severity(self) -> Severity:
        """Declared severity, else the highest among the rule's conditions."""
        if self.severity is not None:
            return self.severity
        return Severity.highest([c.severity for c in self.conditions]) or Severity.MEDIUM

    def applies_to_scope(
        self, farm_id: str | None = None, pond_id: str | None = None, sensor_id: str | None = None
    ) -> bool:
        """Check scope filters; an unset side on either end is a wildcard."""
        for own, requested in (
            (self.farm_id, farm_id),
            (self.pond_id, pond_id),
            (self.sensor_id, sensor_id),
        ):
            if own is not None and requested is not None and own != requested:
                return False
        return True


@dataclass
class RuleFilters:
    """Filters passed to the rule store."""

    include_inactive: bool = False
    rule_ids: list[str] | None = None
    farm_id: str | None = None
    pond_id: str | None = None
    sensor_id: str | None = None


@dataclass
class FactContext:
    """Named input values for one evaluation call."""

    values: dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)
    tenant_id: str | None = None
    farm_id: str | None = None
    pond_id: str | None = None
    sensor_id: str | None = None
    previous_values: dict[str, Any] = field(default_factory=dict)
    previous_timestamp: datetime | None = None
    global_vars: dict[str, Any] = field(default_factory=dict)
    local_vars: dict[str, Any] = field(default_factory=dict)

    def as_mapping(self) -> dict[str, Any]:
        """Root object for dot-path lookups such as ``values.temperature``."""
        return {
            "values": self.values,
            "previous_values": self.previous_values,
            "global_vars": self.global_vars,
            "local_vars": self.local_vars,
            "tenant_id": self.tenant_id,
            "farm_id": self.farm_id,
            "pond_id": self.pond_id,
            "sensor_id": self.sensor_id,
            "timestamp": self.timestamp,
        }


@dataclass
class ConditionResult:
    """Outcome of one condition."""

    condition: Condition
    matched: bool
    actual_value: Any
    expected_value: float
    operator: ConditionOperator


@dataclass
class EvaluationResult:
    """Outcome of one rule evaluation."""

    matched: bool
    matched_conditions: list[Condition] = field(default_factory=list)
    all_results: list[ConditionResult] = field(default_factory=list)
    evaluation_time_ms: float = 0.0
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class RuleMatch:
    """A rule that fired, with the severity derived from its matched conditions."""

    rule: Rule
    matched_conditions: list[Condition]
    severity: Severity
    evaluation: EvaluationResult

    @classmethod
    def from_evaluation(cls, rule: Rule, evaluation: EvaluationResult) -> "RuleMatch":
        severity = Severity.highest([c.severity for c in evaluation.matched_conditions])
        return cls(
            rule=rule,
            matched_conditions=list(evaluation.matched_conditions),
            severity=severity or rule.static_severity,
            evaluation=evaluation,
        )

    def to_dict(self) -> dict:
        return {
            "rule_id": self.rule.id,
            "rule_name": self.rule.name,
            "tenant_id": self.rule.tenant_id,
            "severity": str(self.severity),
            "matched_conditions": [c.to_dict() for c in self.matched_conditions],
            "evaluation_time_ms": self.evaluation.evaluation_time_ms,
        }


@dataclass
class RuleEvaluationRequest:
    """Request to evaluate a tenant's applicable rules against one context."""

    tenant_id: str
    context: FactContext
    rule_ids: list[str] | None = None
    farm_id: str | None = None
    pond_id: str | None = None
    sensor_id: str | None = None
    strategy: MatchStrategy | None = None
