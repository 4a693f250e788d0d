"""Domain models for risk and impact scoring."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Callable

from pydantic import BaseModel, Field, model_validator

from alert_engine.shared.domain.models import Severity, utcnow


class RiskFactorCategory(StrEnum):
    """Contributors to an overall risk score."""

    FREQUENCY = "FREQUENCY"
    SEVERITY = "SEVERITY"
    IMPACT = "IMPACT"
    HISTORY = "HISTORY"
    CONTEXT = "CONTEXT"
    TREND = "TREND"


class ImpactCategory(StrEnum):
    """Areas an incident can affect."""

    BUSINESS = "BUSINESS"
    TECHNICAL = "TECHNICAL"
    FINANCIAL = "FINANCIAL"
    COMPLIANCE = "COMPLIANCE"
    OPERATIONAL = "OPERATIONAL"
    ENVIRONMENTAL = "ENVIRONMENTAL"
    REPUTATION = "REPUTATION"


class ImpactLevel(StrEnum):
    """Banded impact score."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    NEGLIGIBLE = "NEGLIGIBLE"


class ClassificationUrgency(StrEnum):
    """How soon an incident needs attention."""

    IMMEDIATE = "IMMEDIATE"
    URGENT = "URGENT"
    SCHEDULED = "SCHEDULED"
    PLANNED = "PLANNED"
    LOW = "LOW"


class ClassificationScope(StrEnum):
    """How widely an incident reaches."""

    ENTERPRISE = "ENTERPRISE"
    DEPARTMENT = "DEPARTMENT"
    TEAM = "TEAM"
    INDIVIDUAL = "INDIVIDUAL"
    SYSTEM = "SYSTEM"


# ----------------------------------------------------------------------
# Configuration models (validated, used by the operational controls)
# ----------------------------------------------------------------------


class RiskThresholds(BaseModel):
    """Score cut-offs for severity classification; must strictly descend."""

    critical: float = Field(default=85.0, ge=0, le=100)
    high: float = Field(default=65.0, ge=0, le=100)
    medium: float = Field(default=40.0, ge=0, le=100)
    low: float = Field(default=20.0, ge=0, le=100)

    @model_validator(mode="after")
    def _check_order(self) -> "RiskThresholds":
        if not self.critical > self.high > self.medium > self.low:
            raise ValueError("thresholds must satisfy critical > high > medium > low")
        return self


class RiskWeights(BaseModel):
    """Per-factor weights; each in [0, 1] and not all zero."""

    frequency: float = Field(default=0.15, ge=0, le=1)
    severity: float = Field(default=0.25, ge=0, le=1)
    impact: float = Field(default=0.25, ge=0, le=1)
    history: float = Field(default=0.15, ge=0, le=1)
    context: float = Field(default=0.10, ge=0, le=1)
    trend: float = Field(default=0.10, ge=0, le=1)

    @model_validator(mode="after")
    def _check_total(self) -> "RiskWeights":
        if sum(self.as_mapping().values()) <= 0:
            raise ValueError("at least one weight must be positive")
        return self

    def as_mapping(self) -> dict[RiskFactorCategory, float]:
        return {
            RiskFactorCategory.FREQUENCY: self.frequency,
            RiskFactorCategory.SEVERITY: self.severity,
            RiskFactorCategory.IMPACT: self.impact,
            RiskFactorCategory.HISTORY: self.history,
            RiskFactorCategory.CONTEXT: self.context,
            RiskFactorCategory.TREND: self.trend,
        }


class SeverityWeights(BaseModel):
    """Criteria weights for multi-criteria severity classification."""

    impact: float = Field(default=0.30, ge=0, le=1)
    frequency: float = Field(default=0.15, ge=0, le=1)
    trend: float = Field(default=0.15, ge=0, le=1)
    context: float = Field(default=0.10, ge=0, le=1)
    urgency: float = Field(default=0.20, ge=0, le=1)
    scope: float = Field(default=0.10, ge=0, le=1)

    @property
    def total(self) -> float:
        return self.impact + self.frequency + self.trend + self.context + self.urgency + self.scope


# ----------------------------------------------------------------------
# Impact analysis
# ----------------------------------------------------------------------


class AssetConfiguration(BaseModel):
    """A tenant asset whose properties drive impact scoring."""

    id: str = Field(description="Asset identifier, unique within the tenant")
    tenant_id: str = Field(description="Owning tenant")
    name: str = Field(description="Display name")
    criticality: int = Field(ge=1, le=5, description="1 (minor) to 5 (mission critical)")
    dependencies: list[str] = Field(default_factory=list, description="Dependent system ids")
    business_value: float = Field(default=0.0, ge=0, description="Monetary value")
    sla_uptime: float | None = Field(default=None, ge=0, le=100, description="Committed uptime %")
    sla_response_time_ms: int | None = Field(default=None, ge=0, description="Committed response time")


@dataclass
class ImpactAnalysisContext:
    """Input for an impact analysis."""

    tenant_id: str
    rule_id: str
    current_value: float
    severity: Severity = Severity.MEDIUM
    farm_id: str | None = None
    sensor_id: str | None = None
    affected_assets: list[str] = field(default_factory=list)
    affected_processes: list[str] = field(default_factory=list)


@dataclass
class CategoryImpact:
    """Impact within one category."""

    category: ImpactCategory
    level: ImpactLevel
    score: float
    factors: list[str] = field(default_factory=list)
    mitigation: str | None = None


@dataclass
class ImpactAnalysisResult:
    """Category-weighted impact of an incident."""

    total_impact_score: float
    impacts: dict[ImpactCategory, CategoryImpact]
    affected_systems: list[str]
    estimated_downtime_minutes: int
    estimated_cost: float
    summary: str
    analyzed_at: datetime = field(default_factory=utcnow)

    def impact_for(self, category: ImpactCategory) -> CategoryImpact:
        return self.impacts[category]


# ----------------------------------------------------------------------
# Risk scoring
# ----------------------------------------------------------------------


@dataclass
class RiskFactor:
    """One weighted 0-100 contributor to a risk score."""

    category: RiskFactorCategory
    name: str
    value: float
    weight: float
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class RiskCalculationContext:
    """
    Input for a risk score calculation.

    ``evaluated_at`` pins "now" for recency checks; when unset the calculator's
    clock is used.
    """

    tenant_id: str
    rule_id: str
    current_value: float
    rule_severity: Severity | None = None
    threshold_value: float | None = None
    farm_id: str | None = None
    sensor_id: str | None = None
    historical_values: list[float] | None = None
    previous_incidents: int | None = None
    last_incident_date: datetime | None = None
    environmental_factors: dict[str, Any] | None = None
    affected_assets: list[str] = field(default_factory=list)
    affected_processes: list[str] = field(default_factory=list)
    evaluated_at: datetime | None = None


@dataclass
class RiskScoreResult:
    """Weighted risk score with its factors, severity and guidance."""

    total_score: float
    factors: list[RiskFactor]
    severity: Severity
    confidence: float
    recommendations: list[str]
    impact: ImpactAnalysisResult | None = None
    calculated_at: datetime = field(default_factory=utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def normalized_score(self) -> float:
        return self.total_score / 100

    def factor(self, category: RiskFactorCategory) -> RiskFactor | None:
        return next((f for f in self.factors if f.category == category), None)


# ----------------------------------------------------------------------
# Severity classification
# ----------------------------------------------------------------------


@dataclass
class ClassificationCriteria:
    """Optional scores and qualifiers used for multi-criteria classification."""

    impact_score: float | None = None
    frequency_score: float | None = None
    trend_score: float | None = None
    context_score: float | None = None
    urgency: ClassificationUrgency | None = None
    scope: ClassificationScope | None = None


CustomClassificationRule = Callable[[ClassificationCriteria], Severity | None]


@dataclass
class ClassificationResult:
    """Outcome of a severity classification."""

    severity: Severity
    confidence: float
    justification: list[str]
    recommended_actions: list[str]
    escalation_required: bool
    auto_resolvable: bool
    alternative_severity: Severity | None = None
