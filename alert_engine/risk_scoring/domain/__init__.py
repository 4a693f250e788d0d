"""Domain layer for risk scoring."""

from alert_engine.risk_scoring.domain.models import (
    AssetConfiguration,
    CategoryImpact,
    ClassificationCriteria,
    ClassificationResult,
    ClassificationScope,
    ClassificationUrgency,
    CustomClassificationRule,
    ImpactAnalysisContext,
    ImpactAnalysisResult,
    ImpactCategory,
    ImpactLevel,
    RiskCalculationContext,
    RiskFactor,
    RiskFactorCategory,
    RiskScoreResult,
    RiskThresholds,
    RiskWeights,
    SeverityWeights,
)

__all__ = [
    "AssetConfiguration",
    "CategoryImpact",
    "ClassificationCriteria",
    "ClassificationResult",
    "ClassificationScope",
    "ClassificationUrgency",
    "CustomClassificationRule",
    "ImpactAnalysisContext",
    "ImpactAnalysisResult",
    "ImpactCategory",
    "ImpactLevel",
    "RiskCalculationContext",
    "RiskFactor",
    "RiskFactorCategory",
    "RiskScoreResult",
    "RiskThresholds",
    "RiskWeights",
    "SeverityWeights",
]
