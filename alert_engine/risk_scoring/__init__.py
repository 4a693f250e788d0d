"""Risk scoring package: impact analysis, weighted risk and severity classification."""

from alert_engine.risk_scoring.application import ImpactAnalyzer, RiskCalculator, SeverityClassifier
from alert_engine.risk_scoring.domain import (
    AssetConfiguration,
    ClassificationCriteria,
    ClassificationResult,
    ImpactAnalysisContext,
    ImpactAnalysisResult,
    RiskCalculationContext,
    RiskFactor,
    RiskFactorCategory,
    RiskScoreResult,
    RiskThresholds,
    RiskWeights,
)
from alert_engine.risk_scoring.infrastructure import InMemoryAssetRegistry

__all__ = [
    "ImpactAnalyzer",
    "RiskCalculator",
    "SeverityClassifier",
    "AssetConfiguration",
    "ClassificationCriteria",
    "ClassificationResult",
    "ImpactAnalysisContext",
    "ImpactAnalysisResult",
    "RiskCalculationContext",
    "RiskFactor",
    "RiskFactorCategory",
    "RiskScoreResult",
    "RiskThresholds",
    "RiskWeights",
    "InMemoryAssetRegistry",
]
