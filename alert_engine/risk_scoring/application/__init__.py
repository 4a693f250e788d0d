"""Application services for risk scoring."""

from alert_engine.risk_scoring.application.impact_analyzer import ImpactAnalyzer
from alert_engine.risk_scoring.application.risk_calculator import RiskCalculator
from alert_engine.risk_scoring.application.severity_classifier import SeverityClassifier, classify_score

__all__ = ["ImpactAnalyzer", "RiskCalculator", "SeverityClassifier", "classify_score"]
