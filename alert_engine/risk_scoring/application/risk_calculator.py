"""Weighted multi-factor risk scoring."""

import asyncio
import math
from datetime import datetime
from typing import Callable

import pandas as pd
from loguru import logger
from pydantic import ValidationError
from river import stats

from alert_engine.config import RiskScoringConfig
from alert_engine.risk_scoring.application.impact_analyzer import ImpactAnalyzer
from alert_engine.risk_scoring.application.severity_classifier import SeverityClassifier
from alert_engine.risk_scoring.domain.models import (
    ImpactAnalysisContext,
    ImpactAnalysisResult,
    RiskCalculationContext,
    RiskFactor,
    RiskFactorCategory,
    RiskScoreResult,
    RiskThresholds,
    RiskWeights,
)
from alert_engine.shared.domain.exceptions import ConfigurationException
from alert_engine.shared.domain.models import Severity, utcnow

SEVERITY_BASE_SCORES: dict[Severity, float] = {
    Severity.CRITICAL: 100,
    Severity.HIGH: 75,
    Severity.MEDIUM: 50,
    Severity.WARNING: 40,
    Severity.LOW: 25,
    Severity.INFO: 10,
}

# Environmental flags and how much each moves the 50-point context baseline
CONTEXT_ADJUSTMENTS: dict[str, float] = {
    "storm_warning": 20,
    "extreme_temperature": 15,
    "peak_season": 10,
    "critical_operation": 15,
    "maintenance_scheduled": -10,
}


def _clamp(value: float) -> float:
    return min(100.0, max(0.0, value))


def calculate_trend(values: list[float]) -> float:
    """
    Least-squares slope over the sample index, normalized by the mean.

    Returns the raw slope when the mean is zero.
    """
    if len(values) < 2:
        return 0.0

    y = pd.Series(values, dtype="float64")
    x = pd.Series(range(len(values)), dtype="float64")
    slope = float(x.cov(y) / x.var())

    mean = float(y.mean())
    return slope / mean if mean != 0 else slope


class RiskCalculator:
    """
    Combines six factors into one 0-100 risk score.

    The result is a pure function of the context, the configured weights and
    thresholds: impact analysis and classification do no I/O, and "now" is
    taken from the context when provided.
    """

    def __init__(
        self,
        impact_analyzer: ImpactAnalyzer | None = None,
        severity_classifier: SeverityClassifier | None = None,
        config: RiskScoringConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize risk calculator.

        Args:
            impact_analyzer: Produces the impact factor
            severity_classifier: Maps the total score to a severity
            config: Initial thresholds and weights
            clock: Source of "now" when a context does not pin it
        """
        config = config or RiskScoringConfig()
        self.impact_analyzer = impact_analyzer or ImpactAnalyzer()
        self.severity_classifier = severity_classifier or SeverityClassifier()
        self._clock = clock

        self.thresholds = RiskThresholds(
            critical=config.critical_threshold,
            high=config.high_threshold,
            medium=config.medium_threshold,
            low=config.low_threshold,
        )
        self.weights = RiskWeights(
            frequency=config.frequency_weight,
            severity=config.severity_weight,
            impact=config.impact_weight,
            history=config.history_weight,
            context=config.context_weight,
            trend=config.trend_weight,
        )

    def calculate_risk_score(self, context: RiskCalculationContext) -> RiskScoreResult:
        """Calculate the risk score for one rule match."""
        logger.debug(f"Calculating risk score for rule {context.rule_id}")

        weights = self.weights.as_mapping()
        thresholds = self.thresholds

        impact = self.impact_analyzer.analyze_impact(
            ImpactAnalysisContext(
                tenant_id=context.tenant_id,
                rule_id=context.rule_id,
                current_value=context.current_value,
                severity=context.rule_severity or Severity.MEDIUM,
                farm_id=context.farm_id,
                sensor_id=context.sensor_id,
                affected_assets=context.affected_assets,
                affected_processes=context.affected_processes,
            )
        )

        factors = [
            self.calculate_frequency_factor(context, weights[RiskFactorCategory.FREQUENCY]),
            self.calculate_severity_factor(context, weights[RiskFactorCategory.SEVERITY]),
            self.create_impact_factor(impact, weights[RiskFactorCategory.IMPACT]),
            self.calculate_history_factor(context, weights[RiskFactorCategory.HISTORY]),
            self.calculate_context_factor(context, weights[RiskFactorCategory.CONTEXT]),
            self.calculate_trend_factor(context, weights[RiskFactorCategory.TREND]),
        ]

        total_score = self.calculate_weighted_score(factors)

        return RiskScoreResult(
            total_score=total_score,
            factors=factors,
            severity=self.severity_classifier.classify_by_score(total_score, thresholds),
            confidence=self.calculate_confidence(factors, context),
            recommendations=self.generate_recommendations(total_score, factors, thresholds),
            impact=impact,
            metadata={
                "rule_id": context.rule_id,
                "thresholds": thresholds.model_dump(),
                "weights": self.weights.model_dump(),
            },
        )

    async def calculate_batch_risk_scores(
        self, contexts: list[RiskCalculationContext]
    ) -> dict[str, RiskScoreResult]:
        """Score several contexts concurrently, keyed by rule id; failures are logged and skipped."""

        async def score(context: RiskCalculationContext) -> tuple[str, RiskScoreResult | None]:
            try:
                return context.rule_id, await asyncio.to_thread(self.calculate_risk_score, context)
            except Exception as e:
                logger.error(f"Failed to calculate risk for rule {context.rule_id}: {e}")
                return context.rule_id, None

        results = await asyncio.gather(*[score(c) for c in contexts])
        return {rule_id: result for rule_id, result in results if result is not None}

    # ------------------------------------------------------------------
    # Factors
    # ------------------------------------------------------------------

    @staticmethod
    def calculate_weighted_score(factors: list[RiskFactor]) -> float:
        """Average of factor values weighted by the weights actually applied."""
        total_weight = sum(f.weight for f in factors)
        if total_weight <= 0:
            return 0.0
        score = sum(f.value * f.weight for f in factors) / total_weight
        return _clamp(round(score, 2))

    def calculate_frequency_factor(self, context: RiskCalculationContext, weight: float) -> RiskFactor:
        value = 50.0

        incidents = context.previous_incidents
        if incidents is not None:
            if incidents <= 0:
                value = 10
            elif incidents <= 2:
                value = 30
            elif incidents <= 5:
                value = 50
            elif incidents <= 10:
                value = 70
            else:
                value = 90

            if context.last_incident_date is not None:
                now = context.evaluated_at or self._clock()
                days_since = math.floor((now - context.last_incident_date).total_seconds() / 86400)
                if days_since < 1:
                    value += 20
                elif days_since < 7:
                    value += 10
                elif days_since > 30:
                    value -= 10

        return RiskFactor(
            category=RiskFactorCategory.FREQUENCY,
            name="Incident Frequency",
            value=_clamp(value),
            weight=weight,
            description=f"Based on {incidents if incidents is not None else 'unknown'} previous incidents",
        )

    @staticmethod
    def calculate_severity_factor(context: RiskCalculationContext, weight: float) -> RiskFactor:
        value = SEVERITY_BASE_SCORES[context.rule_severity] if context.rule_severity else 50.0

        threshold = context.threshold_value
        if threshold is not None and threshold != 0:
            deviation_percent = abs(context.current_value - threshold) / abs(threshold) * 100
            if deviation_percent > 50:
                value += 15
            elif deviation_percent > 25:
                value += 10
            elif deviation_percent > 10:
                value += 5

        return RiskFactor(
            category=RiskFactorCategory.SEVERITY,
            name="Baseline Severity",
            value=_clamp(value),
            weight=weight,
            description=(
                f"Rule severity: {context.rule_severity}" if context.rule_severity else "Unknown rule severity"
            ),
        )

    @staticmethod
    def create_impact_factor(impact: ImpactAnalysisResult, weight: float) -> RiskFactor:
        return RiskFactor(
            category=RiskFactorCategory.IMPACT,
            name="Business Impact",
            value=_clamp(impact.total_impact_score),
            weight=weight,
            description=impact.summary,
            metadata={str(c): i.score for c, i in impact.impacts.items()},
        )

    @staticmethod
    def calculate_history_factor(context: RiskCalculationContext, weight: float) -> RiskFactor:
        value = 50.0

        if context.historical_values:
            mean = stats.Mean()
            variance = stats.Var(ddof=0)
            for sample in context.historical_values:
                mean.update(sample)
                variance.update(sample)

            std_dev = math.sqrt(max(variance.get(), 0.0))
            if std_dev > 0:
                z_score = abs(context.current_value - mean.get()) / std_dev
                if z_score > 3:
                    value = 95
                elif z_score > 2:
                    value = 80
                elif z_score > 1:
                    value = 60
                else:
                    value = 30

        return RiskFactor(
            category=RiskFactorCategory.HISTORY,
            name="Historical Pattern",
            value=value,
            weight=weight,
            description="Based on historical value patterns",
        )

    @staticmethod
    def calculate_context_factor(context: RiskCalculationContext, weight: float) -> RiskFactor:
        value = 50.0
        flags = context.environmental_factors or {}

        for flag, adjustment in CONTEXT_ADJUSTMENTS.items():
            if flags.get(flag):
                value += adjustment

        return RiskFactor(
            category=RiskFactorCategory.CONTEXT,
            name="Environmental Context",
            value=_clamp(value),
            weight=weight,
            description="Based on environmental and operational context",
        )

    @staticmethod
    def calculate_trend_factor(context: RiskCalculationContext, weight: float) -> RiskFactor:
        value = 50.0

        if context.historical_values and len(context.historical_values) >= 3:
            trend = calculate_trend(context.historical_values)
            # Rising values mean rising risk
            if trend > 0.5:
                value = 90
            elif trend > 0.2:
                value = 75
            elif trend > 0:
                value = 60
            elif trend < -0.5:
                value = 20
            elif trend < -0.2:
                value = 35

        return RiskFactor(
            category=RiskFactorCategory.TREND,
            name="Value Trend",
            value=value,
            weight=weight,
            description="Based on value trend analysis",
        )

    @staticmethod
    def calculate_confidence(factors: list[RiskFactor], context: RiskCalculationContext) -> float:
        confidence = 0.5

        if context.historical_values:
            confidence += min(0.2, len(context.historical_values) * 0.02)
        if context.previous_incidents is not None:
            confidence += 0.1
        if context.environmental_factors:
            confidence += 0.1
        if factors:
            informative = [f for f in factors if 0 < f.value < 100]
            confidence += len(informative) / len(factors) * 0.1

        return min(1.0, confidence)

    @staticmethod
    def generate_recommendations(
        score: float, factors: list[RiskFactor], thresholds: RiskThresholds
    ) -> list[str]:
        recommendations = []

        if score >= thresholds.critical:
            recommendations += [
                "Immediate attention required - critical risk level",
                "Consider emergency response procedures",
            ]
        elif score >= thresholds.high:
            recommendations += ["High priority attention needed", "Review and address within 24 hours"]
        elif score >= thresholds.medium:
            recommendations += ["Monitor closely for changes", "Schedule review within this week"]

        by_category = {f.category: f.value for f in factors}
        if by_category.get(RiskFactorCategory.FREQUENCY, 0) > 70:
            recommendations.append("High incident frequency - investigate root cause")
        if by_category.get(RiskFactorCategory.TREND, 0) > 75:
            recommendations.append("Negative trend detected - implement preventive measures")
        if by_category.get(RiskFactorCategory.IMPACT, 0) > 80:
            recommendations.append("High business impact - escalate to management")

        return recommendations

    # ------------------------------------------------------------------
    # Operational controls
    # ------------------------------------------------------------------

    def set_thresholds(self, **thresholds: float) -> RiskThresholds:
        """
        Replace some or all thresholds.

        Raises:
            ConfigurationException: If the merged thresholds are invalid; the
                previous thresholds stay in effect
        """
        try:
            updated = RiskThresholds(**{**self.thresholds.model_dump(), **thresholds})
        except (ValidationError, TypeError) as e:
            raise ConfigurationException(
                "Invalid risk thresholds", details={"thresholds": thresholds, "error": str(e)}
            ) from e

        self.thresholds = updated
        logger.info(f"✓ Risk thresholds updated: {updated.model_dump()}")
        return updated

    def get_thresholds(self) -> RiskThresholds:
        return self.thresholds.model_copy()

    def set_weights(self, **weights: float) -> RiskWeights:
        """
        Replace some or all factor weights (keys: frequency, severity, impact,
        history, context, trend).

        Raises:
            ConfigurationException: If any weight is outside [0, 1], unknown, or
                all weights would be zero; the previous weights stay in effect
        """
        unknown = set(weights) - set(RiskWeights.model_fields)
        if unknown:
            raise ConfigurationException(
                f"Unknown risk factors: {', '.join(sorted(unknown))}", details={"weights": weights}
            )

        try:
            updated = RiskWeights(**{**self.weights.model_dump(), **weights})
        except ValidationError as e:
            raise ConfigurationException(
                "Invalid risk weights", details={"weights": weights, "error": str(e)}
            ) from e

        self.weights = updated
        logger.info(f"✓ Risk weights updated: {updated.model_dump()}")
        return updated

    def get_weights(self) -> RiskWeights:
        return self.weights.model_copy()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def get_factors_by_category(factors: list[RiskFactor], category: RiskFactorCategory) -> list[RiskFactor]:
        return [f for f in factors if f.category == category]

    @staticmethod
    def compare_risk_scores(a: RiskScoreResult, b: RiskScoreResult) -> float:
        """Positive when ``a`` is riskier than ``b``."""
        return a.total_score - b.total_score
