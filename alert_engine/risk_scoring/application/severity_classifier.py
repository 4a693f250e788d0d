"""Severity classification from scores and multi-criteria input."""

from loguru import logger

from alert_engine.risk_scoring.domain.models import (
    ClassificationCriteria,
    ClassificationResult,
    ClassificationScope,
    ClassificationUrgency,
    CustomClassificationRule,
    RiskThresholds,
    SeverityWeights,
)
from alert_engine.shared.domain.models import SEVERITY_RANK, Severity

URGENCY_SCORES: dict[ClassificationUrgency, float] = {
    ClassificationUrgency.IMMEDIATE: 100,
    ClassificationUrgency.URGENT: 80,
    ClassificationUrgency.SCHEDULED: 50,
    ClassificationUrgency.PLANNED: 30,
    ClassificationUrgency.LOW: 10,
}

SCOPE_SCORES: dict[ClassificationScope, float] = {
    ClassificationScope.ENTERPRISE: 100,
    ClassificationScope.DEPARTMENT: 70,
    ClassificationScope.TEAM: 50,
    ClassificationScope.INDIVIDUAL: 30,
    ClassificationScope.SYSTEM: 60,
}

RECOMMENDED_ACTIONS: dict[Severity, list[str]] = {
    Severity.CRITICAL: [
        "Immediate escalation to on-call team",
        "Activate incident response procedure",
        "Notify stakeholders immediately",
        "Begin root cause investigation",
        "Prepare status communication",
    ],
    Severity.HIGH: [
        "Escalate to engineering team",
        "Begin investigation within 1 hour",
        "Prepare mitigation plan",
        "Monitor for escalation",
    ],
    Severity.MEDIUM: [
        "Review within business hours",
        "Assign to appropriate team",
        "Document for trending analysis",
    ],
    Severity.WARNING: [
        "Monitor situation",
        "Review during next scheduled check",
        "Document for trending analysis",
    ],
    Severity.LOW: ["Add to review queue", "Monitor for pattern development"],
    Severity.INFO: ["Log for historical analysis", "No immediate action required"],
}

SEVERITY_LABELS: dict[Severity, str] = {
    Severity.CRITICAL: "Critical - Immediate Action Required",
    Severity.HIGH: "High - Urgent Attention Needed",
    Severity.MEDIUM: "Medium - Review Required",
    Severity.WARNING: "Warning - Attention Recommended",
    Severity.LOW: "Low - Monitor",
    Severity.INFO: "Informational",
}

SEVERITY_COLORS: dict[Severity, str] = {
    Severity.CRITICAL: "#dc2626",
    Severity.HIGH: "#ea580c",
    Severity.MEDIUM: "#ca8a04",
    Severity.WARNING: "#eab308",
    Severity.LOW: "#2563eb",
    Severity.INFO: "#6b7280",
}

# Hours an unresolved incident may sit before it is bumped one level
AGE_UPGRADE_HOURS: dict[Severity, float] = {
    Severity.INFO: 168,
    Severity.LOW: 72,
    Severity.WARNING: 48,
    Severity.MEDIUM: 24,
    Severity.HIGH: 4,
}

_LADDER = [Severity.INFO, Severity.LOW, Severity.WARNING, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]

# Alternatives skip WARNING, which is never produced by score classification
_ALTERNATIVE_LADDER = [Severity.INFO, Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


def classify_score(score: float, thresholds: RiskThresholds) -> Severity:
    """Map a 0-100 score to a severity using ``thresholds``."""
    if score >= thresholds.critical:
        return Severity.CRITICAL
    if score >= thresholds.high:
        return Severity.HIGH
    if score >= thresholds.medium:
        return Severity.MEDIUM
    if score >= thresholds.low:
        return Severity.LOW
    return Severity.INFO


class SeverityClassifier:
    """Maps a score or a set of criteria to a severity level."""

    def __init__(self, weights: SeverityWeights | None = None):
        self.weights = weights or SeverityWeights()
        self._custom_rules: dict[str, CustomClassificationRule] = {}

    def classify_by_score(self, score: float, thresholds: RiskThresholds | None = None) -> Severity:
        return classify_score(score, thresholds or RiskThresholds())

    def classify_by_criteria(self, criteria: ClassificationCriteria) -> ClassificationResult:
        """
        Classify from whichever criteria are present.

        Custom rules are consulted first, in registration order; the first one
        returning a severity wins with full confidence. Otherwise the present
        criteria are averaged by weight and confidence is the share of the total
        weight that was available.
        """
        for name, rule in self._custom_rules.items():
            severity = rule(criteria)
            if severity is not None:
                return self._build_result(severity, 1.0, [f"Custom rule '{name}' applied"])

        justification: list[str] = []
        weighted: list[tuple[float, float]] = []

        def consider(score: float | None, weight: float, note: str) -> None:
            if score is None:
                return
            weighted.append((score, weight))
            justification.append(note)

        consider(criteria.impact_score, self.weights.impact, f"Impact score: {criteria.impact_score}")
        consider(criteria.frequency_score, self.weights.frequency, f"Frequency score: {criteria.frequency_score}")
        consider(criteria.trend_score, self.weights.trend, f"Trend score: {criteria.trend_score}")
        consider(criteria.context_score, self.weights.context, f"Context score: {criteria.context_score}")
        if criteria.urgency is not None:
            consider(URGENCY_SCORES[criteria.urgency], self.weights.urgency, f"Urgency: {criteria.urgency}")
        if criteria.scope is not None:
            consider(SCOPE_SCORES[criteria.scope], self.weights.scope, f"Scope: {criteria.scope}")

        used_weight = sum(weight for _, weight in weighted)
        score = sum(s * w for s, w in weighted) / used_weight if used_weight > 0 else 0.0
        confidence = used_weight / self.weights.total if self.weights.total > 0 else 0.0

        logger.debug(f"Classified criteria score {score:.2f} with confidence {confidence:.2f}")
        return self._build_result(classify_score(score, RiskThresholds()), confidence, justification)

    def batch_classify(self, criteria_list: list[ClassificationCriteria]) -> list[ClassificationResult]:
        return [self.classify_by_criteria(criteria) for criteria in criteria_list]

    def _build_result(self, severity: Severity, confidence: float, justification: list[str]) -> ClassificationResult:
        return ClassificationResult(
            severity=severity,
            confidence=round(confidence, 2),
            justification=justification,
            recommended_actions=self.get_recommended_actions(severity),
            escalation_required=severity in (Severity.CRITICAL, Severity.HIGH),
            auto_resolvable=severity in (Severity.INFO, Severity.LOW),
            alternative_severity=self.get_alternative_severity(severity, confidence),
        )

    @staticmethod
    def get_alternative_severity(severity: Severity, confidence: float) -> Severity | None:
        """Suggest a neighbouring level when confidence is low."""
        if confidence >= 0.8 or severity not in _ALTERNATIVE_LADDER:
            return None

        index = _ALTERNATIVE_LADDER.index(severity)
        if index > 0 and confidence < 0.5:
            return _ALTERNATIVE_LADDER[index - 1]
        if index < len(_ALTERNATIVE_LADDER) - 1 and confidence < 0.6:
            return _ALTERNATIVE_LADDER[index + 1]
        return None

    @staticmethod
    def get_recommended_actions(severity: Severity) -> list[str]:
        return list(RECOMMENDED_ACTIONS[severity])

    # ------------------------------------------------------------------
    # Custom rules and weights
    # ------------------------------------------------------------------

    def register_custom_rule(self, name: str, rule: CustomClassificationRule) -> None:
        self._custom_rules[name] = rule
        logger.info(f"Registered custom classification rule: {name}")

    def remove_custom_rule(self, name: str) -> bool:
        return self._custom_rules.pop(name, None) is not None

    def clear_custom_rules(self) -> None:
        self._custom_rules.clear()

    def set_weights(self, **weights: float) -> None:
        self.weights = SeverityWeights(**{**self.weights.model_dump(), **weights})

    def reset_weights(self) -> None:
        self.weights = SeverityWeights()

    # ------------------------------------------------------------------
    # Severity helpers
    # ------------------------------------------------------------------

    @staticmethod
    def compare_severity(a: Severity, b: Severity) -> int:
        """Positive when ``a`` is more severe than ``b``."""
        return SEVERITY_RANK[a] - SEVERITY_RANK[b]

    @staticmethod
    def severity_distance(a: Severity, b: Severity) -> int:
        return abs(SEVERITY_RANK[a] - SEVERITY_RANK[b])

    @staticmethod
    def upgrade_severity(severity: Severity) -> Severity:
        index = _LADDER.index(severity)
        return _LADDER[min(index + 1, len(_LADDER) - 1)]

    @staticmethod
    def downgrade_severity(severity: Severity) -> Severity:
        index = _LADDER.index(severity)
        return _LADDER[max(index - 1, 0)]

    @staticmethod
    def get_severity_label(severity: Severity) -> str:
        return SEVERITY_LABELS[severity]

    @staticmethod
    def get_severity_color(severity: Severity) -> str:
        return SEVERITY_COLORS[severity]

    def adjust_for_age(self, severity: Severity, hours_elapsed: float) -> Severity:
        """Bump an unresolved incident one level once it has aged past its threshold."""
        if severity == Severity.CRITICAL:
            return severity
        if hours_elapsed >= AGE_UPGRADE_HOURS[severity]:
            return self.upgrade_severity(severity)
        return severity

    @staticmethod
    def get_most_severe(severities: list[Severity]) -> Severity:
        return Severity.highest(severities) or Severity.INFO

    @staticmethod
    def get_least_severe(severities: list[Severity]) -> Severity:
        if not severities:
            return Severity.CRITICAL
        return min(severities, key=lambda s: s.rank)
