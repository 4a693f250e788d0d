"""Domain models for the end-to-end alert pipeline."""

from dataclasses import dataclass
from typing import Callable

from alert_engine.escalation.domain.models import EscalationState, Incident
from alert_engine.risk_scoring.domain.models import RiskScoreResult
from alert_engine.rules_engine.domain.models import FactContext, RuleMatch

IncidentFactory = Callable[[RuleMatch, RiskScoreResult | None, FactContext], Incident]


@dataclass
class PipelineOutcome:
    """What happened to one rule match on its way to escalation."""

    match: RuleMatch
    risk: RiskScoreResult | None = None
    incident: Incident | None = None
    escalation: EscalationState | None = None
    error: str | None = None

    @property
    def escalated(self) -> bool:
        return self.escalation is not None

    def to_dict(self) -> dict:
        return {
            "rule_id": self.match.rule.id,
            "severity": str(self.match.severity),
            "risk_score": self.risk.total_score if self.risk else None,
            "incident_id": self.incident.id if self.incident else None,
            "escalation_level": self.escalation.current_level if self.escalation else None,
            "error": self.error,
        }
