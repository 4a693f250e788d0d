"""End-to-end flow from incoming facts to escalating incidents."""

import uuid

from loguru import logger

from alert_engine.escalation.application.escalation_manager import EscalationManager
from alert_engine.escalation.domain.models import Incident, TimelineEventType
from alert_engine.escalation.domain.protocols import IncidentStore
from alert_engine.pipeline.domain.models import IncidentFactory, PipelineOutcome
from alert_engine.risk_scoring.application.risk_calculator import RiskCalculator
from alert_engine.risk_scoring.domain.models import RiskCalculationContext, RiskScoreResult
from alert_engine.rules_engine.application.rules_engine import RulesEngine
from alert_engine.rules_engine.domain.models import FactContext, RuleEvaluationRequest, RuleMatch
from alert_engine.shared.infrastructure.logging import LoggingContext


def _trigger(match: RuleMatch) -> tuple[str | None, float, float | None]:
    """Parameter, numeric value and threshold of the first matched condition."""
    for result in match.evaluation.all_results:
        if result.matched and isinstance(result.actual_value, (int, float)):
            return result.condition.parameter, float(result.actual_value), result.expected_value
    return None, 0.0, None


def build_risk_context(match: RuleMatch, context: FactContext) -> RiskCalculationContext:
    parameter, current_value, threshold = _trigger(match)

    previous = context.previous_values.get(parameter) if parameter else None
    history = [float(previous), current_value] if isinstance(previous, (int, float)) else None

    return RiskCalculationContext(
        tenant_id=match.rule.tenant_id,
        rule_id=match.rule.id,
        current_value=current_value,
        rule_severity=match.rule.static_severity,
        threshold_value=threshold,
        farm_id=context.farm_id or match.rule.farm_id,
        sensor_id=context.sensor_id or match.rule.sensor_id,
        historical_values=history,
        environmental_factors=context.global_vars.get("environment"),
        evaluated_at=context.timestamp,
    )


def incident_from_match(match: RuleMatch, risk: RiskScoreResult | None, context: FactContext) -> Incident:
    """Default incident for a rule match: titled after the rule, carrying the trigger data."""
    conditions = ", ".join(
        f"{c.parameter} {c.operator} {c.threshold:g}" for c in match.matched_conditions
    )
    incident = Incident(
        id=f"inc-{uuid.uuid4().hex[:12]}",
        tenant_id=match.rule.tenant_id,
        title=match.rule.name,
        severity=match.severity,
        rule_id=match.rule.id,
        farm_id=context.farm_id or match.rule.farm_id,
        description=f"Rule '{match.rule.name}' matched: {conditions}" if conditions else match.rule.description,
        risk_score=risk.total_score if risk else None,
        trigger_data={**match.to_dict(), "values": dict(context.values)},
        created_at=context.timestamp,
    )
    incident.add_timeline_event(
        TimelineEventType.CREATED,
        f"Incident created from rule {match.rule.id}",
        user_id="system",
        data={"severity": str(match.severity), "risk_score": incident.risk_score},
        timestamp=context.timestamp,
    )
    return incident


class AlertPipeline:
    """
    Runs one fact context through rules, risk scoring, incident creation and
    escalation.

    Each match is handled on its own: a failure while scoring, storing or
    escalating one match is logged and reported on its outcome while the
    other matches carry on.
    """

    def __init__(
        self,
        rules_engine: RulesEngine,
        risk_calculator: RiskCalculator,
        incident_store: IncidentStore,
        escalation_manager: EscalationManager,
    ):
        self.rules_engine = rules_engine
        self.risk_calculator = risk_calculator
        self.incident_store = incident_store
        self.escalation_manager = escalation_manager

    async def process(
        self, request: RuleEvaluationRequest, incident_factory: IncidentFactory | None = None
    ) -> list[PipelineOutcome]:
        """
        Evaluate the request and open an escalating incident per match.

        Args:
            request: Tenant, facts and scope to evaluate
            incident_factory: Builds the incident for a match (default: :func:`incident_from_match`)

        Returns:
            One outcome per rule match, in match order
        """
        incident_factory = incident_factory or incident_from_match

        with LoggingContext(tenant_id=request.tenant_id):
            matches = await self.rules_engine.evaluate_rules(request)
            if not matches:
                return []

            risks = await self.risk_calculator.calculate_batch_risk_scores(
                [build_risk_context(match, request.context) for match in matches]
            )

            outcomes = []
            for match in matches:
                outcome = PipelineOutcome(match=match, risk=risks.get(match.rule.id))
                try:
                    incident = incident_factory(match, outcome.risk, request.context)
                    outcome.incident = await self.incident_store.save(incident)
                    outcome.escalation = await self.escalation_manager.start_escalation(outcome.incident)
                except Exception as e:
                    logger.error(f"✗ Failed to process match for rule {match.rule.id}: {e}")
                    outcome.error = str(e)
                outcomes.append(outcome)

            escalated = sum(1 for outcome in outcomes if outcome.escalated)
            logger.info(f"🔔 {len(matches)} rule matches, {escalated} escalations started")
            return outcomes
