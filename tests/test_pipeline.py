"""Tests for the rules -> risk -> incident -> escalation pipeline and the container wiring."""

import pytest
from dependency_injector import providers

from alert_engine.config import AppConfig, EventsConfig, NotificationConfig
from alert_engine.container import create_container, get_container, init_container, shutdown_container
from alert_engine.escalation.domain import CreatePolicyDTO, EscalationLevel, TimelineEventType
from alert_engine.notification.domain import NotificationRequest, NotificationStatus, TemplateContext
from alert_engine.pipeline.application import AlertPipeline
from alert_engine.risk_scoring.application import RiskCalculator
from alert_engine.risk_scoring.domain import RiskFactorCategory
from alert_engine.rules_engine.domain.models import Condition, ConditionOperator, FactContext, RuleEvaluationRequest
from alert_engine.shared.domain import EventType, NotificationChannel, Severity
from alert_engine.shared.domain.models import EngineEvent
from alert_engine.shared.infrastructure import ManualScheduler
from tests.helpers import FIXED_NOW, FakeHandler, VirtualClock, make_context, make_rule

LOW_OXYGEN = Condition("oxygen", ConditionOperator.LT, 5.0, Severity.HIGH)
WARM = Condition("temperature", ConditionOperator.GT, 30.0, Severity.MEDIUM)


def request_for(**values):
    return RuleEvaluationRequest(tenant_id="tenant-a", context=make_context(**values))


async def create_policy(policy_service, severities=(Severity.HIGH,)):
    return await policy_service.create_policy(
        CreatePolicyDTO(
            tenant_id="tenant-a",
            name="Water quality",
            severities=list(severities),
            levels=[
                EscalationLevel(
                    level=1, name="Operators", timeout_minutes=5, notify_user_ids=["operator-1"],
                    channels=[NotificationChannel.EMAIL],
                ),
                EscalationLevel(
                    level=2, name="Managers", timeout_minutes=10, notify_user_ids=["manager-1"],
                    channels=[NotificationChannel.EMAIL, NotificationChannel.SMS],
                ),
            ],
        )
    )


@pytest.fixture
def pipeline(rules_engine, incident_store, escalation_manager):
    return AlertPipeline(rules_engine, RiskCalculator(), incident_store, escalation_manager)


class TestAlertPipeline:
    @pytest.mark.asyncio
    async def test_match_opens_escalating_incident(self, pipeline, rule_store, policy_service, incident_store):
        await rule_store.create(make_rule("oxygen", conditions=[LOW_OXYGEN], name="Oxygen low", farm_id="farm-1"))
        await create_policy(policy_service)
        request = request_for(oxygen=3.1)
        request.farm_id = "farm-1"
        request.context.farm_id = "farm-1"

        [outcome] = await pipeline.process(request)

        incident = await incident_store.load(outcome.incident.id)
        assert outcome.escalated
        assert outcome.error is None
        assert incident.title == "Oxygen low"
        assert incident.severity == Severity.HIGH
        assert incident.farm_id == "farm-1"
        assert incident.description == "Rule 'Oxygen low' matched: oxygen LT 5"
        assert incident.risk_score == outcome.risk.total_score
        assert incident.trigger_data["values"] == {"oxygen": 3.1}
        assert incident.timeline[0].event_type == TimelineEventType.CREATED
        assert incident.escalation_level == 1
        assert outcome.to_dict()["escalation_level"] == 1

    @pytest.mark.asyncio
    async def test_no_match(self, pipeline, rule_store, incident_store):
        await rule_store.create(make_rule("oxygen", conditions=[LOW_OXYGEN]))

        assert await pipeline.process(request_for(oxygen=7.5)) == []
        assert len(incident_store) == 0

    @pytest.mark.asyncio
    async def test_incident_kept_without_policy(self, pipeline, rule_store, incident_store):
        await rule_store.create(make_rule("warm", conditions=[WARM]))

        [outcome] = await pipeline.process(request_for(temperature=33))

        assert not outcome.escalated
        assert await incident_store.load(outcome.incident.id) is not None

    @pytest.mark.asyncio
    async def test_risk_uses_previous_value(self, pipeline, rule_store):
        await rule_store.create(make_rule("oxygen", conditions=[LOW_OXYGEN]))
        request = RuleEvaluationRequest(
            tenant_id="tenant-a",
            context=FactContext(
                values={"oxygen": 3.0},
                previous_values={"oxygen": 4.5},
                tenant_id="tenant-a",
                timestamp=FIXED_NOW,
            ),
        )

        [outcome] = await pipeline.process(request)

        assert outcome.risk.metadata["rule_id"] == "oxygen"
        assert outcome.risk.confidence > 0.5

    @pytest.mark.asyncio
    async def test_severity_factor_uses_rule_severity(self, pipeline, rule_store):
        hot = Condition("temperature", ConditionOperator.GT, 35.0, Severity.CRITICAL)
        await rule_store.create(make_rule("water", conditions=[LOW_OXYGEN, hot]))

        [outcome] = await pipeline.process(request_for(oxygen=4.8, temperature=20))

        [factor] = [f for f in outcome.risk.factors if f.category == RiskFactorCategory.SEVERITY]
        assert factor.value == 100
        assert factor.description == "Rule severity: CRITICAL"
        assert outcome.incident.severity == Severity.HIGH

    @pytest.mark.asyncio
    async def test_one_failing_match_does_not_stop_others(self, pipeline, rule_store, incident_store):
        await rule_store.create(make_rule("oxygen", conditions=[LOW_OXYGEN]))
        await rule_store.create(make_rule("warm", conditions=[WARM]))

        def factory(match, risk, context):
            if match.rule.id == "warm":
                raise ValueError("farm lookup failed")
            from alert_engine.pipeline.application.alert_pipeline import incident_from_match

            return incident_from_match(match, risk, context)

        outcomes = await pipeline.process(request_for(oxygen=3.0, temperature=33), incident_factory=factory)

        by_rule = {outcome.match.rule.id: outcome for outcome in outcomes}
        assert by_rule["warm"].error == "farm lookup failed"
        assert by_rule["warm"].incident is None
        assert by_rule["oxygen"].incident is not None
        assert len(incident_store) == 1


class TestContainer:
    @pytest.mark.asyncio
    async def test_end_to_end_notifications(self):
        container = create_container(AppConfig(notification=NotificationConfig(max_retries=0)))
        scheduler = ManualScheduler()
        container.scheduler.override(providers.Object(scheduler))
        clock = VirtualClock(scheduler)
        container.policy_service.add_kwargs(clock=clock)
        container.escalation_manager.add_kwargs(clock=clock)

        email, sms = FakeHandler(), FakeHandler()
        dispatcher = container.notification_dispatcher()
        dispatcher.register_handler(NotificationChannel.EMAIL, email)
        dispatcher.register_handler(NotificationChannel.SMS, sms)

        await container.rule_store().create(make_rule("oxygen", conditions=[LOW_OXYGEN], name="Oxygen low"))
        await create_policy(container.policy_service())

        [outcome] = await container.alert_pipeline().process(request_for(oxygen=3.1))
        assert [call[0] for call in email.calls] == ["operator-1"]

        await scheduler.advance_minutes(5)

        assert outcome.escalation.current_level == 2
        assert [call[0] for call in email.calls] == ["operator-1", "manager-1"]
        assert [call[0] for call in sms.calls] == ["manager-1"]
        assert "Oxygen low" in sms.calls[0][1].body
        sent = container.event_sink().of_type(EventType.NOTIFICATION_SENT)
        assert {event.payload["status"] for event in sent} == {str(NotificationStatus.SENT)}
        assert len(outcome.escalation.notifications) == 3

    def test_config_reaches_services(self):
        container = create_container(AppConfig(notification=NotificationConfig(max_retries=7)))

        assert container.notification_dispatcher().get_retry_config().max_retries == 7
        assert container.escalation_manager().notifier is container.escalation_notifier()
        assert container.rules_engine() is container.alert_pipeline().rules_engine

    @pytest.mark.asyncio
    async def test_global_lifecycle(self):
        with pytest.raises(RuntimeError, match="Container not initialized"):
            get_container()

        container = init_container(AppConfig())
        assert get_container() is container

        await shutdown_container()
        with pytest.raises(RuntimeError):
            get_container()

    @pytest.mark.asyncio
    async def test_shutdown_drops_queued_notifications_and_flushes_events(self, tmp_path):
        path = tmp_path / "events.csv"
        container = init_container(AppConfig(events=EventsConfig(csv_path=str(path), buffer_size=50)))
        dispatcher = container.notification_dispatcher()
        dispatcher.queue_notification(
            NotificationRequest(
                incident_id="inc-1",
                tenant_id="tenant-a",
                user_id="operator-1",
                severity=Severity.HIGH,
                context=TemplateContext(incident={"id": "inc-1", "title": "Oxygen low"}, severity=Severity.HIGH),
            )
        )
        started = EngineEvent(EventType.ESCALATION_STARTED, FIXED_NOW, {"incident_id": "inc-1"})
        container.event_sink().write_event(started)
        assert not path.exists()

        await shutdown_container()

        assert dispatcher.get_queue_size() == 0
        assert path.exists()
        assert "escalation.started" in path.read_text()
