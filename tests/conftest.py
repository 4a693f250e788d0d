"""Shared fixtures for the alert engine test suite."""

import pytest

from alert_engine.config import AcknowledgmentConfig, EscalationConfig, NotificationConfig, RulesEngineConfig
from alert_engine.escalation.application import AcknowledgmentTracker, EscalationManager, EscalationPolicyService
from alert_engine.escalation.infrastructure import InMemoryIncidentStore, InMemoryPolicyStore
from alert_engine.notification.application import ChannelRouter, NotificationDispatcher
from alert_engine.notification.infrastructure import Jinja2TemplateRenderer
from alert_engine.rules_engine.application import RulesEngine
from alert_engine.rules_engine.infrastructure import InMemoryRuleStore
from alert_engine.shared.infrastructure import InMemoryEventSink, ManualScheduler
from tests.helpers import FIXED_NOW, RecordingSleep, VirtualClock


@pytest.fixture
def rule_store():
    return InMemoryRuleStore()


@pytest.fixture
def rules_engine(rule_store):
    return RulesEngine(rule_store, config=RulesEngineConfig())


@pytest.fixture
def event_sink():
    return InMemoryEventSink()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def clock(scheduler):
    return VirtualClock(scheduler)


@pytest.fixture
def policy_store():
    return InMemoryPolicyStore()


@pytest.fixture
def incident_store():
    return InMemoryIncidentStore()


@pytest.fixture
def policy_service(policy_store, clock):
    return EscalationPolicyService(policy_store, config=EscalationConfig(), clock=clock)


@pytest.fixture
def escalation_manager(policy_service, incident_store, scheduler, event_sink, clock):
    return EscalationManager(
        policy_service,
        incident_store,
        scheduler,
        event_sink=event_sink,
        config=EscalationConfig(),
        clock=clock,
    )


@pytest.fixture
def acknowledgment_tracker(scheduler, event_sink, clock):
    return AcknowledgmentTracker(scheduler, event_sink=event_sink, config=AcknowledgmentConfig(), clock=clock)


@pytest.fixture
def router():
    return ChannelRouter(clock=lambda: FIXED_NOW)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def dispatcher(router, event_sink, recording_sleep):
    return NotificationDispatcher(
        router,
        Jinja2TemplateRenderer(clock=lambda: FIXED_NOW),
        event_sink=event_sink,
        config=NotificationConfig(),
        sleep=recording_sleep,
        clock=lambda: FIXED_NOW,
    )
