"""Builders and fakes shared by the test modules."""

from datetime import datetime, timedelta, timezone

from alert_engine.escalation.domain import Incident
from alert_engine.notification.domain import DeliveryResult
from alert_engine.rules_engine.domain.models import (
    Condition,
    ConditionOperator,
    FactContext,
    LogicalOperator,
    Rule,
)
from alert_engine.shared.domain import Severity
from alert_engine.shared.infrastructure import ManualScheduler

# Monday 10:00 UTC
FIXED_NOW = datetime(2024, 6, 3, 10, 0, tzinfo=timezone.utc)


class VirtualClock:
    """Wall clock that follows a ManualScheduler's virtual seconds."""

    def __init__(self, scheduler: ManualScheduler, start: datetime = FIXED_NOW):
        self.scheduler = scheduler
        self.start = start

    def __call__(self) -> datetime:
        return self.start + timedelta(seconds=self.scheduler.now)


class FakeHandler:
    """Channel handler that replays a scripted list of outcomes."""

    def __init__(self, outcomes: list[DeliveryResult | Exception] | None = None):
        self.outcomes = list(outcomes or [])
        self.calls: list[tuple[str, object, dict | None]] = []

    async def send(self, user_id, notification, metadata=None) -> DeliveryResult:
        self.calls.append((user_id, notification, metadata))
        if self.outcomes:
            outcome = self.outcomes.pop(0)
        else:
            outcome = DeliveryResult(success=True, message_id=f"msg-{len(self.calls)}")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays without waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_rule(
    rule_id: str = "rule-1",
    tenant_id: str = "tenant-a",
    conditions: list[Condition] | None = None,
    logical_operator: LogicalOperator = LogicalOperator.OR,
    **kwargs,
) -> Rule:
    return Rule(
        id=rule_id,
        tenant_id=tenant_id,
        name=kwargs.pop("name", f"Rule {rule_id}"),
        conditions=tuple(
            conditions
            or [Condition("temperature", ConditionOperator.GT, 30.0, Severity.HIGH)]
        ),
        logical_operator=logical_operator,
        **kwargs,
    )


def make_context(tenant_id: str = "tenant-a", **values) -> FactContext:
    return FactContext(values=values, tenant_id=tenant_id, timestamp=FIXED_NOW)


def make_incident(incident_id: str = "inc-1", severity: Severity = Severity.HIGH, **kwargs) -> Incident:
    return Incident(
        id=incident_id,
        tenant_id=kwargs.pop("tenant_id", "tenant-a"),
        title=kwargs.pop("title", "Dissolved oxygen low"),
        severity=severity,
        created_at=kwargs.pop("created_at", FIXED_NOW),
        **kwargs,
    )
