"""Tests for timer-driven escalation, acknowledgment, repeats, suppression and recovery."""

from datetime import timedelta

import pytest
from loguru import logger

from alert_engine.config import EscalationConfig
from alert_engine.escalation.application import EscalationManager
from alert_engine.escalation.domain import (
    CreatePolicyDTO,
    EscalationLevel,
    IncidentStatus,
    NotificationRecord,
    OnCallSchedule,
    SuppressionWindow,
    TimelineEventType,
    UpdatePolicyDTO,
)
from alert_engine.shared.domain import EscalationNotFoundError, EventType, NotificationChannel, Severity
from tests.helpers import FIXED_NOW, make_incident


def levels(*timeouts):
    return [
        EscalationLevel(
            level=index,
            name=f"Tier {index}",
            timeout_minutes=timeout,
            notify_user_ids=[f"user-{index}"],
            channels=[NotificationChannel.EMAIL],
        )
        for index, timeout in enumerate(timeouts, start=1)
    ]


async def create_policy(policy_service, **overrides):
    values = dict(
        tenant_id="tenant-a",
        name="Water quality",
        severities=[Severity.HIGH, Severity.CRITICAL],
        levels=levels(5, 10, 15),
    )
    values.update(overrides)
    return await policy_service.create_policy(CreatePolicyDTO(**values))


async def start(escalation_manager, incident_store, incident=None):
    incident = incident or make_incident()
    await incident_store.save(incident)
    return incident, await escalation_manager.start_escalation(incident)


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.actions = []
        self.fail = fail

    async def notify(self, action):
        self.actions.append(action)
        if self.fail:
            raise RuntimeError("dispatcher offline")
        return [
            NotificationRecord(
                user_id=user_id,
                channel=action.channels[0],
                level=action.level,
                sent_at=FIXED_NOW,
                success=user_id != "unreachable",
            )
            for user_id in action.target_users
        ]


class TestLevelProgression:
    @pytest.mark.asyncio
    async def test_reaches_level_three_after_sixteen_minutes(
        self, policy_service, escalation_manager, incident_store, scheduler, event_sink
    ):
        await create_policy(policy_service)
        incident, state = await start(escalation_manager, incident_store)
        assert state.current_level == 1

        await scheduler.advance_minutes(4)
        assert state.current_level == 1

        await scheduler.advance_minutes(12)

        assert state.current_level == 3
        assert state.escalation_count == 3
        assert incident.escalation_level == 3
        assert len(incident.events_of_type(TimelineEventType.ESCALATED)) == 3
        assert len(event_sink.of_type(EventType.ESCALATION_ESCALATED)) == 3
        assert escalation_manager.get_time_until_next_escalation(incident.id) == 14 * 60

    @pytest.mark.asyncio
    async def test_completes_after_final_level(self, policy_service, escalation_manager, incident_store, scheduler):
        await create_policy(policy_service)
        incident, state = await start(escalation_manager, incident_store)

        await scheduler.advance_minutes(30)

        assert state.is_complete
        assert state.completion_reason == "max_repeats_reached"
        assert not scheduler.is_scheduled(incident.id)
        assert escalation_manager.get_time_until_next_escalation(incident.id) is None

    @pytest.mark.asyncio
    async def test_final_level_repeats_on_interval(
        self, policy_service, escalation_manager, incident_store, scheduler, event_sink
    ):
        await create_policy(policy_service, levels=levels(5), max_repeats=2, repeat_interval_minutes=10)
        _, state = await start(escalation_manager, incident_store)

        await scheduler.advance_minutes(5)
        assert state.repeats_used == 1
        await scheduler.advance_minutes(9)
        assert state.repeats_used == 1
        await scheduler.advance_minutes(1)
        assert state.repeats_used == 2
        assert not state.is_complete

        await scheduler.advance_minutes(10)
        assert state.completion_reason == "max_repeats_reached"
        assert len(event_sink.of_type(EventType.ESCALATION_REPEATED)) == 2

    @pytest.mark.asyncio
    async def test_starting_twice_returns_existing_state(self, policy_service, escalation_manager, incident_store):
        await create_policy(policy_service)
        incident, state = await start(escalation_manager, incident_store)

        assert await escalation_manager.start_escalation(incident) is state
        assert state.escalation_count == 1


class TestAcknowledgment:
    @pytest.mark.asyncio
    async def test_acknowledgment_stops_the_clock(
        self, policy_service, escalation_manager, incident_store, scheduler
    ):
        await create_policy(policy_service)
        incident, state = await start(escalation_manager, incident_store)
        await scheduler.advance_minutes(6)

        await escalation_manager.acknowledge_escalation(incident.id, "user-2", note="On my way")
        await scheduler.advance_minutes(60)

        assert state.current_level == 2
        assert state.acknowledged
        assert not state.is_complete
        assert not scheduler.is_scheduled(incident.id)
        assert incident.status == IncidentStatus.ACKNOWLEDGED
        assert incident.acknowledged_by == "user-2"
        assert state.acknowledgments[0].level == 2

    @pytest.mark.asyncio
    async def test_unknown_incident(self, escalation_manager):
        with pytest.raises(EscalationNotFoundError):
            await escalation_manager.acknowledge_escalation("inc-missing", "user-1")

    @pytest.mark.asyncio
    async def test_resolve_completes(self, policy_service, escalation_manager, incident_store, scheduler):
        await create_policy(policy_service)
        incident, state = await start(escalation_manager, incident_store)

        await escalation_manager.resolve_escalation(incident.id, "user-1", notes="Aerator restarted")

        assert incident.status == IncidentStatus.RESOLVED
        assert state.completion_reason == "resolved"
        assert not scheduler.is_scheduled(incident.id)

    @pytest.mark.asyncio
    async def test_incident_closed_elsewhere(self, policy_service, escalation_manager, incident_store, scheduler):
        await create_policy(policy_service)
        incident, state = await start(escalation_manager, incident_store)

        incident.resolve("operator")
        await scheduler.advance_minutes(5)

        assert state.completion_reason == "incident_closed"
        assert state.current_level == 1


class TestStartConditions:
    @pytest.mark.asyncio
    async def test_no_policy(self, escalation_manager, incident_store):
        _, state = await start(escalation_manager, incident_store)
        assert state is None

    @pytest.mark.asyncio
    async def test_closed_incident(self, policy_service, escalation_manager, incident_store):
        await create_policy(policy_service)
        _, state = await start(escalation_manager, incident_store, make_incident(status=IncidentStatus.CLOSED))
        assert state is None

    @pytest.mark.asyncio
    async def test_suppressed_start_is_recorded(
        self, policy_service, escalation_manager, incident_store, scheduler, event_sink
    ):
        window = SuppressionWindow(
            name="Maintenance", start_time=FIXED_NOW - timedelta(hours=1), end_time=FIXED_NOW + timedelta(hours=1)
        )
        await create_policy(policy_service, suppression_windows=[window])

        incident, state = await start(escalation_manager, incident_store)

        assert state is None
        assert not scheduler.is_scheduled(incident.id)
        [entry] = incident.events_of_type(TimelineEventType.STATUS_CHANGE)
        assert entry.metadata["suppressed"] is True
        assert len(event_sink.of_type(EventType.ESCALATION_SUPPRESSED)) == 1

    @pytest.mark.asyncio
    async def test_policy_removed_mid_escalation(self, policy_service, escalation_manager, incident_store, scheduler):
        policy = await create_policy(policy_service)
        _, state = await start(escalation_manager, incident_store)

        await policy_service.delete_policy("tenant-a", policy.id)
        await scheduler.advance_minutes(5)

        assert state.completion_reason == "policy_not_found"


class TestPolicyChanges:
    @pytest.mark.asyncio
    async def test_shortened_policy_continues_from_final_level(
        self, policy_service, escalation_manager, incident_store, scheduler
    ):
        policy = await create_policy(policy_service, max_repeats=2)
        incident, state = await start(escalation_manager, incident_store)
        await scheduler.advance_minutes(15)
        assert state.current_level == 3

        await policy_service.update_policy("tenant-a", policy.id, UpdatePolicyDTO(levels=levels(5, 10)))
        await scheduler.advance_minutes(16)

        assert state.current_level == 2
        assert state.repeats_used == 1
        assert not state.is_complete
        assert scheduler.is_scheduled(incident.id)
        assert escalation_manager.get_time_until_next_escalation(incident.id) == 29 * 60

    @pytest.mark.asyncio
    async def test_resume_after_levels_removed(self, policy_service, escalation_manager, incident_store, scheduler):
        policy = await create_policy(policy_service)
        incident, state = await start(escalation_manager, incident_store)
        await scheduler.advance_minutes(15)
        await escalation_manager.pause_escalation(incident.id)

        await policy_service.update_policy("tenant-a", policy.id, UpdatePolicyDTO(levels=levels(5)))

        assert await escalation_manager.resume_escalation(incident.id)
        assert state.current_level == 1
        assert escalation_manager.get_time_until_next_escalation(incident.id) == 5 * 60

    @pytest.mark.asyncio
    async def test_failed_step_completes_with_reason(
        self, policy_service, escalation_manager, incident_store, scheduler, event_sink, monkeypatch
    ):
        await create_policy(policy_service)
        incident, state = await start(escalation_manager, incident_store)

        async def policy_store_offline(tenant_id, policy_id):
            raise RuntimeError("policy store offline")

        monkeypatch.setattr(policy_service, "get_policy", policy_store_offline)
        messages = []
        sink_id = logger.add(messages.append, level="INFO")
        try:
            await scheduler.advance_minutes(5)
        finally:
            logger.remove(sink_id)

        assert state.is_complete
        assert state.completion_reason == "escalation_failed"
        assert not scheduler.is_scheduled(incident.id)
        [completed] = event_sink.of_type(EventType.ESCALATION_COMPLETED)
        assert completed.payload["reason"] == "escalation_failed"
        [record] = [m.record for m in messages if "Completing escalation" in m.record["message"]]
        assert record["extra"]["completion_reason"] == "escalation_failed"
        assert record["extra"]["final_level"] == 1
        assert record["extra"]["incident_id"] == incident.id


class TestPauseAndRestore:
    @pytest.mark.asyncio
    async def test_pause_and_resume(self, policy_service, escalation_manager, incident_store, scheduler):
        await create_policy(policy_service)
        incident, state = await start(escalation_manager, incident_store)

        assert await escalation_manager.pause_escalation(incident.id)
        assert not await escalation_manager.pause_escalation(incident.id)
        await scheduler.advance_minutes(30)
        assert state.current_level == 1

        assert await escalation_manager.resume_escalation(incident.id)
        assert escalation_manager.get_time_until_next_escalation(incident.id) == 5 * 60
        await scheduler.advance_minutes(5)
        assert state.current_level == 2

    @pytest.mark.asyncio
    async def test_restore_rearms_remaining_time(
        self, policy_service, escalation_manager, incident_store, scheduler, event_sink, clock
    ):
        await create_policy(policy_service)
        incident, _ = await start(escalation_manager, incident_store)
        await scheduler.advance_minutes(3)
        escalation_manager.shutdown()

        recovered = EscalationManager(
            policy_service, incident_store, scheduler, event_sink=event_sink, config=EscalationConfig(), clock=clock
        )
        state = await recovered.restore_escalation(incident)

        assert state.current_level == 1
        assert state.escalation_count == 1
        assert recovered.get_time_until_next_escalation(incident.id) == 2 * 60

        await scheduler.advance_minutes(2)
        assert state.current_level == 2

    @pytest.mark.asyncio
    async def test_restore_without_escalation(self, escalation_manager):
        assert await escalation_manager.restore_escalation(make_incident()) is None

    @pytest.mark.asyncio
    async def test_cleanup_forgets_old_completed(self, policy_service, escalation_manager, incident_store, scheduler):
        await create_policy(policy_service)
        incident, _ = await start(escalation_manager, incident_store)
        await escalation_manager.complete_escalation(incident.id, "manual")

        assert escalation_manager.cleanup_completed_escalations(max_age_hours=1) == 0
        await scheduler.advance_minutes(61)
        assert escalation_manager.cleanup_completed_escalations(max_age_hours=1) == 1
        assert escalation_manager.get_escalation_state(incident.id) is None


class TestNotifications:
    @pytest.mark.asyncio
    async def test_levels_are_delivered_with_on_call(
        self, policy_service, incident_store, scheduler, event_sink, clock
    ):
        notifier = RecordingNotifier()
        manager = EscalationManager(
            policy_service, incident_store, scheduler, notifier=notifier, event_sink=event_sink, clock=clock
        )
        await create_policy(
            policy_service,
            on_call_schedule=[OnCallSchedule(day_of_week=0, start_time="08:00", end_time="18:00", user_id="unreachable")],
        )

        incident, state = await start(manager, incident_store)

        [action] = notifier.actions
        assert action.target_users == ["user-1", "unreachable"]
        assert action.metadata["title"] == incident.title
        assert len(state.notifications) == 2
        assert manager.get_escalation_metrics(incident.id)["notifications"] == {"total": 2, "delivered": 1, "failed": 1}
        [entry] = incident.events_of_type(TimelineEventType.NOTIFICATION_SENT)
        assert entry.metadata == {"level": 1, "sent": 1, "failed": 1}

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_stop_escalation(
        self, policy_service, incident_store, scheduler, event_sink, clock
    ):
        manager = EscalationManager(
            policy_service,
            incident_store,
            scheduler,
            notifier=RecordingNotifier(fail=True),
            event_sink=event_sink,
            clock=clock,
        )
        await create_policy(policy_service)

        _, state = await start(manager, incident_store)
        await scheduler.advance_minutes(5)

        assert state.current_level == 2
        assert state.notifications == []
