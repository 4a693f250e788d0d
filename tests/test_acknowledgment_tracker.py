"""Tests for acknowledgment timeouts, escalation, lapses and bulk operations."""

import pytest

from alert_engine.escalation.domain import AckSourceType, AckStatus
from alert_engine.shared.domain import (
    AcknowledgmentNotFoundError,
    AcknowledgmentStateError,
    ConfigurationException,
    EventType,
)


def actions(tracker, alert_id):
    return [entry.action for entry in tracker.get_history(alert_id)]


class TestTimeouts:
    @pytest.mark.asyncio
    async def test_timeouts_grow_then_escalate(self, acknowledgment_tracker, scheduler, event_sink):
        tracker = acknowledgment_tracker
        record = tracker.create_record("alert-1", incident_id="inc-1")
        assert tracker.get_time_until_timeout("alert-1") == 5 * 60

        await scheduler.advance_minutes(5)
        assert record.timeout_count == 1
        assert record.status == AckStatus.PENDING
        assert tracker.get_time_until_timeout("alert-1") == 7.5 * 60

        await scheduler.advance_minutes(7.5)
        assert record.timeout_count == 2
        assert tracker.get_time_until_timeout("alert-1") == 10 * 60

        await scheduler.advance_minutes(10)
        assert record.status == AckStatus.ESCALATED
        assert record.escalation_level == 1
        assert tracker.get_time_until_timeout("alert-1") == 10 * 60

        await scheduler.advance_minutes(10)
        assert record.escalation_level == 2
        assert len(event_sink.of_type(EventType.ACK_TIMEOUT)) == 2
        escalated = event_sink.of_type(EventType.ACK_ESCALATED)
        assert [event.payload["escalation_level"] for event in escalated] == [1, 2]
        assert escalated[0].payload["incident_id"] == "inc-1"
        assert actions(tracker, "alert-1") == ["created", "timeout", "timeout", "escalated", "escalated"]

    @pytest.mark.asyncio
    async def test_auto_resolve_expires_record(self, acknowledgment_tracker, scheduler, event_sink):
        record = acknowledgment_tracker.create_record("alert-1", max_timeouts=1, auto_resolve_on_timeout=True)

        await scheduler.advance_minutes(5)

        assert record.status == AckStatus.EXPIRED
        assert acknowledgment_tracker.get_time_until_timeout("alert-1") is None
        [expired] = event_sink.of_type(EventType.ACK_EXPIRED)
        assert expired.payload["timeout_count"] == 1

    @pytest.mark.asyncio
    async def test_quiet_timeouts_emit_no_event(self, acknowledgment_tracker, scheduler, event_sink):
        record = acknowledgment_tracker.create_record("alert-1", notify_on_timeout=False)

        await scheduler.advance_minutes(5)

        assert record.timeout_count == 1
        assert event_sink.of_type(EventType.ACK_TIMEOUT) == []

    @pytest.mark.asyncio
    async def test_no_action_at_max_stops_timer(self, acknowledgment_tracker, scheduler):
        record = acknowledgment_tracker.create_record("alert-1", max_timeouts=1, escalate_on_timeout=False)

        await scheduler.advance_minutes(5)

        assert record.status == AckStatus.PENDING
        assert acknowledgment_tracker.get_time_until_timeout("alert-1") is None

    def test_overrides_apply_to_one_record(self, acknowledgment_tracker):
        quick = acknowledgment_tracker.create_record("alert-1", initial_timeout_minutes=1)
        normal = acknowledgment_tracker.create_record("alert-2")

        assert quick.timeouts.initial_timeout_minutes == 1
        assert normal.timeouts.initial_timeout_minutes == 5
        assert acknowledgment_tracker.get_time_until_timeout("alert-1") == 60


class TestAcknowledge:
    @pytest.mark.asyncio
    async def test_acknowledge_stops_timeouts(self, acknowledgment_tracker, scheduler, event_sink):
        tracker = acknowledgment_tracker
        tracker.create_record("alert-1")
        await scheduler.advance_minutes(6)

        record = tracker.acknowledge(
            "alert-1", "operator-1", message="Checking aerator", metadata={"pond": 4}, source_type=AckSourceType.API
        )
        await scheduler.advance_minutes(60)

        assert record.status == AckStatus.ACKNOWLEDGED
        assert record.acknowledged_by == "operator-1"
        assert record.source_type == AckSourceType.API
        assert record.metadata == {"pond": 4}
        assert record.timeout_count == 1
        assert tracker.get_time_until_timeout("alert-1") is None
        [event] = event_sink.of_type(EventType.ACK_ACKNOWLEDGED)
        assert event.payload["ack_time_seconds"] == 360

    @pytest.mark.asyncio
    async def test_escalated_record_can_be_acknowledged(self, acknowledgment_tracker, scheduler):
        record = acknowledgment_tracker.create_record("alert-1", max_timeouts=1)
        await scheduler.advance_minutes(5)
        assert record.status == AckStatus.ESCALATED

        acknowledgment_tracker.acknowledge("alert-1", "manager-1")

        assert record.status == AckStatus.ACKNOWLEDGED
        assert record.escalation_level == 1

    def test_acknowledge_twice(self, acknowledgment_tracker):
        acknowledgment_tracker.create_record("alert-1")
        acknowledgment_tracker.acknowledge("alert-1", "operator-1")

        with pytest.raises(AcknowledgmentStateError, match="Cannot acknowledge alert in status: ACKNOWLEDGED"):
            acknowledgment_tracker.acknowledge("alert-1", "operator-2")

    def test_unknown_alert(self, acknowledgment_tracker):
        with pytest.raises(AcknowledgmentNotFoundError):
            acknowledgment_tracker.acknowledge("alert-missing", "operator-1")
        with pytest.raises(AcknowledgmentNotFoundError):
            acknowledgment_tracker.acknowledge_by_id("ack-missing", "operator-1")

    def test_acknowledge_by_id(self, acknowledgment_tracker):
        record = acknowledgment_tracker.create_record("alert-1")

        assert acknowledgment_tracker.acknowledge_by_id(record.id, "operator-1", message="on it") is record
        assert record.message == "on it"

    @pytest.mark.asyncio
    async def test_timed_acknowledgment_lapses(self, acknowledgment_tracker, scheduler, event_sink):
        tracker = acknowledgment_tracker
        record = tracker.create_record("alert-1")
        tracker.acknowledge("alert-1", "operator-1", duration_minutes=30)
        assert record.expires_at is not None

        await scheduler.advance_minutes(30)

        assert record.status == AckStatus.PENDING
        assert record.acknowledged_by is None
        assert record.expires_at is None
        assert tracker.get_time_until_timeout("alert-1") == 5 * 60
        assert actions(tracker, "alert-1") == ["created", "acknowledged", "ack_expired"]
        [lapsed] = event_sink.of_type(EventType.ACK_UNACKNOWLEDGED)
        assert lapsed.payload["expired"] is True

    def test_bulk_acknowledge_reports_each_alert(self, acknowledgment_tracker):
        tracker = acknowledgment_tracker
        tracker.create_record("alert-1")
        tracker.create_record("alert-2")
        tracker.acknowledge("alert-2", "operator-1")

        results = tracker.bulk_acknowledge(["alert-1", "alert-2", "alert-missing"], "operator-2", message="shift change")

        assert results["alert-1"].acknowledged_by == "operator-2"
        assert isinstance(results["alert-2"], AcknowledgmentStateError)
        assert isinstance(results["alert-missing"], AcknowledgmentNotFoundError)
        assert tracker.get_by_alert_id("alert-2").acknowledged_by == "operator-1"


class TestStateChanges:
    def test_unacknowledge_restarts_clock(self, acknowledgment_tracker, event_sink):
        tracker = acknowledgment_tracker
        record = tracker.create_record("alert-1")
        tracker.acknowledge("alert-1", "operator-1")

        tracker.unacknowledge("alert-1", "operator-1", reason="Wrong pond")

        assert record.status == AckStatus.PENDING
        assert record.acknowledged_at is None
        assert tracker.get_time_until_timeout("alert-1") == 5 * 60
        [event] = event_sink.of_type(EventType.ACK_UNACKNOWLEDGED)
        assert event.payload["unacknowledged_by"] == "operator-1"
        last = tracker.get_history("alert-1")[-1]
        assert (last.previous_status, last.new_status, last.reason) == (
            AckStatus.ACKNOWLEDGED,
            AckStatus.PENDING,
            "Wrong pond",
        )

    def test_unacknowledge_requires_acknowledged(self, acknowledgment_tracker):
        acknowledgment_tracker.create_record("alert-1")

        with pytest.raises(AcknowledgmentStateError):
            acknowledgment_tracker.unacknowledge("alert-1", "operator-1")

    def test_resolve_stops_tracking(self, acknowledgment_tracker, event_sink):
        tracker = acknowledgment_tracker
        tracker.create_record("alert-1")
        tracker.create_record("alert-2")

        record = tracker.resolve("alert-1", "operator-1", reason="Sensor fault")

        assert record.status == AckStatus.RESOLVED
        assert tracker.get_time_until_timeout("alert-1") is None
        assert [r.alert_id for r in tracker.get_pending_acks()] == ["alert-2"]
        assert tracker.get_by_status(AckStatus.RESOLVED) == [record]
        assert len(event_sink.of_type(EventType.ACK_RESOLVED)) == 1

    def test_manual_escalate(self, acknowledgment_tracker, event_sink):
        record = acknowledgment_tracker.create_record("alert-1")

        acknowledgment_tracker.manual_escalate("alert-1", "supervisor-1")

        assert record.status == AckStatus.ESCALATED
        assert record.escalation_level == 1
        assert record.history[-1].reason == "Manually escalated to level 1"
        [event] = event_sink.of_type(EventType.ACK_ESCALATED)
        assert event.payload["manual"] is True
        assert event.payload["escalated_by"] == "supervisor-1"

    def test_delete_record(self, acknowledgment_tracker, scheduler):
        record = acknowledgment_tracker.create_record("alert-1")

        assert acknowledgment_tracker.delete_record("alert-1")
        assert not acknowledgment_tracker.delete_record("alert-1")
        assert acknowledgment_tracker.get_by_id(record.id) is None
        assert not scheduler.is_scheduled(f"ack:{record.id}")


class TestStatisticsAndMaintenance:
    @pytest.mark.asyncio
    async def test_statistics(self, acknowledgment_tracker, scheduler):
        tracker = acknowledgment_tracker
        tracker.create_record("alert-1")
        tracker.create_record("alert-2")
        tracker.create_record("alert-3")
        await scheduler.advance_minutes(6)
        tracker.acknowledge("alert-1", "operator-1")
        await scheduler.advance_minutes(4)
        tracker.acknowledge("alert-2", "operator-1")
        tracker.resolve("alert-2")

        stats = tracker.get_statistics()

        assert stats["total"] == 3
        assert stats["pending"] == 1
        assert stats["acknowledged"] == 1
        assert stats["resolved"] == 1
        assert stats["escalated"] == 0
        assert stats["average_ack_time_seconds"] == 480
        assert stats["average_timeouts_before_ack"] == 1

    @pytest.mark.asyncio
    async def test_cleanup_old_records(self, acknowledgment_tracker, scheduler):
        tracker = acknowledgment_tracker
        tracker.create_record("alert-1")
        tracker.create_record("alert-2")
        tracker.resolve("alert-1")
        tracker.acknowledge("alert-2", "operator-1")

        assert tracker.cleanup_old_records() == 0
        await scheduler.advance_minutes(7 * 24 * 60 + 1)

        assert tracker.cleanup_old_records() == 1
        assert tracker.get_by_alert_id("alert-1") is None
        assert tracker.get_by_alert_id("alert-2") is not None

    def test_update_config_applies_to_new_records(self, acknowledgment_tracker):
        existing = acknowledgment_tracker.create_record("alert-1")

        updated = acknowledgment_tracker.update_config(initial_timeout_minutes=2)

        assert updated.initial_timeout_minutes == 2
        assert acknowledgment_tracker.get_config().initial_timeout_minutes == 2
        assert existing.timeouts.initial_timeout_minutes == 5
        assert acknowledgment_tracker.create_record("alert-2").timeouts.initial_timeout_minutes == 2

    def test_invalid_config_is_rejected(self, acknowledgment_tracker):
        with pytest.raises(ConfigurationException):
            acknowledgment_tracker.update_config(max_timeouts=0)
        with pytest.raises(ConfigurationException, match="Unknown acknowledgment settings"):
            acknowledgment_tracker.update_config(retries=2)

        assert acknowledgment_tracker.get_config().max_timeouts == 3

    def test_shutdown_cancels_timeouts(self, acknowledgment_tracker, scheduler):
        acknowledgment_tracker.create_record("alert-1")
        acknowledgment_tracker.create_record("alert-2")
        acknowledgment_tracker.resolve("alert-2")

        assert acknowledgment_tracker.shutdown() == 1
        assert acknowledgment_tracker.get_time_until_timeout("alert-1") is None
