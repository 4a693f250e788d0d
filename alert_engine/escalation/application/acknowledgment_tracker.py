"""Acknowledgment tracking: timeouts, reminders and escalation for unacknowledged alerts."""

from datetime import datetime, timedelta
from functools import partial
from typing import Any, Callable

from loguru import logger
from pydantic import ValidationError

from alert_engine.config import AcknowledgmentConfig
from alert_engine.escalation.domain.models import (
    AckHistoryEntry,
    AckRecord,
    AckSourceType,
    AckStatus,
    AckTimeoutConfig,
)
from alert_engine.shared.domain.exceptions import (
    AcknowledgmentNotFoundError,
    AcknowledgmentStateError,
    ConfigurationException,
)
from alert_engine.shared.domain.models import EngineEvent, EventType, utcnow
from alert_engine.shared.domain.protocols import EventSink, Scheduler
from alert_engine.shared.infrastructure.event_sink import InMemoryEventSink
from alert_engine.shared.infrastructure.logging import LoggingContext


class AcknowledgmentTracker:
    """
    Tracks whether each alert has been acknowledged and chases the ones that haven't.

    A new record waits ``initial_timeout_minutes``. Every timeout without an
    acknowledgment emits ``ack.timeout`` and waits longer (1.5x per timeout,
    capped at ``escalation_timeout_minutes``). After ``max_timeouts`` the record
    either expires or escalates one level, and keeps escalating on the
    escalation timeout until someone acknowledges it.

    Timers are keyed ``ack:<record id>`` on the shared scheduler, so a record
    has at most one pending timeout.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        event_sink: EventSink | None = None,
        config: AcknowledgmentConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.scheduler = scheduler
        self.event_sink = event_sink if event_sink is not None else InMemoryEventSink()
        self.config = config or AcknowledgmentConfig()
        self._clock = clock

        self._timeouts = AckTimeoutConfig.model_validate(
            self.config.model_dump(include=set(AckTimeoutConfig.model_fields))
        )
        self._records: dict[str, AckRecord] = {}
        self._by_alert: dict[str, str] = {}

        self._created = 0
        self._ack_count = 0
        self._ack_seconds = 0.0
        self._timeouts_before_ack = 0

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def get_config(self) -> AckTimeoutConfig:
        return self._timeouts.model_copy()

    def update_config(self, **changes) -> AckTimeoutConfig:
        """
        Change the default timeouts for records created from now on.

        Raises:
            ConfigurationException: If a value is out of range or unknown
        """
        self._timeouts = self._merge(self._timeouts, changes)
        logger.info(f"Acknowledgment timeouts updated: {self._timeouts.model_dump()}")
        return self._timeouts.model_copy()

    @staticmethod
    def _merge(base: AckTimeoutConfig, changes: dict[str, Any]) -> AckTimeoutConfig:
        unknown = set(changes) - set(AckTimeoutConfig.model_fields)
        if unknown:
            raise ConfigurationException(f"Unknown acknowledgment settings: {', '.join(sorted(unknown))}")
        try:
            return AckTimeoutConfig.model_validate({**base.model_dump(), **changes})
        except ValidationError as e:
            raise ConfigurationException("Invalid acknowledgment configuration", {"errors": e.errors()}) from e

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_record(self, alert_id: str, incident_id: str | None = None, **overrides) -> AckRecord:
        """
        Start tracking ``alert_id``; ``overrides`` adjust the timeouts for this record only.

        Raises:
            ConfigurationException: If an override is out of range or unknown
        """
        now = self._clock()
        record = AckRecord(
            alert_id=alert_id,
            incident_id=incident_id,
            timeouts=self._merge(self._timeouts, overrides) if overrides else self._timeouts.model_copy(),
            created_at=now,
            updated_at=now,
        )
        record.history.append(AckHistoryEntry(now, AckStatus.PENDING, AckStatus.PENDING, "created"))

        self._records[record.id] = record
        self._by_alert[alert_id] = record.id
        self._created += 1

        delay = record.timeouts.initial_timeout_minutes * 60
        self._arm(record, delay)
        self._emit(
            EventType.ACK_CREATED,
            record_id=record.id,
            alert_id=alert_id,
            incident_id=incident_id,
            timeout_at=now + timedelta(seconds=delay),
        )
        logger.debug(f"Created ack record {record.id} for alert {alert_id}")
        return record

    def acknowledge(
        self,
        alert_id: str,
        user_id: str,
        message: str | None = None,
        duration_minutes: float | None = None,
        metadata: dict[str, Any] | None = None,
        source_type: AckSourceType = AckSourceType.MANUAL,
    ) -> AckRecord:
        """
        Acknowledge a pending or escalated alert.

        With ``duration_minutes`` the acknowledgment lapses after that long and
        the record goes back to waiting for one.

        Raises:
            AcknowledgmentNotFoundError: If the alert is not tracked
            AcknowledgmentStateError: If the alert is not waiting for acknowledgment
        """
        record = self._require_alert(alert_id)
        if not record.is_awaiting_ack:
            raise AcknowledgmentStateError(record.id, record.status, "acknowledge")

        now = self._clock()
        ack_seconds = (now - record.created_at).total_seconds()

        record.transition(AckStatus.ACKNOWLEDGED, "acknowledged", now, performed_by=user_id, reason=message)
        record.source_type = source_type
        record.acknowledged_by = user_id
        record.acknowledged_at = now
        record.message = message
        if metadata:
            record.metadata.update(metadata)

        if duration_minutes:
            record.expires_at = now + timedelta(minutes=duration_minutes)
            self._arm(record, duration_minutes * 60)
        else:
            record.expires_at = None
            self.scheduler.cancel(self._key(record.id))

        self._ack_count += 1
        self._ack_seconds += ack_seconds
        self._timeouts_before_ack += record.timeout_count

        self._emit(
            EventType.ACK_ACKNOWLEDGED,
            record_id=record.id,
            alert_id=alert_id,
            acknowledged_by=user_id,
            ack_time_seconds=ack_seconds,
            timeout_count=record.timeout_count,
            escalation_level=record.escalation_level,
        )
        logger.info(f"✓ Alert {alert_id} acknowledged by {user_id}")
        return record

    def acknowledge_by_id(self, record_id: str, user_id: str, **options) -> AckRecord:
        record = self._require_record(record_id)
        return self.acknowledge(record.alert_id, user_id, **options)

    def bulk_acknowledge(
        self, alert_ids: list[str], user_id: str, **options
    ) -> dict[str, AckRecord | AcknowledgmentNotFoundError | AcknowledgmentStateError]:
        """Acknowledge each alert independently; failures are returned in place of the record."""
        results: dict[str, AckRecord | AcknowledgmentNotFoundError | AcknowledgmentStateError] = {}
        for alert_id in alert_ids:
            try:
                results[alert_id] = self.acknowledge(alert_id, user_id, **options)
            except (AcknowledgmentNotFoundError, AcknowledgmentStateError) as e:
                results[alert_id] = e
        return results

    def unacknowledge(self, alert_id: str, user_id: str, reason: str | None = None) -> AckRecord:
        """
        Put an acknowledged alert back to pending with a fresh initial timeout.

        Raises:
            AcknowledgmentNotFoundError: If the alert is not tracked
            AcknowledgmentStateError: If the alert is not acknowledged
        """
        record = self._require_alert(alert_id)
        if record.status != AckStatus.ACKNOWLEDGED:
            raise AcknowledgmentStateError(record.id, record.status, "unacknowledge")

        self._reopen(record, "unacknowledged", performed_by=user_id, reason=reason)
        self._emit(
            EventType.ACK_UNACKNOWLEDGED,
            record_id=record.id,
            alert_id=alert_id,
            unacknowledged_by=user_id,
            reason=reason,
        )
        logger.info(f"Alert {alert_id} unacknowledged by {user_id}")
        return record

    def resolve(self, alert_id: str, user_id: str | None = None, reason: str | None = None) -> AckRecord:
        """
        Close the record; no further timeouts fire.

        Raises:
            AcknowledgmentNotFoundError: If the alert is not tracked
        """
        record = self._require_alert(alert_id)
        record.transition(AckStatus.RESOLVED, "resolved", self._clock(), performed_by=user_id, reason=reason)
        self.scheduler.cancel(self._key(record.id))

        self._emit(EventType.ACK_RESOLVED, record_id=record.id, alert_id=alert_id, resolved_by=user_id, reason=reason)
        logger.debug(f"Alert {alert_id} acknowledgment resolved")
        return record

    def manual_escalate(self, alert_id: str, user_id: str, reason: str | None = None) -> AckRecord:
        """
        Raise the record's escalation level now.

        Raises:
            AcknowledgmentNotFoundError: If the alert is not tracked
        """
        record = self._require_alert(alert_id)
        level = record.escalation_level + 1
        record.escalation_level = level
        record.transition(
            AckStatus.ESCALATED,
            "manual_escalate",
            self._clock(),
            performed_by=user_id,
            reason=reason or f"Manually escalated to level {level}",
        )

        self._emit(
            EventType.ACK_ESCALATED,
            record_id=record.id,
            alert_id=alert_id,
            incident_id=record.incident_id,
            escalation_level=level,
            manual=True,
            escalated_by=user_id,
        )
        logger.info(f"Ack record {record.id} manually escalated to level {level} by {user_id}")
        return record

    def delete_record(self, alert_id: str) -> bool:
        record_id = self._by_alert.pop(alert_id, None)
        if record_id is None:
            return False

        self._records.pop(record_id, None)
        self.scheduler.cancel(self._key(record_id))
        logger.debug(f"Deleted ack record for alert {alert_id}")
        return True

    # ------------------------------------------------------------------
    # Timeouts
    # ------------------------------------------------------------------

    @staticmethod
    def _key(record_id: str) -> str:
        return f"ack:{record_id}"

    def _arm(self, record: AckRecord, delay_seconds: float) -> None:
        self.scheduler.schedule(self._key(record.id), delay_seconds, partial(self._on_timer, record.id))

    def _reopen(self, record: AckRecord, action: str, performed_by: str | None = None, reason: str | None = None):
        record.transition(AckStatus.PENDING, action, self._clock(), performed_by=performed_by, reason=reason)
        record.acknowledged_by = None
        record.acknowledged_at = None
        record.expires_at = None
        self._arm(record, record.timeouts.initial_timeout_minutes * 60)

    async def _on_timer(self, record_id: str) -> None:
        record = self._records.get(record_id)
        if record is None:
            return

        with LoggingContext(alert_id=record.alert_id):
            if record.status == AckStatus.ACKNOWLEDGED:
                self._reopen(record, "ack_expired", reason="Acknowledgment duration elapsed")
                self._emit(
                    EventType.ACK_UNACKNOWLEDGED, record_id=record.id, alert_id=record.alert_id, expired=True
                )
                logger.info(f"Acknowledgment of alert {record.alert_id} lapsed")
            elif record.is_awaiting_ack:
                self._handle_timeout(record)

    def _handle_timeout(self, record: AckRecord) -> None:
        timeouts = record.timeouts
        record.timeout_count += 1

        if record.timeout_count >= timeouts.max_timeouts:
            if timeouts.auto_resolve_on_timeout:
                self._expire(record)
            elif timeouts.escalate_on_timeout:
                self._escalate(record)
            else:
                record.updated_at = self._clock()
                logger.warning(f"⚠️ Ack record {record.id} reached {record.timeout_count} timeouts; no action set")
            return

        now = self._clock()
        wait_minutes = timeouts.next_timeout_minutes(record.timeout_count)
        self._arm(record, wait_minutes * 60)
        record.transition(
            record.status, "timeout", now, reason=f"Timeout {record.timeout_count} of {timeouts.max_timeouts}"
        )

        if timeouts.notify_on_timeout:
            self._emit(
                EventType.ACK_TIMEOUT,
                record_id=record.id,
                alert_id=record.alert_id,
                timeout_count=record.timeout_count,
                max_timeouts=timeouts.max_timeouts,
                next_timeout_at=now + timedelta(minutes=wait_minutes),
            )
        logger.debug(f"Ack record {record.id} timed out ({record.timeout_count}/{timeouts.max_timeouts})")

    def _expire(self, record: AckRecord) -> None:
        record.transition(
            AckStatus.EXPIRED,
            "expired",
            self._clock(),
            reason=f"Max timeouts ({record.timeouts.max_timeouts}) reached",
        )
        self._emit(
            EventType.ACK_EXPIRED, record_id=record.id, alert_id=record.alert_id, timeout_count=record.timeout_count
        )
        logger.warning(f"⚠️ Ack record {record.id} expired after {record.timeout_count} timeouts")

    def _escalate(self, record: AckRecord) -> None:
        level = record.escalation_level + 1
        record.escalation_level = level
        record.transition(AckStatus.ESCALATED, "escalated", self._clock(), reason=f"Escalated to level {level}")
        self._arm(record, record.timeouts.escalation_timeout_minutes * 60)

        self._emit(
            EventType.ACK_ESCALATED,
            record_id=record.id,
            alert_id=record.alert_id,
            incident_id=record.incident_id,
            escalation_level=level,
            timeout_count=record.timeout_count,
        )
        logger.warning(f"⚠️ Ack record {record.id} escalated to level {level}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _require_record(self, record_id: str) -> AckRecord:
        record = self._records.get(record_id)
        if record is None:
            raise AcknowledgmentNotFoundError(record_id)
        return record

    def _require_alert(self, alert_id: str) -> AckRecord:
        record_id = self._by_alert.get(alert_id)
        if record_id is None:
            raise AcknowledgmentNotFoundError(alert_id)
        return self._require_record(record_id)

    def get_by_alert_id(self, alert_id: str) -> AckRecord | None:
        record_id = self._by_alert.get(alert_id)
        return self._records.get(record_id) if record_id else None

    def get_by_id(self, record_id: str) -> AckRecord | None:
        return self._records.get(record_id)

    def get_pending_acks(self) -> list[AckRecord]:
        """Records still waiting for someone to acknowledge them."""
        return [record for record in self._records.values() if record.is_awaiting_ack]

    def get_by_status(self, status: AckStatus) -> list[AckRecord]:
        return [record for record in self._records.values() if record.status == status]

    def get_history(self, alert_id: str) -> list[AckHistoryEntry]:
        record = self.get_by_alert_id(alert_id)
        return list(record.history) if record else []

    def get_time_until_timeout(self, alert_id: str) -> float | None:
        record = self.get_by_alert_id(alert_id)
        return self.scheduler.time_remaining(self._key(record.id)) if record else None

    def get_statistics(self) -> dict:
        counts = {status: 0 for status in AckStatus}
        for record in self._records.values():
            counts[record.status] += 1

        return {
            "total": self._created,
            "pending": counts[AckStatus.PENDING] + counts[AckStatus.ESCALATED],
            "acknowledged": counts[AckStatus.ACKNOWLEDGED],
            "expired": counts[AckStatus.EXPIRED],
            "escalated": counts[AckStatus.ESCALATED],
            "resolved": counts[AckStatus.RESOLVED],
            "average_ack_time_seconds": self._ack_seconds / self._ack_count if self._ack_count else 0.0,
            "average_timeouts_before_ack": self._timeouts_before_ack / self._ack_count if self._ack_count else 0.0,
        }

    def cleanup_old_records(self, max_age_days: float | None = None) -> int:
        """Forget resolved or expired records untouched for ``max_age_days`` (config default)."""
        max_age = timedelta(days=self.config.record_retention_days if max_age_days is None else max_age_days)
        cutoff = self._clock() - max_age

        doomed = [
            record
            for record in self._records.values()
            if record.status in (AckStatus.RESOLVED, AckStatus.EXPIRED) and record.updated_at < cutoff
        ]
        for record in doomed:
            del self._records[record.id]
            if self._by_alert.get(record.alert_id) == record.id:
                del self._by_alert[record.alert_id]
            self.scheduler.cancel(self._key(record.id))

        if doomed:
            logger.info(f"Cleaned up {len(doomed)} old ack records")
        return len(doomed)

    def shutdown(self) -> int:
        """Cancel every pending acknowledgment timeout."""
        return sum(1 for record_id in list(self._records) if self.scheduler.cancel(self._key(record_id)))

    def _emit(self, event_type: EventType, **payload) -> None:
        self.event_sink.write_event(EngineEvent(event_type=event_type, timestamp=self._clock(), payload=payload))
