"""Domain models for escalation policies, incidents and escalation state."""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, time
from enum import StrEnum
from typing import Any
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field

from alert_engine.shared.domain.exceptions import IncidentStateError
from alert_engine.shared.domain.models import NotificationChannel, Severity, utcnow

TIME_FORMAT = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_clock_time(value: str) -> time:
    """Parse an ``HH:mm`` string."""
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def in_daily_window(moment: time, start: time, end: time) -> bool:
    """Whether ``moment`` falls in [start, end), wrapping past midnight when end < start."""
    if start <= end:
        return start <= moment < end
    return moment >= start or moment < end


class EscalationActionType(StrEnum):
    """What an escalation level does when it fires."""

    NOTIFY = "NOTIFY"
    PAGE = "PAGE"
    ASSIGN = "ASSIGN"
    CREATE_TICKET = "CREATE_TICKET"


class IncidentStatus(StrEnum):
    """Lifecycle of an alert incident."""

    NEW = "NEW"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    INVESTIGATING = "INVESTIGATING"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"
    SUPPRESSED = "SUPPRESSED"


OPEN_STATUSES = frozenset({IncidentStatus.NEW, IncidentStatus.ACKNOWLEDGED, IncidentStatus.INVESTIGATING})


class TimelineEventType(StrEnum):
    """Kinds of entries in an incident's audit trail."""

    CREATED = "CREATED"
    ESCALATED = "ESCALATED"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"
    REOPENED = "REOPENED"
    STATUS_CHANGE = "STATUS_CHANGE"
    COMMENT_ADDED = "COMMENT_ADDED"
    NOTIFICATION_SENT = "NOTIFICATION_SENT"


# ----------------------------------------------------------------------
# Policy value objects
# ----------------------------------------------------------------------


class EscalationLevel(BaseModel):
    """
    One step of an escalation policy.

    Values are accepted as given and checked by policy validation, so a bad
    level is reported together with every other problem in the policy.
    """

    level: int = Field(description="Position in the 1..N sequence")
    name: str = Field(default="", description="Display name")
    timeout_minutes: float = Field(default=15, description="Minutes before moving on")
    notify_user_ids: list[str] = Field(default_factory=list)
    notify_team_ids: list[str] = Field(default_factory=list)
    channels: list[NotificationChannel] = Field(default_factory=list)
    action: EscalationActionType = Field(default=EscalationActionType.NOTIFY)
    message_template: str | None = Field(
        default=None, description="Placeholders: {{incidentId}}, {{title}}, {{level}}, {{levelName}}, {{policyName}}"
    )


class OnCallSchedule(BaseModel):
    """Weekly on-call slot; ``day_of_week`` is 0 for Monday through 6 for Sunday."""

    day_of_week: int
    start_time: str = Field(description="HH:mm")
    end_time: str = Field(description="HH:mm")
    user_id: str = ""

    def covers(self, moment: datetime) -> bool:
        if moment.weekday() != self.day_of_week:
            return False
        return in_daily_window(moment.time(), parse_clock_time(self.start_time), parse_clock_time(self.end_time))


class SuppressionWindow(BaseModel):
    """
    Period during which new escalations are suppressed.

    One-off windows compare full timestamps. Recurring windows repeat daily
    using only the time of day of ``start_time`` and ``end_time``.
    """

    id: str = Field(default_factory=lambda: f"sw-{uuid.uuid4().hex[:12]}")
    name: str
    start_time: datetime
    end_time: datetime
    reason: str | None = None
    created_by: str | None = None
    is_recurring: bool = False

    def covers(self, moment: datetime) -> bool:
        if self.is_recurring:
            return in_daily_window(moment.time(), self.start_time.time(), self.end_time.time())
        return self.start_time <= moment <= self.end_time


@dataclass
class EscalationPolicy:
    """Ordered escalation levels for a set of severities within one tenant."""

    id: str
    tenant_id: str
    name: str
    severities: list[Severity]
    levels: list[EscalationLevel]
    description: str | None = None
    on_call_schedule: list[OnCallSchedule] = field(default_factory=list)
    suppression_windows: list[SuppressionWindow] = field(default_factory=list)
    repeat_interval_minutes: float = 30
    max_repeats: int = 0
    is_default: bool = False
    is_active: bool = True
    priority: int = 0
    timezone: str = "UTC"
    rule_ids: list[str] = field(default_factory=list)
    farm_ids: list[str] = field(default_factory=list)
    created_by: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.levels = sorted(self.levels, key=lambda level: level.level)

    def applies_to(self, severity: Severity, rule_id: str | None = None, farm_id: str | None = None) -> bool:
        """Active, covers ``severity``, and not restricted away from the rule or farm."""
        if not self.is_active or severity not in self.severities:
            return False
        if self.rule_ids and rule_id not in self.rule_ids:
            return False
        if self.farm_ids and farm_id not in self.farm_ids:
            return False
        return True

    def get_level(self, level: int) -> EscalationLevel | None:
        return next((candidate for candidate in self.levels if candidate.level == level), None)

    def has_next_level(self, level: int) -> bool:
        return self.get_level(level + 1) is not None

    @property
    def final_level(self) -> int:
        return self.levels[-1].level if self.levels else 0

    def _local(self, at: datetime | None) -> datetime:
        return (at or utcnow()).astimezone(ZoneInfo(self.timezone))

    def in_suppression_window(self, at: datetime | None = None) -> bool:
        moment = self._local(at)
        return any(window.covers(moment) for window in self.suppression_windows)

    def current_on_call(self, at: datetime | None = None) -> str | None:
        moment = self._local(at)
        slot = next((s for s in self.on_call_schedule if s.covers(moment)), None)
        return slot.user_id if slot else None


# ----------------------------------------------------------------------
# Incidents
# ----------------------------------------------------------------------


@dataclass
class TimelineEvent:
    """One audit-trail entry on an incident."""

    event_type: TimelineEventType
    description: str = ""
    user_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: f"evt-{uuid.uuid4().hex[:12]}")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": str(self.event_type),
            "timestamp": self.timestamp,
            "user_id": self.user_id,
            "description": self.description,
            "metadata": self.metadata,
        }


@dataclass
class Incident:
    """An open (or closed) alert incident and its audit trail."""

    id: str
    tenant_id: str
    title: str
    severity: Severity
    rule_id: str | None = None
    farm_id: str | None = None
    description: str | None = None
    status: IncidentStatus = IncidentStatus.NEW
    risk_score: float | None = None
    trigger_data: dict[str, Any] = field(default_factory=dict)
    escalation_level: int = 0
    last_escalated_at: datetime | None = None
    acknowledged_by: str | None = None
    acknowledged_at: datetime | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    resolution_notes: str | None = None
    timeline: list[TimelineEvent] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def is_closed(self) -> bool:
        return not self.is_open

    def add_timeline_event(
        self,
        event_type: TimelineEventType,
        description: str = "",
        user_id: str | None = None,
        data: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> TimelineEvent:
        event = TimelineEvent(
            event_type=event_type,
            description=description,
            user_id=user_id,
            metadata=dict(data or {}),
            timestamp=timestamp or utcnow(),
        )
        self.timeline.append(event)
        return event

    def acknowledge(self, user_id: str, note: str | None = None, at: datetime | None = None) -> None:
        if self.is_closed:
            raise IncidentStateError(self.id, "Cannot acknowledge a closed incident")

        self.status = IncidentStatus.ACKNOWLEDGED
        self.acknowledged_by = user_id
        self.acknowledged_at = at or utcnow()
        self.add_timeline_event(
            TimelineEventType.ACKNOWLEDGED,
            note or f"Acknowledged by {user_id}",
            user_id=user_id,
            timestamp=self.acknowledged_at,
        )

    def resolve(self, user_id: str, notes: str | None = None, at: datetime | None = None) -> None:
        if self.is_closed:
            raise IncidentStateError(self.id, "Incident is already closed")

        self.status = IncidentStatus.RESOLVED
        self.resolved_by = user_id
        self.resolved_at = at or utcnow()
        self.resolution_notes = notes
        self.add_timeline_event(
            TimelineEventType.RESOLVED,
            notes or f"Resolved by {user_id}",
            user_id=user_id,
            timestamp=self.resolved_at,
        )

    def escalate(self, level: int, data: dict[str, Any] | None = None, at: datetime | None = None) -> None:
        if self.is_closed:
            raise IncidentStateError(self.id, "Incident cannot be escalated")

        self.escalation_level = level
        self.last_escalated_at = at or utcnow()
        self.add_timeline_event(
            TimelineEventType.ESCALATED,
            f"Escalated to level {level}",
            user_id="system",
            data={"level": level, **(data or {})},
            timestamp=self.last_escalated_at,
        )

    def events_of_type(self, event_type: TimelineEventType) -> list[TimelineEvent]:
        return [event for event in self.timeline if event.event_type == event_type]

    def latest_event(self) -> TimelineEvent | None:
        return self.timeline[-1] if self.timeline else None


# ----------------------------------------------------------------------
# Escalation progress
# ----------------------------------------------------------------------


@dataclass
class AcknowledgmentRecord:
    user_id: str
    timestamp: datetime
    level: int
    message: str | None = None


@dataclass
class NotificationRecord:
    """Outcome of notifying one user on one channel for an escalation level."""

    user_id: str
    channel: NotificationChannel
    level: int
    sent_at: datetime
    success: bool
    message_id: str | None = None
    error: str | None = None


@dataclass
class EscalationAction:
    """A level being carried out: who to reach, how, and with what message."""

    action_type: EscalationActionType
    incident_id: str
    tenant_id: str
    level: int
    severity: Severity
    target_users: list[str]
    channels: list[NotificationChannel]
    message: str
    target_teams: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class EscalationState:
    """Live progress of one incident through its policy."""

    incident_id: str
    tenant_id: str
    policy_id: str
    current_level: int
    started_at: datetime
    last_escalated_at: datetime
    escalation_count: int = 0
    repeats_used: int = 0
    acknowledged: bool = False
    acknowledgments: list[AcknowledgmentRecord] = field(default_factory=list)
    notifications: list[NotificationRecord] = field(default_factory=list)
    is_complete: bool = False
    completed_at: datetime | None = None
    completion_reason: str | None = None
    paused: bool = False

    @property
    def is_active(self) -> bool:
        return not self.is_complete

    def to_dict(self) -> dict:
        return {
            "incident_id": self.incident_id,
            "tenant_id": self.tenant_id,
            "policy_id": self.policy_id,
            "current_level": self.current_level,
            "started_at": self.started_at,
            "last_escalated_at": self.last_escalated_at,
            "escalation_count": self.escalation_count,
            "repeats_used": self.repeats_used,
            "acknowledged": self.acknowledged,
            "is_complete": self.is_complete,
            "completion_reason": self.completion_reason,
            "paused": self.paused,
        }


class AckStatus(StrEnum):
    """Where an alert stands in the acknowledgment workflow."""

    PENDING = "PENDING"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    EXPIRED = "EXPIRED"
    ESCALATED = "ESCALATED"
    RESOLVED = "RESOLVED"


AWAITING_ACK = frozenset({AckStatus.PENDING, AckStatus.ESCALATED})


class AckSourceType(StrEnum):
    """Where an acknowledgment came from."""

    MANUAL = "MANUAL"
    AUTO = "AUTO"
    API = "API"
    INTEGRATION = "INTEGRATION"
    SCHEDULE = "SCHEDULE"


class AckTimeoutConfig(BaseModel):
    """How long an alert may wait for acknowledgment and what happens when it doesn't get one."""

    initial_timeout_minutes: float = Field(default=5.0, gt=0)
    max_timeouts: int = Field(default=3, ge=1)
    escalation_timeout_minutes: float = Field(default=10.0, gt=0)
    auto_resolve_on_timeout: bool = False
    notify_on_timeout: bool = True
    escalate_on_timeout: bool = True

    def next_timeout_minutes(self, timeout_count: int) -> float:
        """Wait after the ``timeout_count``-th timeout: grows by 1.5x, capped at the escalation timeout."""
        return min(self.initial_timeout_minutes * 1.5**timeout_count, self.escalation_timeout_minutes)


@dataclass
class AckHistoryEntry:
    timestamp: datetime
    previous_status: AckStatus
    new_status: AckStatus
    action: str
    performed_by: str | None = None
    reason: str | None = None


@dataclass
class AckRecord:
    """Acknowledgment tracking for one alert."""

    alert_id: str
    timeouts: AckTimeoutConfig
    created_at: datetime
    id: str = field(default_factory=lambda: f"ack-{uuid.uuid4().hex[:12]}")
    incident_id: str | None = None
    status: AckStatus = AckStatus.PENDING
    source_type: AckSourceType = AckSourceType.MANUAL
    acknowledged_by: str | None = None
    acknowledged_at: datetime | None = None
    expires_at: datetime | None = None
    message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime | None = None
    escalation_level: int = 0
    timeout_count: int = 0
    history: list[AckHistoryEntry] = field(default_factory=list)

    @property
    def is_awaiting_ack(self) -> bool:
        return self.status in AWAITING_ACK

    def transition(
        self,
        status: AckStatus,
        action: str,
        at: datetime,
        performed_by: str | None = None,
        reason: str | None = None,
    ) -> None:
        """Move to ``status`` and append the change to the history."""
        self.history.append(
            AckHistoryEntry(
                timestamp=at,
                previous_status=self.status,
                new_status=status,
                action=action,
                performed_by=performed_by,
                reason=reason,
            )
        )
        self.status = status
        self.updated_at = at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "alert_id": self.alert_id,
            "incident_id": self.incident_id,
            "status": str(self.status),
            "source_type": str(self.source_type),
            "acknowledged_by": self.acknowledged_by,
            "acknowledged_at": self.acknowledged_at,
            "expires_at": self.expires_at,
            "escalation_level": self.escalation_level,
            "timeout_count": self.timeout_count,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
