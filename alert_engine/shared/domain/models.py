"""Domain models shared across the alerting contexts."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any


class Severity(StrEnum):
    """Alert severity levels."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    WARNING = "WARNING"
    LOW = "LOW"
    INFO = "INFO"

    @property
    def rank(self) -> int:
        """Position in the fixed ordering, higher is more severe."""
        return SEVERITY_RANK[self]

    @classmethod
    def highest(cls, severities: list["Severity"]) -> "Severity | None":
        """Return the highest-ranked severity, or None for an empty list."""
        if not severities:
            return None
        return max(severities, key=lambda s: s.rank)


# CRITICAL > HIGH > MEDIUM > WARNING > LOW > INFO
SEVERITY_RANK: dict[Severity, int] = {
    Severity.INFO: 0,
    Severity.LOW: 1,
    Severity.WARNING: 2,
    Severity.MEDIUM: 3,
    Severity.HIGH: 4,
    Severity.CRITICAL: 5,
}


class NotificationChannel(StrEnum):
    """Notification delivery media."""

    EMAIL = "EMAIL"
    SMS = "SMS"
    PUSH = "PUSH"
    SLACK = "SLACK"
    TEAMS = "TEAMS"
    WEBHOOK = "WEBHOOK"
    PAGERDUTY = "PAGERDUTY"


class EventType(StrEnum):
    """Names of events emitted by the engine."""

    NOTIFICATION_SENT = "notification.sent"
    NOTIFICATION_DELIVERED = "notification.delivered"
    NOTIFICATION_FAILED = "notification.failed"
    NOTIFICATION_BATCH_COMPLETED = "notification.batch.completed"
    ESCALATION_STARTED = "escalation.started"
    ESCALATION_ESCALATED = "escalation.escalated"
    ESCALATION_REPEATED = "escalation.repeated"
    ESCALATION_ACKNOWLEDGED = "escalation.acknowledged"
    ESCALATION_COMPLETED = "escalation.completed"
    ESCALATION_SUPPRESSED = "escalation.suppressed"
    ACK_CREATED = "ack.created"
    ACK_ACKNOWLEDGED = "ack.acknowledged"
    ACK_UNACKNOWLEDGED = "ack.unacknowledged"
    ACK_TIMEOUT = "ack.timeout"
    ACK_ESCALATED = "ack.escalated"
    ACK_EXPIRED = "ack.expired"
    ACK_RESOLVED = "ack.resolved"


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


@dataclass
class EngineEvent:
    """An event emitted by one of the engine services."""

    event_type: EventType
    timestamp: datetime = field(default_factory=utcnow)
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for DataFrame/storage."""
        return {
            "event_type": str(self.event_type),
            "timestamp": self.timestamp,
            **self.payload,
        }
