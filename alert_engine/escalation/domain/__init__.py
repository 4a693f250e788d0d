"""Domain layer for escalation."""

from alert_engine.escalation.domain.dtos import CreatePolicyDTO, PolicyValidationResult, UpdatePolicyDTO
from alert_engine.escalation.domain.models import (
    AckHistoryEntry,
    AckRecord,
    AckSourceType,
    AckStatus,
    AckTimeoutConfig,
    AcknowledgmentRecord,
    EscalationAction,
    EscalationActionType,
    EscalationLevel,
    EscalationPolicy,
    EscalationState,
    Incident,
    IncidentStatus,
    NotificationRecord,
    OnCallSchedule,
    SuppressionWindow,
    TimelineEvent,
    TimelineEventType,
)
from alert_engine.escalation.domain.protocols import EscalationNotifier, IncidentStore, PolicyStore

__all__ = [
    "CreatePolicyDTO",
    "PolicyValidationResult",
    "UpdatePolicyDTO",
    "AckHistoryEntry",
    "AckRecord",
    "AckSourceType",
    "AckStatus",
    "AckTimeoutConfig",
    "AcknowledgmentRecord",
    "EscalationAction",
    "EscalationActionType",
    "EscalationLevel",
    "EscalationPolicy",
    "EscalationState",
    "Incident",
    "IncidentStatus",
    "NotificationRecord",
    "OnCallSchedule",
    "SuppressionWindow",
    "TimelineEvent",
    "TimelineEventType",
    "EscalationNotifier",
    "IncidentStore",
    "PolicyStore",
]
