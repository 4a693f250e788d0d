"""Domain layer shared by every alerting context."""

from alert_engine.shared.domain.exceptions import (
    AcknowledgmentNotFoundError,
    AcknowledgmentStateError,
    AlertEngineException,
    ConfigurationException,
    EscalationNotFoundError,
    IncidentNotFoundError,
    IncidentStateError,
    PolicyConflictError,
    PolicyNotFoundError,
    PolicyValidationError,
    ResourceNotFoundException,
    RuleEvaluationTimeoutError,
    RuleNotFoundError,
    RuleValidationError,
    SuppressionWindowNotFoundError,
    TransientDeliveryError,
    ValidationException,
)
from alert_engine.shared.domain.models import (
    SEVERITY_RANK,
    EngineEvent,
    EventType,
    NotificationChannel,
    Severity,
    utcnow,
)
from alert_engine.shared.domain.protocols import EventSink, Scheduler, TimerCallback

__all__ = [
    "AcknowledgmentNotFoundError",
    "AcknowledgmentStateError",
    "AlertEngineException",
    "ConfigurationException",
    "EscalationNotFoundError",
    "IncidentNotFoundError",
    "IncidentStateError",
    "PolicyConflictError",
    "PolicyNotFoundError",
    "PolicyValidationError",
    "ResourceNotFoundException",
    "RuleEvaluationTimeoutError",
    "RuleNotFoundError",
    "RuleValidationError",
    "SuppressionWindowNotFoundError",
    "TransientDeliveryError",
    "ValidationException",
    "SEVERITY_RANK",
    "EngineEvent",
    "EventType",
    "NotificationChannel",
    "Severity",
    "utcnow",
    "EventSink",
    "Scheduler",
    "TimerCallback",
]
