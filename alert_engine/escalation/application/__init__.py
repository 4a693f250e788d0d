"""Application services for escalation."""

from alert_engine.escalation.application.acknowledgment_tracker import AcknowledgmentTracker
from alert_engine.escalation.application.escalation_manager import EscalationManager
from alert_engine.escalation.application.policy_service import (
    EscalationPolicyService,
    PolicyMatch,
    validate_policy,
)

__all__ = ["AcknowledgmentTracker", "EscalationManager", "EscalationPolicyService", "PolicyMatch", "validate_policy"]
