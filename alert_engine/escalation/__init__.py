"""Escalation package: policy matching and timer-driven incident escalation."""

from alert_engine.escalation.application import EscalationManager, EscalationPolicyService
from alert_engine.escalation.domain import (
    CreatePolicyDTO,
    EscalationLevel,
    EscalationPolicy,
    EscalationState,
    Incident,
    UpdatePolicyDTO,
)
from alert_engine.escalation.infrastructure import InMemoryIncidentStore, InMemoryPolicyStore

__all__ = [
    "EscalationManager",
    "EscalationPolicyService",
    "CreatePolicyDTO",
    "EscalationLevel",
    "EscalationPolicy",
    "EscalationState",
    "Incident",
    "UpdatePolicyDTO",
    "InMemoryIncidentStore",
    "InMemoryPolicyStore",
]
