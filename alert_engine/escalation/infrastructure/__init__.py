"""In-memory collaborators for escalation."""

from alert_engine.escalation.infrastructure.stores import InMemoryIncidentStore, InMemoryPolicyStore

__all__ = ["InMemoryIncidentStore", "InMemoryPolicyStore"]
