"""Protocols (interfaces) for escalation collaborators."""

from typing import Any, Protocol, runtime_checkable

from alert_engine.escalation.domain.models import (
    EscalationAction,
    EscalationPolicy,
    Incident,
    NotificationRecord,
    TimelineEvent,
    TimelineEventType,
)


@runtime_checkable
class PolicyStore(Protocol):
    """Interface for durable escalation policy storage."""

    async def get(self, tenant_id: str, policy_id: str) -> EscalationPolicy | None:
        """Load one policy of a tenant."""
        ...

    async def list_by_tenant(self, tenant_id: str) -> list[EscalationPolicy]:
        """Load every policy of a tenant, active or not."""
        ...

    async def save(self, policy: EscalationPolicy) -> EscalationPolicy:
        """Insert or replace a policy."""
        ...

    async def delete(self, tenant_id: str, policy_id: str) -> bool:
        """Delete a policy. Returns False when it did not exist."""
        ...

    async def unset_default(self, tenant_id: str) -> int:
        """Clear the default flag on every policy of a tenant. Returns how many changed."""
        ...


@runtime_checkable
class IncidentStore(Protocol):
    """Interface for durable incident storage and its audit trail."""

    async def load(self, incident_id: str) -> Incident | None:
        ...

    async def save(self, incident: Incident) -> Incident:
        ...

    async def add_timeline_event(
        self,
        incident_id: str,
        event_type: TimelineEventType,
        user_id: str | None = None,
        description: str = "",
        data: dict[str, Any] | None = None,
    ) -> TimelineEvent:
        """
        Append an audit entry to a stored incident.

        Raises:
            IncidentNotFoundError: If the incident does not exist
        """
        ...


@runtime_checkable
class EscalationNotifier(Protocol):
    """Delivers an escalation level to its targets."""

    async def notify(self, action: EscalationAction) -> list[NotificationRecord]:
        """
        Notify every target of ``action``.

        Returns:
            One record per user and channel attempted
        """
        ...
