"""Policy and incident stores."""

from typing import Any

from loguru import logger

from alert_engine.escalation.domain.models import EscalationPolicy, Incident, TimelineEvent, TimelineEventType
from alert_engine.escalation.domain.protocols import IncidentStore, PolicyStore
from alert_engine.shared.domain.exceptions import IncidentNotFoundError


class InMemoryPolicyStore(PolicyStore):
    """Dict-backed policy store keyed by (tenant, policy id)."""

    def __init__(self, policies: list[EscalationPolicy] | None = None):
        self._policies: dict[tuple[str, str], EscalationPolicy] = {
            (policy.tenant_id, policy.id): policy for policy in policies or []
        }
        self.query_count = 0

    async def get(self, tenant_id: str, policy_id: str) -> EscalationPolicy | None:
        return self._policies.get((tenant_id, policy_id))

    async def list_by_tenant(self, tenant_id: str) -> list[EscalationPolicy]:
        self.query_count += 1
        policies = [policy for (tenant, _), policy in self._policies.items() if tenant == tenant_id]
        logger.debug(f"Loaded {len(policies)} escalation policies for tenant {tenant_id}")
        return policies

    async def save(self, policy: EscalationPolicy) -> EscalationPolicy:
        self._policies[(policy.tenant_id, policy.id)] = policy
        return policy

    async def delete(self, tenant_id: str, policy_id: str) -> bool:
        return self._policies.pop((tenant_id, policy_id), None) is not None

    async def unset_default(self, tenant_id: str) -> int:
        changed = 0
        for (tenant, _), policy in self._policies.items():
            if tenant == tenant_id and policy.is_default:
                policy.is_default = False
                changed += 1
        return changed

    def __len__(self):
        return len(self._policies)


class InMemoryIncidentStore(IncidentStore):
    """Dict-backed incident store."""

    def __init__(self, incidents: list[Incident] | None = None):
        self._incidents: dict[str, Incident] = {incident.id: incident for incident in incidents or []}

    async def load(self, incident_id: str) -> Incident | None:
        return self._incidents.get(incident_id)

    async def save(self, incident: Incident) -> Incident:
        self._incidents[incident.id] = incident
        return incident

    async def add_timeline_event(
        self,
        incident_id: str,
        event_type: TimelineEventType,
        user_id: str | None = None,
        description: str = "",
        data: dict[str, Any] | None = None,
    ) -> TimelineEvent:
        incident = self._incidents.get(incident_id)
        if incident is None:
            raise IncidentNotFoundError(incident_id)
        return incident.add_timeline_event(event_type, description, user_id=user_id, data=data)

    def list_open(self, tenant_id: str | None = None) -> list[Incident]:
        return [
            incident
            for incident in self._incidents.values()
            if incident.is_open and (tenant_id is None or incident.tenant_id == tenant_id)
        ]

    def __len__(self):
        return len(self._incidents)
