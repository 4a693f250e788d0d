"""Protocols (interfaces) for rule storage."""

from typing import Protocol, runtime_checkable

from alert_engine.rules_engine.domain.models import Rule, RuleFilters


@runtime_checkable
class RuleStore(Protocol):
    """Interface for durable rule storage."""

    async def get_by_tenant(self, tenant_id: str, filters: RuleFilters | None = None) -> list[Rule]:
        """
        Load a tenant's rules.

        Args:
            tenant_id: Owning tenant
            filters: Activity, id and scope filters (scope None = wildcard)

        Returns:
            Matching rules
        """
        ...

    async def get(self, rule_id: str) -> Rule | None:
        """Load a single rule by id."""
        ...

    async def create(self, rule: Rule) -> Rule:
        """Persist a new rule."""
        ...

    async def update(self, rule: Rule) -> Rule:
        """Persist changes to an existing rule."""
        ...

    async def delete(self, rule_id: str) -> bool:
        """Delete a rule. Returns False when it did not exist."""
        ...
