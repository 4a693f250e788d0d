"""Rule stores."""

from dataclasses import replace

from loguru import logger

from alert_engine.rules_engine.domain.models import Rule, RuleFilters
from alert_engine.rules_engine.domain.protocols import RuleStore


class InMemoryRuleStore(RuleStore):
    """Dict-backed rule store for tests, simulations and single-process use."""

    def __init__(self, rules: list[Rule] | None = None):
        """Initialize with an optional rule list."""
        self._rules: dict[str, Rule] = {rule.id: rule for rule in rules or []}
        self.query_count = 0

    async def get_by_tenant(self, tenant_id: str, filters: RuleFilters | None = None) -> list[Rule]:
        filters = filters or RuleFilters()
        self.query_count += 1

        rules = [
            rule
            for rule in self._rules.values()
            if rule.tenant_id == tenant_id
            and (filters.include_inactive or rule.is_active)
            and (filters.rule_ids is None or rule.id in filters.rule_ids)
            and rule.applies_to_scope(filters.farm_id, filters.pond_id, filters.sensor_id)
        ]

        logger.debug(f"Loaded {len(rules)} rules for tenant {tenant_id}")
        return rules

    async def get(self, rule_id: str) -> Rule | None:
        return self._rules.get(rule_id)

    async def create(self, rule: Rule) -> Rule:
        self._rules[rule.id] = rule
        return rule

    async def update(self, rule: Rule) -> Rule:
        self._rules[rule.id] = replace(rule)
        return self._rules[rule.id]

    async def delete(self, rule_id: str) -> bool:
        return self._rules.pop(rule_id, None) is not None

    def __len__(self):
        return len(self._rules)
