"""Infrastructure layer for rule storage."""

from alert_engine.rules_engine.infrastructure.rule_store import InMemoryRuleStore

__all__ = ["InMemoryRuleStore"]
