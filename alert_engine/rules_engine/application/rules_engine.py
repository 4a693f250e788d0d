"""Rules engine application service: rule lookup, evaluation and management."""

import asyncio
import math
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace

from loguru import logger

from alert_engine.config import RulesEngineConfig
from alert_engine.rules_engine.application.rule_evaluator import RuleEvaluator
from alert_engine.rules_engine.domain.dtos import ConditionDTO, CreateRuleDTO, UpdateRuleDTO
from alert_engine.rules_engine.domain.models import (
    Condition,
    ConditionOperator,
    EvaluationResult,
    FactContext,
    MatchStrategy,
    Rule,
    RuleEvaluationRequest,
    RuleFilters,
    RuleMatch,
)
from alert_engine.rules_engine.domain.protocols import RuleStore
from alert_engine.shared.domain.exceptions import (
    RuleEvaluationTimeoutError,
    RuleNotFoundError,
    RuleValidationError,
)
from alert_engine.shared.domain.models import Severity, utcnow
from alert_engine.shared.infrastructure.ttl_cache import TTLCache


def validate_rule_conditions(conditions: list[ConditionDTO]) -> list[str]:
    """
    Check raw conditions and collect every problem found.

    Returns:
        Human-readable error messages, empty when the conditions are valid
    """
    if not conditions:
        return ["At least one condition is required"]

    errors = []
    for index, condition in enumerate(conditions, start=1):
        label = f"Condition {index}"

        if not condition.parameter:
            errors.append(f"{label}: parameter is required")

        if not condition.operator:
            errors.append(f"{label}: operator is required")
        elif condition.operator not in ConditionOperator.__members__:
            errors.append(f"{label}: invalid operator '{condition.operator}'")

        threshold = condition.threshold
        if threshold is None:
            errors.append(f"{label}: threshold is required")
        elif (
            isinstance(threshold, bool)
            or not isinstance(threshold, (int, float))
            or not math.isfinite(threshold)
        ):
            errors.append(f"{label}: threshold must be a valid number")

        if not condition.severity:
            errors.append(f"{label}: severity is required")
        elif condition.severity not in Severity.__members__:
            errors.append(f"{label}: invalid severity '{condition.severity}'")

    return errors


def _build_conditions(conditions: list[ConditionDTO]) -> tuple[Condition, ...]:
    errors = validate_rule_conditions(conditions)
    if errors:
        raise RuleValidationError(errors)

    return tuple(
        Condition(
            parameter=c.parameter,
            operator=ConditionOperator(c.operator),
            threshold=float(c.threshold),
            severity=Severity(c.severity),
        )
        for c in conditions
    )


class RulesEngine:
    """
    Evaluates a tenant's applicable rules against incoming facts.

    Applicable rule lists are cached per tenant and scope for a fixed TTL and
    dropped whenever one of the tenant's rules changes. Each rule is evaluated
    under its own timeout so a single pathological rule never stalls a batch.

    Evaluations run on the engine's own bounded thread pool. A timeout stops
    the wait, not the thread: a runaway evaluation keeps its worker until it
    returns, so at most ``evaluation_workers`` threads can be tied up, and work
    still queued behind them times out and is dropped without running.
    Call :meth:`close` at shutdown.
    """

    def __init__(
        self,
        rule_store: RuleStore,
        evaluator: RuleEvaluator | None = None,
        config: RulesEngineConfig | None = None,
        cache: TTLCache[list[Rule]] | None = None,
    ):
        """
        Initialize rules engine.

        Args:
            rule_store: Where rules are persisted
            evaluator: Condition/rule evaluator (defaults to a new one)
            config: Cache TTL, timeout and strategy settings
            cache: Applicable-rules cache (defaults to one using the configured TTL)
        """
        self.rule_store = rule_store
        self.evaluator = evaluator or RuleEvaluator()
        self.config = config or RulesEngineConfig()
        self.cache = cache or TTLCache(ttl_seconds=self.config.cache_ttl_seconds)
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.evaluation_workers, thread_name_prefix="rule-eval"
        )

        self._evaluations = 0
        self._matches = 0
        self._timeouts = 0
        self._errors = 0

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    @staticmethod
    def _cache_key(tenant_id: str, farm_id: str | None, pond_id: str | None, sensor_id: str | None) -> str:
        return f"{tenant_id}:{farm_id or '*'}:{pond_id or '*'}:{sensor_id or '*'}"

    async def get_applicable_rules(self, request: RuleEvaluationRequest) -> list[Rule]:
        """
        Active rules for the request's tenant and scope.

        Rule ids, when given, narrow the cached scope result.
        """
        key = self._cache_key(request.tenant_id, request.farm_id, request.pond_id, request.sensor_id)

        rules = self.cache.get(key)
        if rules is None:
            rules = await self.rule_store.get_by_tenant(
                request.tenant_id,
                RuleFilters(
                    farm_id=request.farm_id,
                    pond_id=request.pond_id,
                    sensor_id=request.sensor_id,
                ),
            )
            self.cache.set(key, rules)
            logger.debug(f"Cached {len(rules)} rules under {key}")

        if request.rule_ids is not None:
            wanted = set(request.rule_ids)
            rules = [rule for rule in rules if rule.id in wanted]

        return rules

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def evaluate_rules(self, request: RuleEvaluationRequest) -> list[RuleMatch]:
        """
        Evaluate all applicable rules and apply the match strategy.

        Returns:
            Matches; FIRST_MATCH yields at most one, BEST_MATCH is sorted by
            descending severity rank
        """
        strategy = request.strategy or MatchStrategy(self.config.default_strategy)
        rules = await self.get_applicable_rules(request)

        if not rules:
            logger.debug(f"No applicable rules for tenant {request.tenant_id}")
            return []

        matches: list[RuleMatch] = []
        for rule in rules:
            match = await self.evaluate_single_rule(rule, request.context)
            if match is None:
                continue

            matches.append(match)
            if strategy == MatchStrategy.FIRST_MATCH:
                break

        if strategy == MatchStrategy.BEST_MATCH:
            matches.sort(key=lambda m: m.severity.rank, reverse=True)

        logger.info(
            f"Evaluated {len(rules)} rules for tenant {request.tenant_id}: "
            f"{len(matches)} matched ({strategy})"
        )
        return matches

    async def evaluate_single_rule(self, rule: Rule, context: FactContext) -> RuleMatch | None:
        """
        Evaluate one rule under the configured timeout.

        Timeouts and evaluation errors are logged and reported as no match.
        """
        self._evaluations += 1
        try:
            evaluation = await self._evaluate_with_timeout(rule, context)
        except RuleEvaluationTimeoutError as e:
            self._timeouts += 1
            logger.warning(f"⚠️ {e.message}")
            return None
        except Exception as e:
            self._errors += 1
            logger.error(f"Error evaluating rule {rule.id}: {e}")
            return None

        if not evaluation.matched:
            return None

        self._matches += 1
        return RuleMatch.from_evaluation(rule, evaluation)

    async def _evaluate_with_timeout(self, rule: Rule, context: FactContext) -> EvaluationResult:
        evaluate = self.evaluator.evaluate_rule if self.config.honor_logical_operator else self.evaluator.evaluate
        timeout = self.config.evaluation_timeout_seconds

        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(self._executor, evaluate, rule, context), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise RuleEvaluationTimeoutError(rule.id, timeout) from e

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    def validate_rule_conditions(self, conditions: list[ConditionDTO]) -> list[str]:
        return validate_rule_conditions(conditions)

    async def create_rule(self, dto: CreateRuleDTO) -> Rule:
        """
        Validate and persist a new rule.

        Raises:
            RuleValidationError: If any condition is malformed
        """
        rule = Rule(
            id=str(uuid.uuid4()),
            tenant_id=dto.tenant_id,
            name=dto.name,
            conditions=_build_conditions(dto.conditions),
            logical_operator=dto.logical_operator,
            is_active=dto.is_active,
            farm_id=dto.farm_id,
            pond_id=dto.pond_id,
            sensor_id=dto.sensor_id,
            description=dto.description,
            severity=dto.severity,
        )

        created = await self.rule_store.create(rule)
        self.invalidate_tenant(rule.tenant_id)

        logger.info(f"✓ Created rule {created.id} ({created.name}) for tenant {created.tenant_id}")
        return created

    async def update_rule(self, rule_id: str, dto: UpdateRuleDTO) -> Rule:
        """
        Apply a partial update to a rule.

        Raises:
            RuleNotFoundError: If the rule does not exist
            RuleValidationError: If replacement conditions are malformed
        """
        rule = await self._require_rule(rule_id)

        changes = dto.model_dump(exclude_unset=True)
        if "conditions" in changes:
            changes["conditions"] = _build_conditions(dto.conditions or [])

        updated = await self.rule_store.update(replace(rule, **changes, updated_at=utcnow()))
        self.invalidate_tenant(rule.tenant_id)

        logger.info(f"✓ Updated rule {rule_id}")
        return updated

    async def delete_rule(self, rule_id: str) -> None:
        """
        Delete a rule.

        Raises:
            RuleNotFoundError: If the rule does not exist
        """
        rule = await self._require_rule(rule_id)
        await self.rule_store.delete(rule_id)
        self.invalidate_tenant(rule.tenant_id)

        logger.info(f"✓ Deleted rule {rule_id}")

    async def toggle_rule_status(self, rule_id: str, is_active: bool) -> Rule:
        """Activate or deactivate a rule."""
        return await self.update_rule(rule_id, UpdateRuleDTO(is_active=is_active))

    async def get_rule_by_id(self, rule_id: str) -> Rule | None:
        return await self.rule_store.get(rule_id)

    async def get_rules_by_tenant(self, tenant_id: str, include_inactive: bool = False) -> list[Rule]:
        return await self.rule_store.get_by_tenant(
            tenant_id, RuleFilters(include_inactive=include_inactive)
        )

    async def _require_rule(self, rule_id: str) -> Rule:
        rule = await self.rule_store.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    # ------------------------------------------------------------------
    # Cache control
    # ------------------------------------------------------------------

    def invalidate_tenant(self, tenant_id: str) -> int:
        """Drop every cached rule list belonging to ``tenant_id``."""
        return self.cache.invalidate(f"{tenant_id}:")

    async def hot_reload_rules(self, tenant_id: str) -> None:
        """Force the next evaluation for ``tenant_id`` to reload from the store."""
        removed = self.invalidate_tenant(tenant_id)
        logger.info(f"🔄 Hot reloaded rules for tenant {tenant_id} ({removed} cache entries dropped)")

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("Cleared rules cache")

    def get_cache_stats(self) -> dict:
        return self.cache.stats()

    def get_statistics(self) -> dict:
        """Get statistics about engine activity."""
        return {
            "evaluations": self._evaluations,
            "matches": self._matches,
            "timeouts": self._timeouts,
            "errors": self._errors,
            "cached_scopes": len(self.cache),
        }

    def close(self) -> None:
        """Stop the evaluation pool; queued evaluations are cancelled."""
        self._executor.shutdown(wait=False, cancel_futures=True)
