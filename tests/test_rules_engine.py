"""Tests for the rules engine: retrieval, caching, strategies, timeouts and rule management."""

import threading
import time

import pytest

from alert_engine.config import RulesEngineConfig
from alert_engine.rules_engine.application import RuleEvaluator, RulesEngine
from alert_engine.rules_engine.domain.dtos import ConditionDTO, CreateRuleDTO, UpdateRuleDTO
from alert_engine.rules_engine.domain.models import (
    Condition,
    ConditionOperator,
    LogicalOperator,
    MatchStrategy,
    RuleEvaluationRequest,
)
from alert_engine.rules_engine.infrastructure import InMemoryRuleStore
from alert_engine.shared.domain import RuleNotFoundError, RuleValidationError, Severity
from tests.helpers import make_context, make_rule

WARM = Condition("temperature", ConditionOperator.GT, 30, Severity.MEDIUM)
HOT = Condition("temperature", ConditionOperator.GT, 35, Severity.CRITICAL)
LOW_OXYGEN = Condition("oxygen", ConditionOperator.LT, 5, Severity.HIGH)


def request_for(tenant_id="tenant-a", strategy=None, **values):
    return RuleEvaluationRequest(tenant_id=tenant_id, context=make_context(tenant_id, **values), strategy=strategy)


class SlowEvaluator(RuleEvaluator):
    def evaluate(self, rule, context):
        if rule.id == "slow":
            time.sleep(0.3)
        return super().evaluate(rule, context)


class ExplodingEvaluator(RuleEvaluator):
    def evaluate(self, rule, context):
        if rule.id == "broken":
            raise RuntimeError("boom")
        return super().evaluate(rule, context)


class BlockingEvaluator(RuleEvaluator):
    """Holds its worker on the "stuck" rule until released."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()
        self.threads: list[str] = []

    def evaluate(self, rule, context):
        self.threads.append(threading.current_thread().name)
        if rule.id == "stuck":
            self.release.wait(5)
        return super().evaluate(rule, context)


class TestStrategies:
    @pytest.fixture
    def engine(self):
        store = InMemoryRuleStore(
            [
                make_rule("warm", conditions=[WARM]),
                make_rule("hot", conditions=[HOT]),
                make_rule("oxygen", conditions=[LOW_OXYGEN]),
            ]
        )
        return RulesEngine(store)

    @pytest.mark.asyncio
    async def test_all_match_returns_every_match(self, engine):
        matches = await engine.evaluate_rules(request_for(temperature=40, oxygen=4))
        assert {m.rule.id for m in matches} == {"warm", "hot", "oxygen"}

    @pytest.mark.asyncio
    async def test_first_match_stops_early(self, engine):
        matches = await engine.evaluate_rules(request_for(strategy=MatchStrategy.FIRST_MATCH, temperature=40, oxygen=4))
        assert len(matches) == 1

    @pytest.mark.asyncio
    async def test_best_match_sorts_by_severity(self, engine):
        matches = await engine.evaluate_rules(request_for(strategy=MatchStrategy.BEST_MATCH, temperature=40, oxygen=4))
        assert [m.severity for m in matches] == [Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM]

    @pytest.mark.asyncio
    async def test_match_severity_is_highest_matched_condition(self):
        rule = make_rule("combo", conditions=[WARM, LOW_OXYGEN])
        engine = RulesEngine(InMemoryRuleStore([rule]))

        [match] = await engine.evaluate_rules(request_for(temperature=32, oxygen=4))
        assert match.severity == Severity.HIGH

    @pytest.mark.asyncio
    async def test_no_rules_means_no_matches(self):
        assert await RulesEngine(InMemoryRuleStore()).evaluate_rules(request_for(temperature=99)) == []


class TestDeclaredOperator:
    @pytest.mark.asyncio
    async def test_and_rule_honored_by_default(self):
        rule = make_rule("and", conditions=[WARM, LOW_OXYGEN], logical_operator=LogicalOperator.AND)
        engine = RulesEngine(InMemoryRuleStore([rule]))

        assert await engine.evaluate_rules(request_for(temperature=32, oxygen=6)) == []

    @pytest.mark.asyncio
    async def test_or_semantics_when_operator_not_honored(self):
        rule = make_rule("and", conditions=[WARM, LOW_OXYGEN], logical_operator=LogicalOperator.AND)
        engine = RulesEngine(InMemoryRuleStore([rule]), config=RulesEngineConfig(honor_logical_operator=False))

        assert len(await engine.evaluate_rules(request_for(temperature=32, oxygen=6))) == 1


class TestIsolation:
    @pytest.mark.asyncio
    async def test_timeout_is_a_non_match_and_batch_continues(self):
        store = InMemoryRuleStore([make_rule("slow", conditions=[WARM]), make_rule("fast", conditions=[WARM])])
        engine = RulesEngine(
            store, evaluator=SlowEvaluator(), config=RulesEngineConfig(evaluation_timeout_seconds=0.05)
        )

        matches = await engine.evaluate_rules(request_for(temperature=40))

        assert [m.rule.id for m in matches] == ["fast"]
        assert engine.get_statistics()["timeouts"] == 1

    @pytest.mark.asyncio
    async def test_evaluation_error_is_a_non_match(self):
        store = InMemoryRuleStore([make_rule("broken", conditions=[WARM]), make_rule("ok", conditions=[WARM])])
        engine = RulesEngine(store, evaluator=ExplodingEvaluator())

        matches = await engine.evaluate_rules(request_for(temperature=40))

        assert [m.rule.id for m in matches] == ["ok"]
        assert engine.get_statistics()["errors"] == 1

    @pytest.mark.asyncio
    async def test_runaway_evaluation_only_ties_up_engine_pool(self):
        evaluator = BlockingEvaluator()
        store = InMemoryRuleStore([make_rule("stuck", conditions=[WARM]), make_rule("queued", conditions=[WARM])])
        engine = RulesEngine(
            store,
            evaluator=evaluator,
            config=RulesEngineConfig(evaluation_timeout_seconds=0.05, evaluation_workers=1),
        )

        try:
            assert await engine.evaluate_rules(request_for(temperature=40)) == []
            assert engine.get_statistics()["timeouts"] == 2
            # the queued rule was dropped before it reached a worker
            assert len(evaluator.threads) == 1
            assert evaluator.threads[0].startswith("rule-eval")
        finally:
            evaluator.release.set()
            engine.close()

    @pytest.mark.asyncio
    async def test_tenants_only_see_their_rules(self):
        store = InMemoryRuleStore(
            [make_rule("a", tenant_id="tenant-a", conditions=[WARM]), make_rule("b", tenant_id="tenant-b", conditions=[WARM])]
        )
        engine = RulesEngine(store)

        matches = await engine.evaluate_rules(request_for("tenant-b", temperature=40))
        assert [m.rule.id for m in matches] == ["b"]

    @pytest.mark.asyncio
    async def test_scope_filters_rules(self):
        store = InMemoryRuleStore(
            [make_rule("farm-1", conditions=[WARM], farm_id="f1"), make_rule("any", conditions=[WARM])]
        )
        engine = RulesEngine(store)
        request = request_for(temperature=40)
        request.farm_id = "f2"

        matches = await engine.evaluate_rules(request)
        assert [m.rule.id for m in matches] == ["any"]


class TestCache:
    @pytest.mark.asyncio
    async def test_second_lookup_hits_cache(self, rule_store, rules_engine):
        await rule_store.create(make_rule(conditions=[WARM]))

        await rules_engine.evaluate_rules(request_for(temperature=40))
        await rules_engine.evaluate_rules(request_for(temperature=40))

        assert rule_store.query_count == 1
        assert rules_engine.get_cache_stats()["keys"] == ["tenant-a:*:*:*"]

    @pytest.mark.asyncio
    async def test_rule_change_invalidates_only_that_tenant(self, rule_store, rules_engine):
        await rules_engine.evaluate_rules(request_for("tenant-a", temperature=40))
        await rules_engine.evaluate_rules(request_for("tenant-b", temperature=40))

        await rules_engine.create_rule(
            CreateRuleDTO(
                tenant_id="tenant-a",
                name="Warm water",
                conditions=[ConditionDTO(parameter="temperature", operator="GT", threshold=30, severity="HIGH")],
            )
        )

        assert rules_engine.get_cache_stats()["keys"] == ["tenant-b:*:*:*"]
        matches = await rules_engine.evaluate_rules(request_for("tenant-a", temperature=40))
        assert [m.rule.name for m in matches] == ["Warm water"]

    @pytest.mark.asyncio
    async def test_hot_reload_and_clear(self, rule_store, rules_engine):
        await rules_engine.evaluate_rules(request_for(temperature=40))
        await rules_engine.hot_reload_rules("tenant-a")
        assert rules_engine.get_cache_stats()["size"] == 0

        await rules_engine.evaluate_rules(request_for(temperature=40))
        rules_engine.clear_cache()
        assert rules_engine.get_cache_stats() == {"size": 0, "keys": []}


class TestRuleManagement:
    def test_validation_messages(self, rules_engine):
        errors = rules_engine.validate_rule_conditions(
            [
                ConditionDTO(parameter="temperature", operator="GT", threshold=30, severity="HIGH"),
                ConditionDTO(operator="ABOVE", threshold="thirty", severity="SEVERE"),
                ConditionDTO(parameter="oxygen", operator="LT", threshold=True),
            ]
        )

        assert "Condition 2: parameter is required" in errors
        assert "Condition 2: invalid operator 'ABOVE'" in errors
        assert "Condition 2: threshold must be a valid number" in errors
        assert "Condition 2: invalid severity 'SEVERE'" in errors
        assert "Condition 3: threshold must be a valid number" in errors
        assert "Condition 3: severity is required" in errors
        assert not any(error.startswith("Condition 1") for error in errors)

    def test_empty_conditions_rejected(self, rules_engine):
        assert rules_engine.validate_rule_conditions([]) == ["At least one condition is required"]

    @pytest.mark.parametrize("threshold", [float("nan"), float("inf"), None])
    def test_bad_thresholds(self, rules_engine, threshold):
        errors = rules_engine.validate_rule_conditions(
            [ConditionDTO(parameter="p", operator="GT", threshold=threshold, severity="LOW")]
        )
        assert len(errors) == 1

    @pytest.mark.asyncio
    async def test_create_rejects_invalid_rule(self, rules_engine):
        with pytest.raises(RuleValidationError) as exc_info:
            await rules_engine.create_rule(CreateRuleDTO(tenant_id="tenant-a", name="empty"))
        assert exc_info.value.errors == ["At least one condition is required"]

    @pytest.mark.asyncio
    async def test_update_toggle_and_delete(self, rules_engine):
        rule = await rules_engine.create_rule(
            CreateRuleDTO(
                tenant_id="tenant-a",
                name="Warm",
                conditions=[ConditionDTO(parameter="temperature", operator="GT", threshold=30, severity="HIGH")],
            )
        )

        updated = await rules_engine.update_rule(rule.id, UpdateRuleDTO(name="Very warm"))
        assert updated.name == "Very warm"
        assert updated.conditions == rule.conditions

        await rules_engine.toggle_rule_status(rule.id, False)
        assert await rules_engine.get_rules_by_tenant("tenant-a") == []
        assert len(await rules_engine.get_rules_by_tenant("tenant-a", include_inactive=True)) == 1

        await rules_engine.delete_rule(rule.id)
        assert await rules_engine.get_rule_by_id(rule.id) is None

    @pytest.mark.asyncio
    async def test_unknown_rule_raises(self, rules_engine):
        with pytest.raises(RuleNotFoundError, match="Rule missing not found"):
            await rules_engine.update_rule("missing", UpdateRuleDTO(name="x"))
        with pytest.raises(RuleNotFoundError):
            await rules_engine.delete_rule("missing")
