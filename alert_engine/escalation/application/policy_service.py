"""Escalation policy management and matching."""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger

from alert_engine.config import EscalationConfig
from alert_engine.escalation.domain.dtos import CreatePolicyDTO, PolicyValidationResult, UpdatePolicyDTO
from alert_engine.escalation.domain.models import (
    TIME_FORMAT,
    EscalationPolicy,
    OnCallSchedule,
    SuppressionWindow,
)
from alert_engine.escalation.domain.protocols import PolicyStore
from alert_engine.shared.domain.exceptions import (
    PolicyConflictError,
    PolicyNotFoundError,
    PolicyValidationError,
    SuppressionWindowNotFoundError,
)
from alert_engine.shared.domain.models import Severity, utcnow
from alert_engine.shared.infrastructure.ttl_cache import TTLCache

SEVERITY_MATCH_SCORE = 10
RULE_MATCH_SCORE = 30
FARM_MATCH_SCORE = 20


@dataclass
class PolicyMatch:
    """A candidate policy with how well it fits an alert."""

    policy: EscalationPolicy
    match_score: int
    match_reasons: list[str] = field(default_factory=list)


def validate_policy(definition: CreatePolicyDTO) -> PolicyValidationResult:
    """
    Check a policy definition and collect every problem found.

    Missing notification targets on a level are a warning, not an error: the
    on-call schedule may still supply someone.
    """
    errors: list[str] = []
    warnings: list[str] = []

    if not definition.name or not definition.name.strip():
        errors.append("Policy name is required")

    if not definition.severities:
        errors.append("At least one severity level is required")

    if not definition.levels:
        errors.append("At least one escalation level is required")
    else:
        numbers = sorted(level.level for level in definition.levels)
        if numbers != list(range(1, len(numbers) + 1)):
            errors.append("Escalation levels must be sequential starting from 1")

        for level in definition.levels:
            label = f"Level {level.level}"
            if not level.name or not level.name.strip():
                errors.append(f"{label}: Name is required")
            if level.timeout_minutes < 0:
                errors.append(f"{label}: Timeout must be non-negative")
            if not level.notify_user_ids:
                warnings.append(f"{label}: No users configured for notification")
            if not level.channels:
                errors.append(f"{label}: At least one notification channel is required")

    if definition.repeat_interval_minutes < 1:
        errors.append("Repeat interval must be at least 1 minute")

    if definition.max_repeats < 0:
        errors.append("Max repeats must be non-negative")

    for schedule in definition.on_call_schedule:
        if not 0 <= schedule.day_of_week <= 6:
            errors.append("Day of week must be between 0 and 6")
        if not TIME_FORMAT.match(schedule.start_time) or not TIME_FORMAT.match(schedule.end_time):
            errors.append("Time must be in HH:mm format")
        if not schedule.user_id:
            errors.append("On-call user ID is required")

    try:
        ZoneInfo(definition.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        errors.append(f"Invalid timezone '{definition.timezone}'")

    return PolicyValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def _as_definition(policy: EscalationPolicy) -> CreatePolicyDTO:
    return CreatePolicyDTO(
        tenant_id=policy.tenant_id,
        name=policy.name,
        description=policy.description,
        severities=policy.severities,
        levels=policy.levels,
        on_call_schedule=policy.on_call_schedule,
        suppression_windows=policy.suppression_windows,
        repeat_interval_minutes=policy.repeat_interval_minutes,
        max_repeats=policy.max_repeats,
        is_default=policy.is_default,
        priority=policy.priority,
        timezone=policy.timezone,
        rule_ids=policy.rule_ids,
        farm_ids=policy.farm_ids,
        created_by=policy.created_by,
    )


class EscalationPolicyService:
    """
    CRUD, caching and matching for escalation policies.

    Each tenant's policy list is cached for ``policy_cache_ttl_seconds`` and
    invalidated on every mutation. At most one policy per tenant is the
    default, and the default cannot be deleted while it holds that role.
    """

    def __init__(
        self,
        policy_store: PolicyStore,
        config: EscalationConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize policy service.

        Args:
            policy_store: Durable policy storage
            config: Cache settings
            clock: Source of "now" for timestamps and schedule lookups
        """
        self.policy_store = policy_store
        self.config = config or EscalationConfig()
        self._clock = clock
        self._cache: TTLCache[list[EscalationPolicy]] = TTLCache(self.config.policy_cache_ttl_seconds)

    @staticmethod
    def _cache_key(tenant_id: str) -> str:
        return f"{tenant_id}:"

    def _invalidate(self, tenant_id: str) -> None:
        self._cache.invalidate(self._cache_key(tenant_id))

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def validate_policy(self, definition: CreatePolicyDTO) -> PolicyValidationResult:
        return validate_policy(definition)

    async def create_policy(self, dto: CreatePolicyDTO) -> EscalationPolicy:
        """
        Create a policy.

        Raises:
            PolicyValidationError: If the definition is invalid
        """
        logger.info(f"Creating escalation policy: {dto.name}")

        validation = validate_policy(dto)
        if not validation.is_valid:
            raise PolicyValidationError(validation.errors)
        for warning in validation.warnings:
            logger.warning(f"⚠️ Policy {dto.name}: {warning}")

        if dto.is_default:
            await self.policy_store.unset_default(dto.tenant_id)

        now = self._clock()
        policy = EscalationPolicy(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            **dto.model_dump(exclude={"levels", "on_call_schedule", "suppression_windows"}),
            levels=list(dto.levels),
            on_call_schedule=list(dto.on_call_schedule),
            suppression_windows=list(dto.suppression_windows),
        )

        saved = await self.policy_store.save(policy)
        self._invalidate(dto.tenant_id)

        logger.info(f"✓ Created escalation policy {saved.id} ({saved.name})")
        return saved

    async def update_policy(self, tenant_id: str, policy_id: str, dto: UpdatePolicyDTO) -> EscalationPolicy:
        """
        Apply a partial update; the merged policy is validated as a whole.

        Raises:
            PolicyNotFoundError: If the policy does not exist
            PolicyValidationError: If the merged policy is invalid
        """
        logger.info(f"Updating escalation policy: {policy_id}")

        policy = await self.get_policy(tenant_id, policy_id)
        changes = {name: getattr(dto, name) for name in dto.model_fields_set}
        updated = replace(policy, **changes, updated_at=self._clock())

        validation = validate_policy(_as_definition(updated))
        if not validation.is_valid:
            raise PolicyValidationError(validation.errors)

        if updated.is_default and not policy.is_default:
            await self.policy_store.unset_default(tenant_id)

        saved = await self.policy_store.save(updated)
        self._invalidate(tenant_id)
        return saved

    async def delete_policy(self, tenant_id: str, policy_id: str) -> None:
        """
        Delete a policy.

        Raises:
            PolicyNotFoundError: If the policy does not exist
            PolicyConflictError: If the policy is the tenant default
        """
        logger.info(f"Deleting escalation policy: {policy_id}")

        policy = await self.get_policy(tenant_id, policy_id)
        if policy.is_default:
            raise PolicyConflictError("Cannot delete default policy", details={"policy_id": policy_id})

        await self.policy_store.delete(tenant_id, policy_id)
        self._invalidate(tenant_id)

    async def get_policy(self, tenant_id: str, policy_id: str) -> EscalationPolicy:
        policy = await self.policy_store.get(tenant_id, policy_id)
        if policy is None:
            raise PolicyNotFoundError(policy_id)
        return policy

    async def get_policies(self, tenant_id: str, active_only: bool = True) -> list[EscalationPolicy]:
        """Tenant policies by descending priority, oldest first within a priority."""
        policies = self._cache.get(self._cache_key(tenant_id))
        if policies is None:
            policies = await self.policy_store.list_by_tenant(tenant_id)
            policies = sorted(policies, key=lambda p: (-p.priority, p.created_at))
            self._cache.set(self._cache_key(tenant_id), policies)
        else:
            logger.debug(f"Policy cache hit for tenant {tenant_id}")

        return [p for p in policies if p.is_active] if active_only else list(policies)

    async def get_default_policy(self, tenant_id: str) -> EscalationPolicy | None:
        policies = await self.get_policies(tenant_id)
        return next((p for p in policies if p.is_default), None)

    async def get_policies_by_severity(self, tenant_id: str, severity: Severity) -> list[EscalationPolicy]:
        policies = await self.get_policies(tenant_id)
        return [p for p in policies if severity in p.severities]

    async def clone_policy(self, tenant_id: str, policy_id: str, new_name: str) -> EscalationPolicy:
        """Copy a policy under a new name; the copy is never the default."""
        source = await self.get_policy(tenant_id, policy_id)

        now = self._clock()
        cloned = replace(
            source,
            id=str(uuid.uuid4()),
            name=new_name,
            is_default=False,
            levels=[level.model_copy() for level in source.levels],
            on_call_schedule=[slot.model_copy() for slot in source.on_call_schedule],
            suppression_windows=[window.model_copy() for window in source.suppression_windows],
            created_at=now,
            updated_at=now,
        )

        saved = await self.policy_store.save(cloned)
        self._invalidate(tenant_id)
        return saved

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    @staticmethod
    def calculate_match_score(
        policy: EscalationPolicy, severity: Severity, rule_id: str | None = None, farm_id: str | None = None
    ) -> int:
        score = policy.priority
        if severity in policy.severities:
            score += SEVERITY_MATCH_SCORE
        if policy.rule_ids and rule_id in policy.rule_ids:
            score += RULE_MATCH_SCORE
        if policy.farm_ids and farm_id in policy.farm_ids:
            score += FARM_MATCH_SCORE
        return score

    @staticmethod
    def get_match_reasons(
        policy: EscalationPolicy, severity: Severity, rule_id: str | None = None, farm_id: str | None = None
    ) -> list[str]:
        reasons = []
        if severity in policy.severities:
            reasons.append(f"Severity {severity} matches")
        if rule_id and rule_id in policy.rule_ids:
            reasons.append(f"Rule {rule_id} specifically configured")
        if farm_id and farm_id in policy.farm_ids:
            reasons.append(f"Farm {farm_id} specifically configured")
        if policy.is_default:
            reasons.append("Default policy")
        return reasons

    async def find_policy_matches(
        self, tenant_id: str, severity: Severity, rule_id: str | None = None, farm_id: str | None = None
    ) -> list[PolicyMatch]:
        """Applicable policies, best match first."""
        matches = [
            PolicyMatch(
                policy=policy,
                match_score=self.calculate_match_score(policy, severity, rule_id, farm_id),
                match_reasons=self.get_match_reasons(policy, severity, rule_id, farm_id),
            )
            for policy in await self.get_policies(tenant_id)
            if policy.applies_to(severity, rule_id, farm_id)
        ]
        matches.sort(key=lambda m: (m.match_score, m.policy.priority), reverse=True)
        return matches

    async def find_matching_policy(
        self, tenant_id: str, severity: Severity, rule_id: str | None = None, farm_id: str | None = None
    ) -> EscalationPolicy | None:
        """Best applicable policy, falling back to the tenant default."""
        matches = await self.find_policy_matches(tenant_id, severity, rule_id, farm_id)
        if matches:
            best = matches[0]
            logger.debug(f"Policy {best.policy.id} matched: {', '.join(best.match_reasons)}")
            return best.policy

        default = await self.get_default_policy(tenant_id)
        if default is None:
            logger.warning(f"⚠️ No escalation policy for tenant {tenant_id} and severity {severity}")
        return default

    # ------------------------------------------------------------------
    # Suppression windows and on-call
    # ------------------------------------------------------------------

    async def add_suppression_window(
        self, tenant_id: str, policy_id: str, window: SuppressionWindow
    ) -> EscalationPolicy:
        policy = await self.get_policy(tenant_id, policy_id)
        policy.suppression_windows.append(window)
        policy.updated_at = self._clock()

        saved = await self.policy_store.save(policy)
        self._invalidate(tenant_id)
        return saved

    async def remove_suppression_window(self, tenant_id: str, policy_id: str, window_id: str) -> EscalationPolicy:
        """
        Raises:
            SuppressionWindowNotFoundError: If the policy has no such window
        """
        policy = await self.get_policy(tenant_id, policy_id)

        remaining = [w for w in policy.suppression_windows if w.id != window_id]
        if len(remaining) == len(policy.suppression_windows):
            raise SuppressionWindowNotFoundError(policy_id, window_id)

        policy.suppression_windows = remaining
        policy.updated_at = self._clock()

        saved = await self.policy_store.save(policy)
        self._invalidate(tenant_id)
        return saved

    async def is_in_suppression_window(self, tenant_id: str, policy_id: str, at: datetime | None = None) -> bool:
        policy = await self.get_policy(tenant_id, policy_id)
        return policy.in_suppression_window(at or self._clock())

    async def update_on_call_schedule(
        self, tenant_id: str, policy_id: str, schedule: list[OnCallSchedule]
    ) -> EscalationPolicy:
        policy = await self.get_policy(tenant_id, policy_id)

        validation = validate_policy(_as_definition(replace(policy, on_call_schedule=schedule)))
        if not validation.is_valid:
            raise PolicyValidationError(validation.errors)

        policy.on_call_schedule = list(schedule)
        policy.updated_at = self._clock()

        saved = await self.policy_store.save(policy)
        self._invalidate(tenant_id)
        return saved

    async def get_current_on_call_user(
        self, tenant_id: str, policy_id: str, at: datetime | None = None
    ) -> str | None:
        policy = await self.get_policy(tenant_id, policy_id)
        return policy.current_on_call(at or self._clock())

    def clear_cache(self) -> None:
        self._cache.clear()
