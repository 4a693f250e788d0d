"""Data Transfer Objects (DTOs) for escalation policy management."""

from pydantic import BaseModel, Field

from alert_engine.escalation.domain.models import EscalationLevel, OnCallSchedule, SuppressionWindow
from alert_engine.shared.domain.models import Severity


class CreatePolicyDTO(BaseModel):
    """Data Transfer Object for creating an escalation policy."""

    tenant_id: str = Field(description="Owning tenant")
    name: str = Field(default="", description="Policy name")
    description: str | None = None
    severities: list[Severity] = Field(default_factory=list, description="Severities the policy covers")
    levels: list[EscalationLevel] = Field(default_factory=list, description="Levels, numbered 1..N")
    on_call_schedule: list[OnCallSchedule] = Field(default_factory=list)
    suppression_windows: list[SuppressionWindow] = Field(default_factory=list)
    repeat_interval_minutes: float = Field(default=30, description="Minutes between repeats of the final level")
    max_repeats: int = Field(default=0, description="Times the final level is repeated")
    is_default: bool = Field(default=False, description="Fallback when nothing else matches")
    priority: int = Field(default=0, description="Tie breaker, higher wins")
    timezone: str = Field(default="UTC", description="IANA zone for on-call and suppression windows")
    rule_ids: list[str] = Field(default_factory=list, description="Restrict to these rules (empty = any)")
    farm_ids: list[str] = Field(default_factory=list, description="Restrict to these farms (empty = any)")
    created_by: str | None = None


class UpdatePolicyDTO(BaseModel):
    """Data Transfer Object for partially updating a policy; unset fields are kept."""

    name: str | None = None
    description: str | None = None
    severities: list[Severity] | None = None
    levels: list[EscalationLevel] | None = None
    on_call_schedule: list[OnCallSchedule] | None = None
    suppression_windows: list[SuppressionWindow] | None = None
    repeat_interval_minutes: float | None = None
    max_repeats: int | None = None
    is_default: bool | None = None
    is_active: bool | None = None
    priority: int | None = None
    timezone: str | None = None
    rule_ids: list[str] | None = None
    farm_ids: list[str] | None = None


class PolicyValidationResult(BaseModel):
    """Outcome of validating a policy definition."""

    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
