"""Data Transfer Objects (DTOs) for rule management."""

from typing import Any

from pydantic import BaseModel, Field

from alert_engine.rules_engine.domain.models import LogicalOperator
from alert_engine.shared.domain.models import Severity


class ConditionDTO(BaseModel):
    """
    Raw condition as submitted by a caller.

    Fields are deliberately loose; the rules engine validates them and reports
    every problem at once instead of failing on the first one.
    """

    parameter: str | None = Field(default=None, description="Fact name, e.g. 'temperature'")
    operator: str | None = Field(default=None, description="One of GT, GTE, LT, LTE, EQ")
    threshold: Any = Field(default=None, description="Numeric threshold")
    severity: str | None = Field(default=None, description="Severity when this condition matches")


class CreateRuleDTO(BaseModel):
    """Data Transfer Object for creating a rule."""

    tenant_id: str = Field(description="Owning tenant")
    name: str = Field(description="Human-readable rule name")
    conditions: list[ConditionDTO] = Field(default_factory=list, description="Rule conditions")
    logical_operator: LogicalOperator = Field(
        default=LogicalOperator.OR, description="How conditions combine"
    )
    is_active: bool = Field(default=True, description="Whether the rule is evaluated")
    farm_id: str | None = Field(default=None, description="Farm scope (None = any)")
    pond_id: str | None = Field(default=None, description="Pond scope (None = any)")
    sensor_id: str | None = Field(default=None, description="Sensor scope (None = any)")
    description: str | None = Field(default=None, description="Free-form description")
    severity: Severity | None = Field(default=None, description="Static rule severity override")


class UpdateRuleDTO(BaseModel):
    """Data Transfer Object for partially updating a rule; unset fields are kept."""

    name: str | None = None
    conditions: list[ConditionDTO] | None = None
    logical_operator: LogicalOperator | None = None
    is_active: bool | None = None
    farm_id: str | None = None
    pond_id: str | None = None
    sensor_id: str | None = None
    description: str | None = None
    severity: Severity | None = None
