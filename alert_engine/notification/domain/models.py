"""Domain models for notification routing and dispatch."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

from alert_engine.escalation.domain.models import TIME_FORMAT
from alert_engine.shared.domain.models import NotificationChannel, Severity, utcnow


class NotificationStatus(StrEnum):
    """Delivery state of one notification on one channel."""

    PENDING = "PENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    RETRYING = "RETRYING"
    SKIPPED = "SKIPPED"


class NotificationPriority(StrEnum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    NORMAL = "NORMAL"
    LOW = "LOW"


# ----------------------------------------------------------------------
# User preferences and routing configuration
# ----------------------------------------------------------------------


class QuietHours(BaseModel):
    """Daily period in which non-critical notifications are held back."""

    start: str = Field(description="HH:mm, inclusive")
    end: str = Field(description="HH:mm, exclusive; earlier than start wraps past midnight")
    timezone: str = Field(default="UTC", description="IANA zone the times are expressed in")

    @field_validator("start", "end")
    @classmethod
    def _check_format(cls, value: str) -> str:
        if not TIME_FORMAT.match(value):
            raise ValueError("Time must be in HH:mm format")
        return value

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Invalid timezone '{value}'") from None
        return value


class RateLimit(BaseModel):
    """Maximum sends per rolling hour and rolling day on one channel."""

    max_per_hour: int = Field(ge=0)
    max_per_day: int = Field(ge=0)


class ChannelConfig(BaseModel):
    """Per-channel settings inside a user's preferences."""

    enabled: bool = True
    address: str | None = Field(default=None, description="Email address, phone number, webhook URL...")
    severity_filter: list[Severity] | None = Field(default=None, description="Only these severities (None = all)")
    rate_limit: RateLimit | None = None
    quiet_hours: QuietHours | None = None


class UserNotificationPreferences(BaseModel):
    """How a user wants to be reached."""

    user_id: str
    enabled_channels: list[NotificationChannel] = Field(default_factory=list)
    preferred_channel: NotificationChannel | None = None
    quiet_hours: QuietHours | None = None
    channel_configs: dict[NotificationChannel, ChannelConfig] = Field(default_factory=dict)


RoutingField = Literal["severity", "tenant_id", "rule_id", "farm_id", "time"]
RoutingOperator = Literal["eq", "ne", "in", "not_in", "gt", "lt", "between"]


class RoutingCondition(BaseModel):
    """``field operator value``; ``time`` is the current hour of day."""

    field: RoutingField
    operator: RoutingOperator
    value: Any


class RoutingRule(BaseModel):
    """Forces extra channels when all of its conditions hold."""

    id: str
    name: str
    priority: int = 0
    conditions: list[RoutingCondition] = Field(default_factory=list)
    target_channels: list[NotificationChannel] = Field(default_factory=list)
    enabled: bool = True


@dataclass
class ChannelStatus:
    """Operator-controlled availability of a channel."""

    channel: NotificationChannel
    available: bool = True
    health_score: float = 100.0
    last_check_at: datetime = field(default_factory=utcnow)
    error_message: str | None = None


@dataclass
class RoutingDecision:
    """Channels to use for one user and one notification."""

    user_id: str
    channels: list[NotificationChannel]
    primary_channel: NotificationChannel | None
    reason: str
    excluded: dict[NotificationChannel, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


# ----------------------------------------------------------------------
# Rendering
# ----------------------------------------------------------------------


@dataclass
class TemplateContext:
    """Values available to notification templates."""

    incident: dict[str, Any] = field(default_factory=dict)
    severity: Severity | None = None
    escalation_level: int = 0
    tenant_name: str | None = None
    farm_name: str | None = None
    user_name: str | None = None
    custom_data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "incident": dict(self.incident),
            "severity": str(self.severity) if self.severity else None,
            "escalation_level": self.escalation_level,
            "tenant_name": self.tenant_name,
            "farm_name": self.farm_name,
            "user_name": self.user_name,
            "custom_data": dict(self.custom_data),
        }


@dataclass
class NotificationTemplate:
    """Template sources for one channel; each part is a jinja2 template string."""

    id: str
    name: str
    channel: NotificationChannel
    subject_template: str
    body_template: str
    html_template: str | None = None
    short_template: str | None = None
    is_default: bool = False


@dataclass
class RenderedNotification:
    subject: str
    body: str
    html_body: str | None = None
    short_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


# ----------------------------------------------------------------------
# Dispatch
# ----------------------------------------------------------------------


class RetryConfig(BaseModel):
    """Exponential backoff settings for failed deliveries."""

    max_retries: int = Field(default=3, ge=0)
    initial_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=30000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)

    def delay_ms(self, attempt: int) -> float:
        """Delay before retry ``attempt + 1``: ``min(initial * multiplier ** attempt, max)``."""
        return min(self.initial_delay_ms * self.backoff_multiplier**attempt, self.max_delay_ms)


@dataclass
class DeliveryResult:
    """What a channel handler reports for one send."""

    success: bool
    message_id: str | None = None
    error: str | None = None


@dataclass
class NotificationRequest:
    """One notification for one user."""

    incident_id: str
    tenant_id: str
    user_id: str
    severity: Severity
    escalation_level: int = 0
    context: TemplateContext | None = None
    channels: list[NotificationChannel] | None = None
    priority: NotificationPriority = NotificationPriority.NORMAL
    rule_id: str | None = None
    farm_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def routing_context(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "incident_id": self.incident_id,
            "rule_id": self.rule_id,
            "farm_id": self.farm_id,
        }

    def template_context(self) -> TemplateContext:
        if self.context is not None:
            return self.context
        return TemplateContext(
            incident={"id": self.incident_id}, severity=self.severity, escalation_level=self.escalation_level
        )


@dataclass
class BatchNotificationRequest:
    """The same notification for several users."""

    incident_id: str
    tenant_id: str
    user_ids: list[str]
    severity: Severity
    escalation_level: int = 0
    context: TemplateContext | None = None
    channels: list[NotificationChannel] | None = None
    priority: NotificationPriority = NotificationPriority.NORMAL
    rule_id: str | None = None
    farm_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def for_user(self, user_id: str) -> NotificationRequest:
        return NotificationRequest(
            incident_id=self.incident_id,
            tenant_id=self.tenant_id,
            user_id=user_id,
            severity=self.severity,
            escalation_level=self.escalation_level,
            context=self.context,
            channels=self.channels,
            priority=self.priority,
            rule_id=self.rule_id,
            farm_id=self.farm_id,
            metadata=dict(self.metadata),
        )


@dataclass
class NotificationResult:
    """Outcome on one channel; ``channel`` is None when routing left nothing to try."""

    request_id: str
    user_id: str
    channel: NotificationChannel | None
    status: NotificationStatus
    sent_at: datetime | None = None
    delivered_at: datetime | None = None
    error: str | None = None
    retry_count: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def message_id(self) -> str | None:
        return self.metadata.get("message_id")

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "user_id": self.user_id,
            "channel": str(self.channel) if self.channel else None,
            "status": str(self.status),
            "sent_at": self.sent_at,
            "delivered_at": self.delivered_at,
            "error": self.error,
            "retry_count": self.retry_count,
            **self.metadata,
        }


@dataclass
class BatchNotificationResult:
    """
    Aggregate of a batch send, counted per user.

    A user counts as a success when any channel was sent, as a failure when
    some channel failed and none was sent, and as skipped otherwise, so the
    three counts always add up to ``total_users``.
    """

    request_id: str
    total_users: int
    success_count: int
    failure_count: int
    skipped_count: int
    results: list[NotificationResult]
    started_at: datetime
    completed_at: datetime
