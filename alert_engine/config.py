"""Configuration for the alert engine."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RulesEngineConfig(BaseSettings):
    """Configuration for rule retrieval and evaluation."""

    model_config = SettingsConfigDict(env_prefix="RULES_", env_file=".env", extra="ignore")

    cache_ttl_seconds: float = Field(default=60.0, gt=0, description="Applicable-rules cache TTL")
    evaluation_timeout_seconds: float = Field(
        default=5.0, gt=0, description="Upper bound on a single rule evaluation"
    )
    default_strategy: str = Field(
        default="ALL_MATCH", description="Match strategy when a request names none"
    )
    honor_logical_operator: bool = Field(
        default=True,
        description="Combine conditions with the rule's declared AND/OR instead of always OR",
    )
    evaluation_workers: int = Field(
        default=4, ge=1, description="Threads in the rule evaluation pool"
    )


class RiskScoringConfig(BaseSettings):
    """Configuration for risk scoring thresholds and factor weights."""

    model_config = SettingsConfigDict(env_prefix="RISK_", env_file=".env", extra="ignore")

    critical_threshold: float = Field(default=85.0, ge=0, le=100, description="Score for CRITICAL")
    high_threshold: float = Field(default=65.0, ge=0, le=100, description="Score for HIGH")
    medium_threshold: float = Field(default=40.0, ge=0, le=100, description="Score for MEDIUM")
    low_threshold: float = Field(default=20.0, ge=0, le=100, description="Score for LOW")

    frequency_weight: float = Field(default=0.15, ge=0, le=1, description="Frequency factor weight")
    severity_weight: float = Field(default=0.25, ge=0, le=1, description="Severity factor weight")
    impact_weight: float = Field(default=0.25, ge=0, le=1, description="Impact factor weight")
    history_weight: float = Field(default=0.15, ge=0, le=1, description="History factor weight")
    context_weight: float = Field(default=0.10, ge=0, le=1, description="Context factor weight")
    trend_weight: float = Field(default=0.10, ge=0, le=1, description="Trend factor weight")


class EscalationConfig(BaseSettings):
    """Configuration for escalation policies and state tracking."""

    model_config = SettingsConfigDict(env_prefix="ESCALATION_", env_file=".env", extra="ignore")

    policy_cache_ttl_seconds: float = Field(
        default=300.0, gt=0, description="Cache TTL for per-tenant policy listings"
    )
    completed_retention_hours: float = Field(
        default=24.0, ge=0, description="How long completed escalation states are kept in memory"
    )


class AcknowledgmentConfig(BaseSettings):
    """Configuration for acknowledgment timeouts and record retention."""

    model_config = SettingsConfigDict(env_prefix="ACK_", env_file=".env", extra="ignore")

    initial_timeout_minutes: float = Field(default=5.0, gt=0, description="Wait for the first acknowledgment")
    max_timeouts: int = Field(default=3, ge=1, description="Timeouts before the record escalates or expires")
    escalation_timeout_minutes: float = Field(
        default=10.0, gt=0, description="Wait after an escalation, and the cap on growing timeouts"
    )
    auto_resolve_on_timeout: bool = Field(default=False, description="Expire instead of escalating at max timeouts")
    notify_on_timeout: bool = Field(default=True, description="Emit ack.timeout events")
    escalate_on_timeout: bool = Field(default=True, description="Escalate at max timeouts")
    record_retention_days: float = Field(
        default=7.0, ge=0, description="Age after which resolved or expired records are cleaned up"
    )


class NotificationConfig(BaseSettings):
    """Configuration for notification dispatch."""

    model_config = SettingsConfigDict(env_prefix="NOTIFICATION_", env_file=".env", extra="ignore")

    max_retries: int = Field(default=3, ge=0, description="Retries after the first failed attempt")
    initial_delay_ms: int = Field(default=1000, ge=0, description="First backoff delay")
    max_delay_ms: int = Field(default=30000, ge=0, description="Backoff delay ceiling")
    backoff_multiplier: float = Field(default=2.0, ge=1, description="Backoff growth factor")
    batch_concurrency: int = Field(default=10, ge=1, description="Users notified concurrently per batch")


class EventsConfig(BaseSettings):
    """Configuration for where engine events are written."""

    model_config = SettingsConfigDict(env_prefix="EVENTS_", env_file=".env", extra="ignore")

    csv_path: str | None = Field(default=None, description="Append events to this CSV file (None = keep in memory)")
    csv_mode: str = Field(default="a", pattern="^[aw]$", description="'a' appends to an existing file, 'w' overwrites")
    buffer_size: int = Field(default=100, ge=1, description="Events buffered before a CSV flush")


class LoggingConfig(BaseSettings):
    """Configuration for log sinks."""

    model_config = SettingsConfigDict(env_prefix="LOG_", env_file=".env", extra="ignore")

    level: str = Field(default="INFO", description="Console log level")
    colorize: bool = Field(default=True, description="Colorize console output")
    file_path: str | None = Field(default=None, description="Optional rotating log file")
    file_level: str = Field(default="INFO", description="File sink log level")
    rotation: str = Field(default="100 MB", description="File rotation trigger")
    retention: str = Field(default="30 days", description="How long rotated files are kept")
    serialize: bool = Field(default=False, description="Write JSON records to the file sink")


class AppConfig(BaseSettings):
    """Alert engine configuration."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    rules: RulesEngineConfig = Field(default_factory=RulesEngineConfig)
    risk: RiskScoringConfig = Field(default_factory=RiskScoringConfig)
    escalation: EscalationConfig = Field(default_factory=EscalationConfig)
    acknowledgments: AcknowledgmentConfig = Field(default_factory=AcknowledgmentConfig)
    notification: NotificationConfig = Field(default_factory=NotificationConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
