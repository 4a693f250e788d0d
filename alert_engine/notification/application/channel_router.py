"""Channel router: picks which channels reach a user for a notification."""

from datetime import datetime
from typing import Any, Callable
from zoneinfo import ZoneInfo

from loguru import logger

from alert_engine.escalation.domain.models import in_daily_window, parse_clock_time
from alert_engine.notification.domain.models import (
    ChannelStatus,
    QuietHours,
    RoutingCondition,
    RoutingDecision,
    RoutingRule,
    UserNotificationPreferences,
)
from alert_engine.notification.infrastructure.rate_limiter import RateLimitTracker
from alert_engine.shared.domain.models import NotificationChannel, Severity, utcnow

CHANNEL_PRIORITY: dict[NotificationChannel, int] = {
    NotificationChannel.PAGERDUTY: 100,
    NotificationChannel.SMS: 90,
    NotificationChannel.PUSH: 80,
    NotificationChannel.SLACK: 70,
    NotificationChannel.TEAMS: 65,
    NotificationChannel.WEBHOOK: 60,
    NotificationChannel.EMAIL: 50,
}

SEVERITY_CHANNELS: dict[Severity, list[NotificationChannel]] = {
    Severity.CRITICAL: [
        NotificationChannel.PAGERDUTY,
        NotificationChannel.SMS,
        NotificationChannel.PUSH,
        NotificationChannel.SLACK,
        NotificationChannel.EMAIL,
    ],
    Severity.HIGH: [NotificationChannel.SMS, NotificationChannel.PUSH, NotificationChannel.SLACK, NotificationChannel.EMAIL],
    Severity.MEDIUM: [NotificationChannel.PUSH, NotificationChannel.SLACK, NotificationChannel.EMAIL],
    Severity.WARNING: [NotificationChannel.PUSH, NotificationChannel.SLACK, NotificationChannel.EMAIL],
    Severity.LOW: [NotificationChannel.EMAIL, NotificationChannel.SLACK],
    Severity.INFO: [NotificationChannel.EMAIL],
}

# Reasons recorded in RoutingDecision.excluded
EXCLUDED_BY_PREFERENCES = "preferences"
EXCLUDED_UNAVAILABLE = "unavailable"
EXCLUDED_QUIET_HOURS = "quiet_hours"
EXCLUDED_RATE_LIMITED = "rate_limited"


def in_quiet_hours(quiet_hours: QuietHours, at: datetime) -> bool:
    local = at.astimezone(ZoneInfo(quiet_hours.timezone))
    return in_daily_window(local.time(), parse_clock_time(quiet_hours.start), parse_clock_time(quiet_hours.end))


def condition_holds(actual: Any, condition: RoutingCondition) -> bool:
    """Apply one routing operator; incomparable values never match."""
    expected = condition.value
    try:
        match condition.operator:
            case "eq":
                return actual == expected
            case "ne":
                return actual != expected
            case "in":
                return actual in expected
            case "not_in":
                return actual not in expected
            case "gt":
                return actual is not None and actual > expected
            case "lt":
                return actual is not None and actual < expected
            case "between":
                low, high = expected
                return actual is not None and low <= actual <= high
    except (TypeError, ValueError):
        return False
    return False


class ChannelRouter:
    """
    Resolves the channel set and primary channel for each user.

    Routing runs in a fixed order: severity defaults (or the requested
    channels), user preferences, quiet hours (CRITICAL goes through), then
    routing rules that force extra channels. Availability and rate limits are
    checked last, on every channel. Forced channels skip preference and
    quiet-hour filtering but still need to be available and within rate limits.

    Routing itself consumes no quota; senders report successful deliveries
    through :meth:`record_delivery`.
    """

    def __init__(self, rate_limits: RateLimitTracker | None = None, clock: Callable[[], datetime] = utcnow):
        self.rate_limits = rate_limits or RateLimitTracker()
        self._clock = clock
        self._preferences: dict[str, UserNotificationPreferences] = {}
        self._routing_rules: dict[str, RoutingRule] = {}
        self._channel_status: dict[NotificationChannel, ChannelStatus] = {
            channel: ChannelStatus(channel=channel) for channel in NotificationChannel
        }

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def route(
        self,
        user_id: str,
        severity: Severity,
        requested_channels: list[NotificationChannel] | None = None,
        routing_context: dict[str, Any] | None = None,
    ) -> RoutingDecision:
        now = self._clock()
        prefs = self._preferences.get(user_id)
        excluded: dict[NotificationChannel, str] = {}

        candidates = list(dict.fromkeys(requested_channels or self.get_recommended_channels(severity)))

        if prefs is not None:
            allowed = self._filter_by_preferences(candidates, prefs, severity)
            excluded.update({c: EXCLUDED_BY_PREFERENCES for c in candidates if c not in allowed})
            candidates = allowed

        if severity != Severity.CRITICAL and prefs is not None:
            quiet = [c for c in candidates if self._in_quiet_hours(prefs, c, now)]
            excluded.update({c: EXCLUDED_QUIET_HOURS for c in quiet})
            candidates = [c for c in candidates if c not in quiet]

        forced = [
            channel
            for channel in self._apply_routing_rules(severity, routing_context or {}, now)
            if channel not in candidates
        ]
        for channel in forced:
            excluded.pop(channel, None)

        channels = []
        for channel in candidates + forced:
            if not self._channel_status[channel].available:
                excluded[channel] = EXCLUDED_UNAVAILABLE
            elif self._is_rate_limited(user_id, channel, prefs, now):
                excluded[channel] = EXCLUDED_RATE_LIMITED
            else:
                channels.append(channel)

        channels.sort(key=self.get_channel_priority, reverse=True)
        primary = self._primary_channel(channels, prefs)

        if excluded:
            logger.debug(f"Routing for {user_id} excluded {', '.join(f'{c}={r}' for c, r in excluded.items())}")

        return RoutingDecision(
            user_id=user_id,
            channels=channels,
            primary_channel=primary,
            reason=self._reason(channels, severity, prefs),
            excluded=excluded,
            metadata={
                "severity": str(severity),
                "requested_channels": [str(c) for c in requested_channels or []],
                "forced_channels": [str(c) for c in forced],
                "available_count": len(self.get_available_channels()),
            },
        )

    def route_to_many(
        self,
        user_ids: list[str],
        severity: Severity,
        requested_channels: list[NotificationChannel] | None = None,
        routing_context: dict[str, Any] | None = None,
    ) -> dict[str, RoutingDecision]:
        return {
            user_id: self.route(user_id, severity, requested_channels, routing_context) for user_id in user_ids
        }

    @staticmethod
    def _filter_by_preferences(
        channels: list[NotificationChannel], prefs: UserNotificationPreferences, severity: Severity
    ) -> list[NotificationChannel]:
        allowed = []
        for channel in channels:
            if channel not in prefs.enabled_channels:
                continue
            config = prefs.channel_configs.get(channel)
            if config is not None:
                if not config.enabled:
                    continue
                if config.severity_filter is not None and severity not in config.severity_filter:
                    continue
            allowed.append(channel)
        return allowed

    @staticmethod
    def _in_quiet_hours(prefs: UserNotificationPreferences, channel: NotificationChannel, now: datetime) -> bool:
        if prefs.quiet_hours and in_quiet_hours(prefs.quiet_hours, now):
            return True
        config = prefs.channel_configs.get(channel)
        return bool(config and config.quiet_hours and in_quiet_hours(config.quiet_hours, now))

    def _is_rate_limited(
        self,
        user_id: str,
        channel: NotificationChannel,
        prefs: UserNotificationPreferences | None,
        now: datetime,
    ) -> bool:
        config = prefs.channel_configs.get(channel) if prefs else None
        if config is None or config.rate_limit is None:
            return False
        return self.rate_limits.is_exhausted(user_id, channel, config.rate_limit, now)

    def _apply_routing_rules(
        self, severity: Severity, routing_context: dict[str, Any], now: datetime
    ) -> list[NotificationChannel]:
        """Union of target channels of every enabled matching rule, in rule priority order."""
        forced: list[NotificationChannel] = []
        for rule in self.get_routing_rules():
            if not rule.enabled:
                continue
            if all(self._condition_matches(c, severity, routing_context, now) for c in rule.conditions):
                logger.debug(f"Routing rule {rule.id} matched")
                forced.extend(c for c in rule.target_channels if c not in forced)
        return forced

    @staticmethod
    def _condition_matches(
        condition: RoutingCondition, severity: Severity, routing_context: dict[str, Any], now: datetime
    ) -> bool:
        match condition.field:
            case "severity":
                actual = severity
            case "time":
                actual = now.hour
            case _:
                actual = routing_context.get(condition.field)
        return condition_holds(actual, condition)

    def _primary_channel(
        self, channels: list[NotificationChannel], prefs: UserNotificationPreferences | None
    ) -> NotificationChannel | None:
        if not channels:
            return None
        if prefs and prefs.preferred_channel in channels:
            return prefs.preferred_channel
        return max(channels, key=self.get_channel_priority)

    @staticmethod
    def _reason(
        channels: list[NotificationChannel], severity: Severity, prefs: UserNotificationPreferences | None
    ) -> str:
        reasons = [f"{len(channels)} channels selected for {severity} severity" if channels else "No available channels"]
        if prefs is not None:
            reasons.append("User preferences applied")
        return "; ".join(reasons)

    # ------------------------------------------------------------------
    # Rate limits
    # ------------------------------------------------------------------

    def record_delivery(self, user_id: str, channel: NotificationChannel, at: datetime | None = None) -> None:
        """Count a successful send against the user's rolling quota."""
        self.rate_limits.record(user_id, channel, at or self._clock())

    def reset_rate_limits(self, user_id: str | None = None) -> int:
        return self.rate_limits.reset(user_id)

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def set_user_preferences(self, preferences: UserNotificationPreferences) -> None:
        """Replace a user's preferences. Consumed rate-limit quota is kept."""
        self._preferences[preferences.user_id] = preferences
        logger.debug(f"Preferences set for user {preferences.user_id}")

    def update_user_preferences(self, user_id: str, **changes) -> UserNotificationPreferences:
        current = self._preferences.get(user_id) or UserNotificationPreferences(user_id=user_id)
        updated = UserNotificationPreferences.model_validate(
            {**current.model_dump(), **changes, "user_id": user_id}
        )
        self._preferences[user_id] = updated
        return updated

    def get_user_preferences(self, user_id: str) -> UserNotificationPreferences | None:
        return self._preferences.get(user_id)

    def remove_user_preferences(self, user_id: str) -> bool:
        return self._preferences.pop(user_id, None) is not None

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def update_channel_status(
        self,
        channel: NotificationChannel,
        available: bool,
        error_message: str | None = None,
        health_score: float | None = None,
    ) -> ChannelStatus:
        status = ChannelStatus(
            channel=channel,
            available=available,
            health_score=health_score if health_score is not None else (100.0 if available else 0.0),
            last_check_at=self._clock(),
            error_message=error_message,
        )
        self._channel_status[channel] = status

        if available:
            logger.info(f"✓ Channel {channel} available")
        else:
            logger.warning(f"⚠️ Channel {channel} unavailable: {error_message or 'no reason given'}")
        return status

    def get_channel_status(self, channel: NotificationChannel) -> ChannelStatus:
        return self._channel_status[channel]

    def get_available_channels(self) -> list[NotificationChannel]:
        return [channel for channel, status in self._channel_status.items() if status.available]

    @staticmethod
    def get_channel_priority(channel: NotificationChannel) -> int:
        return CHANNEL_PRIORITY.get(channel, 0)

    @staticmethod
    def get_recommended_channels(severity: Severity) -> list[NotificationChannel]:
        return list(SEVERITY_CHANNELS.get(severity, [NotificationChannel.EMAIL]))

    # ------------------------------------------------------------------
    # Routing rules
    # ------------------------------------------------------------------

    def add_routing_rule(self, rule: RoutingRule) -> None:
        self._routing_rules[rule.id] = rule
        logger.info(f"Added routing rule {rule.id} ({rule.name})")

    def remove_routing_rule(self, rule_id: str) -> bool:
        return self._routing_rules.pop(rule_id, None) is not None

    def get_routing_rules(self) -> list[RoutingRule]:
        """Rules by descending priority."""
        return sorted(self._routing_rules.values(), key=lambda rule: rule.priority, reverse=True)

    def get_statistics(self) -> dict:
        return {
            "users_with_preferences": len(self._preferences),
            "available_channels": len(self.get_available_channels()),
            "total_channels": len(self._channel_status),
            "routing_rules": len(self._routing_rules),
            "rate_limited_users": len(self.rate_limits.tracked_users()),
        }
