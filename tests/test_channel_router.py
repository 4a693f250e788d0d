"""Tests for channel routing: defaults, preferences, quiet hours, rate limits and routing rules."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from alert_engine.notification.application import ChannelRouter
from alert_engine.notification.domain import (
    ChannelConfig,
    QuietHours,
    RateLimit,
    RoutingCondition,
    RoutingRule,
    UserNotificationPreferences,
)
from alert_engine.notification.infrastructure import RateLimitTracker
from alert_engine.shared.domain import NotificationChannel, Severity
from tests.helpers import FIXED_NOW

EMAIL = NotificationChannel.EMAIL
SMS = NotificationChannel.SMS
PUSH = NotificationChannel.PUSH
SLACK = NotificationChannel.SLACK
PAGERDUTY = NotificationChannel.PAGERDUTY


def prefs(user_id="user-1", **kwargs):
    return UserNotificationPreferences(
        user_id=user_id, enabled_channels=kwargs.pop("enabled_channels", [EMAIL, SMS, PUSH, SLACK]), **kwargs
    )


class TestDefaults:
    def test_critical_uses_every_urgent_channel(self, router):
        decision = router.route("user-1", Severity.CRITICAL)

        assert decision.channels == [PAGERDUTY, SMS, PUSH, SLACK, EMAIL]
        assert decision.primary_channel == PAGERDUTY
        assert decision.reason == "5 channels selected for CRITICAL severity"
        assert decision.excluded == {}

    def test_info_is_email_only(self, router):
        assert router.route("user-1", Severity.INFO).channels == [EMAIL]

    def test_requested_channels_replace_defaults(self, router):
        decision = router.route("user-1", Severity.LOW, requested_channels=[EMAIL, SMS, EMAIL])
        assert decision.channels == [SMS, EMAIL]
        assert decision.metadata["requested_channels"] == ["EMAIL", "SMS", "EMAIL"]

    def test_route_to_many(self, router):
        decisions = router.route_to_many(["user-1", "user-2"], Severity.MEDIUM)
        assert set(decisions) == {"user-1", "user-2"}
        assert decisions["user-2"].channels == [PUSH, SLACK, EMAIL]


class TestPreferences:
    def test_disabled_channels_are_excluded(self, router):
        router.set_user_preferences(prefs(enabled_channels=[EMAIL, SLACK], preferred_channel=EMAIL))

        decision = router.route("user-1", Severity.HIGH)

        assert decision.channels == [SLACK, EMAIL]
        assert decision.primary_channel == EMAIL
        assert decision.excluded == {SMS: "preferences", PUSH: "preferences"}
        assert decision.reason == "2 channels selected for HIGH severity; User preferences applied"

    def test_channel_config_filters(self, router):
        router.set_user_preferences(
            prefs(
                channel_configs={
                    SLACK: ChannelConfig(severity_filter=[Severity.CRITICAL]),
                    PUSH: ChannelConfig(enabled=False),
                }
            )
        )

        assert router.route("user-1", Severity.HIGH).channels == [SMS, EMAIL]
        assert SLACK in router.route("user-1", Severity.CRITICAL).channels

    def test_nothing_left(self, router):
        router.set_user_preferences(prefs(enabled_channels=[]))

        decision = router.route("user-1", Severity.HIGH)

        assert decision.channels == []
        assert decision.primary_channel is None
        assert decision.reason == "No available channels; User preferences applied"

    def test_update_and_remove(self, router):
        updated = router.update_user_preferences("user-9", enabled_channels=[EMAIL], preferred_channel=EMAIL)
        assert updated.user_id == "user-9"
        assert router.get_user_preferences("user-9").preferred_channel == EMAIL

        assert router.remove_user_preferences("user-9")
        assert router.get_user_preferences("user-9") is None


class TestQuietHours:
    def test_non_critical_held_back(self, router):
        router.set_user_preferences(prefs(quiet_hours=QuietHours(start="09:00", end="11:00")))

        decision = router.route("user-1", Severity.HIGH)

        assert decision.channels == []
        assert set(decision.excluded.values()) == {"quiet_hours"}

    def test_critical_goes_through(self, router):
        router.set_user_preferences(prefs(quiet_hours=QuietHours(start="09:00", end="11:00")))
        assert router.route("user-1", Severity.CRITICAL).channels == [SMS, PUSH, SLACK, EMAIL]

    def test_end_is_exclusive(self, router):
        router.set_user_preferences(prefs(quiet_hours=QuietHours(start="08:00", end="10:00")))
        assert router.route("user-1", Severity.HIGH).channels == [SMS, PUSH, SLACK, EMAIL]

    def test_window_uses_its_timezone(self, router):
        # 10:00 UTC is 06:00 in New York
        router.set_user_preferences(
            prefs(quiet_hours=QuietHours(start="05:00", end="07:00", timezone="America/New_York"))
        )
        assert router.route("user-1", Severity.HIGH).channels == []

        router.set_user_preferences(
            prefs(quiet_hours=QuietHours(start="09:00", end="11:00", timezone="America/New_York"))
        )
        assert router.route("user-1", Severity.HIGH).channels == [SMS, PUSH, SLACK, EMAIL]

    def test_per_channel_quiet_hours(self, router):
        router.set_user_preferences(
            prefs(channel_configs={SMS: ChannelConfig(quiet_hours=QuietHours(start="22:00", end="11:00"))})
        )

        decision = router.route("user-1", Severity.HIGH)

        assert decision.channels == [PUSH, SLACK, EMAIL]
        assert decision.excluded == {SMS: "quiet_hours"}

    @pytest.mark.parametrize(
        "values, message",
        [
            ({"start": "9:00", "end": "10:00"}, "Time must be in HH:mm format"),
            ({"start": "09:00", "end": "10:00", "timezone": "Nowhere/City"}, "Invalid timezone 'Nowhere/City'"),
        ],
    )
    def test_invalid_quiet_hours(self, values, message):
        with pytest.raises(ValidationError, match=message):
            QuietHours(**values)


class TestRateLimits:
    @pytest.fixture
    def limited(self, router):
        router.set_user_preferences(
            prefs(channel_configs={SMS: ChannelConfig(rate_limit=RateLimit(max_per_hour=2, max_per_day=3))})
        )
        return router

    def test_excluded_after_hourly_quota(self, limited):
        limited.record_delivery("user-1", SMS)
        assert SMS in limited.route("user-1", Severity.HIGH).channels

        limited.record_delivery("user-1", SMS)
        decision = limited.route("user-1", Severity.HIGH)

        assert SMS not in decision.channels
        assert decision.excluded == {SMS: "rate_limited"}
        assert decision.primary_channel == PUSH

    def test_routing_consumes_no_quota(self, limited):
        for _ in range(5):
            limited.route("user-1", Severity.HIGH)
        assert SMS in limited.route("user-1", Severity.HIGH).channels

    def test_daily_quota_spans_hours(self, limited):
        for hours_ago in (5, 4, 3):
            limited.record_delivery("user-1", SMS, at=FIXED_NOW - timedelta(hours=hours_ago))
        assert SMS not in limited.route("user-1", Severity.HIGH).channels

    def test_quota_survives_preference_edits(self, limited):
        limited.record_delivery("user-1", SMS)
        limited.record_delivery("user-1", SMS)

        limited.update_user_preferences("user-1", preferred_channel=EMAIL)
        assert SMS not in limited.route("user-1", Severity.HIGH).channels

    def test_unlimited_channel_keeps_only_a_day_of_sends(self):
        tracker = RateLimitTracker()
        for day in range(30):
            for hour in range(10):
                tracker.record("user-1", EMAIL, FIXED_NOW + timedelta(days=day, hours=hour))

        assert len(tracker) == 10

    def test_reset_restores_channel(self, limited):
        limited.record_delivery("user-1", SMS)
        limited.record_delivery("user-1", SMS)

        assert limited.reset_rate_limits("user-1") == 1
        assert SMS in limited.route("user-1", Severity.HIGH).channels
        assert limited.get_statistics()["rate_limited_users"] == 0


class TestAvailabilityAndRules:
    def test_unavailable_channel_is_skipped(self, router):
        router.update_channel_status(SMS, available=False, error_message="provider outage")

        decision = router.route("user-1", Severity.HIGH)

        assert decision.channels == [PUSH, SLACK, EMAIL]
        assert decision.excluded == {SMS: "unavailable"}
        assert router.get_channel_status(SMS).health_score == 0.0
        assert SMS not in router.get_available_channels()

    def test_rule_forces_channel_past_preferences_and_quiet_hours(self, router):
        router.set_user_preferences(
            prefs(enabled_channels=[EMAIL], quiet_hours=QuietHours(start="09:00", end="11:00"))
        )
        router.add_routing_rule(
            RoutingRule(
                id="farm-1-pager",
                name="Farm 1 pages",
                conditions=[
                    RoutingCondition(field="farm_id", operator="in", value=["farm-1"]),
                    RoutingCondition(field="time", operator="between", value=[8, 18]),
                ],
                target_channels=[PAGERDUTY],
            )
        )

        decision = router.route("user-1", Severity.HIGH, routing_context={"farm_id": "farm-1"})

        assert decision.channels == [PAGERDUTY]
        assert decision.metadata["forced_channels"] == ["PAGERDUTY"]
        assert router.route("user-1", Severity.HIGH, routing_context={"farm_id": "farm-2"}).channels == []

    def test_forced_channel_still_needs_availability(self, router):
        router.add_routing_rule(
            RoutingRule(
                id="high-pager",
                name="Page on high",
                conditions=[RoutingCondition(field="severity", operator="eq", value="HIGH")],
                target_channels=[PAGERDUTY],
            )
        )
        assert router.route("user-1", Severity.HIGH).primary_channel == PAGERDUTY

        router.update_channel_status(PAGERDUTY, available=False)
        assert router.route("user-1", Severity.HIGH).excluded == {PAGERDUTY: "unavailable"}

    def test_disabled_and_incomparable_rules_never_match(self, router):
        router.add_routing_rule(
            RoutingRule(id="off", name="Off", enabled=False, target_channels=[PAGERDUTY])
        )
        router.add_routing_rule(
            RoutingRule(
                id="odd",
                name="Odd",
                conditions=[RoutingCondition(field="rule_id", operator="gt", value=5)],
                target_channels=[PAGERDUTY],
            )
        )

        decision = router.route("user-1", Severity.HIGH, routing_context={"rule_id": "rule-7"})
        assert PAGERDUTY not in decision.channels

    def test_rules_listed_by_priority(self, router):
        router.add_routing_rule(RoutingRule(id="low", name="Low", priority=1))
        router.add_routing_rule(RoutingRule(id="high", name="High", priority=9))

        assert [rule.id for rule in router.get_routing_rules()] == ["high", "low"]
        assert router.remove_routing_rule("low")
        assert router.get_statistics()["routing_rules"] == 1

    def test_priority_helpers(self):
        assert ChannelRouter.get_channel_priority(PAGERDUTY) > ChannelRouter.get_channel_priority(EMAIL)
        assert ChannelRouter.get_recommended_channels(Severity.LOW) == [EMAIL, SLACK]
