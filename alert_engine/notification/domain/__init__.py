"""Domain layer for notification routing and dispatch."""

from alert_engine.notification.domain.models import (
    BatchNotificationRequest,
    BatchNotificationResult,
    ChannelConfig,
    ChannelStatus,
    DeliveryResult,
    NotificationPriority,
    NotificationRequest,
    NotificationResult,
    NotificationStatus,
    NotificationTemplate,
    QuietHours,
    RateLimit,
    RenderedNotification,
    RetryConfig,
    RoutingCondition,
    RoutingDecision,
    RoutingRule,
    TemplateContext,
    UserNotificationPreferences,
)
from alert_engine.notification.domain.protocols import ChannelHandler, TemplateRenderer

__all__ = [
    "BatchNotificationRequest",
    "BatchNotificationResult",
    "ChannelConfig",
    "ChannelStatus",
    "DeliveryResult",
    "NotificationPriority",
    "NotificationRequest",
    "NotificationResult",
    "NotificationStatus",
    "NotificationTemplate",
    "QuietHours",
    "RateLimit",
    "RenderedNotification",
    "RetryConfig",
    "RoutingCondition",
    "RoutingDecision",
    "RoutingRule",
    "TemplateContext",
    "UserNotificationPreferences",
    "ChannelHandler",
    "TemplateRenderer",
]
