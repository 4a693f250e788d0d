"""Notification package: channel routing, rendering and dispatch with retry."""

from alert_engine.notification.application import (
    ChannelRouter,
    DispatcherEscalationNotifier,
    NotificationDispatcher,
)
from alert_engine.notification.domain import (
    BatchNotificationRequest,
    NotificationRequest,
    NotificationResult,
    NotificationStatus,
    UserNotificationPreferences,
)
from alert_engine.notification.infrastructure import Jinja2TemplateRenderer, RateLimitTracker

__all__ = [
    "ChannelRouter",
    "DispatcherEscalationNotifier",
    "NotificationDispatcher",
    "BatchNotificationRequest",
    "NotificationRequest",
    "NotificationResult",
    "NotificationStatus",
    "UserNotificationPreferences",
    "Jinja2TemplateRenderer",
    "RateLimitTracker",
]
