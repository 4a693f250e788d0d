"""Application services for notification routing and dispatch."""

from alert_engine.notification.application.channel_router import (
    CHANNEL_PRIORITY,
    SEVERITY_CHANNELS,
    ChannelRouter,
)
from alert_engine.notification.application.escalation_notifier import DispatcherEscalationNotifier
from alert_engine.notification.application.notification_dispatcher import NotificationDispatcher

__all__ = [
    "CHANNEL_PRIORITY",
    "SEVERITY_CHANNELS",
    "ChannelRouter",
    "DispatcherEscalationNotifier",
    "NotificationDispatcher",
]
