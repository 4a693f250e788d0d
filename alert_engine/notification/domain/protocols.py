"""Protocols (interfaces) for notification collaborators."""

from typing import Any, Protocol, runtime_checkable

from alert_engine.notification.domain.models import DeliveryResult, RenderedNotification, TemplateContext
from alert_engine.shared.domain.models import NotificationChannel


@runtime_checkable
class ChannelHandler(Protocol):
    """Transport for one channel (SMTP, SMS gateway, Slack API...)."""

    async def send(
        self, user_id: str, notification: RenderedNotification, metadata: dict[str, Any] | None = None
    ) -> DeliveryResult:
        """
        Deliver one rendered notification.

        May be called again for the same notification when a previous attempt
        failed, so implementations must tolerate retries.
        """
        ...


@runtime_checkable
class TemplateRenderer(Protocol):
    """Turns a template context into channel-ready text."""

    def render(self, channel: NotificationChannel, context: TemplateContext) -> RenderedNotification:
        ...
