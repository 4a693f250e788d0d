"""Bridges escalation levels to the notification dispatcher."""

from loguru import logger

from alert_engine.escalation.domain.models import EscalationAction, EscalationActionType, NotificationRecord
from alert_engine.escalation.domain.protocols import EscalationNotifier
from alert_engine.notification.application.notification_dispatcher import NotificationDispatcher
from alert_engine.notification.domain.models import (
    BatchNotificationRequest,
    NotificationPriority,
    NotificationStatus,
    TemplateContext,
)
from alert_engine.shared.domain.models import NotificationChannel, utcnow

ACTION_PRIORITY = {
    EscalationActionType.PAGE: NotificationPriority.CRITICAL,
    EscalationActionType.NOTIFY: NotificationPriority.HIGH,
    EscalationActionType.ASSIGN: NotificationPriority.NORMAL,
    EscalationActionType.CREATE_TICKET: NotificationPriority.LOW,
}


class DispatcherEscalationNotifier(EscalationNotifier):
    """Sends each escalation level as a batch to its target users."""

    def __init__(self, dispatcher: NotificationDispatcher):
        self.dispatcher = dispatcher

    async def notify(self, action: EscalationAction) -> list[NotificationRecord]:
        channels = list(action.channels)
        if action.action_type == EscalationActionType.PAGE and NotificationChannel.PAGERDUTY not in channels:
            channels.insert(0, NotificationChannel.PAGERDUTY)

        batch = BatchNotificationRequest(
            incident_id=action.incident_id,
            tenant_id=action.tenant_id,
            user_ids=action.target_users,
            severity=action.severity,
            escalation_level=action.level,
            context=TemplateContext(
                incident={
                    "id": action.incident_id,
                    "title": action.metadata.get("title") or action.message,
                    "description": action.metadata.get("description") or action.message,
                },
                severity=action.severity,
                escalation_level=action.level,
                custom_data={"message": action.message, **action.metadata},
            ),
            channels=channels or None,
            priority=ACTION_PRIORITY.get(action.action_type, NotificationPriority.NORMAL),
            rule_id=action.metadata.get("rule_id"),
            farm_id=action.metadata.get("farm_id"),
            metadata={"escalation_level": action.level, "policy_id": action.metadata.get("policy_id")},
        )

        result = await self.dispatcher.send_batch(batch)
        logger.debug(
            f"Level {action.level} of {action.incident_id}: "
            f"{result.success_count}/{result.total_users} users reached"
        )

        # Skipped channels were never attempted, so they leave no record
        return [
            NotificationRecord(
                user_id=item.user_id,
                channel=item.channel,
                level=action.level,
                sent_at=item.sent_at or utcnow(),
                success=item.status == NotificationStatus.SENT,
                message_id=item.message_id,
                error=item.error,
            )
            for item in result.results
            if item.channel is not None and item.status in (NotificationStatus.SENT, NotificationStatus.FAILED)
        ]
