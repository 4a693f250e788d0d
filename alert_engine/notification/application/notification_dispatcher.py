"""Notification dispatcher: renders, sends and retries notifications per channel."""

import asyncio
import itertools
import time
from collections import Counter
from datetime import datetime
from typing import Awaitable, Callable

from loguru import logger
from pydantic import ValidationError

from alert_engine.config import NotificationConfig
from alert_engine.notification.application.channel_router import ChannelRouter
from alert_engine.notification.domain.models import (
    BatchNotificationRequest,
    BatchNotificationResult,
    NotificationRequest,
    NotificationResult,
    NotificationStatus,
    RetryConfig,
    TemplateContext,
)
from alert_engine.notification.domain.protocols import ChannelHandler, TemplateRenderer
from alert_engine.shared.domain.exceptions import ConfigurationException, TransientDeliveryError
from alert_engine.shared.domain.models import EngineEvent, EventType, NotificationChannel, Severity, utcnow
from alert_engine.shared.domain.protocols import EventSink
from alert_engine.shared.infrastructure.event_sink import InMemoryEventSink
from alert_engine.shared.infrastructure.logging import LoggingContext

Sleep = Callable[[float], Awaitable[None]]


class NotificationDispatcher:
    """
    Sends notifications through registered channel handlers.

    Each routed channel is delivered independently: a missing handler skips
    the channel, a failing handler is retried with exponential backoff, and
    one channel's failure never affects another. Deliveries waiting on a
    backoff delay can be cancelled with :meth:`clear_queue`.
    """

    def __init__(
        self,
        router: ChannelRouter,
        renderer: TemplateRenderer,
        event_sink: EventSink | None = None,
        config: NotificationConfig | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize dispatcher.

        Args:
            router: Resolves channels per user
            renderer: Produces channel-ready text
            event_sink: Receives notification.* events
            config: Retry defaults and batch concurrency
            sleep: Awaited for backoff delays (seconds)
            clock: Source of "now" for result timestamps and rate-limit accounting
        """
        self.router = router
        self.renderer = renderer
        self.event_sink = event_sink or InMemoryEventSink()
        self.config = config or NotificationConfig()
        self._sleep = sleep
        self._clock = clock

        self._retry_config = RetryConfig(
            max_retries=self.config.max_retries,
            initial_delay_ms=self.config.initial_delay_ms,
            max_delay_ms=self.config.max_delay_ms,
            backoff_multiplier=self.config.backoff_multiplier,
        )
        self._handlers: dict[NotificationChannel, ChannelHandler] = {}
        self._queue: dict[str, NotificationRequest] = {}
        self._processing: set[str] = set()
        self._backing_off: set[asyncio.Task] = set()
        self._counter = itertools.count(1)
        self._counts: Counter[str] = Counter()

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def _next_request_id(self) -> str:
        return f"notif-{int(time.time() * 1000)}-{next(self._counter)}"

    async def send(self, request: NotificationRequest, request_id: str | None = None) -> list[NotificationResult]:
        """
        Route and deliver one notification to one user.

        Returns:
            One result per routed channel, or a single SKIPPED result without
            a channel when routing left nothing to send on
        """
        request_id = request_id or self._next_request_id()

        with LoggingContext(request_id=request_id, tenant_id=request.tenant_id, incident_id=request.incident_id):
            decision = self.router.route(
                request.user_id, request.severity, request.channels, request.routing_context()
            )

            if not decision.channels:
                logger.info(f"Skipping notification for {request.user_id}: {decision.reason}")
                result = NotificationResult(
                    request_id=request_id,
                    user_id=request.user_id,
                    channel=None,
                    status=NotificationStatus.SKIPPED,
                    metadata={"reason": decision.reason},
                )
                self._counts[NotificationStatus.SKIPPED] += 1
                return [result]

            retry_config = self._retry_config
            context = request.template_context()
            tasks = [
                asyncio.create_task(self._deliver(request_id, request, channel, context, retry_config))
                for channel in decision.channels
            ]
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)

            results = []
            for channel, outcome in zip(decision.channels, outcomes):
                if isinstance(outcome, BaseException):
                    outcome = self._failed(request_id, request, channel, self._describe(outcome), 0)
                results.append(outcome)
            return results

    async def _deliver(
        self,
        request_id: str,
        request: NotificationRequest,
        channel: NotificationChannel,
        context: TemplateContext,
        retry_config: RetryConfig,
    ) -> NotificationResult:
        handler = self._handlers.get(channel)
        if handler is None:
            logger.warning(f"⚠️ No handler registered for {channel}, skipping")
            self._counts[NotificationStatus.SKIPPED] += 1
            return NotificationResult(
                request_id=request_id,
                user_id=request.user_id,
                channel=channel,
                status=NotificationStatus.SKIPPED,
                error=f"No handler for channel {channel}",
            )

        try:
            rendered = self.renderer.render(channel, context)
        except Exception as e:
            logger.error(f"✗ Rendering {channel} notification failed: {e}")
            return self._failed(request_id, request, channel, f"Rendering failed: {e}", 0)

        metadata = {
            "request_id": request_id,
            "incident_id": request.incident_id,
            "tenant_id": request.tenant_id,
            "severity": str(request.severity),
            "escalation_level": request.escalation_level,
            "priority": str(request.priority),
            **request.metadata,
        }

        retry_count = 0
        while True:
            try:
                delivery = await handler.send(request.user_id, rendered, metadata)
            except Exception as e:
                error = TransientDeliveryError(f"Handler raised: {e}", channel=str(channel), original_error=e)
            else:
                if delivery.success:
                    return self._sent(request_id, request, channel, delivery.message_id, retry_count)
                error = TransientDeliveryError(delivery.error or "Delivery failed", channel=str(channel))

            if retry_count >= retry_config.max_retries:
                return self._failed(request_id, request, channel, error.message, retry_count)

            delay_ms = retry_config.delay_ms(retry_count)
            retry_count += 1
            logger.warning(
                f"⚠️ {channel} delivery to {request.user_id} failed ({error.message}), "
                f"retry {retry_count}/{retry_config.max_retries} in {delay_ms:.0f}ms"
            )
            await self._backoff(delay_ms / 1000)

    async def _backoff(self, seconds: float) -> None:
        task = asyncio.current_task()
        self._backing_off.add(task)
        try:
            await self._sleep(seconds)
        finally:
            self._backing_off.discard(task)

    def _sent(
        self,
        request_id: str,
        request: NotificationRequest,
        channel: NotificationChannel,
        message_id: str | None,
        retry_count: int,
    ) -> NotificationResult:
        result = NotificationResult(
            request_id=request_id,
            user_id=request.user_id,
            channel=channel,
            status=NotificationStatus.SENT,
            sent_at=self._clock(),
            retry_count=retry_count,
            metadata={"message_id": message_id},
        )
        self.router.record_delivery(request.user_id, channel, result.sent_at)
        self._counts[NotificationStatus.SENT] += 1
        self._emit(EventType.NOTIFICATION_SENT, result)
        logger.info(f"✓ {channel} notification sent to {request.user_id} (message {message_id})")
        return result

    def _failed(
        self,
        request_id: str,
        request: NotificationRequest,
        channel: NotificationChannel,
        error: str,
        retry_count: int,
    ) -> NotificationResult:
        result = NotificationResult(
            request_id=request_id,
            user_id=request.user_id,
            channel=channel,
            status=NotificationStatus.FAILED,
            error=error,
            retry_count=retry_count,
        )
        self._counts[NotificationStatus.FAILED] += 1
        self._emit(EventType.NOTIFICATION_FAILED, result)
        logger.error(f"✗ {channel} notification to {request.user_id} failed after {retry_count} retries: {error}")
        return result

    @staticmethod
    def _describe(error: BaseException) -> str:
        if isinstance(error, asyncio.CancelledError):
            return "Delivery cancelled"
        return str(error) or type(error).__name__

    async def send_batch(self, batch: BatchNotificationRequest) -> BatchNotificationResult:
        """
        Notify every user in ``batch`` with bounded concurrency.

        Users are counted once each: success when any channel was sent, failure
        when a channel failed and none was sent, skipped otherwise.
        """
        request_id = self._next_request_id()
        started_at = self._clock()
        semaphore = asyncio.Semaphore(self.config.batch_concurrency)

        logger.info(f"🚀 Sending batch {request_id} to {len(batch.user_ids)} users")

        async def notify_user(user_id: str) -> list[NotificationResult]:
            async with semaphore:
                try:
                    return await self.send(batch.for_user(user_id), request_id=f"{request_id}:{user_id}")
                except Exception as e:
                    logger.error(f"✗ Notification for {user_id} failed: {e}")
                    return [
                        NotificationResult(
                            request_id=f"{request_id}:{user_id}",
                            user_id=user_id,
                            channel=None,
                            status=NotificationStatus.FAILED,
                            error=str(e),
                        )
                    ]

        per_user = await asyncio.gather(*(notify_user(user_id) for user_id in batch.user_ids))

        success = failure = skipped = 0
        results: list[NotificationResult] = []
        for user_results in per_user:
            results.extend(user_results)
            statuses = {result.status for result in user_results}
            if NotificationStatus.SENT in statuses:
                success += 1
            elif NotificationStatus.FAILED in statuses:
                failure += 1
            else:
                skipped += 1

        batch_result = BatchNotificationResult(
            request_id=request_id,
            total_users=len(batch.user_ids),
            success_count=success,
            failure_count=failure,
            skipped_count=skipped,
            results=results,
            started_at=started_at,
            completed_at=self._clock(),
        )

        self.event_sink.write_event(
            EngineEvent(
                event_type=EventType.NOTIFICATION_BATCH_COMPLETED,
                timestamp=batch_result.completed_at,
                payload={
                    "request_id": request_id,
                    "incident_id": batch.incident_id,
                    "tenant_id": batch.tenant_id,
                    "total_users": batch_result.total_users,
                    "success_count": success,
                    "failure_count": failure,
                    "skipped_count": skipped,
                    "started_at": started_at,
                    "completed_at": batch_result.completed_at,
                },
            )
        )
        logger.info(
            f"✓ Batch {request_id} done: {success} sent, {failure} failed, {skipped} skipped "
            f"of {batch_result.total_users}"
        )
        return batch_result

    def mark_delivered(
        self, request_id: str, user_id: str, channel: NotificationChannel, message_id: str | None = None
    ) -> NotificationResult:
        """Record a provider delivery receipt."""
        now = self._clock()
        result = NotificationResult(
            request_id=request_id,
            user_id=user_id,
            channel=channel,
            status=NotificationStatus.DELIVERED,
            sent_at=now,
            delivered_at=now,
            metadata={"message_id": message_id},
        )
        self._counts[NotificationStatus.DELIVERED] += 1
        self._emit(EventType.NOTIFICATION_DELIVERED, result)
        return result

    async def test_send(
        self, channel: NotificationChannel, user_id: str, context: TemplateContext | None = None
    ) -> NotificationResult:
        """Send a sample notification on one channel, bypassing routing."""
        request = NotificationRequest(
            incident_id="test-incident",
            tenant_id="test",
            user_id=user_id,
            severity=Severity.INFO,
            context=context
            or TemplateContext(
                incident={
                    "id": "test-incident",
                    "title": "Test Notification",
                    "description": "This is a test notification from the alert engine",
                },
                severity=Severity.INFO,
                escalation_level=1,
            ),
            metadata={"is_test": True},
        )
        request_id = f"test-{int(time.time() * 1000)}"
        delivery = asyncio.create_task(
            self._deliver(request_id, request, channel, request.template_context(), self._retry_config)
        )
        [outcome] = await asyncio.gather(delivery, return_exceptions=True)
        if isinstance(outcome, BaseException):
            return self._failed(request_id, request, channel, self._describe(outcome), 0)
        return outcome

    def _emit(self, event_type: EventType, result: NotificationResult) -> None:
        self.event_sink.write_event(
            EngineEvent(event_type=event_type, timestamp=self._clock(), payload=result.to_dict())
        )

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def queue_notification(self, request: NotificationRequest) -> str:
        request_id = self._next_request_id()
        self._queue[request_id] = request
        logger.debug(f"Queued notification {request_id} for {request.user_id}")
        return request_id

    async def process_queue(self) -> dict[str, list[NotificationResult]]:
        """
        Send every queued request not already being sent.

        Returns:
            Results keyed by request id
        """
        ready = [request_id for request_id in self._queue if request_id not in self._processing]
        self._processing.update(ready)

        async def process(request_id: str) -> tuple[str, list[NotificationResult]]:
            try:
                return request_id, await self.send(self._queue[request_id], request_id=request_id)
            finally:
                self._queue.pop(request_id, None)
                self._processing.discard(request_id)

        processed = await asyncio.gather(*(process(request_id) for request_id in ready))
        return dict(processed)

    def get_queue_size(self) -> int:
        return len(self._queue)

    def clear_queue(self) -> int:
        """
        Drop queued requests that have not started and cancel deliveries
        waiting to retry.

        Returns:
            Number of queued requests dropped
        """
        dropped = [request_id for request_id in self._queue if request_id not in self._processing]
        for request_id in dropped:
            del self._queue[request_id]

        cancelled = 0
        for task in list(self._backing_off):
            task.cancel()
            cancelled += 1

        logger.info(f"🔄 Cleared {len(dropped)} queued notifications, cancelled {cancelled} pending retries")
        return len(dropped)

    # ------------------------------------------------------------------
    # Handlers and retry configuration
    # ------------------------------------------------------------------

    def register_handler(self, channel: NotificationChannel, handler: ChannelHandler) -> None:
        self._handlers[channel] = handler
        logger.info(f"✓ Registered handler for {channel}")

    def unregister_handler(self, channel: NotificationChannel) -> bool:
        return self._handlers.pop(channel, None) is not None

    def has_handler(self, channel: NotificationChannel) -> bool:
        return channel in self._handlers

    def get_registered_channels(self) -> list[NotificationChannel]:
        return list(self._handlers)

    def get_retry_config(self) -> RetryConfig:
        return self._retry_config.model_copy()

    def set_retry_config(self, **changes) -> RetryConfig:
        """
        Update retry settings; invalid values keep the current configuration.

        Raises:
            ConfigurationException: If a value is out of range or unknown
        """
        unknown = set(changes) - set(RetryConfig.model_fields)
        if unknown:
            raise ConfigurationException(f"Unknown retry settings: {', '.join(sorted(unknown))}")

        try:
            updated = RetryConfig.model_validate({**self._retry_config.model_dump(), **changes})
        except ValidationError as e:
            raise ConfigurationException("Invalid retry configuration", {"errors": e.errors()}) from e

        self._retry_config = updated
        logger.info(f"Retry configuration updated: {updated.model_dump()}")
        return updated.model_copy()

    def get_statistics(self) -> dict:
        return {
            "registered_handlers": len(self._handlers),
            "queue_size": len(self._queue),
            "processing": len(self._processing),
            "pending_retries": len(self._backing_off),
            "sent": self._counts[NotificationStatus.SENT],
            "failed": self._counts[NotificationStatus.FAILED],
            "skipped": self._counts[NotificationStatus.SKIPPED],
            "delivered": self._counts[NotificationStatus.DELIVERED],
            "retry_config": self._retry_config.model_dump(),
        }
