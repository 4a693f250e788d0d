"""Infrastructure shared by every alerting context."""

from alert_engine.shared.infrastructure.event_sink import CSVEventSink, InMemoryEventSink, create_event_sink
from alert_engine.shared.infrastructure.locks import KeyedLocks
from alert_engine.shared.infrastructure.logging import (
    LoggingContext,
    configure_structured_logging,
    get_logging_context,
    log_with_context,
)
from alert_engine.shared.infrastructure.scheduler import AsyncioScheduler, ManualScheduler
from alert_engine.shared.infrastructure.ttl_cache import TTLCache

__all__ = [
    "CSVEventSink",
    "InMemoryEventSink",
    "create_event_sink",
    "KeyedLocks",
    "LoggingContext",
    "configure_structured_logging",
    "get_logging_context",
    "log_with_context",
    "AsyncioScheduler",
    "ManualScheduler",
    "TTLCache",
]
