"""Protocols (interfaces) shared by the alerting contexts."""

from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

import pandas as pd

from alert_engine.shared.domain.models import EngineEvent


@runtime_checkable
class EventSink(Protocol):
    """Interface for storing/processing engine events."""

    def write_event(self, event: EngineEvent) -> None:
        """Write a single event."""
        ...

    def write_events(self, events: list[EngineEvent]) -> None:
        """Write multiple events."""
        ...

    def to_dataframe(self) -> pd.DataFrame:
        """Convert stored events to DataFrame."""
        ...


TimerCallback = Callable[[], Awaitable[Any]]


@runtime_checkable
class Scheduler(Protocol):
    """Cancellable single-shot timers keyed by an identifier."""

    def schedule(self, key: str, delay_seconds: float, callback: TimerCallback) -> None:
        """
        Run ``callback`` once after ``delay_seconds``.

        Scheduling under a key that already has a pending timer replaces it.
        """
        ...

    def cancel(self, key: str) -> bool:
        """Cancel the pending timer for ``key``. Returns True if one was pending."""
        ...

    def is_scheduled(self, key: str) -> bool:
        """Whether a timer is pending for ``key``."""
        ...

    def time_remaining(self, key: str) -> float | None:
        """Seconds until the timer for ``key`` fires, or None."""
        ...

    def cancel_all(self) -> int:
        """Cancel every pending timer. Returns how many were cancelled."""
        ...
