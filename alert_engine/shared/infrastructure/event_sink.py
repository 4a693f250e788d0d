"""Event sinks for storing engine events."""

import pandas as pd
from loguru import logger

from alert_engine.config import EventsConfig
from alert_engine.shared.domain.models import EngineEvent, EventType
from alert_engine.shared.domain.protocols import EventSink


class InMemoryEventSink(EventSink):
    """Simple in-memory event storage for testing and small deployments."""

    def __init__(self):
        self.events: list[EngineEvent] = []

    def write_event(self, event: EngineEvent) -> None:
        """Write a single event."""
        self.events.append(event)

    def write_events(self, events: list[EngineEvent]) -> None:
        """Write multiple events."""
        self.events.extend(events)

    def to_dataframe(self) -> pd.DataFrame:
        """Convert stored events to DataFrame."""
        if not self.events:
            return pd.DataFrame()

        return pd.DataFrame([event.to_dict() for event in self.events])

    def of_type(self, event_type: EventType) -> list[EngineEvent]:
        """Stored events with the given type, in emission order."""
        return [event for event in self.events if event.event_type == event_type]

    def clear(self):
        """Clear all stored events."""
        self.events.clear()

    def __len__(self):
        return len(self.events)


class CSVEventSink(EventSink):
    """Event sink that appends to a CSV file in buffered batches."""

    def __init__(self, filepath: str, mode: str = "w", buffer_size: int = 100):
        """
        Initialize CSV sink.

        Args:
            filepath: Path to CSV file
            mode: 'w' for overwrite, 'a' for append
            buffer_size: Flush after this many buffered events
        """
        self.filepath = filepath
        self.mode = mode
        self._buffer: list[EngineEvent] = []
        self._buffer_size = buffer_size
        self._header_written = mode == "a"

    def write_event(self, event: EngineEvent) -> None:
        """Buffer event and write when buffer full."""
        self._buffer.append(event)

        if len(self._buffer) >= self._buffer_size:
            self.flush()

    def write_events(self, events: list[EngineEvent]) -> None:
        """Write multiple events."""
        self._buffer.extend(events)

        if len(self._buffer) >= self._buffer_size:
            self.flush()

    def flush(self):
        """Write buffered events to CSV."""
        if not self._buffer:
            return

        df = pd.DataFrame([event.to_dict() for event in self._buffer])

        df.to_csv(
            self.filepath,
            mode="a" if self._header_written else "w",
            header=not self._header_written,
            index=False,
        )

        self._header_written = True
        self._buffer.clear()
        logger.debug(f"Flushed {len(df)} events to {self.filepath}")

    def to_dataframe(self) -> pd.DataFrame:
        """Read all events from CSV, including any still buffered."""
        self.flush()
        try:
            return pd.read_csv(self.filepath)
        except FileNotFoundError:
            return pd.DataFrame()


def create_event_sink(config: EventsConfig) -> EventSink:
    """Build the sink named by an ``EventsConfig``: a CSV file when ``csv_path`` is set, memory otherwise."""
    if config.csv_path:
        logger.info(f"Writing engine events to {config.csv_path}")
        return CSVEventSink(config.csv_path, mode=config.csv_mode, buffer_size=config.buffer_size)
    return InMemoryEventSink()
