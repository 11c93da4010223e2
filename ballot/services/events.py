"""Election notifications and the sinks that receive them."""

from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any
import threading

from pydantic import BaseModel, Field

from ballot.core.logging_config import get_logger


class EventType(str, Enum):
    """Notification types emitted by the engine."""

    CANDIDATE_ADDED = "candidate_added"
    VOTER_ADDED = "voter_added"
    ELECTION_STARTED = "election_started"
    ELECTION_ENDED = "election_ended"
    VOTE_CAST = "vote_cast"
    VOTE_DELEGATED = "vote_delegated"


class ElectionEvent(BaseModel):
    """One accepted operation, numbered in acceptance order."""

    sequence: int
    event_type: EventType
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


EventSink = Callable[[ElectionEvent], None]


class InMemoryEventLog:
    """
    Ordered in-process event log.

    Keeps every delivered event; duplicate deliveries of the same sequence
    number are dropped.
    """

    def __init__(self) -> None:
        self._events: list[ElectionEvent] = []
        self._lock = threading.Lock()

    def __call__(self, event: ElectionEvent) -> None:
        with self._lock:
            if self._events and event.sequence <= self._events[-1].sequence:
                return
            self._events.append(event)

    def list_events(
        self, since: int = 0, event_type: EventType | None = None
    ) -> list[ElectionEvent]:
        """Return events with a sequence number greater than ``since``."""
        with self._lock:
            return [
                event
                for event in self._events
                if event.sequence > since
                and (event_type is None or event.event_type == event_type)
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


class LoggingEventSink:
    """Write each event as a structured log line."""

    def __init__(self, logger_name: str = "election.events") -> None:
        self.logger = get_logger(logger_name)

    def __call__(self, event: ElectionEvent) -> None:
        self.logger.info(
            f"Election event #{event.sequence}: {event.event_type.value}",
            extra={
                "extra_fields": {
                    "event_type": event.event_type.value,
                    "sequence": event.sequence,
                    **event.payload,
                }
            },
        )
