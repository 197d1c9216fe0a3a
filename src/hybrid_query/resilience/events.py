"""
Breaker event log.

Bounded, append-only history of breaker events with subscriber fan-out.
"""

from __future__ import annotations

from collections import deque
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from hybrid_query.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger("hybrid_query.resilience.events")

DEFAULT_MAX_HISTORY = 100


class BreakerEventType(str, Enum):
    """Kinds of breaker events."""

    OPEN = "open"
    CLOSE = "close"
    HALF_OPEN = "half_open"
    SUCCESS = "success"
    FAILURE = "failure"
    FAILOVER = "failover"
    RATE_LIMIT = "rate_limit"


class BreakerEvent(BaseModel):
    """Immutable record of something a breaker observed.

    Attributes:
        type: Event kind
        service: Logical service name
        timestamp: Epoch milliseconds
        details: Free-form payload (error text, failure counts, ...)
    """

    model_config = ConfigDict(frozen=True)

    type: BreakerEventType
    service: str
    timestamp: int
    details: dict[str, Any] = Field(default_factory=dict)


class BreakerEventLog:
    """Bounded history of breaker events.

    Example:
        >>> log = BreakerEventLog(max_history=50)
        >>> unsubscribe = log.subscribe(lambda e: print(e.type))
        >>> log.emit(BreakerEvent(type="open", service="ai-streaming", timestamp=0))
        >>> unsubscribe()
    """

    def __init__(self, max_history: int = DEFAULT_MAX_HISTORY) -> None:
        self._history: deque[BreakerEvent] = deque(maxlen=max_history)
        self._listeners: list[Callable[[BreakerEvent], None]] = []

    @property
    def max_history(self) -> int:
        """Maximum number of retained events."""
        return self._history.maxlen or 0

    def emit(self, event: BreakerEvent) -> None:
        """Record an event and notify subscribers.

        A failing subscriber is logged and does not stop delivery to others.
        """
        self._history.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Breaker event listener failed",
                    event_type=event.type.value,
                    service=event.service,
                )

    def subscribe(self, listener: Callable[[BreakerEvent], None]) -> Callable[[], None]:
        """Register a listener.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def get_history(
        self,
        service: str | None = None,
        type: BreakerEventType | str | None = None,
        limit: int | None = None,
    ) -> list[BreakerEvent]:
        """Get events in chronological order, optionally filtered.

        Args:
            service: Only events for this service
            type: Only events of this kind
            limit: Keep only the most recent ``limit`` matches
        """
        events = list(self._history)
        if service is not None:
            events = [e for e in events if e.service == service]
        if type is not None:
            wanted = BreakerEventType(type)
            events = [e for e in events if e.type == wanted]
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def get_recent_events(self, count: int = 10) -> list[BreakerEvent]:
        """Get the ``count`` most recent events, oldest first."""
        return self.get_history(limit=count)

    def clear_history(self) -> None:
        """Drop all retained events."""
        self._history.clear()

    def __len__(self) -> int:
        return len(self._history)
