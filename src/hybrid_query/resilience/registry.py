"""
Breaker registry.

Maps service names to breakers so that every call site protecting the same
dependency shares one failure history.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

from hybrid_query.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitStatus,
)
from hybrid_query.resilience.events import BreakerEvent, BreakerEventLog, BreakerEventType
from hybrid_query.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from hybrid_query.resilience.state_store import DistributedStateStore

logger = get_logger("hybrid_query.resilience.registry")


class BreakerRegistry:
    """Get-or-create registry of circuit breakers.

    Example:
        >>> registry = BreakerRegistry()
        >>> registry.get_breaker("ai-streaming") is registry.get_breaker("ai-streaming")
        True
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        event_log: BreakerEventLog | None = None,
        state_store: DistributedStateStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize registry.

        Args:
            config: Configuration applied to every breaker created here
            event_log: Shared event log
            state_store: Shared store handed to every breaker
            clock: Epoch-seconds clock
        """
        self._config = config or CircuitBreakerConfig()
        self._events = event_log if event_log is not None else BreakerEventLog()
        self._store = state_store
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    @property
    def event_log(self) -> BreakerEventLog:
        return self._events

    @property
    def state_store(self) -> DistributedStateStore | None:
        return self._store

    def now_ms(self) -> int:
        """Current time in epoch milliseconds, from the registry clock."""
        return int(self._clock() * 1000)

    def attach_state_store(self, store: DistributedStateStore | None) -> None:
        """Use ``store`` for breakers created from now on."""
        self._store = store

    def get_breaker(self, service_name: str) -> CircuitBreaker:
        """Get the breaker for a service, creating it on first use."""
        breaker = self._breakers.get(service_name)
        if breaker is None:
            breaker = CircuitBreaker(
                service_name,
                self._config,
                event_log=self._events,
                state_store=self._store,
                clock=self._clock,
            )
            self._breakers[service_name] = breaker
        return breaker

    def get_all_status(self) -> dict[str, CircuitStatus]:
        """Status snapshot of every known breaker."""
        return {name: breaker.get_status() for name, breaker in self._breakers.items()}

    def reset_breaker(self, service_name: str) -> bool:
        """Reset one breaker.

        Returns:
            False if no breaker exists for the name (none is created)
        """
        breaker = self._breakers.get(service_name)
        if breaker is None:
            return False
        breaker.reset()
        return True

    def reset_all(self) -> None:
        """Reset every known breaker."""
        for breaker in self._breakers.values():
            breaker.reset()

    def record_rate_limit(self, service_name: str, **details: Any) -> None:
        """Report a rate-limit response for a service.

        Rate limits are recorded for inspection only and do not count
        against the breaker.
        """
        logger.warning("Rate limit reported", service=service_name, **details)
        self._events.emit(
            BreakerEvent(
                type=BreakerEventType.RATE_LIMIT,
                service=service_name,
                timestamp=self.now_ms(),
                details=details,
            )
        )

    def names(self) -> list[str]:
        """Names of all known breakers."""
        return list(self._breakers)

    def __contains__(self, service_name: object) -> bool:
        return service_name in self._breakers


_default_registry: BreakerRegistry | None = None


def default_registry() -> BreakerRegistry:
    """Process-wide registry for application wiring.

    Library code takes a registry argument instead of calling this.
    """
    global _default_registry
    if _default_registry is None:
        _default_registry = BreakerRegistry(config=CircuitBreakerConfig.from_env())
    return _default_registry
