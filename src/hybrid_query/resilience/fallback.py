"""
Breaker-guarded execution with fallback.

Runs a primary call through the service's breaker and serves the fallback
when the breaker is open or the primary call fails.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Generic, TypeVar, Union

from hybrid_query.errors import is_client_abort, unwrap_error
from hybrid_query.resilience.events import BreakerEvent, BreakerEventType
from hybrid_query.resilience.state_store import CircuitState
from hybrid_query.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from hybrid_query.resilience.registry import BreakerRegistry

T = TypeVar("T")

logger = get_logger("hybrid_query.resilience.fallback")


class ResultSource(str, Enum):
    """Which path served a result."""

    PRIMARY = "primary"
    FALLBACK = "fallback"


@dataclass
class ExecutionResult(Generic[T]):
    """Outcome of a guarded execution.

    Attributes:
        data: Value returned by the serving path
        source: Which path served it
        original_error: Primary failure that caused the fallback, if any
    """

    data: T
    source: ResultSource
    original_error: Exception | None = None

    @property
    def from_fallback(self) -> bool:
        return self.source == ResultSource.FALLBACK


def _emit_failover(registry: BreakerRegistry, service_name: str, error: str) -> None:
    registry.event_log.emit(
        BreakerEvent(
            type=BreakerEventType.FAILOVER,
            service=service_name,
            timestamp=registry.now_ms(),
            details={
                "failover_from": "primary",
                "failover_to": "fallback",
                "error": error,
            },
        )
    )


async def _run_fallback(fallback: Callable[[], Union[T, Awaitable[T]]]) -> T:
    result = fallback()
    if inspect.isawaitable(result):
        return await result
    return result


async def execute_with_circuit_breaker_and_fallback(
    service_name: str,
    primary: Callable[[], Awaitable[T]],
    fallback: Callable[[], Union[T, Awaitable[T]]],
    *,
    registry: BreakerRegistry,
) -> ExecutionResult[T]:
    """Run ``primary`` through the service's breaker, falling back on failure.

    Client-side aborts (cancellation, client timeouts) reset the breaker so
    they never count against the backend. Errors raised by ``fallback``
    propagate.

    Args:
        service_name: Breaker to use
        primary: Async primary call
        fallback: Plain callable or callable returning an awaitable
        registry: Registry owning the breaker

    Returns:
        ExecutionResult naming the serving path
    """
    breaker = registry.get_breaker(service_name)
    status = breaker.get_status()

    if status.state == CircuitState.OPEN:
        logger.info(
            "Circuit open, serving fallback",
            service=service_name,
            reset_time_remaining_ms=status.reset_time_remaining_ms,
        )
        _emit_failover(registry, service_name, "Circuit breaker is OPEN")
        data = await _run_fallback(fallback)
        return ExecutionResult(data=data, source=ResultSource.FALLBACK)

    try:
        result = await breaker.execute(primary)
        return ExecutionResult(data=result, source=ResultSource.PRIMARY)
    except Exception as e:
        if is_client_abort(e):
            logger.info(
                "Client-side abort, not counted against the circuit",
                service=service_name,
                error=str(unwrap_error(e)),
            )
            breaker.reset()

        logger.error("Primary call failed, serving fallback", service=service_name, error=str(e))
        _emit_failover(registry, service_name, str(e))

        data = await _run_fallback(fallback)
        return ExecutionResult(data=data, source=ResultSource.FALLBACK, original_error=e)
