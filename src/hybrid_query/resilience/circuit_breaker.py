"""
Circuit breaker for fault isolation.

Implements the circuit breaker pattern with three states:
- Closed: Normal operation, requests pass through
- Open: Failure threshold reached, requests fail fast
- Half-Open: Reset window elapsed, one trial request is admitted

Openness is evaluated lazily on every call from the failure count and the
time of the last failure; there is no background timer.
"""

from __future__ import annotations

import asyncio
import math
import os
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from hybrid_query.errors import CircuitExecutionError, CircuitOpenError
from hybrid_query.resilience.events import BreakerEvent, BreakerEventLog, BreakerEventType
from hybrid_query.resilience.state_store import CircuitRecord, CircuitState
from hybrid_query.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from hybrid_query.resilience.state_store import DistributedStateStore

T = TypeVar("T")

logger = get_logger("hybrid_query.resilience.circuit_breaker")

_TRANSITION_EVENTS = {
    CircuitState.CLOSED: BreakerEventType.CLOSE,
    CircuitState.OPEN: BreakerEventType.OPEN,
    CircuitState.HALF_OPEN: BreakerEventType.HALF_OPEN,
}


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker.

    Attributes:
        failure_threshold: Number of failures to trip the circuit
        reset_timeout_ms: Time after the last failure before a trial call is allowed
    """

    failure_threshold: int = 3
    reset_timeout_ms: int = 60000

    @classmethod
    def default(cls) -> CircuitBreakerConfig:
        """Create default configuration."""
        return cls()

    @classmethod
    def from_env(cls) -> CircuitBreakerConfig:
        """Create configuration from environment variables."""
        defaults = cls()
        try:
            failure_threshold = int(
                os.getenv("AI_BREAKER_FAILURE_THRESHOLD", str(defaults.failure_threshold))
            )
        except ValueError:
            failure_threshold = defaults.failure_threshold
        try:
            reset_timeout_ms = int(
                os.getenv("AI_BREAKER_RESET_TIMEOUT_MS", str(defaults.reset_timeout_ms))
            )
        except ValueError:
            reset_timeout_ms = defaults.reset_timeout_ms

        return cls(
            failure_threshold=max(1, failure_threshold),
            reset_timeout_ms=max(0, reset_timeout_ms),
        )


@dataclass
class CircuitStatus:
    """Point-in-time view of a breaker.

    Attributes:
        service_name: Protected service
        state: Effective state at read time
        failures: Current failure count
        threshold: Failures needed to open
        last_failure_at: Epoch ms of the last failure (0 when none)
        reset_time_remaining_ms: Time until a trial call is allowed, only when OPEN
    """

    service_name: str
    state: CircuitState
    failures: int
    threshold: int
    last_failure_at: int
    reset_time_remaining_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {
            "service_name": self.service_name,
            "state": self.state.value,
            "failures": self.failures,
            "threshold": self.threshold,
            "last_failure_at": self.last_failure_at,
        }
        if self.reset_time_remaining_ms is not None:
            result["reset_time_remaining_ms"] = self.reset_time_remaining_ms
        return result


@dataclass
class CircuitStats:
    """Statistics for circuit breaker."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    state_changes: int = 0


class CircuitBreaker:
    """Circuit breaker guarding one logical service.

    Example:
        >>> breaker = CircuitBreaker("ai-streaming", CircuitBreakerConfig(failure_threshold=3))
        >>> try:
        ...     result = await breaker.execute(call_backend)
        ... except CircuitOpenError as e:
        ...     print(e.message)
    """

    def __init__(
        self,
        service_name: str,
        config: CircuitBreakerConfig | None = None,
        event_log: BreakerEventLog | None = None,
        state_store: DistributedStateStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize circuit breaker.

        Args:
            service_name: Logical service name
            config: Circuit breaker configuration
            event_log: Where transitions and outcomes are reported
            state_store: Optional shared store mirrored on every call
            clock: Epoch-seconds clock
        """
        self.service_name = service_name
        self._config = config or CircuitBreakerConfig()
        self._events = event_log if event_log is not None else BreakerEventLog()
        self._store = state_store
        self._clock = clock
        self._lock = asyncio.Lock()

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_at = 0
        self._trial_in_flight = False
        self._pending: set[asyncio.Task[None]] = set()

        self._stats = CircuitStats()

    @property
    def config(self) -> CircuitBreakerConfig:
        return self._config

    @property
    def failures(self) -> int:
        """Current failure count."""
        return self._failures

    @property
    def stats(self) -> CircuitStats:
        return self._stats

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _within_window(self, now: int) -> bool:
        return now - self._last_failure_at < self._config.reset_timeout_ms

    def _emit(self, event_type: BreakerEventType, **details: Any) -> None:
        self._events.emit(
            BreakerEvent(
                type=event_type,
                service=self.service_name,
                timestamp=self._now_ms(),
                details=details,
            )
        )

    def _transition_to(self, new_state: CircuitState) -> None:
        if new_state == self._state:
            return

        previous = self._state
        self._state = new_state
        self._stats.state_changes += 1

        logger.info(
            "Circuit state changed",
            service=self.service_name,
            previous_state=previous.value,
            new_state=new_state.value,
            failures=self._failures,
        )
        self._emit(
            _TRANSITION_EVENTS[new_state],
            previous_state=previous.value,
            new_state=new_state.value,
            failures=self._failures,
            threshold=self._config.failure_threshold,
            reset_timeout_ms=self._config.reset_timeout_ms,
        )

    def _record(self) -> CircuitRecord:
        return CircuitRecord(
            service_name=self.service_name,
            state=(
                CircuitState.OPEN
                if self._failures >= self._config.failure_threshold
                else self._state
            ),
            failure_count=self._failures,
            failure_threshold=self._config.failure_threshold,
            last_failure_at=self._last_failure_at,
            reset_timeout_ms=self._config.reset_timeout_ms,
        )

    async def _sync_from_store(self) -> None:
        if self._store is None or self._trial_in_flight:
            return
        try:
            record = await self._store.get_state(self.service_name)
        except Exception as e:
            logger.warning(
                "State store read failed, using local circuit state",
                service=self.service_name,
                error=str(e),
            )
            return
        if record is None:
            # No shared record: another instance recovered or reset the circuit
            self._failures = 0
            self._last_failure_at = 0
            self._transition_to(CircuitState.CLOSED)
            return
        self._failures = record.failure_count
        self._last_failure_at = record.last_failure_at

    async def _report_failure(self) -> None:
        if self._store is None:
            return
        try:
            shared = await self._store.increment_failures(self.service_name)
            if shared == 0:
                await self._store.set_state(self.service_name, self._record())
            elif shared > self._failures:
                self._failures = shared
        except Exception as e:
            logger.warning(
                "State store write failed, using local circuit state",
                service=self.service_name,
                error=str(e),
            )

    async def _report_success(self) -> None:
        if self._store is None:
            return
        try:
            await self._store.reset_state(self.service_name)
        except Exception as e:
            logger.warning(
                "State store reset failed",
                service=self.service_name,
                error=str(e),
            )

    async def _admit(self) -> bool:
        """Admit or reject a call.

        Returns:
            True if the call is the half-open trial
        """
        async with self._lock:
            await self._sync_from_store()
            self._stats.total_requests += 1

            if self._trial_in_flight:
                self._stats.rejected_requests += 1
                raise CircuitOpenError(self.service_name, 1)

            if self._failures < self._config.failure_threshold:
                return False

            now = self._now_ms()
            if self._within_window(now):
                self._stats.rejected_requests += 1
                remaining = self._config.reset_timeout_ms - (now - self._last_failure_at)
                raise CircuitOpenError(self.service_name, math.ceil(remaining / 1000))

            # Next failure re-opens immediately
            self._failures = self._config.failure_threshold - 1
            self._trial_in_flight = True
            self._transition_to(CircuitState.HALF_OPEN)
            return True

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Execute an operation through the circuit breaker.

        Args:
            fn: Async operation to execute

        Returns:
            Operation result

        Raises:
            CircuitOpenError: Circuit is open; ``fn`` was not invoked
            CircuitExecutionError: ``fn`` failed and the failure was counted
        """
        trial = await self._admit()
        try:
            result = await fn()
        except asyncio.CancelledError:
            # Cancellation reflects the caller, not the backend
            if trial:
                self._reopen_after_abandoned_trial()
            raise
        except Exception as e:
            await self._on_failure(e)
            raise CircuitExecutionError(
                self.service_name,
                e,
                failures=self._failures,
                threshold=self._config.failure_threshold,
            ) from e
        finally:
            if trial:
                self._trial_in_flight = False

        await self._on_success()
        return result

    def _reopen_after_abandoned_trial(self) -> None:
        # Window already elapsed, so the next caller becomes the new trial
        self._failures = self._config.failure_threshold
        self._state = CircuitState.OPEN
        logger.debug("Half-open trial cancelled, circuit re-armed", service=self.service_name)

    async def _on_success(self) -> None:
        had_failures = self._failures > 0 or self._state != CircuitState.CLOSED
        self._failures = 0
        self._last_failure_at = 0
        self._stats.successful_requests += 1

        if self._state != CircuitState.CLOSED:
            self._transition_to(CircuitState.CLOSED)

        self._emit(BreakerEventType.SUCCESS, new_state=CircuitState.CLOSED.value, failures=0)
        if had_failures:
            await self._report_success()

    async def _on_failure(self, error: Exception) -> None:
        self._failures += 1
        self._last_failure_at = self._now_ms()
        self._stats.failed_requests += 1
        await self._report_failure()

        self._emit(
            BreakerEventType.FAILURE,
            failures=self._failures,
            threshold=self._config.failure_threshold,
            error=str(error),
        )

        if self._failures >= self._config.failure_threshold:
            self._transition_to(CircuitState.OPEN)

    def get_status(self) -> CircuitStatus:
        """Read the effective state without mutating it."""
        now = self._now_ms()
        remaining: int | None = None

        if self._failures >= self._config.failure_threshold:
            if self._within_window(now):
                state = CircuitState.OPEN
                remaining = max(
                    0, self._config.reset_timeout_ms - (now - self._last_failure_at)
                )
            else:
                state = CircuitState.HALF_OPEN
        elif self._trial_in_flight or self._state == CircuitState.HALF_OPEN:
            state = CircuitState.HALF_OPEN
        else:
            state = CircuitState.CLOSED

        return CircuitStatus(
            service_name=self.service_name,
            state=state,
            failures=self._failures,
            threshold=self._config.failure_threshold,
            last_failure_at=self._last_failure_at,
            reset_time_remaining_ms=remaining,
        )

    @property
    def state(self) -> CircuitState:
        """Effective state (see ``get_status``)."""
        return self.get_status().state

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def reset(self) -> None:
        """Force CLOSED with zero failures.

        Also clears the shared record when a store is attached. The store call
        is scheduled on the running loop; without one only local state resets.
        """
        self._failures = 0
        self._last_failure_at = 0
        self._transition_to(CircuitState.CLOSED)

        if self._store is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, shared circuit state not reset", service=self.service_name)
            return
        task = loop.create_task(self._report_success())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
