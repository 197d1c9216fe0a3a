"""Tests for the circuit breaker."""

import asyncio
from typing import Any

import pytest

from hybrid_query.errors import CircuitExecutionError, CircuitOpenError
from hybrid_query.resilience import (
    BreakerEventLog,
    BreakerEventType,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    InMemoryStateStore,
)


async def _ok() -> str:
    return "ok"


async def _boom() -> str:
    raise RuntimeError("backend down")


async def _trip(breaker: CircuitBreaker, times: int = 3) -> None:
    for _ in range(times):
        with pytest.raises(CircuitExecutionError):
            await breaker.execute(_boom)


def _breaker(clock: Any, **kwargs: Any) -> CircuitBreaker:
    return CircuitBreaker(
        "ai-streaming",
        CircuitBreakerConfig(failure_threshold=3, reset_timeout_ms=60000),
        clock=clock,
        **kwargs,
    )


class TestClosedState:
    """Tests for the CLOSED state."""

    @pytest.mark.asyncio
    async def test_success_passes_through(self, clock: Any) -> None:
        """Test a successful call returns its value."""
        breaker = _breaker(clock)

        assert await breaker.execute(_ok) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failures == 0
        assert breaker.stats.successful_requests == 1

    @pytest.mark.asyncio
    async def test_failure_is_wrapped_and_counted(self, clock: Any) -> None:
        """Test failures are counted and chained."""
        breaker = _breaker(clock)

        with pytest.raises(CircuitExecutionError) as exc_info:
            await breaker.execute(_boom)

        assert isinstance(exc_info.value.original, RuntimeError)
        assert exc_info.value.__cause__ is exc_info.value.original
        assert exc_info.value.failures == 1
        assert breaker.failures == 1
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_success_resets_count(self, clock: Any) -> None:
        """Test success clears earlier failures."""
        breaker = _breaker(clock)
        await _trip(breaker, 2)

        await breaker.execute(_ok)

        assert breaker.failures == 0

    @pytest.mark.asyncio
    async def test_cancellation_not_counted(self, clock: Any) -> None:
        """Test cancelled calls leave the count untouched."""
        breaker = _breaker(clock)

        async def cancelled() -> str:
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await breaker.execute(cancelled)

        assert breaker.failures == 0


class TestOpenState:
    """Tests for opening and short-circuiting."""

    @pytest.mark.asyncio
    async def test_opens_at_threshold(self, clock: Any) -> None:
        """Test three failures open the circuit."""
        breaker = _breaker(clock)
        await _trip(breaker)

        assert breaker.state == CircuitState.OPEN
        assert breaker.is_open

    @pytest.mark.asyncio
    async def test_fourth_call_short_circuits(self, clock: Any) -> None:
        """Test the call after the threshold never reaches the backend."""
        breaker = _breaker(clock)
        await _trip(breaker)
        calls = 0

        async def counted() -> str:
            nonlocal calls
            calls += 1
            return "ok"

        clock.advance(10)
        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(counted)

        assert calls == 0
        assert exc_info.value.retry_after_seconds == 50
        assert breaker.stats.rejected_requests == 1

    @pytest.mark.asyncio
    async def test_status_reports_remaining_window(self, clock: Any) -> None:
        """Test OPEN status carries the remaining time."""
        breaker = _breaker(clock)
        await _trip(breaker)
        clock.advance(15)

        status = breaker.get_status()

        assert status.state == CircuitState.OPEN
        assert status.reset_time_remaining_ms == 45000
        assert status.to_dict()["reset_time_remaining_ms"] == 45000

    @pytest.mark.asyncio
    async def test_events_on_open(self, clock: Any) -> None:
        """Test failure and open events are emitted in order."""
        log = BreakerEventLog()
        breaker = _breaker(clock, event_log=log)

        await _trip(breaker)

        types = [e.type for e in log.get_history(service="ai-streaming")]
        assert types == [
            BreakerEventType.FAILURE,
            BreakerEventType.FAILURE,
            BreakerEventType.FAILURE,
            BreakerEventType.OPEN,
        ]


class TestHalfOpen:
    """Tests for the half-open trial."""

    @pytest.mark.asyncio
    async def test_openness_is_lazy(self, clock: Any) -> None:
        """Test an elapsed window reads as HALF_OPEN without a call."""
        breaker = _breaker(clock)
        await _trip(breaker)

        clock.advance(61)

        assert breaker.state == CircuitState.HALF_OPEN

    @pytest.mark.asyncio
    async def test_trial_success_closes(self, clock: Any) -> None:
        """Test a successful trial closes the circuit."""
        log = BreakerEventLog()
        breaker = _breaker(clock, event_log=log)
        await _trip(breaker)
        clock.advance(61)

        assert await breaker.execute(_ok) == "ok"

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failures == 0
        types = [e.type for e in log.get_history()]
        assert BreakerEventType.HALF_OPEN in types
        assert types[-2:] == [BreakerEventType.CLOSE, BreakerEventType.SUCCESS]

    @pytest.mark.asyncio
    async def test_trial_failure_reopens(self, clock: Any) -> None:
        """Test a failed trial re-opens immediately with a fresh window."""
        breaker = _breaker(clock)
        await _trip(breaker)
        clock.advance(61)

        with pytest.raises(CircuitExecutionError):
            await breaker.execute(_boom)

        status = breaker.get_status()
        assert status.state == CircuitState.OPEN
        assert status.failures == 3
        assert status.reset_time_remaining_ms == 60000

    @pytest.mark.asyncio
    async def test_concurrent_calls_rejected_during_trial(self, clock: Any) -> None:
        """Test only one trial call is admitted."""
        breaker = _breaker(clock)
        await _trip(breaker)
        clock.advance(61)
        gate = asyncio.Event()

        async def slow() -> str:
            await gate.wait()
            return "ok"

        trial = asyncio.create_task(breaker.execute(slow))
        await asyncio.sleep(0)

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(_ok)
        assert exc_info.value.retry_after_seconds == 1
        assert breaker.state == CircuitState.HALF_OPEN

        gate.set()
        assert await trial == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_cancelled_trial_keeps_single_trial_gate(self, clock: Any) -> None:
        """Test a cancelled trial re-arms the circuit instead of closing it."""
        breaker = _breaker(clock)
        await _trip(breaker)
        clock.advance(61)
        admitted: list[int] = []

        async def hang() -> str:
            admitted.append(1)
            await asyncio.Event().wait()
            return "never"

        abandoned = asyncio.create_task(breaker.execute(hang))
        await asyncio.sleep(0)
        abandoned.cancel()
        with pytest.raises(asyncio.CancelledError):
            await abandoned

        status = breaker.get_status()
        assert status.state == CircuitState.HALF_OPEN
        assert status.failures == 3

        gate = asyncio.Event()

        async def slow() -> str:
            admitted.append(1)
            await gate.wait()
            return "ok"

        trial = asyncio.create_task(breaker.execute(slow))
        await asyncio.sleep(0)
        for _ in range(2):
            with pytest.raises(CircuitOpenError):
                await breaker.execute(slow)

        assert len(admitted) == 2
        gate.set()
        assert await trial == "ok"
        assert breaker.state == CircuitState.CLOSED


class TestReset:
    """Tests for manual reset."""

    @pytest.mark.asyncio
    async def test_reset_closes(self, clock: Any) -> None:
        """Test reset forces CLOSED."""
        breaker = _breaker(clock)
        await _trip(breaker)

        breaker.reset()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failures == 0
        assert await breaker.execute(_ok) == "ok"

    def test_reset_without_loop(self, clock: Any) -> None:
        """Test reset works outside an event loop with a store attached."""
        breaker = _breaker(clock, state_store=InMemoryStateStore(clock=clock))
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED


class TestSharedState:
    """Tests for mirroring into a state store."""

    @pytest.mark.asyncio
    async def test_failures_are_mirrored(self, clock: Any) -> None:
        """Test the first failure creates the record and later ones increment it."""
        store = InMemoryStateStore(clock=clock)
        breaker = _breaker(clock, state_store=store)

        await _trip(breaker, 2)

        record = await store.get_state("ai-streaming")
        assert record is not None
        assert record.failure_count == 2
        assert record.last_failure_at == int(clock() * 1000)

    @pytest.mark.asyncio
    async def test_second_instance_sees_open_circuit(self, clock: Any) -> None:
        """Test two breakers sharing a store agree on openness."""
        store = InMemoryStateStore(clock=clock)
        first = _breaker(clock, state_store=store)
        second = _breaker(clock, state_store=store)
        await _trip(first)

        with pytest.raises(CircuitOpenError):
            await second.execute(_ok)

    @pytest.mark.asyncio
    async def test_adopts_higher_shared_count(self, clock: Any) -> None:
        """Test a local failure adopts the higher shared count."""
        store = InMemoryStateStore(clock=clock)
        first = _breaker(clock, state_store=store)
        second = _breaker(clock, state_store=store)
        await _trip(first, 2)

        await _trip(second, 1)

        assert second.failures == 3
        assert second.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_success_clears_record(self, clock: Any) -> None:
        """Test recovery deletes the shared record."""
        store = InMemoryStateStore(clock=clock)
        breaker = _breaker(clock, state_store=store)
        await _trip(breaker, 1)

        await breaker.execute(_ok)

        assert await store.get_state("ai-streaming") is None

    @pytest.mark.asyncio
    async def test_store_failure_falls_back_to_local(self, clock: Any) -> None:
        """Test a broken store does not break the breaker."""

        class BrokenStore(InMemoryStateStore):
            async def get_state(self, service_name: str) -> Any:
                raise ConnectionError("store down")

            async def increment_failures(self, service_name: str) -> int:
                raise ConnectionError("store down")

        breaker = _breaker(clock, state_store=BrokenStore(clock=clock))

        await _trip(breaker)

        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_open_record_written_as_open(self, clock: Any) -> None:
        """Test the failure that reaches the threshold stores an OPEN record."""
        store = InMemoryStateStore(clock=clock)
        breaker = _breaker(clock, state_store=store)
        await _trip(breaker, 2)

        record = await store.get_state("ai-streaming")
        assert record is not None
        assert record.state == CircuitState.CLOSED

        await _trip(breaker, 1)

        record = await store.get_state("ai-streaming")
        assert record is not None
        assert record.failure_count == 3
        assert record.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_single_failure_threshold_writes_open(self, clock: Any) -> None:
        """Test a first failure that opens the circuit is stored as OPEN."""
        store = InMemoryStateStore(clock=clock)
        breaker = CircuitBreaker(
            "ai-job-queue", CircuitBreakerConfig(failure_threshold=1), state_store=store, clock=clock
        )

        await _trip(breaker, 1)

        record = await store.get_state("ai-job-queue")
        assert record is not None
        assert record.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_reset_elsewhere_closes_circuit(self, clock: Any) -> None:
        """Test a reset on one instance reopens traffic on the others."""
        store = InMemoryStateStore(clock=clock)
        first = _breaker(clock, state_store=store)
        second = _breaker(clock, state_store=store)
        await _trip(first)

        second.reset()
        await asyncio.sleep(0)

        assert await first.execute(_ok) == "ok"
        assert first.state == CircuitState.CLOSED
        assert first.failures == 0

    @pytest.mark.asyncio
    async def test_recovery_elsewhere_clears_stale_count(self, clock: Any) -> None:
        """Test a success on one instance drops the failures seen by another."""
        store = InMemoryStateStore(clock=clock)
        first = _breaker(clock, state_store=store)
        second = _breaker(clock, state_store=store)
        await _trip(first, 2)

        await second.execute(_ok)
        await _trip(first, 1)

        assert first.failures == 1
        assert first.state == CircuitState.CLOSED
        record = await store.get_state("ai-streaming")
        assert record is not None
        assert record.failure_count == 1
