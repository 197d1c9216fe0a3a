"""Tests for breaker-guarded execution with fallback."""

from typing import Any

import httpx
import pytest

from hybrid_query.errors import CircuitExecutionError, RemoteError, TransportError
from hybrid_query.resilience import (
    BreakerEventType,
    BreakerRegistry,
    CircuitBreakerConfig,
    CircuitState,
    ResultSource,
    execute_with_circuit_breaker_and_fallback,
)


async def _primary_ok() -> str:
    return "primary"


async def _primary_fails() -> str:
    raise RuntimeError("job queue down")


def _fallback() -> str:
    return "fallback"


@pytest.fixture
def registry(clock: Any) -> BreakerRegistry:
    return BreakerRegistry(CircuitBreakerConfig(failure_threshold=3), clock=clock)


class TestExecuteWithFallback:
    """Tests for execute_with_circuit_breaker_and_fallback."""

    @pytest.mark.asyncio
    async def test_primary_success(self, registry: BreakerRegistry) -> None:
        """Test primary result is served."""
        result = await execute_with_circuit_breaker_and_fallback(
            "svc", _primary_ok, _fallback, registry=registry
        )

        assert result.data == "primary"
        assert result.source == ResultSource.PRIMARY
        assert not result.from_fallback
        assert result.original_error is None

    @pytest.mark.asyncio
    async def test_primary_failure_serves_fallback(self, registry: BreakerRegistry) -> None:
        """Test a failed primary is counted and the fallback served."""
        result = await execute_with_circuit_breaker_and_fallback(
            "svc", _primary_fails, _fallback, registry=registry
        )

        assert result.data == "fallback"
        assert result.from_fallback
        assert isinstance(result.original_error, CircuitExecutionError)
        assert registry.get_breaker("svc").failures == 1

        failovers = registry.event_log.get_history(type=BreakerEventType.FAILOVER)
        assert len(failovers) == 1
        assert failovers[0].details["failover_to"] == "fallback"

    @pytest.mark.asyncio
    async def test_open_circuit_skips_primary(self, registry: BreakerRegistry) -> None:
        """Test an open circuit serves the fallback without calling primary."""
        for _ in range(3):
            await execute_with_circuit_breaker_and_fallback(
                "svc", _primary_fails, _fallback, registry=registry
            )
        assert registry.get_breaker("svc").state == CircuitState.OPEN
        calls = 0

        async def primary() -> str:
            nonlocal calls
            calls += 1
            return "primary"

        result = await execute_with_circuit_breaker_and_fallback(
            "svc", primary, _fallback, registry=registry
        )

        assert calls == 0
        assert result.from_fallback
        assert result.original_error is None
        last = registry.event_log.get_history(type=BreakerEventType.FAILOVER)[-1]
        assert last.details["error"] == "Circuit breaker is OPEN"

    @pytest.mark.asyncio
    async def test_client_abort_resets_breaker(self, registry: BreakerRegistry) -> None:
        """Test client-side timeouts never leave failures behind."""

        async def times_out() -> str:
            raise TransportError("Request timed out", cause=httpx.ReadTimeout("slow"))

        await execute_with_circuit_breaker_and_fallback(
            "svc", _primary_fails, _fallback, registry=registry
        )
        result = await execute_with_circuit_breaker_and_fallback(
            "svc", times_out, _fallback, registry=registry
        )

        assert result.from_fallback
        assert registry.get_breaker("svc").failures == 0

    @pytest.mark.asyncio
    async def test_gateway_timeout_counts(self, registry: BreakerRegistry) -> None:
        """Test a 504 from the backend counts as a failure."""

        async def gateway_timeout() -> str:
            raise RemoteError("HTTP 504: Gateway Timeout", status_code=504)

        await execute_with_circuit_breaker_and_fallback(
            "svc", gateway_timeout, _fallback, registry=registry
        )

        assert registry.get_breaker("svc").failures == 1

    @pytest.mark.asyncio
    async def test_async_fallback(self, registry: BreakerRegistry) -> None:
        """Test awaitable fallbacks are awaited."""

        async def fallback() -> str:
            return "async fallback"

        result = await execute_with_circuit_breaker_and_fallback(
            "svc", _primary_fails, fallback, registry=registry
        )

        assert result.data == "async fallback"

    @pytest.mark.asyncio
    async def test_fallback_error_propagates(self, registry: BreakerRegistry) -> None:
        """Test errors raised by the fallback reach the caller."""

        def broken() -> str:
            raise LookupError("no fallback data")

        with pytest.raises(LookupError):
            await execute_with_circuit_breaker_and_fallback(
                "svc", _primary_fails, broken, registry=registry
            )
