"""
Shared circuit state.

Breakers keep their state locally and, when a distributed store is attached,
mirror it so that several processes see the same failure count. Without one,
each process has its own view: instance A may be OPEN while instance B is
still CLOSED.
"""

from __future__ import annotations

import json
import os
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from hybrid_query._features import HAS_REDIS, require_extra
from hybrid_query.errors import StateStoreError
from hybrid_query.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger("hybrid_query.resilience.state_store")

KEY_PREFIX = "circuit-breaker:"


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitRecord(BaseModel):
    """Persisted state of one breaker.

    Attributes:
        service_name: Logical service the breaker protects
        state: Last recorded state
        failure_count: Consecutive counted failures
        failure_threshold: Failures needed to open
        last_failure_at: Epoch ms of the last failure, 0 when none
        reset_timeout_ms: Open window length
    """

    service_name: str
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    failure_threshold: int = 3
    last_failure_at: int = 0
    reset_timeout_ms: int = 60000

    def count_failure(self, now_ms: int) -> int:
        """Count one failure at ``now_ms``, marking the record OPEN at the threshold."""
        self.failure_count += 1
        self.last_failure_at = now_ms
        if self.failure_count >= self.failure_threshold:
            self.state = CircuitState.OPEN
        return self.failure_count


class DistributedStateStore(ABC):
    """Storage for circuit records shared between processes."""

    kind: str = "custom"

    @abstractmethod
    async def get_state(self, service_name: str) -> CircuitRecord | None:
        """Get the stored record, or None if there is none."""
        raise NotImplementedError

    @abstractmethod
    async def set_state(self, service_name: str, record: CircuitRecord) -> None:
        """Replace the stored record."""
        raise NotImplementedError

    @abstractmethod
    async def increment_failures(self, service_name: str) -> int:
        """Count one failure and stamp the failure time.

        Returns:
            New failure count, or 0 if there is no record to increment
        """
        raise NotImplementedError

    @abstractmethod
    async def reset_state(self, service_name: str) -> None:
        """Delete the stored record."""
        raise NotImplementedError


class InMemoryStateStore(DistributedStateStore):
    """Process-local store (default)."""

    kind = "in-memory"

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._records: dict[str, CircuitRecord] = {}
        self._clock = clock

    async def get_state(self, service_name: str) -> CircuitRecord | None:
        record = self._records.get(service_name)
        return record.model_copy() if record else None

    async def set_state(self, service_name: str, record: CircuitRecord) -> None:
        self._records[service_name] = record.model_copy()

    async def increment_failures(self, service_name: str) -> int:
        record = self._records.get(service_name)
        if record is None:
            return 0
        return record.count_failure(int(self._clock() * 1000))

    async def reset_state(self, service_name: str) -> None:
        self._records.pop(service_name, None)


class RedisStateStore(DistributedStateStore):
    """Redis-backed store (requires the ``redis`` extra).

    Records are JSON documents under ``circuit-breaker:<service>``.

    Example:
        >>> store = RedisStateStore(url="redis://localhost:6379/0")
        >>> await store.ping()
    """

    kind = "redis"

    def __init__(
        self,
        url: str | None = None,
        *,
        client: Any = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the store.

        Args:
            url: Redis URL, used when no client is given
            client: Pre-built ``redis.asyncio`` compatible client
            clock: Epoch-seconds clock used to stamp failures
        """
        if client is None:
            if not HAS_REDIS:
                require_extra("redis", "redis")
            import redis.asyncio as aioredis

            client = aioredis.from_url(
                url or "redis://localhost:6379/0",
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
        self._client = client
        self._clock = clock

    @staticmethod
    def _key(service_name: str) -> str:
        return f"{KEY_PREFIX}{service_name}"

    async def ping(self) -> None:
        """Check connectivity.

        Raises:
            StateStoreError: Redis is unreachable
        """
        try:
            await self._client.ping()
        except Exception as e:
            raise StateStoreError(f"Redis ping failed: {e}", backend=self.kind) from e

    async def get_state(self, service_name: str) -> CircuitRecord | None:
        try:
            raw = await self._client.get(self._key(service_name))
        except Exception as e:
            raise StateStoreError(f"Redis GET failed: {e}", backend=self.kind) from e
        if raw is None:
            return None
        try:
            return CircuitRecord.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            raise StateStoreError(
                f"Corrupt circuit record for {service_name}", backend=self.kind
            ) from e

    async def set_state(self, service_name: str, record: CircuitRecord) -> None:
        try:
            await self._client.set(self._key(service_name), record.model_dump_json())
        except Exception as e:
            raise StateStoreError(f"Redis SET failed: {e}", backend=self.kind) from e

    async def increment_failures(self, service_name: str) -> int:
        # Read-modify-write; concurrent increments from two processes may collapse
        record = await self.get_state(service_name)
        if record is None:
            return 0
        count = record.count_failure(int(self._clock() * 1000))
        await self.set_state(service_name, record)
        return count

    async def reset_state(self, service_name: str) -> None:
        try:
            await self._client.delete(self._key(service_name))
        except Exception as e:
            raise StateStoreError(f"Redis DELETE failed: {e}", backend=self.kind) from e

    async def close(self) -> None:
        """Close the underlying client."""
        close = getattr(self._client, "aclose", None) or getattr(self._client, "close", None)
        if close is not None:
            await close()


class StateStoreHolder:
    """Process-wide store selection."""

    def __init__(self) -> None:
        self._store: DistributedStateStore = InMemoryStateStore()
        self._distributed = False
        self._attempted = False

    @property
    def store(self) -> DistributedStateStore:
        return self._store

    @property
    def distributed(self) -> bool:
        return self._distributed

    def set(self, store: DistributedStateStore) -> None:
        self._store = store
        self._distributed = not isinstance(store, InMemoryStateStore)
        self._attempted = True

    async def ensure(self, url: str | None = None) -> bool:
        """Try once to attach Redis; degrade to in-memory on any failure.

        Returns:
            True if a distributed store is active
        """
        if self._distributed or self._attempted:
            return self._distributed
        self._attempted = True

        url = url or os.getenv("AI_BREAKER_REDIS_URL")
        if not url:
            return False

        try:
            store = RedisStateStore(url=url)
            await store.ping()
        except (ImportError, StateStoreError) as e:
            logger.warning(
                "Redis state store unavailable, using in-memory state "
                "(breaker state is not shared between instances)",
                error=str(e),
            )
            return False

        self.set(store)
        logger.info("Redis state store initialized", url=url)
        return True

    def reset(self) -> None:
        """Return to the in-memory default."""
        self._store = InMemoryStateStore()
        self._distributed = False
        self._attempted = False


_holder = StateStoreHolder()


def get_state_store() -> DistributedStateStore:
    """Get the process-wide store."""
    return _holder.store


def set_state_store(store: DistributedStateStore) -> None:
    """Replace the process-wide store."""
    _holder.set(store)


def is_distributed_store_active() -> bool:
    """Check whether a non in-memory store is attached."""
    return _holder.distributed


async def ensure_state_store(url: str | None = None) -> bool:
    """Attach Redis if configured (``AI_BREAKER_REDIS_URL``), once per process."""
    return await _holder.ensure(url)


def reset_state_store() -> None:
    """Restore the in-memory default (mainly for tests)."""
    _holder.reset()
