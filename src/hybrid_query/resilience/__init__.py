"""
Resilience layer - Circuit breaking, fallback and retry.

This module provides:
- CircuitBreaker: Closed/Open/Half-Open state machine with lazy openness
- BreakerRegistry: One breaker per service name
- BreakerEventLog: Bounded event history with subscribers
- DistributedStateStore: Shared circuit state (in-memory or Redis)
- execute_with_circuit_breaker_and_fallback: Guarded execution with fallback
- plan_retry / compute_delay: Streaming retry policy
- get_status_summary: Aggregated health view
"""

from hybrid_query.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitStats,
    CircuitStatus,
)
from hybrid_query.resilience.events import (
    DEFAULT_MAX_HISTORY,
    BreakerEvent,
    BreakerEventLog,
    BreakerEventType,
)
from hybrid_query.resilience.fallback import (
    ExecutionResult,
    ResultSource,
    execute_with_circuit_breaker_and_fallback,
)
from hybrid_query.resilience.registry import BreakerRegistry, default_registry
from hybrid_query.resilience.retry import (
    RetryDecision,
    compute_delay,
    is_cold_start_error,
    is_retryable,
    plan_retry,
)
from hybrid_query.resilience.state_store import (
    CircuitRecord,
    CircuitState,
    DistributedStateStore,
    InMemoryStateStore,
    RedisStateStore,
    StateStoreHolder,
    ensure_state_store,
    get_state_store,
    is_distributed_store_active,
    reset_state_store,
    set_state_store,
)
from hybrid_query.resilience.status import (
    BreakerStats,
    BreakerStatusSummary,
    get_status_summary,
)

__all__ = [
    "DEFAULT_MAX_HISTORY",
    "BreakerEvent",
    "BreakerEventLog",
    "BreakerEventType",
    "BreakerRegistry",
    "BreakerStats",
    "BreakerStatusSummary",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitRecord",
    "CircuitState",
    "CircuitStats",
    "CircuitStatus",
    "DistributedStateStore",
    "ExecutionResult",
    "InMemoryStateStore",
    "RedisStateStore",
    "ResultSource",
    "RetryDecision",
    "StateStoreHolder",
    "compute_delay",
    "default_registry",
    "ensure_state_store",
    "execute_with_circuit_breaker_and_fallback",
    "get_state_store",
    "get_status_summary",
    "is_cold_start_error",
    "is_distributed_store_active",
    "is_retryable",
    "plan_retry",
    "reset_state_store",
    "set_state_store",
]
