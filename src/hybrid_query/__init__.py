"""hybrid-query-python: resilient dual-channel query execution.

Routes AI queries between a live streaming channel and an async job queue,
guarded by per-service circuit breakers with optional shared state.
"""
from __future__ import annotations

from hybrid_query._features import HAS_REDIS, require_extra
from hybrid_query.client import CancelReason, CancelToken, TokenSlot
from hybrid_query.config import (
    ObservabilityConfig,
    OrchestratorConfig,
    QueryRoutingConfig,
    StreamRetryConfig,
)
from hybrid_query.errors import (
    CircuitExecutionError,
    CircuitOpenError,
    HybridQueryError,
    RemoteError,
    TransportError,
)
from hybrid_query.orchestrator import DualChannelOrchestrator
from hybrid_query.resilience import (
    BreakerRegistry,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    default_registry,
    execute_with_circuit_breaker_and_fallback,
)
from hybrid_query.types import Channel, QueryPhase, QueryState

__version__ = "0.1.0"

__all__ = [
    # Orchestrator
    "DualChannelOrchestrator",
    # Feature flags
    "HAS_REDIS",
    "require_extra",
    # Config
    "ObservabilityConfig",
    "OrchestratorConfig",
    "QueryRoutingConfig",
    "StreamRetryConfig",
    # Resilience
    "BreakerRegistry",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "default_registry",
    "execute_with_circuit_breaker_and_fallback",
    # Cancellation
    "CancelReason",
    "CancelToken",
    "TokenSlot",
    # Errors
    "CircuitExecutionError",
    "CircuitOpenError",
    "HybridQueryError",
    "RemoteError",
    "TransportError",
    # Types
    "Channel",
    "QueryPhase",
    "QueryState",
    # Version
    "__version__",
]
