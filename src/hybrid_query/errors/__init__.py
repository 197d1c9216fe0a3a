"""Error hierarchy for hybrid-query.

Provides structured error types and the client-abort classification used for
breaker accounting.
"""

from hybrid_query.errors.base import (
    CircuitExecutionError,
    CircuitOpenError,
    ErrorContext,
    HybridQueryError,
    OperationCancelledError,
    RemoteError,
    StateStoreError,
    TransportError,
    ValidationError,
)
from hybrid_query.errors.classification import (
    GATEWAY_FAILURE_STATUSES,
    is_client_abort,
    unwrap_error,
)

__all__ = [
    "GATEWAY_FAILURE_STATUSES",
    "CircuitExecutionError",
    "CircuitOpenError",
    "ErrorContext",
    "HybridQueryError",
    "OperationCancelledError",
    "RemoteError",
    "StateStoreError",
    "TransportError",
    "ValidationError",
    "is_client_abort",
    "unwrap_error",
]
