"""Error classification for breaker accounting and retry decisions.

A failure either counts against the breaker or reflects client impatience.
Retryable, cold-start and redirect outcomes are decided on message text by
the retry policy and the orchestrator.

Gateway timeout policy: a backend that answers with a gateway/proxy status
(502, 503, 504) has reported its own failure and is a backend failure, even
though the text usually contains the word "timeout". Only errors raised on the
client side (asyncio cancellation, client timers, httpx client timeouts,
AbortError-style exceptions) are client aborts. The decision is made on error
types, never on message text alone.
"""

from __future__ import annotations

import asyncio

import httpx

from hybrid_query.errors.base import (
    CircuitExecutionError,
    OperationCancelledError,
    RemoteError,
)

# Statuses a proxy or gateway returns on behalf of a failing backend
GATEWAY_FAILURE_STATUSES: frozenset[int] = frozenset({502, 503, 504})

_CLIENT_ABORT_TYPES: tuple[type[BaseException], ...] = (
    asyncio.CancelledError,
    asyncio.TimeoutError,
    TimeoutError,
    httpx.TimeoutException,
    OperationCancelledError,
)


def unwrap_error(error: BaseException) -> BaseException:
    """Return the innermost error behind breaker wrappers and cause chains."""
    seen: set[int] = set()
    current = error
    while id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, CircuitExecutionError):
            current = current.original
            continue
        if current.__cause__ is not None:
            current = current.__cause__
            continue
        break
    return current


def is_client_abort(error: BaseException) -> bool:
    """Check whether an error reflects client impatience rather than backend health.

    Walks the wrapper/cause chain; a gateway status anywhere in the chain wins
    over a timeout cause.
    """
    seen: set[int] = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, RemoteError) and current.status_code in GATEWAY_FAILURE_STATUSES:
            return False
        if isinstance(current, _CLIENT_ABORT_TYPES):
            return True
        if type(current).__name__ == "AbortError":
            return True
        if isinstance(current, CircuitExecutionError):
            current = current.original
        else:
            current = current.__cause__
    return False
