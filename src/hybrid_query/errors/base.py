"""Base error classes for hybrid-query.

Provides a layered error hierarchy:
- HybridQueryError: Base class for all library errors
- CircuitOpenError: Breaker is open, call rejected without reaching the backend
- CircuitExecutionError: Primary call failed and was counted against the breaker
- TransportError: HTTP/network errors
- RemoteError: Backend answered with an error status
- StateStoreError: Distributed state store failures
- ValidationError: Invalid query or configuration input
- OperationCancelledError: Client-side abort of an in-flight call
"""

from __future__ import annotations

import contextlib
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ErrorContext:
    """Structured error context for diagnostics."""

    service: str | None = None
    """Logical backend service the error relates to"""

    details: dict[str, Any] = field(default_factory=dict)
    """Additional details about the error"""

    source: str | None = None
    """Error source (e.g., 'breaker', 'transport', 'orchestrator')"""

    hint: str | None = None
    """Actionable hint for resolving the error"""

    def __str__(self) -> str:
        parts = []
        if self.source:
            parts.append(f"[{self.source}]")
        if self.hint:
            parts.append(f"(hint: {self.hint})")
        return " ".join(parts)


class HybridQueryError(Exception):
    """Base class for all hybrid-query errors.

    Attributes:
        message: Human-readable error message
        context: Optional structured error context
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
    ) -> None:
        self.message = message
        self.context = context or ErrorContext()
        super().__init__(self.message)

    def with_hint(self, hint: str) -> HybridQueryError:
        """Add a hint to this error."""
        self.context.hint = hint
        return self


class CircuitOpenError(HybridQueryError):
    """Raised when a breaker is open and the call is rejected.

    The wrapped function is never invoked when this is raised.
    """

    def __init__(
        self,
        service: str,
        retry_after_seconds: int,
    ) -> None:
        ctx = ErrorContext(service=service, source="breaker")
        ctx.details["retry_after_seconds"] = retry_after_seconds
        super().__init__(
            f"{service} is temporarily unavailable. "
            f"Retry in {retry_after_seconds}s.",
            ctx,
        )
        self.service = service
        self.retry_after_seconds = retry_after_seconds


class CircuitExecutionError(HybridQueryError):
    """A call made through a breaker failed and was counted."""

    def __init__(
        self,
        service: str,
        original: BaseException,
        *,
        failures: int,
        threshold: int,
    ) -> None:
        ctx = ErrorContext(service=service, source="breaker")
        ctx.details.update({"failures": failures, "threshold": threshold})
        super().__init__(
            f"{service} failed ({failures}/{threshold} failures): {original}",
            ctx,
        )
        self.service = service
        self.original = original
        self.failures = failures
        self.threshold = threshold


class TransportError(HybridQueryError):
    """Error during HTTP transport (connection, timeout, protocol)."""

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        *,
        url: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        ctx = context or ErrorContext(source="transport")
        if url:
            ctx.details["url"] = url
        super().__init__(message, ctx)
        self.url = url
        self.__cause__ = cause


class RemoteError(HybridQueryError):
    """Error status returned by a backend.

    Attributes:
        status_code: HTTP status code
        body: Parsed response body, if any
        retry_after: Suggested retry delay in seconds (from header)
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        body: dict[str, Any] | None = None,
        retry_after: float | None = None,
    ) -> None:
        ctx = ErrorContext(source="remote")
        ctx.details["status_code"] = status_code
        super().__init__(message, ctx)
        self.status_code = status_code
        self.body = body or {}
        self.retry_after = retry_after

    @classmethod
    def from_response(
        cls,
        status_code: int,
        body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> RemoteError:
        """Create RemoteError from an HTTP response.

        The message always starts with the status code so that pattern based
        retry classification (e.g. '503', '504') keeps working.
        """
        detail = _extract_error_message(body)
        message = f"HTTP {status_code}: {detail}" if detail else f"HTTP {status_code}"

        retry_after = None
        if headers:
            retry_after_str = headers.get("retry-after") or headers.get("Retry-After")
            if retry_after_str:
                with contextlib.suppress(ValueError):
                    retry_after = float(retry_after_str)

        return cls(
            message,
            status_code=status_code,
            body=body,
            retry_after=retry_after,
        )


class StateStoreError(HybridQueryError):
    """Distributed state store could not be reached or returned bad data."""

    def __init__(self, message: str, *, backend: str | None = None) -> None:
        ctx = ErrorContext(source="state_store")
        if backend:
            ctx.details["backend"] = backend
        super().__init__(message, ctx)
        self.backend = backend


class ValidationError(HybridQueryError):
    """Invalid input (empty query, bad configuration value)."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        ctx = ErrorContext(source="validation")
        if field:
            ctx.details["field"] = field
        super().__init__(message, ctx)
        self.field = field


class OperationCancelledError(HybridQueryError):
    """A transport call was aborted on the client side.

    Never counts against a backend's health.
    """

    def __init__(self, message: str = "Operation aborted", *, reason: str | None = None) -> None:
        ctx = ErrorContext(source="client")
        if reason:
            ctx.details["reason"] = reason
        super().__init__(message, ctx)
        self.reason = reason


def _extract_error_message(body: dict[str, Any] | None) -> str | None:
    if not body:
        return None
    error = body.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str):
            return message
    if isinstance(error, str):
        return error
    message = body.get("message")
    return message if isinstance(message, str) else None
