"""
Query cancellation control.

Every attempt of a query runs under a CancelToken. The orchestrator keeps at
most one live token per query in a TokenSlot; issuing a new token aborts the
previous one, so late events from a superseded attempt can be recognised and
dropped.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from hybrid_query.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger("hybrid_query.client.cancel")


class CancelReason(str, Enum):
    """Reasons for cancellation."""

    USER_REQUEST = "user_request"
    SUPERSEDED = "superseded"
    REDIRECT = "redirect"
    RESET = "reset"


@dataclass
class CancelState:
    """State of a cancellation token.

    Attributes:
        cancelled: Whether cancellation was requested
        reason: Reason for cancellation
        timestamp: Time of cancellation
    """

    cancelled: bool = False
    reason: CancelReason | None = None
    timestamp: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class CancelToken:
    """Cooperative cancellation token for one query attempt.

    Cancelling is idempotent and never raises; callback failures are logged
    and isolated from each other.

    Example:
        >>> token = CancelToken()
        >>> async for event in transport.send(query, None, headers={}, token=token):
        ...     if token.is_cancelled:
        ...         break
        >>> token.cancel(CancelReason.USER_REQUEST)
    """

    def __init__(self) -> None:
        self._state = CancelState()
        self._callbacks: list[Callable[[CancelReason], Any]] = []

    def cancel(
        self,
        reason: CancelReason = CancelReason.USER_REQUEST,
        **metadata: Any,
    ) -> bool:
        """Request cancellation.

        Args:
            reason: Reason for cancellation
            **metadata: Additional metadata

        Returns:
            True if cancellation was newly requested, False if already cancelled
        """
        if self._state.cancelled:
            return False

        self._state.cancelled = True
        self._state.reason = reason
        self._state.timestamp = time.time()
        self._state.metadata.update(metadata)

        for callback in list(self._callbacks):
            self._invoke(callback, reason)

        return True

    @staticmethod
    def _invoke(callback: Callable[[CancelReason], Any], reason: CancelReason) -> None:
        try:
            result = callback(reason)
            if asyncio.iscoroutine(result):
                _ = asyncio.ensure_future(result)  # noqa: RUF006
        except Exception:
            logger.exception("Cancel callback failed", reason=reason.value)

    @property
    def is_cancelled(self) -> bool:
        """Check if cancellation was requested."""
        return self._state.cancelled

    @property
    def reason(self) -> CancelReason | None:
        """Get cancellation reason."""
        return self._state.reason

    @property
    def state(self) -> CancelState:
        """Get full cancellation state."""
        return self._state

    def on_cancel(self, callback: Callable[[CancelReason], Any]) -> CancelToken:
        """Register a callback to be called on cancellation.

        Runs immediately when the token is already cancelled.
        """
        self._callbacks.append(callback)
        if self._state.cancelled and self._state.reason:
            self._invoke(callback, self._state.reason)
        return self


class TokenSlot:
    """Holds at most one live CancelToken.

    Example:
        >>> slot = TokenSlot()
        >>> first = slot.issue()
        >>> second = slot.issue()
        >>> first.is_cancelled, slot.is_live(second)
        (True, True)
    """

    def __init__(self) -> None:
        self._current: CancelToken | None = None

    @property
    def current(self) -> CancelToken | None:
        """The live token, or None after invalidation."""
        return self._current

    def issue(self, reason: CancelReason = CancelReason.SUPERSEDED) -> CancelToken:
        """Abort the current token (if any) and install a fresh one."""
        self.invalidate(reason)
        self._current = CancelToken()
        return self._current

    def invalidate(self, reason: CancelReason = CancelReason.SUPERSEDED) -> bool:
        """Abort the current token and empty the slot.

        Returns:
            True if a live token was aborted
        """
        token, self._current = self._current, None
        if token is None:
            return False
        return token.cancel(reason)

    def is_live(self, token: CancelToken | None) -> bool:
        """Check that ``token`` is the slot's current, uncancelled token."""
        return token is not None and token is self._current and not token.is_cancelled
