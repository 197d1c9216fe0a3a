"""
Retry policy for the streaming channel.

Pure functions deciding whether an error message is worth retrying and how
long to wait before attempt ``n``. Jitter spreads retries of many clients
hitting the same failing backend.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import TYPE_CHECKING

from hybrid_query.config import StreamRetryConfig

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable


def _matches(message: str, patterns: Iterable[str]) -> bool:
    lowered = message.lower()
    return any(pattern.lower() in lowered for pattern in patterns)


def is_retryable(message: str, patterns: Iterable[str]) -> bool:
    """Case-insensitive substring match of ``message`` against ``patterns``."""
    return _matches(message, patterns)


def is_cold_start_error(message: str, patterns: Iterable[str]) -> bool:
    """Check whether the backend reported that it is still warming up."""
    return _matches(message, patterns)


def compute_delay(
    attempt: int,
    config: StreamRetryConfig | None = None,
    rng: Callable[[], float] = random.random,
) -> int:
    """Calculate the delay before retry ``attempt`` (0-based).

    ``base = initial * multiplier ** attempt``, capped at ``max_delay_ms``,
    then shifted by up to ``jitter_factor`` of itself in either direction.
    The result is rounded and never below ``min_delay_ms``.

    Args:
        attempt: Retry attempt number (0-based)
        config: Retry configuration
        rng: Uniform [0, 1) source, injectable for tests

    Returns:
        Delay in milliseconds
    """
    cfg = config or StreamRetryConfig()
    base = cfg.initial_delay_ms * (cfg.backoff_multiplier ** max(0, attempt))
    capped = min(base, cfg.max_delay_ms)
    jitter = capped * cfg.jitter_factor * (rng() * 2 - 1)
    return max(cfg.min_delay_ms, round(capped + jitter))


@dataclass(frozen=True)
class RetryDecision:
    """What to do after a streaming failure.

    Attributes:
        should_retry: A retry is allowed
        delay_ms: Wait before the retry (0 when not retrying)
        limit: Retry budget that applies to this error class
        cold_start: The error is a cold start
    """

    should_retry: bool
    delay_ms: int
    limit: int
    cold_start: bool = False


def plan_retry(
    message: str,
    retry_count: int,
    config: StreamRetryConfig | None = None,
    rng: Callable[[], float] = random.random,
) -> RetryDecision:
    """Decide whether and when to retry after a failure.

    Cold starts use a fixed delay and their own hard cap regardless of
    ``max_retries``.

    Args:
        message: Error message of the failed attempt
        retry_count: Retries already made for this query
        config: Retry configuration
        rng: Uniform [0, 1) source for jitter
    """
    cfg = config or StreamRetryConfig()

    if is_cold_start_error(message, cfg.cold_start_patterns):
        limit = cfg.cold_start_max_retries
        if retry_count < limit:
            return RetryDecision(True, cfg.cold_start_delay_ms, limit, cold_start=True)
        return RetryDecision(False, 0, limit, cold_start=True)

    limit = cfg.max_retries
    if is_retryable(message, cfg.retryable_patterns) and retry_count < limit:
        return RetryDecision(True, compute_delay(retry_count, cfg, rng), limit)
    return RetryDecision(False, 0, limit)
