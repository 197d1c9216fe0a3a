"""Runtime configuration.

Each section is a dataclass with ``default()`` and ``from_env()`` builders.
Environment values that do not parse or fall outside the accepted range are
ignored in favour of the default.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

DEFAULT_RETRYABLE_PATTERNS: tuple[str, ...] = (
    "timeout",
    "ETIMEDOUT",
    "ECONNRESET",
    "fetch failed",
    "socket hang up",
    "504",
    "503",
    "Stream error",
)

DEFAULT_COLD_START_PATTERNS: tuple[str, ...] = (
    "cold start",
    "warming up",
    "warmup in progress",
    "instance is starting",
    "model is loading",
)


def _env_number(
    name: str,
    default: float,
    valid: Callable[[float], bool],
    cast: Callable[[str], float] = float,
) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        return default
    return value if valid(value) else default


def _env_bool(name: str) -> bool | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class StreamRetryConfig:
    """Retry settings for the streaming channel.

    Attributes:
        max_retries: Retry budget for ordinary retryable errors
        initial_delay_ms: Delay before the first retry
        backoff_multiplier: Exponential growth factor per attempt
        max_delay_ms: Cap applied before jitter
        jitter_factor: Relative jitter range (0.1 means +/-10%)
        min_delay_ms: Floor for the final delay
        retryable_patterns: Case-insensitive substrings marking transient errors
        cold_start_patterns: Substrings marking a backend that is warming up
        cold_start_delay_ms: Fixed delay for the single cold-start retry
        cold_start_max_retries: Hard cap for cold-start retries
    """

    max_retries: int = 3
    initial_delay_ms: int = 1000
    backoff_multiplier: float = 2.0
    max_delay_ms: int = 10000
    jitter_factor: float = 0.1
    min_delay_ms: int = 100
    retryable_patterns: tuple[str, ...] = DEFAULT_RETRYABLE_PATTERNS
    cold_start_patterns: tuple[str, ...] = DEFAULT_COLD_START_PATTERNS
    cold_start_delay_ms: int = 3000
    cold_start_max_retries: int = 1

    @classmethod
    def default(cls) -> StreamRetryConfig:
        """Create default configuration."""
        return cls()

    @classmethod
    def no_retry(cls) -> StreamRetryConfig:
        """Create a config that disables ordinary retries."""
        return cls(max_retries=0)

    @classmethod
    def from_env(cls) -> StreamRetryConfig:
        """Create configuration from environment variables."""
        return cls(
            max_retries=int(
                _env_number("AI_STREAM_MAX_RETRIES", 3, lambda v: 0 <= v <= 5, int)
            ),
            initial_delay_ms=int(
                _env_number("AI_STREAM_INITIAL_DELAY", 1000, lambda v: 100 <= v <= 5000, int)
            ),
            backoff_multiplier=_env_number(
                "AI_STREAM_BACKOFF_MULTIPLIER", 2.0, lambda v: 1 <= v <= 5
            ),
            max_delay_ms=int(
                _env_number("AI_STREAM_MAX_DELAY", 10000, lambda v: 1000 <= v <= 30000, int)
            ),
            jitter_factor=_env_number(
                "AI_STREAM_JITTER_FACTOR", 0.1, lambda v: 0 <= v <= 1
            ),
        )


@dataclass
class QueryRoutingConfig:
    """Channel routing settings.

    Attributes:
        complexity_threshold: Scores above this go to the async-job channel
    """

    complexity_threshold: float = 19

    @classmethod
    def from_env(cls) -> QueryRoutingConfig:
        """Create configuration from environment variables."""
        return cls(
            complexity_threshold=_env_number(
                "AI_COMPLEXITY_THRESHOLD", 19, lambda v: 1 <= v <= 100
            )
        )


@dataclass
class ObservabilityConfig:
    """Trace propagation and logging verbosity."""

    enable_trace_id: bool = True
    trace_id_header: str = "X-Trace-Id"
    verbose_logging: bool = False

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Create configuration from environment variables."""
        return cls(
            enable_trace_id=_env_bool("AI_ENABLE_TRACE_ID") is not False,
            trace_id_header=os.getenv("AI_TRACE_ID_HEADER") or "X-Trace-Id",
            verbose_logging=_env_bool("AI_VERBOSE_LOGGING") is True,
        )


@dataclass
class OrchestratorConfig:
    """Top-level configuration for the dual-channel orchestrator."""

    retry: StreamRetryConfig = field(default_factory=StreamRetryConfig)
    routing: QueryRoutingConfig = field(default_factory=QueryRoutingConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)
    job_timeout_seconds: float = 120.0
    streaming_service: str = "ai-streaming"
    job_service: str = "ai-job-queue"

    @classmethod
    def default(cls) -> OrchestratorConfig:
        """Create default configuration."""
        return cls()

    @classmethod
    def from_env(cls) -> OrchestratorConfig:
        """Create configuration from environment variables."""
        return cls(
            retry=StreamRetryConfig.from_env(),
            routing=QueryRoutingConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
            job_timeout_seconds=_env_number(
                "AI_JOB_TIMEOUT_SECS", 120.0, lambda v: v > 0
            ),
        )
