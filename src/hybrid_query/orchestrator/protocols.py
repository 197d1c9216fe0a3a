"""
Collaborator contracts consumed by the orchestrator.

Any object with matching methods can be plugged in; ``hybrid_query.transport``
ships httpx-backed transports.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from hybrid_query.client.cancel import CancelToken
    from hybrid_query.types import (
        Attachment,
        Clarification,
        ComplexityAnalysis,
        ForceChannelDecision,
        JobProgress,
        JobResult,
        JobSubmission,
        StreamEvent,
    )


@runtime_checkable
class ComplexityClassifier(Protocol):
    """Scores queries. Both methods are pure and synchronous."""

    def analyze(self, query: str) -> ComplexityAnalysis: ...

    def should_force_channel(self, query: str) -> ForceChannelDecision: ...


@runtime_checkable
class StreamingTransport(Protocol):
    """Live token-streaming channel.

    ``send`` yields typed events until ``done``, an ``error`` event, an
    exception, or exhaustion. ``stop`` closes the live stream; it must be
    safe to call when nothing is streaming.
    """

    def send(
        self,
        query: str,
        attachments: Sequence[Attachment] | None,
        *,
        headers: dict[str, str],
        token: CancelToken,
    ) -> AsyncIterator[StreamEvent]: ...

    async def stop(self) -> None: ...


@runtime_checkable
class ResumableStreamingTransport(StreamingTransport, Protocol):
    """Streaming transport that can reattach to an interrupted stream."""

    def resume(self, *, headers: dict[str, str]) -> AsyncIterator[StreamEvent]: ...


@runtime_checkable
class WarmableTransport(Protocol):
    """Transport whose backend can be woken ahead of a query."""

    async def warm_up(self) -> None: ...


@runtime_checkable
class JobTransport(Protocol):
    """Asynchronous job-queue channel."""

    async def submit(self, query: str, *, headers: dict[str, str]) -> JobSubmission: ...

    def progress(self, job_id: str, *, headers: dict[str, str]) -> AsyncIterator[JobProgress]: ...

    async def result(self, job_id: str, *, headers: dict[str, str]) -> JobResult: ...

    async def cancel(self, job_id: str) -> None: ...


@runtime_checkable
class QueryPreflight(Protocol):
    """Pre-flight classification; may ask the user to refine the query."""

    async def check(self, query: str) -> Clarification | None: ...
