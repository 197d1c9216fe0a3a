"""
Integration test helpers.

Scripted in-process collaborators for driving the orchestrator end to end.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import pytest

from hybrid_query.config import OrchestratorConfig, StreamRetryConfig
from hybrid_query.resilience import BreakerRegistry, CircuitBreakerConfig
from hybrid_query.types import (
    ComplexityAnalysis,
    ForceChannelDecision,
    JobProgress,
    JobResult,
    JobSubmission,
    StreamDone,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from hybrid_query.client import CancelToken
    from hybrid_query.types import Attachment, Clarification, StreamEvent


class ScriptedClassifier:
    """Scores queries from a lookup table; unknown queries score 5."""

    def __init__(
        self,
        scores: dict[str, float] | None = None,
        force_keywords: tuple[str, ...] = (),
    ) -> None:
        self.scores = scores or {}
        self.force_keywords = force_keywords

    def analyze(self, query: str) -> ComplexityAnalysis:
        score = self.scores.get(query, 5)
        return ComplexityAnalysis(level="complex" if score > 19 else "simple", score=score)

    def should_force_channel(self, query: str) -> ForceChannelDecision:
        for keyword in self.force_keywords:
            if keyword in query.lower():
                return ForceChannelDecision(force=True, matched_keyword=keyword)
        return ForceChannelDecision()


@dataclass
class SendCall:
    query: str
    attachments: Sequence[Attachment] | None
    headers: dict[str, str]
    token: CancelToken


class ScriptedStreaming:
    """Plays one script per ``send`` call.

    Script items are events to yield, exceptions to raise, or an
    ``asyncio.Event`` to wait on before continuing.
    """

    def __init__(self, *scripts: list[Any]) -> None:
        self.scripts = list(scripts)
        self.calls: list[SendCall] = []
        self.stop_calls = 0

    def send(
        self,
        query: str,
        attachments: Sequence[Attachment] | None,
        *,
        headers: dict[str, str],
        token: CancelToken,
    ) -> AsyncIterator[StreamEvent]:
        self.calls.append(SendCall(query, attachments, headers, token))
        script = self.scripts.pop(0) if self.scripts else [StreamDone()]
        return self._play(script)

    async def _play(self, script: list[Any]) -> AsyncIterator[StreamEvent]:
        for item in script:
            if isinstance(item, asyncio.Event):
                await item.wait()
            elif isinstance(item, BaseException):
                raise item
            else:
                yield item
            await asyncio.sleep(0)

    async def stop(self) -> None:
        self.stop_calls += 1


class ResumableStreaming(ScriptedStreaming):
    """Scripted streaming that also supports resume."""

    def __init__(self, *scripts: list[Any], resume_script: list[Any] | None = None) -> None:
        super().__init__(*scripts)
        self.resume_script = resume_script or []
        self.resume_calls = 0

    def resume(self, *, headers: dict[str, str]) -> AsyncIterator[StreamEvent]:
        self.resume_calls += 1
        return self._play(self.resume_script)


class ScriptedJobs:
    """In-process job queue."""

    def __init__(
        self,
        *,
        job_id: str = "job-1",
        progress: Sequence[JobProgress] = (),
        result: JobResult | None = None,
        submit_error: Exception | None = None,
        hang: bool = False,
    ) -> None:
        self.job_id = job_id
        self.progress_reports = list(progress)
        self.final = result or JobResult(success=True, response="job answer")
        self.submit_error = submit_error
        self.hang = hang
        self.submitted: list[tuple[str, dict[str, str]]] = []
        self.cancelled: list[str] = []

    async def submit(self, query: str, *, headers: dict[str, str]) -> JobSubmission:
        self.submitted.append((query, headers))
        await asyncio.sleep(0)
        if self.submit_error is not None:
            raise self.submit_error
        return JobSubmission(job_id=self.job_id)

    async def progress(self, job_id: str, *, headers: dict[str, str]) -> AsyncIterator[JobProgress]:
        for report in self.progress_reports:
            await asyncio.sleep(0)
            yield report
        if self.hang:
            await asyncio.Event().wait()

    async def result(self, job_id: str, *, headers: dict[str, str]) -> JobResult:
        return self.final

    async def cancel(self, job_id: str) -> None:
        self.cancelled.append(job_id)


class RecordingPreflight:
    """Pre-flight check returning a fixed clarification (or raising)."""

    def __init__(
        self,
        clarification: Clarification | None = None,
        error: Exception | None = None,
    ) -> None:
        self.clarification = clarification
        self.error = error
        self.checked: list[str] = []

    async def check(self, query: str) -> Clarification | None:
        self.checked.append(query)
        if self.error is not None:
            raise self.error
        return self.clarification


async def wait_for_condition(predicate: Any, timeout: float = 1.0) -> None:
    """Spin the loop until ``predicate()`` holds."""

    async def spin() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(spin(), timeout)


@pytest.fixture
def fast_config() -> OrchestratorConfig:
    """Orchestrator config with millisecond retry delays and no jitter."""
    return OrchestratorConfig(
        retry=StreamRetryConfig(
            initial_delay_ms=1,
            min_delay_ms=1,
            max_delay_ms=5,
            jitter_factor=0,
            cold_start_delay_ms=1,
        ),
        job_timeout_seconds=2.0,
    )


@pytest.fixture
def registry(clock: Any) -> BreakerRegistry:
    """Registry with the default threshold on a manual clock."""
    return BreakerRegistry(CircuitBreakerConfig(failure_threshold=3), clock=clock)


@pytest.fixture
def lenient_registry(clock: Any) -> BreakerRegistry:
    """Registry whose breakers do not open during retry scenarios."""
    return BreakerRegistry(CircuitBreakerConfig(failure_threshold=10), clock=clock)
