"""
Query-level models: routing decisions, observable state and job payloads.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Channel(str, Enum):
    """Transport channel a query runs on."""

    STREAMING = "streaming"
    ASYNC_JOB = "async-job"


class QueryPhase(str, Enum):
    """Lifecycle phase of the current query."""

    IDLE = "idle"
    ROUTING = "routing"
    STREAMING = "streaming"
    ASYNC_JOB = "async-job"
    RETRY_WAIT = "retry-wait"
    REDIRECTED = "redirected"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ComplexityAnalysis(BaseModel):
    """Classifier verdict for a query."""

    level: str = Field(description="Complexity label, e.g. simple/medium/complex")
    score: float = Field(description="Numeric score compared with the routing threshold")


class ForceChannelDecision(BaseModel):
    """Keyword override that forces the async-job channel."""

    force: bool = False
    matched_keyword: str | None = None


class Attachment(BaseModel):
    """File attached to a query. Attachments always stream."""

    model_config = ConfigDict(extra="allow")

    name: str
    content_type: str | None = None
    url: str | None = None


class Clarification(BaseModel):
    """Pre-flight request for the user to refine an ambiguous query."""

    original_query: str
    question: str
    options: list[str] = Field(default_factory=list)


class JobSubmission(BaseModel):
    """Accepted async job."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    job_id: str = Field(alias="jobId")


class JobProgress(BaseModel):
    """Progress report of an async job."""

    model_config = ConfigDict(extra="allow")

    stage: str = "queued"
    percent: float = Field(default=0, ge=0, le=100)
    message: str | None = None


class JobResult(BaseModel):
    """Final outcome of an async job."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    success: bool
    response: str | None = None
    sources: list[dict[str, Any]] = Field(default_factory=list)
    error: str | None = None
    processing_time_ms: int | None = Field(default=None, alias="processingTimeMs")


class QueryState(BaseModel):
    """Observable state of the orchestrator.

    Attributes:
        channel: Channel of the current (or last) attempt
        complexity_level: Classifier label of the current query
        job_id: Async job identifier, once submitted
        is_loading: A query is in flight (stays on across retries and redirects)
        terminal_error: Error surfaced to the user; retries are over
        warning: Transient notice (reconnecting, slow backend)
        clarification: Pending pre-flight clarification
        phase: Lifecycle phase
        progress: Latest async-job progress
        warming_up: Waiting for the first streamed event or a cold start was reported
        estimated_wait_seconds: Expected wait while warming up
        processing_time_ms: Wall time of the completed query
    """

    channel: Channel = Channel.STREAMING
    complexity_level: str | None = None
    job_id: str | None = None
    is_loading: bool = False
    terminal_error: str | None = None
    warning: str | None = None
    clarification: Clarification | None = None
    phase: QueryPhase = QueryPhase.IDLE
    progress: JobProgress | None = None
    warming_up: bool = False
    estimated_wait_seconds: int = 0
    processing_time_ms: int | None = None
