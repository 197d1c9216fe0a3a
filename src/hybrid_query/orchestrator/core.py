"""
Dual-channel query orchestrator.

Routes each query to the streaming or async-job channel, retries failed
streaming attempts with backoff, and moves an in-flight stream to the job
channel when the backend asks for it.

Every attempt runs under its own CancelToken. Starting a new attempt (new
query, retry, redirect) always invalidates the previous token first, and
events are checked against the live token at the point of acting.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING, Any

from hybrid_query.client.cancel import CancelReason, CancelToken, TokenSlot
from hybrid_query.config import OrchestratorConfig
from hybrid_query.errors import (
    CircuitExecutionError,
    HybridQueryError,
    RemoteError,
    is_client_abort,
)
from hybrid_query.orchestrator.protocols import ResumableStreamingTransport, WarmableTransport
from hybrid_query.orchestrator.stream_errors import extract_stream_error, is_resume_probe_error
from hybrid_query.resilience.events import BreakerEvent, BreakerEventType
from hybrid_query.resilience.fallback import ResultSource, execute_with_circuit_breaker_and_fallback
from hybrid_query.resilience.registry import BreakerRegistry
from hybrid_query.resilience.retry import plan_retry
from hybrid_query.resilience.state_store import CircuitState
from hybrid_query.telemetry.logger import LogContext, get_logger, set_log_context
from hybrid_query.telemetry.tracer import TraceContext
from hybrid_query.types import (
    Attachment,
    Channel,
    JobProgress,
    JobResult,
    QueryPhase,
    QueryState,
    RedirectSignal,
    StreamDone,
    StreamErrorEvent,
    StreamWarning,
    TextDelta,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from hybrid_query.orchestrator.protocols import (
        ComplexityClassifier,
        JobTransport,
        QueryPreflight,
        StreamingTransport,
    )
    from hybrid_query.types import StreamEvent

logger = get_logger("hybrid_query.orchestrator")

COLD_START_WARNING = "AI engine warming up... reconnecting"
COLD_START_WAIT_SECONDS = 60
SLOW_PROCESSING_CODE = "SLOW_PROCESSING"


class _StreamOutcome(str, Enum):
    COMPLETED = "completed"
    REDIRECTED = "redirected"
    SUPERSEDED = "superseded"


class StreamFailure(HybridQueryError):
    """In-band error event reported by the streaming backend."""


def _error_message(error: BaseException) -> str:
    if isinstance(error, CircuitExecutionError):
        error = error.original
    return str(error) or type(error).__name__


def _looks_rate_limited(error: BaseException | None, message: str) -> bool:
    current = error.original if isinstance(error, CircuitExecutionError) else error
    if isinstance(current, RemoteError) and current.status_code == 429:
        return True
    lowered = message.lower()
    return "429" in lowered or "rate limit" in lowered


class DualChannelOrchestrator:
    """Coordinates one logical query at a time over two channels.

    Example:
        >>> orchestrator = DualChannelOrchestrator(
        ...     HttpStreamingTransport(url), HttpJobTransport(url), classifier,
        ...     registry=default_registry(),
        ... )
        >>> await orchestrator.send_query("explain high cpu")
        >>> await orchestrator.wait_until_settled()
        >>> orchestrator.state.is_loading
        False
    """

    def __init__(
        self,
        streaming: StreamingTransport,
        jobs: JobTransport,
        classifier: ComplexityClassifier,
        *,
        config: OrchestratorConfig | None = None,
        registry: BreakerRegistry | None = None,
        preflight: QueryPreflight | None = None,
        on_stream_finish: Callable[[], Any] | None = None,
        on_data: Callable[[StreamEvent], Any] | None = None,
        on_progress: Callable[[JobProgress], Any] | None = None,
        on_job_result: Callable[[JobResult], Any] | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            streaming: Streaming channel
            jobs: Async-job channel
            classifier: Complexity classifier used for routing
            config: Orchestrator configuration
            registry: Breaker registry; a private one is created when omitted
            preflight: Optional pre-flight check that may request clarification
            on_stream_finish: Called when a stream ends (success or marker error)
            on_data: Called with every text/done/warning event of the live stream
            on_progress: Called with every async-job progress report
            on_job_result: Called with the final async-job result
        """
        self._streaming = streaming
        self._jobs = jobs
        self._classifier = classifier
        self._config = config or OrchestratorConfig()
        self._registry = registry or BreakerRegistry()
        self._preflight = preflight

        self._on_stream_finish = on_stream_finish
        self._on_data = on_data
        self._on_progress = on_progress
        self._on_job_result = on_job_result

        self._state = QueryState()
        self._tokens = TokenSlot()
        self._trace = TraceContext.generate()
        self._retry_count = 0

        self._current_query: str | None = None
        self._pending_query: str | None = None
        self._pending_attachments: list[Attachment] | None = None

        # Finalize guard: first of {stream finish, stream error} wins
        self._finalized = False
        self._redirecting = False
        self._redirect_scheduled = False

        self._text: list[str] = []
        self._started_at = 0.0

        self._attempt_task: asyncio.Task[None] | None = None
        self._retry_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> QueryState:
        """Copy of the current query state."""
        return self._state.model_copy(deep=True)

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def trace_id(self) -> str:
        return self._trace.trace_id

    @property
    def current_query(self) -> str | None:
        return self._current_query

    @property
    def registry(self) -> BreakerRegistry:
        return self._registry

    @property
    def current_token(self) -> CancelToken | None:
        """Token of the live attempt, if any."""
        return self._tokens.current

    def preview_complexity(self, query: str) -> str:
        """Complexity label the classifier assigns to ``query``."""
        return self._classifier.analyze(query).level

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def send_query(
        self,
        query: str,
        attachments: Sequence[Attachment] | None = None,
    ) -> asyncio.Task[None] | None:
        """Accept a query: run pre-flight, then execute it.

        Queries with attachments skip pre-flight. When pre-flight asks for a
        clarification, it is stored on the state and nothing is executed.

        Returns:
            The attempt task, or None when nothing was started
        """
        if not query or not query.strip():
            return None

        self._pending_query = query
        self._pending_attachments = list(attachments) if attachments else None
        self._set_state(terminal_error=None)

        if attachments:
            logger.debug("Skipping pre-flight for query with attachments", count=len(attachments))
            return self.execute_query(query, attachments)

        if self._preflight is not None:
            self._set_state(phase=QueryPhase.ROUTING)
            try:
                clarification = await self._preflight.check(query)
            except Exception as e:
                logger.error("Pre-flight check failed", error=str(e))
                self._set_state(
                    is_loading=False,
                    terminal_error=str(e) or "Query processing failed. Please try again.",
                    phase=QueryPhase.FAILED,
                )
                return None
            if clarification is not None:
                self._set_state(clarification=clarification, phase=QueryPhase.IDLE)
                return None

        return self.execute_query(query, attachments)

    def execute_query(
        self,
        query: str,
        attachments: Sequence[Attachment] | None = None,
        is_retry: bool = False,
    ) -> asyncio.Task[None] | None:
        """Start an attempt for ``query`` on the channel it routes to.

        Must be called from a running event loop.

        Returns:
            The attempt task, or None for a blank query
        """
        if not query or not query.strip():
            logger.warning("Empty query, skipping")
            return None
        trimmed = query.strip()
        loop = asyncio.get_running_loop()

        token = self._tokens.issue(CancelReason.SUPERSEDED)
        self._cancel_attempt_task()
        self._cancel_retry()
        self._finalized = False
        self._redirecting = False
        self._redirect_scheduled = False
        self._current_query = trimmed
        self._text = []

        if not is_retry:
            self._pending_attachments = list(attachments) if attachments else None
            self._started_at = loop.time()
            self._warm_up()

        analysis = self._classifier.analyze(trimmed)
        channel = self._route(trimmed, attachments, analysis.score)

        if channel == Channel.STREAMING:
            breaker = self._registry.get_breaker(self._config.streaming_service)
            status = breaker.get_status()
            if status.state == CircuitState.OPEN:
                logger.warning(
                    "Streaming circuit open, failing over to async-job",
                    reset_time_remaining_ms=status.reset_time_remaining_ms,
                )
                self._registry.event_log.emit(
                    BreakerEvent(
                        type=BreakerEventType.FAILOVER,
                        service=self._config.streaming_service,
                        timestamp=self._registry.now_ms(),
                        details={
                            "failover_from": Channel.STREAMING.value,
                            "failover_to": Channel.ASYNC_JOB.value,
                            "error": "Circuit breaker is OPEN",
                        },
                    )
                )
                channel = Channel.ASYNC_JOB

        streaming = channel == Channel.STREAMING
        self._set_state(
            channel=channel,
            complexity_level=analysis.level,
            job_id=None,
            progress=None,
            is_loading=True,
            terminal_error=None,
            warning=None,
            clarification=None,
            processing_time_ms=None,
            phase=QueryPhase.STREAMING if streaming else QueryPhase.ASYNC_JOB,
            warming_up=streaming,
            estimated_wait_seconds=COLD_START_WAIT_SECONDS if streaming else 0,
        )
        set_log_context(LogContext(trace_id=self.trace_id, channel=channel.value))

        if streaming:
            coro = self._run_streaming(trimmed, attachments, token)
        else:
            coro = self._run_job(trimmed, token)
        task = loop.create_task(coro)
        self._attempt_task = task
        return task

    def _route(
        self,
        query: str,
        attachments: Sequence[Attachment] | None,
        score: float,
    ) -> Channel:
        if attachments:
            return Channel.STREAMING
        forced = self._classifier.should_force_channel(query)
        is_complex = score > self._config.routing.complexity_threshold or forced.force
        logger.info(
            "Query routed",
            score=score,
            forced=forced.force,
            matched_keyword=forced.matched_keyword,
            channel=(Channel.ASYNC_JOB if is_complex else Channel.STREAMING).value,
        )
        return Channel.ASYNC_JOB if is_complex else Channel.STREAMING

    # ------------------------------------------------------------------
    # Streaming sub-flow
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        obs = self._config.observability
        if not obs.enable_trace_id:
            return {}
        return self._trace.headers(obs.trace_id_header)

    async def _run_streaming(
        self,
        query: str,
        attachments: Sequence[Attachment] | None,
        token: CancelToken,
    ) -> None:
        breaker = self._registry.get_breaker(self._config.streaming_service)
        headers = self._headers()

        def open_stream() -> AsyncIterator[StreamEvent]:
            return self._streaming.send(query, attachments, headers=headers, token=token)

        try:
            outcome = await breaker.execute(lambda: self._consume(open_stream, token))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if is_client_abort(e):
                breaker.reset()
            self._handle_stream_error(e, token)
            return

        if outcome == _StreamOutcome.COMPLETED and self._tokens.is_live(token):
            self._finish_stream()

    async def _consume(
        self,
        open_stream: Callable[[], AsyncIterator[StreamEvent]],
        token: CancelToken,
    ) -> _StreamOutcome:
        stream = open_stream()
        try:
            async for event in stream:
                if not self._tokens.is_live(token):
                    logger.debug("Ignoring event from superseded attempt", event_type=event.type)
                    return _StreamOutcome.SUPERSEDED

                if isinstance(event, TextDelta):
                    self._text.append(event.text)
                    self._clear_warming()
                    self._notify(self._on_data, event)
                elif isinstance(event, StreamWarning):
                    self._apply_warning(event)
                    self._notify(self._on_data, event)
                elif isinstance(event, RedirectSignal):
                    await self._begin_redirect(event)
                    return _StreamOutcome.REDIRECTED
                elif isinstance(event, StreamDone):
                    self._notify(self._on_data, event)
                    break
                elif isinstance(event, StreamErrorEvent):
                    raise StreamFailure(event.message)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        if not self._tokens.is_live(token):
            return _StreamOutcome.SUPERSEDED
        return _StreamOutcome.COMPLETED

    def _clear_warming(self) -> None:
        if self._state.warming_up:
            self._set_state(warming_up=False, estimated_wait_seconds=0)

    def _apply_warning(self, warning: StreamWarning) -> None:
        if warning.code == SLOW_PROCESSING_CODE:
            logger.warning("Slow processing", message=warning.message, elapsed_ms=warning.elapsed_ms)
            self._set_state(warning=warning.message, processing_time_ms=warning.elapsed_ms)
        else:
            logger.warning("Stream warning", code=warning.code, message=warning.message)
            self._set_state(warning=warning.message)

    def _finish_stream(self) -> None:
        if self._redirecting:
            logger.debug("Stream finish skipped, redirect in progress")
            self._notify(self._on_stream_finish)
            return

        if self._finalized:
            logger.debug("Stream finish skipped, error already handled")
            self._set_state(is_loading=False)
            self._notify(self._on_stream_finish)
            return

        self._finalized = True
        stream_error = extract_stream_error("".join(self._text))
        if stream_error:
            logger.warning("Stream error detected in completed text", error=stream_error)
            self._set_state(
                is_loading=False,
                terminal_error=stream_error,
                warming_up=False,
                estimated_wait_seconds=0,
                phase=QueryPhase.FAILED,
            )
        else:
            self._retry_count = 0
            if self._config.observability.verbose_logging:
                logger.info("Stream completed", trace_id=self.trace_id)
            self._set_state(
                is_loading=False,
                warming_up=False,
                estimated_wait_seconds=0,
                phase=QueryPhase.COMPLETED,
                processing_time_ms=self._elapsed_ms(),
            )

        self._notify(self._on_stream_finish)

    def _handle_stream_error(self, error: BaseException, token: CancelToken | None) -> None:
        message = _error_message(error)

        if self._current_query is None and is_resume_probe_error(message):
            logger.debug("Ignoring resume probe error before first query", error=message)
            self._set_state(is_loading=False)
            return

        if token is not None and not self._tokens.is_live(token):
            logger.debug("Ignoring error from superseded attempt", error=message)
            return

        if self._finalized:
            logger.debug("Stream error skipped, already finalized", error=message)
            return
        self._finalized = True

        if _looks_rate_limited(error, message):
            self._registry.record_rate_limit(self._config.streaming_service, error=message)

        decision = plan_retry(message, self._retry_count, self._config.retry)
        if decision.should_retry and self._current_query:
            self._retry_count += 1
            logger.info(
                "Retrying stream",
                attempt=self._retry_count,
                limit=decision.limit,
                delay_ms=decision.delay_ms,
                cold_start=decision.cold_start,
                trace_id=self.trace_id,
            )
            self._set_state(
                is_loading=True,
                warning=(
                    COLD_START_WARNING
                    if decision.cold_start
                    else f"Reconnecting... ({self._retry_count}/{decision.limit})"
                ),
                warming_up=decision.cold_start,
                estimated_wait_seconds=COLD_START_WAIT_SECONDS if decision.cold_start else 0,
                phase=QueryPhase.RETRY_WAIT,
            )
            self._retry_task = asyncio.get_running_loop().create_task(
                self._retry_after(decision.delay_ms)
            )
            return

        self._retry_count = 0
        logger.error("Query failed", error=message, trace_id=self.trace_id)
        self._set_state(
            is_loading=False,
            terminal_error=message or "AI response failed.",
            warning=None,
            processing_time_ms=None,
            warming_up=False,
            estimated_wait_seconds=0,
            phase=QueryPhase.FAILED,
        )

    async def _retry_after(self, delay_ms: int) -> None:
        await asyncio.sleep(delay_ms / 1000)
        self._retry_task = None

        query = self._current_query
        if not query:
            logger.warning("Retry skipped, no query to resend")
            self._set_state(
                is_loading=False,
                terminal_error="Retry could not be prepared.",
                phase=QueryPhase.FAILED,
            )
            return
        self.execute_query(query, self._pending_attachments, is_retry=True)

    # ------------------------------------------------------------------
    # Redirect protocol
    # ------------------------------------------------------------------

    async def _begin_redirect(self, signal: RedirectSignal) -> None:
        if self._redirecting:
            logger.debug("Redirect ignored, already redirecting")
            return
        self._redirecting = True
        logger.info("Redirect received, switching to async-job", complexity=signal.complexity)

        self._set_state(
            channel=Channel.ASYNC_JOB,
            complexity_level=signal.complexity or self._state.complexity_level,
            is_loading=True,
            phase=QueryPhase.REDIRECTED,
        )
        await self._stop_streaming()

        query = self._current_query
        if not query:
            self._redirecting = False
            self._set_state(
                is_loading=False,
                terminal_error="The query to hand over to the job queue is missing.",
                phase=QueryPhase.FAILED,
            )
            return

        job_token = self._tokens.issue(CancelReason.REDIRECT)
        self._redirect_scheduled = True
        asyncio.get_running_loop().call_soon(self._submit_redirected, query, job_token)

    def _submit_redirected(self, query: str, token: CancelToken) -> None:
        self._redirect_scheduled = False
        if not self._tokens.is_live(token):
            logger.debug("Job queue redirect aborted")
            self._redirecting = False
            return
        self._attempt_task = asyncio.get_running_loop().create_task(
            self._run_redirected_job(query, token)
        )

    async def _run_redirected_job(self, query: str, token: CancelToken) -> None:
        breaker = self._registry.get_breaker(self._config.job_service)
        headers = self._headers()
        try:
            submission = await breaker.execute(lambda: self._jobs.submit(query, headers=headers))
        except asyncio.CancelledError:
            self._redirecting = False
            raise
        except Exception as e:
            self._redirecting = False
            if is_client_abort(e):
                breaker.reset()
            if self._tokens.is_live(token):
                message = _error_message(e)
                logger.error("Job queue redirect failed", error=message)
                self._set_state(
                    is_loading=False,
                    terminal_error=message or "Switching to the job queue failed.",
                    phase=QueryPhase.FAILED,
                )
            return

        try:
            await self._track_job(submission.job_id, token)
        finally:
            self._redirecting = False

    # ------------------------------------------------------------------
    # Async-job sub-flow
    # ------------------------------------------------------------------

    async def _run_job(self, query: str, token: CancelToken) -> None:
        headers = self._headers()

        async def submit() -> Any:
            return await self._jobs.submit(query, headers=headers)

        def degrade() -> None:
            if self._tokens.is_live(token):
                logger.warning("Job queue unavailable, degrading to streaming")
            return None

        result = await execute_with_circuit_breaker_and_fallback(
            self._config.job_service, submit, degrade, registry=self._registry
        )

        if not self._tokens.is_live(token):
            return

        if result.source == ResultSource.FALLBACK:
            self._set_state(
                channel=Channel.STREAMING,
                phase=QueryPhase.STREAMING,
                warming_up=True,
                estimated_wait_seconds=COLD_START_WAIT_SECONDS,
            )
            await self._run_streaming(query, None, token)
            return

        await self._track_job(result.data.job_id, token)

    async def _track_job(self, job_id: str, token: CancelToken) -> None:
        if not self._tokens.is_live(token):
            return
        self._set_state(job_id=job_id, phase=QueryPhase.ASYNC_JOB)
        set_log_context(LogContext(trace_id=self.trace_id, channel=Channel.ASYNC_JOB.value, job_id=job_id))
        headers = self._headers()

        async def follow() -> JobResult | None:
            async for progress in self._jobs.progress(job_id, headers=headers):
                if not self._tokens.is_live(token):
                    return None
                self._set_state(progress=progress)
                self._notify(self._on_progress, progress)
            if not self._tokens.is_live(token):
                return None
            return await self._jobs.result(job_id, headers=headers)

        timeout = self._config.job_timeout_seconds
        try:
            result = await asyncio.wait_for(follow(), timeout=timeout)
        except asyncio.TimeoutError:
            if self._tokens.is_live(token):
                logger.error("Job timed out", job_id=job_id, timeout_seconds=timeout)
                self._fail_job(f"Request timed out after {timeout:g}s")
                self._spawn(self._cancel_job_quietly(job_id))
            return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._tokens.is_live(token):
                logger.error("Job tracking failed", job_id=job_id, error=str(e))
                self._fail_job(str(e) or "Job queue query failed.")
            return

        if result is None or not self._tokens.is_live(token):
            return

        error = result.error if not result.success else extract_stream_error(result.response)
        if not result.success or error:
            logger.warning("Job finished with error", job_id=job_id, error=error)
            self._fail_job(error or "Job failed.")
        else:
            self._retry_count = 0
            self._set_state(
                is_loading=False,
                progress=None,
                phase=QueryPhase.COMPLETED,
                processing_time_ms=result.processing_time_ms or self._elapsed_ms(),
            )
        self._notify(self._on_job_result, result)

    def _fail_job(self, message: str) -> None:
        self._set_state(
            is_loading=False,
            terminal_error=message,
            progress=None,
            phase=QueryPhase.FAILED,
        )

    # ------------------------------------------------------------------
    # Controls
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Abort the current attempt. Safe to call repeatedly."""
        was_loading = self._state.is_loading
        self._abort_attempt(CancelReason.USER_REQUEST)

        if self._state.channel == Channel.STREAMING:
            await self._stop_streaming()
        elif was_loading and self._state.job_id:
            await self._cancel_job_quietly(self._state.job_id)

        self._set_state(
            is_loading=False,
            phase=QueryPhase.CANCELLED if was_loading else self._state.phase,
        )

    async def cancel(self) -> None:
        """Explicit user cancel.

        Always goes through job cancellation when the async-job channel is
        active, even if the job has already reported progress or finished.
        """
        was_loading = self._state.is_loading
        self._abort_attempt(CancelReason.USER_REQUEST)

        if self._state.channel == Channel.ASYNC_JOB:
            if self._state.job_id:
                await self._cancel_job_quietly(self._state.job_id)
        else:
            await self._stop_streaming()

        self._set_state(
            is_loading=False,
            phase=QueryPhase.CANCELLED if was_loading else self._state.phase,
        )

    def reset(self) -> None:
        """Return to the initial state with a fresh trace id."""
        self._abort_attempt(CancelReason.RESET)
        self._retry_count = 0
        self._trace = TraceContext.generate()
        self._pending_query = None
        self._pending_attachments = None
        self._current_query = None
        self._text = []
        self._finalized = False
        self._state = QueryState()

    def clear_error(self) -> None:
        """Dismiss the terminal error."""
        self._set_state(terminal_error=None)

    def _abort_attempt(self, reason: CancelReason) -> None:
        self._tokens.invalidate(reason)
        self._cancel_retry()
        self._cancel_attempt_task()
        self._redirecting = False
        self._redirect_scheduled = False

    def _cancel_attempt_task(self) -> None:
        task, self._attempt_task = self._attempt_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _cancel_retry(self) -> None:
        task, self._retry_task = self._retry_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ------------------------------------------------------------------
    # Clarification
    # ------------------------------------------------------------------

    def select_clarification(self, refined_query: str) -> asyncio.Task[None] | None:
        """Run the refined query the user picked."""
        self._set_state(clarification=None)
        return self.execute_query(refined_query, self._pending_attachments)

    def submit_custom_clarification(self, detail: str) -> asyncio.Task[None] | None:
        """Run the pending query extended with free-form detail."""
        original = self._pending_query or ""
        refined = f"{original} {detail}".strip()
        self._set_state(clarification=None)
        return self.execute_query(refined, self._pending_attachments)

    def skip_clarification(self) -> asyncio.Task[None] | None:
        """Run the pending query unchanged."""
        self._set_state(clarification=None)
        if not self._pending_query:
            return None
        return self.execute_query(self._pending_query, self._pending_attachments)

    def dismiss_clarification(self) -> None:
        """Drop the clarification and the pending query without running anything."""
        self._pending_query = None
        self._pending_attachments = None
        self._set_state(clarification=None)

    # ------------------------------------------------------------------
    # Resume probe
    # ------------------------------------------------------------------

    async def resume_stream(self) -> None:
        """Reattach to an interrupted stream, if the transport supports it.

        Network errors before any query was issued are ignored.
        """
        if not isinstance(self._streaming, ResumableStreamingTransport):
            return
        streaming = self._streaming
        self._cancel_retry()
        self._cancel_attempt_task()
        token = self._tokens.issue(CancelReason.SUPERSEDED)
        self._finalized = False
        headers = self._headers()

        try:
            outcome = await self._consume(lambda: streaming.resume(headers=headers), token)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._handle_stream_error(e, token)
            return

        if outcome == _StreamOutcome.COMPLETED and self._tokens.is_live(token) and self._text:
            self._finish_stream()

    async def wait_until_settled(self) -> None:
        """Wait until no attempt, retry or scheduled redirect is pending."""
        while True:
            if self._redirect_scheduled:
                await asyncio.sleep(0)
                continue
            pending = [
                t
                for t in (self._attempt_task, self._retry_task)
                if t is not None and not t.done()
            ]
            if not pending:
                return
            await asyncio.wait(pending)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_state(self, **changes: Any) -> None:
        self._state = self._state.model_copy(update=changes)

    def _elapsed_ms(self) -> int | None:
        if not self._started_at:
            return None
        return int((asyncio.get_running_loop().time() - self._started_at) * 1000)

    def _notify(self, callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Orchestrator callback failed")

    def _spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _warm_up(self) -> None:
        if isinstance(self._streaming, WarmableTransport):
            self._spawn(self._warm_up_quietly(self._streaming))

    @staticmethod
    async def _warm_up_quietly(transport: WarmableTransport) -> None:
        try:
            await transport.warm_up()
        except Exception as e:
            logger.debug("Warm-up failed", error=str(e))

    async def _stop_streaming(self) -> None:
        try:
            await self._streaming.stop()
        except Exception as e:
            logger.warning("Stopping the stream failed", error=str(e))

    async def _cancel_job_quietly(self, job_id: str) -> None:
        try:
            await self._jobs.cancel(job_id)
        except Exception as e:
            logger.warning("Job cancel request failed", job_id=job_id, error=str(e))
