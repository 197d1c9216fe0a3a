"""HTTP transports for the streaming and async-job channels.

Provides:
- HttpStreamingTransport: POST a query and read server-sent events
- HttpJobTransport: submit, poll, fetch and cancel async jobs

HTTP error statuses become RemoteError; network failures become
TransportError chained from the httpx exception, so client timeouts keep
their ``httpx.TimeoutException`` cause.
"""

from __future__ import annotations

import asyncio
import json
import os
from contextlib import asynccontextmanager, suppress
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from hybrid_query.errors import RemoteError, TransportError
from hybrid_query.telemetry.logger import get_logger
from hybrid_query.types import (
    JobProgress,
    JobResult,
    JobSubmission,
    parse_stream_event,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from hybrid_query.client.cancel import CancelToken
    from hybrid_query.types import Attachment, StreamEvent

logger = get_logger("hybrid_query.transport.http")

# Default timeouts
_DEFAULT_TIMEOUT = 30.0
_DEFAULT_CONNECT_TIMEOUT = 10.0

_SSE_DATA_PREFIX = "data:"
_SSE_DONE = "[DONE]"

_TERMINAL_JOB_STATUSES = frozenset({"completed", "failed", "cancelled"})

_UA_VERSION: str | None = None


def _get_ua_version() -> str:
    """Get package version for User-Agent (cached)."""
    global _UA_VERSION
    if _UA_VERSION is None:
        try:
            from importlib.metadata import PackageNotFoundError, version

            _UA_VERSION = version("hybrid-query-python")
        except PackageNotFoundError:
            _UA_VERSION = "0.1.0"
    return _UA_VERSION


def _resolve_timeout(timeout: float | None) -> float:
    if timeout is not None:
        return timeout
    env_timeout = os.getenv("AI_HTTP_TIMEOUT_SECS")
    if env_timeout:
        with suppress(ValueError):
            return float(env_timeout)
    return _DEFAULT_TIMEOUT


def _parse_body(raw: bytes) -> dict[str, Any] | None:
    with suppress(ValueError):
        body = json.loads(raw)
        if isinstance(body, dict):
            return body
    return None


def _normalize_error_payload(payload: dict[str, Any]) -> dict[str, Any]:
    # Some backends send {"type": "error", "error": "..."} instead of "message"
    if payload.get("type") == "error" and "message" not in payload and "error" in payload:
        return {**payload, "message": str(payload["error"])}
    return payload


class _HttpChannel:
    """Shared httpx plumbing for both channels."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Initialize the channel.

        Args:
            base_url: Backend base URL
            timeout: Request timeout in seconds (default: AI_HTTP_TIMEOUT_SECS or 30)
            client: Pre-built client, e.g. with custom auth
            headers: Headers sent with every request
        """
        self._base_url = base_url.rstrip("/")
        self._timeout = _resolve_timeout(timeout)
        self._default_headers = dict(headers or {})
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout, connect=_DEFAULT_CONNECT_TIMEOUT),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    def _build_headers(self, extra_headers: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": f"hybrid-query-python/{_get_ua_version()}",
        }
        headers.update(self._default_headers)
        if extra_headers:
            headers.update(extra_headers)
        return headers

    def _transport_error(self, e: httpx.HTTPError, path: str) -> TransportError:
        url = f"{self._base_url}{path}"
        if isinstance(e, httpx.ConnectError):
            return TransportError(f"Connection failed: {e}", url=url, cause=e)
        if isinstance(e, httpx.TimeoutException):
            return TransportError(f"Request timed out: {e}", url=url, cause=e)
        return TransportError(f"HTTP error: {e}", url=url, cause=e)

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Make an HTTP request.

        Raises:
            TransportError: On network/connection errors
            RemoteError: On error statuses (4xx, 5xx)
        """
        client = self._get_client()
        try:
            response = await client.request(
                method=method,
                url=path,
                json=json,
                headers=self._build_headers(headers),
            )
        except httpx.HTTPError as e:
            raise self._transport_error(e, path) from e

        if response.status_code >= 400:
            raise RemoteError.from_response(
                status_code=response.status_code,
                body=_parse_body(response.content),
                headers=dict(response.headers),
            )
        return response

    @asynccontextmanager
    async def stream_request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> AsyncIterator[httpx.Response]:
        """Make a streaming HTTP request expecting server-sent events."""
        client = self._get_client()
        request_headers = self._build_headers(headers)
        request_headers["Accept"] = "text/event-stream"

        try:
            async with client.stream(
                method=method,
                url=path,
                json=json,
                headers=request_headers,
            ) as response:
                if response.status_code >= 400:
                    raise RemoteError.from_response(
                        status_code=response.status_code,
                        body=_parse_body(await response.aread()),
                        headers=dict(response.headers),
                    )
                yield response
        except httpx.HTTPError as e:
            raise self._transport_error(e, path) from e

    async def __aenter__(self) -> _HttpChannel:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


class HttpStreamingTransport(_HttpChannel):
    """Streaming channel over SSE.

    Each ``data:`` line carries one JSON event (see ``hybrid_query.types.events``);
    ``data: [DONE]`` ends the stream. Unknown event types are skipped.

    Example:
        >>> transport = HttpStreamingTransport("https://ai.example.com")
        >>> async for event in transport.send("explain high cpu", None, headers={}, token=token):
        ...     print(event.type)
    """

    def __init__(
        self,
        base_url: str,
        *,
        stream_path: str = "/api/ai/stream",
        resume_path: str = "/api/ai/stream/resume",
        wake_up_path: str = "/api/ai/wake-up",
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(base_url, timeout=timeout, client=client, headers=headers)
        self._stream_path = stream_path
        self._resume_path = resume_path
        self._wake_up_path = wake_up_path
        self._active: httpx.Response | None = None
        self._stopped = False

    async def _iter_events(
        self,
        response: httpx.Response,
        token: CancelToken | None,
    ) -> AsyncIterator[StreamEvent]:
        self._active = response
        try:
            async for line in response.aiter_lines():
                if self._stopped or (token is not None and token.is_cancelled):
                    return
                if not line.startswith(_SSE_DATA_PREFIX):
                    continue
                data = line[len(_SSE_DATA_PREFIX):].strip()
                if not data:
                    continue
                if data == _SSE_DONE:
                    return
                try:
                    payload = json.loads(data)
                except ValueError:
                    logger.warning("Malformed stream event", data=data[:200])
                    continue
                if not isinstance(payload, dict):
                    logger.debug("Skipping non-object stream event")
                    continue
                try:
                    event = parse_stream_event(_normalize_error_payload(payload))
                except PydanticValidationError:
                    logger.debug("Skipping unknown stream event", event_type=payload.get("type"))
                    continue
                yield event
        except httpx.StreamError:
            if not self._stopped:
                raise
        finally:
            self._active = None

    async def send(
        self,
        query: str,
        attachments: Sequence[Attachment] | None,
        *,
        headers: dict[str, str],
        token: CancelToken,
    ) -> AsyncIterator[StreamEvent]:
        """Send a query and yield its stream events."""
        self._stopped = False
        payload: dict[str, Any] = {"query": query}
        if attachments:
            payload["attachments"] = [a.model_dump(exclude_none=True) for a in attachments]

        async with self.stream_request(
            "POST", self._stream_path, json=payload, headers=headers
        ) as response:
            async for event in self._iter_events(response, token):
                yield event

    async def resume(self, *, headers: dict[str, str]) -> AsyncIterator[StreamEvent]:
        """Reattach to the most recent interrupted stream."""
        self._stopped = False
        async with self.stream_request("GET", self._resume_path, headers=headers) as response:
            async for event in self._iter_events(response, None):
                yield event

    async def stop(self) -> None:
        """Close the live stream, if any."""
        self._stopped = True
        response = self._active
        if response is not None:
            await response.aclose()

    async def warm_up(self) -> None:
        """Wake the backend ahead of a query. Failures are only logged."""
        try:
            await self.request("POST", self._wake_up_path)
        except (TransportError, RemoteError) as e:
            logger.debug("Wake-up request failed", error=str(e))


class HttpJobTransport(_HttpChannel):
    """Async-job channel over plain JSON endpoints.

    - ``POST {jobs_path}`` submits and returns ``{"jobId": ...}``
    - ``GET {jobs_path}/{id}`` reports status and progress (polled)
    - ``GET {jobs_path}/{id}/result`` returns the final result
    - ``DELETE {jobs_path}/{id}`` cancels
    """

    def __init__(
        self,
        base_url: str,
        *,
        jobs_path: str = "/api/ai/jobs",
        poll_interval: float = 1.0,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(base_url, timeout=timeout, client=client, headers=headers)
        self._jobs_path = jobs_path.rstrip("/")
        self._poll_interval = poll_interval

    async def submit(self, query: str, *, headers: dict[str, str]) -> JobSubmission:
        """Submit a query as a new job."""
        response = await self.request(
            "POST", self._jobs_path, json={"query": query}, headers=headers
        )
        return JobSubmission.model_validate(response.json())

    async def progress(self, job_id: str, *, headers: dict[str, str]) -> AsyncIterator[JobProgress]:
        """Poll job status until it reaches a terminal status."""
        path = f"{self._jobs_path}/{job_id}"
        while True:
            response = await self.request("GET", path, headers=headers)
            body = response.json()
            status = str(body.get("status", "queued"))
            yield JobProgress(
                stage=str(body.get("currentStep") or status),
                percent=float(body.get("progress") or 0),
                message=body.get("message"),
            )
            if status in _TERMINAL_JOB_STATUSES:
                return
            await asyncio.sleep(self._poll_interval)

    async def result(self, job_id: str, *, headers: dict[str, str]) -> JobResult:
        """Fetch the final result of a job."""
        response = await self.request("GET", f"{self._jobs_path}/{job_id}/result", headers=headers)
        return JobResult.model_validate(response.json())

    async def cancel(self, job_id: str) -> None:
        """Cancel a job."""
        await self.request("DELETE", f"{self._jobs_path}/{job_id}")
