"""
Streaming channel events.

The streaming transport yields a typed event stream. Consumers dispatch on
the ``type`` discriminator.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class TextDelta(BaseModel):
    """Incremental answer text."""

    model_config = ConfigDict(extra="allow")

    type: Literal["text-delta"] = "text-delta"
    text: str = Field(description="Text fragment to append")


class StreamWarning(BaseModel):
    """Backend warning, e.g. a slow first token."""

    model_config = ConfigDict(extra="allow")

    type: Literal["warning"] = "warning"
    code: str = Field(description="Machine-readable warning code")
    message: str = Field(description="User-facing warning text")
    elapsed_ms: int | None = Field(default=None, description="Time spent so far")


class RedirectSignal(BaseModel):
    """Capacity routing instruction: continue the query on the async-job channel."""

    model_config = ConfigDict(extra="allow")

    type: Literal["redirect"] = "redirect"
    complexity: str | None = Field(default=None, description="Backend complexity label")
    reason: str | None = Field(default=None, description="Why the backend redirected")


class StreamDone(BaseModel):
    """Normal end of stream."""

    model_config = ConfigDict(extra="allow")

    type: Literal["done"] = "done"
    sources: list[dict[str, Any]] = Field(default_factory=list)


class StreamErrorEvent(BaseModel):
    """In-band stream error."""

    model_config = ConfigDict(extra="allow")

    type: Literal["error"] = "error"
    message: str = Field(default="Stream error")


StreamEvent = Annotated[
    Union[TextDelta, StreamWarning, RedirectSignal, StreamDone, StreamErrorEvent],
    Field(discriminator="type"),
]

_stream_event_adapter: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)


def parse_stream_event(data: dict[str, Any]) -> StreamEvent:
    """Validate a raw event dict into its typed model.

    Raises:
        pydantic.ValidationError: unknown ``type`` or missing fields
    """
    return _stream_event_adapter.validate_python(data)
